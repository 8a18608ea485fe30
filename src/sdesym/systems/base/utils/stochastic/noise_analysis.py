# Copyright (C) 2025 Gil Benezer
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
Noise Structure Analysis for Stochastic Systems

Analyzes symbolic diffusion terms to determine how an external solver
must be told about the noise.

This module is PURE ANALYSIS - no code generation, no evaluation.
Just symbolic analysis using SymPy (plus prototype construction).

Components:
    - NoiseShape: Enum for noise classifications seen by solvers
    - NoiseCharacteristics: Dataclass with analysis results
    - NoiseCharacterizer: Analysis engine (pure SymPy)
    - noise_rate_prototype: Dense/sparse prototype for matrix noise

Diagonality is decided STRUCTURALLY: an off-diagonal entry counts as zero
only if it is literally ``0``, never because it simplifies to zero.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Set, Tuple

import numpy as np
import scipy.sparse
import sympy as sp

from sdesym.types.backends import DEFAULT_DTYPE
from sdesym.types.symbolic import SymbolicDiffusion


# ============================================================================
# Enumerations
# ============================================================================


class NoiseShape(Enum):
    """
    Classification of stochastic noise structure.
    """

    SCALAR = "scalar"  # one Wiener process shared by all states
    DIAGONAL = "diagonal"  # one independent Wiener process per state
    GENERAL = "general"  # full matrix


# ============================================================================
# Analysis Results Container
# ============================================================================


@dataclass
class NoiseCharacteristics:
    """
    Container for noise structure analysis results.

    Attributes
    ----------
    shape : NoiseShape
        Classified noise shape
    nx : int
        Number of rows (states)
    num_wiener : int
        Number of independent Wiener processes
    is_vector : bool
        True if the diffusion term is stored as a vector
    is_structurally_diagonal : bool
        True for vector noise, or for square matrices with literal-zero
        off-diagonal entries
    is_additive : bool
        True if diffusion does not depend on any state
    state_dependencies : Set[sp.Symbol]
        States appearing in the diffusion term
    """

    shape: NoiseShape
    nx: int
    num_wiener: int
    is_vector: bool
    is_structurally_diagonal: bool
    is_additive: bool
    state_dependencies: Set[sp.Symbol]


# ============================================================================
# Structural Helpers
# ============================================================================


def is_structurally_diagonal(mat: sp.MatrixBase) -> bool:
    """
    True if every off-diagonal entry of a square matrix is literally zero.

    Examples
    --------
    >>> x = sp.Symbol('x')
    >>> is_structurally_diagonal(sp.Matrix([[x, 0], [0, 2 * x]]))
    True
    >>> is_structurally_diagonal(sp.Matrix([[x, x - x + 0 * x], [0, x]]))  # auto-evaluates to 0
    True
    >>> is_structurally_diagonal(sp.Matrix([[x, sp.sin(x)**2 + sp.cos(x)**2 - 1], [0, x]]))
    False
    """
    rows, cols = mat.shape
    if rows != cols:
        return False
    for i in range(rows):
        for j in range(cols):
            if i != j and mat[i, j] != 0:
                return False
    return True


def diffusion_as_matrix(noise_eqs: SymbolicDiffusion, is_scalar_noise: bool = False) -> sp.Matrix:
    """
    Full (nx, nw) matrix form of a diffusion term.

    - scalar vector noise → (nx, 1) column
    - diagonal vector noise → (nx, nx) diagonal matrix
    - matrix noise → unchanged
    """
    if isinstance(noise_eqs, sp.MatrixBase):
        return sp.Matrix(noise_eqs)
    if is_scalar_noise:
        return sp.Matrix(list(noise_eqs))
    return sp.diag(*noise_eqs) if len(noise_eqs) > 0 else sp.zeros(0, 0)


def noise_channels(noise_eqs: SymbolicDiffusion, is_scalar_noise: bool = False) -> List[sp.Matrix]:
    """
    Column vector of each independent noise channel.

    Examples
    --------
    >>> x, y = sp.symbols('x y')
    >>> noise_channels((x, y))
    [Matrix([[x], [0]]), Matrix([[0], [y]])]
    >>> noise_channels((x, y), is_scalar_noise=True)
    [Matrix([[x], [y]])]
    """
    mat = diffusion_as_matrix(noise_eqs, is_scalar_noise)
    return [mat[:, k] for k in range(mat.shape[1])]


def noise_rate_prototype(
    noise_eqs: SymbolicDiffusion,
    sparse: bool = False,
    dtype=DEFAULT_DTYPE,
) -> Optional[object]:
    """
    Prototype telling a solver how noise channels map onto state rows.

    Returns None for vector noise (identity / shared structure is implied).
    For matrix noise returns a dense zeros array, or - when ``sparse`` - a
    CSR matrix whose stored entries follow the structural nonzeros of the
    diffusion matrix.

    Examples
    --------
    >>> x = sp.Symbol('x')
    >>> noise_rate_prototype(sp.ImmutableMatrix([[x, 0], [0, 1]])).shape
    (2, 2)
    >>> noise_rate_prototype(sp.ImmutableMatrix([[x, 0], [0, 1]]), sparse=True).nnz
    2
    """
    if not isinstance(noise_eqs, sp.MatrixBase):
        return None
    if not sparse:
        return np.zeros(noise_eqs.shape, dtype=dtype)
    return sparsity_prototype(noise_eqs, dtype=dtype)


def sparsity_prototype(mat: sp.MatrixBase, dtype=DEFAULT_DTYPE) -> scipy.sparse.csr_matrix:
    """
    CSR matrix of explicit zeros at the structural nonzeros of ``mat``.
    """
    shape = mat.shape
    rows, cols = [], []
    for i in range(shape[0]):
        for j in range(shape[1]):
            if mat[i, j] != 0:
                rows.append(i)
                cols.append(j)
    data = np.zeros(len(rows), dtype=dtype)
    return scipy.sparse.csr_matrix((data, (rows, cols)), shape=shape)


# ============================================================================
# Noise Characterizer
# ============================================================================


class NoiseCharacterizer:
    """
    Analyzes a diffusion term.

    Examples
    --------
    >>> x, y = sp.symbols('x y')
    >>> char = NoiseCharacterizer((0.1 * x, 0.1 * y), [x, y]).characteristics
    >>> char.shape
    <NoiseShape.DIAGONAL: 'diagonal'>
    >>> char.num_wiener
    2
    """

    def __init__(
        self,
        noise_eqs: SymbolicDiffusion,
        state_vars: List[sp.Symbol],
        is_scalar_noise: bool = False,
    ):
        self.noise_eqs = noise_eqs
        self.state_vars = list(state_vars)
        self.is_scalar_noise = is_scalar_noise
        self._characteristics: Optional[NoiseCharacteristics] = None

    @property
    def characteristics(self) -> NoiseCharacteristics:
        """Analysis results (cached after first access)."""
        if self._characteristics is None:
            self._characteristics = self.analyze()
        return self._characteristics

    def analyze(self) -> NoiseCharacteristics:
        is_vector = not isinstance(self.noise_eqs, sp.MatrixBase)

        if is_vector:
            entries = [sp.sympify(e) for e in self.noise_eqs]
            nx = len(entries)
            shape = NoiseShape.SCALAR if self.is_scalar_noise else NoiseShape.DIAGONAL
            num_wiener = 1 if self.is_scalar_noise else nx
            diagonal = True
        else:
            entries = list(self.noise_eqs)
            nx, num_wiener = self.noise_eqs.shape
            diagonal = is_structurally_diagonal(self.noise_eqs)
            shape = NoiseShape.DIAGONAL if diagonal else NoiseShape.GENERAL

        free: Set[sp.Symbol] = set()
        for entry in entries:
            free |= entry.free_symbols
        state_deps = free & set(self.state_vars)

        return NoiseCharacteristics(
            shape=shape,
            nx=nx,
            num_wiener=num_wiener,
            is_vector=is_vector,
            is_structurally_diagonal=diagonal,
            is_additive=len(state_deps) == 0,
            state_dependencies=state_deps,
        )

    def compiled_shape(self) -> Tuple[int, ...]:
        """
        Shape of the array produced by the compiled diffusion function.

        Structurally diagonal square matrices compile to vectors.
        """
        char = self.characteristics
        if char.is_vector or char.is_structurally_diagonal:
            return (char.nx,)
        return (char.nx, char.num_wiener)

    def __repr__(self) -> str:
        char = self.characteristics
        return f"NoiseCharacterizer(shape={char.shape.value}, nx={char.nx}, nw={char.num_wiener})"


__all__ = [
    "NoiseShape",
    "NoiseCharacteristics",
    "NoiseCharacterizer",
    "is_structurally_diagonal",
    "diffusion_as_matrix",
    "noise_channels",
    "noise_rate_prototype",
    "sparsity_prototype",
]
