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
Backend and Configuration Types

Defines types related to:
- Computational backends (NumPy, PyTorch, JAX)
- Construction-time check selection
- Compilation and problem configuration dictionaries
- SDE interpretations

Usage
-----
>>> from sdesym.types.backends import Backend, CompileConfig
>>>
>>> config: CompileConfig = {'backend': 'numpy', 'jac': True}
"""

from enum import IntFlag
from typing import Literal, Union

import numpy as np
from typing_extensions import TypedDict

# ============================================================================
# Backend Types
# ============================================================================

Backend = Literal["numpy", "torch", "jax"]
"""
Backend identifier for generated numerical functions.

Valid values:
- 'numpy': NumPy arrays (reference, supports in-place variants)
- 'torch': PyTorch tensors (autodiff, in-place via ``Tensor.copy_``)
- 'jax': JAX arrays (allocating variants only - JAX arrays are immutable)
"""

SDEType = Literal["ito", "stratonovich"]
"""
Stochastic integral interpretation.

Convert between the two with ``stochastic_integral_transform``:
- correction_factor = -1/2 : Ito → Stratonovich
- correction_factor = +1/2 : Stratonovich → Ito
"""

NoiseShapeName = Literal["scalar", "diagonal", "general"]
"""
Noise structure as seen by an external solver.

- 'scalar': one Wiener process shared by every state
- 'diagonal': one independent Wiener process per state
- 'general': full (nx, nw) diffusion matrix
"""


# ============================================================================
# Checks
# ============================================================================


class CheckFlags(IntFlag):
    """
    Construction-time validation selection.

    ``checks=True`` is shorthand for ``CheckFlags.ALL`` and ``checks=False``
    for ``CheckFlags.NONE``.

    Examples
    --------
    >>> CheckFlags.COMPONENTS in CheckFlags.ALL
    True
    """

    NONE = 0
    COMPONENTS = 1
    UNITS = 2
    ALL = COMPONENTS | UNITS


ChecksLike = Union[bool, int, CheckFlags]


def normalize_checks(checks: ChecksLike) -> CheckFlags:
    """
    Normalize a ``checks`` argument to a CheckFlags value.

    Examples
    --------
    >>> normalize_checks(True)
    <CheckFlags.ALL: 3>
    >>> normalize_checks(CheckFlags.UNITS)
    <CheckFlags.UNITS: 2>
    """
    if checks is True:
        return CheckFlags.ALL
    if checks is False or checks is None:
        return CheckFlags.NONE
    return CheckFlags(int(checks))


# ============================================================================
# Configuration Dictionaries
# ============================================================================


class CompileConfig(TypedDict, total=False):
    """
    Options for building an SDEFunction bundle.

    Attributes
    ----------
    backend : Backend
        Target backend for generated functions
    tgrad : bool
        Compile the time gradient ∂f/∂t
    jac : bool
        Compile the Jacobian ∂f/∂x
    Wfact : bool
        Compile the factorized W = M - γJ and W_t = M/γ - J
    sparse : bool
        Prefer sparse structures where supported
    simplify : bool
        Simplify symbolic derivatives before compiling
    """

    backend: Backend
    tgrad: bool
    jac: bool
    Wfact: bool
    sparse: bool
    simplify: bool


class ProblemConfig(TypedDict, total=False):
    """
    Options for building an SDEProblem.

    Attributes
    ----------
    sparsenoise : bool
        Build a sparse noise-rate prototype for matrix noise
    check_length : bool
        Reject u0 map entries that are not states
    """

    sparsenoise: bool
    check_length: bool


# ============================================================================
# Constants
# ============================================================================

VALID_BACKENDS = ("numpy", "torch", "jax")
"""Tuple of valid backend names."""

IN_PLACE_BACKENDS = ("numpy", "torch")
"""Backends whose arrays can be written into by in-place variants."""

DEFAULT_BACKEND: Backend = "numpy"
"""Default backend for generated functions."""

DEFAULT_DTYPE = np.float64
"""Default numerical precision for prototypes and buffers."""


# ============================================================================
# Utilities
# ============================================================================


def validate_backend(backend: str) -> Backend:
    """
    Validate and normalize backend string.

    Raises
    ------
    ValueError
        If backend is not valid

    Examples
    --------
    >>> validate_backend('numpy')
    'numpy'
    >>> validate_backend('pytorch')  # ValueError
    """
    if backend not in VALID_BACKENDS:
        raise ValueError(f"Invalid backend '{backend}'. " f"Choose from: {VALID_BACKENDS}")
    return backend


__all__ = [
    "Backend",
    "SDEType",
    "NoiseShapeName",
    "CheckFlags",
    "ChecksLike",
    "normalize_checks",
    "CompileConfig",
    "ProblemConfig",
    "VALID_BACKENDS",
    "IN_PLACE_BACKENDS",
    "DEFAULT_BACKEND",
    "DEFAULT_DTYPE",
    "validate_backend",
]
