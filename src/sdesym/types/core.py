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
Core Numeric Types

Array aliases and signatures of generated functions.

Calling conventions of compiled functions (solver convention):

    allocating:  f(u, p, t)        -> du
    in-place:    f(du, u, p, t)    -> None

    allocating:  W(u, p, gamma, t)      -> W
    in-place:    W(out, u, p, gamma, t) -> None

``p`` is either a flat sequence ordered like the compiled parameter order
or a structured ParameterPartition.
"""

from typing import TYPE_CHECKING, Any, Callable, Sequence, Tuple, Union

import numpy as np

if TYPE_CHECKING:
    import jax.numpy as jnp
    import torch


# ============================================================================
# Arrays
# ============================================================================

ArrayLike = Union[np.ndarray, "torch.Tensor", "jnp.ndarray"]
"""
Array from any supported backend.
"""

ScalarLike = Union[float, int, np.number, "torch.Tensor", "jnp.ndarray"]
"""
Scalar value (time, gamma) from any backend.
"""

StateVector = ArrayLike
"""
State vector u, shape (nx,).
"""

ParameterVector = Union[ArrayLike, Sequence[float]]
"""
Flat parameter vector, shape (np,).
"""

DriftVector = ArrayLike
"""
Drift evaluation f(u, p, t), shape (nx,).
"""

DiffusionArray = ArrayLike
"""
Diffusion evaluation g(u, p, t): shape (nx,) for vector noise,
(nx, nw) for matrix noise.
"""

JacobianMatrix = ArrayLike
"""
Jacobian evaluation ∂f/∂u, shape (nx, nx).
"""

MassMatrix = ArrayLike
"""
Mass matrix M in M du = f dt + g dW, shape (nx, nx).
"""

# ============================================================================
# Generated Function Signatures
# ============================================================================

AllocatingFunction = Callable[[StateVector, Any, ScalarLike], ArrayLike]
"""f(u, p, t) -> result"""

InPlaceFunction = Callable[[ArrayLike, StateVector, Any, ScalarLike], None]
"""f(out, u, p, t) -> None"""

FunctionPair = Tuple[AllocatingFunction, InPlaceFunction]
"""(allocating, in-place) pair returned by every compile_* call."""

AllocatingWFunction = Callable[[StateVector, Any, ScalarLike, ScalarLike], ArrayLike]
"""W(u, p, gamma, t) -> W"""

InPlaceWFunction = Callable[[ArrayLike, StateVector, Any, ScalarLike, ScalarLike], None]
"""W(out, u, p, gamma, t) -> None"""


__all__ = [
    "ArrayLike",
    "ScalarLike",
    "StateVector",
    "ParameterVector",
    "DriftVector",
    "DiffusionArray",
    "JacobianMatrix",
    "MassMatrix",
    "AllocatingFunction",
    "InPlaceFunction",
    "FunctionPair",
    "AllocatingWFunction",
    "InPlaceWFunction",
]
