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
Types Module - Type Definitions for SDESymulation

Central import point for all type definitions.

Module Organization
------------------
- core: Arrays and generated-function signatures
- symbolic: SymPy type definitions
- backends: Backend literals, check flags, configuration dictionaries
- utilities: Validation result containers
"""

from .backends import (
    DEFAULT_BACKEND,
    DEFAULT_DTYPE,
    IN_PLACE_BACKENDS,
    VALID_BACKENDS,
    Backend,
    CheckFlags,
    ChecksLike,
    CompileConfig,
    NoiseShapeName,
    ProblemConfig,
    SDEType,
    normalize_checks,
    validate_backend,
)
from .core import (
    AllocatingFunction,
    AllocatingWFunction,
    ArrayLike,
    DiffusionArray,
    DriftVector,
    FunctionPair,
    InPlaceFunction,
    InPlaceWFunction,
    JacobianMatrix,
    MassMatrix,
    ParameterVector,
    ScalarLike,
    StateVector,
)
from .symbolic import (
    DefaultsDict,
    ParameterDependencies,
    ParameterDict,
    SubstitutionDict,
    SymbolDict,
    SymbolicDiffusion,
    SymbolicDiffusionInput,
    SymbolicDiffusionMatrix,
    SymbolicDriftVector,
    SymbolicExpression,
    SymbolicGradient,
    SymbolicJacobian,
    SymbolicMatrix,
    SymbolicNoiseVector,
    SymbolicSymbol,
    UnitDict,
)
from .utilities import SymbolicValidationResult

__all__ = [
    # backends
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
    # core
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
    # symbolic
    "SymbolicExpression",
    "SymbolicMatrix",
    "SymbolicSymbol",
    "SymbolDict",
    "SymbolicDriftVector",
    "SymbolicNoiseVector",
    "SymbolicDiffusionMatrix",
    "SymbolicDiffusion",
    "SymbolicDiffusionInput",
    "ParameterDict",
    "DefaultsDict",
    "SubstitutionDict",
    "ParameterDependencies",
    "UnitDict",
    "SymbolicJacobian",
    "SymbolicGradient",
    # utilities
    "SymbolicValidationResult",
]
