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
Core SDE System
===============

SDESystem, equation containers and the error hierarchy.

>>> from sdesym.systems.base.core import SDESystem, Equation, Differential, complete
"""

from .equations import (
    Differential,
    Equation,
    SymbolicContinuousEvent,
    SymbolicDiscreteEvent,
    differentiated_variable,
    normalize_continuous_events,
    normalize_discrete_events,
)
from .errors import (
    DimensionError,
    DivisionByZeroError,
    NotCompleteError,
    SDESystemError,
    StructuralError,
    UnitError,
)
from .sde_system import (
    NAMESPACE_SEPARATOR,
    W_GAMMA,
    CachedCell,
    LUFactors,
    SDESystem,
    complete,
    next_tag,
)

__all__ = [
    # Equations
    "Equation",
    "Differential",
    "SymbolicContinuousEvent",
    "SymbolicDiscreteEvent",
    "normalize_continuous_events",
    "normalize_discrete_events",
    "differentiated_variable",
    # Errors
    "SDESystemError",
    "StructuralError",
    "UnitError",
    "NotCompleteError",
    "DimensionError",
    "DivisionByZeroError",
    # System
    "SDESystem",
    "CachedCell",
    "LUFactors",
    "W_GAMMA",
    "NAMESPACE_SEPARATOR",
    "complete",
    "next_tag",
]
