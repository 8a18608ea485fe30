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
Error Taxonomy

All errors are raised synchronously at the point of detection. Construction
and compilation are atomic: either a fully valid object is produced or one
of these errors propagates.

Hierarchy
---------
SDESystemError
├── StructuralError (ValueError)      shape / closed-world violations
│   └── UnitError                     dimensional inconsistency
├── NotCompleteError (RuntimeError)   compilation of an incomplete system
├── DimensionError (ValueError)       wrong variable / parameter ordering
└── DivisionByZeroError (ZeroDivisionError)
"""


class SDESystemError(Exception):
    """Base class for all SDESymulation errors."""

    pass


class StructuralError(SDESystemError, ValueError):
    """Raised when drift/diffusion/variable structure is inconsistent."""

    pass


class UnitError(StructuralError):
    """Raised when equation units are dimensionally inconsistent."""

    pass


class NotCompleteError(SDESystemError, RuntimeError):
    """Raised when code generation is requested on a non-complete system."""

    pass


class DimensionError(SDESystemError, ValueError):
    """Raised when supplied state/parameter orderings do not match the system."""

    pass


class DivisionByZeroError(SDESystemError, ZeroDivisionError):
    """Raised when a transform divides by a symbolically zero expression."""

    pass


__all__ = [
    "SDESystemError",
    "StructuralError",
    "UnitError",
    "NotCompleteError",
    "DimensionError",
    "DivisionByZeroError",
]
