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
Utility Types

Result containers shared across validation and analysis.
"""

from dataclasses import dataclass, field
from typing import Dict, List


@dataclass
class SymbolicValidationResult:
    """
    Outcome of a structural check of an SDESystem.

    ``errors`` is empty exactly when ``is_valid``; ``warnings`` hold
    non-fatal findings (zero diffusion, wide noise) and ``info`` the
    dimensions seen by the validator.
    """

    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    info: Dict = field(default_factory=dict)


__all__ = [
    "SymbolicValidationResult",
]
