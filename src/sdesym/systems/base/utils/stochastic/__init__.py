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
Stochastic Utilities
====================

Noise analysis, validation, diffusion code generation and structural
transforms for SDE systems.

>>> from sdesym.systems.base.utils.stochastic import (
...     NoiseCharacterizer,
...     DiffusionHandler,
...     girsanov_transform,
... )
"""

from .diffusion_handler import DiffusionHandler, compile_diffusion
from .noise_analysis import (
    NoiseCharacteristics,
    NoiseCharacterizer,
    NoiseShape,
    diffusion_as_matrix,
    is_structurally_diagonal,
    noise_channels,
    noise_rate_prototype,
    sparsity_prototype,
)
from .sde_transforms import (
    ITO_TO_STRATONOVICH,
    STRATONOVICH_TO_ITO,
    convert_sde_type,
    girsanov_transform,
    stochastic_integral_transform,
)
from .sde_validator import SDEValidator, check_subsystem_names, validate_sde_system

__all__ = [
    # Analysis
    "NoiseShape",
    "NoiseCharacteristics",
    "NoiseCharacterizer",
    "is_structurally_diagonal",
    "diffusion_as_matrix",
    "noise_channels",
    "noise_rate_prototype",
    "sparsity_prototype",
    # Validation
    "SDEValidator",
    "check_subsystem_names",
    "validate_sde_system",
    # Code generation
    "DiffusionHandler",
    "compile_diffusion",
    # Transforms
    "ITO_TO_STRATONOVICH",
    "STRATONOVICH_TO_ITO",
    "stochastic_integral_transform",
    "convert_sde_type",
    "girsanov_transform",
]
