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
System Utilities
================

Code generation, parameter handling and unit checking for SDE systems.

Code Generation
---------------
>>> from sdesym.systems.base.utils import CodeGenerator, generate_function
>>>
>>> f, f_iip = complete(lorenz).code_generator.generate_drift('numpy')
>>> f_jax = generate_function(expr, [states, params, t], backend='jax')

Parameters
----------
>>> from sdesym.systems.base.utils import IndexCache
>>> cache = IndexCache.from_system(sys)
>>> partition = cache.make_partition({'sigma': 10.0, 'rho': 28.0})
"""

from .code_generator import (
    CodeGenerator,
    compile_control_jacobian,
    compile_drift,
    compile_factorized_w,
    compile_jacobian,
    compile_mass_matrix,
    compile_observed,
    compile_time_gradient,
)
from .codegen_utils import (
    convert_array,
    detect_backend,
    generate_function,
    generate_function_pair,
    generate_source,
    lambdify_namespace,
    make_inplace,
)
from .parameter_handler import (
    IndexCache,
    ParameterPartition,
    resolve_parameter_dependencies,
)
from .unit_checker import UnitChecker, check_units

__all__ = [
    "CodeGenerator",
    "compile_drift",
    "compile_jacobian",
    "compile_time_gradient",
    "compile_control_jacobian",
    "compile_factorized_w",
    "compile_observed",
    "compile_mass_matrix",
    "generate_function",
    "generate_function_pair",
    "generate_source",
    "lambdify_namespace",
    "make_inplace",
    "detect_backend",
    "convert_array",
    "IndexCache",
    "ParameterPartition",
    "resolve_parameter_dependencies",
    "UnitChecker",
    "check_units",
]
