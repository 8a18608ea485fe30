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
SDESymulation - Symbolic Stochastic Differential Equation Systems
=================================================================

Build an SDE symbolically, transform it (Ito ↔ Stratonovich, Girsanov),
and compile drift, diffusion and derivative functions for NumPy, PyTorch
or JAX.

Examples
--------
>>> import sympy as sp
>>> from sdesym import Differential, Equation, SDESystem, SDEProblem, complete
>>>
>>> t, x = sp.symbols('t x')
>>> mu, sigma = sp.symbols('mu sigma')
>>> D = Differential(t)
>>> gbm = SDESystem([Equation(D(x), mu * x)], [sigma * x], t, [x], [mu, sigma], name="gbm")
>>>
>>> prob = SDEProblem.from_system(complete(gbm), {x: 1.0}, (0.0, 1.0), {mu: 0.05, sigma: 0.2})
>>> prob.f.g(prob.u0, prob.p, 0.0)
array([0.2])
"""

__version__ = "0.1.0"

from sdesym.systems.base.core import (
    DimensionError,
    Differential,
    DivisionByZeroError,
    Equation,
    LUFactors,
    NotCompleteError,
    SDESystem,
    SDESystemError,
    StructuralError,
    SymbolicContinuousEvent,
    SymbolicDiscreteEvent,
    UnitError,
    W_GAMMA,
    complete,
)
from sdesym.systems.base.problems import (
    DispatchingFunction,
    ScalarWienerProcess,
    SDEFunction,
    SDEProblem,
    SDEProblemSource,
)
from sdesym.systems.base.utils import (
    CodeGenerator,
    IndexCache,
    ParameterPartition,
    compile_control_jacobian,
    compile_drift,
    compile_factorized_w,
    compile_jacobian,
    compile_mass_matrix,
    compile_observed,
    compile_time_gradient,
    lambdify_namespace,
)
from sdesym.systems.base.utils.stochastic import (
    DiffusionHandler,
    NoiseShape,
    compile_diffusion,
    convert_sde_type,
    girsanov_transform,
    stochastic_integral_transform,
)
from sdesym.types.backends import CheckFlags

__all__ = [
    "__version__",
    # System
    "SDESystem",
    "Equation",
    "Differential",
    "SymbolicContinuousEvent",
    "SymbolicDiscreteEvent",
    "complete",
    "CheckFlags",
    "LUFactors",
    "W_GAMMA",
    # Errors
    "SDESystemError",
    "StructuralError",
    "UnitError",
    "NotCompleteError",
    "DimensionError",
    "DivisionByZeroError",
    # Transforms
    "stochastic_integral_transform",
    "convert_sde_type",
    "girsanov_transform",
    # Code generation
    "CodeGenerator",
    "DiffusionHandler",
    "NoiseShape",
    "compile_drift",
    "compile_diffusion",
    "compile_jacobian",
    "compile_time_gradient",
    "compile_control_jacobian",
    "compile_factorized_w",
    "compile_observed",
    "compile_mass_matrix",
    "lambdify_namespace",
    # Parameters
    "IndexCache",
    "ParameterPartition",
    # Problems
    "DispatchingFunction",
    "SDEFunction",
    "SDEProblem",
    "SDEProblemSource",
    "ScalarWienerProcess",
]
