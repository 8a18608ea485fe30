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
Symbolic Types

Defines types for the symbolic description of SDE systems using SymPy:
- Symbolic expressions and matrices
- Drift and diffusion terms
- Parameter, default and substitution dictionaries
- Symbolic derivatives (Jacobians, gradients)

Mathematical Context
-------------------
An SDE system is written symbolically as

    M dx = f_sym(x, p, t) dt + g_sym(x, p, t) dW

where f_sym is the drift, g_sym the diffusion term and M the mass matrix.
These symbolic forms are:
1. Transformed (Ito/Stratonovich conversion, Girsanov reweighting)
2. Differentiated to compute Jacobians and time gradients
3. Compiled to callable functions via lambdify

Usage
-----
>>> from sdesym.types.symbolic import SymbolicExpression, DefaultsDict
>>>
>>> import sympy as sp
>>> x, sigma = sp.symbols('x sigma')
>>> g: SymbolicExpression = sigma * x
>>> defaults: DefaultsDict = {sigma: 0.1}

Design Philosophy
----------------
These are TYPE DEFINITIONS only - no implementation logic.
"""

from typing import Dict, List, Tuple, Union

import sympy as sp

# ============================================================================
# Basic Symbolic Types
# ============================================================================

SymbolicExpression = sp.Expr
"""
Single symbolic expression.

Examples
--------
>>> x, y = sp.symbols('x y')
>>> expr: SymbolicExpression = x * (y - x)
"""

SymbolicMatrix = sp.Matrix
"""
Matrix of symbolic expressions (mutable or immutable).
"""

SymbolicSymbol = sp.Symbol
"""
Single symbolic variable (state, parameter or independent variable).
"""

SymbolDict = Dict[str, sp.Symbol]
"""
Name → symbol lookup table.

Used by SDESystem for fast symbolic indexing (``sys.x`` / ``sys['x']``).
"""

# ============================================================================
# SDE Terms
# ============================================================================

SymbolicDriftVector = Tuple[sp.Expr, ...]
"""
Right-hand sides of the drift equations, one per state variable.
"""

SymbolicNoiseVector = Tuple[sp.Expr, ...]
"""
Diagonal (or scalar) noise: one diffusion coefficient per state variable.

When ``is_scalar_noise`` is set, all entries multiply one shared Wiener
process; otherwise entry i multiplies its own independent process.
"""

SymbolicDiffusionMatrix = sp.ImmutableMatrix
"""
General noise: rows are state variables, columns are noise channels.

Shape (nx, nw).
"""

SymbolicDiffusion = Union[SymbolicNoiseVector, SymbolicDiffusionMatrix]
"""
Either diffusion representation.

The distinction matters: a length-n vector is *diagonal* noise with n
channels, while an (n, 1) matrix is one channel shared by all rows.
"""

SymbolicDiffusionInput = Union[List[sp.Expr], Tuple[sp.Expr, ...], sp.MatrixBase]
"""
Accepted user input for the diffusion term.
"""

# ============================================================================
# Dictionaries
# ============================================================================

ParameterDict = Dict[sp.Symbol, float]
"""
Numeric parameter values keyed by symbol.
"""

DefaultsDict = Dict[sp.Symbol, Union[float, sp.Expr]]
"""
Default values for states and parameters.

Values may be numbers or expressions of other symbols.
"""

SubstitutionDict = Dict[sp.Symbol, Union[float, sp.Expr]]
"""
Mapping used for ``expr.subs``.
"""

ParameterDependencies = Dict[sp.Symbol, sp.Expr]
"""
Dependent parameter → expression of other parameters.

Examples
--------
>>> k, m, omega = sp.symbols('k m omega')
>>> deps: ParameterDependencies = {omega: sp.sqrt(k / m)}
"""

UnitDict = Dict[sp.Symbol, sp.Expr]
"""
Declared units (``sympy.physics.units`` expressions) keyed by symbol.

Examples
--------
>>> from sympy.physics import units as u
>>> x, t = sp.symbols('x t')
>>> units: UnitDict = {x: u.meter, t: u.second}
"""

# ============================================================================
# Derivative Types
# ============================================================================

SymbolicJacobian = sp.Matrix
"""
Jacobian ∂f/∂x, shape (nx, nx).
"""

SymbolicGradient = sp.Matrix
"""
Gradient (column vector) of a scalar expression.
"""


__all__ = [
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
]
