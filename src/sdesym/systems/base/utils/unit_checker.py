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
Unit Checker - Dimensional Consistency of SDE Equations

Propagates physical dimensions through SymPy expression trees using
``sympy.physics.units`` (SI dimension system).

Rules:
- Numbers are dimensionless; undeclared symbols are dimensionless
- Sums (and Min/Max/Piecewise branches) require equivalent dimensions
- Products multiply dimensions, powers need dimensionless numeric exponents
- Transcendental functions require dimensionless arguments
- ``Derivative(x, t)`` has dimension [x]/[t]

For every drift equation the left side, right side, and every entry of the
matching diffusion row must share one dimension.
"""

from typing import Dict, List, Optional, Sequence

import sympy as sp
from sympy.physics.units import Dimension, Quantity
from sympy.physics.units.systems.si import SI, dimsys_SI

from sdesym.systems.base.core.equations import Equation
from sdesym.systems.base.core.errors import UnitError
from sdesym.types.symbolic import SymbolicDiffusion, UnitDict

DIMENSIONLESS = Dimension(1)


def unit_dimension(unit_expr) -> Dimension:
    """
    Dimension of a unit expression.

    Examples
    --------
    >>> from sympy.physics import units as u
    >>> unit_dimension(u.meter / u.second)
    Dimension(length/time)
    """
    return Dimension(SI.get_dimensional_expr(sp.sympify(unit_expr)))


class UnitChecker:
    """
    Dimension propagation over SymPy expressions.

    Examples
    --------
    >>> from sympy.physics import units as u
    >>> x, t = sp.symbols('x t')
    >>> checker = UnitChecker({x: u.meter, t: u.second})
    >>> checker.dimension_of(x / t)
    Dimension(length/time)
    """

    def __init__(self, units: Optional[UnitDict] = None):
        self.units = dict(units or {})
        self._dims: Dict[sp.Symbol, Dimension] = {
            sym: unit_dimension(unit) for sym, unit in self.units.items()
        }

    @staticmethod
    def equivalent(a: Dimension, b: Dimension) -> bool:
        return bool(dimsys_SI.equivalent_dims(a, b))

    @staticmethod
    def is_dimensionless(dim: Dimension) -> bool:
        return bool(dimsys_SI.is_dimensionless(dim))

    # ========================================================================
    # Dimension Propagation
    # ========================================================================

    def dimension_of(self, expr) -> Dimension:
        """
        Dimension of ``expr``.

        Raises
        ------
        UnitError
            If the expression itself is dimensionally inconsistent
        """
        expr = sp.sympify(expr)

        if isinstance(expr, Quantity):
            return unit_dimension(expr)
        if expr.is_Number or expr.is_NumberSymbol:
            return DIMENSIONLESS
        if expr.is_Symbol:
            return self._dims.get(expr, DIMENSIONLESS)

        if isinstance(expr, sp.Derivative):
            dim = self.dimension_of(expr.expr)
            for var, count in expr.variable_count:
                dim = dim / self.dimension_of(var) ** count
            return dim

        if expr.is_Add or isinstance(expr, (sp.Min, sp.Max)):
            return self._common_dimension(expr, expr.args)

        if isinstance(expr, sp.Piecewise):
            return self._common_dimension(expr, [branch for branch, _ in expr.args])

        if expr.is_Mul:
            dim = DIMENSIONLESS
            for arg in expr.args:
                dim = dim * self.dimension_of(arg)
            return dim

        if expr.is_Pow:
            base_dim = self.dimension_of(expr.base)
            exp_dim = self.dimension_of(expr.exp)
            if not self.is_dimensionless(exp_dim):
                raise UnitError(f"Exponent of {expr} must be dimensionless, got {exp_dim}")
            if self.is_dimensionless(base_dim):
                return DIMENSIONLESS
            if not expr.exp.is_Number:
                raise UnitError(
                    f"Dimensioned base {expr.base} raised to a symbolic power in {expr}"
                )
            return base_dim**expr.exp

        if isinstance(expr, (sp.Abs, sp.sign)):
            inner = self.dimension_of(expr.args[0])
            return inner if isinstance(expr, sp.Abs) else DIMENSIONLESS

        # Transcendental and other functions
        for arg in expr.args:
            arg_dim = self.dimension_of(arg)
            if not self.is_dimensionless(arg_dim):
                raise UnitError(
                    f"Argument {arg} of {expr.func} must be dimensionless, got {arg_dim}"
                )
        return DIMENSIONLESS

    def _common_dimension(self, expr, terms) -> Dimension:
        dims = [self.dimension_of(term) for term in terms]
        first = dims[0]
        for term, dim in zip(terms[1:], dims[1:]):
            if not self.equivalent(first, dim):
                raise UnitError(
                    f"Inconsistent units in {expr}: {terms[0]} has {first}, {term} has {dim}"
                )
        return first

    # ========================================================================
    # Equation Checks
    # ========================================================================

    def check_equations(
        self,
        eqs: Sequence[Equation],
        noise_eqs: Optional[SymbolicDiffusion] = None,
    ):
        """
        Check each drift equation (and its diffusion row) for consistency.

        Raises
        ------
        UnitError
            Listing every inconsistent equation
        """
        errors: List[str] = []

        for i, eq in enumerate(eqs):
            terms = [("left", eq.lhs), ("right", eq.rhs)]
            if noise_eqs is not None:
                terms.extend(("noise", expr) for expr in self._noise_row(noise_eqs, i))
            # a literal zero is compatible with any unit
            terms = [(label, expr) for label, expr in terms if expr != 0]

            try:
                dims = [(label, expr, self.dimension_of(expr)) for label, expr in terms]
            except UnitError as e:
                errors.append(f"Equation {i} ({eq}): {e}")
                continue

            if len(dims) < 2:
                continue
            ref_label, ref_expr, ref_dim = dims[0]
            for label, expr, dim in dims[1:]:
                if not self.equivalent(ref_dim, dim):
                    errors.append(
                        f"Equation {i} ({eq}): {ref_label} side has units {ref_dim} "
                        f"but {label} term {expr} has units {dim}"
                    )

        if errors:
            raise UnitError("Unit check failed:\n" + "\n".join(f"  • {e}" for e in errors))

    @staticmethod
    def _noise_row(noise_eqs: SymbolicDiffusion, i: int):
        if isinstance(noise_eqs, sp.MatrixBase):
            if i >= noise_eqs.shape[0]:
                return []
            return [e for e in noise_eqs.row(i) if e != 0]
        if i >= len(noise_eqs):
            return []
        entry = sp.sympify(noise_eqs[i])
        return [] if entry == 0 else [entry]

    def __repr__(self) -> str:
        return f"UnitChecker(declared={len(self.units)})"


def check_units(
    units: Optional[UnitDict],
    eqs: Sequence[Equation],
    noise_eqs: Optional[SymbolicDiffusion] = None,
):
    """
    Check equation units if any units are declared.

    Systems without declared units are treated as unit-less and pass.
    """
    if not units:
        return
    UnitChecker(units).check_equations(eqs, noise_eqs)


__all__ = [
    "DIMENSIONLESS",
    "UnitChecker",
    "check_units",
    "unit_dimension",
]
