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
Symbolic Equations and Events

Light containers around SymPy expressions:
- Equation: lhs ~ rhs pair (not ``sp.Eq``, which may evaluate to a bool)
- Differential: ``D = Differential(t); D(x)`` builds an unevaluated derivative
- SymbolicContinuousEvent / SymbolicDiscreteEvent: condition + affect
  descriptors carried by SDESystem and validated for variable consistency

Examples
--------
>>> t, x, y, sigma = sp.symbols('t x y sigma')
>>> D = Differential(t)
>>> eq = Equation(D(x), sigma * (y - x))
>>> eq.lhs
Derivative(x, t)
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Set, Tuple, Union

import sympy as sp


@dataclass(frozen=True)
class Equation:
    """
    Symbolic equation ``lhs ~ rhs``.

    Attributes
    ----------
    lhs : sp.Expr
        Left-hand side (a derivative for drift equations, a new symbol
        for observed equations, a target variable for event affects)
    rhs : sp.Expr
        Right-hand side
    """

    lhs: sp.Expr
    rhs: sp.Expr

    def __post_init__(self):
        object.__setattr__(self, "lhs", sp.sympify(self.lhs))
        object.__setattr__(self, "rhs", sp.sympify(self.rhs))

    @property
    def free_symbols(self) -> Set[sp.Symbol]:
        """Symbols appearing on either side."""
        return self.lhs.free_symbols | self.rhs.free_symbols

    def subs(self, *args, **kwargs) -> "Equation":
        """Substitute on both sides."""
        return Equation(self.lhs.subs(*args, **kwargs), self.rhs.subs(*args, **kwargs))

    def __repr__(self) -> str:
        return f"{self.lhs} ~ {self.rhs}"


class Differential:
    """
    Differential operator with respect to an independent variable.

    Examples
    --------
    >>> t, x = sp.symbols('t x')
    >>> D = Differential(t)
    >>> D(x)
    Derivative(x, t)
    """

    def __init__(self, iv: sp.Symbol):
        self.iv = iv

    def __call__(self, expr) -> sp.Derivative:
        return sp.Derivative(expr, self.iv, evaluate=False)

    def __repr__(self) -> str:
        return f"Differential({self.iv})"


# ============================================================================
# Events
# ============================================================================


@dataclass(frozen=True)
class SymbolicContinuousEvent:
    """
    Event triggered at zero crossings of ``lhs - rhs`` for any condition.

    Attributes
    ----------
    conditions : Tuple[Equation, ...]
        Root-finding conditions
    affects : Tuple[Equation, ...]
        ``var ~ new_value`` assignments applied at the crossing
    """

    conditions: Tuple[Equation, ...]
    affects: Tuple[Equation, ...] = ()

    def equations(self) -> Tuple[Equation, ...]:
        return tuple(self.conditions) + tuple(self.affects)


@dataclass(frozen=True)
class SymbolicDiscreteEvent:
    """
    Event applied at the end of a step whenever ``condition`` holds.

    Attributes
    ----------
    condition : sp.Basic
        Boolean expression, or a time value at which the event fires
    affects : Tuple[Equation, ...]
        ``var ~ new_value`` assignments
    """

    condition: sp.Basic
    affects: Tuple[Equation, ...] = ()

    def equations(self) -> Tuple[Equation, ...]:
        return tuple(self.affects)

    @property
    def free_symbols(self) -> Set[sp.Symbol]:
        symbols = set(sp.sympify(self.condition).free_symbols)
        for eq in self.affects:
            symbols |= eq.free_symbols
        return symbols


EventLike = Union[SymbolicContinuousEvent, SymbolicDiscreteEvent, tuple]


def _as_equations(items) -> Tuple[Equation, ...]:
    if isinstance(items, Equation):
        return (items,)
    return tuple(items)


def normalize_continuous_events(
    events: Optional[Iterable[EventLike]],
) -> Tuple[SymbolicContinuousEvent, ...]:
    """
    Normalize user input into a tuple of continuous events.

    Accepts events or ``(conditions, affects)`` pairs.
    """
    if events is None:
        return ()
    if isinstance(events, SymbolicContinuousEvent):
        return (events,)
    normalized = []
    for event in events:
        if isinstance(event, SymbolicContinuousEvent):
            normalized.append(event)
        else:
            conditions, affects = event
            normalized.append(
                SymbolicContinuousEvent(_as_equations(conditions), _as_equations(affects))
            )
    return tuple(normalized)


def normalize_discrete_events(
    events: Optional[Iterable[EventLike]],
) -> Tuple[SymbolicDiscreteEvent, ...]:
    """
    Normalize user input into a tuple of discrete events.

    Accepts events or ``(condition, affects)`` pairs.
    """
    if events is None:
        return ()
    if isinstance(events, SymbolicDiscreteEvent):
        return (events,)
    normalized = []
    for event in events:
        if isinstance(event, SymbolicDiscreteEvent):
            normalized.append(event)
        else:
            condition, affects = event
            normalized.append(
                SymbolicDiscreteEvent(sp.sympify(condition), _as_equations(affects))
            )
    return tuple(normalized)


def differentiated_variable(lhs: sp.Expr, iv: sp.Symbol) -> Optional[sp.Expr]:
    """
    Return ``x`` if ``lhs`` is ``c * Derivative(x, iv)``, else None.

    Examples
    --------
    >>> t, x = sp.symbols('t x')
    >>> differentiated_variable(Differential(t)(x), t)
    x
    >>> differentiated_variable(sp.Integer(0), t) is None
    True
    """
    derivatives = lhs.atoms(sp.Derivative)
    if len(derivatives) != 1:
        return None
    (derivative,) = derivatives
    if tuple(derivative.variables) != (iv,):
        return None
    return derivative.expr


__all__ = [
    "Equation",
    "Differential",
    "SymbolicContinuousEvent",
    "SymbolicDiscreteEvent",
    "normalize_continuous_events",
    "normalize_discrete_events",
    "differentiated_variable",
]
