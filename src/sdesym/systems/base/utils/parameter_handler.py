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
Parameter Handler - Structured Parameters and Index Cache

A complete SDESystem carries an IndexCache describing how its parameters
are laid out in three buffers:

    tunable    free parameters that are not controls
    controls   control parameters
    dependent  parameters computed from the others via parameter_dependencies

A ParameterPartition holds values for those buffers. Generated functions
accept either a flat parameter sequence or a ParameterPartition; the latter
is flattened through the IndexCache into the positional order the generated
code expects.

Examples
--------
>>> a, b, c = sp.symbols('a b c')
>>> cache = IndexCache(tunable=[a, b], dependent={c: 2 * a})
>>> part = cache.make_partition({a: 1.5, b: 3.0})
>>> part.dependent
array([3.])
>>> [float(v) for v in cache.flatten(part, [b, a, c])]
[3.0, 1.5, 3.0]
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import sympy as sp

from sdesym.systems.base.core.errors import DimensionError, StructuralError
from sdesym.types.backends import DEFAULT_DTYPE
from sdesym.types.symbolic import ParameterDependencies

if TYPE_CHECKING:
    from sdesym.systems.base.core.sde_system import SDESystem


# ============================================================================
# Dependency Resolution
# ============================================================================


def resolve_parameter_dependencies(
    dependencies: Optional[ParameterDependencies],
) -> Dict[sp.Symbol, sp.Expr]:
    """
    Rewrite every dependent parameter in terms of free parameters only.

    Raises
    ------
    StructuralError
        If the dependencies are cyclic

    Examples
    --------
    >>> a, b, c = sp.symbols('a b c')
    >>> resolve_parameter_dependencies({b: 2 * a, c: b + 1})
    {b: 2*a, c: 2*a + 1}
    """
    resolved = {sym: sp.sympify(expr) for sym, expr in (dependencies or {}).items()}
    dependents = set(resolved)

    for _ in range(len(resolved) + 1):
        pending = False
        for sym, expr in resolved.items():
            if expr.free_symbols & dependents:
                resolved[sym] = expr.xreplace(resolved)
                pending = True
        if not pending:
            return resolved

    cyclic = sorted(str(s) for s, e in resolved.items() if e.free_symbols & dependents)
    raise StructuralError(f"Cyclic parameter dependencies: {cyclic}")


# ============================================================================
# Parameter Partition
# ============================================================================


@dataclass(frozen=True)
class ParameterPartition:
    """
    Parameter values split into tunable / control / dependent buffers.

    Buffer order follows the owning IndexCache.
    """

    tunable: Any
    controls: Any = ()
    dependent: Any = ()

    def __len__(self) -> int:
        return len(self.tunable) + len(self.controls) + len(self.dependent)


ParameterInput = Union[Sequence, np.ndarray, ParameterPartition]


# ============================================================================
# Index Cache
# ============================================================================


class IndexCache:
    """
    Maps parameters to (buffer, index) positions.

    Built by ``complete``; generated functions use it to flatten a
    ParameterPartition.
    """

    BUFFERS = ("tunable", "controls", "dependent")

    def __init__(
        self,
        tunable: Sequence[sp.Symbol],
        controls: Sequence[sp.Symbol] = (),
        dependent: Optional[ParameterDependencies] = None,
    ):
        self.tunable: Tuple[sp.Symbol, ...] = tuple(tunable)
        self.controls: Tuple[sp.Symbol, ...] = tuple(controls)
        self.dependencies = resolve_parameter_dependencies(dependent)
        self.dependent: Tuple[sp.Symbol, ...] = tuple(self.dependencies)

        self._index: Dict[sp.Symbol, Tuple[str, int]] = {}
        for buffer in self.BUFFERS:
            for i, sym in enumerate(getattr(self, buffer)):
                self._index[sym] = (buffer, i)
        self._by_name: Dict[str, sp.Symbol] = {str(sym): sym for sym in self._index}

        self._dependent_func = None

    @classmethod
    def from_system(cls, system: "SDESystem") -> "IndexCache":
        controls = tuple(system.ctrls)
        tunable = tuple(p for p in system.ps if p not in set(controls))
        return cls(tunable, controls, system.parameter_dependencies)

    @property
    def free(self) -> Tuple[sp.Symbol, ...]:
        """Tunable followed by control parameters."""
        return self.tunable + self.controls

    @property
    def all_parameters(self) -> Tuple[sp.Symbol, ...]:
        return self.tunable + self.controls + self.dependent

    def index_of(self, sym: Union[sp.Symbol, str]) -> Tuple[str, int]:
        """
        (buffer, index) position of a parameter.

        Raises
        ------
        KeyError
            If the parameter is unknown
        """
        if isinstance(sym, str):
            sym = self._by_name[sym]
        return self._index[sym]

    def __contains__(self, sym) -> bool:
        if isinstance(sym, str):
            return sym in self._by_name
        return sym in self._index

    # ========================================================================
    # Partition Construction
    # ========================================================================

    def compute_dependent(self, tunable, controls=()) -> np.ndarray:
        """Evaluate dependent parameters from free parameter values."""
        if not self.dependent:
            return np.zeros(0, dtype=DEFAULT_DTYPE)
        if self._dependent_func is None:
            exprs = [self.dependencies[sym] for sym in self.dependent]
            self._dependent_func = sp.lambdify(list(self.free), exprs, modules="numpy")
        values = list(tunable) + list(controls)
        return np.asarray(self._dependent_func(*values), dtype=DEFAULT_DTYPE)

    def make_partition(self, values: Mapping) -> ParameterPartition:
        """
        Build a ParameterPartition from a symbol (or name) → value map.

        Dependent parameters are always computed; values supplied for them
        are ignored.

        Raises
        ------
        DimensionError
            If a tunable or control parameter has no value
        """
        lookup = {}
        for key, value in values.items():
            sym = self._by_name.get(key) if isinstance(key, str) else key
            if sym is not None:
                lookup[sym] = value

        missing = [str(s) for s in self.free if s not in lookup]
        if missing:
            raise DimensionError(f"No value supplied for parameters: {missing}")

        tunable = np.asarray([lookup[s] for s in self.tunable], dtype=DEFAULT_DTYPE)
        controls = np.asarray([lookup[s] for s in self.controls], dtype=DEFAULT_DTYPE)
        return ParameterPartition(tunable, controls, self.compute_dependent(tunable, controls))

    def partition_from_flat(self, flat: Sequence, order: Sequence[sp.Symbol]) -> ParameterPartition:
        """Build a ParameterPartition from a flat sequence in ``order``."""
        if len(flat) != len(order):
            raise DimensionError(
                f"Expected {len(order)} parameter values, got {len(flat)}"
            )
        return self.make_partition(dict(zip(order, flat)))

    # ========================================================================
    # Flattening
    # ========================================================================

    def flatten(self, partition: ParameterPartition, order: Sequence[sp.Symbol]) -> List:
        """
        Positional parameter values in ``order``.

        Raises
        ------
        DimensionError
            If a buffer has the wrong length or ``order`` names an unknown
            parameter
        """
        for buffer in self.BUFFERS:
            expected = len(getattr(self, buffer))
            got = len(getattr(partition, buffer))
            if expected != got:
                raise DimensionError(
                    f"ParameterPartition.{buffer} has {got} entries, expected {expected}"
                )

        flat = []
        for sym in order:
            if sym not in self._index:
                raise DimensionError(f"Parameter {sym} is not part of this system")
            buffer, i = self._index[sym]
            flat.append(getattr(partition, buffer)[i])
        return flat

    def __repr__(self) -> str:
        return (
            f"IndexCache(tunable={len(self.tunable)}, controls={len(self.controls)}, "
            f"dependent={len(self.dependent)})"
        )


__all__ = [
    "IndexCache",
    "ParameterInput",
    "ParameterPartition",
    "resolve_parameter_dependencies",
]
