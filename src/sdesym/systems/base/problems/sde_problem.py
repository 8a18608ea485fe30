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
SDEProblem - Numeric Problem for External Integrators

Resolves initial conditions and parameter values of a complete SDESystem
and attaches the noise description an integrator needs:

    vector noise, scalar     → ScalarWienerProcess(0, 0, 0), no prototype
    vector noise, diagonal   → no prototype (independent channel per state)
    matrix noise             → noise_rate_prototype (dense zeros, or sparse
                               pattern when ``sparsenoise``)

``SDEProblem.source_from_system`` resolves the same values but returns an
SDEProblemSource holding Python source instead of compiled callables.

Examples
--------
>>> prob = SDEProblem.from_system(
...     complete(lorenz),
...     {x: 1.0, y: 0.0, z: 0.0},
...     (0.0, 10.0),
...     {sigma: 10.0, rho: 28.0, beta: 8 / 3},
... )
>>> prob.f.f(prob.u0, prob.p, 0.0)
array([-10.,  28.,   0.])
>>> prob.noise is None and prob.noise_rate_prototype is None
True
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import sympy as sp

from sdesym.systems.base.core.errors import DimensionError
from sdesym.systems.base.core.sde_system import SDESystem
from sdesym.systems.base.problems.sde_function import SDEFunction
from sdesym.systems.base.utils.codegen_utils import convert_array
from sdesym.systems.base.utils.parameter_handler import ParameterPartition
from sdesym.types.backends import DEFAULT_DTYPE, Backend, ProblemConfig

ValueMap = Union[Mapping, Sequence, np.ndarray, None]


@dataclass(frozen=True)
class ScalarWienerProcess:
    """
    One Wiener process shared by all state components.

    Attributes
    ----------
    t0 : float
        Initial time
    w0 : float
        Initial value of the process
    z0 : float
        Initial value of the auxiliary process
    """

    t0: float = 0.0
    w0: float = 0.0
    z0: float = 0.0


# ============================================================================
# Value Resolution
# ============================================================================


def _to_symbol_map(sys: SDESystem, values: ValueMap, order: Sequence[sp.Symbol]) -> Dict:
    if values is None:
        return {}
    if isinstance(values, Mapping):
        resolved = {}
        for key, value in values.items():
            if isinstance(key, str):
                if key not in sys.var_to_name:
                    raise DimensionError(f"Unknown variable {key!r} in value map")
                key = sys.var_to_name[key]
            resolved[sp.sympify(key)] = value
        return resolved
    values = list(values)
    if len(values) != len(order):
        raise DimensionError(f"Expected {len(order)} values, got {len(values)}")
    return dict(zip(order, values))


def _evaluate(symbols: Sequence[sp.Symbol], varmap: Dict, label: str) -> np.ndarray:
    """
    Numeric values for ``symbols``; symbolic entries are substituted until
    they become numbers.
    """
    known: Dict[sp.Symbol, Any] = {}
    pending = dict(varmap)
    for _ in range(len(pending) + 1):
        progress = False
        for sym, value in list(pending.items()):
            expr = sp.sympify(value).xreplace(known) if isinstance(value, sp.Basic) else value
            if isinstance(expr, sp.Basic) and expr.free_symbols:
                pending[sym] = expr
                continue
            known[sym] = float(expr)
            del pending[sym]
            progress = True
        if not progress:
            break

    missing = [str(s) for s in symbols if s not in known]
    if missing:
        raise DimensionError(f"No numeric value for {label}: {missing}")
    return np.array([known[s] for s in symbols], dtype=DEFAULT_DTYPE)


def _resolve_values(
    sys: SDESystem,
    u0map: ValueMap,
    tspan: Optional[Tuple[float, float]],
    parammap: ValueMap,
    check_length: bool,
) -> Tuple[Tuple[float, float], np.ndarray, np.ndarray, ParameterPartition]:
    """(tspan, u0, p, partition) from the given maps and the system defaults."""
    sys.code_generator.require_complete()

    tspan = tspan if tspan is not None else sys.tspan
    if tspan is None:
        raise ValueError(f"No tspan given and system {sys.name!r} has no default tspan")

    u0_given = _to_symbol_map(sys, u0map, sys.unknowns)
    p_given = _to_symbol_map(sys, parammap, sys.ps)
    if check_length:
        extra = [str(k) for k in u0_given if k not in set(sys.unknowns)]
        if extra:
            raise DimensionError(f"u0map contains non-state entries: {extra}")

    varmap = {sp.sympify(k): v for k, v in sys.defaults.items()}
    varmap.update(p_given)
    varmap.update(u0_given)

    cache = sys.index_cache
    p = _evaluate(sys.ps, varmap, "parameters")
    partition = cache.make_partition(dict(zip(sys.ps, p)))
    for sym, value in zip(cache.dependent, partition.dependent):
        varmap[sym] = float(value)
    u0 = _evaluate(sys.unknowns, varmap, "initial states")
    return tuple(tspan), u0, p, partition


def _noise_setup(sys: SDESystem, sparse: bool, sparsenoise: Optional[bool]):
    """(noise process, noise rate prototype) for the system's diffusion."""
    if sys.noise_is_vector:
        return (ScalarWienerProcess(0.0, 0.0, 0.0) if sys.is_scalar_noise else None), None
    use_sparse = sparse if sparsenoise is None else bool(sparsenoise)
    return None, sys.diffusion_handler.noise_rate_prototype(sparse=use_sparse)


# ============================================================================
# Problem Source
# ============================================================================


@dataclass
class SDEProblemSource:
    """
    Source form of an SDEProblem.

    Holds the Python source of each generated function (see
    ``SDEFunction.source_from_system``) next to the resolved numeric
    values, so the problem can be written out and rebuilt elsewhere.

    Attributes
    ----------
    sources : dict
        Bundle field → function source
    u0 : np.ndarray
        Initial state in ``dvs`` order
    tspan : tuple
        (t0, tf)
    p : np.ndarray
        Parameter values in ``ps`` order
    dvs, ps : tuple
        State and parameter orderings of the emitted functions
    noise : ScalarWienerProcess, optional
    noise_rate_prototype : array or scipy.sparse matrix, optional
    backend : Backend
        Backend the source is written for
    """

    sources: Dict[str, str]
    u0: np.ndarray
    tspan: Tuple[float, float]
    p: np.ndarray
    dvs: Tuple[sp.Symbol, ...]
    ps: Tuple[sp.Symbol, ...]
    noise: Optional[ScalarWienerProcess] = None
    noise_rate_prototype: Any = None
    backend: Backend = "numpy"

    def script(self) -> str:
        """
        One module defining every function plus ``u0``, ``p`` and ``tspan``.

        Run it in ``lambdify_namespace(self.backend)``.
        """
        lines = [f"# states: {', '.join(str(s) for s in self.dvs)}"]
        lines.append(f"# parameters: {', '.join(str(s) for s in self.ps)}")
        lines.extend(self.sources.values())
        lines.append(f"u0 = {self.u0.tolist()!r}")
        lines.append(f"p = {self.p.tolist()!r}")
        lines.append(f"tspan = {tuple(float(t) for t in self.tspan)!r}")
        return "\n".join(lines) + "\n"


# ============================================================================
# SDEProblem
# ============================================================================


@dataclass
class SDEProblem:
    """
    Numeric SDE problem.

    Attributes
    ----------
    f : SDEFunction
        Function bundle
    u0 : array
        Initial state in ``f.dvs`` order
    tspan : tuple
        (t0, tf)
    p : np.ndarray
        Free parameter values in ``f.ps`` order
    noise : ScalarWienerProcess, optional
        Shared noise process for scalar noise
    noise_rate_prototype : array or scipy.sparse matrix, optional
        Noise channel layout for matrix noise
    parameter_partition : ParameterPartition
        Structured parameters (dependent values computed)
    """

    f: SDEFunction
    u0: Any
    tspan: Tuple[float, float]
    p: np.ndarray
    noise: Optional[ScalarWienerProcess] = None
    noise_rate_prototype: Any = None
    parameter_partition: Optional[ParameterPartition] = None
    kwargs: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_system(
        cls,
        sys: SDESystem,
        u0map: ValueMap = None,
        tspan: Optional[Tuple[float, float]] = None,
        parammap: ValueMap = None,
        *,
        sparsenoise: Optional[bool] = None,
        check_length: bool = True,
        backend: Backend = "numpy",
        tgrad: bool = False,
        jac: bool = False,
        Wfact: bool = False,
        sparse: bool = False,
        simplify: bool = False,
        **kwargs,
    ) -> "SDEProblem":
        """
        Build a problem from a complete system.

        Values come from ``u0map`` / ``parammap`` (symbol or name keyed
        mappings, or sequences in declared order) and fall back to the
        system defaults. Defaults may be expressions of other values.
        Dependent parameters are computed from their expressions.

        Parameters
        ----------
        sparsenoise : bool, optional
            Sparse noise-rate prototype for matrix noise. Defaults to ``sparse``
        check_length : bool
            Reject ``u0map`` entries that are not states

        Raises
        ------
        NotCompleteError
            If ``sys`` is not complete
        DimensionError
            If a state or parameter has no value
        ValueError
            If no time span is given and the system has none
        """
        tspan, u0, p, partition = _resolve_values(sys, u0map, tspan, parammap, check_length)

        if backend != "numpy":
            u0 = convert_array(u0, backend=backend)

        fn = SDEFunction.from_system(
            sys,
            u0=u0,
            tgrad=tgrad,
            jac=jac,
            Wfact=Wfact,
            sparse=sparse,
            simplify=simplify,
            backend=backend,
        )

        noise, prototype = _noise_setup(sys, sparse, sparsenoise)
        if isinstance(prototype, np.ndarray) and backend != "numpy":
            prototype = convert_array(prototype, like=u0)

        return cls(
            f=fn,
            u0=u0,
            tspan=tspan,
            p=p,
            noise=noise,
            noise_rate_prototype=prototype,
            parameter_partition=partition,
            kwargs=kwargs,
        )

    @classmethod
    def from_config(
        cls,
        sys: SDESystem,
        u0map: ValueMap,
        tspan: Optional[Tuple[float, float]],
        parammap: ValueMap,
        config: ProblemConfig,
        **kwargs,
    ) -> "SDEProblem":
        """Build a problem from a ProblemConfig dictionary."""
        return cls.from_system(sys, u0map, tspan, parammap, **config, **kwargs)

    @staticmethod
    def source_from_system(
        sys: SDESystem,
        u0map: ValueMap = None,
        tspan: Optional[Tuple[float, float]] = None,
        parammap: ValueMap = None,
        *,
        sparsenoise: Optional[bool] = None,
        check_length: bool = True,
        backend: Backend = "numpy",
        tgrad: bool = False,
        jac: bool = False,
        Wfact: bool = False,
        sparse: bool = False,
        simplify: bool = False,
    ) -> SDEProblemSource:
        """
        Like ``from_system`` but emits function source instead of callables.

        Values are resolved exactly as in ``from_system``.

        Examples
        --------
        >>> src = SDEProblem.source_from_system(complete(lorenz), {x: 1.0, y: 0.0, z: 0.0},
        ...                                     (0.0, 10.0), {sigma: 10.0, rho: 28.0, beta: 8 / 3})
        >>> ns = lambdify_namespace('numpy')
        >>> exec(src.script(), ns)
        >>> ns['drift'](ns['u0'], ns['p'], 0.0)
        [-10.0, 28.0, 0.0]
        """
        tspan, u0, p, _ = _resolve_values(sys, u0map, tspan, parammap, check_length)
        sources = SDEFunction.source_from_system(
            sys,
            tgrad=tgrad,
            jac=jac,
            Wfact=Wfact,
            simplify=simplify,
            backend=backend,
        )
        noise, prototype = _noise_setup(sys, sparse, sparsenoise)
        return SDEProblemSource(
            sources=sources,
            u0=u0,
            tspan=tspan,
            p=p,
            dvs=sys.unknowns,
            ps=sys.ps,
            noise=noise,
            noise_rate_prototype=prototype,
            backend=backend,
        )

    def __repr__(self) -> str:
        noise = "scalar" if self.noise is not None else (
            "matrix" if self.noise_rate_prototype is not None else "diagonal"
        )
        return (
            f"SDEProblem(system={self.f.sys.name!r}, tspan={self.tspan}, "
            f"nx={len(self.u0)}, noise={noise})"
        )


__all__ = [
    "ScalarWienerProcess",
    "SDEProblemSource",
    "SDEProblem",
]
