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
SDESystem - Symbolic Stochastic Differential Equation System

Represents

    M dx = f(x, p, t) dt + g(x, p, t) dW

symbolically, together with the metadata needed to transform and compile it.

Key Features:
- Validated at construction (structure, closed-world symbols, units)
- Immutable after construction; transforms return new systems
- Process-wide identity tags for fast equality
- Lazily cached symbolic derivatives (tgrad, jacobian, control jacobian,
  factorized W)
- Namespaced member access until the system is completed

Mathematical Form:
    Drift equations:   lhs_i ~ f_i(x, p, t),  lhs_i = c * D(x_i) or 0
    Diffusion term:    vector g (diagonal or scalar noise) or matrix G (nx, nw)

Examples
--------
>>> t, x, y, z = sp.symbols('t x y z')
>>> sigma, rho, beta = sp.symbols('sigma rho beta')
>>> D = Differential(t)
>>> eqs = [
...     Equation(D(x), sigma * (y - x)),
...     Equation(D(y), x * (rho - z) - y),
...     Equation(D(z), x * y - beta * z),
... ]
>>> lorenz = SDESystem(
...     eqs, [0.1 * x, 0.1 * y, 0.1 * z], t, [x, y, z], [sigma, rho, beta],
...     name="lorenz",
... )
>>> lorenz.x
lorenz.x
>>> complete(lorenz).x
x
"""

import itertools
import threading
import warnings
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, NamedTuple, Optional, Sequence, Tuple

import sympy as sp

from sdesym.systems.base.core.equations import (
    Differential,
    Equation,
    normalize_continuous_events,
    normalize_discrete_events,
)
from sdesym.systems.base.core.errors import StructuralError
from sdesym.systems.base.utils.parameter_handler import IndexCache
from sdesym.systems.base.utils.stochastic.noise_analysis import (
    NoiseCharacteristics,
    NoiseCharacterizer,
    diffusion_as_matrix,
)
from sdesym.systems.base.utils.stochastic.sde_validator import (
    SDEValidator,
    check_subsystem_names,
)
from sdesym.systems.base.utils.unit_checker import check_units
from sdesym.types.backends import CheckFlags, ChecksLike, normalize_checks
from sdesym.types.symbolic import (
    DefaultsDict,
    ParameterDependencies,
    SymbolDict,
    SymbolicDiffusion,
    SymbolicDiffusionInput,
    SymbolicJacobian,
    UnitDict,
)

NAMESPACE_SEPARATOR = "."

W_GAMMA = sp.Dummy("gamma")
"""Step-size symbol γ appearing in W = M - γJ and W_t = M/γ - J."""


# ============================================================================
# Identity Tags
# ============================================================================

_tag_lock = threading.Lock()
_tag_counter = itertools.count(1)


def next_tag() -> int:
    """Fetch-and-increment the process-wide system tag counter."""
    with _tag_lock:
        return next(_tag_counter)


# ============================================================================
# Cached Cells
# ============================================================================


class CachedCell:
    """
    Write-once cell for a lazily computed value.

    The computation is a pure function of immutable inputs, so concurrent
    first accesses may both compute; whichever write lands first is kept.
    """

    __slots__ = ("_value", "_is_set")

    def __init__(self):
        self._value = None
        self._is_set = False

    @property
    def is_set(self) -> bool:
        return self._is_set

    def get(self, compute: Callable[[], Any]) -> Any:
        if not self._is_set:
            value = compute()
            if not self._is_set:
                self._value = value
                self._is_set = True
        return self._value

    def __repr__(self) -> str:
        return f"CachedCell(set={self._is_set})"


class LUFactors(NamedTuple):
    """
    Symbolic LU factorization of a square matrix.

    ``factors`` stores L (unit diagonal, strictly below the diagonal) and U
    (on and above the diagonal) in one matrix; ``perm`` lists the row swaps
    applied before factorization.
    """

    factors: sp.ImmutableMatrix
    perm: Tuple[Tuple[int, int], ...]


def _symbolic_lu(mat: sp.MatrixBase) -> LUFactors:
    combined, perm = sp.Matrix(mat).LUdecomposition_Simple(iszerofunc=lambda e: e == 0)
    return LUFactors(sp.ImmutableMatrix(combined), tuple(tuple(p) for p in perm))


# ============================================================================
# Input Normalization
# ============================================================================


def _normalize_noise(noise_eqs: SymbolicDiffusionInput) -> SymbolicDiffusion:
    """Tuple for vector noise, ImmutableMatrix for matrix noise."""
    if isinstance(noise_eqs, sp.MatrixBase):
        return sp.ImmutableMatrix(noise_eqs)
    if getattr(noise_eqs, "ndim", 1) == 2:
        return sp.ImmutableMatrix(noise_eqs.tolist())
    items = list(noise_eqs)
    if items and isinstance(items[0], (list, tuple)):
        return sp.ImmutableMatrix(items)
    return tuple(sp.sympify(e) for e in items)


def _normalize_drift(eqs, iv: sp.Symbol, unknowns: Tuple[sp.Symbol, ...]) -> Tuple[Equation, ...]:
    """Accept Equations, or right-hand sides paired with D(state_i)."""
    if isinstance(eqs, sp.MatrixBase):
        eqs = list(eqs)
    eqs = list(eqs)
    if all(isinstance(eq, Equation) for eq in eqs):
        return tuple(eqs)
    if any(isinstance(eq, Equation) for eq in eqs):
        raise StructuralError("Drift equations must be all Equations or all right-hand sides")
    if len(eqs) != len(unknowns):
        raise StructuralError(
            f"Number of drift right-hand sides ({len(eqs)}) must match "
            f"number of states ({len(unknowns)})"
        )
    D = Differential(iv)
    return tuple(Equation(D(x), rhs) for x, rhs in zip(unknowns, eqs))


def _mass_coefficient(lhs: sp.Expr, derivative: sp.Derivative) -> sp.Expr:
    if lhs == derivative:
        return sp.Integer(1)
    return sp.expand(lhs).coeff(derivative)


# ============================================================================
# SDESystem
# ============================================================================


class SDESystem:
    """
    Symbolic SDE system.

    Parameters
    ----------
    eqs : Sequence[Equation] or Sequence[sp.Expr]
        Drift equations ``D(x_i) ~ f_i``. A plain sequence (or column
        Matrix) of right-hand sides is paired in order with ``D(x_i)``.
    noise_eqs : list, tuple, or sp.Matrix
        Diffusion term. Lists/tuples are vector noise (diagonal, or scalar
        when ``is_scalar_noise``); matrices are general noise of shape
        (nx, nw).
    iv : sp.Symbol
        Independent variable (time)
    unknowns : Sequence[sp.Symbol]
        State variables
    ps : Sequence[sp.Symbol]
        Parameters. Entries of ``parameter_dependencies`` are moved out of
        ``ps`` and reported by ``full_parameters()``.
    name : str
        System name (required)
    controls : Sequence[sp.Symbol]
        Parameters marked as controls (added to ``ps`` if missing)
    observed : Sequence[Equation]
        ``new_symbol ~ expr`` equations for derived quantities
    systems : Sequence[SDESystem]
        Subsystems with pairwise unique names
    tspan : tuple, optional
        (t0, tf)
    defaults : dict, optional
        Default values for states and parameters
    continuous_events, discrete_events : optional
        Event descriptors or ``(condition, affects)`` pairs
    parameter_dependencies : dict, optional
        Dependent parameter → expression of other parameters
    units : dict, optional
        Symbol → ``sympy.physics.units`` unit
    checks : bool or CheckFlags
        Validation to run (default: all)
    tag : int, optional
        Identity tag; fresh from the process-wide counter if omitted

    Raises
    ------
    StructuralError
        Structural or closed-world violations, duplicate subsystem names,
        missing name
    UnitError
        Dimensionally inconsistent equations (unit checking enabled)
    """

    def __init__(
        self,
        eqs,
        noise_eqs: SymbolicDiffusionInput,
        iv: sp.Symbol,
        unknowns: Sequence[sp.Symbol],
        ps: Sequence[sp.Symbol],
        *,
        name: Optional[str] = None,
        controls: Sequence[sp.Symbol] = (),
        observed: Sequence[Equation] = (),
        systems: Sequence["SDESystem"] = (),
        tspan: Optional[Tuple[Any, Any]] = None,
        defaults: Optional[DefaultsDict] = None,
        continuous_events=None,
        discrete_events=None,
        parameter_dependencies: Optional[ParameterDependencies] = None,
        units: Optional[UnitDict] = None,
        metadata: Any = None,
        connector_type: Any = None,
        complete: bool = False,
        index_cache: Optional[IndexCache] = None,
        parent: Any = None,
        is_scalar_noise: bool = False,
        checks: ChecksLike = True,
        tag: Optional[int] = None,
        default_u0: Optional[DefaultsDict] = None,
        default_p: Optional[DefaultsDict] = None,
    ):
        if not name:
            raise StructuralError("SDESystem requires a name")
        if NAMESPACE_SEPARATOR in name:
            raise StructuralError(
                f"System name {name!r} must not contain {NAMESPACE_SEPARATOR!r}"
            )

        iv = sp.sympify(iv)
        unknowns = tuple(sp.sympify(x) for x in unknowns)
        dependencies = {
            sp.sympify(k): sp.sympify(v) for k, v in (parameter_dependencies or {}).items()
        }
        ctrls = tuple(sp.sympify(c) for c in controls)
        ps = tuple(sp.sympify(p) for p in ps)
        ps = ps + tuple(c for c in ctrls if c not in ps)
        ps = tuple(p for p in ps if p not in dependencies)

        defaults = dict(defaults or {})
        for label, extra in (("default_u0", default_u0), ("default_p", default_p)):
            if extra is not None:
                warnings.warn(
                    f"`{label}` is deprecated. Use `defaults` instead.",
                    DeprecationWarning,
                    stacklevel=2,
                )
                for key, value in dict(extra).items():
                    defaults.setdefault(key, value)

        eqs = _normalize_drift(eqs, iv, unknowns)
        noise_eqs = _normalize_noise(noise_eqs)
        observed = tuple(observed)
        systems = tuple(systems)
        cont_events = normalize_continuous_events(continuous_events)
        disc_events = normalize_discrete_events(discrete_events)

        flags = normalize_checks(checks)
        if flags & CheckFlags.COMPONENTS:
            SDEValidator(
                eqs,
                noise_eqs,
                iv,
                unknowns,
                ps,
                dependent_ps=tuple(dependencies),
                continuous_events=cont_events,
                discrete_events=disc_events,
                is_scalar_noise=is_scalar_noise,
            ).validate(raise_on_error=True)
        check_subsystem_names([s.name for s in systems])
        if flags & CheckFlags.UNITS:
            check_units(units, eqs, noise_eqs)

        var_to_name: SymbolDict = {}
        for sym in unknowns + ps + tuple(dependencies):
            var_to_name[str(sym)] = sym
        for eq in observed:
            if isinstance(eq.lhs, sp.Symbol):
                var_to_name[eq.lhs.name] = eq.lhs
        for key in defaults:
            if isinstance(key, sp.Symbol):
                var_to_name.setdefault(key.name, key)

        fields = {
            "_tag": next_tag() if tag is None else tag,
            "_name": name,
            "_eqs": eqs,
            "_noise_eqs": noise_eqs,
            "_iv": iv,
            "_unknowns": unknowns,
            "_ps": ps,
            "_ctrls": ctrls,
            "_tspan": tuple(tspan) if tspan is not None else None,
            "_observed": observed,
            "_parameter_dependencies": MappingProxyType(dependencies),
            "_continuous_events": cont_events,
            "_discrete_events": disc_events,
            "_defaults": MappingProxyType(defaults),
            "_units": MappingProxyType(dict(units or {})),
            "_metadata": metadata,
            "_connector_type": connector_type,
            "_is_complete": bool(complete),
            "_systems": systems,
            "_index_cache": index_cache,
            "_parent": parent,
            "_is_scalar_noise": bool(is_scalar_noise),
            "_var_to_name": MappingProxyType(var_to_name),
            # cached derived fields
            "_tgrad": CachedCell(),
            "_jac": CachedCell(),
            "_ctrl_jac": CachedCell(),
            "_Wfact": CachedCell(),
            "_Wfact_t": CachedCell(),
            "_massmatrix": CachedCell(),
            "_codegen": CachedCell(),
            "_diffusion_handler": CachedCell(),
        }
        for key, value in fields.items():
            object.__setattr__(self, key, value)

    # ========================================================================
    # Alternative Constructors
    # ========================================================================

    @classmethod
    def from_drift(cls, drift_system: Any, noise_eqs: SymbolicDiffusionInput, **kwargs) -> "SDESystem":
        """
        Build an SDESystem from an existing drift-only system.

        ``drift_system`` needs ``eqs`` (or ``equations``), ``iv``,
        ``unknowns`` and ``ps`` (or ``parameters``); ``name``, ``observed``,
        ``defaults``, ``tspan``, ``parameter_dependencies`` and ``ctrls``
        are carried when present. Keyword arguments override.

        Examples
        --------
        >>> noisy = SDESystem.from_drift(lorenz, [0.3 * x, 0.3 * y, 0.3 * z])
        """

        def attr(*names, default=None):
            for n in names:
                if hasattr(drift_system, n):
                    value = getattr(drift_system, n)
                    return value() if callable(value) else value
            return default

        carried = {
            "name": attr("name"),
            "controls": attr("ctrls", "controls", default=()),
            "observed": attr("observed", default=()),
            "tspan": attr("tspan"),
            "defaults": dict(attr("defaults", default={}) or {}),
            "parameter_dependencies": dict(attr("parameter_dependencies", default={}) or {}),
            "metadata": attr("metadata"),
        }
        carried.update(kwargs)

        ps = tuple(attr("ps", "parameters", default=()))
        return cls(
            attr("eqs", "equations"),
            noise_eqs,
            attr("iv"),
            attr("unknowns"),
            ps,
            **carried,
        )

    def _replace(self, **changes) -> "SDESystem":
        """Copy with some constructor arguments replaced (no checks, keeps tag)."""
        kwargs = dict(
            eqs=self._eqs,
            noise_eqs=self._noise_eqs,
            iv=self._iv,
            unknowns=self._unknowns,
            ps=self._ps,
            name=self._name,
            controls=self._ctrls,
            observed=self._observed,
            systems=self._systems,
            tspan=self._tspan,
            defaults=dict(self._defaults),
            continuous_events=self._continuous_events,
            discrete_events=self._discrete_events,
            parameter_dependencies=dict(self._parameter_dependencies),
            units=dict(self._units),
            metadata=self._metadata,
            connector_type=self._connector_type,
            complete=self._is_complete,
            index_cache=self._index_cache,
            parent=self._parent,
            is_scalar_noise=self._is_scalar_noise,
            checks=False,
            tag=self._tag,
        )
        kwargs.update(changes)
        eqs = kwargs.pop("eqs")
        noise_eqs = kwargs.pop("noise_eqs")
        iv = kwargs.pop("iv")
        unknowns = kwargs.pop("unknowns")
        ps = kwargs.pop("ps")
        return SDESystem(eqs, noise_eqs, iv, unknowns, ps, **kwargs)

    # ========================================================================
    # Immutability
    # ========================================================================

    def __setattr__(self, key, value):
        raise AttributeError(f"SDESystem is immutable (cannot set {key!r})")

    def __delattr__(self, key):
        raise AttributeError(f"SDESystem is immutable (cannot delete {key!r})")

    # ========================================================================
    # Fields
    # ========================================================================

    @property
    def tag(self) -> int:
        return self._tag

    @property
    def name(self) -> str:
        return self._name

    @property
    def eqs(self) -> Tuple[Equation, ...]:
        return self._eqs

    @property
    def noise_eqs(self) -> SymbolicDiffusion:
        return self._noise_eqs

    @property
    def iv(self) -> sp.Symbol:
        return self._iv

    @property
    def unknowns(self) -> Tuple[sp.Symbol, ...]:
        return self._unknowns

    @property
    def ps(self) -> Tuple[sp.Symbol, ...]:
        return self._ps

    @property
    def ctrls(self) -> Tuple[sp.Symbol, ...]:
        return self._ctrls

    @property
    def tspan(self) -> Optional[Tuple[Any, Any]]:
        return self._tspan

    @property
    def observed(self) -> Tuple[Equation, ...]:
        return self._observed

    @property
    def parameter_dependencies(self) -> Mapping[sp.Symbol, sp.Expr]:
        return self._parameter_dependencies

    @property
    def continuous_events(self):
        return self._continuous_events

    @property
    def discrete_events(self):
        return self._discrete_events

    @property
    def defaults(self) -> Mapping:
        return self._defaults

    @property
    def units(self) -> Mapping:
        return self._units

    @property
    def metadata(self) -> Any:
        return self._metadata

    @property
    def connector_type(self) -> Any:
        return self._connector_type

    @property
    def is_complete(self) -> bool:
        return self._is_complete

    @property
    def systems(self) -> Tuple["SDESystem", ...]:
        return self._systems

    @property
    def index_cache(self) -> Optional[IndexCache]:
        return self._index_cache

    @property
    def parent(self) -> Any:
        return self._parent

    @property
    def is_scalar_noise(self) -> bool:
        return self._is_scalar_noise

    @property
    def var_to_name(self) -> Mapping[str, sp.Symbol]:
        return self._var_to_name

    @property
    def nx(self) -> int:
        return len(self._unknowns)

    @property
    def nw(self) -> int:
        """Number of independent noise channels."""
        if isinstance(self._noise_eqs, sp.MatrixBase):
            return self._noise_eqs.shape[1]
        return 1 if self._is_scalar_noise else len(self._noise_eqs)

    @property
    def noise_is_vector(self) -> bool:
        return not isinstance(self._noise_eqs, sp.MatrixBase)

    def full_parameters(self) -> Tuple[sp.Symbol, ...]:
        """Free parameters followed by dependent parameters."""
        return self._ps + tuple(self._parameter_dependencies)

    def drift_rhs(self) -> sp.ImmutableMatrix:
        """Column of drift right-hand sides."""
        return sp.ImmutableMatrix([eq.rhs for eq in self._eqs])

    def noise_matrix(self) -> sp.Matrix:
        """Diffusion term as a full (nx, nw) matrix."""
        return diffusion_as_matrix(self._noise_eqs, self._is_scalar_noise)

    @property
    def noise_characteristics(self) -> NoiseCharacteristics:
        return NoiseCharacterizer(
            self._noise_eqs, list(self._unknowns), self._is_scalar_noise
        ).characteristics

    # ========================================================================
    # Namespaced Access
    # ========================================================================

    def getvar(self, name: str, namespace: bool = True):
        """
        Look up a member symbol or subsystem by name.

        Dotted names descend into subsystems. Symbols are namespaced with
        the system path while the system is not complete.

        Raises
        ------
        AttributeError
            If nothing with that name exists
        """
        head, _, rest = name.partition(NAMESPACE_SEPARATOR)
        for sub in self._systems:
            if sub.name == head:
                if not rest:
                    return sub
                found = sub.getvar(rest, namespace=namespace)
                if isinstance(found, sp.Symbol) and namespace and not self._is_complete:
                    return self._namespaced(found)
                return found

        sym = self._var_to_name.get(name)
        if sym is None:
            raise AttributeError(f"System {self._name!r} has no variable {name!r}")
        if namespace and not self._is_complete:
            return self._namespaced(sym)
        return sym

    def _namespaced(self, sym: sp.Symbol) -> sp.Symbol:
        return sp.Symbol(f"{self._name}{NAMESPACE_SEPARATOR}{sym.name}", **sym.assumptions0)

    def __getattr__(self, name: str):
        if name.startswith("_"):
            raise AttributeError(name)
        return self.getvar(name)

    def __getitem__(self, name: str):
        try:
            return self.getvar(name)
        except AttributeError as e:
            raise KeyError(name) from e

    # ========================================================================
    # Cached Derived Fields
    # ========================================================================

    def calculate_tgrad(self, simplify: bool = False) -> sp.ImmutableMatrix:
        """∂f/∂t (column, cached)."""
        tgrad = self._tgrad.get(lambda: sp.ImmutableMatrix(self.drift_rhs().diff(self._iv)))
        return sp.ImmutableMatrix(sp.simplify(tgrad)) if simplify else tgrad

    def calculate_jacobian(self, simplify: bool = False) -> SymbolicJacobian:
        """∂f/∂x, shape (nx, nx) (cached)."""
        jac = self._jac.get(
            lambda: sp.ImmutableMatrix(self.drift_rhs().jacobian(list(self._unknowns)))
        )
        return sp.ImmutableMatrix(sp.simplify(jac)) if simplify else jac

    def calculate_control_jacobian(self, simplify: bool = False) -> SymbolicJacobian:
        """∂f/∂c with respect to control parameters, shape (nx, nc) (cached)."""

        def compute():
            if not self._ctrls:
                return sp.ImmutableMatrix(sp.zeros(len(self._eqs), 0))
            return sp.ImmutableMatrix(self.drift_rhs().jacobian(list(self._ctrls)))

        ctrl_jac = self._ctrl_jac.get(compute)
        return sp.ImmutableMatrix(sp.simplify(ctrl_jac)) if simplify else ctrl_jac

    def calculate_massmatrix(self) -> sp.ImmutableMatrix:
        """
        Mass matrix M: entry (i, j) is the coefficient of D(x_j) in lhs_i.

        Algebraic rows (lhs == 0) give zero rows.
        """

        def compute():
            D = Differential(self._iv)
            derivatives = [D(x) for x in self._unknowns]
            rows = [
                [_mass_coefficient(eq.lhs, d) for d in derivatives] for eq in self._eqs
            ]
            return sp.ImmutableMatrix(rows)

        return self._massmatrix.get(compute)

    def calculate_factorized_w(self, simplify: bool = False) -> Tuple[LUFactors, LUFactors]:
        """
        LU factors of W = M - γJ and W_t = M/γ - J.

        γ is ``W_GAMMA``. Only the unsimplified factors are cached;
        ``simplify=True`` factors the simplified Jacobian on every call.
        """
        M = self.calculate_massmatrix()
        if simplify:
            J = self.calculate_jacobian(simplify=True)
            return _symbolic_lu(M - W_GAMMA * J), _symbolic_lu(M / W_GAMMA - J)

        J = self.calculate_jacobian()
        W = self._Wfact.get(lambda: _symbolic_lu(M - W_GAMMA * J))
        W_t = self._Wfact_t.get(lambda: _symbolic_lu(M / W_GAMMA - J))
        return W, W_t

    def cache_status(self) -> Dict[str, bool]:
        """Which cached derived fields are populated."""
        return {
            "tgrad": self._tgrad.is_set,
            "jac": self._jac.is_set,
            "ctrl_jac": self._ctrl_jac.is_set,
            "Wfact": self._Wfact.is_set,
            "Wfact_t": self._Wfact_t.is_set,
        }

    @property
    def code_generator(self):
        """Per-system CodeGenerator (created on first access)."""
        from sdesym.systems.base.utils.code_generator import CodeGenerator

        return self._codegen.get(lambda: CodeGenerator(self))

    @property
    def diffusion_handler(self):
        """Per-system DiffusionHandler (created on first access)."""
        from sdesym.systems.base.utils.stochastic.diffusion_handler import DiffusionHandler

        return self._diffusion_handler.get(lambda: DiffusionHandler(self))

    # ========================================================================
    # Equality
    # ========================================================================

    def __eq__(self, other) -> bool:
        if self is other:
            return True
        if not isinstance(other, SDESystem):
            return NotImplemented
        if self._tag == other._tag and self._name == other._name:
            # copies made by complete() share a tag
            return True
        return (
            self._iv == other._iv
            and self._name == other._name
            and self._eqs == other._eqs
            and type(self._noise_eqs) is type(other._noise_eqs)
            and self._noise_eqs == other._noise_eqs
            and self._is_scalar_noise == other._is_scalar_noise
            and set(self._unknowns) == set(other._unknowns)
            and set(self.full_parameters()) == set(other.full_parameters())
            and len(self._systems) == len(other._systems)
            and all(a == b for a, b in zip(self._systems, other._systems))
        )

    def __hash__(self) -> int:
        return hash((self._name, self._iv))

    # ========================================================================
    # String Representations
    # ========================================================================

    def __repr__(self) -> str:
        return (
            f"SDESystem(name={self._name!r}, nx={self.nx}, nw={self.nw}, "
            f"np={len(self.full_parameters())}, complete={self._is_complete})"
        )

    def __str__(self) -> str:
        lines = [f"SDESystem {self._name!r}"]
        lines.append(f"  Drift ({len(self._eqs)} equations):")
        lines.extend(f"    {eq}" for eq in self._eqs)
        if isinstance(self._noise_eqs, sp.MatrixBase):
            lines.append(f"  Diffusion matrix {self._noise_eqs.shape}:")
            lines.extend(f"    {list(self._noise_eqs.row(i))}" for i in range(self._noise_eqs.shape[0]))
        else:
            kind = "scalar" if self._is_scalar_noise else "diagonal"
            lines.append(f"  Diffusion ({kind}): {list(self._noise_eqs)}")
        lines.append(f"  States: {list(self._unknowns)}")
        lines.append(f"  Parameters: {list(self.full_parameters())}")
        return "\n".join(lines)


# ============================================================================
# Completion
# ============================================================================


def complete(sys: SDESystem) -> SDESystem:
    """
    Mark a system complete.

    Completion is one-way: the returned copy keeps the tag, stops
    namespacing member symbols and carries an IndexCache for structured
    parameters. Already complete systems are returned unchanged.
    """
    if sys.is_complete:
        return sys
    return sys._replace(complete=True, index_cache=IndexCache.from_system(sys))


__all__ = [
    "SDESystem",
    "CachedCell",
    "LUFactors",
    "W_GAMMA",
    "NAMESPACE_SEPARATOR",
    "complete",
    "next_tag",
]
