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
Code Generator for SDESystem

Orchestrates generation and caching of numerical functions from the
symbolic drift of a complete SDESystem.

Manages:
- Drift functions: f(u, p, t) / f(du, u, p, t)
- Jacobian ∂f/∂u, time gradient ∂f/∂t, control Jacobian ∂f/∂c
- Factorized W = M - γJ and W_t = M/γ - J: W(u, p, γ, t) / W(out, u, p, γ, t)
- Observed quantities
- Mass matrix
- Function caching per backend and variable ordering
- Python source of the generated functions (``generate_source``)

Every generated function accepts parameters either as a flat sequence in
the requested parameter order or as a ParameterPartition, which is
flattened through the system's IndexCache.

This class is the high-level orchestrator that uses codegen_utils for
the low-level SymPy → executable code conversion. Diffusion functions are
handled by DiffusionHandler.
"""

from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import sympy as sp

from sdesym.systems.base.core.errors import DimensionError, NotCompleteError, StructuralError
from sdesym.systems.base.utils.codegen_utils import (
    convert_array,
    generate_function_pair,
    generate_source,
)
from sdesym.systems.base.utils.parameter_handler import (
    ParameterPartition,
    resolve_parameter_dependencies,
)
from sdesym.types.backends import VALID_BACKENDS, Backend, validate_backend
from sdesym.types.core import FunctionPair, MassMatrix

if TYPE_CHECKING:
    from sdesym.systems.base.core.sde_system import SDESystem

SymbolOrder = Optional[Sequence[Union[sp.Symbol, str]]]


class CodeGenerator:
    """
    Orchestrates code generation and caching for an SDESystem.

    Example:
        >>> code_gen = CodeGenerator(complete(lorenz))
        >>>
        >>> # Generate drift pair (with caching)
        >>> f, f_iip = code_gen.generate_drift('numpy')
        >>> f_again, _ = code_gen.generate_drift('numpy')  # Returns cached
        >>> assert f is f_again
        >>>
        >>> du = f(np.array([1.0, 2.0, 3.0]), [10.0, 28.0, 8 / 3], 0.0)
    """

    def __init__(self, system: "SDESystem"):
        self.system = system

        # (kind, backend, dvs, ps, simplify) → function pair
        self._cache: Dict[Tuple, Any] = {}

    # ========================================================================
    # Orders and Argument Handling
    # ========================================================================

    def require_complete(self):
        if not self.system.is_complete:
            raise NotCompleteError(
                f"System {self.system.name!r} is not complete. "
                "Call `complete(sys)` before generating code."
            )

    def _resolve_symbol(self, v) -> sp.Symbol:
        if isinstance(v, str):
            try:
                return self.system.var_to_name[v]
            except KeyError:
                raise DimensionError(f"Unknown variable {v!r}") from None
        return sp.sympify(v)

    def resolve_orders(
        self, dvs: SymbolOrder = None, ps: SymbolOrder = None
    ) -> Tuple[Tuple[sp.Symbol, ...], Tuple[sp.Symbol, ...]]:
        """
        Validate state / parameter orderings (defaults: declared orders).

        The parameter order must contain exactly the free parameters, or
        exactly the free and dependent parameters. Dependent parameters
        left out are substituted by their defining expressions.

        Raises
        ------
        DimensionError
            If an ordering is not a permutation of the expected symbols
        """
        sys = self.system
        dvs = sys.unknowns if dvs is None else tuple(self._resolve_symbol(v) for v in dvs)
        ps = sys.ps if ps is None else tuple(self._resolve_symbol(p) for p in ps)

        if len(set(dvs)) != len(dvs) or set(dvs) != set(sys.unknowns):
            raise DimensionError(
                f"State order {list(dvs)} does not match the system states {list(sys.unknowns)}"
            )

        valid_sets = (set(sys.ps), set(sys.full_parameters()))
        if len(set(ps)) != len(ps) or set(ps) not in valid_sets:
            raise DimensionError(
                f"Parameter order {list(ps)} does not match the system parameters "
                f"{list(sys.full_parameters())}"
            )
        return tuple(dvs), tuple(ps)

    def prepare(self, expr, ps: Sequence[sp.Symbol]):
        """Substitute dependent parameters that are not part of ``ps``."""
        resolved = resolve_parameter_dependencies(self.system.parameter_dependencies)
        substitutions = {k: v for k, v in resolved.items() if k not in set(ps)}
        if not substitutions:
            return expr
        if isinstance(expr, sp.MatrixBase):
            return sp.ImmutableMatrix(expr).xreplace(substitutions)
        return [sp.sympify(e).xreplace(substitutions) for e in expr]

    def flatten_parameters(self, p, ps: Sequence[sp.Symbol]):
        """
        Positional parameter values for the generated code.

        Raises
        ------
        DimensionError
            If a flat sequence has the wrong length
        """
        if isinstance(p, ParameterPartition):
            return self.system.index_cache.flatten(p, ps)
        if len(p) != len(ps):
            raise DimensionError(f"Expected {len(ps)} parameter values, got {len(p)}")
        return p

    def _check_state(self, u, dvs):
        if len(u) != len(dvs):
            raise DimensionError(f"Expected state of length {len(dvs)}, got {len(u)}")
        return u

    def _wrap(self, pair, dvs, ps) -> FunctionPair:
        allocating, inplace = pair

        def f(u, p, t):
            return allocating(self._check_state(u, dvs), self.flatten_parameters(p, ps), t)

        def f_iip(out, u, p, t):
            inplace(out, self._check_state(u, dvs), self.flatten_parameters(p, ps), t)

        return f, f_iip

    def _wrap_w(self, pair, dvs, ps) -> FunctionPair:
        allocating, inplace = pair

        def W(u, p, gamma, t):
            return allocating(
                self._check_state(u, dvs), self.flatten_parameters(p, ps), gamma, t
            )

        def W_iip(out, u, p, gamma, t):
            inplace(out, self._check_state(u, dvs), self.flatten_parameters(p, ps), gamma, t)

        return W, W_iip

    def _generate(self, kind: str, expr_fn: Callable, backend, dvs, ps, simplify, **kwargs):
        self.require_complete()
        backend = validate_backend(backend)
        dvs, ps = self.resolve_orders(dvs, ps)

        key = (kind, backend, dvs, ps, simplify)
        if key in self._cache:
            return self._cache[key]

        expr = self.prepare(expr_fn(), ps)
        pair = generate_function_pair(expr, [dvs, ps, self.system.iv], backend, **kwargs)
        wrapped = self._wrap(pair, dvs, ps)
        self._cache[key] = wrapped
        return wrapped

    # ========================================================================
    # Drift and Derivatives
    # ========================================================================

    def generate_drift(
        self, backend: Backend = "numpy", dvs: SymbolOrder = None, ps: SymbolOrder = None, **kwargs
    ) -> FunctionPair:
        """
        Generate (f, f_iip) for the drift.

        Example:
            >>> f, f_iip = code_gen.generate_drift('numpy')
            >>> du = np.zeros(3)
            >>> f_iip(du, u, p, 0.0)
        """
        return self._generate(
            "drift",
            lambda: self.expression("drift"),
            backend,
            dvs,
            ps,
            False,
            **kwargs,
        )

    def generate_jacobian(
        self,
        backend: Backend = "numpy",
        dvs: SymbolOrder = None,
        ps: SymbolOrder = None,
        simplify: bool = False,
        **kwargs,
    ) -> FunctionPair:
        """
        Generate (J, J_iip) for ∂f/∂u, shape (nx, nx).

        Rows follow the drift equations, columns follow ``dvs``.
        """
        return self._generate(
            "jac",
            lambda: self.expression("jac", dvs, simplify),
            backend,
            dvs,
            ps,
            simplify,
            **kwargs,
        )

    def ordered_jacobian(
        self, dvs: SymbolOrder = None, simplify: bool = False
    ) -> sp.ImmutableMatrix:
        """Symbolic ∂f/∂u with columns in ``dvs`` order."""
        jac = self.system.calculate_jacobian(simplify=simplify)
        order = self.resolve_orders(dvs, None)[0]
        if order == self.system.unknowns:
            return jac
        cols = [self.system.unknowns.index(v) for v in order]
        return sp.ImmutableMatrix(jac.extract(list(range(jac.rows)), cols))

    def generate_time_gradient(
        self,
        backend: Backend = "numpy",
        dvs: SymbolOrder = None,
        ps: SymbolOrder = None,
        simplify: bool = False,
        **kwargs,
    ) -> FunctionPair:
        """Generate (tgrad, tgrad_iip) for ∂f/∂t, shape (nx,)."""
        return self._generate(
            "tgrad",
            lambda: self.expression("tgrad", dvs, simplify),
            backend,
            dvs,
            ps,
            simplify,
            **kwargs,
        )

    def generate_control_jacobian(
        self,
        backend: Backend = "numpy",
        dvs: SymbolOrder = None,
        ps: SymbolOrder = None,
        simplify: bool = False,
        **kwargs,
    ) -> FunctionPair:
        """Generate ∂f/∂c for the control parameters, shape (nx, nc)."""
        return self._generate(
            "ctrl_jac",
            lambda: self.expression("ctrl_jac", dvs, simplify),
            backend,
            dvs,
            ps,
            simplify,
            **kwargs,
        )

    def generate_factorized_w(
        self,
        backend: Backend = "numpy",
        dvs: SymbolOrder = None,
        ps: SymbolOrder = None,
        simplify: bool = False,
        **kwargs,
    ) -> Tuple[FunctionPair, FunctionPair]:
        """
        Generate ((W, W_iip), (W_t, W_t_iip)).

        Each function returns the combined LU factors of W = M - γJ or
        W_t = M/γ - J (see ``SDESystem.calculate_factorized_w`` for the
        row permutation). Call convention: W(u, p, γ, t).
        """
        from sdesym.systems.base.core.sde_system import W_GAMMA

        self.require_complete()
        backend = validate_backend(backend)
        dvs, ps = self.resolve_orders(dvs, ps)
        if dvs != self.system.unknowns:
            raise DimensionError("Factorized W is only generated in the declared state order")

        key = ("Wfact", backend, dvs, ps, simplify)
        if key in self._cache:
            return self._cache[key]

        W, W_t = self.system.calculate_factorized_w(simplify=simplify)
        args = [dvs, ps, W_GAMMA, self.system.iv]
        pairs = tuple(
            self._wrap_w(
                generate_function_pair(self.prepare(lu.factors, ps), args, backend, **kwargs),
                dvs,
                ps,
            )
            for lu in (W, W_t)
        )
        self._cache[key] = pairs
        return pairs

    # ========================================================================
    # Symbolic Expressions and Source
    # ========================================================================

    SOURCE_KINDS = ("drift", "jac", "tgrad", "ctrl_jac", "W", "W_t")

    def expression(self, kind: str, dvs: SymbolOrder = None, simplify: bool = False):
        """
        Symbolic expression behind a generated function.

        ``kind`` is one of ``SOURCE_KINDS``. ``W`` and ``W_t`` give the
        combined LU factors of the factorized W matrices.
        """
        sys = self.system
        if kind == "drift":
            return [eq.rhs for eq in sys.eqs]
        if kind == "jac":
            return self.ordered_jacobian(dvs, simplify=simplify)
        if kind == "tgrad":
            return list(sys.calculate_tgrad(simplify=simplify))
        if kind == "ctrl_jac":
            return sys.calculate_control_jacobian(simplify=simplify)
        if kind in ("W", "W_t"):
            W, W_t = sys.calculate_factorized_w(simplify=simplify)
            return (W if kind == "W" else W_t).factors
        raise ValueError(f"Unknown function kind {kind!r}. Choose from {self.SOURCE_KINDS}")

    def generate_source(
        self,
        kind: str = "drift",
        backend: Backend = "numpy",
        dvs: SymbolOrder = None,
        ps: SymbolOrder = None,
        simplify: bool = False,
        name: Optional[str] = None,
    ) -> str:
        """
        Python source of a generated function instead of a callable.

        The emitted function has the raw call convention ``f(u, p, t)``
        (``W(u, p, γ, t)`` for the W kinds) with ``p`` a flat sequence in
        ``ps`` order. Run it in ``lambdify_namespace(backend)``.

        Example:
            >>> src = code_gen.generate_source('jac', name='lorenz_jac')
            >>> ns = lambdify_namespace('numpy')
            >>> exec(src, ns)
            >>> np.asarray(ns['lorenz_jac'](u, p, 0.0)).shape
            (3, 3)
        """
        from sdesym.systems.base.core.sde_system import W_GAMMA

        self.require_complete()
        backend = validate_backend(backend)
        if kind not in self.SOURCE_KINDS:
            raise ValueError(f"Unknown function kind {kind!r}. Choose from {self.SOURCE_KINDS}")
        dvs, ps = self.resolve_orders(dvs, ps)

        args = [dvs, ps, self.system.iv]
        if kind in ("W", "W_t"):
            if dvs != self.system.unknowns:
                raise DimensionError("Factorized W is only generated in the declared state order")
            args = [dvs, ps, W_GAMMA, self.system.iv]

        expr = self.prepare(self.expression(kind, dvs, simplify), ps)
        return generate_source(expr, args, backend, name=name or kind)

    # ========================================================================
    # Observed Quantities
    # ========================================================================

    def observed_substitutions(self) -> Dict[sp.Symbol, sp.Expr]:
        """Observed symbol → expression in states and parameters only."""
        obs = {eq.lhs: eq.rhs for eq in self.system.observed}
        for _ in range(len(obs) + 1):
            changed = False
            for lhs, rhs in obs.items():
                new = rhs.xreplace(obs)
                if new != rhs:
                    obs[lhs] = new
                    changed = True
            if not changed:
                return obs
        raise StructuralError("Cyclic observed equations")

    def generate_observed(
        self,
        exprs,
        backend: Backend = "numpy",
        dvs: SymbolOrder = None,
        ps: SymbolOrder = None,
        **kwargs,
    ) -> Callable:
        """
        Generate obs(u, p, t) for observed symbols or expressions.

        A single expression gives shape (1,), a sequence gives (n,).

        Raises
        ------
        StructuralError
            If an expression refers to symbols outside the system
        """
        self.require_complete()
        backend = validate_backend(backend)
        dvs, ps = self.resolve_orders(dvs, ps)

        single = not isinstance(exprs, (list, tuple))
        items = [exprs] if single else list(exprs)
        items = [self._resolve_symbol(e) if isinstance(e, str) else sp.sympify(e) for e in items]

        obs = self.observed_substitutions()
        resolved = self.prepare([e.xreplace(obs) for e in items], ps)

        allowed = set(dvs) | set(ps) | {self.system.iv}
        unknown = set().union(*(e.free_symbols for e in resolved)) - allowed
        if unknown:
            raise StructuralError(
                f"Observed expressions reference unknown symbols: {sorted(str(s) for s in unknown)}"
            )

        allocating, _ = generate_function_pair(resolved, [dvs, ps, self.system.iv], backend, **kwargs)

        def obs_func(u, p, t):
            return allocating(self._check_state(u, dvs), self.flatten_parameters(p, ps), t)

        return obs_func

    # ========================================================================
    # Mass Matrix
    # ========================================================================

    def mass_matrix(self, u0: Any = None) -> MassMatrix:
        """
        Numeric mass matrix.

        Identity systems return ``np.eye(nx)``. A non-identity matrix is
        converted to the array type, dtype and device of ``u0`` when given.

        Raises
        ------
        StructuralError
            If the mass matrix has symbolic entries
        """
        M = self.system.calculate_massmatrix()
        nx = self.system.nx
        if M == sp.eye(nx):
            return np.eye(nx)
        if M.free_symbols:
            raise StructuralError(
                f"Mass matrix must be numeric, got symbols {sorted(str(s) for s in M.free_symbols)}"
            )
        numeric = np.array(M.tolist(), dtype=np.float64)
        return convert_array(numeric, like=u0) if u0 is not None else numeric

    # ========================================================================
    # Cache Management
    # ========================================================================

    def reset_cache(self, backends: Optional[List[Backend]] = None):
        """
        Clear cached functions for specified backends.

        Args:
            backends: List of backends to reset (None = all)
        """
        if backends is None:
            self._cache.clear()
            return
        for key in [k for k in self._cache if k[1] in backends]:
            del self._cache[key]

    def is_compiled(self, backend: Backend) -> Dict[str, bool]:
        """
        Check which functions are compiled for a backend.

        Example:
            >>> code_gen.is_compiled('numpy')
            {'drift': True, 'jac': False, 'tgrad': False, 'ctrl_jac': False, 'Wfact': False}
        """
        kinds = ("drift", "jac", "tgrad", "ctrl_jac", "Wfact")
        compiled = {k[0] for k in self._cache if k[1] == backend}
        return {kind: kind in compiled for kind in kinds}

    def get_info(self) -> Dict[str, Any]:
        """
        Compilation status for all backends.
        """
        return {backend: self.is_compiled(backend) for backend in VALID_BACKENDS}

    # ========================================================================
    # String Representations
    # ========================================================================

    def __repr__(self) -> str:
        compiled_backends = sorted({k[1] for k in self._cache if k[0] == "drift"})
        return f"CodeGenerator(system={self.system.name!r}, compiled_backends={compiled_backends})"

    def __str__(self) -> str:
        return f"CodeGenerator({len(self._cache)} cached functions)"


# ============================================================================
# Convenience Functions
# ============================================================================


def compile_drift(
    sys: "SDESystem",
    dvs: SymbolOrder = None,
    ps: SymbolOrder = None,
    backend: Backend = "numpy",
    **kwargs,
) -> FunctionPair:
    """
    (allocating, in-place) drift functions of a complete system.

    Raises
    ------
    NotCompleteError
        If ``sys`` is not complete
    DimensionError
        If ``dvs`` / ``ps`` are not permutations of the system's symbols

    Examples
    --------
    >>> f, f_iip = compile_drift(complete(lorenz))
    >>> f(np.array([1.0, 2.0, 3.0]), [10.0, 28.0, 8 / 3], 0.0)
    array([10., 23., -6.])
    """
    return sys.code_generator.generate_drift(backend, dvs, ps, **kwargs)


def compile_jacobian(sys, dvs=None, ps=None, backend: Backend = "numpy", **kwargs) -> FunctionPair:
    return sys.code_generator.generate_jacobian(backend, dvs, ps, **kwargs)


def compile_time_gradient(sys, dvs=None, ps=None, backend: Backend = "numpy", **kwargs) -> FunctionPair:
    return sys.code_generator.generate_time_gradient(backend, dvs, ps, **kwargs)


def compile_control_jacobian(
    sys, dvs=None, ps=None, backend: Backend = "numpy", **kwargs
) -> FunctionPair:
    return sys.code_generator.generate_control_jacobian(backend, dvs, ps, **kwargs)


def compile_factorized_w(
    sys, dvs=None, ps=None, backend: Backend = "numpy", **kwargs
) -> Tuple[FunctionPair, FunctionPair]:
    return sys.code_generator.generate_factorized_w(backend, dvs, ps, **kwargs)


def compile_observed(sys, exprs, dvs=None, ps=None, backend: Backend = "numpy", **kwargs) -> Callable:
    return sys.code_generator.generate_observed(exprs, backend, dvs, ps, **kwargs)


def compile_mass_matrix(sys: "SDESystem", u0: Any = None) -> MassMatrix:
    """
    Mass matrix of a system, restructured like ``u0`` when non-identity.

    Examples
    --------
    >>> compile_mass_matrix(lorenz)
    array([[1., 0., 0.],
           [0., 1., 0.],
           [0., 0., 1.]])
    """
    return sys.code_generator.mass_matrix(u0)


__all__ = [
    "CodeGenerator",
    "compile_drift",
    "compile_jacobian",
    "compile_time_gradient",
    "compile_control_jacobian",
    "compile_factorized_w",
    "compile_observed",
    "compile_mass_matrix",
]
