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
SDEFunction - Function Bundle for External Integrators

Packages the generated drift, diffusion and optional derivative functions
of a complete SDESystem in the shape an SDE integrator consumes:

    f(u, p, t) / f(du, u, p, t)          drift
    g(u, p, t) / g(du, u, p, t)          diffusion
    jac, tgrad                           optional, same conventions
    Wfact, Wfact_t                       optional, W(u, p, γ, t) / W(out, u, p, γ, t)
    mass_matrix                          np.eye(nx) unless the system is implicit

Each callable dispatches on its argument count between the allocating and
the in-place variant. ``SDEFunction.source_from_system`` emits the Python
source of the same functions instead of callables.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

import sympy as sp

from sdesym.systems.base.core.sde_system import SDESystem
from sdesym.systems.base.utils.code_generator import CodeGenerator
from sdesym.systems.base.utils.stochastic.noise_analysis import sparsity_prototype
from sdesym.types.backends import Backend, CompileConfig, validate_backend
from sdesym.types.core import FunctionPair


class DispatchingFunction:
    """
    Callable choosing the allocating or in-place variant by argument count.

    ``arity`` is the argument count of the allocating variant; the in-place
    variant takes one more (the output buffer first).

    Examples
    --------
    >>> f = DispatchingFunction(*compile_drift(sys))
    >>> du = f(u, p, t)       # allocating
    >>> f(du, u, p, t)        # in-place
    """

    def __init__(self, allocating: Callable, inplace: Callable, arity: int = 3):
        self.allocating = allocating
        self.inplace = inplace
        self.arity = arity

    @classmethod
    def from_pair(cls, pair: FunctionPair, arity: int = 3) -> "DispatchingFunction":
        return cls(pair[0], pair[1], arity)

    def __call__(self, *args):
        if len(args) == self.arity:
            return self.allocating(*args)
        if len(args) == self.arity + 1:
            return self.inplace(*args)
        raise TypeError(
            f"Expected {self.arity} (allocating) or {self.arity + 1} (in-place) "
            f"arguments, got {len(args)}"
        )

    def __repr__(self) -> str:
        return f"DispatchingFunction(arity={self.arity})"


@dataclass
class SDEFunction:
    """
    Numeric function bundle of a complete SDESystem.

    Attributes
    ----------
    f, g : DispatchingFunction
        Drift and diffusion
    sys : SDESystem
        Source system
    dvs, ps : tuple
        State and parameter orderings used by every function
    jac, tgrad : DispatchingFunction, optional
        Jacobian ∂f/∂u and time gradient ∂f/∂t
    Wfact, Wfact_t : DispatchingFunction, optional
        LU factors of W = M - γJ and W_t = M/γ - J
    mass_matrix : array
        Numeric mass matrix
    jac_prototype : scipy.sparse matrix, optional
        Jacobian sparsity pattern (``sparse=True`` with ``jac=True``)
    backend : Backend
        Backend of the generated functions
    """

    f: DispatchingFunction
    g: DispatchingFunction
    sys: SDESystem
    dvs: Tuple[sp.Symbol, ...]
    ps: Tuple[sp.Symbol, ...]
    jac: Optional[DispatchingFunction] = None
    tgrad: Optional[DispatchingFunction] = None
    Wfact: Optional[DispatchingFunction] = None
    Wfact_t: Optional[DispatchingFunction] = None
    mass_matrix: Any = None
    jac_prototype: Any = None
    backend: Backend = "numpy"
    _observed_cache: Dict[Any, Callable] = field(default_factory=dict, repr=False)

    @classmethod
    def from_system(
        cls,
        sys: SDESystem,
        dvs: Optional[Sequence] = None,
        ps: Optional[Sequence] = None,
        u0: Any = None,
        *,
        tgrad: bool = False,
        jac: bool = False,
        Wfact: bool = False,
        sparse: bool = False,
        simplify: bool = False,
        backend: Backend = "numpy",
        **kwargs,
    ) -> "SDEFunction":
        """
        Build the bundle.

        Optional derivatives are generated only when requested.

        Raises
        ------
        NotCompleteError
            If ``sys`` is not complete
        DimensionError
            If ``dvs`` / ``ps`` do not match the system

        Examples
        --------
        >>> fn = SDEFunction.from_system(complete(lorenz), jac=True)
        >>> fn.f(u, p, 0.0)
        >>> fn.jac(u, p, 0.0).shape
        (3, 3)
        """
        backend = validate_backend(backend)
        code_gen: CodeGenerator = sys.code_generator
        code_gen.require_complete()
        dvs, ps = code_gen.resolve_orders(dvs, ps)

        f_pair = code_gen.generate_drift(backend, dvs, ps, **kwargs)
        g_pair = sys.diffusion_handler.generate_function(backend, dvs, ps, **kwargs)

        bundle = {}
        if jac:
            bundle["jac"] = DispatchingFunction.from_pair(
                code_gen.generate_jacobian(backend, dvs, ps, simplify=simplify, **kwargs)
            )
            if sparse:
                bundle["jac_prototype"] = sparsity_prototype(
                    code_gen.ordered_jacobian(dvs, simplify=simplify)
                )
        if tgrad:
            bundle["tgrad"] = DispatchingFunction.from_pair(
                code_gen.generate_time_gradient(backend, dvs, ps, simplify=simplify, **kwargs)
            )
        if Wfact:
            W_pair, W_t_pair = code_gen.generate_factorized_w(
                backend, dvs, ps, simplify=simplify, **kwargs
            )
            bundle["Wfact"] = DispatchingFunction.from_pair(W_pair, arity=4)
            bundle["Wfact_t"] = DispatchingFunction.from_pair(W_t_pair, arity=4)

        return cls(
            f=DispatchingFunction.from_pair(f_pair),
            g=DispatchingFunction.from_pair(g_pair),
            sys=sys,
            dvs=dvs,
            ps=ps,
            mass_matrix=code_gen.mass_matrix(u0),
            backend=backend,
            **bundle,
        )

    @staticmethod
    def source_from_system(
        sys: SDESystem,
        dvs: Optional[Sequence] = None,
        ps: Optional[Sequence] = None,
        *,
        tgrad: bool = False,
        jac: bool = False,
        Wfact: bool = False,
        simplify: bool = False,
        backend: Backend = "numpy",
    ) -> Dict[str, str]:
        """
        Python source of the functions ``from_system`` would generate.

        Keys follow the bundle fields (``f``, ``g`` and the requested
        optional derivatives). Each value defines one function with the
        raw call convention and a flat parameter sequence; run it in
        ``lambdify_namespace(backend)``.

        Examples
        --------
        >>> sources = SDEFunction.source_from_system(complete(lorenz), jac=True)
        >>> sorted(sources)
        ['f', 'g', 'jac']
        >>> ns = lambdify_namespace('numpy')
        >>> exec(sources['f'], ns)
        >>> ns['drift'](u, p, 0.0)
        """
        backend = validate_backend(backend)
        code_gen: CodeGenerator = sys.code_generator
        code_gen.require_complete()
        dvs, ps = code_gen.resolve_orders(dvs, ps)

        sources = {
            "f": code_gen.generate_source("drift", backend, dvs, ps, name="drift"),
            "g": sys.diffusion_handler.generate_source(backend, dvs, ps, name="noise"),
        }
        if jac:
            sources["jac"] = code_gen.generate_source("jac", backend, dvs, ps, simplify, name="jac")
        if tgrad:
            sources["tgrad"] = code_gen.generate_source(
                "tgrad", backend, dvs, ps, simplify, name="tgrad"
            )
        if Wfact:
            sources["Wfact"] = code_gen.generate_source(
                "W", backend, dvs, ps, simplify, name="Wfact"
            )
            sources["Wfact_t"] = code_gen.generate_source(
                "W_t", backend, dvs, ps, simplify, name="Wfact_t"
            )
        return sources

    @classmethod
    def from_config(cls, sys: SDESystem, config: CompileConfig, u0: Any = None) -> "SDEFunction":
        """Build the bundle from a CompileConfig dictionary."""
        return cls.from_system(sys, u0=u0, **config)

    def observed(self, expr, u, p, t):
        """
        Evaluate an observed symbol (or expression) at (u, p, t).

        Generated functions are cached per expression.
        """
        key = expr if not isinstance(expr, list) else tuple(expr)
        if key not in self._observed_cache:
            self._observed_cache[key] = self.sys.code_generator.generate_observed(
                expr, self.backend, self.dvs, self.ps
            )
        return self._observed_cache[key](u, p, t)

    @property
    def noise_vector_output(self) -> bool:
        """True if g returns a vector."""
        return self.sys.diffusion_handler.compiles_to_vector

    def __repr__(self) -> str:
        optional = [name for name in ("jac", "tgrad", "Wfact") if getattr(self, name) is not None]
        return (
            f"SDEFunction(system={self.sys.name!r}, backend={self.backend!r}, "
            f"optional={optional})"
        )


__all__ = [
    "DispatchingFunction",
    "SDEFunction",
]
