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
Diffusion Handler - Code Generation for Stochastic Terms

Generates backend-specific numerical functions for evaluating the diffusion
term of a complete SDESystem. Mirrors the drift handling in CodeGenerator.

Architecture:
    - Composes with NoiseCharacterizer for automatic analysis
    - Reuses codegen_utils.generate_function_pair() for code generation
    - Reuses CodeGenerator for order validation and parameter flattening
    - Mirrors CodeGenerator's caching and API patterns

Output shapes:
    - vector noise (diagonal or scalar)              → (nx,)
    - square matrix, off-diagonal entries literally 0 → (nx,)  diagonal only
    - any other matrix                                → (nx, nw)
"""

import time
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

import numpy as np
import sympy as sp

from sdesym.systems.base.utils.codegen_utils import generate_function_pair, generate_source
from sdesym.systems.base.utils.stochastic.noise_analysis import (
    NoiseCharacteristics,
    NoiseCharacterizer,
    noise_rate_prototype,
)
from sdesym.types.backends import VALID_BACKENDS, Backend, validate_backend
from sdesym.types.core import FunctionPair

if TYPE_CHECKING:
    from sdesym.systems.base.core.sde_system import SDESystem


class DiffusionHandler:
    """
    Handles code generation and caching for the diffusion term.

    Examples
    --------
    >>> handler = DiffusionHandler(complete(lorenz))
    >>> handler.characteristics.shape
    <NoiseShape.DIAGONAL: 'diagonal'>
    >>>
    >>> g, g_iip = handler.generate_function('numpy')
    >>> g(np.array([1.0, 2.0, 3.0]), [10.0, 28.0, 8 / 3], 0.0)
    array([0.1, 0.2, 0.3])
    >>>
    >>> # Second call returns cached
    >>> assert handler.generate_function('numpy')[0] is g
    """

    def __init__(self, system: "SDESystem"):
        self.system = system

        # COMPOSE: Automatic noise analysis via NoiseCharacterizer
        self.characterizer = NoiseCharacterizer(
            system.noise_eqs, list(system.unknowns), system.is_scalar_noise
        )

        self._cache: Dict[Tuple, FunctionPair] = {}
        self._generation_stats = {"generations": 0, "cache_hits": 0, "total_time": 0.0}

    @property
    def characteristics(self) -> NoiseCharacteristics:
        return self.characterizer.characteristics

    @property
    def compiles_to_vector(self) -> bool:
        """True if the generated function returns a vector."""
        return len(self.characterizer.compiled_shape()) == 1

    def compiled_expression(self):
        """
        Symbolic expression handed to code generation.

        Structurally diagonal matrices are reduced to their diagonal.
        """
        noise = self.system.noise_eqs
        if not isinstance(noise, sp.MatrixBase):
            return list(noise)
        if self.characteristics.is_structurally_diagonal:
            return [noise[i, i] for i in range(noise.shape[0])]
        return noise

    # ========================================================================
    # Code Generation (Mirrors CodeGenerator.generate_drift)
    # ========================================================================

    def generate_function(
        self, backend: Backend = "numpy", dvs=None, ps=None, **kwargs
    ) -> FunctionPair:
        """
        Generate (g, g_iip) for the diffusion term.

        Parameters
        ----------
        backend : Backend
            Target backend ('numpy', 'torch', 'jax')
        dvs, ps : optional
            State / parameter orderings (default: declared orders)
        **kwargs
            Additional arguments for generate_function (e.g. jit)

        Returns
        -------
        FunctionPair
            g(u, p, t) → array and g_iip(out, u, p, t) → None

        Raises
        ------
        NotCompleteError
            If the system is not complete
        DimensionError
            If the orderings do not match the system
        """
        start_time = time.time()

        code_gen = self.system.code_generator
        code_gen.require_complete()
        backend = validate_backend(backend)
        dvs, ps = code_gen.resolve_orders(dvs, ps)

        key = (backend, dvs, ps)
        if key in self._cache:
            self._generation_stats["cache_hits"] += 1
            return self._cache[key]

        expr = code_gen.prepare(self.compiled_expression(), ps)
        pair = generate_function_pair(expr, [dvs, ps, self.system.iv], backend, **kwargs)
        wrapped = code_gen._wrap(pair, dvs, ps)
        self._cache[key] = wrapped

        self._generation_stats["generations"] += 1
        self._generation_stats["total_time"] += time.time() - start_time
        return wrapped

    def generate_source(
        self, backend: Backend = "numpy", dvs=None, ps=None, name: str = "noise"
    ) -> str:
        """Python source of the diffusion function, g(u, p, t) with flat ``p``."""
        code_gen = self.system.code_generator
        code_gen.require_complete()
        backend = validate_backend(backend)
        dvs, ps = code_gen.resolve_orders(dvs, ps)
        expr = code_gen.prepare(self.compiled_expression(), ps)
        return generate_source(expr, [dvs, ps, self.system.iv], backend, name=name)

    def get_function(self, backend: Backend) -> Optional[FunctionPair]:
        """Cached pair for the declared orders, or None."""
        return self._cache.get((backend, self.system.unknowns, self.system.ps))

    # ========================================================================
    # Noise Structure for Solvers
    # ========================================================================

    def noise_rate_prototype(self, sparse: bool = False, dtype=np.float64):
        """
        Prototype for matrix noise, None for vector noise.

        See ``noise_analysis.noise_rate_prototype``.
        """
        return noise_rate_prototype(self.system.noise_eqs, sparse=sparse, dtype=dtype)

    def get_constant_noise(self, p, backend: Backend = "numpy"):
        """
        Diffusion value for additive, time-independent noise.

        Raises
        ------
        ValueError
            If the noise depends on the state or on time
        """
        if not self.has_constant_noise():
            raise ValueError("Noise depends on the state or time; it is not constant")
        g, _ = self.generate_function(backend)
        return g(np.zeros(self.system.nx), p, 0.0)

    def has_constant_noise(self) -> bool:
        entries = list(self.system.noise_eqs)
        depends_on_time = any(self.system.iv in sp.sympify(e).free_symbols for e in entries)
        return self.characteristics.is_additive and not depends_on_time

    # ========================================================================
    # Cache Management (Mirrors CodeGenerator)
    # ========================================================================

    def reset_cache(self, backends: Optional[List[Backend]] = None):
        if backends is None:
            self._cache.clear()
            return
        for key in [k for k in self._cache if k[0] in backends]:
            del self._cache[key]

    def is_compiled(self, backend: Backend) -> bool:
        return any(key[0] == backend for key in self._cache)

    def get_stats(self) -> Dict[str, Any]:
        total_calls = self._generation_stats["generations"] + self._generation_stats["cache_hits"]
        return {
            "generations": self._generation_stats["generations"],
            "cache_hits": self._generation_stats["cache_hits"],
            "total_calls": total_calls,
            "total_time": self._generation_stats["total_time"],
        }

    def get_info(self) -> Dict[str, Any]:
        """
        Dimensions, noise structure and compilation state.

        Examples
        --------
        >>> handler.get_info()['noise_shape']
        'diagonal'
        """
        char = self.characteristics
        return {
            "dimensions": {"nx": char.nx, "nw": char.num_wiener},
            "noise_shape": char.shape.value,
            "compiled_shape": self.characterizer.compiled_shape(),
            "is_additive": char.is_additive,
            "state_dependencies": sorted(str(s) for s in char.state_dependencies),
            "compiled": {backend: self.is_compiled(backend) for backend in VALID_BACKENDS},
            "statistics": self.get_stats(),
        }

    def __repr__(self) -> str:
        char = self.characteristics
        return (
            f"DiffusionHandler(nx={char.nx}, nw={char.num_wiener}, "
            f"shape={char.shape.value}, vector={self.compiles_to_vector})"
        )


# ============================================================================
# Convenience Functions
# ============================================================================


def compile_diffusion(sys: "SDESystem", dvs=None, ps=None, backend: Backend = "numpy", **kwargs) -> FunctionPair:
    """
    (allocating, in-place) diffusion functions of a complete system.

    Structurally diagonal square matrices compile to vector-valued
    functions.

    Examples
    --------
    >>> g, g_iip = compile_diffusion(complete(lorenz))
    >>> g(np.array([1.0, 2.0, 3.0]), [10.0, 28.0, 8 / 3], 0.0).shape
    (3,)
    """
    return sys.diffusion_handler.generate_function(backend, dvs, ps, **kwargs)


__all__ = [
    "DiffusionHandler",
    "compile_diffusion",
]
