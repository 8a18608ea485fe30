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
Unit Tests for DiffusionHandler

Tests diffusion code generation (vector vs. matrix output), caching,
constant-noise detection and backend support. Mirrors the structure of
code_generator_test.py.
"""

import numpy as np
import pytest
import sympy as sp

# Conditional imports
torch_available = True
try:
    import torch
except ImportError:
    torch_available = False

jax_available = True
try:
    import jax
    import jax.numpy as jnp
except ImportError:
    jax_available = False

from sdesym.systems.base.core.errors import DimensionError, NotCompleteError
from sdesym.systems.base.core.sde_system import SDESystem, complete
from sdesym.systems.base.utils.codegen_utils import lambdify_namespace
from sdesym.systems.base.utils.stochastic.diffusion_handler import (
    DiffusionHandler,
    compile_diffusion,
)
from sdesym.systems.base.utils.stochastic.noise_analysis import NoiseShape

# ============================================================================
# Fixtures - Test Systems
# ============================================================================


@pytest.fixture
def diagonal_vector_system():
    """3D system with diagonal multiplicative noise given as a vector."""
    t, x1, x2, x3, s = sp.symbols("t x1 x2 x3 s")
    return complete(
        SDESystem([-x1, -x2, -x3], [s * x1, s * x2, s * x3], t, [x1, x2, x3], [s], name="diag")
    )


@pytest.fixture
def diagonal_matrix_system():
    """Same noise given as a diagonal matrix."""
    t, x1, x2, s = sp.symbols("t x1 x2 s")
    G = sp.Matrix([[s * x1, 0], [0, s * x2]])
    return complete(SDESystem([-x1, -x2], G, t, [x1, x2], [s], name="diag_mat"))


@pytest.fixture
def general_matrix_system():
    """2 states, 2 Wiener processes, coupled."""
    t, x1, x2, s = sp.symbols("t x1 x2 s")
    G = sp.Matrix([[s * x1, s], [0, s * x2]])
    return complete(SDESystem([-x1, -x2], G, t, [x1, x2], [s], name="general"))


@pytest.fixture
def additive_system():
    t, x1, x2 = sp.symbols("t x1 x2")
    G = sp.Matrix([[0.1, 0], [0.2, 0.3]])
    return complete(SDESystem([-x1, -x2], G, t, [x1, x2], [], name="additive"))


@pytest.fixture
def time_varying_system():
    t, x = sp.symbols("t x")
    return complete(SDESystem([-x], [0.1 * sp.sin(t)], t, [x], [], name="tv"))


# ============================================================================
# Code Generation
# ============================================================================


class TestFunctionGeneration:
    def test_vector_noise(self, diagonal_vector_system):
        g, _ = compile_diffusion(diagonal_vector_system)
        out = g(np.array([1.0, 2.0, 3.0]), [0.5], 0.0)
        np.testing.assert_allclose(out, [0.5, 1.0, 1.5])

    def test_diagonal_matrix_compiles_to_vector(self, diagonal_matrix_system):
        handler = diagonal_matrix_system.diffusion_handler
        assert handler.compiles_to_vector
        g, _ = handler.generate_function("numpy")
        out = g(np.array([1.0, 2.0]), [0.5], 0.0)
        assert out.shape == (2,)
        np.testing.assert_allclose(out, [0.5, 1.0])

    def test_general_matrix_output(self, general_matrix_system):
        handler = general_matrix_system.diffusion_handler
        assert not handler.compiles_to_vector
        g, _ = handler.generate_function("numpy")
        out = g(np.array([1.0, 2.0]), [0.5], 0.0)
        np.testing.assert_allclose(out, [[0.5, 0.5], [0.0, 1.0]])

    def test_inplace(self, general_matrix_system):
        _, g_iip = compile_diffusion(general_matrix_system)
        out = np.zeros((2, 2))
        assert g_iip(out, np.array([1.0, 2.0]), [0.5], 0.0) is None
        np.testing.assert_allclose(out, [[0.5, 0.5], [0.0, 1.0]])

    def test_permuted_state_order(self, diagonal_vector_system):
        x1, x2, x3 = diagonal_vector_system.unknowns
        g, _ = compile_diffusion(diagonal_vector_system, dvs=[x3, x1, x2])
        # u is given as (x3, x1, x2); rows still follow the equations
        out = g(np.array([3.0, 1.0, 2.0]), [1.0], 0.0)
        np.testing.assert_allclose(out, [1.0, 2.0, 3.0])

    def test_time_varying(self, time_varying_system):
        g, _ = compile_diffusion(time_varying_system)
        np.testing.assert_allclose(g(np.array([1.0]), [], np.pi / 2), [0.1])

    def test_requires_complete(self):
        t, x = sp.symbols("t x")
        sys = SDESystem([-x], [0.1 * x], t, [x], [], name="incomplete")
        with pytest.raises(NotCompleteError):
            compile_diffusion(sys)

    def test_wrong_state_length(self, diagonal_vector_system):
        g, _ = compile_diffusion(diagonal_vector_system)
        with pytest.raises(DimensionError):
            g(np.array([1.0, 2.0]), [0.5], 0.0)

    def test_invalid_backend(self, diagonal_vector_system):
        with pytest.raises(ValueError):
            diagonal_vector_system.diffusion_handler.generate_function("tensorflow")

    @pytest.mark.skipif(not torch_available, reason="PyTorch not installed")
    def test_torch(self, general_matrix_system):
        g, g_iip = compile_diffusion(general_matrix_system, backend="torch")
        u = torch.tensor([1.0, 2.0], dtype=torch.float64)
        out = g(u, [0.5], 0.0)
        assert isinstance(out, torch.Tensor)
        assert out.shape == (2, 2)
        buf = torch.zeros(2, 2, dtype=torch.float64)
        g_iip(buf, u, [0.5], 0.0)
        assert torch.allclose(buf, out)

    @pytest.mark.skipif(not jax_available, reason="JAX not installed")
    def test_jax(self, diagonal_vector_system):
        g, g_iip = compile_diffusion(diagonal_vector_system, backend="jax")
        out = g(jnp.array([1.0, 2.0, 3.0]), [0.5], 0.0)
        np.testing.assert_allclose(np.asarray(out), [0.5, 1.0, 1.5], rtol=1e-6)
        with pytest.raises(TypeError, match="immutable"):
            g_iip(jnp.zeros(3), jnp.array([1.0, 2.0, 3.0]), [0.5], 0.0)


# ============================================================================
# Source Generation
# ============================================================================


class TestSourceGeneration:
    def test_diagonal_matrix_source_is_vector(self, diagonal_matrix_system):
        src = diagonal_matrix_system.diffusion_handler.generate_source()
        assert src.startswith("def noise(")
        ns = lambdify_namespace("numpy")
        exec(src, ns)
        np.testing.assert_allclose(ns["noise"](np.array([1.0, 2.0]), [0.5], 0.0), [0.5, 1.0])

    def test_matrix_source_matches_compiled(self, general_matrix_system):
        src = general_matrix_system.diffusion_handler.generate_source(name="G")
        ns = lambdify_namespace("numpy")
        exec(src, ns)
        g, _ = compile_diffusion(general_matrix_system)
        u = np.array([1.0, 2.0])
        np.testing.assert_allclose(np.asarray(ns["G"](u, [0.3], 0.0), dtype=float), g(u, [0.3], 0.0))


# ============================================================================
# Caching and Information
# ============================================================================


class TestCaching:
    def test_cached(self, diagonal_vector_system):
        handler = diagonal_vector_system.diffusion_handler
        g1, _ = handler.generate_function("numpy")
        g2, _ = handler.generate_function("numpy")
        assert g1 is g2
        stats = handler.get_stats()
        assert stats["generations"] == 1
        assert stats["cache_hits"] == 1
        assert stats["total_calls"] == 2

    def test_handler_shared_per_system(self, diagonal_vector_system):
        assert diagonal_vector_system.diffusion_handler is diagonal_vector_system.diffusion_handler

    def test_get_function_and_reset(self, diagonal_vector_system):
        handler = DiffusionHandler(diagonal_vector_system)
        assert handler.get_function("numpy") is None
        handler.generate_function("numpy")
        assert handler.is_compiled("numpy")
        assert handler.get_function("numpy") is not None
        handler.reset_cache(["numpy"])
        assert not handler.is_compiled("numpy")

    def test_info(self, general_matrix_system):
        info = general_matrix_system.diffusion_handler.get_info()
        assert info["noise_shape"] == NoiseShape.GENERAL.value
        assert info["dimensions"] == {"nx": 2, "nw": 2}
        assert info["compiled_shape"] == (2, 2)
        assert info["state_dependencies"] == ["x1", "x2"]

    def test_repr(self, diagonal_matrix_system):
        assert "vector=True" in repr(diagonal_matrix_system.diffusion_handler)


class TestConstantNoise:
    def test_additive_constant(self, additive_system):
        handler = additive_system.diffusion_handler
        assert handler.has_constant_noise()
        np.testing.assert_allclose(handler.get_constant_noise([]), [[0.1, 0.0], [0.2, 0.3]])

    def test_time_varying_not_constant(self, time_varying_system):
        handler = time_varying_system.diffusion_handler
        assert not handler.has_constant_noise()
        with pytest.raises(ValueError, match="not constant"):
            handler.get_constant_noise([])

    def test_multiplicative_not_constant(self, diagonal_vector_system):
        assert not diagonal_vector_system.diffusion_handler.has_constant_noise()

    def test_prototype(self, general_matrix_system, diagonal_vector_system):
        assert diagonal_vector_system.diffusion_handler.noise_rate_prototype() is None
        proto = general_matrix_system.diffusion_handler.noise_rate_prototype(sparse=True)
        assert proto.nnz == 3
