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
Unit Tests for Code Generation Utilities

Tests generate_function / generate_function_pair across backends, output
shapes, Min/Max handling and array conversion helpers.
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

from sdesym.systems.base.utils.codegen_utils import (
    convert_array,
    detect_backend,
    expression_shape,
    generate_function,
    generate_function_pair,
    generate_source,
    lambdify_namespace,
    make_inplace,
)


@pytest.fixture
def syms():
    x, y, a, t = sp.symbols("x y a t")
    return x, y, a, t


class TestExpressionShape:
    def test_shapes(self, syms):
        x, y, a, t = syms
        assert expression_shape([x, y]) == (2,)
        assert expression_shape(sp.Matrix([[x, y]])) == (1, 2)
        assert expression_shape(x) == (1,)
        assert expression_shape(sp.zeros(3, 0)) == (3, 0)


class TestGenerateFunction:
    def test_vector(self, syms):
        x, y, a, t = syms
        f = generate_function([a * x, y * t], [[x, y], [a], t])
        np.testing.assert_allclose(f(np.array([1.0, 2.0]), [3.0], 0.5), [3.0, 1.0])

    def test_matrix(self, syms):
        x, y, a, t = syms
        f = generate_function(sp.Matrix([[a * x, 0], [0, y]]), [[x, y], [a], t])
        out = f(np.array([1.0, 2.0]), [3.0], 0.0)
        assert out.shape == (2, 2)
        np.testing.assert_allclose(out, [[3.0, 0.0], [0.0, 2.0]])

    def test_constant_output_is_float(self, syms):
        x, y, a, t = syms
        f = generate_function([sp.Integer(1), sp.Integer(0)], [[x, y], [a], t])
        out = f(np.array([1.0, 2.0]), [3.0], 0.0)
        assert out.dtype == np.float64

    def test_empty(self, syms):
        x, y, a, t = syms
        f = generate_function(sp.zeros(2, 0), [[x, y], [a], t])
        assert f(np.array([1.0, 2.0]), [3.0], 0.0).shape == (2, 0)

    def test_min_max(self, syms):
        x, y, a, t = syms
        f = generate_function([sp.Min(x, y, a), sp.Max(x, y)], [[x, y], [a], t])
        np.testing.assert_allclose(f(np.array([1.0, 2.0]), [0.5], 0.0), [0.5, 2.0])

    def test_invalid_backend(self, syms):
        x, y, a, t = syms
        with pytest.raises(ValueError):
            generate_function([x], [[x], [], t], backend="tensorflow")

    @pytest.mark.skipif(not torch_available, reason="PyTorch not installed")
    def test_torch_preserves_dtype(self, syms):
        x, y, a, t = syms
        f = generate_function([sp.sin(x) * a, sp.Integer(1)], [[x, y], [a], t], backend="torch")
        out = f(torch.tensor([0.0, 1.0], dtype=torch.float32), [2.0], 0.0)
        assert out.dtype == torch.float32
        assert torch.allclose(out, torch.tensor([0.0, 1.0]))

    @pytest.mark.skipif(not jax_available, reason="JAX not installed")
    def test_jax_jit(self, syms):
        x, y, a, t = syms
        f = generate_function([sp.exp(x) * a, y], [[x, y], [a], t], backend="jax")
        out = f(jnp.array([0.0, 2.0]), [3.0], 0.0)
        np.testing.assert_allclose(np.asarray(out), [3.0, 2.0], rtol=1e-6)


class TestInplace:
    def test_numpy_pair(self, syms):
        x, y, a, t = syms
        f, f_iip = generate_function_pair([a * x], [[x], [a], t])
        du = np.zeros(1)
        assert f_iip(du, np.array([2.0]), [3.0], 0.0) is None
        np.testing.assert_allclose(du, [6.0])

    def test_jax_unsupported(self):
        f_iip = make_inplace(lambda *args: None, "jax")
        with pytest.raises(TypeError, match="jax"):
            f_iip(None, 1.0)

    @pytest.mark.skipif(not torch_available, reason="PyTorch not installed")
    def test_torch_pair(self, syms):
        x, y, a, t = syms
        _, f_iip = generate_function_pair(
            sp.Matrix([[a * x], [y]]), [[x, y], [a], t], backend="torch"
        )
        out = torch.zeros(2, 1, dtype=torch.float64)
        f_iip(out, torch.tensor([1.0, 2.0], dtype=torch.float64), [3.0], 0.0)
        assert torch.allclose(out, torch.tensor([[3.0], [2.0]], dtype=torch.float64))


class TestBackendHelpers:
    def test_detect_numpy(self):
        assert detect_backend(np.zeros(2)) == "numpy"
        assert detect_backend([1.0]) == "numpy"

    def test_detect_unknown(self):
        with pytest.raises(TypeError):
            detect_backend("not an array")

    @pytest.mark.skipif(not torch_available, reason="PyTorch not installed")
    def test_detect_torch(self):
        assert detect_backend(torch.zeros(2)) == "torch"

    @pytest.mark.skipif(not jax_available, reason="JAX not installed")
    def test_detect_jax(self):
        assert detect_backend(jnp.zeros(2)) == "jax"

    def test_convert_numpy_dtype(self):
        out = convert_array(np.eye(2), like=np.zeros(2, dtype=np.float32))
        assert out.dtype == np.float32

    @pytest.mark.skipif(not torch_available, reason="PyTorch not installed")
    def test_convert_like_torch(self):
        out = convert_array(np.eye(2), like=torch.zeros(2, dtype=torch.float32))
        assert isinstance(out, torch.Tensor)
        assert out.dtype == torch.float32


class TestGenerateSource:
    def test_numpy_source_runs(self, syms):
        x, y, a, t = syms
        src = generate_source([a * x, y * t], [[x, y], [a], t], name="rhs")
        assert src.startswith("def rhs(")
        ns = lambdify_namespace("numpy")
        exec(src, ns)
        np.testing.assert_allclose(ns["rhs"](np.array([1.0, 2.0]), [3.0], 0.5), [3.0, 1.0])

    def test_matches_generated_function(self, syms):
        x, y, a, t = syms
        expr = sp.Matrix([[sp.sin(x) * a, sp.exp(y)], [sp.Max(x, y), 1]])
        args = [[x, y], [a], t]
        ns = lambdify_namespace("numpy")
        exec(generate_source(expr, args, name="m"), ns)
        u = np.array([0.3, -0.2])
        np.testing.assert_allclose(
            np.asarray(ns["m"](u, [2.0], 0.0), dtype=float),
            generate_function(expr, args)(u, [2.0], 0.0),
        )

    def test_empty(self, syms):
        x, y, a, t = syms
        src = generate_source(sp.zeros(2, 0), [[x, y], [a], t], name="empty")
        ns = {}
        exec(src, ns)
        assert ns["empty"](None, None, None) == [[], []]

    def test_invalid_name(self, syms):
        x, y, a, t = syms
        with pytest.raises(ValueError, match="identifier"):
            generate_source([x], [[x, y], [a], t], name="not a name")

    @pytest.mark.skipif(not torch_available, reason="PyTorch not installed")
    def test_torch_source(self, syms):
        x, y, a, t = syms
        src = generate_source([sp.sin(x) * a], [[x, y], [a], t], backend="torch", name="g")
        ns = lambdify_namespace("torch")
        exec(src, ns)
        out = ns["g"](torch.tensor([0.5, 0.0], dtype=torch.float64), [2.0], 0.0)
        assert isinstance(out[0], torch.Tensor)
        assert torch.isclose(out[0], torch.tensor(2.0 * np.sin(0.5), dtype=torch.float64))
