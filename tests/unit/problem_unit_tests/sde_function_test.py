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
Unit Tests for SDEFunction

Tests the function bundle handed to integrators: dispatch between
allocating and in-place variants, optional derivatives, sparsity
prototypes and observed evaluation.
"""

import numpy as np
import pytest
import scipy.sparse
import sympy as sp

# Conditional imports
torch_available = True
try:
    import torch
except ImportError:
    torch_available = False

from sdesym.systems.base.core.equations import Differential, Equation
from sdesym.systems.base.core.errors import NotCompleteError
from sdesym.systems.base.core.sde_system import SDESystem, complete
from sdesym.systems.base.problems.sde_function import DispatchingFunction, SDEFunction
from sdesym.systems.base.utils.codegen_utils import lambdify_namespace

U = np.array([1.0, 2.0, 3.0])
P = [10.0, 28.0, 8 / 3]


@pytest.fixture
def lorenz():
    t = sp.Symbol("t")
    x, y, z = sp.symbols("x y z")
    sigma, rho, beta = sp.symbols("sigma rho beta")
    r = sp.Symbol("r")
    D = Differential(t)
    eqs = [
        Equation(D(x), sigma * (y - x)),
        Equation(D(y), x * (rho - z) - y),
        Equation(D(z), x * y - beta * z),
    ]
    return complete(
        SDESystem(
            eqs,
            [0.1 * x, 0.1 * y, 0.1 * z],
            t,
            [x, y, z],
            [sigma, rho, beta],
            name="lorenz",
            observed=[Equation(r, x**2 + y**2)],
        )
    )


class TestDispatchingFunction:
    def test_dispatch(self):
        calls = []
        f = DispatchingFunction(
            lambda u, p, t: calls.append("oop") or u,
            lambda out, u, p, t: calls.append("iip"),
        )
        assert f(1, 2, 3) == 1
        assert f(0, 1, 2, 3) is None
        assert calls == ["oop", "iip"]

    def test_wrong_argument_count(self):
        f = DispatchingFunction(lambda u, p, t: u, lambda out, u, p, t: None)
        with pytest.raises(TypeError, match="got 2"):
            f(1, 2)

    def test_arity(self):
        f = DispatchingFunction.from_pair((lambda u, p, g, t: g, lambda o, u, p, g, t: None), arity=4)
        assert f(0, 0, 5, 0) == 5
        assert repr(f) == "DispatchingFunction(arity=4)"


class TestSDEFunction:
    def test_drift_and_diffusion(self, lorenz):
        fn = SDEFunction.from_system(lorenz)
        np.testing.assert_allclose(fn.f(U, P, 0.0), [10.0, 23.0, -6.0])
        np.testing.assert_allclose(fn.g(U, P, 0.0), [0.1, 0.2, 0.3])
        du = np.zeros(3)
        fn.f(du, U, P, 0.0)
        np.testing.assert_allclose(du, [10.0, 23.0, -6.0])
        assert fn.noise_vector_output

    def test_optional_fields_default_none(self, lorenz):
        fn = SDEFunction.from_system(lorenz)
        assert fn.jac is None
        assert fn.tgrad is None
        assert fn.Wfact is None
        assert fn.jac_prototype is None
        np.testing.assert_array_equal(fn.mass_matrix, np.eye(3))

    def test_all_derivatives(self, lorenz):
        fn = SDEFunction.from_system(lorenz, jac=True, tgrad=True, Wfact=True)
        assert fn.jac(U, P, 0.0).shape == (3, 3)
        np.testing.assert_allclose(fn.tgrad(U, P, 0.0), np.zeros(3))
        assert fn.Wfact(U, P, 0.1, 0.0).shape == (3, 3)
        out = np.zeros((3, 3))
        fn.Wfact_t(out, U, P, 0.1, 0.0)
        assert np.isfinite(out).all()

    def test_sparse_jacobian_prototype(self, lorenz):
        fn = SDEFunction.from_system(lorenz, jac=True, sparse=True)
        assert scipy.sparse.issparse(fn.jac_prototype)
        assert fn.jac_prototype.shape == (3, 3)
        assert fn.jac_prototype.nnz == 8

    def test_sparse_prototype_follows_dvs_order(self, lorenz):
        x, y, z = lorenz.unknowns
        fn = SDEFunction.from_system(lorenz, dvs=[z, y, x], jac=True, sparse=True)
        coo = fn.jac_prototype.tocoo()
        pattern = set(zip(coo.row.tolist(), coo.col.tolist()))
        # dx/dt = sigma*(y - x) does not depend on z, now column 0
        assert (0, 0) not in pattern
        assert (0, 2) in pattern
        J = fn.jac(U[::-1].copy(), P, 0.0)
        rows, cols = np.nonzero(J)
        assert pattern == set(zip(rows.tolist(), cols.tolist()))

    def test_orders(self, lorenz):
        x, y, z = lorenz.unknowns
        fn = SDEFunction.from_system(lorenz, dvs=[z, y, x])
        assert fn.dvs == (z, y, x)
        np.testing.assert_allclose(fn.f(U[::-1].copy(), P, 0.0), [10.0, 23.0, -6.0])

    def test_from_config(self, lorenz):
        fn = SDEFunction.from_config(lorenz, {"jac": True, "backend": "numpy"})
        assert fn.jac is not None
        assert fn.backend == "numpy"

    def test_observed(self, lorenz):
        fn = SDEFunction.from_system(lorenz)
        np.testing.assert_allclose(fn.observed("r", U, P, 0.0), [5.0])
        np.testing.assert_allclose(fn.observed(["r", lorenz.x], U, P, 0.0), [5.0, 1.0])
        assert len(fn._observed_cache) == 2

    def test_requires_complete(self):
        t, x = sp.symbols("t x")
        sys = SDESystem([-x], [0.1], t, [x], [], name="incomplete")
        with pytest.raises(NotCompleteError):
            SDEFunction.from_system(sys)

    def test_matrix_noise_output(self):
        t, x, y, s = sp.symbols("t x y s")
        G = sp.Matrix([[s, 0], [s, s]])
        fn = SDEFunction.from_system(complete(SDESystem([-x, -y], G, t, [x, y], [s], name="m")))
        assert not fn.noise_vector_output
        np.testing.assert_allclose(fn.g(np.ones(2), [0.5], 0.0), [[0.5, 0.0], [0.5, 0.5]])

    @pytest.mark.skipif(not torch_available, reason="PyTorch not installed")
    def test_torch_backend(self, lorenz):
        fn = SDEFunction.from_system(lorenz, backend="torch", jac=True)
        u = torch.tensor(U, dtype=torch.float64)
        assert isinstance(fn.f(u, P, 0.0), torch.Tensor)
        assert fn.jac(u, P, 0.0).shape == (3, 3)

    def test_repr(self, lorenz):
        fn = SDEFunction.from_system(lorenz, jac=True)
        assert repr(fn) == "SDEFunction(system='lorenz', backend='numpy', optional=['jac'])"


class TestSDEFunctionSource:
    def test_default_fields(self, lorenz):
        sources = SDEFunction.source_from_system(lorenz)
        assert sorted(sources) == ["f", "g"]
        ns = lambdify_namespace("numpy")
        exec(sources["f"] + sources["g"], ns)
        np.testing.assert_allclose(ns["drift"](U, P, 0.0), [10.0, 23.0, -6.0])
        np.testing.assert_allclose(ns["noise"](U, P, 0.0), [0.1, 0.2, 0.3])

    def test_optional_fields_match_bundle(self, lorenz):
        sources = SDEFunction.source_from_system(lorenz, jac=True, tgrad=True, Wfact=True)
        assert sorted(sources) == ["Wfact", "Wfact_t", "f", "g", "jac", "tgrad"]
        fn = SDEFunction.from_system(lorenz, jac=True, tgrad=True, Wfact=True)
        ns = lambdify_namespace("numpy")
        for src in sources.values():
            exec(src, ns)
        np.testing.assert_allclose(np.asarray(ns["jac"](U, P, 0.0), dtype=float), fn.jac(U, P, 0.0))
        np.testing.assert_allclose(
            np.asarray(ns["tgrad"](U, P, 0.0), dtype=float), fn.tgrad(U, P, 0.0)
        )
        np.testing.assert_allclose(
            np.asarray(ns["Wfact_t"](U, P, 0.1, 0.0), dtype=float), fn.Wfact_t(U, P, 0.1, 0.0)
        )

    def test_orders(self, lorenz):
        x, y, z = lorenz.unknowns
        sources = SDEFunction.source_from_system(lorenz, dvs=[z, y, x])
        ns = lambdify_namespace("numpy")
        exec(sources["f"], ns)
        np.testing.assert_allclose(ns["drift"](U[::-1].copy(), P, 0.0), [10.0, 23.0, -6.0])

    def test_requires_complete(self):
        t, x = sp.symbols("t x")
        sys = SDESystem([-x], [0.1], t, [x], [], name="incomplete")
        with pytest.raises(NotCompleteError):
            SDEFunction.source_from_system(sys)

    @pytest.mark.skipif(not torch_available, reason="PyTorch not installed")
    def test_torch_backend(self, lorenz):
        sources = SDEFunction.source_from_system(lorenz, backend="torch")
        ns = lambdify_namespace("torch")
        exec(sources["f"], ns)
        out = ns["drift"](torch.tensor(U, dtype=torch.float64), P, 0.0)
        assert all(isinstance(v, torch.Tensor) for v in out)
