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
Unit Tests for SDE Structural Transforms

Tests the Ito ↔ Stratonovich drift correction and the Girsanov change of
measure for scalar, diagonal and matrix noise.
"""

import numpy as np
import pytest
import sympy as sp

from sdesym.systems.base.core.equations import Differential, Equation
from sdesym.systems.base.core.errors import DivisionByZeroError
from sdesym.systems.base.core.sde_system import SDESystem, complete
from sdesym.systems.base.utils.stochastic.diffusion_handler import compile_diffusion
from sdesym.systems.base.utils.stochastic.sde_transforms import (
    ITO_TO_STRATONOVICH,
    STRATONOVICH_TO_ITO,
    convert_sde_type,
    girsanov_transform,
    stochastic_integral_transform,
)

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def gbm():
    """Geometric Brownian motion: dx = mu x dt + sigma x dW."""
    t, x = sp.symbols("t x")
    mu, sigma = sp.symbols("mu sigma")
    D = Differential(t)
    return SDESystem([Equation(D(x), mu * x)], [sigma * x], t, [x], [mu, sigma], name="gbm")


@pytest.fixture
def lorenz():
    t = sp.Symbol("t")
    x, y, z = sp.symbols("x y z")
    sigma, rho, beta = sp.symbols("sigma rho beta")
    D = Differential(t)
    eqs = [
        Equation(D(x), sigma * (y - x)),
        Equation(D(y), x * (rho - z) - y),
        Equation(D(z), x * y - beta * z),
    ]
    noise = [sp.Rational(1, 10) * x, sp.Rational(1, 10) * y, sp.Rational(1, 10) * z]
    return SDESystem(eqs, noise, t, [x, y, z], [sigma, rho, beta], name="lorenz")


@pytest.fixture
def scalar_noise_2d():
    """Two states driven by one shared Wiener process."""
    t, x, y, s = sp.symbols("t x y s")
    return SDESystem(
        [-x, -y], [s * x, s * y], t, [x, y], [s], name="shared", is_scalar_noise=True
    )


def same(a, b) -> bool:
    return sp.simplify(a - b) == 0


# ============================================================================
# Ito ↔ Stratonovich
# ============================================================================


class TestStochasticIntegralTransform:
    """Test the drift correction."""

    def test_gbm_to_stratonovich(self, gbm):
        x = gbm.unknowns[0]
        mu, sigma = gbm.ps
        strat = stochastic_integral_transform(gbm, ITO_TO_STRATONOVICH)
        assert same(strat.eqs[0].rhs, mu * x - sigma**2 * x / 2)

    def test_round_trip(self, lorenz):
        strat = convert_sde_type(lorenz, "ito", "stratonovich")
        back = convert_sde_type(strat, "stratonovich", "ito")
        for original, restored in zip(lorenz.eqs, back.eqs):
            assert same(original.rhs, restored.rhs)

    def test_diffusion_unchanged(self, lorenz):
        strat = stochastic_integral_transform(lorenz, ITO_TO_STRATONOVICH)
        assert strat.noise_eqs == lorenz.noise_eqs
        assert strat.unknowns == lorenz.unknowns

    def test_additive_noise_unchanged(self):
        t, x, s = sp.symbols("t x s")
        sys = SDESystem([-x], [s], t, [x], [s], name="ou")
        strat = stochastic_integral_transform(sys, ITO_TO_STRATONOVICH)
        assert same(strat.eqs[0].rhs, -x)

    def test_scalar_noise_uses_one_channel(self, scalar_noise_2d):
        x, y = scalar_noise_2d.unknowns
        (s,) = scalar_noise_2d.ps
        strat = stochastic_integral_transform(scalar_noise_2d, ITO_TO_STRATONOVICH)
        assert same(strat.eqs[0].rhs, -x - s**2 * x / 2)
        assert same(strat.eqs[1].rhs, -y - s**2 * y / 2)

    def test_diagonal_vector_keeps_cross_terms(self):
        t, x, y = sp.symbols("t x y")
        sys = SDESystem([-x, -y], [y, x], t, [x, y], [], name="crossed")
        strat = stochastic_integral_transform(sys, ITO_TO_STRATONOVICH)
        # J = [[0, 1], [1, 0]], J g = [x, y]
        assert same(strat.eqs[0].rhs, -sp.Rational(3, 2) * x)
        assert same(strat.eqs[1].rhs, -sp.Rational(3, 2) * y)

    def test_matrix_noise_channels(self):
        t, x, y, s = sp.symbols("t x y s")
        G = sp.Matrix([[s * y, 0], [0, s * x]])
        sys = SDESystem([-x, -y], G, t, [x, y], [s], name="coupled")
        strat = stochastic_integral_transform(sys, ITO_TO_STRATONOVICH)
        # Σ_k J_k g_k = [0, 0] because each channel depends only on the other row's state
        assert same(strat.eqs[0].rhs, -x)
        assert same(strat.eqs[1].rhs, -y)

    def test_general_matrix_correction(self):
        t, x, y, s = sp.symbols("t x y s")
        G = sp.Matrix([[s * x], [s * x]])
        sys = SDESystem([-x, -y], G, t, [x, y], [s], name="column")
        strat = stochastic_integral_transform(sys, ITO_TO_STRATONOVICH)
        # J = [[s, 0], [s, 0]], J g = [s**2 x, s**2 x]
        assert same(strat.eqs[0].rhs, -x - s**2 * x / 2)
        assert same(strat.eqs[1].rhs, -y - s**2 * x / 2)

    def test_output_has_fresh_tag_and_is_incomplete(self, gbm):
        done = complete(gbm)
        strat = stochastic_integral_transform(done, STRATONOVICH_TO_ITO)
        assert strat.tag != done.tag
        assert not strat.is_complete
        assert strat.index_cache is None
        assert done.is_complete

    def test_input_unchanged(self, gbm):
        before = gbm.eqs
        stochastic_integral_transform(gbm, ITO_TO_STRATONOVICH)
        assert gbm.eqs == before

    def test_symbolic_factor(self, gbm):
        c = sp.Symbol("c")
        x = gbm.unknowns[0]
        mu, sigma = gbm.ps
        out = stochastic_integral_transform(gbm, c)
        assert same(out.eqs[0].rhs, mu * x + c * sigma**2 * x)


class TestConvertSDEType:
    def test_identity(self, gbm):
        assert convert_sde_type(gbm, "ito", "ito") is gbm

    def test_invalid_type(self, gbm):
        with pytest.raises(ValueError, match="SDE type"):
            convert_sde_type(gbm, "ito", "milstein")


# ============================================================================
# Girsanov
# ============================================================================


class TestGirsanovTransform:
    """Test the change of measure."""

    def test_diagonal_noise_shape(self, lorenz):
        gs = girsanov_transform(lorenz, lorenz.unknowns[0])
        assert gs.nx == 4
        assert isinstance(gs.noise_eqs, sp.MatrixBase)
        assert gs.noise_eqs.shape == (4, 3)
        assert not gs.is_scalar_noise

    def test_diagonal_noise_terms(self, lorenz):
        x, y, z = lorenz.unknowns
        sigma, rho, beta = lorenz.ps
        gs = girsanov_transform(lorenz, x)
        theta = gs.unknowns[-1]
        tenth = sp.Rational(1, 10)

        # d = [-1/10, 0, 0]
        assert same(gs.eqs[0].rhs, sigma * (y - x) + tenth**2 * x)
        assert same(gs.eqs[1].rhs, lorenz.eqs[1].rhs)
        assert gs.eqs[3].rhs == 0
        assert same(gs.noise_eqs[3, 0], -tenth * theta)
        assert gs.noise_eqs[3, 1] == 0
        assert gs.noise_eqs[0, 0] == tenth * x

    def test_weight_observed_and_default(self, lorenz):
        gs = girsanov_transform(lorenz, lorenz.unknowns[0], theta0=2)
        theta = gs.unknowns[-1]
        weight = gs.observed[-1]
        assert str(weight.lhs) == "weight"
        assert same(weight.rhs, theta / 2)
        assert gs.defaults[theta] == 2

    def test_matrix_noise(self):
        t, x, y, s = sp.symbols("t x y s")
        G = sp.Matrix([[s], [s * y]])
        sys = SDESystem([-x, -y], G, t, [x, y], [s], name="col")
        gs = girsanov_transform(sys, y)
        theta = gs.unknowns[-1]
        assert gs.noise_eqs.shape == (3, 1)
        # d = -(G^T grad u)/u = -(s*y)/y = -s
        assert same(gs.noise_eqs[2, 0], -s * theta)
        assert same(gs.eqs[0].rhs, -x + s**2)
        assert same(gs.eqs[1].rhs, -y + s**2 * y)

    def test_square_matrix_pairs_channels_with_transpose(self):
        t, x, y = sp.symbols("t x y")
        G = sp.Matrix([[1, 2], [0, 1]])
        sys = SDESystem([-x, -y], G, t, [x, y], [], name="sq")
        gs = girsanov_transform(sys, x)
        theta = gs.unknowns[-1]
        # G^T grad u = [1, 2], so d = [-1/x, -2/x]
        assert same(gs.noise_eqs[2, 0], -theta / x)
        assert same(gs.noise_eqs[2, 1], -2 * theta / x)
        assert same(gs.eqs[0].rhs, -x + 5 / x)
        assert same(gs.eqs[1].rhs, -y + 2 / x)

    def test_one_state_becomes_scalar_noise(self, gbm):
        x = gbm.unknowns[0]
        mu, sigma = gbm.ps
        gs = girsanov_transform(gbm, x)
        theta = gs.unknowns[-1]
        assert gs.noise_is_vector
        assert gs.is_scalar_noise
        assert len(gs.noise_eqs) == 2
        assert same(gs.noise_eqs[1], -sigma * theta)
        assert same(gs.eqs[0].rhs, mu * x + sigma**2 * x)

    def test_scalar_noise_stays_scalar(self, scalar_noise_2d):
        gs = girsanov_transform(scalar_noise_2d, scalar_noise_2d.unknowns[0])
        assert gs.is_scalar_noise
        assert len(gs.noise_eqs) == 3

    def test_zero_u_raises(self, lorenz):
        x = lorenz.unknowns[0]
        with pytest.raises(DivisionByZeroError):
            girsanov_transform(lorenz, 0)
        with pytest.raises(DivisionByZeroError):
            girsanov_transform(lorenz, sp.sin(x) ** 2 + sp.cos(x) ** 2 - 1)

    def test_division_by_zero_is_zero_division_error(self):
        assert issubclass(DivisionByZeroError, ZeroDivisionError)

    def test_fresh_names_when_taken(self):
        t, x, theta = sp.symbols("t x theta")
        sys = SDESystem([-theta * x], [x], t, [x], [theta], name="clash")
        gs = girsanov_transform(sys, x)
        assert str(gs.unknowns[-1]) == "theta_"
        assert gs.unknowns[-1] not in sys.ps

    def test_output_is_fresh_and_incomplete(self, lorenz):
        done = complete(lorenz)
        gs = girsanov_transform(done, done.unknowns[0])
        assert gs.tag != done.tag
        assert not gs.is_complete
        assert done.nx == 3

    def test_compiles_after_completion(self, lorenz):
        gs = complete(girsanov_transform(lorenz, lorenz.unknowns[0]))
        g, _ = compile_diffusion(gs)
        out = g(np.array([1.0, 2.0, 3.0, 1.0]), [10.0, 28.0, 8 / 3], 0.0)
        assert out.shape == (4, 3)
        np.testing.assert_allclose(out[:3], np.diag([0.1, 0.2, 0.3]))
        np.testing.assert_allclose(out[3], [-0.1, 0.0, 0.0])
