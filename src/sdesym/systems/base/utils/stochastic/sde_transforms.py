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
Structural Transforms for SDE Systems

Pure functions SDESystem → SDESystem. The input is never modified; the
output gets a fresh tag, is not complete, and skips construction checks.

Transforms:
    stochastic_integral_transform   Ito ↔ Stratonovich drift correction
    girsanov_transform              change of measure with a weight process

Ito/Stratonovich
----------------
For noise channels g_k (columns of a diffusion matrix, or the whole
noise vector for vector noise, diagonal or scalar):

    f_new = f + c * Σ_k (∂g_k/∂x) g_k

c = -1/2 converts Ito → Stratonovich, c = +1/2 converts back.
"""

from typing import TYPE_CHECKING, Iterable, Union

import sympy as sp

from sdesym.systems.base.core.equations import Differential, Equation
from sdesym.systems.base.core.errors import DivisionByZeroError
from sdesym.systems.base.utils.stochastic.noise_analysis import noise_channels
from sdesym.types.backends import SDEType

if TYPE_CHECKING:
    from sdesym.systems.base.core.sde_system import SDESystem

ITO_TO_STRATONOVICH = sp.Rational(-1, 2)
STRATONOVICH_TO_ITO = sp.Rational(1, 2)


# ============================================================================
# Ito ↔ Stratonovich
# ============================================================================


def stochastic_integral_transform(sys: "SDESystem", correction_factor) -> "SDESystem":
    """
    Add ``correction_factor × Σ_k J_k g_k`` to the drift.

    J_k is the Jacobian of noise channel g_k with respect to the states.
    Matrix noise has one channel per column. Vector noise, diagonal or
    scalar, is a single channel equal to the noise vector, so cross terms
    ∂g_i/∂x_j g_j are kept. The diffusion term is unchanged.

    Parameters
    ----------
    sys : SDESystem
        Input system
    correction_factor : number or sp.Expr
        -1/2 for Ito → Stratonovich, +1/2 for Stratonovich → Ito

    Examples
    --------
    >>> strat = stochastic_integral_transform(gbm, sp.Rational(-1, 2))
    >>> strat.eqs[0].rhs
    mu*x - sigma**2*x/2
    """
    factor = sp.sympify(correction_factor)
    states = list(sys.unknowns)

    correction = sp.zeros(len(sys.eqs), 1)
    if isinstance(sys.noise_eqs, sp.MatrixBase):
        channels = noise_channels(sys.noise_eqs)
    else:
        channels = [sp.Matrix(list(sys.noise_eqs))]

    for channel in channels:
        jac = channel.jacobian(states)
        correction += sp.simplify(jac * channel)

    eqs = [
        Equation(eq.lhs, eq.rhs + factor * correction[i]) for i, eq in enumerate(sys.eqs)
    ]
    return sys._replace(eqs=eqs, tag=None, complete=False, index_cache=None)


def convert_sde_type(sys: "SDESystem", source: SDEType, target: SDEType) -> "SDESystem":
    """
    Convert between interpretations; identity if ``source == target``.

    Raises
    ------
    ValueError
        If an interpretation is unknown
    """
    valid = ("ito", "stratonovich")
    if source not in valid or target not in valid:
        raise ValueError(f"SDE type must be one of {valid}, got {source!r} → {target!r}")
    if source == target:
        return sys
    factor = ITO_TO_STRATONOVICH if source == "ito" else STRATONOVICH_TO_ITO
    return stochastic_integral_transform(sys, factor)


# ============================================================================
# Girsanov
# ============================================================================


def _fresh_symbol(base: str, taken: Iterable[sp.Symbol]) -> sp.Symbol:
    names = {str(s) for s in taken}
    name = base
    while name in names:
        name = f"{name}_"
    return sp.Symbol(name)


def girsanov_transform(sys: "SDESystem", u, theta0: Union[float, sp.Expr] = 1.0) -> "SDESystem":
    """
    Change of measure with likelihood weight process θ.

    With d = -(gᵀ ∇u) / u (element-wise g_k ∂u/∂x_k for diagonal noise):

        drift     f - g d
        θ drift   0
        θ noise   θ dᵀ

    The returned system has the extra state θ (``theta``), the observed
    equation ``weight ~ θ / theta0`` and the default ``θ ↦ theta0``.
    Expectations satisfy E[F(x)] = E'[F(x) weight].

    Diffusion layout of the result:

    - diagonal vector, n > 1: matrix [diag(g); θ dᵀ] of shape (n+1, n)
    - matrix (n, m): matrix (n+1, m)
    - single-channel vector (n == 1, or scalar noise): vector of length
      n+1 with scalar noise

    Raises
    ------
    DivisionByZeroError
        If ``u`` simplifies to zero. Expressions that vanish only for
        particular parameter values are not detected; they produce a
        numeric division by zero when evaluated.

    Examples
    --------
    >>> gs = girsanov_transform(lorenz, x)
    >>> gs.noise_eqs.shape
    (4, 3)
    >>> gs.observed[-1]
    weight ~ 1.0*theta
    """
    u = sp.sympify(u)
    if sp.simplify(u) == 0:
        raise DivisionByZeroError(f"Girsanov transform requires a non-zero u, got {u}")

    states = list(sys.unknowns)
    taken = set(states) | set(sys.full_parameters()) | {sys.iv}
    taken |= {eq.lhs for eq in sys.observed}
    theta = _fresh_symbol("theta", taken)
    weight = _fresh_symbol("weight", taken | {theta})

    grad = sp.Matrix([sp.diff(u, x) for x in states])
    noise = sys.noise_eqs

    if isinstance(noise, sp.MatrixBase):
        G = sp.Matrix(noise)
        d = (-(G.T * grad) / u).applyfunc(sp.simplify)
        drift_correction = G * d
    elif sys.is_scalar_noise:
        g = sp.Matrix(list(noise))
        d = sp.Matrix([sp.simplify(-(g.T * grad)[0] / u)])
        drift_correction = g * d
    else:
        g = sp.Matrix(list(noise))
        d = sp.Matrix([sp.simplify(-g[k] * grad[k] / u) for k in range(len(states))])
        drift_correction = g.multiply_elementwise(d)

    D = Differential(sys.iv)
    eqs = [Equation(eq.lhs, eq.rhs - drift_correction[i]) for i, eq in enumerate(sys.eqs)]
    eqs.append(Equation(D(theta), 0))

    theta_row = (theta * d).T
    is_scalar_noise = False
    if isinstance(noise, sp.MatrixBase):
        new_noise = sp.Matrix(noise).col_join(theta_row)
    elif sys.is_scalar_noise or len(noise) == 1:
        new_noise = tuple(noise) + (theta_row[0],)
        is_scalar_noise = True
    else:
        new_noise = sp.diag(*noise).col_join(theta_row)

    defaults = dict(sys.defaults)
    defaults[theta] = theta0

    return sys._replace(
        eqs=eqs,
        noise_eqs=new_noise,
        unknowns=tuple(states) + (theta,),
        observed=tuple(sys.observed) + (Equation(weight, theta / theta0),),
        defaults=defaults,
        is_scalar_noise=is_scalar_noise,
        tag=None,
        complete=False,
        index_cache=None,
    )


__all__ = [
    "ITO_TO_STRATONOVICH",
    "STRATONOVICH_TO_ITO",
    "convert_sde_type",
    "girsanov_transform",
    "stochastic_integral_transform",
]
