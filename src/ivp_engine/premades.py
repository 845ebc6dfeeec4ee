# src/ivp_engine/premades.py
"""Ready-made test problems.

ODE problems:
- prob_ode_linear: u' = 1.01 u, u0 = 1/2 (scalar), with analytic solution
- prob_ode_2dlinear: the same law on a 4x2 state, buffer-writing RHS
- prob_ode_2dlinear_notinplace: the same with an allocating RHS
- prob_ode_lorenz: Lorenz system, sigma=10, rho=28, beta=8/3
- prob_ode_threebody: restricted three-body (Arenstorf) orbit, periodic at T
- prob_ode_rigidbody: Euler equations of a rigid body

SDE problems (diagonal noise):
- prob_sde_linear, prob_sde_2dlinear: geometric Brownian motion
- prob_sde_wave, prob_sde_cubic, prob_sde_additive: nonlinear and additive
  problems with analytic solutions in terms of W
- prob_sde_lorenz: Lorenz drift with additive noise, no analytic solution
"""

from __future__ import annotations

from typing import Any, Final

import numpy as np
from numpy.typing import NDArray

from .problem import ODEProblem, SDEProblem

FloatArray = NDArray[np.floating]

# =============================================================================
# Linear
# =============================================================================

LINEAR_ALPHA: Final[float] = 1.01
SDE_LINEAR_BETA: Final[float] = 0.87

_MATRIX_SHAPE: Final[tuple[int, int]] = (4, 2)
_MATRIX_SEED: Final[int] = 100


def _matrix_u0() -> FloatArray:
    return np.random.default_rng(_MATRIX_SEED).random(_MATRIX_SHAPE)


def _linear(t: float, u: Any) -> Any:  # noqa: ARG001
    return LINEAR_ALPHA * u


def _linear_inplace(t: float, u: FloatArray, du: FloatArray) -> None:  # noqa: ARG001
    np.multiply(u, LINEAR_ALPHA, out=du)


def _linear_analytic(t: float, u0: Any) -> Any:
    return u0 * np.exp(LINEAR_ALPHA * t)


prob_ode_linear = ODEProblem(_linear, 0.5, analytic=_linear_analytic)

prob_ode_2dlinear = ODEProblem(_linear_inplace, _matrix_u0(), analytic=_linear_analytic)

prob_ode_2dlinear_notinplace = ODEProblem(_linear, _matrix_u0(), analytic=_linear_analytic)

# =============================================================================
# Lorenz
# =============================================================================

LORENZ_SIGMA: Final[float] = 10.0
LORENZ_RHO: Final[float] = 28.0
LORENZ_BETA: Final[float] = 8.0 / 3.0


def _lorenz(t: float, u: FloatArray, du: FloatArray) -> None:  # noqa: ARG001
    x, y, z = u
    du[0] = LORENZ_SIGMA * (y - x)
    du[1] = x * (LORENZ_RHO - z) - y
    du[2] = x * y - LORENZ_BETA * z


prob_ode_lorenz = ODEProblem(_lorenz, np.ones(3), tspan=(0.0, 1.0))

# =============================================================================
# Restricted three-body (Arenstorf orbit)
# =============================================================================

THREEBODY_MU: Final[float] = 0.012277471
THREEBODY_PERIOD: Final[float] = 17.0652165601579625588917206249


def _threebody(t: float, u: FloatArray, du: FloatArray) -> None:  # noqa: ARG001
    mu = THREEBODY_MU
    mu_p = 1.0 - mu
    y1, y2, v1, v2 = u
    d1 = ((y1 + mu) ** 2 + y2**2) ** 1.5
    d2 = ((y1 - mu_p) ** 2 + y2**2) ** 1.5
    du[0] = v1
    du[1] = v2
    du[2] = y1 + 2.0 * v2 - mu_p * (y1 + mu) / d1 - mu * (y1 - mu_p) / d2
    du[3] = y2 - 2.0 * v1 - mu_p * y2 / d1 - mu * y2 / d2


prob_ode_threebody = ODEProblem(
    _threebody,
    np.array([0.994, 0.0, 0.0, -2.00158510637908252240537862224]),
    tspan=(0.0, THREEBODY_PERIOD),
)

# =============================================================================
# Rigid body
# =============================================================================

RIGIDBODY_I: Final[tuple[float, float, float]] = (-2.0, 1.25, -0.5)


def _rigidbody(t: float, u: FloatArray, du: FloatArray) -> None:  # noqa: ARG001
    i1, i2, i3 = RIGIDBODY_I
    du[0] = i1 * u[1] * u[2]
    du[1] = i2 * u[0] * u[2]
    du[2] = i3 * u[0] * u[1]


prob_ode_rigidbody = ODEProblem(_rigidbody, np.array([1.0, 0.0, 0.9]), tspan=(0.0, 10.0))

# =============================================================================
# SDE problems
# =============================================================================


def _sde_linear_noise(t: float, u: Any) -> Any:  # noqa: ARG001
    return SDE_LINEAR_BETA * u


def _sde_linear_noise_inplace(t: float, u: FloatArray, du: FloatArray) -> None:  # noqa: ARG001
    np.multiply(u, SDE_LINEAR_BETA, out=du)


def _sde_linear_analytic(t: float, u0: Any, w: Any) -> Any:
    return u0 * np.exp((LINEAR_ALPHA - SDE_LINEAR_BETA**2 / 2.0) * t + SDE_LINEAR_BETA * w)


prob_sde_linear = SDEProblem(_linear, _sde_linear_noise, 0.5, analytic=_sde_linear_analytic)

prob_sde_2dlinear = SDEProblem(
    _linear_inplace,
    _sde_linear_noise_inplace,
    _matrix_u0(),
    analytic=_sde_linear_analytic,
)


def _wave_drift(t: float, u: Any) -> Any:  # noqa: ARG001
    return -0.01 * np.sin(u) * np.cos(u) ** 3


def _wave_noise(t: float, u: Any) -> Any:  # noqa: ARG001
    return 0.1 * np.cos(u) ** 2


def _wave_analytic(t: float, u0: Any, w: Any) -> Any:  # noqa: ARG001
    return np.arctan(0.1 * w + np.tan(u0))


prob_sde_wave = SDEProblem(_wave_drift, _wave_noise, 1.0, analytic=_wave_analytic)


def _cubic_drift(t: float, u: Any) -> Any:  # noqa: ARG001
    return 0.25 * u * (1.0 - u * u)


def _cubic_noise(t: float, u: Any) -> Any:  # noqa: ARG001
    return 0.5 * (1.0 - u * u)


def _cubic_analytic(t: float, u0: Any, w: Any) -> Any:  # noqa: ARG001
    e = np.exp(w)
    return ((1.0 + u0) * e + u0 - 1.0) / ((1.0 + u0) * e + 1.0 - u0)


prob_sde_cubic = SDEProblem(_cubic_drift, _cubic_noise, 0.5, analytic=_cubic_analytic)

ADDITIVE_ALPHA: Final[float] = 0.1
ADDITIVE_BETA: Final[float] = 0.05


def _additive_drift(t: float, u: Any) -> Any:
    return ADDITIVE_BETA / np.sqrt(1.0 + t) - u / (2.0 * (1.0 + t))


def _additive_noise(t: float, u: Any) -> Any:  # noqa: ARG001
    return ADDITIVE_ALPHA * ADDITIVE_BETA / np.sqrt(1.0 + t)


def _additive_analytic(t: float, u0: Any, w: Any) -> Any:
    return u0 / np.sqrt(1.0 + t) + ADDITIVE_BETA * (t + ADDITIVE_ALPHA * w) / np.sqrt(1.0 + t)


prob_sde_additive = SDEProblem(
    _additive_drift, _additive_noise, 1.0, analytic=_additive_analytic
)

SDE_LORENZ_NOISE: Final[float] = 3.0


def _lorenz_noise(t: float, u: FloatArray, du: FloatArray) -> None:  # noqa: ARG001
    du.fill(SDE_LORENZ_NOISE)


prob_sde_lorenz = SDEProblem(_lorenz, _lorenz_noise, np.ones(3), tspan=(0.0, 10.0))

__all__ = [
    "prob_ode_2dlinear",
    "prob_ode_2dlinear_notinplace",
    "prob_ode_linear",
    "prob_ode_lorenz",
    "prob_ode_rigidbody",
    "prob_ode_threebody",
    "prob_sde_2dlinear",
    "prob_sde_additive",
    "prob_sde_cubic",
    "prob_sde_linear",
    "prob_sde_lorenz",
    "prob_sde_wave",
]
