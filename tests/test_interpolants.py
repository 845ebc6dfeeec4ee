# tests/test_interpolants.py
"""Unit tests for dense-output intervals.

This module verifies:
- Interval endpoints reproduce the step states exactly.
- Extra interpolation stages of "dp5" are evaluated lazily and only once.
- The cubic Hermite fallback is exact for cubic trajectories.
- Truncation after an event moves the end point but keeps the polynomial.
- build_interval picks the tableau extension or the Hermite fallback.
- Intervals without a derivative source or an interpolant raise ValueError.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import pytest

from ivp_engine.interpolants import HermiteInterval, Interval, RKInterval, build_interval
from ivp_engine.rhs import RhsAdapter
from ivp_engine.stepper import ExplicitRKStepper
from ivp_engine.tableaus import get_tableau

if TYPE_CHECKING:
    from numpy.typing import NDArray

    FloatArray = NDArray[np.floating]


def _decay(t: float, u: FloatArray) -> FloatArray:  # noqa: ARG001
    return -0.7 * u


def _one_step(name: str, dt: float = 0.3) -> tuple[RhsAdapter, Interval, FloatArray, FloatArray]:
    rhs = RhsAdapter(_decay, (2,))
    tab = get_tableau(name)
    stepper = ExplicitRKStepper(tab, rhs, (2,))
    u0 = np.array([1.0, -2.0])
    result = stepper.step(0.0, u0, dt)
    u1 = np.array(result.u_next, copy=True)
    interval = build_interval(tab, rhs, 0.0, dt, u0, u1, result.k)
    return rhs, interval, u0, u1


@pytest.mark.parametrize("name", ["dp5", "dopri5", "bs3", "rk4", "euler"])
def test_endpoints_are_exact(name: str) -> None:
    """interp(t_prev) == u_prev and interp(t) == u_next bit for bit."""
    _, interval, u0, u1 = _one_step(name)
    assert np.array_equal(interval(0.0), u0)
    assert np.array_equal(interval(0.3), u1)


def test_dp5_extra_stages_are_lazy() -> None:
    """Extra stages are computed on the first interior query only."""
    rhs, interval, _, _ = _one_step("dp5")
    assert isinstance(interval, RKInterval)

    nf_before = rhs.nf
    interval(0.0)
    interval(0.3)
    assert rhs.nf == nf_before

    interval(0.1)
    assert rhs.nf == nf_before + 2
    interval(0.2)
    assert rhs.nf == nf_before + 2


def test_dp5_interpolant_is_accurate() -> None:
    """Interior values are close to the exact exponential decay."""
    _, interval, u0, _ = _one_step("dp5", dt=0.1)
    for t in (0.025, 0.05, 0.075):
        exact = u0 * np.exp(-0.7 * t)
        assert np.allclose(interval(t), exact, atol=1e-8)


def test_hermite_exact_for_cubic() -> None:
    """Cubic Hermite interpolation reproduces a cubic polynomial."""

    def p(t: float) -> FloatArray:
        return np.array([t**3 - 2.0 * t + 1.0])

    def dp(t: float) -> FloatArray:
        return np.array([3.0 * t**2 - 2.0])

    interval = HermiteInterval(0.5, 1.5, p(0.5), p(2.0), dp(0.5), dp(2.0))
    for t in np.linspace(0.5, 2.0, 7):
        assert np.allclose(interval(t), p(t), atol=1e-12)


def test_hermite_lazy_right_derivative() -> None:
    """Without f1 the right-end derivative is evaluated once on demand."""
    rhs = RhsAdapter(_decay, (2,))
    u0 = np.array([1.0, 1.0])
    u1 = u0 * np.exp(-0.7 * 0.1)
    interval = HermiteInterval(0.0, 0.1, u0, u1, _decay(0.0, u0), rhs=rhs)
    interval(0.05)
    interval(0.07)
    assert rhs.nf == 1


def test_truncate_keeps_polynomial() -> None:
    """Truncation moves the end point without rescaling the interpolant."""
    _, interval, _, _ = _one_step("dp5")
    mid = interval(0.2)
    inner = interval(0.1)
    interval.truncate(0.2, mid)

    assert interval.t_end == 0.2
    assert interval.contains(0.2)
    assert not interval.contains(0.25)
    assert np.array_equal(interval(0.1), inner)
    assert np.array_equal(interval(0.2), mid)


def test_build_interval_fallback_for_plain_tableaus() -> None:
    """Tableaus without an extension get a Hermite interval."""
    _, interval, _, _ = _one_step("rk4")
    assert isinstance(interval, HermiteInterval)
    _, interval, _, _ = _one_step("bs3")
    assert isinstance(interval, RKInterval)


def test_hermite_requires_derivative_source() -> None:
    """Without f1 and without an rhs there is no way to build the cubic."""
    u0 = np.array([1.0])
    with pytest.raises(ValueError, match="needs f1 or an rhs"):
        HermiteInterval(0.0, 0.1, u0, u0, u0)


def test_rk_interval_requires_interpolant() -> None:
    """Tableaus without a continuous extension cannot build an RKInterval."""
    rhs = RhsAdapter(_decay, (2,))
    tab = get_tableau("rk4")
    k = np.zeros((tab.stages, 2))
    u0 = np.ones(2)
    with pytest.raises(ValueError, match="has no interpolant"):
        RKInterval(0.0, 0.1, u0, u0, k, tab, rhs)
