# tests/test_convergence.py
"""Convergence-order checks for the Runge-Kutta tableaus.

This module verifies:
- Fixed-step integration of u' = 1.01 u reaches the nominal order of every
  registered tableau (log2 error ratios under step halving).
- Adaptive integration error decreases with the tolerance.
- The dense interpolant of "dp5" is accurate between steps.
"""

from __future__ import annotations

import numpy as np
import pytest

from ivp_engine import solve
from ivp_engine.premades import LINEAR_ALPHA, prob_ode_linear
from ivp_engine.tableaus import available_tableaus, get_tableau


def _estimated_order(errors: list[float]) -> float:
    """Mean of log2 ratios of successive errors under step halving."""
    ratios = [np.log2(errors[i] / errors[i + 1]) for i in range(len(errors) - 1)]
    return float(np.mean(ratios))


def _fixed_step_errors(name: str, dts: list[float]) -> list[float]:
    errors = []
    for dt in dts:
        sol = solve(prob_ode_linear, (0.0, 1.0), algorithm=name, adaptive=False, dt=dt)
        errors.append(sol.errors["final"])
    return errors


@pytest.mark.parametrize("name", available_tableaus())
def test_fixed_step_order(name: str) -> None:
    """Halving dt reduces the final error by about 2**order."""
    order = get_tableau(name).order
    if order <= 3:
        dts = [1.0 / 2**k for k in range(4, 8)]
    else:
        dts = [1.0 / 2**k for k in range(2, 6)]

    errors = _fixed_step_errors(name, dts)

    assert all(e > 0.0 for e in errors)
    assert _estimated_order(errors) == pytest.approx(order, abs=0.3)


def test_adaptive_error_tracks_tolerance() -> None:
    """Tighter tolerances give smaller errors and more steps."""
    loose = solve(prob_ode_linear, (0.0, 1.0), abstol=1e-4, reltol=1e-4)
    tight = solve(prob_ode_linear, (0.0, 1.0), abstol=1e-9, reltol=1e-9)

    assert tight.errors["final"] < loose.errors["final"]
    assert tight.stats.naccept > loose.stats.naccept
    assert tight.errors["final"] < 1e-7


def test_dense_output_accuracy_between_steps() -> None:
    """sol(t) at interior times matches the analytic solution."""
    sol = solve(prob_ode_linear, (0.0, 1.0), abstol=1e-10, reltol=1e-10)
    times = np.linspace(0.0, 1.0, 37)
    values = np.asarray(sol(times), dtype=float)
    expected = 0.5 * np.exp(LINEAR_ALPHA * times)

    assert np.max(np.abs(values - expected)) < 1e-8
    assert sol.errors["L∞"] < 1e-8
