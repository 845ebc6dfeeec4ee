# tests/test_solve.py
"""End-to-end tests for ``ivp_engine.solve`` on ODE problems.

This module verifies:
- The linear round trip u' = u, u(0) = 1/2 reaches e/2 at t = 1.
- The error map contains "final", "l∞", "l2" and, with dense output,
  "L∞" and "L2".
- saveat times, interior tspan stops, timeseries_steps and
  save_timeseries=False shape the recorded history as documented.
- Fatal conditions carry the partial solution; strict=False returns it.
- Cancellation returns retcode "Terminated".
- Allocating and buffer-writing right-hand sides agree.
- Both control laws and both norms reach the tolerance.
- Premade problems integrate correctly.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

import numpy as np
import pytest
from pydantic import ValidationError

from ivp_engine import ODEProblem, solve
from ivp_engine.errors import (
    IntegrationFailure,
    MaxIterationsExceededError,
    SolverConfigError,
    StepSizeTooSmallError,
)
from ivp_engine.premades import (
    LINEAR_ALPHA,
    prob_ode_2dlinear,
    prob_ode_2dlinear_notinplace,
    prob_ode_linear,
    prob_ode_lorenz,
    prob_ode_rigidbody,
    prob_ode_threebody,
)

if TYPE_CHECKING:
    from numpy.typing import NDArray

    FloatArray = NDArray[np.floating]

ERROR_KEYS = {"final", "l∞", "l2", "L∞", "L2"}


def _exp_growth(t: float, u: float) -> float:  # noqa: ARG001
    return u


def _blowup(t: float, u: float) -> float:  # noqa: ARG001
    return u * u


# -------------------------------------------------------------------
# Accuracy and error map
# -------------------------------------------------------------------


def test_linear_round_trip() -> None:
    """u' = u from 1/2 over [0, 1] gives e/2 at tight tolerances."""
    sol = solve(ODEProblem(_exp_growth, 0.5), (0.0, 1.0), abstol=1e-10, reltol=1e-10)
    assert sol.retcode == "Success"
    assert sol.t == 1.0
    assert sol.u == pytest.approx(1.3591409, abs=1e-6)


def test_error_map_is_complete() -> None:
    """All five error keys are present with dense output and a timeseries."""
    sol = solve(prob_ode_linear, (0.0, 1.0))
    assert set(sol.errors) == ERROR_KEYS
    assert all(v >= 0.0 for v in sol.errors.values())
    assert sol.u_analytic == pytest.approx(0.5 * np.exp(LINEAR_ALPHA))
    assert len(sol.timeseries_analytic) == len(sol)


def test_error_map_without_dense_output() -> None:
    """Without dense output only the pointwise errors are computed."""
    sol = solve(prob_ode_linear, (0.0, 1.0), dense=False)
    assert set(sol.errors) == {"final", "l∞", "l2"}


def test_error_map_flags() -> None:
    """timeseries_errors and dense_errors switch off their keys."""
    sol = solve(prob_ode_linear, (0.0, 1.0), dense_errors=False)
    assert set(sol.errors) == {"final", "l∞", "l2"}
    sol = solve(prob_ode_linear, (0.0, 1.0), timeseries_errors=False)
    assert set(sol.errors) == {"final"}


def test_no_errors_without_analytic() -> None:
    """Problems without an analytic solution have an empty error map."""
    sol = solve(prob_ode_lorenz)
    assert sol.errors == {}
    assert sol.u_analytic is None


# -------------------------------------------------------------------
# Recording options
# -------------------------------------------------------------------


def test_saveat_times_are_recorded() -> None:
    """saveat times appear in the history with interpolated values."""
    saveat = [0.25, 0.5, 0.75]
    sol = solve(prob_ode_linear, (0.0, 1.0), saveat=saveat, abstol=1e-9, reltol=1e-9)

    times = sol.t_series
    for ts in saveat:
        hits = np.flatnonzero(times == ts)
        assert hits.size == 1
        assert sol[int(hits[0])] == pytest.approx(0.5 * np.exp(LINEAR_ALPHA * ts), abs=1e-7)
    assert np.all(np.diff(times) >= 0.0)


def test_saveat_without_dense_output() -> None:
    """saveat works even when dense output is not retained."""
    sol = solve(prob_ode_linear, (0.0, 1.0), saveat=0.5, dense=False)
    assert 0.5 in set(sol.t_series.tolist())
    assert sol.intervals == ()


def test_interior_tspan_stops_are_hit_exactly() -> None:
    """Interior tspan entries are landed on exactly."""
    sol = solve(prob_ode_linear, (0.0, 0.3, 0.7, 1.0))
    times = set(sol.t_series.tolist())
    assert {0.0, 0.3, 0.7, 1.0} <= times


def test_timeseries_steps_thins_history() -> None:
    """Every N-th step is kept; first and last points always are."""
    full = solve(prob_ode_linear, (0.0, 1.0), abstol=1e-8, reltol=1e-8)
    thin = solve(
        prob_ode_linear, (0.0, 1.0), abstol=1e-8, reltol=1e-8, timeseries_steps=3
    )

    assert len(thin) < len(full)
    assert thin.t_series[0] == 0.0
    assert thin.t_series[-1] == 1.0
    assert thin.u == full.u


def test_save_timeseries_false_keeps_last_point() -> None:
    """Only the final point is kept; the final error is still computed."""
    sol = solve(prob_ode_linear, (0.0, 1.0), save_timeseries=False)
    assert len(sol) == 1
    assert sol.t == 1.0
    assert set(sol.errors) == {"final"}
    assert len(sol.intervals) == 1


# -------------------------------------------------------------------
# Failures and cancellation
# -------------------------------------------------------------------


def test_step_size_underflow_carries_partial_solution() -> None:
    """u' = u**2 from 1 blows up at t = 1; the run stops before that."""
    with pytest.raises(StepSizeTooSmallError) as excinfo:
        solve(ODEProblem(_blowup, 1.0), (0.0, 2.0), dtmin=1e-6)

    err = excinfo.value
    assert isinstance(err, IntegrationFailure)
    assert err.solution is not None
    assert err.solution.retcode == "DtLessThanMin"
    assert 0.5 < err.solution.t < 1.0
    assert err.solution.failure is err


def test_strict_false_returns_partial_solution() -> None:
    """With strict=False the partial solution is returned with a warning."""
    with pytest.warns(RuntimeWarning, match="dtmin"):
        sol = solve(ODEProblem(_blowup, 1.0), (0.0, 2.0), dtmin=1e-6, strict=False)
    assert sol.retcode == "DtLessThanMin"
    assert sol.t < 1.0


def test_maxiters_exceeded() -> None:
    """The iteration cap raises with retcode "MaxIters"."""
    with pytest.raises(MaxIterationsExceededError) as excinfo:
        solve(prob_ode_linear, (0.0, 1.0), abstol=1e-12, reltol=1e-12, maxiters=5)
    sol = excinfo.value.solution
    assert sol is not None
    assert sol.retcode == "MaxIters"
    assert sol.stats.niter == 6
    assert "final" in sol.errors


def test_cancel_flag_stops_run() -> None:
    """A set cancellation flag stops before the first step."""
    flag = threading.Event()
    flag.set()
    sol = solve(prob_ode_linear, (0.0, 1.0), cancel=flag)
    assert sol.retcode == "Terminated"
    assert sol.t == 0.0
    assert len(sol) == 1


# -------------------------------------------------------------------
# Options and problem forms
# -------------------------------------------------------------------


def test_inplace_and_allocating_agree() -> None:
    """Buffer-writing and allocating forms give identical trajectories."""
    a = solve(prob_ode_2dlinear, (0.0, 1.0))
    b = solve(prob_ode_2dlinear_notinplace, (0.0, 1.0))
    assert np.array_equal(a.t_series, b.t_series)
    assert np.array_equal(a.u, b.u)
    assert a.u.shape == (4, 2)
    assert set(a.errors) == ERROR_KEYS


@pytest.mark.parametrize("controller", ["simple", "pi"])
@pytest.mark.parametrize("norm", ["rms", "max"])
def test_control_laws_and_norms(controller: str, norm: str) -> None:
    """Every control law / norm combination reaches the tolerance."""
    sol = solve(
        prob_ode_2dlinear,
        (0.0, 1.0),
        controller=controller,
        internalnorm=norm,
        abstol=1e-8,
        reltol=1e-8,
    )
    assert sol.retcode == "Success"
    assert sol.errors["final"] < 1e-6


@pytest.mark.parametrize("name", ["bs3", "rkf45", "cash_karp", "dopri5", "heun"])
def test_adaptive_tableaus(name: str) -> None:
    """Every embedded pair integrates the linear problem adaptively."""
    sol = solve(prob_ode_linear, (0.0, 1.0), algorithm=name, abstol=1e-8, reltol=1e-8)
    assert sol.errors["final"] < 1e-5
    assert sol.stats.nreject >= 0
    assert sol.stats.nf > 0


def test_greek_aliases() -> None:
    """Greek spellings are accepted for dt, dtmax and gamma."""
    sol = solve(
        prob_ode_linear,
        (0.0, 1.0),
        **{"Δt": 0.1, "Δtmax": 0.2, "γ": 0.8},
    )
    assert np.all(np.diff(sol.t_series) <= 0.2 + 1e-12)


def test_fixed_step_count() -> None:
    """Fixed stepping takes exactly span/dt steps."""
    sol = solve(prob_ode_linear, (0.0, 1.0), algorithm="rk4", adaptive=False, dt=0.125)
    assert sol.stats.naccept == 8
    assert sol.stats.nreject == 0
    assert np.allclose(sol.t_series, np.linspace(0.0, 1.0, 9))


def test_unknown_option_rejected() -> None:
    """Misspelled options raise pydantic's ValidationError."""
    with pytest.raises(ValidationError):
        solve(prob_ode_linear, (0.0, 1.0), abstoll=1e-3)


def test_unknown_algorithm_rejected() -> None:
    """An unknown tableau name raises SolverConfigError."""
    with pytest.raises(SolverConfigError):
        solve(prob_ode_linear, (0.0, 1.0), algorithm="rk99")


@pytest.mark.parametrize("tspan", [(1.0,), (1.0, 0.0), (0.0, 0.5, 0.5, 1.0)])
def test_invalid_tspan_rejected(tspan: tuple[float, ...]) -> None:
    """tspan needs two or more strictly increasing times."""
    with pytest.raises(SolverConfigError):
        solve(prob_ode_linear, tspan)


def test_bad_problem_type() -> None:
    """Only ODEProblem and SDEProblem are accepted."""
    with pytest.raises(TypeError):
        solve(object(), (0.0, 1.0))  # type: ignore[arg-type]


# -------------------------------------------------------------------
# Premades
# -------------------------------------------------------------------


def test_threebody_orbit_is_periodic() -> None:
    """The Arenstorf orbit returns to its initial state after one period."""
    sol = solve(prob_ode_threebody, abstol=1e-10, reltol=1e-10)
    assert sol.retcode == "Success"
    assert np.allclose(sol.u, prob_ode_threebody.u0, atol=1e-3)


def test_rigidbody_conserves_invariant() -> None:
    """1.25 u1**2 + 2 u2**2 is conserved along rigid-body trajectories."""
    sol = solve(prob_ode_rigidbody, abstol=1e-10, reltol=1e-10)
    u0 = np.asarray(prob_ode_rigidbody.u0)
    # I2 u1**2 - I1 u2**2 with I1 = -2, I2 = 1.25
    inv0 = 1.25 * u0[0] ** 2 + 2.0 * u0[1] ** 2
    inv1 = 1.25 * sol.u[0] ** 2 + 2.0 * sol.u[1] ** 2
    assert inv1 == pytest.approx(inv0, abs=1e-7)
