# tests/test_controller.py
"""Unit tests for step-size control and the stepper kernel.

This module verifies:
- The simple law grows, shrinks and clamps as documented.
- Rejected steps never grow under either law.
- The PI law forbids growth right after a rejection.
- Unknown control laws are rejected.
- The automatic initial step is positive and finite.
- The scaled norm maps non-finite values to infinity.
- FSAL tableaus reuse the last stage as the next first stage.
"""

from __future__ import annotations

import numpy as np
import pytest

from ivp_engine.controller import (
    DtControllerConfig,
    PIController,
    SimpleController,
    make_controller,
    select_initial_dt,
)
from ivp_engine.rhs import RhsAdapter
from ivp_engine.stepper import ExplicitRKStepper, scaled_norm
from ivp_engine.tableaus import get_tableau

# -------------------------------------------------------------------
# Control laws
# -------------------------------------------------------------------


def test_simple_controller_zero_error_grows_by_qmax() -> None:
    """A zero error estimate grows by qmax."""
    ctrl = SimpleController(order=4, cfg=DtControllerConfig())
    assert ctrl.on_accept(0.1, 0.0) == pytest.approx(1.0)


def test_simple_controller_unit_error_applies_safety() -> None:
    """err == 1 scales by gamma."""
    ctrl = SimpleController(order=4, cfg=DtControllerConfig(safety=0.9))
    assert ctrl.on_accept(0.1, 1.0) == pytest.approx(0.09)


def test_simple_controller_clamps_to_qmin() -> None:
    """Huge errors shrink by at most qmin."""
    ctrl = SimpleController(order=4, cfg=DtControllerConfig(fac_min=0.2))
    assert ctrl.on_reject(1.0, 1e12) == pytest.approx(0.2)
    assert ctrl.on_reject(1.0, float("inf")) == pytest.approx(0.2)


@pytest.mark.parametrize("law", ["simple", "pi"])
def test_rejection_never_grows(law: str) -> None:
    """on_reject never returns a larger dt."""
    ctrl = make_controller(4, DtControllerConfig(law=law))  # type: ignore[arg-type]
    for err in (1.0000001, 1.5, 10.0, 1e6):
        assert ctrl.on_reject(0.5, err) <= 0.5


def test_pi_controller_no_growth_after_reject() -> None:
    """The step after a rejection may not grow even with a tiny error."""
    ctrl = PIController(order=4, cfg=DtControllerConfig(law="pi"))
    ctrl.on_reject(0.5, 4.0)
    assert ctrl.on_accept(0.1, 1e-8) <= 0.1
    # the next acceptance may grow again
    assert ctrl.on_accept(0.1, 1e-8) > 0.1


def test_make_controller_unknown_law() -> None:
    """Unknown laws raise ValueError."""
    with pytest.raises(ValueError, match="Unknown controller"):
        make_controller(4, DtControllerConfig(law="bogus"))  # type: ignore[arg-type]


def test_clamp_respects_bounds() -> None:
    """clamp keeps dt in [dt_min, dt_max]."""
    cfg = DtControllerConfig(dt_min=1e-3)
    assert cfg.clamp(1e-6, 1.0) == pytest.approx(1e-3)
    assert cfg.clamp(5.0, 1.0) == pytest.approx(1.0)


def test_select_initial_dt_positive() -> None:
    """The Hairer heuristic returns a positive finite step."""
    rhs = RhsAdapter(lambda t, u: -u, (2,))  # noqa: ARG005
    u0 = np.array([1.0, 2.0])
    dt = select_initial_dt(rhs, 0.0, u0, -u0, order=5, atol=1e-6, rtol=1e-3)
    assert np.isfinite(dt)
    assert dt > 0.0


# -------------------------------------------------------------------
# Stepper
# -------------------------------------------------------------------


def test_scaled_norm_non_finite_is_inf() -> None:
    """NaN or inf errors map to an infinite norm."""
    scale = np.ones(2)
    assert scaled_norm(np.array([np.nan, 0.0]), scale) == float("inf")
    assert scaled_norm(np.array([3.0, 4.0]), scale, "max") == pytest.approx(4.0)
    assert scaled_norm(np.array([3.0, 4.0]), scale, "rms") == pytest.approx(np.sqrt(12.5))


def test_euler_step_matches_formula() -> None:
    """One Euler step is u + dt * f(t, u)."""
    rhs = RhsAdapter(lambda t, u: 2.0 * u, (3,))  # noqa: ARG005
    stepper = ExplicitRKStepper(get_tableau("euler"), rhs, (3,))
    u = np.array([1.0, 2.0, 3.0])
    result = stepper.step(0.0, u, 0.1)
    assert result.error is None
    assert np.allclose(result.u_next, 1.2 * u)


def test_fsal_reuses_last_stage() -> None:
    """After accept(), the next step of an FSAL tableau skips one evaluation."""
    rhs = RhsAdapter(lambda t, u: -u, (2,))  # noqa: ARG005
    tab = get_tableau("dp5")
    stepper = ExplicitRKStepper(tab, rhs, (2,))
    u = np.array([1.0, 0.5])

    stepper.step(0.0, u, 0.1)
    assert rhs.nf == tab.stages
    u1 = np.array(stepper.step(0.0, u, 0.1).u_next, copy=True)
    # retry from the same point reuses the cached first stage
    assert rhs.nf == 2 * tab.stages - 1

    stepper.accept()
    stepper.step(0.1, u1, 0.1)
    assert rhs.nf == 3 * tab.stages - 2

    stepper.invalidate()
    stepper.step(0.1, u1, 0.1)
    assert rhs.nf == 4 * tab.stages - 2
