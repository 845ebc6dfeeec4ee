# src/ivp_engine/controller.py
"""Step-size control for adaptive explicit integration.

Two laws are provided behind a common interface:

- :class:`SimpleController` (default): with q = err**(1/(order+1)),
  accepted steps grow by clamp(gamma/q, qmin, qmax) and rejected steps
  shrink by clamp(gamma/q, qmin, 1).
- :class:`PIController`: proportional-integral ("Lund stabilized") control,
  fac = gamma * err**(-alpha) * err_prev**beta with
  alpha = 1/(order+1) - 0.75*beta. A step following a rejection may not grow.

``err`` is always a tolerance-scaled norm, so a step is acceptable when
err <= 1. Bounds [dt_min, dt_max] are enforced by the caller through
:meth:`DtControllerConfig.clamp`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal, Protocol

import numpy as np

from .stepper import NormName, scaled_norm

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from .rhs import RhsAdapter

ControllerName = Literal["simple", "pi"]

_UNKNOWN_CONTROLLER_ERROR_MSG = "Unknown controller: {name}"

# Floor on the remembered error for the PI law (Hairer, DOPRI5).
_PI_ERR_FLOOR = 1e-4


@dataclass(slots=True, frozen=True)
class DtControllerConfig:
    """Configuration for adaptive timestep control.

    Attributes:
        dt_min: Minimum allowed dt.
        dt_max: Maximum allowed dt (None means half the timespan).
        safety: Safety (risk) factor gamma applied to dt updates.
        fac_min: Minimum multiplicative change factor (qmin).
        fac_max: Maximum multiplicative change factor (qmax).
        law: Control law name.
        beta: PI stabilization exponent.
    """

    dt_min: float = 1e-10
    dt_max: float | None = None
    safety: float = 0.9
    fac_min: float = 0.2
    fac_max: float = 10.0
    law: ControllerName = "simple"
    beta: float = 0.04

    def clamp(self, dt: float, dt_max: float) -> float:
        """Clamp ``dt`` to [dt_min, dt_max]."""
        return min(max(dt, self.dt_min), dt_max)


class StepController(Protocol):
    """Interface shared by step-size control laws."""

    def on_accept(self, dt: float, err: float) -> float:
        """Return the next proposed dt after an accepted step."""
        ...

    def on_reject(self, dt: float, err: float) -> float:
        """Return the retry dt after a rejected step."""
        ...


@dataclass(slots=True)
class SimpleController:
    """Error-ratio law dt' = dt * clamp(gamma / q, qmin, qmax)."""

    order: int
    cfg: DtControllerConfig

    def _q(self, err: float) -> float:
        return float(err) ** (1.0 / float(self.order + 1))

    def on_accept(self, dt: float, err: float) -> float:
        """Propose the next dt after an accepted step.

        Args:
            dt: Size of the accepted step.
            err: Its scaled error norm (<= 1).

        Returns:
            Proposed next step size, before clamping to [dt_min, dt_max].
        """
        if err <= 0.0:
            return dt * self.cfg.fac_max
        fac = self.cfg.safety / self._q(err)
        return dt * min(self.cfg.fac_max, max(self.cfg.fac_min, fac))

    def on_reject(self, dt: float, err: float) -> float:
        """Shrink dt after a rejected step; never grows it.

        Args:
            dt: Size of the rejected step.
            err: Its scaled error norm (> 1 or non-finite).

        Returns:
            Step size for the retry.
        """
        if not np.isfinite(err):
            return dt * self.cfg.fac_min
        fac = self.cfg.safety / self._q(err)
        return dt * min(1.0, max(self.cfg.fac_min, fac))


@dataclass(slots=True)
class PIController:
    """Proportional-integral control law with Lund stabilization."""

    order: int
    cfg: DtControllerConfig
    err_prev: float = _PI_ERR_FLOOR
    last_rejected: bool = field(default=False)

    @property
    def alpha(self) -> float:
        """Proportional exponent."""
        return 1.0 / float(self.order + 1) - 0.75 * self.cfg.beta

    def on_accept(self, dt: float, err: float) -> float:
        """Propose the next dt from the current and previous error.

        The factor is capped at 1 right after a rejection.

        Args:
            dt: Size of the accepted step.
            err: Its scaled error norm (<= 1).

        Returns:
            Proposed next step size, before clamping to [dt_min, dt_max].
        """
        if err <= 0.0:
            fac = self.cfg.fac_max
        else:
            fac = self.cfg.safety * err ** (-self.alpha) * self.err_prev**self.cfg.beta
            fac = min(self.cfg.fac_max, max(self.cfg.fac_min, fac))
        if self.last_rejected:
            fac = min(fac, 1.0)
        self.err_prev = max(float(err), _PI_ERR_FLOOR)
        self.last_rejected = False
        return dt * fac

    def on_reject(self, dt: float, err: float) -> float:
        """Shrink dt after a rejected step and remember the rejection.

        Args:
            dt: Size of the rejected step.
            err: Its scaled error norm (> 1 or non-finite).

        Returns:
            Step size for the retry.
        """
        self.last_rejected = True
        if not np.isfinite(err):
            return dt * self.cfg.fac_min
        fac = self.cfg.safety * err ** (-self.alpha)
        return dt * min(1.0, max(self.cfg.fac_min, fac))


def make_controller(order: int, cfg: DtControllerConfig) -> StepController:
    """Build the controller selected by ``cfg.law``.

    Args:
        order: Order used in the control exponent.
        cfg: Controller configuration.

    Raises:
        ValueError: If the law is unknown.

    Returns:
        A fresh controller instance (PI control is stateful, so one per run).
    """
    if cfg.law == "simple":
        return SimpleController(order=order, cfg=cfg)
    if cfg.law == "pi":
        return PIController(order=order, cfg=cfg)
    raise ValueError(_UNKNOWN_CONTROLLER_ERROR_MSG.format(name=cfg.law))


def select_initial_dt(
    rhs: RhsAdapter,
    t0: float,
    u0: NDArray[np.floating],
    f0: NDArray[np.floating],
    *,
    order: int,
    atol: float | NDArray[np.floating],
    rtol: float,
    norm: NormName = "rms",
) -> float:
    """Automatic initial step (Hairer, Norsett & Wanner, Sec. II.4).

    Args:
        rhs: Adapted right-hand side (one extra evaluation is made).
        t0: Initial time.
        u0: Initial state.
        f0: f(t0, u0).
        order: Method order.
        atol: Absolute tolerance.
        rtol: Relative tolerance.
        norm: Norm kind.

    Returns:
        Suggested first step size (unclamped).
    """
    scale = atol + rtol * np.abs(u0)
    d0 = scaled_norm(u0, scale, norm)
    d1 = scaled_norm(f0, scale, norm)
    if d0 < 1e-5 or d1 < 1e-5:
        h0 = 1e-6
    else:
        h0 = 0.01 * d0 / d1

    u1 = u0 + h0 * f0
    f1 = rhs.evaluate(t0 + h0, u1)
    d2 = scaled_norm(f1 - f0, scale, norm) / h0

    if d1 <= 1e-15 and d2 <= 1e-15:
        h1 = max(1e-6, h0 * 1e-3)
    else:
        h1 = (0.01 / max(d1, d2)) ** (1.0 / float(order + 1))
    return float(min(100.0 * h0, h1))
