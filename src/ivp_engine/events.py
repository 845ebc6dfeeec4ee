# src/ivp_engine/events.py
"""Event detection and user callbacks.

An :class:`EventCondition` pairs a scalar ``condition(t, u)`` with a reaction
``affect(integrator)``. After every accepted step the solver asks each
callback whether an event occurred inside the step:

1. Scan: the condition is sampled at ``interp_points`` evenly spaced interior
   points of the step (through the dense interpolant) plus the right end.
   A sign change between consecutive samples in an allowed direction, or an
   exact zero at a sample, brackets a crossing.
2. Locate: the crossing time is found with Brent's method on the bracket.
   If the solve fails, an :class:`~ivp_engine.errors.EventRootFindWarning`
   is emitted and the right end of the bracket is used instead.
3. React: the solver truncates the step at the crossing, records the
   pre-event point, calls ``affect`` and records the post-event point.

Callbacks are strategy objects (:class:`Callback`) with ``on_accepted_step``
and ``on_event`` hooks. Reactions receive an integrator handle exposing the
current ``t``, ``u``, ``dt`` and stage derivatives ``k``, plus ``resize`` and
``terminate``. They never see solver internals.
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, Protocol

import numpy as np
from numpy.typing import NDArray
from scipy.optimize import root_scalar

from .errors import EventRootFindFailure, EventRootFindWarning, SolverConfigError

if TYPE_CHECKING:
    from .interpolants import Interval

logger = logging.getLogger(__name__)

_INTERP_POINTS_ERROR_MSG = "interp_points must be >= 0, got {value}"
_DT_SAFETY_ERROR_MSG = "dt_safety must be > 0, got {value}"
_DIRECTION_ERROR_MSG = "direction must be -1, 0 or 1, got {value}"
_ROOTFIND_FAILED_MSG = (
    "Event root-finding failed on [{t_a:.12g}, {t_b:.12g}] ({reason}); "
    "using the bracketing sample t={t_b:.12g}"
)
_BAD_CALLBACK_ERROR_MSG = (
    "callback must be an EventCondition, a Callback or a sequence of them; got {kind}"
)

Direction = Literal[-1, 0, 1]


class IntegratorLike(Protocol):
    """Fields and controls available to callbacks and event reactions."""

    @property
    def t(self) -> float:
        """Current time."""
        ...

    @property
    def u(self) -> Any:
        """Current state (a live array, or a float for scalar problems)."""
        ...

    @u.setter
    def u(self, value: Any) -> None: ...

    @property
    def dt(self) -> float:
        """Step size of the last accepted step."""
        ...

    @property
    def k(self) -> NDArray[np.floating]:
        """Stage derivatives of the last accepted step."""
        ...

    def resize(self, n: int) -> None:
        """Resize a vector state to length ``n``."""
        ...

    def terminate(self) -> None:
        """Stop the integration after the current step."""
        ...


def user_state(u: NDArray[np.floating]) -> Any:
    """Return ``u`` as the user sees it: a float for 0-d states."""
    if u.ndim == 0:
        return float(u)
    return u


# =============================================================================
# Event configuration
# =============================================================================


@dataclass(slots=True, frozen=True)
class EventCondition:
    """A zero-crossing event and its reaction.

    Attributes:
        condition: Scalar function g(t, u); the event fires where g crosses 0.
        affect: Reaction called with the integrator handle at the event time.
            It may modify ``integrator.u`` in place and may resize it.
        interp_points: Interior samples per step used to bracket crossings.
        rootfind: Locate the crossing precisely; otherwise use the first
            sample past the crossing.
        dt_safety: Factor applied to the next proposed dt after the event.
        direction: 0 for any sign change, -1 for positive-to-negative only,
            1 for negative-to-positive only.
        rootfind_tol: Absolute tolerance on the event time.
    """

    condition: Callable[[float, Any], float]
    affect: Callable[[IntegratorLike], None]
    interp_points: int = 5
    rootfind: bool = True
    dt_safety: float = 1.0
    direction: Direction = 0
    rootfind_tol: float = 1e-12

    def __post_init__(self) -> None:
        """Validate parameters.

        Raises:
            SolverConfigError: If a parameter is out of range.
        """
        if int(self.interp_points) < 0:
            raise SolverConfigError(_INTERP_POINTS_ERROR_MSG.format(value=self.interp_points))
        if not self.dt_safety > 0.0:
            raise SolverConfigError(_DT_SAFETY_ERROR_MSG.format(value=self.dt_safety))
        if self.direction not in (-1, 0, 1):
            raise SolverConfigError(_DIRECTION_ERROR_MSG.format(value=self.direction))

    def value(self, t: float, u: NDArray[np.floating]) -> float:
        """Evaluate the condition as a float."""
        return float(self.condition(float(t), user_state(u)))

    def sample_times(self, t0: float, t1: float) -> NDArray[np.floating]:
        """Interior sample times plus the right end of [t0, t1]."""
        n = int(self.interp_points)
        thetas = np.arange(1, n + 2, dtype=float) / float(n + 1)
        times = t0 + thetas * (t1 - t0)
        times[-1] = t1
        return times


@dataclass(slots=True)
class EventHit:
    """A located event inside an accepted step.

    Attributes:
        t: Event time.
        event: The condition that fired.
        located: False if the time is a fallback sample rather than a root.
    """

    t: float
    event: EventCondition
    located: bool = True


def _crossing(g_a: float, g_b: float, direction: Direction) -> bool:
    """Return True if (g_a, g_b) brackets a crossing in an allowed direction."""
    if g_a == 0.0:
        return False
    rising = g_a < 0.0 <= g_b
    falling = g_a > 0.0 >= g_b
    if direction == 1:
        return rising
    if direction == -1:
        return falling
    return rising or falling


def locate_crossing(
    event: EventCondition,
    interval: Interval,
    t_a: float,
    t_b: float,
) -> float:
    """Find the crossing time of ``event`` on the bracket [t_a, t_b].

    Args:
        event: Event condition.
        interval: Dense interpolant covering the bracket.
        t_a: Left bracket time.
        t_b: Right bracket time.

    Raises:
        EventRootFindFailure: If the solve raises or does not converge.

    Returns:
        Crossing time.
    """

    def g(t: float) -> float:
        return event.value(t, interval(t))

    try:
        sol = root_scalar(g, bracket=(t_a, t_b), method="brentq", xtol=event.rootfind_tol)
    except (ValueError, RuntimeError) as exc:
        raise EventRootFindFailure(str(exc)) from exc
    if not sol.converged:
        raise EventRootFindFailure(str(sol.flag))
    return float(sol.root)


# =============================================================================
# Callback strategies
# =============================================================================


class Callback:
    """Base strategy for per-step callbacks; all hooks are no-ops."""

    def find_event(self, interval: Interval) -> EventHit | None:  # noqa: ARG002
        """Return the earliest event inside ``interval``, if any."""
        return None

    def on_event(self, integrator: IntegratorLike, hit: EventHit) -> None:
        """React to an event previously returned by :meth:`find_event`."""

    def on_accepted_step(self, integrator: IntegratorLike) -> None:
        """Called after every committed step."""


class StepCallback(Callback):
    """Call ``func(integrator)`` after every accepted step."""

    def __init__(self, func: Callable[[IntegratorLike], None]) -> None:
        self.func = func

    def on_accepted_step(self, integrator: IntegratorLike) -> None:
        self.func(integrator)


class EventCallback(Callback):
    """Callback that detects and reacts to one :class:`EventCondition`."""

    def __init__(self, event: EventCondition) -> None:
        """Initialize with an event condition."""
        self.event = event
        self.last_event_t: float | None = None
        self.n_events = 0

    def _is_repeat(self, t: float) -> bool:
        """True if ``t`` is the crossing that was just handled."""
        if self.last_event_t is None:
            return False
        window = max(10.0 * self.event.rootfind_tol, 1e-12 * max(1.0, abs(t)))
        return abs(t - self.last_event_t) <= window

    def _resolve(self, interval: Interval, t_a: float, g_b: float, t_b: float) -> EventHit:
        event = self.event
        if g_b == 0.0:
            return EventHit(t=t_b, event=event)
        if not event.rootfind:
            return EventHit(t=t_b, event=event, located=False)
        try:
            return EventHit(t=locate_crossing(event, interval, t_a, t_b), event=event)
        except EventRootFindFailure as exc:
            warnings.warn(
                _ROOTFIND_FAILED_MSG.format(t_a=t_a, t_b=t_b, reason=exc),
                EventRootFindWarning,
                stacklevel=2,
            )
            return EventHit(t=t_b, event=event, located=False)

    def find_event(self, interval: Interval) -> EventHit | None:
        """Scan ``interval`` for a crossing and locate the earliest one.

        Args:
            interval: Dense interpolant of the accepted step.

        Returns:
            The earliest new crossing, or None.
        """
        event = self.event
        t_a = interval.t0
        g_a = event.value(t_a, interval.u0)
        for t_b in event.sample_times(interval.t0, interval.t_end):
            g_b = event.value(t_b, interval(t_b))
            if _crossing(g_a, g_b, event.direction):
                hit = self._resolve(interval, t_a, g_b, float(t_b))
                if not self._is_repeat(hit.t):
                    return hit
            t_a, g_a = float(t_b), g_b
        return None

    def on_event(self, integrator: IntegratorLike, hit: EventHit) -> None:
        """Run the reaction and remember the event time."""
        self.last_event_t = hit.t
        self.n_events += 1
        logger.debug("Event fired at t=%.12g (located=%s)", hit.t, hit.located)
        self.event.affect(integrator)


class CallbackSet(Callback):
    """Ordered collection of callbacks acting as one."""

    def __init__(self, callbacks: Iterable[Callback] = ()) -> None:
        """Initialize from callbacks."""
        self.callbacks: list[Callback] = list(callbacks)
        self._owner: dict[int, Callback] = {}

    def __bool__(self) -> bool:
        return bool(self.callbacks)

    @property
    def has_events(self) -> bool:
        """Return True if any member can detect events."""
        return any(isinstance(cb, EventCallback) for cb in self.callbacks)

    @property
    def has_step_hooks(self) -> bool:
        """Return True if any member runs code after every accepted step."""
        return any(not isinstance(cb, EventCallback) for cb in self.callbacks)

    def find_event(self, interval: Interval) -> EventHit | None:
        """Return the earliest event among all members."""
        best: EventHit | None = None
        self._owner.clear()
        for cb in self.callbacks:
            hit = cb.find_event(interval)
            if hit is not None and (best is None or hit.t < best.t):
                best = hit
                self._owner[id(hit)] = cb
        return best

    def on_event(self, integrator: IntegratorLike, hit: EventHit) -> None:
        """Dispatch the event to the member that found it."""
        owner = self._owner.pop(id(hit), None)
        if owner is not None:
            owner.on_event(integrator, hit)

    def on_accepted_step(self, integrator: IntegratorLike) -> None:
        """Forward to every member."""
        for cb in self.callbacks:
            cb.on_accepted_step(integrator)


def as_callback_set(
    callback: EventCondition | Callback | Sequence[EventCondition | Callback] | None,
) -> CallbackSet:
    """Normalize the ``callback`` solve option into a :class:`CallbackSet`.

    Args:
        callback: None, a single event/callback, or a sequence of them.

    Raises:
        SolverConfigError: If an element has an unsupported type.

    Returns:
        CallbackSet (possibly empty).
    """
    if callback is None:
        return CallbackSet()
    if isinstance(callback, CallbackSet):
        return callback
    items = callback if isinstance(callback, Sequence) else (callback,)
    out: list[Callback] = []
    for item in items:
        if isinstance(item, EventCondition):
            out.append(EventCallback(item))
        elif isinstance(item, Callback):
            out.append(item)
        else:
            raise SolverConfigError(_BAD_CALLBACK_ERROR_MSG.format(kind=type(item).__name__))
    return CallbackSet(out)
