# src/ivp_engine/core_solver.py
"""Adaptive explicit Runge-Kutta solver for ODE problems.

:class:`CoreSolver` advances an :class:`~ivp_engine.problem.ODEProblem` from
``tspan[0]`` to ``tspan[-1]`` and returns a
:class:`~ivp_engine.solution.Solution`.

Loop structure (one iteration per attempted step):

1. Propose dt, truncated so the step lands exactly on the next stop
   (interior ``tspan`` entries and the final time).
2. Attempt the step with the embedded error estimate.
3. Adaptive mode: reject and shrink when err > 1, otherwise accept and
   propose the next dt through the controller. Fixed-step mode (or a
   tableau without embedded weights) always accepts.
4. Build the dense interval for the step and let event callbacks scan it.
   An event truncates the step at the crossing, records the pre-event
   point, runs the reaction (which may resize the state) and records the
   post-event point at the same time.
5. Record requested ``saveat`` times inside the step, the step itself, and
   call ``on_accepted_step`` hooks. Step hooks may edit the state, so the
   cached first-stage derivative is dropped after they run.

Fatal conditions (dt underflow, iteration cap) finalize the partial
solution, attach it to the exception and either raise (``strict=True``) or
warn and return it.

Performance hygiene:
    - The state and all stepping scratch arrays are preallocated.
    - Stage buffers are reused across steps; intervals take copies.
    - Dense intervals are only built when dense output, events or saveat
      need them.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final, Protocol

import numpy as np
from numpy.typing import NDArray

from .controller import DtControllerConfig, make_controller, select_initial_dt
from .errors import (
    DimensionMismatchError,
    IntegrationFailure,
    MaxIterationsExceededError,
    StepSizeTooSmallError,
)
from .events import CallbackSet, as_callback_set, user_state
from .interpolants import build_interval
from .problem import as_time_span
from .rhs import RhsAdapter
from .solution import Solution
from .stepper import ExplicitRKStepper, NormName
from .tableaus import Tableau, get_tableau

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import ArrayLike

    from .events import Callback, EventCondition
    from .interpolants import Interval
    from .problem import ODEProblem

logger = logging.getLogger(__name__)

# =============================================================================
# Errors / messages
# =============================================================================

_RESIZE_NDIM_ERROR_MSG = "cannot resize a {old}-d state to shape {new}"
_LANDING_RTOL: Final[float] = 100.0 * float(np.finfo(float).eps)


# =============================================================================
# Configuration dataclasses
# =============================================================================


class CancelFlag(Protocol):
    """Anything with ``is_set()``, e.g. ``threading.Event``."""

    def is_set(self) -> bool:
        """Return True once cancellation was requested."""
        ...


@dataclass(slots=True, frozen=True)
class AdaptiveConfig:
    """Configuration for adaptive stepping.

    Attributes:
        rtol: Relative tolerance.
        atol: Absolute tolerance (scalar or array-like).
        dt_init: Optional initial dt; if None an automatic choice is made.
        max_steps: Maximum loop iterations (accepted plus rejected).
        norm: Error norm kind.
    """

    rtol: float = 1e-3
    atol: float | NDArray[np.floating] = 1e-6
    dt_init: float | None = None
    max_steps: int = 1_000_000
    norm: NormName = "rms"


@dataclass(slots=True, frozen=True)
class OutputConfig:
    """What a run records.

    Attributes:
        dense: Keep dense-output intervals for ``sol(t)`` queries.
        save_timeseries: Keep the full history.
        timeseries_steps: Record every N-th accepted step.
        saveat: Extra times interpolated into the record.
        timeseries_errors: Compute pointwise errors.
        dense_errors: Compute dense errors.
    """

    dense: bool = True
    save_timeseries: bool = True
    timeseries_steps: int = 1
    saveat: tuple[float, ...] = ()
    timeseries_errors: bool = True
    dense_errors: bool = True


@dataclass(slots=True, frozen=True)
class RunConfig:
    """Configuration for CoreSolver.run.

    Attributes:
        method: Registered tableau name.
        tableau: Custom tableau; overrides ``method`` when given.
        adaptive: Whether to use adaptive stepping.
        strict: If True, fatal errors raise; otherwise they warn and the
            partial solution is returned.
        dt_controller: Step-size control parameters.
        adaptive_cfg: Tolerances and limits.
        output: Recording options.
        callback: Events and/or callbacks.
        cancel: Optional cooperative cancellation flag.
        seed: Seed for stochastic methods.
    """

    method: str = "dp5"
    tableau: Tableau | None = None
    adaptive: bool = True
    strict: bool = True
    dt_controller: DtControllerConfig = field(default_factory=DtControllerConfig)
    adaptive_cfg: AdaptiveConfig = field(default_factory=AdaptiveConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    callback: EventCondition | Callback | Sequence[EventCondition | Callback] | None = None
    cancel: CancelFlag | None = None
    seed: int | None = None


@dataclass(slots=True, frozen=True)
class RunPlan:
    """Resolved execution plan derived from RunConfig and the time span.

    Attributes:
        tableau: Resolved tableau.
        adaptive: Adaptive stepping actually in effect.
        t0: Initial time.
        stops: Times the solver must land on, ending with the final time.
        dt_max: Resolved maximum step.
        saveat: Sorted save times strictly inside (t0, tend].
    """

    tableau: Tableau
    adaptive: bool
    t0: float
    stops: tuple[float, ...]
    dt_max: float
    saveat: tuple[float, ...]


# =============================================================================
# Integrator handle
# =============================================================================


class Integrator:
    """View of a running integration handed to callbacks and event reactions."""

    def __init__(self, solver: CoreSolver) -> None:
        self._solver = solver

    @property
    def t(self) -> float:
        """Current time."""
        return self._solver._t

    @property
    def u(self) -> Any:
        """Current state: the live array (float for scalar problems)."""
        return user_state(self._solver._u)

    @u.setter
    def u(self, value: ArrayLike) -> None:
        arr = np.asarray(value, dtype=np.float64)
        if arr.shape != self._solver._u.shape:
            self._solver._resize_state(arr.shape)
        np.copyto(self._solver._u, arr)
        self._solver._stepper.invalidate()

    @property
    def dt(self) -> float:
        """Size of the last accepted (possibly truncated) step."""
        return self._solver._dt_last

    @property
    def k(self) -> NDArray[np.floating]:
        """Copy of the stage derivatives of the last step."""
        return np.array(self._solver._stepper._k, copy=True)

    @property
    def solution(self) -> Solution:
        """Solution recorded so far."""
        return self._solver._sol

    def resize(self, n: int) -> None:
        """Resize a vector state to length ``n``.

        Existing components are kept (truncated when shrinking); new ones
        start at zero. Fetch ``integrator.u`` again afterwards.
        """
        self._solver._resize_state((int(n),))
        self._solver._stepper.invalidate()

    def terminate(self) -> None:
        """Stop after the current step; the run returns retcode "Terminated"."""
        self._solver._terminated = True


# =============================================================================
# Solver
# =============================================================================


class CoreSolver:
    """Explicit Runge-Kutta solver for an ODEProblem."""

    def __init__(self, problem: ODEProblem) -> None:
        """Initialize CoreSolver.

        Args:
            problem: Problem to solve.
        """
        self.problem = problem
        self._u: NDArray[np.floating] = problem.initial_state()
        self._t = 0.0
        self._dt_last = 0.0
        self._terminated = False
        self._sol = Solution()
        self._stepper: ExplicitRKStepper
        self._rhs: RhsAdapter

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    @staticmethod
    def _resolve_run_plan(cfg: RunConfig, tspan: tuple[float, ...]) -> RunPlan:
        """Resolve the tableau, stepping mode and time bookkeeping.

        Args:
            cfg: Run configuration.
            tspan: Validated time span.

        Returns:
            RunPlan for the loop.
        """
        tableau = cfg.tableau if cfg.tableau is not None else get_tableau(cfg.method)

        adaptive = bool(cfg.adaptive and tableau.is_adaptive)
        if cfg.adaptive and not tableau.is_adaptive:
            logger.debug(
                "Tableau '%s' has no embedded error estimate; stepping with fixed dt",
                tableau.name,
            )

        t0, tend = tspan[0], tspan[-1]
        dt_max = cfg.dt_controller.dt_max
        if dt_max is None:
            dt_max = 0.5 * (tend - t0)

        saveat = tuple(sorted({float(s) for s in cfg.output.saveat if t0 < s <= tend}))
        return RunPlan(
            tableau=tableau,
            adaptive=adaptive,
            t0=t0,
            stops=tspan[1:],
            dt_max=float(dt_max),
            saveat=saveat,
        )

    def _initial_dt(self, cfg: RunConfig, plan: RunPlan) -> float:
        """Return the first step size, clamped to [dt_min, dt_max]."""
        dt_init = cfg.adaptive_cfg.dt_init
        if dt_init is not None and np.isfinite(dt_init) and dt_init > 0.0:
            dt = float(dt_init)
        else:
            f0 = self._stepper.first_derivative(plan.t0, self._u)
            dt = select_initial_dt(
                self._rhs,
                plan.t0,
                self._u,
                f0,
                order=plan.tableau.order,
                atol=cfg.adaptive_cfg.atol,
                rtol=cfg.adaptive_cfg.rtol,
                norm=cfg.adaptive_cfg.norm,
            )
        return cfg.dt_controller.clamp(dt, plan.dt_max)

    # ------------------------------------------------------------------
    # State resize (event reactions only)
    # ------------------------------------------------------------------

    def _resize_state(self, shape: tuple[int, ...]) -> None:
        """Reallocate the state and every stage buffer for ``shape``.

        Raises:
            DimensionMismatchError: If the number of dimensions changes.
        """
        old = self._u
        if old.ndim != len(shape):
            raise DimensionMismatchError(expected=old.shape, actual=tuple(shape))
        new = np.zeros(shape, dtype=old.dtype)
        overlap = tuple(slice(0, min(a, b)) for a, b in zip(old.shape, shape, strict=True))
        new[overlap] = old[overlap]
        self._u = new
        self._stepper.resize(tuple(shape))
        logger.debug("State resized from %s to %s at t=%g", old.shape, new.shape, self._t)

    # ------------------------------------------------------------------
    # Recording helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _save_inside(
        sol: Solution,
        interval: Interval,
        saveat: tuple[float, ...],
        idx: int,
        t_stop: float,
    ) -> int:
        """Record saveat times strictly before ``t_stop``; return the next index."""
        while idx < len(saveat) and saveat[idx] < t_stop:
            sol.append(saveat[idx], interval(saveat[idx]))
            idx += 1
        while idx < len(saveat) and saveat[idx] == t_stop:
            idx += 1
        return idx

    # ------------------------------------------------------------------
    # Public run loop
    # ------------------------------------------------------------------

    def run(
        self,
        tspan: ArrayLike | None = None,
        *,
        config: RunConfig | None = None,
    ) -> Solution:
        """Integrate the problem over ``tspan``.

        Args:
            tspan: (t0, tend) or (t0, stops..., tend); defaults to the
                problem's own span.
            config: Optional run configuration. If None, defaults are used.

        Raises:
            StepSizeTooSmallError: If dt underflows dt_min (strict mode).
            MaxIterationsExceededError: If the iteration cap is hit (strict mode).

        Returns:
            Solution with the error map computed when an analytic solution
            is attached.
        """
        cfg = config or RunConfig()
        span = as_time_span(self.problem.tspan if tspan is None else tspan)
        plan = self._resolve_run_plan(cfg, span)
        callbacks = as_callback_set(cfg.callback)

        self._u = self.problem.initial_state()
        self._t = plan.t0
        self._terminated = False
        self._rhs = RhsAdapter(self.problem.f, self._u.shape, inplace=self.problem.inplace)
        self._stepper = ExplicitRKStepper(
            plan.tableau,
            self._rhs,
            self._u.shape,
            atol=cfg.adaptive_cfg.atol,
            rtol=cfg.adaptive_cfg.rtol,
            norm=cfg.adaptive_cfg.norm,
        )
        out = cfg.output
        self._sol = Solution(
            dense=out.dense,
            save_timeseries=out.save_timeseries,
            timeseries_steps=out.timeseries_steps,
            timeseries_errors=out.timeseries_errors,
            dense_errors=out.dense_errors,
        )
        self._sol.append(self._t, self._u)

        try:
            self._loop(cfg, plan, callbacks)
        except IntegrationFailure as exc:
            sol = self._finish(exc.retcode, failure=exc)
            exc.solution = sol
            if cfg.strict:
                raise
            warnings.warn(str(exc), RuntimeWarning, stacklevel=2)
            return sol

        return self._finish("Terminated" if self._terminated else "Success")

    def _finish(self, retcode: str, *, failure: Exception | None = None) -> Solution:
        sol = self._sol
        sol.close(self._t, self._u)
        sol.retcode = retcode
        sol.failure = failure
        sol.stats.nf = self._rhs.nf
        return sol.finalize(self.problem.analytic)

    def _loop(self, cfg: RunConfig, plan: RunPlan, callbacks: CallbackSet) -> None:
        """Run accept/reject iterations until the last stop is reached."""
        sol = self._sol
        stats = sol.stats
        stepper = self._stepper
        tab = plan.tableau
        ctrl_cfg = cfg.dt_controller
        controller = make_controller(tab.error_order, ctrl_cfg)
        integrator = Integrator(self)
        has_events = callbacks.has_events
        has_step_hooks = callbacks.has_step_hooks
        need_interval = cfg.output.dense or has_events or bool(plan.saveat)
        max_iters = cfg.adaptive_cfg.max_steps

        dt = self._initial_dt(cfg, plan)
        stop_idx = 0
        save_idx = 0

        while stop_idx < len(plan.stops):
            if cfg.cancel is not None and cfg.cancel.is_set():
                self._terminated = True
            if self._terminated:
                break

            stats.niter += 1
            if stats.niter > max_iters:
                raise MaxIterationsExceededError(t=self._t, maxiters=max_iters)

            t = self._t
            next_stop = plan.stops[stop_idx]
            remaining = next_stop - t
            landing = dt >= remaining - _LANDING_RTOL * max(1.0, abs(next_stop))
            dt_try = remaining if landing else dt

            result = stepper.step(t, self._u, dt_try)

            if plan.adaptive:
                err = float(result.error)  # type: ignore[arg-type]
                if not err <= 1.0:
                    stats.nreject += 1
                    dt_new = controller.on_reject(dt_try, err)
                    logger.debug("Rejected dt=%.3e at t=%.6g (err=%.3g)", dt_try, t, err)
                    if dt_new < ctrl_cfg.dt_min:
                        raise StepSizeTooSmallError(t=t, dt=dt_new, dtmin=ctrl_cfg.dt_min)
                    dt = dt_new
                    continue
                dt_next = ctrl_cfg.clamp(controller.on_accept(dt_try, err), plan.dt_max)
            else:
                dt_next = dt

            stats.naccept += 1
            t_new = next_stop if landing else t + dt_try

            interval = None
            if need_interval:
                interval = build_interval(
                    tab, self._rhs, t, t_new - t, self._u, result.u_next, result.k
                )
            hit = None
            if has_events and interval is not None:
                hit = callbacks.find_event(interval)

            if hit is None or interval is None:
                if interval is not None:
                    save_idx = self._save_inside(sol, interval, plan.saveat, save_idx, t_new)
                    sol.add_interval(interval)
                stepper.accept()
                np.copyto(self._u, result.u_next)
                self._t = t_new
                self._dt_last = t_new - t
                sol.record_step(self._t, self._u)
                if landing:
                    stop_idx += 1
            else:
                u_event = interval(hit.t)
                interval.truncate(hit.t, u_event)
                save_idx = self._save_inside(sol, interval, plan.saveat, save_idx, hit.t)
                sol.add_interval(interval)
                stepper.invalidate()
                np.copyto(self._u, u_event)
                self._t = hit.t
                self._dt_last = hit.t - t
                sol.append(self._t, self._u)
                callbacks.on_event(integrator, hit)
                stats.nevents += 1
                sol.append(self._t, self._u)
                dt_next = ctrl_cfg.clamp(dt_next * hit.event.dt_safety, plan.dt_max)
                if self._t >= next_stop:
                    stop_idx += 1

            if has_step_hooks:
                callbacks.on_accepted_step(integrator)
                # the hook may have written into u
                stepper.invalidate()
            dt = dt_next
