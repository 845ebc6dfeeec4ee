# src/ivp_engine/sde.py
"""Fixed-step solvers for SDEs with diagonal noise.

    du = f(t, u) dt + g(t, u) dW

Methods:
- "em": Euler-Maruyama, strong order 0.5
    u' = u + f dt + g dW
- "rkmil": derivative-free Runge-Kutta Milstein (Kloeden & Platen 11.1.7),
  strong order 1.0 for diagonal noise
    ubar = u + f dt + g sqrt(dt)
    u'   = u + f dt + g dW + (g(t, ubar) - g) (dW**2 - dt) / (2 sqrt(dt))

Brownian increments dW ~ N(0, dt) are drawn componentwise from a
``numpy.random.Generator``. The running Brownian value W is recorded with
every saved point so analytic solutions ``analytic(t, u0, W)`` can be
evaluated afterwards.
"""

from __future__ import annotations

import logging
import warnings
from typing import TYPE_CHECKING, Literal

import numpy as np

from .core_solver import CancelFlag, RunConfig
from .errors import IntegrationFailure, MaxIterationsExceededError, raise_invalid_config
from .problem import as_time_span
from .rhs import RhsAdapter
from .solution import SDESolution

if TYPE_CHECKING:
    from collections.abc import Callable

    from numpy.typing import ArrayLike, NDArray

    from .problem import SDEProblem

logger = logging.getLogger(__name__)

SDEMethodName = Literal["em", "rkmil"]

_SDE_METHODS: tuple[str, ...] = ("em", "rkmil")
_UNKNOWN_METHOD_DETAIL = "unknown SDE method {name!r}; expected one of {names}"
_DT_REQUIRED_DETAIL = "SDE solvers step with a fixed dt; pass dt=..."
_LANDING_RTOL = 100.0 * float(np.finfo(float).eps)


def available_sde_methods() -> tuple[str, ...]:
    """Return the registered SDE method names."""
    return _SDE_METHODS


class SDESolver:
    """Fixed-step stochastic integrator for an SDEProblem."""

    def __init__(self, problem: SDEProblem) -> None:
        self.problem = problem
        self._u = problem.initial_state()
        shape = self._u.shape
        self._f = RhsAdapter(problem.f, shape, inplace=problem.inplace)
        self._g = RhsAdapter(problem.g, shape, inplace=problem.inplace)

        self._drift = np.zeros(shape, dtype=np.float64)
        self._noise = np.zeros(shape, dtype=np.float64)
        self._noise_bar = np.zeros(shape, dtype=np.float64)
        self._u_bar = np.zeros(shape, dtype=np.float64)
        self._w = np.zeros(shape, dtype=np.float64)

    # ------------------------------------------------------------------
    # Step kernels
    # ------------------------------------------------------------------

    def _increment(self, rng: np.random.Generator, dt: float) -> NDArray[np.floating]:
        dw = rng.normal(0.0, np.sqrt(dt), size=self._u.shape)
        return np.asarray(dw, dtype=np.float64).reshape(self._u.shape)

    def _step_em(self, t: float, dt: float, dw: NDArray[np.floating]) -> None:
        u = self._u
        self._f(self._drift, t, u)
        self._g(self._noise, t, u)
        u += self._drift * dt + self._noise * dw

    def _step_rkmil(self, t: float, dt: float, dw: NDArray[np.floating]) -> None:
        u = self._u
        sqdt = np.sqrt(dt)
        self._f(self._drift, t, u)
        self._g(self._noise, t, u)

        np.copyto(self._u_bar, u)
        self._u_bar += self._drift * dt + self._noise * sqdt
        self._g(self._noise_bar, t, self._u_bar)

        u += (
            self._drift * dt
            + self._noise * dw
            + (self._noise_bar - self._noise) * (dw * dw - dt) / (2.0 * sqdt)
        )

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    def run(
        self,
        tspan: ArrayLike | None = None,
        *,
        config: RunConfig | None = None,
        rng: np.random.Generator | None = None,
    ) -> SDESolution:
        """Integrate the SDE over ``tspan`` with a fixed dt.

        Args:
            tspan: (t0, tend) or (t0, stops..., tend); defaults to the
                problem's own span.
            config: Run configuration; ``adaptive_cfg.dt_init`` is the step.
            rng: Generator for the Brownian increments; if None one is
                created from ``config.seed``.

        Raises:
            SolverConfigError: If the method is unknown or no dt is given.
            MaxIterationsExceededError: If the step cap is hit (strict mode).

        Returns:
            SDESolution with the Brownian value at every recorded point.
        """
        cfg = config or RunConfig(method="em", adaptive=False)
        method = str(cfg.method).strip().lower()
        if method not in _SDE_METHODS:
            raise_invalid_config(
                option="algorithm",
                detail=_UNKNOWN_METHOD_DETAIL.format(name=method, names=_SDE_METHODS),
            )
        dt = cfg.adaptive_cfg.dt_init
        if dt is None:
            raise_invalid_config(option="dt", detail=_DT_REQUIRED_DETAIL)
        step = self._step_em if method == "em" else self._step_rkmil

        span = as_time_span(self.problem.tspan if tspan is None else tspan)
        if rng is None:
            rng = np.random.default_rng(cfg.seed)

        np.copyto(self._u, self.problem.initial_state())
        self._w.fill(0.0)
        out = cfg.output
        sol = SDESolution(
            save_timeseries=out.save_timeseries,
            timeseries_steps=out.timeseries_steps,
            timeseries_errors=out.timeseries_errors,
        )
        sol.set_brownian(self._w)
        sol.append(span[0], self._u)

        t = span[0]
        try:
            t = self._loop(
                step, rng, sol, span, float(dt), cfg.adaptive_cfg.max_steps, cfg.cancel
            )
        except IntegrationFailure as exc:
            t = exc.t
            self._finish(sol, t, exc.retcode, failure=exc)
            exc.solution = sol
            if cfg.strict:
                raise
            warnings.warn(str(exc), RuntimeWarning, stacklevel=2)
            return sol

        cancelled = cfg.cancel is not None and cfg.cancel.is_set() and t < span[-1]
        return self._finish(sol, t, "Terminated" if cancelled else "Success")

    def _finish(
        self,
        sol: SDESolution,
        t: float,
        retcode: str,
        *,
        failure: Exception | None = None,
    ) -> SDESolution:
        sol.set_brownian(self._w)
        sol.close(t, self._u)
        sol.retcode = retcode
        sol.failure = failure
        sol.stats.nf = self._f.nf + self._g.nf
        sol.finalize(self.problem.analytic)
        return sol

    def _loop(
        self,
        step: Callable[[float, float, NDArray[np.floating]], None],
        rng: np.random.Generator,
        sol: SDESolution,
        span: tuple[float, ...],
        dt: float,
        max_iters: int,
        cancel: CancelFlag | None,
    ) -> float:
        """Take fixed steps through every stop; return the final time."""
        t = span[0]
        stats = sol.stats
        for next_stop in span[1:]:
            while t < next_stop:
                if cancel is not None and cancel.is_set():
                    logger.debug("SDE run cancelled at t=%.6g", t)
                    return t
                stats.niter += 1
                if stats.niter > max_iters:
                    raise MaxIterationsExceededError(t=t, maxiters=max_iters)

                remaining = next_stop - t
                landing = dt >= remaining - _LANDING_RTOL * max(1.0, abs(next_stop))
                h = remaining if landing else dt

                dw = self._increment(rng, h)
                step(t, h, dw)
                self._w += dw
                t = next_stop if landing else t + h

                stats.naccept += 1
                sol.set_brownian(self._w)
                sol.record_step(t, self._u)
        return t
