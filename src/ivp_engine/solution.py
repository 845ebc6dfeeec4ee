# src/ivp_engine/solution.py
"""Solution containers.

A :class:`Solution` is filled point by point while a run progresses and is
finalized once at the end. Finalizing computes the error map against an
analytic solution when one is known. :meth:`Solution.appxtrue` recomputes
the error map later against a more accurate solution (or any callable
interpolant), without re-integrating.

Error keys:
    "final": mean |u_end - u_true(t_end)|
    "l∞", "l2": max and root-mean-square over every component of every
        recorded point (needs the timeseries)
    "L∞", "L2": the same over 100 evenly spaced times evaluated through the
        dense interpolant (needs dense output)

Recorded states may change length mid-run (event reactions can resize the
state), so the history is kept as a list of arrays and errors are computed
over flattened differences.
"""

from __future__ import annotations

import bisect
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

import numpy as np
from numpy.typing import ArrayLike, NDArray

from .errors import raise_index_out_of_range, raise_no_dense_output
from .events import user_state

if TYPE_CHECKING:
    from .interpolants import Interval

N_DENSE_ERROR_POINTS: Final[int] = 100

ERROR_KEYS: Final[tuple[str, ...]] = ("final", "l∞", "l2", "L∞", "L2")


def _flat_diff(
    values: Sequence[NDArray[np.floating]],
    reference: Sequence[NDArray[np.floating]],
) -> NDArray[np.floating]:
    """Concatenate flattened differences of two equally long state lists."""
    if not values:
        return np.zeros(0, dtype=float)
    return np.concatenate(
        [
            np.ravel(np.asarray(v, dtype=float) - np.asarray(r, dtype=float))
            for v, r in zip(values, reference, strict=True)
        ]
    )


def _linf_l2(diff: NDArray[np.floating]) -> tuple[float, float]:
    if diff.size == 0:
        return 0.0, 0.0
    return float(np.max(np.abs(diff))), float(np.sqrt(np.mean(diff * diff)))


@dataclass(slots=True)
class SolverStats:
    """Counters collected during a run.

    Attributes:
        nf: Right-hand-side evaluations made during the run, including
            interpolation stages needed for events and saveat. Stages that
            later ``sol(t)`` queries evaluate are not counted.
        naccept: Accepted steps.
        nreject: Rejected steps.
        niter: Loop iterations (accepted plus rejected attempts).
        nevents: Events fired.
    """

    nf: int = 0
    naccept: int = 0
    nreject: int = 0
    niter: int = 0
    nevents: int = 0


@dataclass(slots=True)
class ReferenceSolution:
    """Stand-in "true" solution built from any interpolant.

    Attributes:
        interp: Callable of time returning the reference state.
        u: Reference final state; if None it is taken from ``interp``.
    """

    interp: Callable[[float], ArrayLike] | None = None
    u: ArrayLike | None = None

    @property
    def dense(self) -> bool:
        """Return True if the reference can be evaluated at any time."""
        return self.interp is not None

    def __call__(self, t: float) -> NDArray[np.floating]:
        if self.interp is None:
            raise_no_dense_output(t, reason="reference has no interpolant")
        return np.asarray(self.interp(t), dtype=float)  # type: ignore[misc]


class Solution:
    """Trajectory of an ODE run with optional dense output and error map."""

    def __init__(
        self,
        *,
        dense: bool = True,
        save_timeseries: bool = True,
        timeseries_steps: int = 1,
        timeseries_errors: bool = True,
        dense_errors: bool = True,
    ) -> None:
        """Create an empty solution.

        Args:
            dense: Retain dense-output intervals.
            save_timeseries: Retain the full history (otherwise only the
                last point and last interval).
            timeseries_steps: Record every N-th accepted step.
            timeseries_errors: Compute "l∞"/"l2" when finalizing.
            dense_errors: Compute "L∞"/"L2" when finalizing.
        """
        self.dense = bool(dense)
        self.save_timeseries = bool(save_timeseries)
        self.timeseries_steps = max(1, int(timeseries_steps))
        self.timeseries_errors = bool(timeseries_errors)
        self.dense_errors = bool(dense_errors)

        self._t: list[float] = []
        self._u: list[NDArray[np.floating]] = []
        self._intervals: list[Interval] = []
        self._interval_starts: list[float] = []
        self._n_steps = 0

        self.u0: Any = None
        self.u_analytic: Any = None
        self.timeseries_analytic: list[Any] | None = None
        self.errors: dict[str, float] = {}
        self.approx_true = False
        self.retcode = "Default"
        self.failure: Exception | None = None
        self.stats = SolverStats()

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------

    def append(self, t: float, u: NDArray[np.floating]) -> None:
        """Record the point (t, u) unconditionally.

        With ``save_timeseries=False`` the point replaces the stored one.
        """
        if self.u0 is None:
            self.u0 = user_state(np.array(u, copy=True))
        if not self.save_timeseries:
            self._t.clear()
            self._u.clear()
        self._t.append(float(t))
        self._u.append(np.array(u, copy=True))

    def record_step(self, t: float, u: NDArray[np.floating]) -> None:
        """Record an accepted step, honoring ``timeseries_steps``."""
        self._n_steps += 1
        if self._n_steps % self.timeseries_steps == 0:
            self.append(t, u)

    def add_interval(self, interval: Interval) -> None:
        """Retain a dense-output interval (only the last one if not saving)."""
        if not self.dense:
            return
        if not self.save_timeseries:
            self._intervals.clear()
            self._interval_starts.clear()
        self._intervals.append(interval)
        self._interval_starts.append(interval.t0)

    def close(self, t: float, u: NDArray[np.floating]) -> None:
        """Make sure the final point (t, u) is the last recorded point."""
        if not self._t or self._t[-1] != t:
            self.append(t, u)

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    @property
    def t(self) -> float:
        """Final time."""
        return self._t[-1]

    @property
    def u(self) -> Any:
        """Final state (a float for scalar problems)."""
        return user_state(self._u[-1])

    @property
    def t_series(self) -> NDArray[np.floating]:
        """All recorded times."""
        return np.asarray(self._t, dtype=float)

    @property
    def timeseries(self) -> list[Any]:
        """All recorded states."""
        return [user_state(u) for u in self._u]

    @property
    def intervals(self) -> tuple[Interval, ...]:
        """Retained dense-output intervals."""
        return tuple(self._intervals)

    def __len__(self) -> int:
        return len(self._t)

    def at(self, i: int) -> Any:
        """Return the i-th recorded state.

        Args:
            i: Index (negative values count from the end).

        Raises:
            IndexOutOfRangeError: If ``i`` is out of range.

        Returns:
            Recorded state.
        """
        n = len(self._u)
        if not -n <= i < n:
            raise_index_out_of_range(i, n)
        return user_state(self._u[i])

    def __getitem__(self, key: Any) -> Any:
        """``sol[i]`` state, ``sol[i, j...]`` component, ``sol[:]`` all states."""
        if isinstance(key, slice):
            return [user_state(u) for u in self._u[key]]
        if isinstance(key, tuple):
            state = self.at(int(key[0]))
            return np.asarray(state)[key[1:]]
        return self.at(int(key))

    def __iter__(self) -> Iterator[Any]:
        return iter(self.timeseries)

    def _find_interval(self, t: float) -> Interval | None:
        i = bisect.bisect_right(self._interval_starts, t) - 1
        if i < 0:
            return None
        interval = self._intervals[i]
        if interval.contains(t):
            return interval
        return None

    def query(self, t: float) -> Any:
        """Evaluate the dense interpolant at time ``t``.

        Args:
            t: Query time inside a retained interval.

        Raises:
            NoDenseOutputError: If dense output is disabled or ``t`` is not
                covered by a retained interval.

        Returns:
            Interpolated state.
        """
        if not self.dense:
            raise_no_dense_output(t, reason="dense output was not enabled")
        interval = self._find_interval(float(t))
        if interval is None:
            raise_no_dense_output(t, reason="time is outside the retained intervals")
        return user_state(interval(float(t)))  # type: ignore[union-attr]

    def nearest(self, t: float) -> Any:
        """Return the recorded state whose time is nearest to ``t``."""
        idx = int(np.argmin(np.abs(self.t_series - float(t))))
        return user_state(self._u[idx])

    def __call__(self, t: float | ArrayLike) -> Any:
        """Dense value at ``t`` if available, else the nearest recorded state.

        Array-like ``t`` returns a list of states.
        """
        lookup = self.query if self.dense else self.nearest
        if np.ndim(t) == 0:
            return lookup(float(t))  # type: ignore[arg-type]
        return [lookup(float(ti)) for ti in np.asarray(t, dtype=float)]

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    @property
    def has_dense_history(self) -> bool:
        """Return True if the retained intervals cover the whole recorded range."""
        return self.dense and self.save_timeseries and bool(self._intervals)

    def _dense_times(self) -> NDArray[np.floating]:
        return np.linspace(self._t[0], self._t[-1], N_DENSE_ERROR_POINTS)

    def _compute_errors(
        self,
        u_true_end: ArrayLike,
        truth_at: Callable[[float], ArrayLike] | None,
        series_truth: list[NDArray[np.floating]] | None,
    ) -> dict[str, float]:
        final_diff = np.asarray(self._u[-1], dtype=float) - np.asarray(u_true_end, dtype=float)
        errors = {"final": float(np.mean(np.abs(final_diff)))}
        if series_truth is None or not (self.save_timeseries and self.timeseries_errors):
            return errors

        errors["l∞"], errors["l2"] = _linf_l2(_flat_diff(self._u, series_truth))
        if truth_at is not None and self.has_dense_history and self.dense_errors:
            times = self._dense_times()
            interp_u = [np.asarray(self.query(t)) for t in times]
            truth = [np.asarray(truth_at(t)) for t in times]
            errors["L∞"], errors["L2"] = _linf_l2(_flat_diff(interp_u, truth))
        return errors

    def finalize(self, analytic: Callable[..., ArrayLike] | None = None) -> Solution:
        """Compute the error map against ``analytic(t, u0)``.

        Args:
            analytic: Known solution, or None to leave the error map empty.

        Returns:
            self, for chaining.
        """
        if self.retcode == "Default":
            self.retcode = "Success"
        if analytic is None or not self._t:
            return self

        u0 = self.u0

        def truth_at(t: float) -> NDArray[np.floating]:
            return np.asarray(analytic(t, u0), dtype=float)

        series = [truth_at(t) for t in self._t]
        self.timeseries_analytic = [user_state(v) for v in series]
        self.u_analytic = user_state(series[-1])
        self.errors = self._compute_errors(series[-1], truth_at, series)
        return self

    def appxtrue(self, reference: Solution | ReferenceSolution | Callable[[float], ArrayLike]) -> Solution:
        """Recompute the error map against a more accurate stand-in solution.

        Args:
            reference: A second Solution, a ReferenceSolution, or any callable
                of time. Pointwise and dense errors need a reference that
                covers the whole range (a Solution solved with dense output
                and its full history); otherwise only "final" is computed.

        Returns:
            self, for chaining.
        """
        if not isinstance(reference, (Solution, ReferenceSolution)):
            reference = ReferenceSolution(interp=reference)

        if isinstance(reference, Solution):
            ref_dense = reference.has_dense_history
        else:
            ref_dense = reference.dense
        if isinstance(reference, ReferenceSolution) and reference.u is None:
            reference.u = reference(self.t)
        u_true_end = np.asarray(reference.u, dtype=float)

        truth_at: Callable[[float], ArrayLike] | None = None
        series: list[NDArray[np.floating]] | None = None
        if ref_dense:

            def truth_at(t: float) -> NDArray[np.floating]:
                return np.asarray(reference(t), dtype=float)

            series = [truth_at(t) for t in self._t]
            self.timeseries_analytic = [user_state(v) for v in series]

        self.u_analytic = user_state(u_true_end)
        self.errors = self._compute_errors(u_true_end, truth_at, series)
        self.approx_true = True
        return self

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(retcode={self.retcode!r}, "
            f"{len(self)} points, t={self._t[-1] if self._t else None!r})"
        )


def appxtrue(sol: Solution, reference: Solution | ReferenceSolution | Callable[[float], ArrayLike]) -> Solution:
    """Module-level form of :meth:`Solution.appxtrue`."""
    return sol.appxtrue(reference)


class SDESolution(Solution):
    """Trajectory of a stochastic run, with the Brownian path at each point."""

    def __init__(self, *, save_timeseries: bool = True, timeseries_steps: int = 1, timeseries_errors: bool = True) -> None:
        """Create an empty stochastic solution (no dense output)."""
        super().__init__(
            dense=False,
            save_timeseries=save_timeseries,
            timeseries_steps=timeseries_steps,
            timeseries_errors=timeseries_errors,
            dense_errors=False,
        )
        self._w: list[NDArray[np.floating]] = []
        self._w_curr: NDArray[np.floating] | None = None

    def set_brownian(self, w: NDArray[np.floating]) -> None:
        """Set the Brownian value belonging to the next recorded point."""
        self._w_curr = w

    def append(self, t: float, u: NDArray[np.floating]) -> None:
        """Record (t, u) together with the current Brownian value."""
        super().append(t, u)
        w = np.zeros_like(u) if self._w_curr is None else self._w_curr
        if not self.save_timeseries:
            self._w.clear()
        self._w.append(np.array(w, copy=True))

    def close(self, t: float, u: NDArray[np.floating]) -> None:
        """Ensure the final point and its Brownian value are recorded last."""
        if not self._t or self._t[-1] != t:
            self.append(t, u)

    @property
    def W(self) -> Any:  # noqa: N802
        """Brownian value at the final time."""
        return user_state(self._w[-1])

    @property
    def Ws(self) -> list[Any]:  # noqa: N802
        """Brownian values at each recorded point."""
        return [user_state(w) for w in self._w]

    def finalize(self, analytic: Callable[..., ArrayLike] | None = None) -> Solution:
        """Compute the error map against ``analytic(t, u0, W)``.

        Args:
            analytic: Known solution as a function of the Brownian path.

        Returns:
            self, for chaining.
        """
        if self.retcode == "Default":
            self.retcode = "Success"
        if analytic is None or not self._t:
            return self

        u0 = self.u0
        series = [
            np.asarray(analytic(t, u0, user_state(w)), dtype=float)
            for t, w in zip(self._t, self._w, strict=True)
        ]
        self.timeseries_analytic = [user_state(v) for v in series]
        self.u_analytic = user_state(series[-1])
        self.errors = self._compute_errors(series[-1], None, series)
        return self
