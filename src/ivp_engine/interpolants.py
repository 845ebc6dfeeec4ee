# src/ivp_engine/interpolants.py
"""Dense output on accepted steps.

Each accepted step becomes an interval object that can be evaluated at any
time inside it. Two constructions are available:

- :class:`RKInterval`: the tableau's own continuous extension, a polynomial
  in theta = (t - t0)/dt built from the stage derivatives. Extensions that
  need stages beyond the stepping stages evaluate them on the first query
  and cache them on the interval.
- :class:`HermiteInterval`: cubic Hermite interpolation from the endpoint
  values and derivatives. The right-end derivative is the FSAL stage when
  the tableau has one; otherwise it is evaluated on the first query and
  cached.

Intervals own copies of everything they read, so the stepper may reuse its
buffers immediately. An interval cut short by an event keeps its polynomial
(scale ``dt``) and only moves its end point.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

if TYPE_CHECKING:
    from .rhs import RhsAdapter
    from .tableaus import Tableau

logger = logging.getLogger(__name__)

_HERMITE_SOURCE_ERROR_MSG = "HermiteInterval needs f1 or an rhs to compute it"
_NO_INTERP_ERROR_MSG = "Tableau '{name}' has no interpolant"


class Interval:
    """Base class for a dense-output interval [t0, t_end]."""

    def __init__(
        self,
        t0: float,
        dt: float,
        u0: NDArray[np.floating],
        u1: NDArray[np.floating],
    ) -> None:
        """Initialize the interval.

        Args:
            t0: Left end.
            dt: Step size (polynomial scale).
            u0: State at t0.
            u1: State at t0 + dt.
        """
        self.t0 = float(t0)
        self.dt = float(dt)
        self.u0 = np.array(u0, copy=True)
        self.u1 = np.array(u1, copy=True)
        self.t_end = self.t0 + self.dt
        self.u_end = self.u1

    @property
    def shape(self) -> tuple[int, ...]:
        """State shape on this interval."""
        return self.u0.shape

    def contains(self, t: float) -> bool:
        """Return True if t lies in [t0, t_end]."""
        return self.t0 <= t <= self.t_end

    def truncate(self, t_end: float, u_end: NDArray[np.floating]) -> None:
        """Move the right end point to ``t_end`` (used after an event)."""
        self.t_end = float(t_end)
        self.u_end = np.array(u_end, copy=True)

    def _evaluate(self, theta: float) -> NDArray[np.floating]:
        raise NotImplementedError

    def __call__(self, t: float) -> NDArray[np.floating]:
        """Evaluate the interpolant at time ``t``.

        End points return the stored states exactly.
        """
        if t == self.t0:
            return self.u0.copy()
        if t == self.t_end:
            return self.u_end.copy()
        return self._evaluate((float(t) - self.t0) / self.dt)


class HermiteInterval(Interval):
    """Cubic Hermite interpolant on one step."""

    def __init__(
        self,
        t0: float,
        dt: float,
        u0: NDArray[np.floating],
        u1: NDArray[np.floating],
        f0: NDArray[np.floating],
        f1: NDArray[np.floating] | None = None,
        *,
        rhs: RhsAdapter | None = None,
    ) -> None:
        """Initialize the interpolant.

        Args:
            t0: Left end.
            dt: Step size.
            u0: State at t0.
            u1: State at t0 + dt.
            f0: Derivative at t0.
            f1: Derivative at t0 + dt, or None to evaluate lazily via ``rhs``.
            rhs: Right-hand side used for the lazy evaluation.

        Raises:
            ValueError: If neither ``f1`` nor ``rhs`` is given.
        """
        super().__init__(t0, dt, u0, u1)
        if f1 is None and rhs is None:
            raise ValueError(_HERMITE_SOURCE_ERROR_MSG)
        self.f0 = np.array(f0, copy=True)
        self._f1 = None if f1 is None else np.array(f1, copy=True)
        self._rhs = rhs

    @property
    def f1(self) -> NDArray[np.floating]:
        """Right-end derivative, computed once on demand."""
        if self._f1 is None:
            if self._rhs is None:
                raise ValueError(_HERMITE_SOURCE_ERROR_MSG)
            logger.debug("Hermite interval at t=%g: evaluating right-end derivative", self.t0)
            self._f1 = self._rhs.evaluate(self.t0 + self.dt, self.u1)
        return self._f1

    def _evaluate(self, theta: float) -> NDArray[np.floating]:
        h = self.dt
        u0, u1 = self.u0, self.u1
        diff = u1 - u0
        return (
            (1.0 - theta) * u0
            + theta * u1
            + theta
            * (theta - 1.0)
            * ((1.0 - 2.0 * theta) * diff + (theta - 1.0) * h * self.f0 + theta * h * self.f1)
        )


class RKInterval(Interval):
    """Tableau-native continuous extension on one step."""

    def __init__(
        self,
        t0: float,
        dt: float,
        u0: NDArray[np.floating],
        u1: NDArray[np.floating],
        k: NDArray[np.floating],
        tableau: Tableau,
        rhs: RhsAdapter,
    ) -> None:
        """Initialize the interpolant.

        Args:
            t0: Left end.
            dt: Step size.
            u0: State at t0.
            u1: State at t0 + dt.
            k: Stepping-stage derivatives, shape (stages, *state_shape).
            tableau: Tableau declaring ``interp`` (and any extra stages).
            rhs: Right-hand side used for the extra stages.
        """
        super().__init__(t0, dt, u0, u1)
        if tableau.interp is None:
            raise ValueError(_NO_INTERP_ERROR_MSG.format(name=tableau.name))
        self.tableau = tableau
        self._interp: NDArray[np.floating] = tableau.interp
        self._rhs = rhs
        n_total = tableau.c.shape[0]
        self._k: NDArray[np.floating] = np.zeros((n_total, *self.u0.shape), dtype=self.u0.dtype)
        self._k[: tableau.stages] = k
        self._extra_ready = tableau.n_extra_stages == 0
        self._coeffs: NDArray[np.floating] | None = None

    @property
    def k(self) -> NDArray[np.floating]:
        """All stage derivatives, including lazily evaluated extra stages."""
        if not self._extra_ready:
            self._compute_extra_stages()
        return self._k

    def _compute_extra_stages(self) -> None:
        tab = self.tableau
        logger.debug(
            "Interval at t=%g: evaluating %d extra interpolation stage(s)",
            self.t0,
            tab.n_extra_stages,
        )
        stage = np.empty_like(self.u0)
        for i in range(tab.stages, tab.c.shape[0]):
            np.multiply(np.tensordot(tab.a[i, :i], self._k[:i], axes=1), self.dt, out=stage)
            stage += self.u0
            self._rhs(self._k[i, ...], self.t0 + tab.c[i] * self.dt, stage)
        self._extra_ready = True

    @property
    def coeffs(self) -> NDArray[np.floating]:
        """Polynomial coefficients Q[j] = sum_i interp[i, j] * k_i, cached."""
        if self._coeffs is None:
            self._coeffs = np.tensordot(self._interp.T, self.k, axes=1)
        return self._coeffs

    def _evaluate(self, theta: float) -> NDArray[np.floating]:
        q = self.coeffs
        acc = np.array(q[-1], copy=True)
        for j in range(q.shape[0] - 2, -1, -1):
            acc *= theta
            acc += q[j]
        return self.u0 + self.dt * acc


def build_interval(
    tableau: Tableau,
    rhs: RhsAdapter,
    t0: float,
    dt: float,
    u0: NDArray[np.floating],
    u1: NDArray[np.floating],
    k: NDArray[np.floating],
) -> Interval:
    """Build the dense-output interval for an accepted step.

    Uses the tableau's continuous extension when declared, otherwise a cubic
    Hermite fallback.

    Args:
        tableau: Method coefficients.
        rhs: Adapted right-hand side.
        t0: Step start.
        dt: Step size.
        u0: State at t0.
        u1: State at t0 + dt.
        k: Stage derivatives of the step.

    Returns:
        Interval object owning copies of its data.
    """
    if tableau.has_interpolant:
        return RKInterval(t0, dt, u0, u1, k, tableau, rhs)
    f1 = k[tableau.stages - 1] if tableau.is_fsal else None
    return HermiteInterval(t0, dt, u0, u1, k[0], f1, rhs=rhs)
