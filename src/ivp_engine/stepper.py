# src/ivp_engine/stepper.py
"""Explicit Runge-Kutta stepper driven by a :class:`~ivp_engine.tableaus.Tableau`.

The stepper owns all per-step scratch buffers (stage derivatives ``k``, the
stage state, the tentative next state and the embedded error) and reuses
them across steps. Buffers are reallocated together by :meth:`resize`, so the
stage buffer never aliases memory from before a state resize.

The first stage derivative f(t, u) is cached between attempts: a rejected
attempt retries from the same (t, u), and FSAL tableaus hand their last
stage to the next step. Any external change to the state must call
:meth:`ExplicitRKStepper.invalidate`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

import numpy as np
from numpy.typing import NDArray

from .errors import DimensionMismatchError

if TYPE_CHECKING:
    from .rhs import RhsAdapter
    from .tableaus import Tableau

NormName = Literal["rms", "max"]

_ATOL_SHAPE_ERROR_MSG = "array abstol of shape {shape} cannot follow a state resize"


def scaled_norm(
    x: NDArray[np.floating],
    scale: NDArray[np.floating],
    kind: NormName = "rms",
) -> float:
    """Norm of ``x / scale``; non-finite results map to infinity.

    Args:
        x: Array to measure.
        scale: Componentwise tolerance scale.
        kind: "rms" (root-mean-square) or "max".

    Returns:
        Scaled norm.
    """
    ratio = np.asarray(x, dtype=float) / scale
    if ratio.size == 0:
        return 0.0
    if kind == "max":
        v = float(np.max(np.abs(ratio)))
    else:
        v = float(np.sqrt(np.mean(ratio * ratio)))
    if not np.isfinite(v):
        return float("inf")
    return v


@dataclass(slots=True)
class StepResult:
    """Outcome of one attempted step.

    Attributes:
        u_next: Tentative next state (view into stepper storage).
        error: Scaled embedded error norm, or None for fixed-step tableaus.
        k: Stage derivatives used for the step (view into stepper storage).
    """

    u_next: NDArray[np.floating]
    error: float | None
    k: NDArray[np.floating]


class ExplicitRKStepper:
    """Single-step kernel for explicit Runge-Kutta tableaus."""

    def __init__(
        self,
        tableau: Tableau,
        rhs: RhsAdapter,
        shape: tuple[int, ...],
        *,
        atol: float | NDArray[np.floating] = 1e-6,
        rtol: float = 1e-3,
        norm: NormName = "rms",
        dtype: np.dtype | type = np.float64,
    ) -> None:
        """Initialize the stepper and allocate buffers.

        Args:
            tableau: Method coefficients.
            rhs: Adapted right-hand side.
            shape: State shape.
            atol: Absolute tolerance (scalar or per-component).
            rtol: Relative tolerance.
            norm: Error norm kind.
            dtype: State dtype.
        """
        self.tableau = tableau
        self.rhs = rhs
        self.atol = atol
        self.rtol = float(rtol)
        self.norm: NormName = norm
        self.dtype = np.dtype(dtype)
        self._fsal = tableau.is_fsal
        self._allocate(tuple(shape))

    def _allocate(self, shape: tuple[int, ...]) -> None:
        """(Re)allocate every state-shaped buffer for ``shape``."""
        self.shape = shape
        s = self.tableau.stages
        self._k: NDArray[np.floating] = np.zeros((s, *shape), dtype=self.dtype)
        self._stage: NDArray[np.floating] = np.zeros(shape, dtype=self.dtype)
        self._u_next: NDArray[np.floating] = np.zeros(shape, dtype=self.dtype)
        self._err: NDArray[np.floating] = np.zeros(shape, dtype=self.dtype)
        self._scale: NDArray[np.floating] = np.zeros(shape, dtype=self.dtype)
        self._f0: NDArray[np.floating] = np.zeros(shape, dtype=self.dtype)
        self._f0_valid = False

    # ------------------------------------------------------------------
    # State management
    # ------------------------------------------------------------------

    def invalidate(self) -> None:
        """Drop the cached first-stage derivative."""
        self._f0_valid = False

    def resize(self, shape: tuple[int, ...]) -> None:
        """Reallocate buffers for a new state shape.

        Args:
            shape: New state shape.

        Raises:
            DimensionMismatchError: If a per-component abstol no longer fits.
        """
        atol_arr = np.asarray(self.atol)
        if atol_arr.ndim > 0 and atol_arr.shape != tuple(shape):
            raise DimensionMismatchError(expected=tuple(shape), actual=atol_arr.shape)
        self._allocate(tuple(shape))
        self.rhs.resize(tuple(shape))

    def accept(self) -> None:
        """Record that the last attempted step was accepted as-is."""
        if self._fsal:
            np.copyto(self._f0, self._k[self.tableau.stages - 1, ...])
            self._f0_valid = True
        else:
            self._f0_valid = False

    # ------------------------------------------------------------------
    # Error norm
    # ------------------------------------------------------------------

    def error_norm(
        self,
        err: NDArray[np.floating],
        u_ref: NDArray[np.floating],
        u_prev: NDArray[np.floating],
    ) -> float:
        """Scaled error norm with scale = atol + rtol * max(|u_ref|, |u_prev|).

        Args:
            err: Error estimate.
            u_ref: Tentative next state.
            u_prev: Current state.

        Returns:
            Scaled error norm (<= 1 means within tolerance).
        """
        np.abs(u_ref, out=self._scale)
        np.maximum(self._scale, np.abs(u_prev), out=self._scale)
        self._scale *= self.rtol
        self._scale += self.atol
        return scaled_norm(err, self._scale, self.norm)

    # ------------------------------------------------------------------
    # Step kernel
    # ------------------------------------------------------------------

    def first_derivative(self, t: float, u: NDArray[np.floating]) -> NDArray[np.floating]:
        """Return f(t, u), evaluating only if not cached."""
        if not self._f0_valid:
            self.rhs(self._f0, t, u)
            self._f0_valid = True
        return self._f0

    def step(self, t: float, u: NDArray[np.floating], dt: float) -> StepResult:
        """Attempt one step of size ``dt`` from (t, u).

        Args:
            t: Current time.
            u: Current state.
            dt: Step size.

        Returns:
            StepResult with views into stepper storage; copy before the next
            call if they must persist.
        """
        tab = self.tableau
        k = self._k

        np.copyto(k[0, ...], self.first_derivative(t, u))
        for i in range(1, tab.stages):
            np.multiply(np.tensordot(tab.a[i, :i], k[:i], axes=1), dt, out=self._stage)
            self._stage += u
            self.rhs(k[i, ...], t + tab.c[i] * dt, self._stage)

        np.multiply(np.tensordot(tab.b, k, axes=1), dt, out=self._u_next)
        self._u_next += u

        if tab.b_embedded is None:
            return StepResult(u_next=self._u_next, error=None, k=k)

        np.multiply(np.tensordot(tab.b - tab.b_embedded, k, axes=1), dt, out=self._err)
        err = self.error_norm(self._err, self._u_next, u)
        return StepResult(u_next=self._u_next, error=err, k=k)
