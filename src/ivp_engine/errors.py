# src/ivp_engine/errors.py
"""Error and warning types for ivp_engine.

This module centralizes:
- explicit error classes with actionable messages,
- a warning category for recoverable event root-finding failures, and
- small helpers that raise standardized errors.

Fatal integration errors (step-size underflow, iteration cap) carry the
partial :class:`ivp_engine.solution.Solution` accumulated so far, so callers
can inspect or plot what was computed before the failure.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Final

if TYPE_CHECKING:
    from .solution import Solution

_DIMENSION_MISMATCH_MSG: Final[str] = (
    "rhs output shape {actual} does not match state shape {expected}"
)
_STEP_SIZE_TOO_SMALL_MSG: Final[str] = (
    "dt={dt:.3e} fell below dtmin={dtmin:.3e} at t={t:.6g}; "
    "the problem may be stiff or the tolerances too tight"
)
_MAX_ITERS_MSG: Final[str] = (
    "Exceeded maxiters={maxiters} at t={t:.6g}; increase maxiters or loosen "
    "the tolerances"
)
_NO_DENSE_MSG: Final[str] = (
    "No dense output available at t={t!r}: {reason}. "
    "Solve with dense=True and save_timeseries=True to query arbitrary times."
)
_INDEX_OOB_MSG: Final[str] = "index {index} out of range for solution of length {length}"


class IvpEngineError(Exception):
    """Base exception for ivp_engine errors."""


class SolverConfigError(IvpEngineError, ValueError):
    """Raised when solver options or a tableau are invalid."""


class DimensionMismatchError(IvpEngineError, ValueError):
    """Raised when the RHS output shape disagrees with the state shape."""

    def __init__(self, expected: tuple[int, ...], actual: tuple[int, ...]) -> None:
        """Initialize with the expected and actual shapes."""
        super().__init__(_DIMENSION_MISMATCH_MSG.format(actual=actual, expected=expected))
        self.expected = expected
        self.actual = actual


class IntegrationFailure(IvpEngineError, RuntimeError):
    """Base class for fatal integration errors carrying a partial solution."""

    retcode: str = "Failure"

    def __init__(self, msg: str, *, t: float) -> None:
        """Initialize with a message and the time at which the run halted."""
        super().__init__(msg)
        self.t = t
        self.solution: Solution | None = None


class StepSizeTooSmallError(IntegrationFailure):
    """Raised when the adaptive step size underflows ``dtmin``."""

    retcode = "DtLessThanMin"

    def __init__(self, *, t: float, dt: float, dtmin: float) -> None:
        """Initialize with the failing time, step size and minimum."""
        super().__init__(_STEP_SIZE_TOO_SMALL_MSG.format(dt=dt, dtmin=dtmin, t=t), t=t)
        self.dt = dt
        self.dtmin = dtmin


class MaxIterationsExceededError(IntegrationFailure):
    """Raised when the solve loop exceeds ``maxiters`` iterations."""

    retcode = "MaxIters"

    def __init__(self, *, t: float, maxiters: int) -> None:
        """Initialize with the failing time and iteration cap."""
        super().__init__(_MAX_ITERS_MSG.format(maxiters=maxiters, t=t), t=t)
        self.maxiters = maxiters


class EventRootFindFailure(IvpEngineError, RuntimeError):
    """Raised internally when an event crossing cannot be located."""


class EventRootFindWarning(RuntimeWarning):
    """Warning emitted when event root-finding falls back to a sample point."""


class NoDenseOutputError(IvpEngineError, LookupError):
    """Raised when interpolation is requested but not available."""


class IndexOutOfRangeError(IvpEngineError, IndexError):
    """Raised when indexing a solution past its stored length."""


def raise_no_dense_output(t: float, *, reason: str) -> None:
    """Raise a standardized NoDenseOutputError.

    Args:
        t: Requested query time.
        reason: Human-readable reason interpolation is unavailable.

    Raises:
        NoDenseOutputError: Always.
    """
    raise NoDenseOutputError(_NO_DENSE_MSG.format(t=t, reason=reason))


def raise_index_out_of_range(index: int, length: int) -> None:
    """Raise a standardized IndexOutOfRangeError.

    Args:
        index: Requested index.
        length: Number of stored points.

    Raises:
        IndexOutOfRangeError: Always.
    """
    raise IndexOutOfRangeError(_INDEX_OOB_MSG.format(index=index, length=length))


def raise_invalid_config(*, option: str, detail: str) -> None:
    """Raise a standardized SolverConfigError.

    Args:
        option: Name of the offending option.
        detail: Human-readable explanation.

    Raises:
        SolverConfigError: Always.
    """
    raise SolverConfigError(f"Invalid solver option '{option}': {detail}")
