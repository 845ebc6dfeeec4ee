# src/ivp_engine/rhs.py
"""Right-hand-side adapter.

User functions come in two flavours:

- allocating: ``du = f(t, u)``
- buffer-writing: ``f(t, u, du)`` writes the derivative into ``du``

:class:`RhsAdapter` hides the difference behind a single
"evaluate into buffer" call, enforces the state shape, and counts
evaluations. Scalar problems are carried internally as 0-d arrays; the user
function still sees and returns plain floats.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable
from typing import Any, TypeAlias

import numpy as np
from numpy.typing import NDArray

from .errors import DimensionMismatchError, SolverConfigError

_SCALAR_INPLACE_ERROR_MSG = (
    "buffer-writing rhs f(t, u, du) requires an array state; "
    "use f(t, u) for scalar problems"
)

AllocatingRHS: TypeAlias = Callable[[float, Any], Any]
InplaceRHS: TypeAlias = Callable[[float, Any, Any], None]
RHSFunction: TypeAlias = AllocatingRHS | InplaceRHS


def is_inplace(func: Callable[..., Any]) -> bool:
    """Return True if ``func`` takes a third positional (output buffer) argument.

    Args:
        func: User right-hand side.

    Returns:
        True for ``f(t, u, du)``-style functions.
    """
    try:
        sig = inspect.signature(func)
    except (TypeError, ValueError):
        return False

    positional = [
        p
        for p in sig.parameters.values()
        if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
        and p.default is p.empty
    ]
    return len(positional) >= 3


class RhsAdapter:
    """Uniform ``rhs(out, t, u)`` wrapper around a user function."""

    def __init__(
        self,
        func: RHSFunction,
        shape: tuple[int, ...],
        *,
        inplace: bool | None = None,
        dtype: np.dtype[Any] | type = np.float64,
    ) -> None:
        """Initialize the adapter.

        Args:
            func: User right-hand side.
            shape: State shape; ``()`` for scalar problems.
            inplace: Force the calling convention; None detects it from the
                signature.
            dtype: State dtype.

        Raises:
            SolverConfigError: If a buffer-writing function is used with a
                scalar state.
        """
        self.func = func
        self.shape = tuple(shape)
        self.dtype = np.dtype(dtype)
        self.inplace = is_inplace(func) if inplace is None else bool(inplace)
        if self.inplace and self.shape == ():
            raise SolverConfigError(_SCALAR_INPLACE_ERROR_MSG)
        self.nf = 0

    @property
    def is_scalar(self) -> bool:
        """Return True for scalar (0-d) problems."""
        return self.shape == ()

    def resize(self, shape: tuple[int, ...]) -> None:
        """Update the expected state shape after a state resize."""
        self.shape = tuple(shape)

    def __call__(
        self,
        out: NDArray[np.floating],
        t: float,
        u: NDArray[np.floating],
    ) -> None:
        """Evaluate the derivative at (t, u) into ``out``.

        Args:
            out: Output buffer with the state shape.
            t: Time.
            u: State.

        Raises:
            DimensionMismatchError: If the function returns the wrong shape.
        """
        self.nf += 1
        if self.inplace:
            self.func(float(t), u, out)
            return

        if out.ndim == 0:
            du = np.asarray(self.func(float(t), float(u)), dtype=self.dtype)
        else:
            du = np.asarray(self.func(float(t), u), dtype=self.dtype)
        if du.shape != out.shape:
            raise DimensionMismatchError(expected=out.shape, actual=du.shape)
        np.copyto(out, du)

    def evaluate(self, t: float, u: NDArray[np.floating]) -> NDArray[np.floating]:
        """Evaluate into a freshly allocated array."""
        out = np.empty(np.shape(u), dtype=self.dtype)
        self(out, t, u)
        return out
