# src/ivp_engine/problem.py
"""Problem descriptors passed to :func:`ivp_engine.solve`.

- :class:`ODEProblem`: du/dt = f(t, u), u(t0) = u0
- :class:`SDEProblem`: du = f(t, u) dt + g(t, u) dW, u(t0) = u0 (diagonal noise)

Both accept allocating (``f(t, u) -> du``) or buffer-writing
(``f(t, u, du)``) right-hand sides. ``u0`` may be a number or an array of
any shape. An optional ``analytic`` solution enables the error map:
``analytic(t, u0)`` for ODEs and ``analytic(t, u0, W)`` for SDEs.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Final, TypeAlias

import numpy as np
from numpy.typing import ArrayLike, NDArray

from .errors import SolverConfigError
from .rhs import RHSFunction

_U0_NOT_FINITE_MSG: Final[str] = "u0 must be finite, got {u0!r}"
_TSPAN_LEN_MSG: Final[str] = "tspan must contain at least two times, got {tspan!r}"
_TSPAN_INCREASING_MSG: Final[str] = "tspan must be strictly increasing, got {tspan!r}"

FloatArray: TypeAlias = NDArray[np.floating]
AnalyticODE: TypeAlias = Callable[[float, Any], ArrayLike]
AnalyticSDE: TypeAlias = Callable[[float, Any, Any], ArrayLike]


def as_float64_state(u0: ArrayLike) -> FloatArray:
    """Copy ``u0`` into an owned float64 array (0-d for scalars).

    Args:
        u0: Initial condition.

    Raises:
        SolverConfigError: If any component is not finite.

    Returns:
        Owned float64 array.
    """
    arr = np.array(u0, dtype=np.float64, copy=True)
    if not np.all(np.isfinite(arr)):
        raise SolverConfigError(_U0_NOT_FINITE_MSG.format(u0=u0))
    return arr


def as_time_span(tspan: ArrayLike) -> tuple[float, ...]:
    """Validate a time span: two or more strictly increasing times.

    Args:
        tspan: (t0, tend) or (t0, stops..., tend).

    Raises:
        SolverConfigError: If fewer than two times or not increasing.

    Returns:
        Tuple of floats.
    """
    times = np.asarray(tspan, dtype=np.float64).ravel()
    if times.size < 2:
        raise SolverConfigError(_TSPAN_LEN_MSG.format(tspan=tspan))
    if np.any(np.diff(times) <= 0.0):
        raise SolverConfigError(_TSPAN_INCREASING_MSG.format(tspan=tspan))
    return tuple(float(t) for t in times)


@dataclass(slots=True)
class ODEProblem:
    """Ordinary differential equation problem.

    Attributes:
        f: Right-hand side, ``f(t, u)`` or ``f(t, u, du)``.
        u0: Initial condition.
        analytic: Optional known solution ``analytic(t, u0)``.
        tspan: Default time span used when ``solve`` is not given one.
        inplace: Force the RHS calling convention (None detects it).
    """

    f: RHSFunction
    u0: ArrayLike
    analytic: AnalyticODE | None = None
    tspan: tuple[float, ...] = (0.0, 1.0)
    inplace: bool | None = None

    @property
    def knownanalytic(self) -> bool:
        """Return True if an analytic solution is attached."""
        return self.analytic is not None

    def initial_state(self) -> FloatArray:
        """Return an owned float64 copy of ``u0``."""
        return as_float64_state(self.u0)


@dataclass(slots=True)
class SDEProblem:
    """Stochastic differential equation problem with diagonal noise.

    Attributes:
        f: Drift, ``f(t, u)`` or ``f(t, u, du)``.
        g: Diffusion (noise), same calling convention as ``f``.
        u0: Initial condition.
        analytic: Optional known solution ``analytic(t, u0, W)``.
        tspan: Default time span used when ``solve`` is not given one.
        inplace: Force the calling convention for ``f`` and ``g``.
    """

    f: RHSFunction
    g: RHSFunction
    u0: ArrayLike
    analytic: AnalyticSDE | None = None
    tspan: tuple[float, ...] = (0.0, 1.0)
    inplace: bool | None = None

    @property
    def knownanalytic(self) -> bool:
        """Return True if an analytic solution is attached."""
        return self.analytic is not None

    def initial_state(self) -> FloatArray:
        """Return an owned float64 copy of ``u0``."""
        return as_float64_state(self.u0)
