# src/ivp_engine/tableaus.py
"""Butcher tableaus for explicit Runge-Kutta methods.

A :class:`Tableau` is immutable value data describing one explicit one-step
method: the stage matrix ``a``, nodes ``c``, weights ``b``, optional embedded
weights ``b_embedded`` for error estimation, and optional dense-output
coefficients ``interp``.

Dense-output convention:
    The continuous extension on an accepted step [t, t + dt] is

        u(theta) = u + dt * sum_i k_i * sum_j interp[i, j] * theta**j

    where ``k_i`` are the stage derivatives. Some continuous extensions need
    stages beyond those used for stepping. Those extra stages are stored as
    additional trailing rows of ``a`` and entries of ``c`` and are only
    evaluated when an interpolation query needs them (see
    :mod:`ivp_engine.interpolants`).

The registry is closed: method names are resolved once, when a run is
configured, through :func:`get_tableau`.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Final, Literal

import numpy as np
from numpy.typing import NDArray

from .errors import SolverConfigError

_ROW_SUM_ATOL: Final[float] = 1e-10

_UNKNOWN_TABLEAU_ERROR_MSG = "Unknown algorithm: {name}. Available: {available}"
_NOT_LOWER_TRIANGULAR_ERROR_MSG = (
    "Tableau '{name}': stage matrix must be strictly lower-triangular"
)
_ROW_SUM_ERROR_MSG = (
    "Tableau '{name}': row {row} of the stage matrix sums to {total!r}, "
    "expected c[{row}]={expected!r}"
)
_SHAPE_ERROR_MSG = "Tableau '{name}': {field} has shape {actual}, expected {expected}"

TableauName = Literal[
    "euler",
    "midpoint",
    "heun",
    "ralston",
    "kutta3",
    "rk4",
    "rk438",
    "bs3",
    "rkf45",
    "cash_karp",
    "dopri5",
    "dp5",
]


@dataclass(slots=True, frozen=True)
class Tableau:
    """Coefficient table for an explicit Runge-Kutta method.

    Attributes:
        name: Method name.
        a: Stage matrix, shape (S, S) where S counts stepping stages plus any
            extra interpolation stages.
        b: Solution weights, length ``stages``.
        c: Nodes, length S.
        order: Order of the propagated solution.
        stages: Number of stages used for stepping.
        b_embedded: Optional embedded weights, length ``stages``.
        embedded_order: Order of the embedded solution.
        interp: Optional dense-output coefficients, shape (S, degree + 1).
        interp_order: Order of the continuous extension.
    """

    name: str
    a: NDArray[np.floating]
    b: NDArray[np.floating]
    c: NDArray[np.floating]
    order: int
    stages: int
    b_embedded: NDArray[np.floating] | None = None
    embedded_order: int | None = None
    interp: NDArray[np.floating] | None = None
    interp_order: int | None = None

    def __post_init__(self) -> None:
        """Validate shapes and consistency; freeze the arrays.

        Raises:
            SolverConfigError: If the coefficients are malformed.
        """
        a = np.array(self.a, dtype=np.float64)
        b = np.array(self.b, dtype=np.float64)
        c = np.array(self.c, dtype=np.float64)
        n_total = c.shape[0]

        if a.shape != (n_total, n_total):
            raise SolverConfigError(
                _SHAPE_ERROR_MSG.format(
                    name=self.name, field="a", actual=a.shape, expected=(n_total, n_total)
                )
            )
        if b.shape != (self.stages,) or self.stages > n_total:
            raise SolverConfigError(
                _SHAPE_ERROR_MSG.format(
                    name=self.name, field="b", actual=b.shape, expected=(self.stages,)
                )
            )
        if np.any(np.triu(a) != 0.0):
            raise SolverConfigError(_NOT_LOWER_TRIANGULAR_ERROR_MSG.format(name=self.name))

        row_sums = a.sum(axis=1)
        for row in range(n_total):
            if abs(row_sums[row] - c[row]) > _ROW_SUM_ATOL:
                raise SolverConfigError(
                    _ROW_SUM_ERROR_MSG.format(
                        name=self.name,
                        row=row,
                        total=float(row_sums[row]),
                        expected=float(c[row]),
                    )
                )

        frozen: dict[str, NDArray[np.floating] | None] = {"a": a, "b": b, "c": c}
        if self.b_embedded is not None:
            b_emb = np.array(self.b_embedded, dtype=np.float64)
            if b_emb.shape != b.shape:
                raise SolverConfigError(
                    _SHAPE_ERROR_MSG.format(
                        name=self.name,
                        field="b_embedded",
                        actual=b_emb.shape,
                        expected=b.shape,
                    )
                )
            frozen["b_embedded"] = b_emb
        if self.interp is not None:
            interp = np.array(self.interp, dtype=np.float64)
            if interp.ndim != 2 or interp.shape[0] != n_total:
                raise SolverConfigError(
                    _SHAPE_ERROR_MSG.format(
                        name=self.name,
                        field="interp",
                        actual=interp.shape,
                        expected=f"({n_total}, degree + 1)",
                    )
                )
            frozen["interp"] = interp

        for field_name, arr in frozen.items():
            if arr is not None:
                arr.setflags(write=False)
                object.__setattr__(self, field_name, arr)

    @property
    def is_adaptive(self) -> bool:
        """Return True if the tableau carries embedded error weights."""
        return self.b_embedded is not None

    @property
    def is_fsal(self) -> bool:
        """Return True if the last stepping stage equals f(t + dt, u_next)."""
        s = self.stages
        return bool(
            s > 1
            and self.c[s - 1] == 1.0
            and np.array_equal(self.a[s - 1, :s], self.b)
        )

    @property
    def has_interpolant(self) -> bool:
        """Return True if the tableau declares dense-output coefficients."""
        return self.interp is not None

    @property
    def n_extra_stages(self) -> int:
        """Number of extra stages needed only for interpolation."""
        return int(self.c.shape[0]) - self.stages

    @property
    def error_order(self) -> int:
        """Order used in the step-size control exponent 1/(order + 1)."""
        if self.embedded_order is None:
            return self.order
        return min(self.order, self.embedded_order)


# =============================================================================
# Construction helpers
# =============================================================================


def _lower(rows: Sequence[Sequence[float]]) -> NDArray[np.floating]:
    """Build a full stage matrix from the sub-diagonal rows of stages 1..S-1."""
    n = len(rows) + 1
    a = np.zeros((n, n), dtype=np.float64)
    for i, row in enumerate(rows, start=1):
        a[i, : len(row)] = row
    return a


def _explicit(
    name: str,
    rows: Sequence[Sequence[float]],
    b: Sequence[float],
    c: Sequence[float],
    order: int,
    **kwargs: object,
) -> Tableau:
    return Tableau(
        name=name,
        a=_lower(rows),
        b=np.asarray(b, dtype=np.float64),
        c=np.asarray(c, dtype=np.float64),
        order=order,
        stages=len(b),
        **kwargs,  # type: ignore[arg-type]
    )


# =============================================================================
# Low-order methods
# =============================================================================

EULER: Final[Tableau] = _explicit("euler", [], [1.0], [0.0], order=1)

MIDPOINT: Final[Tableau] = _explicit("midpoint", [[0.5]], [0.0, 1.0], [0.0, 0.5], order=2)

HEUN: Final[Tableau] = _explicit(
    "heun",
    [[1.0]],
    [0.5, 0.5],
    [0.0, 1.0],
    order=2,
    b_embedded=np.array([1.0, 0.0]),
    embedded_order=1,
)

RALSTON: Final[Tableau] = _explicit(
    "ralston", [[2 / 3]], [1 / 4, 3 / 4], [0.0, 2 / 3], order=2
)

KUTTA3: Final[Tableau] = _explicit(
    "kutta3",
    [[1 / 2], [-1.0, 2.0]],
    [1 / 6, 2 / 3, 1 / 6],
    [0.0, 1 / 2, 1.0],
    order=3,
)

RK4: Final[Tableau] = _explicit(
    "rk4",
    [[1 / 2], [0.0, 1 / 2], [0.0, 0.0, 1.0]],
    [1 / 6, 1 / 3, 1 / 3, 1 / 6],
    [0.0, 1 / 2, 1 / 2, 1.0],
    order=4,
)

RK438: Final[Tableau] = _explicit(
    "rk438",
    [[1 / 3], [-1 / 3, 1.0], [1.0, -1.0, 1.0]],
    [1 / 8, 3 / 8, 3 / 8, 1 / 8],
    [0.0, 1 / 3, 2 / 3, 1.0],
    order=4,
)

# =============================================================================
# Embedded pairs
# =============================================================================

BS3: Final[Tableau] = _explicit(
    "bs3",
    [[1 / 2], [0.0, 3 / 4], [2 / 9, 1 / 3, 4 / 9]],
    [2 / 9, 1 / 3, 4 / 9, 0.0],
    [0.0, 1 / 2, 3 / 4, 1.0],
    order=3,
    b_embedded=np.array([7 / 24, 1 / 4, 1 / 3, 1 / 8]),
    embedded_order=2,
    interp=np.array(
        [
            [0.0, 1.0, -4 / 3, 5 / 9],
            [0.0, 0.0, 1.0, -2 / 3],
            [0.0, 0.0, 4 / 3, -8 / 9],
            [0.0, 0.0, -1.0, 1.0],
        ]
    ),
    interp_order=3,
)

RKF45: Final[Tableau] = _explicit(
    "rkf45",
    [
        [1 / 4],
        [3 / 32, 9 / 32],
        [1932 / 2197, -7200 / 2197, 7296 / 2197],
        [439 / 216, -8.0, 3680 / 513, -845 / 4104],
        [-8 / 27, 2.0, -3544 / 2565, 1859 / 4104, -11 / 40],
    ],
    [16 / 135, 0.0, 6656 / 12825, 28561 / 56430, -9 / 50, 2 / 55],
    [0.0, 1 / 4, 3 / 8, 12 / 13, 1.0, 1 / 2],
    order=5,
    b_embedded=np.array([25 / 216, 0.0, 1408 / 2565, 2197 / 4104, -1 / 5, 0.0]),
    embedded_order=4,
)

CASH_KARP: Final[Tableau] = _explicit(
    "cash_karp",
    [
        [1 / 5],
        [3 / 40, 9 / 40],
        [3 / 10, -9 / 10, 6 / 5],
        [-11 / 54, 5 / 2, -70 / 27, 35 / 27],
        [1631 / 55296, 175 / 512, 575 / 13824, 44275 / 110592, 253 / 4096],
    ],
    [37 / 378, 0.0, 250 / 621, 125 / 594, 0.0, 512 / 1771],
    [0.0, 1 / 5, 3 / 10, 3 / 5, 1.0, 7 / 8],
    order=5,
    b_embedded=np.array(
        [2825 / 27648, 0.0, 18575 / 48384, 13525 / 55296, 277 / 14336, 1 / 4]
    ),
    embedded_order=4,
)

# Dormand-Prince 5(4). Stage 7 is the FSAL stage f(t + dt, u_next).
_DP5_ROWS: Final[list[list[float]]] = [
    [1 / 5],
    [3 / 40, 9 / 40],
    [44 / 45, -56 / 15, 32 / 9],
    [19372 / 6561, -25360 / 2187, 64448 / 6561, -212 / 729],
    [9017 / 3168, -355 / 33, 46732 / 5247, 49 / 176, -5103 / 18656],
    [35 / 384, 0.0, 500 / 1113, 125 / 192, -2187 / 6784, 11 / 84],
]
_DP5_B: Final[list[float]] = [35 / 384, 0.0, 500 / 1113, 125 / 192, -2187 / 6784, 11 / 84, 0.0]
_DP5_B_EMBEDDED: Final[list[float]] = [
    5179 / 57600,
    0.0,
    7571 / 16695,
    393 / 640,
    -92097 / 339200,
    187 / 2100,
    1 / 40,
]
_DP5_C: Final[list[float]] = [0.0, 1 / 5, 3 / 10, 4 / 5, 8 / 9, 1.0, 1.0]

DOPRI5: Final[Tableau] = _explicit(
    "dopri5",
    _DP5_ROWS,
    _DP5_B,
    _DP5_C,
    order=5,
    b_embedded=np.array(_DP5_B_EMBEDDED),
    embedded_order=4,
    interp=np.array(
        [
            [
                0.0,
                1.0,
                -8048581381 / 2820520608,
                8663915743 / 2820520608,
                -12715105075 / 11282082432,
            ],
            [0.0, 0.0, 0.0, 0.0, 0.0],
            [
                0.0,
                0.0,
                131558114200 / 32700410799,
                -68118460800 / 10900136933,
                87487479700 / 32700410799,
            ],
            [
                0.0,
                0.0,
                -1754552775 / 470086768,
                14199869525 / 1410260304,
                -10690763975 / 1880347072,
            ],
            [
                0.0,
                0.0,
                127303824393 / 49829197408,
                -318862633887 / 49829197408,
                701980252875 / 199316789632,
            ],
            [
                0.0,
                0.0,
                -282668133 / 205662961,
                2019193451 / 616988883,
                -1453857185 / 822651844,
            ],
            [0.0, 0.0, 40617522 / 29380423, -110615467 / 29380423, 69997945 / 29380423],
        ]
    ),
    interp_order=4,
)

# Same pair with a fifth-order continuous extension; stages 8 and 9 (both at
# c = 1/2) are only evaluated for interpolation.
DP5: Final[Tableau] = Tableau(
    name="dp5",
    a=_lower(
        [
            *_DP5_ROWS,
            [
                -33728713 / 104693760,
                2.0,
                -30167461 / 21674880,
                7739027 / 17448960,
                -19162737 / 123305984,
                0.0,
                -26949 / 363520,
            ],
            [
                7157 / 75776,
                0.0,
                70925 / 164724,
                10825 / 113664,
                -220887 / 4016128,
                80069 / 3530688,
                -107 / 5254,
                -5 / 74,
            ],
        ]
    ),
    b=np.array(_DP5_B),
    c=np.array([*_DP5_C, 1 / 2, 1 / 2]),
    order=5,
    stages=7,
    b_embedded=np.array(_DP5_B_EMBEDDED),
    embedded_order=4,
    interp=np.array(
        [
            [0.0, 1.0, -6839 / 1776, 24433 / 3552, -81685 / 14208, 29 / 16],
            [0.0, 0.0, 0.0, 0.0, 0.0, 0.0],
            [0.0, 0.0, 413200 / 41181, -398800 / 13727, 1245700 / 41181, -4000 / 371],
            [0.0, 0.0, 225 / 37, -44725 / 1776, 83775 / 2368, -125 / 8],
            [0.0, 0.0, -98415 / 31376, 798255 / 62752, -4428675 / 251008, 6561 / 848],
            [0.0, 0.0, 23529 / 18389, -285659 / 55167, 527571 / 73556, -22 / 7],
            [0.0, 0.0, -3483 / 2627, 14847 / 2627, -21872 / 2627, 4.0],
            [0.0, 0.0, -40 / 37, 80 / 37, -40 / 37, 0.0],
            [0.0, 0.0, -8.0, 32.0, -40.0, 16.0],
        ]
    ),
    interp_order=5,
)


# =============================================================================
# Registry
# =============================================================================

_REGISTRY: Final[dict[str, Tableau]] = {
    tab.name: tab
    for tab in (
        EULER,
        MIDPOINT,
        HEUN,
        RALSTON,
        KUTTA3,
        RK4,
        RK438,
        BS3,
        RKF45,
        CASH_KARP,
        DOPRI5,
        DP5,
    )
}


def available_tableaus() -> tuple[str, ...]:
    """Return the registered method names in registration order."""
    return tuple(_REGISTRY)


def get_tableau(name: str) -> Tableau:
    """Resolve a registered tableau by (case-insensitive) name.

    Args:
        name: Method name, e.g. "dp5" or "RK4".

    Raises:
        SolverConfigError: If the name is not registered.

    Returns:
        The shared, read-only Tableau.
    """
    key = str(name).strip().lower()
    try:
        return _REGISTRY[key]
    except KeyError:
        raise SolverConfigError(
            _UNKNOWN_TABLEAU_ERROR_MSG.format(name=name, available=", ".join(_REGISTRY))
        ) from None
