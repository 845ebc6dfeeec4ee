# tests/test_tableaus.py
"""Unit tests for the Butcher tableau registry.

This module verifies:
- Every registered tableau is consistent (weights sum to one, rows sum to c).
- Dense-output coefficients reproduce the step weights at theta = 1.
- FSAL and adaptivity flags are derived correctly.
- Lookup is case-insensitive and unknown names raise SolverConfigError.
- Invalid custom tableaus are rejected at construction.
- Tableau arrays are read-only.
"""

from __future__ import annotations

import numpy as np
import pytest

from ivp_engine.errors import SolverConfigError
from ivp_engine.tableaus import Tableau, available_tableaus, get_tableau

# -------------------------------------------------------------------
# Registry
# -------------------------------------------------------------------


def test_registry_contains_expected_methods() -> None:
    """All documented method names are registered."""
    names = set(available_tableaus())
    expected = {
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
    }
    assert expected <= names


def test_get_tableau_is_case_insensitive() -> None:
    """Names are normalized before lookup."""
    assert get_tableau("  RK4 ") is get_tableau("rk4")


def test_get_tableau_unknown_name_raises() -> None:
    """Unknown names raise SolverConfigError listing the registry."""
    with pytest.raises(SolverConfigError, match="Unknown algorithm"):
        get_tableau("not-a-method")


@pytest.mark.parametrize("name", available_tableaus())
def test_weights_and_row_sums_are_consistent(name: str) -> None:
    """b sums to one, b_embedded sums to one, and rows of a sum to c."""
    tab = get_tableau(name)
    assert float(np.sum(tab.b)) == pytest.approx(1.0, abs=1e-12)
    if tab.b_embedded is not None:
        assert float(np.sum(tab.b_embedded)) == pytest.approx(1.0, abs=1e-12)
    assert np.allclose(tab.a.sum(axis=1), tab.c, atol=1e-12)
    assert np.all(np.triu(tab.a) == 0.0)


@pytest.mark.parametrize(
    "name", [n for n in available_tableaus() if get_tableau(n).has_interpolant]
)
def test_interpolant_reproduces_weights_at_theta_one(name: str) -> None:
    """sum_j interp[i, j] equals b_i for stepping stages and 0 for extra stages."""
    tab = get_tableau(name)
    assert tab.interp is not None
    at_one = tab.interp.sum(axis=1)
    assert np.allclose(at_one[: tab.stages], tab.b, atol=1e-12)
    assert np.allclose(at_one[tab.stages :], 0.0, atol=1e-12)
    assert np.allclose(tab.interp[:, 0], 0.0)


def test_flags() -> None:
    """FSAL, adaptivity and extra-stage counts are derived from coefficients."""
    dp5 = get_tableau("dp5")
    assert dp5.is_fsal
    assert dp5.is_adaptive
    assert dp5.n_extra_stages == 2
    assert dp5.error_order == 4

    assert get_tableau("bs3").is_fsal
    assert not get_tableau("rk4").is_fsal
    assert not get_tableau("rk4").is_adaptive
    assert get_tableau("dopri5").n_extra_stages == 0


# -------------------------------------------------------------------
# Validation
# -------------------------------------------------------------------


def test_upper_triangular_entries_rejected() -> None:
    """Explicit tableaus must be strictly lower triangular."""
    with pytest.raises(SolverConfigError):
        Tableau(
            name="bad",
            a=np.array([[0.0, 1.0], [1.0, 0.0]]),
            b=np.array([0.5, 0.5]),
            c=np.array([1.0, 1.0]),
            order=2,
            stages=2,
        )


def test_row_sum_mismatch_rejected() -> None:
    """Rows of a must sum to the matching node."""
    with pytest.raises(SolverConfigError):
        Tableau(
            name="bad",
            a=np.array([[0.0, 0.0], [0.5, 0.0]]),
            b=np.array([0.0, 1.0]),
            c=np.array([0.0, 1.0]),
            order=2,
            stages=2,
        )


def test_custom_tableau_accepted_and_read_only() -> None:
    """A valid custom tableau is accepted and its arrays are frozen."""
    tab = Tableau(
        name="my-midpoint",
        a=np.array([[0.0, 0.0], [0.5, 0.0]]),
        b=np.array([0.0, 1.0]),
        c=np.array([0.0, 0.5]),
        order=2,
        stages=2,
    )
    assert not tab.is_adaptive
    with pytest.raises(ValueError, match="read-only"):
        tab.a[1, 0] = 1.0
