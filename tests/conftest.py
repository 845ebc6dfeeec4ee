"""Global pytest configuration and shared fixtures for ivp_engine."""

from __future__ import annotations

import importlib.util
from typing import Final

import pytest

# -----------------------------------------------------------------------------
# Optional dependency detection
# -----------------------------------------------------------------------------

HAS_MATPLOTLIB: Final[bool] = importlib.util.find_spec("matplotlib") is not None


# -----------------------------------------------------------------------------
# Global markers registration safety (for local pytest runs)
# -----------------------------------------------------------------------------


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers used by the test suite."""
    config.addinivalue_line(
        "markers",
        "slow: long-running convergence and ensemble checks",
    )
    config.addinivalue_line(
        "markers",
        "examples: runs a script from examples/ (needs matplotlib)",
    )


# -----------------------------------------------------------------------------
# Conditional skipping fixture
# -----------------------------------------------------------------------------


@pytest.fixture(scope="session")
def require_matplotlib() -> None:
    """
    Skip tests if the examples extra is not installed.

    Usage:
        def test_x(require_matplotlib):
            ...
    """
    if not HAS_MATPLOTLIB:
        pytest.skip("examples extra (matplotlib) not installed")
    import matplotlib  # noqa: PLC0415

    matplotlib.use("Agg")
