# src/ivp_engine/engine.py
"""Top-level ``solve`` entry point.

Contract:
- ``solve(ODEProblem, tspan, **options)`` runs the adaptive explicit
  Runge-Kutta :class:`~ivp_engine.core_solver.CoreSolver` and returns a
  :class:`~ivp_engine.solution.Solution`.
- ``solve(SDEProblem, tspan, dt=..., **options)`` runs the fixed-step
  :class:`~ivp_engine.sde.SDESolver` and returns an
  :class:`~ivp_engine.solution.SDESolution`.
- Options are validated by :class:`~ivp_engine.config.SolveOptions`; unknown
  names raise ``pydantic.ValidationError``.
"""

from __future__ import annotations

import warnings
from typing import TYPE_CHECKING, Any, Final

import numpy as np

from .config import SolveOptions
from .core_solver import CoreSolver
from .errors import raise_invalid_config
from .problem import ODEProblem, SDEProblem
from .sde import SDESolver

if TYPE_CHECKING:
    from numpy.typing import ArrayLike

    from .solution import Solution

_PROBLEM_TYPE_MSG: Final[str] = "problem must be an ODEProblem or SDEProblem, got {kind}"
_SDE_IGNORED_MSG: Final[str] = "options {names} are not supported for SDE problems"
_SDE_IGNORED_WARN_MSG: Final[str] = _SDE_IGNORED_MSG + " and were ignored"


def solve(
    problem: ODEProblem | SDEProblem,
    tspan: ArrayLike | None = None,
    *,
    rng: np.random.Generator | None = None,
    **options: Any,
) -> Solution:
    """Solve an initial value problem.

    Args:
        problem: ODEProblem or SDEProblem.
        tspan: (t0, tend) or (t0, stops..., tend); interior entries are
            times the solver lands on exactly. Defaults to ``problem.tspan``.
        rng: Generator for SDE Brownian increments (overrides ``seed``).
        **options: See :class:`~ivp_engine.config.SolveOptions`.

    Raises:
        TypeError: If ``problem`` has an unsupported type.
        SolverConfigError: If options are invalid for the problem.

    Returns:
        Solution (SDESolution for SDE problems).
    """
    opts = SolveOptions.model_validate(options)

    if isinstance(problem, SDEProblem):
        ignored = opts.unsupported_for_sde()
        if ignored:
            names = ", ".join(ignored)
            if opts.strict:
                raise_invalid_config(
                    option=names, detail=_SDE_IGNORED_MSG.format(names=names)
                )
            warnings.warn(
                _SDE_IGNORED_WARN_MSG.format(names=names), RuntimeWarning, stacklevel=2
            )
        cfg = opts.to_run_config(stochastic=True)
        return SDESolver(problem).run(tspan, config=cfg, rng=rng)

    if isinstance(problem, ODEProblem):
        return CoreSolver(problem).run(tspan, config=opts.to_run_config())

    raise TypeError(_PROBLEM_TYPE_MSG.format(kind=type(problem).__name__))
