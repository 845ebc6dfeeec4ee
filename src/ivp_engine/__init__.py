"""ivp_engine adaptive Runge-Kutta ODE/SDE solver package."""

from __future__ import annotations

from .config import SolveOptions
from .controller import DtControllerConfig
from .core_solver import (
    AdaptiveConfig,
    CoreSolver,
    Integrator,
    OutputConfig,
    RunConfig,
)
from .engine import solve
from .ensemble import EnsembleSolution, run_ensemble
from .errors import (
    DimensionMismatchError,
    EventRootFindFailure,
    EventRootFindWarning,
    IndexOutOfRangeError,
    IntegrationFailure,
    IvpEngineError,
    MaxIterationsExceededError,
    NoDenseOutputError,
    SolverConfigError,
    StepSizeTooSmallError,
)
from .events import Callback, CallbackSet, EventCallback, EventCondition, StepCallback
from .interpolants import HermiteInterval, Interval, RKInterval
from .problem import ODEProblem, SDEProblem
from .rhs import RHSFunction
from .sde import SDESolver, available_sde_methods
from .solution import ReferenceSolution, SDESolution, Solution, appxtrue
from .tableaus import Tableau, available_tableaus, get_tableau

__all__ = [
    "AdaptiveConfig",
    "Callback",
    "CallbackSet",
    "CoreSolver",
    "DimensionMismatchError",
    "DtControllerConfig",
    "EnsembleSolution",
    "EventCallback",
    "EventCondition",
    "EventRootFindFailure",
    "EventRootFindWarning",
    "HermiteInterval",
    "IndexOutOfRangeError",
    "IntegrationFailure",
    "Integrator",
    "Interval",
    "IvpEngineError",
    "MaxIterationsExceededError",
    "NoDenseOutputError",
    "ODEProblem",
    "OutputConfig",
    "RHSFunction",
    "RKInterval",
    "ReferenceSolution",
    "RunConfig",
    "SDEProblem",
    "SDESolution",
    "SDESolver",
    "Solution",
    "SolveOptions",
    "SolverConfigError",
    "StepCallback",
    "StepSizeTooSmallError",
    "Tableau",
    "appxtrue",
    "available_sde_methods",
    "available_tableaus",
    "get_tableau",
    "run_ensemble",
    "solve",
]

__version__ = "0.1.0"
