# src/ivp_engine/config.py
"""User-facing solve options.

:class:`SolveOptions` validates the keyword options of
:func:`ivp_engine.solve` and converts them into the internal frozen
:class:`~ivp_engine.core_solver.RunConfig`. The Greek spellings ``Δt``,
``Δtmin``, ``Δtmax`` and ``γ`` are accepted alongside the ASCII names, and
``event`` is accepted for ``callback``.
"""

from __future__ import annotations

from typing import Any, Literal

import numpy as np
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from .controller import DtControllerConfig
from .core_solver import AdaptiveConfig, OutputConfig, RunConfig
from .tableaus import Tableau

_ABSTOL_NEGATIVE_MSG = "abstol must be >= 0 everywhere"
_DT_BOUNDS_MSG = "dtmax ({dtmax}) must be >= dtmin ({dtmin})"
_Q_BOUNDS_MSG = "qmin ({qmin}) must be <= qmax ({qmax})"
_TABLEAU_TYPE_MSG = "tableau must be a Tableau instance, got {kind}"

# Options that only make sense for deterministic dense integration.
_ODE_ONLY_OPTIONS: tuple[str, ...] = ("adaptive", "dense", "saveat", "callback", "tableau")


class SolveOptions(BaseModel):
    """Validated keyword options for :func:`ivp_engine.solve`."""

    model_config = ConfigDict(
        extra="forbid",
        populate_by_name=True,
        arbitrary_types_allowed=True,
    )

    # stepping
    dt: float | None = Field(
        default=None,
        gt=0.0,
        validation_alias=AliasChoices("dt", "Δt"),
        description="Initial (adaptive) or fixed step size",
    )
    adaptive: bool | None = Field(
        default=None,
        description="Adaptive stepping; defaults to True for ODEs, False for SDEs",
    )
    algorithm: str | None = Field(
        default=None,
        description='Tableau or SDE method name; defaults to "dp5" / "em"',
    )
    tableau: Any = Field(default=None, description="Custom Tableau; overrides algorithm")

    # tolerances
    abstol: Any = Field(default=1e-6, description="Absolute tolerance")
    reltol: float = Field(default=1e-3, ge=0.0)
    internalnorm: Literal["rms", "max"] = Field(default="rms")
    maxiters: int = Field(default=1_000_000, gt=0)

    # controller
    dtmin: float = Field(
        default=1e-10, ge=0.0, validation_alias=AliasChoices("dtmin", "Δtmin")
    )
    dtmax: float | None = Field(
        default=None,
        gt=0.0,
        validation_alias=AliasChoices("dtmax", "Δtmax"),
        description="Maximum step; None means half the timespan",
    )
    gamma: float = Field(
        default=0.9, gt=0.0, le=1.0, validation_alias=AliasChoices("gamma", "γ")
    )
    qmin: float = Field(default=0.2, gt=0.0, le=1.0)
    qmax: float = Field(default=10.0, ge=1.0)
    controller: Literal["simple", "pi"] = Field(default="simple")
    beta: float = Field(default=0.04, ge=0.0)

    # output
    dense: bool | None = Field(
        default=None, description="Dense output; defaults to True for ODEs"
    )
    saveat: tuple[float, ...] = Field(default=())
    save_timeseries: bool = Field(default=True)
    timeseries_steps: int = Field(default=1, ge=1)
    timeseries_errors: bool = Field(default=True)
    dense_errors: bool = Field(default=True)

    # control
    callback: Any = Field(
        default=None,
        validation_alias=AliasChoices("callback", "event"),
        description="EventCondition, Callback or a sequence of them",
    )
    strict: bool = Field(
        default=True, description="Raise fatal errors instead of returning partial results"
    )
    cancel: Any = Field(default=None, description="Object with is_set()")
    seed: int | None = Field(default=None, ge=0)

    @field_validator("abstol", mode="before")
    @classmethod
    def _coerce_abstol(cls, value: Any) -> float | np.ndarray:
        arr = np.asarray(value, dtype=np.float64)
        if np.any(arr < 0.0) or not np.all(np.isfinite(arr)):
            raise ValueError(_ABSTOL_NEGATIVE_MSG)
        if arr.ndim == 0:
            return float(arr)
        return arr

    @field_validator("tableau")
    @classmethod
    def _check_tableau(cls, value: Any) -> Tableau | None:
        if value is not None and not isinstance(value, Tableau):
            raise ValueError(_TABLEAU_TYPE_MSG.format(kind=type(value).__name__))
        return value

    @field_validator("saveat", mode="before")
    @classmethod
    def _coerce_saveat(cls, value: Any) -> tuple[float, ...]:
        return tuple(float(t) for t in np.atleast_1d(np.asarray(value, dtype=float)))

    @model_validator(mode="after")
    def _validate_bounds(self) -> SolveOptions:
        if self.dtmax is not None and self.dtmax < self.dtmin:
            raise ValueError(_DT_BOUNDS_MSG.format(dtmax=self.dtmax, dtmin=self.dtmin))
        if self.qmin > self.qmax:
            raise ValueError(_Q_BOUNDS_MSG.format(qmin=self.qmin, qmax=self.qmax))
        return self

    def unsupported_for_sde(self) -> list[str]:
        """Return the explicitly requested options that SDE solvers ignore."""
        requested = []
        for name in _ODE_ONLY_OPTIONS:
            if name not in self.model_fields_set:
                continue
            value = getattr(self, name)
            if value is None or value is False or value == ():
                continue
            requested.append(name)
        return requested

    def to_run_config(self, *, stochastic: bool = False) -> RunConfig:
        """
        Convert to an internal RunConfig.

        Args:
            stochastic: Resolve defaults for an SDE problem.

        Returns:
            RunConfig instance reflecting these options.
        """
        default_method = "em" if stochastic else "dp5"
        adaptive = (not stochastic) if self.adaptive is None else self.adaptive
        dense = (not stochastic) if self.dense is None else self.dense

        adaptive_cfg = AdaptiveConfig(
            rtol=self.reltol,
            atol=self.abstol,
            dt_init=self.dt,
            max_steps=self.maxiters,
            norm=self.internalnorm,
        )
        dt_controller = DtControllerConfig(
            dt_min=self.dtmin,
            dt_max=self.dtmax,
            safety=self.gamma,
            fac_min=self.qmin,
            fac_max=self.qmax,
            law=self.controller,
            beta=self.beta,
        )
        output = OutputConfig(
            dense=dense,
            save_timeseries=self.save_timeseries,
            timeseries_steps=self.timeseries_steps,
            saveat=self.saveat,
            timeseries_errors=self.timeseries_errors,
            dense_errors=self.dense_errors,
        )
        return RunConfig(
            method=str(self.algorithm or default_method).strip().lower(),
            tableau=self.tableau,
            adaptive=adaptive,
            strict=self.strict,
            dt_controller=dt_controller,
            adaptive_cfg=adaptive_cfg,
            output=output,
            callback=self.callback,
            cancel=self.cancel,
            seed=self.seed,
        )
