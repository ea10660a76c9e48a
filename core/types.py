"""
Strongly typed containers for the frozen coupled flow/energy configuration.

Conventions (law of the land):
- Temperatures in K, pressures in Pa, molar densities in mol/m^3.
- Fields are cell-centered with an additional face component (mixed FV).
- "flow" sub-vector carries pressure, "energy" sub-vector carries temperature.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Mapping, Optional

import numpy as np
from numpy.typing import NDArray

FloatArray = NDArray[np.float64]
IntArray = NDArray[np.int64]


class CellClass(IntEnum):
    """Per-cell outcome of freeze/thaw detection."""

    UNCHANGED = 0
    FREEZING = 1
    SECOND_FREEZE_STEP = 2
    THAWING = 3


@dataclass(slots=True)
class PhaseChangeConfig:
    """Freeze/thaw detection thresholds.

    Attributes
    ----------
    T_freeze : float
        Freezing reference temperature [K].
    freeze_eps : float
        Offset below T_freeze applied to freshly freezing cells.
    second_freeze_drop : float
        Minimum drop T_prev - T_guess that flags the second freezing step.
    second_freeze_T_low : float
        Lower bound of T_prev for the second freezing step band.
    thaw_cap_offset : float
        Thawing guesses are capped at T_freeze - thaw_cap_offset when they are
        not reset to the previous temperature.
    modify_thaw_to_prev : bool
        Reset thawing cells to T_prev instead of the capped midpoint.
    """

    T_freeze: float = 273.15
    freeze_eps: float = 1.0e-3
    second_freeze_drop: float = 1.0e-2
    second_freeze_T_low: float = 273.1
    thaw_cap_offset: float = 1.0e-2
    modify_thaw_to_prev: bool = True

    def __post_init__(self) -> None:
        for name in ("T_freeze", "freeze_eps", "second_freeze_drop", "second_freeze_T_low", "thaw_cap_offset"):
            val = float(getattr(self, name))
            if not np.isfinite(val):
                raise ValueError(f"phase_change.{name} must be finite, got {val}")
        if self.freeze_eps <= 0.0 or self.thaw_cap_offset <= 0.0:
            raise ValueError("phase_change freeze_eps and thaw_cap_offset must be positive.")
        if self.second_freeze_T_low >= self.T_freeze:
            raise ValueError(
                f"second_freeze_T_low={self.second_freeze_T_low} must lie below T_freeze={self.T_freeze}"
            )

    @property
    def T_thaw_cap(self) -> float:
        return float(self.T_freeze) - float(self.thaw_cap_offset)


@dataclass(slots=True)
class ProjectionConfig:
    """Mass-consistent pressure projection settings (state keys + guard)."""

    water_content_key: str = "water_content"
    cell_volume_key: str = "cell_volume"
    porosity_key: str = "porosity"
    molar_density_gas_key: str = "molar_density_gas"
    mol_frac_gas_key: str = "mol_frac_gas"
    molar_density_liquid_key: str = "molar_density_liquid"
    molar_density_ice_key: str = "molar_density_ice"
    one_on_A_key: str = "wrm_permafrost_one_on_A"
    wrm_evaluator_key: str = "saturation_liquid"
    atmospheric_pressure_key: str = "atmospheric_pressure"
    requester: str = "flow"
    # |denominator| <= tol raises SingularProjectionError (0.0 -> exact zero only)
    denominator_tol: float = 0.0

    def __post_init__(self) -> None:
        if not np.isfinite(self.denominator_tol) or self.denominator_tol < 0.0:
            raise ValueError(f"projection.denominator_tol must be >= 0, got {self.denominator_tol}")


@dataclass(slots=True)
class BacktrackingConfig:
    """Residual-decrease backtracking for the admissibility check."""

    enabled: bool = False
    max_iterations: int = 10

    def __post_init__(self) -> None:
        if int(self.max_iterations) < 1:
            raise ValueError(f"backtracking.max_iterations must be >= 1, got {self.max_iterations}")
        self.max_iterations = int(self.max_iterations)


@dataclass(slots=True)
class HistoryConfig:
    """Predictor history buffer settings."""

    max_size: int = 3
    use_derivatives: bool = False
    # None -> highest order the occupancy supports
    order: Optional[int] = None

    def __post_init__(self) -> None:
        if int(self.max_size) < 2:
            raise ValueError(f"history.max_size must be >= 2, got {self.max_size}")
        self.max_size = int(self.max_size)
        if self.order is not None and int(self.order) < 0:
            raise ValueError(f"history.order must be >= 0, got {self.order}")


@dataclass(slots=True)
class FrozenColumnConfig:
    """Initialization from the tabulated frozen reference column."""

    enabled: bool = False
    water_table_height: Optional[float] = None

    def __post_init__(self) -> None:
        if self.enabled and self.water_table_height is None:
            raise ValueError("frozen_column.water_table_height is required when enabled.")


_PREDICTOR_MODES = ("phase_change", "temperature")


@dataclass(slots=True)
class CoupledConfig:
    """Top-level configuration container for the frozen flow/energy coupler."""

    phase_change: PhaseChangeConfig = field(default_factory=PhaseChangeConfig)
    projection: ProjectionConfig = field(default_factory=ProjectionConfig)
    backtracking: BacktrackingConfig = field(default_factory=BacktrackingConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    frozen_column: FrozenColumnConfig = field(default_factory=FrozenColumnConfig)
    predictor_mode: str = "phase_change"

    def __post_init__(self) -> None:
        mode = str(self.predictor_mode).strip().lower()
        if mode not in _PREDICTOR_MODES:
            raise ValueError(f"predictor_mode must be one of {_PREDICTOR_MODES}, got {self.predictor_mode!r}")
        self.predictor_mode = mode

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> "CoupledConfig":
        """Build from the flat named-option set used by the coupled solver."""
        allowed = {
            "modify_thaw_to_prev",
            "backtracking_enabled",
            "backtracking_max_iterations",
            "history_max_size",
        }
        unknown = set(options.keys()) - allowed
        if unknown:
            raise ValueError(f"Unsupported flat options: {sorted(unknown)}")
        return cls(
            phase_change=PhaseChangeConfig(
                modify_thaw_to_prev=bool(options.get("modify_thaw_to_prev", True)),
            ),
            backtracking=BacktrackingConfig(
                enabled=bool(options.get("backtracking_enabled", False)),
                max_iterations=int(options.get("backtracking_max_iterations", 10)),
            ),
            history=HistoryConfig(max_size=int(options.get("history_max_size", 3))),
        )
