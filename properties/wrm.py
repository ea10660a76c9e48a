"""
Water-retention models (capillary pressure curves) and their region pairing.

van Genuchten (1980) with residual saturation:
    se = (s - sr) / (1 - sr)
    pc(s) = ((se^(-1/m) - 1)^(1/n)) / alpha,      m = 1 - 1/n
    s(pc) = sr + (1 - sr) * (1 + (alpha*pc)^n)^(-m)   (pc > 0), 1 otherwise

pc is the gas minus liquid pressure [Pa]; alpha is in [1/Pa].
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np

from core.fields import CompositeField, FieldEvaluator, FieldStore

logger = logging.getLogger(__name__)

# Effective saturation floor; below it pc follows the se^(-1/(m n)) asymptote.
SE_MIN = 1.0e-40
SE_ASYMPTOTIC = 1.0e-8


@dataclass(slots=True)
class WRMVanGenuchten:
    """van Genuchten curve (alpha [1/Pa], n [-], sr [-])."""

    alpha: float
    n: float
    sr: float = 0.0
    m: Optional[float] = None

    def __post_init__(self) -> None:
        if not np.isfinite(self.alpha) or self.alpha <= 0.0:
            raise ValueError(f"van Genuchten alpha must be positive, got {self.alpha}")
        if not np.isfinite(self.n) or self.n <= 1.0:
            raise ValueError(f"van Genuchten n must exceed 1, got {self.n}")
        if not (0.0 <= self.sr < 1.0):
            raise ValueError(f"residual saturation sr must be in [0, 1), got {self.sr}")
        if self.m is None:
            self.m = 1.0 - 1.0 / self.n
        if not (0.0 < self.m < 1.0):
            raise ValueError(f"van Genuchten m must be in (0, 1), got {self.m}")

    def capillary_pressure(self, s):
        """pc(s) for liquid saturation s (scalar or array)."""
        s_arr = np.asarray(s, dtype=np.float64)
        se = np.clip((s_arr - self.sr) / (1.0 - self.sr), SE_MIN, 1.0)
        with np.errstate(over="ignore"):
            pc = np.where(
                se < SE_ASYMPTOTIC,
                se ** (-1.0 / (self.m * self.n)) / self.alpha,
                np.maximum(se ** (-1.0 / self.m) - 1.0, 0.0) ** (1.0 / self.n) / self.alpha,
            )
        return float(pc) if pc.ndim == 0 else pc

    def saturation(self, pc):
        """s(pc), the inverse of capillary_pressure on pc >= 0."""
        pc_arr = np.asarray(pc, dtype=np.float64)
        se = np.where(
            pc_arr > 0.0,
            (1.0 + (self.alpha * np.maximum(pc_arr, 0.0)) ** self.n) ** (-self.m),
            1.0,
        )
        s = self.sr + (1.0 - self.sr) * se
        return float(s) if s.ndim == 0 else s


class WRMRegionList:
    """Ordered (region name, curve) pairs; regions partition the mesh cells."""

    def __init__(self, pairs: Sequence[Tuple[str, WRMVanGenuchten]] = ()) -> None:
        self._pairs: List[Tuple[str, WRMVanGenuchten]] = []
        for region, wrm in pairs:
            self.add(region, wrm)

    def add(self, region: str, wrm: WRMVanGenuchten) -> None:
        if any(name == region for name, _ in self._pairs):
            raise ValueError(f"region '{region}' already has a water-retention model")
        self._pairs.append((str(region), wrm))

    def region_names(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self._pairs)

    def __iter__(self) -> Iterator[Tuple[str, WRMVanGenuchten]]:
        return iter(self._pairs)

    def __len__(self) -> int:
        return len(self._pairs)


class WRMEvaluator(FieldEvaluator):
    """
    Liquid saturation from pressure, s = wrm(p_atm - p), per region.

    Exposes its region curves through provides_region_capillary_curves().
    """

    def __init__(
        self,
        wrms: WRMRegionList,
        *,
        key: str = "saturation_liquid",
        pressure_key: str = "pressure",
        atmospheric_pressure_key: str = "atmospheric_pressure",
    ) -> None:
        super().__init__(key, dependencies=(pressure_key,))
        self._wrms = wrms
        self.pressure_key = pressure_key
        self.atmospheric_pressure_key = atmospheric_pressure_key

    def provides_region_capillary_curves(self) -> bool:
        return True

    def get_wrms(self) -> WRMRegionList:
        return self._wrms

    def evaluate(self, store: FieldStore) -> CompositeField:
        pres = store.get_field(self.pressure_key).view("cell")
        p_atm = store.get_scalar(self.atmospheric_pressure_key)
        n_owned = store.mesh.n_cells_owned
        sat = np.ones(store.mesh.n_cells_used, dtype=np.float64)
        for region, wrm in self._wrms:
            cells = store.mesh.get_set_entities(region)
            sat[cells] = wrm.saturation(p_atm - pres[cells])
        return CompositeField({"cell": sat}, {"cell": n_owned})
