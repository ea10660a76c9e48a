"""
Mass-consistent pressure projection for corrected temperature guesses.

For each selected cell the pressure is reset so that the total water
(liquid + ice + vapor) at the corrected temperature matches the previous
step's water content:

    A - 1  = 1/one_on_A - 1
    wc     = wc0 / cv
    s*     = (wc - n_g*omega_g*phi) / (phi*(n_l - n_g*omega_g + n_i*(A-1)) - (A-1)*wc)
    p      = p_atm - pc(s*)          only where s* > 0

wc0 and cv come from the previous snapshot; porosity, densities, mole
fraction and one_on_A come from the next snapshot, evaluated at the guess.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from core.fields import NEXT, PREVIOUS, FieldStore
from core.types import FloatArray, ProjectionConfig

logger = logging.getLogger(__name__)


class PressureProjectionError(RuntimeError):
    """Projection cannot run (missing curves or inconsistent inputs)."""


class SingularProjectionError(PressureProjectionError):
    """The saturation closure has a vanishing or non-finite denominator."""


@dataclass(slots=True)
class ProjectionStats:
    n_candidates: int = 0
    n_projected: int = 0
    n_nonphysical: int = 0


def saturation_star(
    wc: FloatArray,
    phi: FloatArray,
    n_g: FloatArray,
    omega_g: FloatArray,
    n_l: FloatArray,
    n_i: FloatArray,
    one_on_A: FloatArray,
    *,
    denominator_tol: float = 0.0,
    cells: Optional[np.ndarray] = None,
) -> FloatArray:
    """
    Liquid saturation implied by specific water content wc (all arrays aligned).

    Raises SingularProjectionError where |denominator| <= denominator_tol or
    the result is not finite; cells (if given) labels the entries in the message.
    """
    A_minus_one = 1.0 / one_on_A - 1.0
    n_g_omega = n_g * omega_g
    num = wc - n_g_omega * phi
    den = phi * (n_l - n_g_omega + n_i * A_minus_one) - A_minus_one * wc

    with np.errstate(divide="ignore", invalid="ignore"):
        s_star = num / den
    bad = ~np.isfinite(den) | (np.abs(den) <= denominator_tol) | ~np.isfinite(s_star)
    if np.any(bad):
        idx = np.flatnonzero(bad)
        labels = idx if cells is None else np.asarray(cells)[idx]
        raise SingularProjectionError(
            f"Singular saturation closure in {idx.size} cell(s), first cells {labels[:5].tolist()}: "
            f"denominator={den[idx[:5]].tolist()}"
        )
    return s_star


class MassConsistentPressureProjector:
    """Recompute pressure at selected cells from conserved water content."""

    def __init__(self, cfg: ProjectionConfig | None = None) -> None:
        self.cfg = cfg if cfg is not None else ProjectionConfig()

    def _region_curves(self, store: FieldStore):
        evaluator = store.get_evaluator(self.cfg.wrm_evaluator_key)
        if not evaluator.provides_region_capillary_curves():
            raise PressureProjectionError(
                f"Evaluator '{self.cfg.wrm_evaluator_key}' does not provide region capillary-pressure curves"
            )
        return evaluator.get_wrms()

    def project(
        self,
        store: FieldStore,
        pressure: FloatArray,
        changed: Optional[np.ndarray] = None,
    ) -> ProjectionStats:
        """
        Overwrite pressure (cell values, in place) at changed cells of every
        water-retention region; changed=None selects every region cell.
        """
        cfg = self.cfg
        wrms = self._region_curves(store)

        wc0 = store.get_field(cfg.water_content_key, PREVIOUS).view("cell")
        cv = store.get_field(cfg.cell_volume_key, PREVIOUS).view("cell")
        phi = store.get_field(cfg.porosity_key, NEXT).view("cell")
        n_g = store.get_field(cfg.molar_density_gas_key, NEXT).view("cell")
        omega_g = store.get_field(cfg.mol_frac_gas_key, NEXT).view("cell")
        n_l = store.get_field(cfg.molar_density_liquid_key, NEXT).view("cell")
        n_i = store.get_field(cfg.molar_density_ice_key, NEXT).view("cell")
        one_on_A = store.get_field(cfg.one_on_A_key, NEXT).view("cell")
        p_atm = store.get_scalar(cfg.atmospheric_pressure_key, NEXT)

        # every region is solved before any pressure is written
        stats = ProjectionStats()
        updates: List[Tuple[str, np.ndarray, FloatArray, FloatArray]] = []
        for region, wrm in wrms:
            cells = store.mesh.get_set_entities(region)
            if changed is not None:
                cells = cells[np.asarray(changed, dtype=bool)[cells]]
            if cells.size == 0:
                continue
            stats.n_candidates += int(cells.size)

            s_star = saturation_star(
                wc0[cells] / cv[cells],
                phi[cells],
                n_g[cells],
                omega_g[cells],
                n_l[cells],
                n_i[cells],
                one_on_A[cells],
                denominator_tol=cfg.denominator_tol,
                cells=cells,
            )
            physical = s_star > 0.0
            stats.n_nonphysical += int(np.count_nonzero(~physical))
            if not np.any(physical):
                continue

            pc = np.asarray(wrm.capillary_pressure(s_star[physical]), dtype=np.float64)
            updates.append((region, cells[physical], s_star[physical], p_atm - pc))

        for region, target, s_phys, p_new in updates:
            if logger.isEnabledFor(logging.DEBUG):
                for c, s, p_old, p_corr in zip(target, s_phys, pressure[target], p_new):
                    logger.debug(
                        "Region '%s' cell %d: s*=%.6g p_guess=%.6g p_corrected=%.6g", region, c, s, p_old, p_corr
                    )
            pressure[target] = p_new
            stats.n_projected += int(target.size)

        if stats.n_candidates:
            logger.info(
                "Pressure projection: candidates=%d projected=%d nonphysical=%d",
                stats.n_candidates,
                stats.n_projected,
                stats.n_nonphysical,
            )
        return stats
