"""
Freeze/thaw detection on a temperature guess.

Rules are applied per cell with first-match priority:
  1. FREEZING           T_prev >= T_f and T_guess < T_f          -> T_f - freeze_eps
  2. SECOND_FREEZE_STEP T_low <= T_prev < T_f and
                        T_prev - T_guess > second_freeze_drop    -> T_prev
  3. THAWING            T_prev <= T_f and T_guess > T_f          -> T_prev (modify_thaw_to_prev)
                                                                   or min(mean, T_f - thaw_cap_offset)
  4. UNCHANGED
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from core.types import CellClass, FloatArray, PhaseChangeConfig

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PhaseTransitionResult:
    classification: np.ndarray  # CellClass values, int8
    any_changed: bool

    def changed_mask(self) -> np.ndarray:
        return self.classification != CellClass.UNCHANGED

    def count(self, kind: CellClass) -> int:
        return int(np.count_nonzero(self.classification == kind))


def detect_phase_transitions(
    T_prev: FloatArray,
    T_guess: FloatArray,
    cfg: PhaseChangeConfig | None = None,
) -> PhaseTransitionResult:
    """
    Classify cells and correct T_guess in place.

    T_prev and T_guess must have equal length (owned cells).
    """
    cfg = cfg if cfg is not None else PhaseChangeConfig()
    T_prev = np.asarray(T_prev, dtype=np.float64)
    if not isinstance(T_guess, np.ndarray) or T_guess.dtype != np.float64:
        raise TypeError("T_guess must be a float64 numpy array (corrected in place)")
    if T_prev.shape != T_guess.shape:
        raise ValueError(f"T_prev shape {T_prev.shape} != T_guess shape {T_guess.shape}")

    T_f = float(cfg.T_freeze)
    undecided = np.ones(T_prev.shape, dtype=bool)
    cls = np.full(T_prev.shape, int(CellClass.UNCHANGED), dtype=np.int8)

    freezing = (T_prev >= T_f) & (T_guess < T_f)
    undecided &= ~freezing

    second = (
        undecided
        & (T_prev < T_f)
        & (T_prev >= cfg.second_freeze_T_low)
        & ((T_prev - T_guess) > cfg.second_freeze_drop)
    )
    undecided &= ~second

    thawing = undecided & (T_prev <= T_f) & (T_guess > T_f)

    T_in = T_guess.copy()
    cls[freezing] = CellClass.FREEZING
    cls[second] = CellClass.SECOND_FREEZE_STEP
    cls[thawing] = CellClass.THAWING

    T_guess[freezing] = T_f - cfg.freeze_eps
    T_guess[second] = T_prev[second]
    if cfg.modify_thaw_to_prev:
        T_guess[thawing] = T_prev[thawing]
    else:
        T_guess[thawing] = np.minimum(0.5 * (T_in[thawing] + T_prev[thawing]), cfg.T_thaw_cap)

    if logger.isEnabledFor(logging.DEBUG):
        labels = {
            CellClass.FREEZING: "Freezing",
            CellClass.SECOND_FREEZE_STEP: "2nd freezing step",
            CellClass.THAWING: "Thawing",
        }
        for c in np.flatnonzero(cls != CellClass.UNCHANGED):
            logger.debug(
                "%s cell %d: T_prev=%.6f T_guess=%.6f T_corrected=%.6f",
                labels[CellClass(int(cls[c]))],
                c,
                T_prev[c],
                T_in[c],
                T_guess[c],
            )

    result = PhaseTransitionResult(classification=cls, any_changed=bool(np.any(cls != CellClass.UNCHANGED)))
    if result.any_changed:
        logger.info(
            "Phase-change predictor correction: freezing=%d second_step=%d thawing=%d",
            result.count(CellClass.FREEZING),
            result.count(CellClass.SECOND_FREEZE_STEP),
            result.count(CellClass.THAWING),
        )
    return result
