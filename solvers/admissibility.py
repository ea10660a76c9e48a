"""
Residual-decrease backtracking as an admissibility check.

A candidate nonlinear iterate is admissible when its residual 2-norm does not
exceed the retained norm of the last accepted iterate. Rejections are counted;
once max_iterations - 1 consecutive rejections have piled up the next check is
accepted without evaluation so the outer solve cannot stall.

All state lives in an explicit BacktrackContext that each check takes and
returns; the coupler owns the current context.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Optional, Tuple

import numpy as np

from core.types import BacktrackingConfig

logger = logging.getLogger(__name__)


class BacktrackPhase(str, Enum):
    IDLE = "idle"
    CHECKING = "checking"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True, slots=True)
class BacktrackContext:
    """
    Backtracking state carried across admissibility checks.

    res_norm is the retained residual norm (set by each residual evaluation and
    restored to the baseline after a rejection).
    """

    enabled: bool = False
    max_iterations: int = 10
    count: int = 0
    res_norm: float = float("inf")
    phase: BacktrackPhase = BacktrackPhase.IDLE

    @classmethod
    def from_config(cls, cfg: BacktrackingConfig) -> "BacktrackContext":
        return cls(enabled=bool(cfg.enabled), max_iterations=int(cfg.max_iterations))

    @property
    def exhausted(self) -> bool:
        return self.count == self.max_iterations - 1


@dataclass(frozen=True, slots=True)
class AdmissibilityResult:
    accepted: bool
    reason: str
    res_prev: float = float("nan")
    res_new: float = float("nan")


ResidualNorm = Callable[[Any], float]


def record_residual_norm(ctx: BacktrackContext, res_norm: float) -> BacktrackContext:
    """Return ctx with the retained residual norm replaced."""
    res_norm = float(res_norm)
    logger.debug("Setting backtracking res: %.6e", res_norm)
    return replace(ctx, res_norm=res_norm)


def check_admissible(
    ctx: BacktrackContext,
    candidate: Any,
    residual_norm: ResidualNorm,
    *,
    base_admissible: Optional[Callable[[Any], bool]] = None,
) -> Tuple[AdmissibilityResult, BacktrackContext]:
    """
    Run one admissibility check of candidate.

    residual_norm(candidate) evaluates the residual of the candidate and returns
    its 2-norm. base_admissible is the coupled solver's own predicate; a False
    verdict rejects before any residual evaluation and leaves ctx untouched.
    """
    if base_admissible is not None and not base_admissible(candidate):
        return AdmissibilityResult(False, "inadmissible"), ctx

    if not ctx.enabled:
        return AdmissibilityResult(True, "disabled"), ctx

    if ctx.exhausted:
        logger.warning("Backtracking exhausted after %d rejection(s), giving in.", ctx.count)
        return (
            AdmissibilityResult(True, "exhausted", res_prev=ctx.res_norm),
            replace(ctx, count=0, phase=BacktrackPhase.EXHAUSTED),
        )

    res_prev = float(ctx.res_norm)
    checking = replace(ctx, phase=BacktrackPhase.CHECKING)
    res_new = float(residual_norm(candidate))
    if not np.isfinite(res_new):
        logger.warning("Backtracking residual is not finite (%s); rejecting candidate.", res_new)
    logger.debug("Checking admissibility for backtracking (prev, new): %.6e, %.6e", res_prev, res_new)

    if res_new <= res_prev:
        return (
            AdmissibilityResult(True, "decreased", res_prev=res_prev, res_new=res_new),
            replace(checking, count=0, res_norm=res_new, phase=BacktrackPhase.IDLE),
        )
    return (
        AdmissibilityResult(False, "increased", res_prev=res_prev, res_new=res_new),
        replace(checking, count=checking.count + 1, res_norm=res_prev, phase=BacktrackPhase.IDLE),
    )
