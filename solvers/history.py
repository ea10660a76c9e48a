"""
Bounded solution history with divided-difference interpolation.

Used to seed nonlinear solves: extrapolating the recorded (t, u) pairs to the
new time gives the predictor. Records optionally carry the time derivative
udot; when every record has one, each record contributes a confluent pair of
samples (value, slope) and the Newton table becomes a Hermite table.

Vectors only need copy(), update(alpha, x, beta) (self = alpha*x + beta*self)
and assign(); both CompositeField and BlockVector qualify.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, List, Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)


class SolutionHistoryError(RuntimeError):
    """Base class for history buffer failures (abort the current step)."""


class InvalidHistoryArgument(SolutionHistoryError, ValueError):
    """Bad construction parameters."""


class OutOfOrderTimeError(SolutionHistoryError):
    """Recorded time does not exceed the most recent stored time."""


class EmptyHistoryError(SolutionHistoryError):
    """Query on a history without records."""


class InsufficientHistoryError(SolutionHistoryError):
    """Requested interpolation order exceeds what the stored records support."""


@dataclass(slots=True)
class HistoryRecord:
    t: float
    x: Any
    xdot: Optional[Any] = None


class SolutionHistory:
    """
    FIFO buffer of at most max_size (t, x[, xdot]) records, oldest first.
    """

    def __init__(self, max_size: int, t0: float, x0: Any, xdot0: Optional[Any] = None) -> None:
        if int(max_size) < 2:
            raise InvalidHistoryArgument(f"max_size must be >= 2, got {max_size}")
        self.max_size = int(max_size)
        self._records: Deque[HistoryRecord] = deque(maxlen=self.max_size)
        self.record_solution(t0, x0, xdot0)

    def record_solution(self, t: float, x: Any, xdot: Optional[Any] = None) -> None:
        """Append copies of (x, xdot) at t; evicts the oldest record at capacity."""
        t = float(t)
        if not np.isfinite(t):
            raise InvalidHistoryArgument(f"record time must be finite, got {t}")
        if self._records and t <= self._records[-1].t:
            raise OutOfOrderTimeError(
                f"record time {t!r} must exceed most recent time {self._records[-1].t!r}"
            )
        if len(self._records) == self.max_size:
            logger.debug("History full (%d); evicting t=%g", self.max_size, self._records[0].t)
        self._records.append(HistoryRecord(t, x.copy(), None if xdot is None else xdot.copy()))

    def history_size(self) -> int:
        return len(self._records)

    def _latest(self) -> HistoryRecord:
        if not self._records:
            raise EmptyHistoryError("solution history holds no records")
        return self._records[-1]

    def most_recent_time(self) -> float:
        return self._latest().t

    def most_recent_solution(self, out: Any) -> None:
        out.assign(self._latest().x)

    def times(self) -> List[float]:
        return [rec.t for rec in self._records]

    def time_deltas(self) -> List[float]:
        """Consecutive differences t[i+1] - t[i], oldest to newest."""
        t = self.times()
        return [t[i + 1] - t[i] for i in range(len(t) - 1)]

    def has_derivatives(self) -> bool:
        return bool(self._records) and all(rec.xdot is not None for rec in self._records)

    def max_order(self) -> int:
        n_samples = len(self._records) * (2 if self.has_derivatives() else 1)
        return n_samples - 1

    def _samples(self) -> List[Tuple[float, Any, Optional[Any]]]:
        # Derivative-bearing records appear twice (confluent nodes).
        use_dot = self.has_derivatives()
        samples: List[Tuple[float, Any, Optional[Any]]] = []
        for rec in self._records:
            samples.append((rec.t, rec.x, rec.xdot if use_dot else None))
            if use_dot:
                samples.append((rec.t, rec.x, rec.xdot))
        return samples

    def interpolate_solution(self, t: float, out: Any, order: Optional[int] = None) -> None:
        """
        Evaluate the Newton interpolant of the most recent order+1 samples at t.

        t may lie outside the recorded range (extrapolation).
        """
        if not self._records:
            raise EmptyHistoryError("solution history holds no records")
        max_order = self.max_order()
        if order is None:
            order = max_order
        order = int(order)
        if order < 0:
            raise InvalidHistoryArgument(f"interpolation order must be >= 0, got {order}")
        if order > max_order:
            raise InsufficientHistoryError(
                f"order {order} requested but {self.history_size()} record(s) support at most {max_order}"
            )

        window = self._samples()[-(order + 1):]
        z = [s[0] for s in window]
        table = [s[1].copy() for s in window]

        for j in range(1, order + 1):
            for i in range(order, j - 1, -1):
                dz = z[i] - z[i - j]
                if dz == 0.0:
                    # confluent pair: first divided difference is the slope
                    table[i].assign(window[i][2])
                else:
                    table[i].update(-1.0 / dz, table[i - 1], 1.0 / dz)

        result = table[order]
        for i in range(order - 1, -1, -1):
            result.update(1.0, table[i], float(t) - z[i])
        out.assign(result)
