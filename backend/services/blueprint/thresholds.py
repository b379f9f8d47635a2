"""Edge-energy threshold strategies for the box extractor.

The default percentile rule is empirically tuned; keep alternatives behind
the same callable interface so image sets can be recalibrated without
touching the extractor.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import numpy as np


class ThresholdStrategy(Protocol):
    def __call__(self, scores: np.ndarray) -> float:
        ...


@dataclass(frozen=True)
class PercentileThreshold:
    """``max(floor, min(p90 * scale, p90 - (p90 - median) * pull))``."""

    floor: float = 30.0
    scale: float = 0.55
    pull: float = 0.2

    def __call__(self, scores: np.ndarray) -> float:
        flat = np.sort(np.asarray(scores, dtype=np.float64).ravel())
        if flat.size == 0:
            return float(self.floor)
        median = float(flat[int(flat.size * 0.5)])
        p90 = float(flat[min(int(flat.size * 0.9), flat.size - 1)])
        return float(max(self.floor, min(p90 * self.scale, p90 - (p90 - median) * self.pull)))


@dataclass(frozen=True)
class FixedThreshold:
    value: float

    def __call__(self, scores: np.ndarray) -> float:
        return float(self.value)


DEFAULT_THRESHOLD = PercentileThreshold()
