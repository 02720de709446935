"""Bounded rolling buffer of float audio samples."""

from __future__ import annotations

import logging
from collections import deque
from typing import Iterable

import numpy as np

logger = logging.getLogger(__name__)


class AudioBuffer:
    """Keeps at most ``max_duration_seconds`` of the most recent samples."""

    def __init__(self, sample_rate: int, max_duration_seconds: float) -> None:
        self.sample_rate = sample_rate
        self.max_duration_seconds = max_duration_seconds
        self._samples: deque[float] = deque(maxlen=int(sample_rate * max_duration_seconds))

    def add_samples(self, samples: Iterable[float]) -> None:
        """Append samples, dropping the oldest beyond capacity."""
        before = len(self._samples)
        self._samples.extend(float(s) for s in samples)
        logger.debug(
            "AudioBuffer: added samples, total: %d (was %d), duration: %.2fs",
            len(self._samples),
            before,
            self.duration_seconds(),
        )

    def get_samples(self) -> np.ndarray:
        """A float32 copy of the buffered samples, oldest first."""
        return np.fromiter(self._samples, dtype=np.float32, count=len(self._samples))

    def clear(self) -> None:
        self._samples.clear()

    def duration_seconds(self) -> float:
        return len(self._samples) / self.sample_rate

    def __len__(self) -> int:
        return len(self._samples)