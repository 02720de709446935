"""Parameters and small value types for voice activity detection."""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass


class SampleRate(enum.IntEnum):
    """Sample rates the VAD model accepts."""

    EIGHT_KHZ = 8000
    SIXTEEN_KHZ = 16000

    @classmethod
    def from_hz(cls, hz: int) -> SampleRate:
        try:
            return cls(hz)
        except ValueError:
            raise ValueError(f"Unsupported sample rate {hz}") from None


@dataclass
class VadParams:
    """User-facing VAD tuning, in milliseconds and hertz."""

    frame_size: int = 64
    threshold: float = 0.5
    min_silence_duration_ms: int = 0
    speech_pad_ms: int = 64
    min_speech_duration_ms: int = 64
    max_speech_duration_s: float = math.inf
    sample_rate: int = 16000


@dataclass
class TimeStamp:
    """A speech segment bounded by sample offsets."""

    start: int = 0
    end: int = 0

    def __str__(self) -> str:
        return f"[start:{self.start:08d}, end:{self.end:08d}]"