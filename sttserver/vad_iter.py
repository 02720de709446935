"""Speech segment state machine driven by per-frame speech probabilities."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol, Sequence

from sttserver.vad_params import TimeStamp, VadParams

logger = logging.getLogger(__name__)

_SILENCE_MS_AT_MAX_SPEECH = 98
_NEGATIVE_THRESHOLD_OFFSET = 0.15


class _ProbabilityModel(Protocol):
    def calc_level(self, frame: Sequence[int]) -> float: ...

    def reset(self) -> None: ...


@dataclass(frozen=True)
class _Params:
    threshold: float
    sample_rate: int
    frame_size_samples: int
    min_speech_samples: int
    speech_pad_samples: int
    max_speech_samples: float
    min_silence_samples: int
    min_silence_samples_at_max_speech: int

    @classmethod
    def from_vad_params(cls, params: VadParams) -> _Params:
        per_ms = params.sample_rate // 1000
        frame = params.frame_size * per_ms
        pad = per_ms * params.speech_pad_ms
        return cls(
            threshold=params.threshold,
            sample_rate=params.sample_rate,
            frame_size_samples=frame,
            min_speech_samples=per_ms * params.min_speech_duration_ms,
            speech_pad_samples=pad,
            max_speech_samples=params.sample_rate * params.max_speech_duration_s - frame - 2 * pad,
            min_silence_samples=per_ms * params.min_silence_duration_ms,
            min_silence_samples_at_max_speech=per_ms * _SILENCE_MS_AT_MAX_SPEECH,
        )


@dataclass
class _State:
    current_sample: int = 0
    temp_end: int = 0
    next_start: int = 0
    prev_end: int = 0
    triggered: bool = False
    current_speech: TimeStamp = field(default_factory=TimeStamp)
    speeches: list[TimeStamp] = field(default_factory=list)

    def update(self, params: _Params, prob: float) -> None:
        frame = params.frame_size_samples
        self.current_sample += frame
        if prob > params.threshold:
            if self.temp_end != 0:
                self.temp_end = 0
                if self.next_start < self.prev_end:
                    self.next_start = max(self.current_sample - frame, 0)
            if not self.triggered:
                self._debug(prob, params, "start")
                self.triggered = True
                self.current_speech.start = self.current_sample - frame
            return

        if self.triggered and self.current_sample - self.current_speech.start > params.max_speech_samples:
            if self.prev_end > 0:
                self.current_speech.end = self.prev_end
                self._take_speech()
                if self.next_start < self.prev_end:
                    self.triggered = False
                else:
                    self.current_speech.start = self.next_start
                self._clear_marks()
            else:
                self.current_speech.end = self.current_sample
                self._take_speech()
                self._clear_marks()
                self.triggered = False
            return

        low = params.threshold - _NEGATIVE_THRESHOLD_OFFSET
        if low <= prob < params.threshold:
            self._debug(prob, params, "speaking" if self.triggered else "silence")

        if self.triggered and prob < low:
            self._debug(prob, params, "end")
            if self.temp_end == 0:
                self.temp_end = self.current_sample
            silence = max(self.current_sample - self.temp_end, 0)
            if silence > params.min_silence_samples_at_max_speech:
                self.prev_end = self.temp_end
            if silence >= params.min_silence_samples:
                self.current_speech.end = self.temp_end
                if self.current_speech.end - self.current_speech.start > params.min_speech_samples:
                    self._take_speech()
                    self._clear_marks()
                    self.triggered = False

    def _clear_marks(self) -> None:
        self.prev_end = 0
        self.next_start = 0
        self.temp_end = 0

    def _take_speech(self) -> None:
        self.speeches.append(self.current_speech)
        self.current_speech = TimeStamp()

    def _debug(self, prob: float, params: _Params, title: str) -> None:
        offset = self.current_sample - params.frame_size_samples
        pad = params.speech_pad_samples if title == "end" else 0
        seconds = (offset - pad) / params.sample_rate if params.sample_rate else 0.0
        logger.info("[%-10s: %.3f s (%.3f) %8d]", title, seconds, prob, offset)


class VadIter:
    """Feeds frames to a speech-probability model and tracks speech segments."""

    def __init__(self, silero: _ProbabilityModel, params: VadParams) -> None:
        self._model = silero
        self._params = _Params.from_vad_params(params)
        self._state = _State()

    def process(self, frame: Sequence[int]) -> bool:
        """Score one frame and report whether a speech segment is open."""
        prob = self._model.calc_level(frame)
        self._state.update(self._params, prob)
        logger.info("Time stamp for the chunk: %s", [str(s) for s in self._state.speeches])
        return self._state.triggered

    def speeches(self) -> list[TimeStamp]:
        """Speech segments completed so far."""
        return list(self._state.speeches)

    def reset_states(self) -> None:
        self._model.reset()
        self._state = _State()