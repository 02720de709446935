"""Speech-to-text over a pluggable Whisper inference engine."""

from __future__ import annotations

import logging
import os
import threading
from typing import Any, Callable, Iterable, Protocol

import numpy as np

from sttserver.api_models import TranscribeParams, TranscriptionResult, TranscriptionSegment

logger = logging.getLogger(__name__)

_MIN_SAMPLES = 480
_MODEL_RATE = 16000
_THREADS = 6
_MODEL_TYPES = ("tiny", "base", "small", "medium", "large")

_loaded: dict[str, Any] = {}
_lock = threading.Lock()


class _Engine(Protocol):
    def transcribe(self, samples: np.ndarray, **options: Any) -> Iterable[tuple[int, int, str]]: ...


def detect_model_type(model_path: str) -> str:
    """Guess the model size from its file path."""
    lowered = str(model_path).lower()
    return next((kind for kind in _MODEL_TYPES if kind in lowered), "unknown")


def _engine_for(path: str, loader: Callable[[str], _Engine]) -> _Engine:
    with _lock:
        engine = _loaded.get(path)
        if engine is not None:
            logger.info("Reusing existing Whisper model from cache")
            return engine
        logger.info("Loading Whisper model for the first time: %s", path)
        try:
            engine = loader(path)
        except Exception as exc:
            raise RuntimeError(f"Failed to load Whisper model: {exc}") from exc
        _loaded[path] = engine
        return engine


class Whisper:
    """Transcribes 16 kHz float audio.

    ``loader`` turns a model path into an engine whose ``transcribe(samples,
    **options)`` yields ``(t0, t1, text)`` per segment, times in centiseconds.
    Engines are cached per path for the life of the process.
    """

    def __init__(self, model_path: str | os.PathLike[str], loader: Callable[[str], _Engine]) -> None:
        path = os.fspath(model_path)
        self._engine = _engine_for(path, loader)
        self.model_type = detect_model_type(path)
        logger.info("Using whisper model_type: %s", self.model_type)

    def transcribe(self, samples: Iterable[float], params: TranscribeParams) -> TranscriptionResult:
        audio = np.asarray(samples, dtype=np.float32)
        if audio.size == 0:
            raise ValueError("Empty audio sample provided")
        if audio.size < _MIN_SAMPLES:
            logger.warning("Audio sample too short: %d samples", audio.size)
            return TranscriptionResult(
                text="", segments=[], language=params.language, duration=0.0, confidence=0.0
            )

        try:
            raw = list(
                self._engine.transcribe(
                    audio,
                    language=params.language or "en",
                    n_threads=_THREADS,
                    single_segment=params.single_segment,
                    max_tokens=params.max_tokens,
                    no_context=params.no_context,
                    suppress_blank=True,
                    suppress_non_speech_tokens=True,
                    temperature=0.0,
                    translate=False,
                )
            )
        except Exception as exc:
            raise RuntimeError(f"Transcription failed: {exc}") from exc

        segments = [
            TranscriptionSegment(start=t0 / 100.0, end=t1 / 100.0, text=text, confidence=0.0)
            for t0, t1, text in raw
        ]
        text = " ".join(segment.text.strip() for segment in segments)
        duration = segments[-1].end if segments else audio.size / _MODEL_RATE
        logger.info("Whisper: Final transcription: '%s' with duration %s", text, duration)
        return TranscriptionResult(
            text=text,
            segments=segments,
            language=params.language,
            duration=duration,
            confidence=0.0,
        )