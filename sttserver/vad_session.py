"""Streaming voice-activity session over overlapping 480-sample frames."""

from __future__ import annotations

import itertools
import logging
import os
from collections import deque
from typing import Sequence

import numpy as np

from sttserver.silero import Loader, Silero
from sttserver.vad_iter import VadIter
from sttserver.vad_params import SampleRate, VadParams

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 480
_HOP_SIZE = _CHUNK_SIZE // 2


class VadSession:
    """Buffers incoming 16-bit audio and reports whether speech is present."""

    def __init__(
        self,
        model_path: str | os.PathLike[str],
        threshold: float,
        sample_rate: int,
        hangover_ms: int,
        pad_ms: int,
        loader: Loader,
    ) -> None:
        logger.info(
            "Creating new VAD session with threshold: %s, sample_rate: %s",
            threshold,
            sample_rate,
        )
        rate = SampleRate.from_hz(sample_rate)
        silero = Silero(rate, model_path, loader)
        params = VadParams(
            frame_size=32,
            threshold=threshold,
            min_silence_duration_ms=hangover_ms,
            speech_pad_ms=pad_ms,
            min_speech_duration_ms=50,
            sample_rate=int(rate),
        )
        self._vad = VadIter(silero, params)
        self._buffer: deque[int] = deque()
        self.in_speech = False

    def process_raw_bytes(self, data: bytes) -> bool:
        """Decode little-endian 16-bit samples (a trailing odd byte is dropped)."""
        usable = len(data) - len(data) % 2
        samples = np.frombuffer(bytes(data[:usable]), dtype="<i2")
        logger.debug("Converted %d bytes to %d samples", len(data), samples.size)
        return self.streaming_chunk(samples)

    def streaming_chunk(self, chunk: Sequence[int] | np.ndarray) -> bool:
        """Feed samples; returns the verdict of the last full frame, False if none ran."""
        values = np.asarray(chunk, dtype=np.int16).ravel()
        if not values.any():
            return False

        self._buffer.extend(values.tolist())
        speech_detected = False
        for index in itertools.count():
            if len(self._buffer) < _CHUNK_SIZE:
                break
            frame = list(itertools.islice(self._buffer, _CHUNK_SIZE))
            try:
                detected = self._vad.process(frame)
            except Exception:
                logger.exception("VAD error on frame %d", index)
                speech_detected = False
            else:
                if detected:
                    self.in_speech = True
                elif self.in_speech:
                    self.in_speech = False
                    self.reset()
                speech_detected = detected
            for _ in range(_HOP_SIZE):
                self._buffer.popleft()

        logger.debug("streaming_chunk returning %s", speech_detected)
        return speech_detected

    def reset(self) -> None:
        """Clear the model state and segment tracking."""
        self._vad.reset_states()