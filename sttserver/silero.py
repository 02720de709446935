"""Speech-probability model for 480-sample frames, with a per-path model cache."""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from typing import Callable, Mapping, Protocol, Sequence

import numpy as np

from sttserver.vad_params import SampleRate

logger = logging.getLogger(__name__)

FRAME_SAMPLES = 480
_STATE_SHAPE = (2, 1, 128)
_I16_MAX = np.float32(32767.0)


class _Engine(Protocol):
    def run(self, inputs: Mapping[str, np.ndarray]) -> Mapping[str, np.ndarray]: ...


Loader = Callable[[str], _Engine]


@dataclass
class _Entry:
    engine: _Engine
    lock: threading.Lock = field(default_factory=threading.Lock)


_cache: dict[str, _Entry] = {}
_cache_lock = threading.Lock()


def _entry_for(model_path: str | os.PathLike[str], loader: Loader) -> _Entry:
    path = os.fspath(model_path)
    with _cache_lock:
        entry = _cache.get(path)
        if entry is not None:
            logger.info("Reusing existing ONNX model from cache")
            return entry
        logger.info("Loading ONNX model for the first time: %s", path)
        entry = _Entry(loader(path))
        _cache[path] = entry
        return entry


def load_model(model_path: str | os.PathLike[str], loader: Loader) -> _Engine:
    """Return the inference engine for ``model_path``, loading it once per process."""
    return _entry_for(model_path, loader).engine


class Silero:
    """Recurrent voice-activity model.

    The engine's ``run`` receives ``input`` (float32, shape 1x480), ``state``
    (float32, shape 2x1x128) and ``sr`` (int64, shape 1), and returns
    ``output`` holding the speech probability and ``stateN``, the next state.
    """

    def __init__(
        self,
        sample_rate: SampleRate,
        model_path: str | os.PathLike[str],
        loader: Loader,
    ) -> None:
        self._entry = _entry_for(model_path, loader)
        self._sample_rate = np.array([int(sample_rate)], dtype=np.int64)
        self._state = np.zeros(_STATE_SHAPE, dtype=np.float32)

    @property
    def state(self) -> np.ndarray:
        return self._state.copy()

    def reset(self) -> None:
        """Clear the recurrent state between streams."""
        self._state = np.zeros(_STATE_SHAPE, dtype=np.float32)

    def calc_level(self, frame: Sequence[int] | np.ndarray) -> float:
        """Speech probability of one frame, zero-padded or cut to 480 samples."""
        audio = np.asarray(frame, dtype=np.int16).ravel()
        count = min(audio.size, FRAME_SAMPLES)
        data = np.zeros((1, FRAME_SAMPLES), dtype=np.float32)
        data[0, :count] = audio[:count].astype(np.float32) / _I16_MAX

        inputs = {"input": data, "state": self._state, "sr": self._sample_rate.copy()}
        with self._entry.lock:
            outputs = self._entry.engine.run(inputs)

        self._state = np.array(outputs["stateN"], dtype=np.float32)
        prob = float(np.asarray(outputs["output"], dtype=np.float32).ravel()[0])
        logger.debug("Speech probability: %.4f", prob)
        return prob