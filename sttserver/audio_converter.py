"""Decoding of raw audio payloads into float samples and 16-bit PCM."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

import numpy as np

logger = logging.getLogger(__name__)

_MULAW_BIAS = 0x84
_MULAW_CLIP = 8159
_PCM16_MAX = 32767
_PCM16_SCALE = np.float32(32768.0)


class AudioFormat(str, enum.Enum):
    """Sample encodings a client may declare; the value is the wire name."""

    PCM16 = "LINEAR16"
    FLOAT32 = "FLOAT32"
    PCM8 = "PCM8"
    MULAW = "MULAW"
    ALAW = "ALAW"
    PCM24 = "PCM24"
    PCM32 = "PCM32"

    def bytes_per_sample(self) -> int:
        return _BYTES_PER_SAMPLE[self]

    def is_supported(self) -> bool:
        """Whether the converter can decode this format."""
        return self in _SUPPORTED


_BYTES_PER_SAMPLE = {
    AudioFormat.MULAW: 1,
    AudioFormat.PCM8: 1,
    AudioFormat.ALAW: 1,
    AudioFormat.PCM16: 2,
    AudioFormat.PCM24: 3,
    AudioFormat.PCM32: 4,
    AudioFormat.FLOAT32: 4,
}

_SUPPORTED = frozenset(
    {AudioFormat.PCM16, AudioFormat.MULAW, AudioFormat.ALAW, AudioFormat.FLOAT32}
)


def parse_audio_format(text: str) -> AudioFormat:
    """Parse a format name case-insensitively, ignoring surrounding blanks."""
    try:
        return AudioFormat(text.strip().upper())
    except ValueError:
        raise ValueError(f"Unknown audio format: {text}") from None


def _check_byte(value: int) -> None:
    if not 0 <= value <= 0xFF:
        raise ValueError(f"Expected a byte value, got {value}")


def decode_mulaw(value: int) -> int:
    """Decode one G.711 mu-law byte to a 16-bit sample; silence codes give 0."""
    _check_byte(value)
    if value in (0x7F, 0xFF):
        return 0
    inverted = ~value & 0xFF
    sign = -1 if inverted & 0x80 else 1
    exponent = (inverted >> 4) & 0x07
    mantissa = inverted & 0x0F
    shifted = (mantissa << 1) + 33
    magnitude = shifted if exponent == 0 else (shifted << exponent) - _MULAW_BIAS
    result = sign * min(magnitude, _MULAW_CLIP)
    return max(-_MULAW_CLIP, min(_MULAW_CLIP, result))


def decode_alaw(value: int) -> int:
    """Decode one G.711 A-law byte to a 16-bit sample."""
    _check_byte(value)
    toggled = value ^ 0x55
    sign = -1 if toggled & 0x80 else 1
    exponent = (toggled >> 4) & 0x07
    mantissa = toggled & 0x0F
    if exponent == 0:
        magnitude = (mantissa << 1) + 1
    else:
        magnitude = min(((mantissa << 1) + 33) << (exponent - 1), _PCM16_MAX)
    return max(-_PCM16_MAX, min(_PCM16_MAX, sign * magnitude))


@dataclass(frozen=True)
class AudioConverterConfig:
    """Tuning for decoding and post-processing of incoming audio."""

    enable_normalization: bool = True
    dc_offset_threshold: float = 0.05
    max_gain: float = 2.0
    target_amplitude: float = 0.3
    mulaw_noise_gate: int = 64
    alaw_noise_gate: int = 32


def _gated_table(decoder, gate: int) -> np.ndarray:
    raw = np.array([decoder(code) for code in range(256)], dtype=np.int32)
    return np.where(np.abs(raw) < gate, 0, raw).astype(np.int16)


def _rms(values: np.ndarray) -> np.float32:
    as_float = values.astype(np.float32)
    return np.float32(np.sqrt(np.mean(as_float * as_float, dtype=np.float32)))


class AudioConverterService:
    """Converts raw audio bytes of a declared format to samples."""

    def __init__(self, config: AudioConverterConfig | None = None) -> None:
        self._config = config if config is not None else AudioConverterConfig()
        self._mulaw_pcm = _gated_table(decode_mulaw, self._config.mulaw_noise_gate)
        self._alaw_pcm = _gated_table(decode_alaw, self._config.alaw_noise_gate)
        self._mulaw_float = self._mulaw_pcm.astype(np.float32) / _PCM16_SCALE
        self._alaw_float = self._alaw_pcm.astype(np.float32) / _PCM16_SCALE

    @property
    def config(self) -> AudioConverterConfig:
        return self._config

    def with_config(self, config: AudioConverterConfig) -> AudioConverterService:
        """Return a new converter built from ``config``."""
        return AudioConverterService(config)

    def bytes_to_samples(self, data: bytes, audio_format: AudioFormat) -> np.ndarray:
        """Decode ``data`` to float32 samples in roughly [-1, 1]."""
        _require_supported(audio_format)
        if len(data) == 0:
            return np.zeros(0, dtype=np.float32)

        if audio_format is AudioFormat.PCM16:
            samples = self._pcm16_to_float(data)
        elif audio_format is AudioFormat.FLOAT32:
            samples = self._float32_to_float(data)
        elif audio_format is AudioFormat.MULAW:
            codes = np.frombuffer(data, dtype=np.uint8)
            samples = self._suppress_phantom_tail(self._mulaw_float[codes])
        else:
            samples = self._alaw_float[np.frombuffer(data, dtype=np.uint8)]

        if self._config.enable_normalization:
            samples = self._normalise(samples)
        return samples

    def to_pcm16_bytes(self, data: bytes, audio_format: AudioFormat) -> bytes:
        """Re-encode ``data`` as little-endian 16-bit PCM."""
        _require_supported(audio_format)
        if len(data) == 0:
            return b""

        if audio_format is AudioFormat.PCM16:
            return bytes(data)
        if audio_format is AudioFormat.FLOAT32:
            if len(data) % 4:
                raise ValueError("Float32 data length must be multiple of 4")
            floats = np.nan_to_num(np.frombuffer(data, dtype="<f4").astype(np.float32))
            clamped = np.clip(floats, np.float32(-1.0), np.float32(1.0))
            pcm = np.trunc(clamped * np.float32(_PCM16_MAX)).astype("<i2")
            return pcm.tobytes()

        codes = np.frombuffer(data, dtype=np.uint8)
        if audio_format is AudioFormat.MULAW:
            pcm = self._mulaw_pcm[codes]
            self._suppress_phantom_tail_pcm16(pcm)
        else:
            pcm = self._alaw_pcm[codes]
        return pcm.astype("<i2").tobytes()

    @staticmethod
    def _pcm16_to_float(data: bytes) -> np.ndarray:
        if len(data) % 2:
            raise ValueError(f"PCM16 data length must be even, got {len(data)} bytes")
        return np.frombuffer(data, dtype="<i2").astype(np.float32) / _PCM16_SCALE

    @staticmethod
    def _float32_to_float(data: bytes) -> np.ndarray:
        if len(data) % 4:
            raise ValueError(
                f"Float32 data length must be multiple of 4, got {len(data)} bytes"
            )
        samples = np.frombuffer(data, dtype="<f4").astype(np.float32)
        for index, value in enumerate(samples):
            if not np.isfinite(value):
                logger.warning("Non-finite float sample at index %d: %s", index, value)
            if abs(value) > 2.0:
                logger.warning(
                    "Float sample out of expected range at index %d: %s", index, value
                )
        return samples

    @staticmethod
    def _suppress_phantom_tail(samples: np.ndarray) -> np.ndarray:
        """Zero a near-silent tail that follows audible content."""
        count = samples.size
        if count < 80:
            return samples
        for check in (80, 40, 20):
            if count <= check * 2:
                continue
            start = count - check
            tail, main = samples[start:], samples[:start]
            tail_rms = _rms(tail)
            tail_max = max(0.0, float(np.max(np.abs(tail))))
            main_rms = _rms(main)
            if main_rms > 0.003 and tail_rms < main_rms * 0.02 and tail_max < 0.008:
                samples[start:] = 0.0
                logger.debug(
                    "Removed phantom audio tail: %d samples (RMS: %.6f vs main: %.6f)",
                    check,
                    tail_rms,
                    main_rms,
                )
                break
        return samples

    @staticmethod
    def _suppress_phantom_tail_pcm16(samples: np.ndarray) -> None:
        """Zero a near-silent 16-bit tail in place."""
        count = samples.size
        if count < 80:
            return
        for check in (40, 20, 10):
            if count <= check * 2:
                continue
            start = count - check
            tail = samples[start:]
            main = samples[start - min(check, start) : start]
            tail_rms = _rms(tail)
            tail_max = int(np.max(np.abs(tail.astype(np.int32))))
            main_rms = _rms(main)
            if main_rms > 200.0 and tail_rms < main_rms * 0.05 and tail_max < 400:
                samples[start:] = 0
                logger.debug(
                    "Removed phantom PCM16 tail: %d samples (RMS: %.1f vs main: %.1f)",
                    check,
                    tail_rms,
                    main_rms,
                )
                break

    def _normalise(self, samples: np.ndarray) -> np.ndarray:
        if samples.size == 0:
            return samples
        cfg = self._config
        rms = _rms(samples)
        dc_offset = np.float32(np.mean(samples, dtype=np.float32))
        if abs(dc_offset) > cfg.dc_offset_threshold:
            samples = samples - dc_offset
        if 0.001 < rms < 0.1:
            target_rms = np.float32(cfg.target_amplitude) * np.float32(0.3)
            gain = min(target_rms / rms, np.float32(cfg.max_gain))
            if gain > 1.1:
                samples = samples * np.float32(gain)
        return samples.astype(np.float32, copy=False)


def _require_supported(audio_format: AudioFormat) -> None:
    if not audio_format.is_supported():
        raise ValueError(f"Unsupported audio format: {audio_format.name}")