"""Sample-rate conversion for 16-bit and float audio streams."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from math import gcd
from typing import Iterator, Sequence

import numpy as np
from scipy import signal

from sttserver.api_models import ResamplingMethod
from sttserver.audio_converter import AudioConverterService, AudioFormat

logger = logging.getLogger(__name__)

_DEFAULT_TARGET_RATE = 16000
_SIMD_MIN_SAMPLES = 18
_SIMD_I16_BLOCK = 16
_SINC_CHUNK = 1024
_PRE_EMPHASIS = np.float32(0.95)
_I16_MIN = -32768
_I16_MAX = 32767
_SPEECH_RATES = frozenset({8000, 16000, 24000})

_F_0_125 = np.float32(0.125)
_F_0_75 = np.float32(0.75)
_F_0_5 = np.float32(0.5)


def determine_best_method(source_rate: int, target_rate: int) -> ResamplingMethod:
    """Pick the conversion algorithm suited to a pair of rates."""
    if source_rate == 8000 and target_rate == 16000:
        return ResamplingMethod.CUSTOM
    if source_rate in _SPEECH_RATES and target_rate in _SPEECH_RATES:
        return ResamplingMethod.DASP
    if source_rate >= 44100 or target_rate >= 44100:
        return ResamplingMethod.RUBATO
    return ResamplingMethod.DASP


def _check_rates(source_rate: int, target_rate: int) -> None:
    if source_rate <= 0 or target_rate <= 0:
        raise ValueError(
            f"Sample rates must be positive, got {source_rate}Hz -> {target_rate}Hz"
        )


def _should_use_simd(length: int) -> bool:
    return length >= _SIMD_MIN_SAMPLES


def _saturate_i16(values: np.ndarray) -> np.ndarray:
    """Truncate toward zero and saturate to the 16-bit range; NaN becomes 0."""
    truncated = np.nan_to_num(
        np.trunc(values), nan=0.0, posinf=float(_I16_MAX), neginf=float(_I16_MIN)
    )
    return np.clip(truncated, _I16_MIN, _I16_MAX).astype(np.int16)


def _round_half_away(values: np.ndarray) -> np.ndarray:
    half = values.dtype.type(0.5)
    return np.sign(values) * np.floor(np.abs(values) + half)


def _div_trunc(values: np.ndarray, divisor: int) -> np.ndarray:
    quotient = np.abs(values) // divisor
    return np.where(values < 0, -quotient, quotient)


def _interleave(even: np.ndarray, odd: np.ndarray) -> np.ndarray:
    return np.column_stack((even, odd)).ravel()


def _double_and_smooth(samples: np.ndarray) -> np.ndarray:
    """2x upsampling by averaging neighbours, then a [1/4, 1/2, 1/4] smoother."""
    if samples.size == 0:
        raise ValueError("Cannot resample an empty chunk with the custom method")
    wide = samples.astype(np.int32)
    doubled = np.empty(2 * wide.size, dtype=np.int32)
    doubled[0::2] = wide
    doubled[1:-1:2] = _div_trunc(wide[:-1] + wide[1:], 2)
    doubled[-1] = wide[-1]
    smoothed = doubled.copy()
    if doubled.size > 2:
        inner = (
            _div_trunc(doubled[:-2], 4)
            + _div_trunc(doubled[1:-1], 2)
            + _div_trunc(doubled[2:], 4)
        )
        smoothed[1:-1] = np.clip(inner, _I16_MIN, _I16_MAX)
    return smoothed.astype(np.int16)


def _three_tap_terms(values: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    prev, curr, nxt = values[:-2], values[1:-1], values[2:]
    even = prev * _F_0_125 + curr * _F_0_75 + nxt * _F_0_125
    odd = curr * _F_0_5 + nxt * _F_0_5
    return even, odd


def _double_block_filtered_i16(samples: np.ndarray) -> np.ndarray:
    """8 kHz -> 16 kHz with a 3-tap filter on even and linear interpolation on odd samples."""
    count = samples.size
    if count < _SIMD_MIN_SAMPLES:
        return _double_and_smooth(samples)
    values = samples.astype(np.float32)
    even, odd = _three_tap_terms(values)

    # Whole 16-sample blocks round half to even; the remainder rounds half away from zero.
    blocks = (count - _SIMD_MIN_SAMPLES + _SIMD_I16_BLOCK - 1) // _SIMD_I16_BLOCK
    split = blocks * _SIMD_I16_BLOCK
    even_rounded = np.concatenate((np.rint(even[:split]), _round_half_away(even[split:])))
    odd_rounded = np.concatenate((np.rint(odd[:split]), _round_half_away(odd[split:])))

    head = _round_half_away(np.array([(values[0] + values[1]) * _F_0_5], dtype=np.float32))
    body = _saturate_i16(_interleave(even_rounded, odd_rounded))
    return np.concatenate(
        (
            samples[:1],
            _saturate_i16(head),
            body,
            np.repeat(samples[-1:], 2),
        )
    ).astype(np.int16)


def _linear_frames(frames: Sequence[float], ratio: float, count: int) -> Iterator[float]:
    """Linearly interpolated frames stepping ``ratio`` source frames per output."""
    source = iter(frames)
    left = right = 0.0
    position = 0.0
    for _ in range(count):
        while position >= 1.0:
            left, right = right, next(source, 0.0)
            position -= 1.0
        yield (right - left) * position + left
        position += ratio


def _linear_convert(frames: np.ndarray, source_rate: int, target_rate: int) -> np.ndarray:
    count = 2 * frames.size
    ratio = float(source_rate) / float(target_rate)
    converted = np.fromiter(
        _linear_frames(frames.astype(np.float32).tolist(), ratio, count),
        dtype=np.float64,
        count=count,
    )
    return converted.astype(np.float32)


@dataclass(frozen=True)
class _SincResampler:
    """Windowed-sinc polyphase resampler over fixed chunks of input frames."""

    up: int
    down: int
    taps: np.ndarray

    @classmethod
    def design(cls, source_rate: int, target_rate: int) -> _SincResampler:
        if source_rate < target_rate:
            sinc_len = 8
            cutoff = 0.45 * min(source_rate / target_rate, 1.0)
            window = "hann"
        else:
            sinc_len = 64
            cutoff = 0.95
            window = "blackmanharris"
        common = gcd(source_rate, target_rate)
        up, down = target_rate // common, source_rate // common
        widest = max(up, down)
        taps = signal.firwin(2 * sinc_len * widest + 1, cutoff / widest, window=window)
        return cls(up=up, down=down, taps=taps)

    def process(self, frames: np.ndarray) -> np.ndarray:
        if frames.size < _SINC_CHUNK:
            raise ValueError(
                f"Insufficient input for resampler: need {_SINC_CHUNK} frames, got {frames.size}"
            )
        chunk = frames[:_SINC_CHUNK].astype(np.float64)
        return signal.resample_poly(chunk, self.up, self.down, window=self.taps)


class ResamplingService:
    """Converts audio between sample rates, caching sinc resamplers per rate pair."""

    def __init__(
        self,
        target_sample_rate: int = _DEFAULT_TARGET_RATE,
        default_method: ResamplingMethod = ResamplingMethod.AUTO,
    ) -> None:
        self.target_sample_rate = target_sample_rate
        self.default_method = default_method
        self._sinc_resamplers: dict[tuple[int, int], _SincResampler] = {}
        self._fft_resamplers: dict[tuple[int, int], _SincResampler] = {}
        self._lock = threading.Lock()

    def set_default_method(self, method: ResamplingMethod) -> None:
        self.default_method = method

    def set_default_target_rate(self, rate: int) -> None:
        logger.info("Setting default target rate to %dHz", rate)
        self.target_sample_rate = rate

    def resample_bytes(
        self,
        data: bytes,
        source_rate: int,
        target_rate: int | None = None,
        method: ResamplingMethod | None = None,
        audio_format: AudioFormat = AudioFormat.PCM16,
        audio_converter: AudioConverterService | None = None,
    ) -> tuple[bytes, AudioFormat]:
        """Resample encoded audio; the result is 16-bit PCM unless no conversion was needed."""
        target = _DEFAULT_TARGET_RATE if target_rate is None else target_rate
        chosen = method if method is not None else self.default_method
        width = audio_format.bytes_per_sample()
        if len(data) % width:
            raise ValueError(
                f"Audio bytes length must be multiple of {width} for "
                f"{audio_format.name} format (got {len(data)})"
            )
        if source_rate == target:
            return bytes(data), audio_format

        converter = audio_converter if audio_converter is not None else AudioConverterService()
        pcm = converter.to_pcm16_bytes(data, audio_format)
        samples = np.frombuffer(pcm, dtype="<i2").astype(np.int16)
        resampled = self.resample_i16(samples, source_rate, target, chosen)
        return resampled.astype("<i2").tobytes(), AudioFormat.PCM16

    def resample_i16(
        self,
        samples: Sequence[int] | np.ndarray,
        source_rate: int,
        target_rate: int | None = None,
        method: ResamplingMethod | None = None,
    ) -> np.ndarray:
        """Resample 16-bit samples; only AUTO selects an algorithm, any other choice uses DASP."""
        target = _DEFAULT_TARGET_RATE if target_rate is None else target_rate
        requested = method if method is not None else self.default_method
        audio = np.asarray(samples, dtype=np.int16)
        if source_rate == target:
            return audio.copy()
        _check_rates(source_rate, target)

        chosen = (
            determine_best_method(source_rate, target)
            if requested is ResamplingMethod.AUTO
            else ResamplingMethod.DASP
        )
        if chosen is ResamplingMethod.CUSTOM:
            if source_rate == 8000 and target == 16000 and _should_use_simd(audio.size):
                logger.info("Enter the custom resampling")
                return _double_block_filtered_i16(audio)
            logger.info("Enter the preemphasis resampling")
            return _double_and_smooth(audio)
        if chosen is ResamplingMethod.RUBATO:
            logger.info("Enter the rubato resampling")
            return self._resample_i16_sinc(audio, source_rate, target)
        logger.info("Enter the dasp resampling")
        return self.resample_i16_with_preemphasis(audio, source_rate, target)

    def resample_f32(
        self,
        samples: Sequence[float] | np.ndarray,
        source_rate: int,
        target_rate: int | None = None,
        method: ResamplingMethod | None = None,
    ) -> np.ndarray:
        """Resample float samples; an omitted target rate counts as 0 Hz."""
        target = 0 if target_rate is None else target_rate
        requested = method if method is not None else self.default_method
        audio = np.asarray(samples, dtype=np.float32)
        if source_rate == target:
            logger.info("No resampling needed %dHz -> %dHz", source_rate, target)
            return audio.copy()
        _check_rates(source_rate, target)

        chosen = (
            determine_best_method(source_rate, target)
            if requested is ResamplingMethod.AUTO
            else ResamplingMethod.DASP
        )
        if chosen is ResamplingMethod.CUSTOM:
            if source_rate == 8000 and target == 16000 and _should_use_simd(audio.size):
                return self._double_filtered_f32(audio)
            return self._double_and_smooth_f32(audio)
        if chosen is ResamplingMethod.RUBATO:
            sinc = self._sinc_for(source_rate, target)
            return sinc.process(audio.astype(np.float64)).astype(np.float32)
        return _linear_convert(audio, source_rate, target)

    def resample_i16_dasp(
        self, samples: Sequence[int] | np.ndarray, source_rate: int, target_rate: int
    ) -> np.ndarray:
        """Linear-interpolation resampling yielding twice as many samples as given."""
        _check_rates(source_rate, target_rate)
        audio = np.asarray(samples, dtype=np.int16)
        return _saturate_i16(_linear_convert(audio, source_rate, target_rate))

    def resample_i16_with_preemphasis(
        self, samples: Sequence[int] | np.ndarray, source_rate: int, target_rate: int
    ) -> np.ndarray:
        """Apply y[n] = x[n] - 0.95 x[n-1], then linear-interpolation resampling."""
        audio = np.asarray(samples, dtype=np.int16).astype(np.float32)
        previous = np.concatenate((np.zeros(1, dtype=np.float32), audio[:-1]))
        emphasized = _saturate_i16(audio - _PRE_EMPHASIS * previous[: audio.size])
        return self.resample_i16_dasp(emphasized, source_rate, target_rate)

    def clear_cache(self) -> None:
        with self._lock:
            logger.info(
                "Clearing resampler cache (%d Sinc, %d FFT entries)",
                len(self._sinc_resamplers),
                len(self._fft_resamplers),
            )
            self._sinc_resamplers.clear()
            self._fft_resamplers.clear()

    def cache_size(self) -> tuple[int, int]:
        """Number of cached (sinc, fft) resamplers."""
        with self._lock:
            return len(self._sinc_resamplers), len(self._fft_resamplers)

    def _sinc_for(self, source_rate: int, target_rate: int) -> _SincResampler:
        key = (source_rate, target_rate)
        with self._lock:
            resampler = self._sinc_resamplers.get(key)
            if resampler is None:
                logger.debug(
                    "Creating new resampler for %dHz -> %dHz (ratio: %s)",
                    source_rate,
                    target_rate,
                    target_rate / source_rate,
                )
                resampler = _SincResampler.design(source_rate, target_rate)
                self._sinc_resamplers[key] = resampler
            return resampler

    def _resample_i16_sinc(
        self, audio: np.ndarray, source_rate: int, target_rate: int
    ) -> np.ndarray:
        scaled = audio.astype(np.float64) / _I16_MAX
        output = self._sinc_for(source_rate, target_rate).process(scaled)
        return _saturate_i16(_round_half_away(output * _I16_MAX))

    @staticmethod
    def _double_and_smooth_f32(audio: np.ndarray) -> np.ndarray:
        as_i16 = _saturate_i16(audio * np.float32(_I16_MAX))
        doubled = _double_and_smooth(as_i16)
        return doubled.astype(np.float32) / np.float32(_I16_MAX)

    @classmethod
    def _double_filtered_f32(cls, audio: np.ndarray) -> np.ndarray:
        if audio.size < _SIMD_MIN_SAMPLES:
            return cls._double_and_smooth_f32(audio)
        even, odd = _three_tap_terms(audio)
        head = np.array([audio[0], (audio[0] + audio[1]) * _F_0_5], dtype=np.float32)
        output = np.concatenate((head, _interleave(even, odd), np.repeat(audio[-1:], 2)))
        logger.debug("SIMD f32 resampling: %d -> %d samples", audio.size, output.size)
        return output.astype(np.float32)