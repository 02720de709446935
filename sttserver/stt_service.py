"""Streaming speech-to-text sessions: VAD gating followed by transcription."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

import numpy as np

from sttserver.api_models import ResamplingMethod, TranscribeParams, TranscriptionResult
from sttserver.audio_buffer import AudioBuffer
from sttserver.audio_converter import AudioConverterService, AudioFormat
from sttserver.resampler import ResamplingService
from sttserver.vad_service import SessionNotFoundError

logger = logging.getLogger(__name__)

_MODEL_RATE = 16000
_VAD_HANGOVER_MS = 180
_VAD_PAD_MS = 75


class _Transcriber(Protocol):
    def transcribe(self, samples: np.ndarray, params: TranscribeParams) -> TranscriptionResult: ...


class _Vad(Protocol):
    async def create_session(self, hangover_ms: int, pad_ms: int) -> uuid.UUID: ...

    async def process_audio(self, session_id: uuid.UUID, audio_data: bytes) -> bool: ...

    def remove_session(self, session_id: uuid.UUID) -> bool: ...


@dataclass(frozen=True)
class STTConfig:
    sample_rate: int = 16000
    silence_duration_ms: int = 500
    min_speech_duration_ms: int = 100
    language: str = "en"
    streaming_mode: bool = True
    max_concurrent_transcriptions: int = 5


@dataclass
class STTSession:
    """Per-client buffers and speech state."""

    sample_rate: int
    vad_session_id: uuid.UUID
    audio_buffer: AudioBuffer = field(init=False, repr=False)
    speech_buffer: AudioBuffer = field(init=False, repr=False)
    is_speaking: bool = False
    last_speech_end: float | None = None
    transcription_history: list[TranscriptionResult] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.audio_buffer = AudioBuffer(self.sample_rate, 30.0)
        self.speech_buffer = AudioBuffer(self.sample_rate, 10.0)


@dataclass(frozen=True)
class STTStats:
    active_sessions: int
    active_transcriptions: int


class STTService:
    """Collects speech per session and transcribes it once silence follows."""

    def __init__(
        self,
        whisper_model: _Transcriber,
        vad_service: _Vad,
        config: STTConfig | None = None,
        *,
        resampling_service: ResamplingService | None = None,
        audio_converter: AudioConverterService | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config if config is not None else STTConfig()
        self._whisper = whisper_model
        self._vad = vad_service
        self._resampler = (
            resampling_service if resampling_service is not None else ResamplingService(_MODEL_RATE)
        )
        self._converter = audio_converter if audio_converter is not None else AudioConverterService()
        self._clock = clock
        self._sessions: dict[uuid.UUID, STTSession] = {}
        self._semaphore = asyncio.Semaphore(self.config.max_concurrent_transcriptions)
        self._active = 0

    async def create_session(self, sample_rate: int) -> uuid.UUID:
        vad_session_id = await self._vad.create_session(_VAD_HANGOVER_MS, _VAD_PAD_MS)
        session_id = uuid.uuid4()
        self._sessions[session_id] = STTSession(sample_rate, vad_session_id)
        return session_id

    async def process_audio(
        self,
        session_id: uuid.UUID,
        audio_chunk: bytes,
        sample_rate: int,
        audio_format: AudioFormat,
    ) -> TranscriptionResult | None:
        """Feed one chunk; returns a transcription when an utterance has ended."""
        logger.info(
            "STT: Processing audio chunk of %d bytes with audio_format %s for session %s",
            len(audio_chunk),
            audio_format.value,
            session_id,
        )
        if sample_rate != _MODEL_RATE:
            logger.info("STT: Resampling from %dHz to %dHz", sample_rate, _MODEL_RATE)
            resampled, final_format = self._resampler.resample_bytes(
                audio_chunk,
                sample_rate,
                _MODEL_RATE,
                ResamplingMethod.AUTO,
                audio_format,
                self._converter,
            )
        else:
            resampled, final_format = bytes(audio_chunk), audio_format

        try:
            samples = self._converter.bytes_to_samples(resampled, final_format)
        except ValueError:
            samples = np.zeros(0, dtype=np.float32)

        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        session.audio_buffer.add_samples(samples)

        speech_detected = await self._vad.process_audio(session.vad_session_id, resampled)
        speech_samples = self._advance(session, session_id, samples, speech_detected)
        if speech_samples is None:
            return None

        result = await self.transcribe_with_semaphore(speech_samples)
        live = self._sessions.get(session_id)
        if live is not None:
            live.transcription_history.append(result)
        return result

    def _advance(
        self,
        session: STTSession,
        session_id: uuid.UUID,
        samples: np.ndarray,
        speech_detected: bool,
    ) -> np.ndarray | None:
        if speech_detected and not session.is_speaking:
            session.is_speaking = True
            session.speech_buffer.clear()
            logger.info("Speech started for session %s", session_id)
        if not session.is_speaking:
            return None

        session.speech_buffer.add_samples(samples)
        if speech_detected:
            return None

        if session.last_speech_end is None:
            session.last_speech_end = self._clock()
        silence_ms = int((self._clock() - session.last_speech_end) * 1000)
        if silence_ms < self.config.silence_duration_ms:
            return None

        speech_ms = int(session.speech_buffer.duration_seconds() * 1000)
        captured = (
            session.speech_buffer.get_samples()
            if speech_ms >= self.config.min_speech_duration_ms
            else None
        )
        session.is_speaking = False
        session.last_speech_end = None
        session.speech_buffer.clear()
        logger.info("Speech ended for session %s, duration: %dms", session_id, speech_ms)
        return captured

    async def transcribe_with_semaphore(self, samples: Any) -> TranscriptionResult:
        """Transcribe in a worker thread, limiting how many run at once."""
        audio = np.asarray(samples, dtype=np.float32)
        async with self._semaphore:
            self._active += 1
            try:
                return await asyncio.to_thread(
                    self._whisper.transcribe, audio, TranscribeParams.for_streaming()
                )
            finally:
                self._active -= 1

    def get_transcription_history(self, session_id: uuid.UUID) -> list[TranscriptionResult]:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return list(session.transcription_history)

    async def force_transcribe(self, session_id: uuid.UUID) -> TranscriptionResult | None:
        """Transcribe whatever speech is buffered; None if there is none."""
        session = self._sessions.get(session_id)
        if session is None or session.speech_buffer.duration_seconds() <= 0.0:
            return None
        return await self.transcribe_with_semaphore(session.speech_buffer.get_samples())

    def remove_session(self, session_id: uuid.UUID) -> bool:
        """Drop a session and its VAD session."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        self._vad.remove_session(session.vad_session_id)
        logger.info("Removed STT session: %s", session_id)
        return True

    def get_stats(self) -> STTStats:
        return STTStats(active_sessions=len(self._sessions), active_transcriptions=self._active)