"""Thin request handlers over the VAD and speech-to-text services."""

from __future__ import annotations

import time
import uuid
from typing import Iterable

from sttserver.api_models import (
    CreateSessionResponse,
    STTResponse,
    TranscriptionResult,
    VadResponse,
)
from sttserver.audio_converter import AudioFormat
from sttserver.stt_service import STTService, STTStats
from sttserver.vad_service import VADService

_VAD_CREATED = "VAD session created sucessfully"
_STT_CREATED = "VAD + Whisper session created sucessfully"


class VADController:
    """Voice-activity operations shaped as API responses."""

    def __init__(self, vad_service: VADService) -> None:
        self.vad_service = vad_service

    async def create_session(self, hangover_ms: int, pad_ms: int) -> CreateSessionResponse:
        session_id = await self.vad_service.create_session(hangover_ms, pad_ms)
        return CreateSessionResponse(session_id=session_id, message=_VAD_CREATED)

    async def process_audio(self, session_id: uuid.UUID, audio_data: bytes) -> VadResponse:
        detected = await self.vad_service.process_audio(session_id, audio_data)
        return VadResponse(session_id=session_id, speech_detected=detected)

    async def process_audio_bytes(
        self, requests: Iterable[tuple[uuid.UUID, bytes]]
    ) -> list[VadResponse]:
        """Process a batch; the first failing request's error is raised."""
        results = await self.vad_service.process_audio_bytes(requests)
        responses = []
        for result in results:
            if isinstance(result, BaseException):
                raise result
            session_id, detected = result
            responses.append(VadResponse(session_id=session_id, speech_detected=detected))
        return responses

    def remove_session(self, session_id: uuid.UUID) -> bool:
        return self.vad_service.remove_session(session_id)


class STTController:
    """Speech-to-text operations shaped as API responses."""

    def __init__(self, stt_service: STTService) -> None:
        self.stt_service = stt_service

    async def create_session(self, sample_rate: int) -> CreateSessionResponse:
        session_id = await self.stt_service.create_session(sample_rate)
        return CreateSessionResponse(session_id=session_id, message=_STT_CREATED)

    async def process_audio(
        self,
        session_id: uuid.UUID,
        audio_data: bytes,
        sample_rate: int,
        audio_format: AudioFormat,
    ) -> STTResponse:
        """Feed a chunk; ``speech_detected`` is set when a transcription came back."""
        started = time.perf_counter()
        result = await self.stt_service.process_audio(
            session_id, audio_data, sample_rate, audio_format
        )
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        return STTResponse(
            session_id=session_id,
            speech_detected=result is not None,
            transcription=result,
            processing_time_ms=elapsed_ms,
        )

    async def force_transcribe(self, session_id: uuid.UUID) -> TranscriptionResult | None:
        return await self.stt_service.force_transcribe(session_id)

    def get_transcription_history(self, session_id: uuid.UUID) -> list[TranscriptionResult]:
        return self.stt_service.get_transcription_history(session_id)

    def remove_session(self, session_id: uuid.UUID) -> bool:
        return self.stt_service.remove_session(session_id)

    def get_stats(self) -> STTStats:
        return self.stt_service.get_stats()