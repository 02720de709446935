"""Per-connection protocol handler for voice-activity detection over WebSocket."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Awaitable, Callable

from sttserver.api_models import (
    CommandError,
    Configure,
    EndSession,
    ResetSession,
    SessionConfig,
    error_event,
    parse_command,
    session_created_event,
    session_ended_event,
    vad_result_event,
)
from sttserver.audio_converter import AudioFormat
from sttserver.controllers import VADController

logger = logging.getLogger(__name__)

_DEFAULT_RATE = 16000
_FRAME_MS = 256
_HANGOVER_MS = 96
_PAD_MS = 50
SESSION_TIMEOUT_S = 300.0

Sender = Callable[[str], Awaitable[None]]
Closer = Callable[[], Awaitable[object]]


def _buffer_size(sample_rate: int) -> int:
    return (sample_rate * _FRAME_MS // 1000) * 2


class VadWebSocketSession:
    """Buffers client audio, runs voice-activity detection and replies with JSON events.

    ``send`` delivers one text message to the client; ``close`` (optional)
    closes the connection. Call :meth:`check_timeouts` periodically to drop
    idle connections.
    """

    def __init__(
        self,
        vad_controller: VADController,
        *,
        send: Sender,
        close: Closer | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.vad_controller = vad_controller
        self.session_id: uuid.UUID | None = None
        self.config = SessionConfig(
            threshold=0.5,
            sample_rate=_DEFAULT_RATE,
            audio_format=AudioFormat.PCM16,
            language="en",
            silence_duration_ms=0,
            min_speech_duration_ms=0,
            streaming_mode=False,
        )
        self.buffer_size = _buffer_size(_DEFAULT_RATE)
        self.audio_buffer = bytearray()
        self._send_text = send
        self._close = close
        self._clock = clock
        self.last_activity = clock()
        self.closed = False

    async def _send(self, text: str) -> None:
        if not self.closed:
            await self._send_text(text)

    def _touch(self) -> None:
        self.last_activity = self._clock()

    async def start(self) -> None:
        """Create the backing VAD session and announce it to the client."""
        logger.info("VAD WebSocket connection established")
        try:
            response = await self.vad_controller.create_session(_HANGOVER_MS, _PAD_MS)
        except Exception as exc:
            logger.error("Failed to create VAD session: %s", exc)
            await self._send(error_event(f"Failed to create session: {exc}"))
            await self.stop()
            return
        self.session_id = response.session_id
        await self._send(session_created_event(str(response.session_id), response.message))

    async def on_binary(self, data: bytes) -> None:
        """Buffer audio and process one frame once enough has arrived."""
        self._touch()
        if self.session_id is None:
            await self._send(error_event("No active session"))
            return
        self.audio_buffer.extend(data)
        if len(self.audio_buffer) >= self.buffer_size:
            chunk = bytes(self.audio_buffer[: self.buffer_size])
            del self.audio_buffer[: self.buffer_size]
            await self._process_chunk(chunk)

    async def on_text(self, text: str) -> None:
        """Handle a JSON command from the client."""
        self._touch()
        try:
            command = parse_command(text)
        except CommandError as exc:
            logger.error("Invalid WebSocket command: %s", exc)
            await self._send(error_event(f"Invalid command: {exc}"))
            return

        if isinstance(command, EndSession):
            await self._end_session()
        elif isinstance(command, ResetSession):
            await self._reset_session()
        elif isinstance(command, Configure):
            self.config = command.config
            rate = self.config.sample_rate
            self.buffer_size = _buffer_size(rate if rate is not None else _DEFAULT_RATE)
            logger.info("VAD configuration updated: %s", self.config)

    async def on_close(self) -> None:
        """The client closed the connection."""
        self._touch()
        logger.info("WebSocket closing")
        if self.session_id is not None:
            await self._send(session_ended_event(str(self.session_id), "Connection closed"))
        await self.stop()

    async def check_timeouts(self, now: float | None = None) -> bool:
        """Close an idle connection; returns True while the connection stays open."""
        if self.closed:
            return False
        current = self._clock() if now is None else now
        if current - self.last_activity > SESSION_TIMEOUT_S:
            logger.info("VAD Session timeout")
            if self.session_id is not None:
                await self._send(session_ended_event(str(self.session_id), "Session timeout"))
            await self.stop()
            return False
        return True

    async def stop(self) -> None:
        """Release the VAD session and close the connection; safe to call twice."""
        if self.closed:
            return
        self.closed = True
        if self.session_id is not None:
            logger.info("Cleaning up VAD session: %s", self.session_id)
            self.vad_controller.remove_session(self.session_id)
        if self._close is not None:
            await self._close()

    async def _end_session(self) -> None:
        if self.session_id is not None:
            self.vad_controller.remove_session(self.session_id)
            await self._send(
                session_ended_event(str(self.session_id), "Session ended by client")
            )
        await self.stop()

    async def _reset_session(self) -> None:
        if self.session_id is None:
            return
        self.audio_buffer.clear()
        await self._send(vad_result_event(str(self.session_id), False))

    async def _process_chunk(self, chunk: bytes) -> None:
        if self.session_id is None:
            return
        try:
            response = await self.vad_controller.process_audio(self.session_id, chunk)
        except Exception as exc:
            logger.error("VAD processing error: %s", exc)
            await self._send(error_event(f"VAD processing failed: {exc}"))
            return
        await self._send(
            vad_result_event(str(response.session_id), response.speech_detected)
        )