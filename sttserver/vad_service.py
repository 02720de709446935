"""Registry of voice-activity sessions sharing one model file."""

from __future__ import annotations

import asyncio
import logging
import os
import threading
import uuid
from dataclasses import dataclass, field
from typing import Iterable, Union

from sttserver.silero import Loader
from sttserver.vad_session import VadSession

logger = logging.getLogger(__name__)

_THRESHOLD = 0.5
_SAMPLE_RATE = 16000


class SessionNotFoundError(LookupError):
    """No session is registered under the given id."""

    def __init__(self, session_id: object) -> None:
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


@dataclass
class _Slot:
    session: VadSession
    lock: threading.Lock = field(default_factory=threading.Lock)


BatchResult = Union[tuple[uuid.UUID, bool], BaseException]


class VADService:
    """Creates, runs and removes VAD sessions; model work runs in worker threads."""

    def __init__(self, model_path: str | os.PathLike[str], loader: Loader) -> None:
        self.model_path = os.fspath(model_path)
        os.stat(self.model_path)
        self._loader = loader
        self._sessions: dict[uuid.UUID, _Slot] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    async def create_session(self, hangover_ms: int, pad_ms: int) -> uuid.UUID:
        session = await asyncio.to_thread(
            VadSession,
            self.model_path,
            _THRESHOLD,
            _SAMPLE_RATE,
            hangover_ms,
            pad_ms,
            self._loader,
        )
        session_id = uuid.uuid4()
        self._sessions[session_id] = _Slot(session)
        logger.info("Created VAD service with session: %s", session_id)
        return session_id

    async def process_audio(self, session_id: uuid.UUID, audio_data: bytes) -> bool:
        """Run 16-bit PCM bytes through a session; raises if it does not exist."""
        slot = self._sessions.get(session_id)
        if slot is None:
            raise SessionNotFoundError(session_id)
        return await asyncio.to_thread(self._run, slot, bytes(audio_data))

    async def process_audio_bytes(
        self, requests: Iterable[tuple[uuid.UUID, bytes]]
    ) -> list[BatchResult]:
        """Process many requests concurrently; failures are returned in place."""

        async def one(session_id: uuid.UUID, data: bytes) -> tuple[uuid.UUID, bool]:
            return session_id, await self.process_audio(session_id, data)

        results = await asyncio.gather(
            *(one(session_id, data) for session_id, data in requests),
            return_exceptions=True,
        )
        return list(results)

    def remove_session(self, session_id: uuid.UUID) -> bool:
        removed = self._sessions.pop(session_id, None) is not None
        if removed:
            logger.info("Removed VAD session: %s", session_id)
        return removed

    @staticmethod
    def _run(slot: _Slot, data: bytes) -> bool:
        with slot.lock:
            return slot.session.process_raw_bytes(data)