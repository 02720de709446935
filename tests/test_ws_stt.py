import json
import uuid

import pytest

from sttserver.api_models import CreateSessionResponse, STTResponse, TranscriptionResult
from sttserver.audio_converter import AudioFormat
from sttserver.ws_stt import STTWebSocketSession


class _FakeController:
    def __init__(self):
        self.session_id = uuid.uuid4()
        self.fail_create = None
        self.fail_process = None
        self.forced = None
        self.created_rates = []
        self.process_calls = []
        self.removed = []
        self.result_text = "hello"

    async def create_session(self, sample_rate):
        self.created_rates.append(sample_rate)
        if self.fail_create is not None:
            raise self.fail_create
        return CreateSessionResponse(session_id=self.session_id, message="created")

    async def process_audio(self, session_id, audio_data, sample_rate, audio_format):
        self.process_calls.append((session_id, bytes(audio_data), sample_rate, audio_format))
        if self.fail_process is not None:
            raise self.fail_process
        return STTResponse(
            session_id=session_id,
            speech_detected=True,
            transcription=TranscriptionResult(text=self.result_text),
            processing_time_ms=7,
        )

    async def force_transcribe(self, session_id):
        return self.forced

    def remove_session(self, session_id):
        self.removed.append(session_id)
        return True


class _Peer:
    """Records what a session sends and how often it closes the socket."""

    def __init__(self):
        self.sent = []
        self.close_calls = 0
        self.now = 1000.0

    async def send(self, text):
        self.sent.append(json.loads(text))

    async def close(self):
        self.close_calls += 1

    def clock(self):
        return self.now


@pytest.mark.asyncio
async def test_start_announces_session():
    controller, peer = _FakeController(), _Peer()
    session = STTWebSocketSession(controller, send=peer.send, close=peer.close, clock=peer.clock)
    await session.start()
    assert peer.sent == [
        {"event": "session_created", "session_id": str(controller.session_id), "message": "created"}
    ]
    assert session.session_id == controller.session_id
    assert controller.created_rates == [16000]


@pytest.mark.asyncio
async def test_start_failure_reports_and_closes():
    controller, peer = _FakeController(), _Peer()
    controller.fail_create = RuntimeError("boom")
    session = STTWebSocketSession(controller, send=peer.send, close=peer.close, clock=peer.clock)
    await session.start()
    assert peer.sent == [{"event": "error", "message": "Failed to create session: boom"}]
    assert session.session_id is None
    assert session.closed is True
    assert peer.close_calls == 1


@pytest.mark.asyncio
async def test_binary_without_session_is_error():
    controller, peer = _FakeController(), _Peer()
    session = STTWebSocketSession(controller, send=peer.send, close=peer.close, clock=peer.clock)
    await session.on_binary(b"\x00\x01")
    assert peer.sent == [{"event": "error", "message": "No active session"}]
    assert len(session.audio_buffer) == 0
    assert controller.process_calls == []


@pytest.mark.asyncio
async def test_binary_buffers_until_frame_is_full():
    controller, peer = _FakeController(), _Peer()
    session = STTWebSocketSession(
        controller,
        sample_rate=8000,
        audio_format=AudioFormat.PCM16,
        send=peer.send,
        close=peer.close,
        clock=peer.clock,
    )
    await session.start()
    peer.sent.clear()
    size = session.buffer_size
    assert size == 8192
    await session.on_binary(b"\x01" * (size - 2))
    assert len(session.audio_buffer) == size - 2
    assert controller.process_calls == []
    await session.on_binary(b"\x02" * 6)
    assert len(controller.process_calls) == 1
    _, chunk, rate, fmt = controller.process_calls[0]
    assert len(chunk) == size
    assert rate == 8000
    assert fmt is AudioFormat.PCM16
    assert len(session.audio_buffer) == 4
    assert peer.sent == [
        {
            "event": "stt_result",
            "session_id": str(controller.session_id),
            "speech_detected": True,
            "transcription": "hello",
            "processing_time_ms": 7,
        }
    ]


@pytest.mark.asyncio
async def test_processing_failure_is_reported():
    controller, peer = _FakeController(), _Peer()
    session = STTWebSocketSession(controller, send=peer.send, close=peer.close, clock=peer.clock)
    await session.start()
    peer.sent.clear()
    controller.fail_process = RuntimeError("bad audio")
    await session.on_binary(b"\x00" * session.buffer_size)
    assert peer.sent == [{"event": "error", "message": "STT processing failed: bad audio"}]
    assert len(session.audio_buffer) == 0
    assert session.closed is False


@pytest.mark.asyncio
async def test_invalid_command_is_reported():
    controller, peer = _FakeController(), _Peer()
    session = STTWebSocketSession(controller, send=peer.send, close=peer.close, clock=peer.clock)
    await session.start()
    peer.sent.clear()
    await session.on_text("not json")
    assert len(peer.sent) == 1
    assert peer.sent[0]["event"] == "error"
    assert peer.sent[0]["message"].startswith("Invalid command:")
    assert session.closed is False


@pytest.mark.asyncio
async def test_end_session_command():
    controller, peer = _FakeController(), _Peer()
    session = STTWebSocketSession(controller, send=peer.send, close=peer.close, clock=peer.clock)
    await session.start()
    peer.sent.clear()
    await session.on_text('{"command": "end_session"}')
    assert peer.sent == [
        {
            "event": "session_ended",
            "session_id": str(controller.session_id),
            "message": "Session ended by client",
        }
    ]
    assert controller.session_id in controller.removed
    assert session.closed is True
    assert peer.close_calls == 1


@pytest.mark.asyncio
async def test_reset_session_with_transcription():
    controller, peer = _FakeController(), _Peer()
    session = STTWebSocketSession(controller, send=peer.send, close=peer.close, clock=peer.clock)
    await session.start()
    peer.sent.clear()
    await session.on_binary(b"\x01\x00" * 10)
    assert len(session.audio_buffer) == 20
    controller.forced = TranscriptionResult(text="flushed")
    await session.on_text('{"command": "reset_session"}')
    assert len(session.audio_buffer) == 0
    assert session.closed is False
    assert peer.sent == [
        {
            "event": "stt_result",
            "session_id": str(controller.session_id),
            "speech_detected": True,
            "transcription": "flushed",
            "processing_time_ms": 0,
        }
    ]


@pytest.mark.asyncio
async def test_reset_session_without_speech():
    controller, peer = _FakeController(), _Peer()
    session = STTWebSocketSession(controller, send=peer.send, close=peer.close, clock=peer.clock)
    await session.start()
    peer.sent.clear()
    await session.on_text('{"command": "reset_session"}')
    assert peer.sent == [
        {
            "event": "stt_result",
            "session_id": str(controller.session_id),
            "speech_detected": False,
            "transcription": None,
            "processing_time_ms": 0,
        }
    ]
    assert session.closed is False


@pytest.mark.asyncio
async def test_configure_changes_rate_and_buffer():
    controller, peer = _FakeController(), _Peer()
    session = STTWebSocketSession(controller, send=peer.send, close=peer.close, clock=peer.clock)
    await session.start()
    before = session.buffer_size
    await session.on_text(
        '{"command": "configure", "config": {"sample_rate": 8000, "audio_format": "LINEAR16"}}'
    )
    assert session.config.sample_rate == 8000
    assert session.buffer_size == 4096
    assert session.buffer_size < before
    await session.on_binary(b"\x00" * session.buffer_size)
    assert controller.process_calls[0][2] == 8000


@pytest.mark.asyncio
async def test_on_close_sends_session_ended():
    controller, peer = _FakeController(), _Peer()
    session = STTWebSocketSession(controller, send=peer.send, close=peer.close, clock=peer.clock)
    await session.start()
    peer.sent.clear()
    await session.on_close()
    assert peer.sent == [
        {
            "event": "session_ended",
            "session_id": str(controller.session_id),
            "message": "Connection closed",
        }
    ]
    assert session.closed is True


@pytest.mark.asyncio
async def test_timeouts():
    controller, peer = _FakeController(), _Peer()
    session = STTWebSocketSession(controller, send=peer.send, close=peer.close, clock=peer.clock)
    await session.start()
    peer.sent.clear()
    start = session.last_activity
    assert await session.check_timeouts(start + 30) is True
    assert session.closed is False
    assert await session.check_timeouts(start + 61) is False
    assert session.closed is True
    assert peer.sent == []


@pytest.mark.asyncio
async def test_session_timeout_message():
    controller, peer = _FakeController(), _Peer()
    session = STTWebSocketSession(controller, send=peer.send, close=peer.close, clock=peer.clock)
    await session.start()
    peer.sent.clear()
    assert await session.check_timeouts(session.last_activity + 301) is False
    assert peer.sent == [
        {
            "event": "session_ended",
            "session_id": str(controller.session_id),
            "message": "Session timeout",
        }
    ]


@pytest.mark.asyncio
async def test_stop_is_idempotent_and_removes_session():
    controller, peer = _FakeController(), _Peer()
    session = STTWebSocketSession(controller, send=peer.send, close=peer.close, clock=peer.clock)
    await session.start()
    await session.stop()
    await session.stop()
    assert controller.removed == [controller.session_id]
    assert peer.close_calls == 1
    await session.on_binary(b"\x00" * 4)
    assert peer.sent[-1]["event"] == "session_created"