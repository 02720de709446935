"""Request, response and WebSocket message models."""

from __future__ import annotations

import dataclasses
import enum
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Union

from sttserver.audio_converter import AudioFormat


class ResamplingMethod(enum.Enum):
    """Algorithms available for sample-rate conversion."""

    CUSTOM = "custom"
    DASP = "dasp"
    RUBATO = "rubato"
    AUTO = "auto"


class CommandError(ValueError):
    """A client message that could not be understood."""


@dataclass
class SessionConfig:
    """Optional session settings as sent by a client."""

    threshold: float | None = None
    sample_rate: int | None = None
    audio_format: AudioFormat | None = None
    language: str | None = None
    silence_duration_ms: int | None = None
    min_speech_duration_ms: int | None = None
    streaming_mode: bool | None = None


def _as_u32(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 0xFFFFFFFF:
        raise CommandError(f"invalid value for {name}: expected u32, got {value!r}")
    return value


def _as_float(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise CommandError(f"invalid value for {name}: expected number, got {value!r}")
    return float(value)


def _as_str(name: str, value: Any) -> str:
    if not isinstance(value, str):
        raise CommandError(f"invalid value for {name}: expected string, got {value!r}")
    return value


def _as_bool(name: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise CommandError(f"invalid value for {name}: expected boolean, got {value!r}")
    return value


def _as_audio_format(name: str, value: Any) -> AudioFormat:
    if not isinstance(value, str):
        raise CommandError(f"invalid value for {name}: expected string, got {value!r}")
    try:
        return AudioFormat(value)
    except ValueError:
        raise CommandError(f"unknown variant `{value}` for {name}") from None


_SESSION_FIELDS: dict[str, Callable[[str, Any], Any]] = {
    "threshold": _as_float,
    "sample_rate": _as_u32,
    "audio_format": _as_audio_format,
    "language": _as_str,
    "silence_duration_ms": _as_u32,
    "min_speech_duration_ms": _as_u32,
    "streaming_mode": _as_bool,
}


def parse_session_config(data: Any) -> SessionConfig:
    """Build a :class:`SessionConfig` from decoded JSON; unknown keys are ignored."""
    if not isinstance(data, dict):
        raise CommandError(f"invalid type: expected a config object, got {data!r}")
    values = {
        name: None if data.get(name) is None else parser(name, data[name])
        for name, parser in _SESSION_FIELDS.items()
    }
    return SessionConfig(**values)


@dataclass(frozen=True)
class STTSessionConfig:
    """Session settings with every default filled in."""

    language: str = "en"
    silence_duration_ms: int = 500
    min_speech_duration_ms: int = 100
    streaming_mode: bool = True

    @classmethod
    def from_session_config(cls, config: SessionConfig) -> STTSessionConfig:
        defaults = cls()
        return cls(
            language=config.language if config.language is not None else defaults.language,
            silence_duration_ms=(
                config.silence_duration_ms
                if config.silence_duration_ms is not None
                else defaults.silence_duration_ms
            ),
            min_speech_duration_ms=(
                config.min_speech_duration_ms
                if config.min_speech_duration_ms is not None
                else defaults.min_speech_duration_ms
            ),
            streaming_mode=(
                config.streaming_mode
                if config.streaming_mode is not None
                else defaults.streaming_mode
            ),
        )


@dataclass(frozen=True)
class TranscribeParams:
    """Decoder options for one transcription call."""

    language: str | None = "en"
    single_segment: bool = True
    max_tokens: int = 224
    no_context: bool = True

    @classmethod
    def for_streaming(cls) -> TranscribeParams:
        """Options suited to short, independent streaming chunks."""
        return cls(language="en", single_segment=True, max_tokens=224, no_context=True)


@dataclass
class TranscriptionSegment:
    start: float
    end: float
    text: str
    confidence: float | None = None


@dataclass
class TranscriptionResult:
    text: str
    segments: list[TranscriptionSegment] = field(default_factory=list)
    language: str | None = None
    duration: float = 0.0
    confidence: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass
class CreateSessionResponse:
    session_id: uuid.UUID
    message: str


@dataclass
class VadResponse:
    session_id: uuid.UUID
    speech_detected: bool


@dataclass
class BatchVadResponse:
    successful_responses: list[VadResponse] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _timestamp_text(moment: datetime) -> str:
    return moment.isoformat().replace("+00:00", "Z")


@dataclass
class STTResponse:
    session_id: uuid.UUID
    speech_detected: bool
    transcription: TranscriptionResult | None = None
    timestamp: datetime = field(default_factory=_utc_now)
    processing_time_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": str(self.session_id),
            "speech_detected": self.speech_detected,
            "transcription": (
                self.transcription.to_dict() if self.transcription is not None else None
            ),
            "timestamp": _timestamp_text(self.timestamp),
            "processing_time_ms": self.processing_time_ms,
        }


@dataclass
class ErrorResponse:
    error: str
    message: str
    timestamp: datetime = field(default_factory=_utc_now)
    session_id: uuid.UUID | None = None


@dataclass(frozen=True)
class EndSession:
    """Client asks to close its session."""


@dataclass(frozen=True)
class ResetSession:
    """Client asks to flush buffered audio."""


@dataclass(frozen=True)
class Configure:
    """Client replaces its session settings."""

    config: SessionConfig


Command = Union[EndSession, ResetSession, Configure]


def parse_command(text: str) -> Command:
    """Parse a JSON command message tagged by its ``command`` key."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise CommandError(str(exc)) from None
    if not isinstance(data, dict):
        raise CommandError("invalid type: expected a command object")
    if "command" not in data:
        raise CommandError("missing field `command`")
    tag = data["command"]
    if tag == "end_session":
        return EndSession()
    if tag == "reset_session":
        return ResetSession()
    if tag == "configure":
        if "config" not in data:
            raise CommandError("missing field `config`")
        return Configure(parse_session_config(data["config"]))
    raise CommandError(f"unknown variant `{tag}`")


def _event(name: str, **fields: Any) -> str:
    return json.dumps({"event": name, **fields}, separators=(",", ":"), ensure_ascii=False)


def session_created_event(session_id: str, message: str) -> str:
    return _event("session_created", session_id=session_id, message=message)


def vad_result_event(session_id: str, speech_detected: bool) -> str:
    return _event("vad_result", session_id=session_id, speech_detected=speech_detected)


def stt_result_event(
    session_id: str,
    speech_detected: bool,
    transcription: str | None,
    processing_time_ms: int,
) -> str:
    return _event(
        "stt_result",
        session_id=session_id,
        speech_detected=speech_detected,
        transcription=transcription,
        processing_time_ms=processing_time_ms,
    )


def error_event(message: str) -> str:
    return _event("error", message=message)


def session_ended_event(session_id: str, message: str) -> str:
    return _event("session_ended", session_id=session_id, message=message)