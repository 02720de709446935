import numpy as np
import pytest

from sttserver.api_models import TranscribeParams
from sttserver.whisper_model import Whisper, detect_model_type


class FakeEngine:
    def __init__(self, segments=(), error=None):
        self.segments = list(segments)
        self.error = error
        self.calls = []

    def transcribe(self, samples, **options):
        self.calls.append((samples, options))
        if self.error:
            raise self.error
        return iter(self.segments)


def make(tmp_path, engine, name="ggml-base.bin"):
    return Whisper(tmp_path / name, lambda path: engine)


@pytest.mark.parametrize(
    "path, kind",
    [
        ("models/ggml-base.bin", "base"),
        ("models/ggml-distil-small.en.bin", "small"),
        ("TINY.bin", "tiny"),
        ("medium-large.bin", "medium"),
        ("model.bin", "unknown"),
    ],
)
def test_detect_model_type(path, kind):
    assert detect_model_type(path) == kind


def test_model_type_attribute(tmp_path):
    assert make(tmp_path, FakeEngine(), "ggml-large.bin").model_type == "large"


def test_transcribe_joins_trimmed_segments(tmp_path):
    engine = FakeEngine([(0, 150, " Hello "), (150, 320, "world ")])
    result = make(tmp_path, engine).transcribe(np.zeros(1000), TranscribeParams())
    assert result.text == "Hello world"
    assert result.duration == pytest.approx(3.2)
    assert result.duration == result.segments[-1].end
    assert [s.text for s in result.segments] == [" Hello ", "world "]
    assert result.language == "en"


def test_duration_from_sample_count_without_segments(tmp_path):
    result = make(tmp_path, FakeEngine()).transcribe(np.zeros(16000), TranscribeParams())
    assert result.text == ""
    assert result.duration == pytest.approx(1.0)


def test_short_sample_skips_engine(tmp_path):
    engine = FakeEngine([(0, 1, "x")])
    result = make(tmp_path, engine).transcribe([0.1] * 100, TranscribeParams())
    assert engine.calls == []
    assert (result.text, result.duration, result.confidence) == ("", 0.0, 0.0)


def test_empty_sample_rejected(tmp_path):
    with pytest.raises(ValueError, match="Empty audio sample"):
        make(tmp_path, FakeEngine()).transcribe([], TranscribeParams())


def test_options_passed_to_engine(tmp_path):
    engine = FakeEngine()
    params = TranscribeParams(language=None, single_segment=False, max_tokens=224, no_context=True)
    result = make(tmp_path, engine).transcribe(np.zeros(600), params)
    _, options = engine.calls[0]
    assert options["language"] == "en"
    assert options["max_tokens"] == 224
    assert options["single_segment"] is False
    assert result.language is None


def test_engine_failure_wrapped(tmp_path):
    engine = FakeEngine(error=OSError("boom"))
    with pytest.raises(RuntimeError, match="Transcription failed"):
        make(tmp_path, engine).transcribe(np.zeros(600), TranscribeParams())


def test_engines_cached_per_path(tmp_path):
    loads = []

    def loader(path):
        loads.append(path)
        return FakeEngine()

    path = tmp_path / "cached.bin"
    Whisper(path, loader)
    Whisper(path, loader)
    assert loads == [str(path)]


def test_load_failure_reported_and_not_cached(tmp_path):
    path = tmp_path / "broken.bin"

    def failing(_):
        raise FileNotFoundError("missing")

    with pytest.raises(RuntimeError, match="Failed to load Whisper model"):
        Whisper(path, failing)
    engine = FakeEngine([(0, 100, "ok")])
    result = Whisper(path, lambda _: engine).transcribe(np.zeros(600), TranscribeParams())
    assert result.text == "ok"