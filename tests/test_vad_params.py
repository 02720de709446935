import math

import pytest

from sttserver.vad_params import SampleRate, TimeStamp, VadParams


@pytest.mark.parametrize(
    "hz, expected", [(8000, SampleRate.EIGHT_KHZ), (16000, SampleRate.SIXTEEN_KHZ)]
)
def test_sample_rate_from_hz(hz, expected):
    rate = SampleRate.from_hz(hz)
    assert rate is expected
    assert int(rate) == hz


@pytest.mark.parametrize("hz", [44100, 0, 24000])
def test_sample_rate_rejects_other_rates(hz):
    with pytest.raises(ValueError):
        SampleRate.from_hz(hz)


def test_vad_params_defaults():
    params = VadParams()
    assert params.frame_size == 64
    assert params.threshold == 0.5
    assert params.min_silence_duration_ms == 0
    assert params.speech_pad_ms == 64
    assert params.min_speech_duration_ms == 64
    assert math.isinf(params.max_speech_duration_s)
    assert params.sample_rate == 16000


def test_vad_params_override():
    params = VadParams(sample_rate=8000, min_silence_duration_ms=180)
    assert params.sample_rate == 8000
    assert params.min_silence_duration_ms == 180
    assert params.speech_pad_ms == VadParams().speech_pad_ms


def test_timestamp_default_is_zero():
    stamp = TimeStamp()
    assert (stamp.start, stamp.end) == (0, 0)
    assert str(stamp) == "[start:00000000, end:00000000]"


def test_timestamp_str_pads_to_eight_digits():
    assert str(TimeStamp(5, 1200)) == "[start:00000005, end:00001200]"


def test_timestamp_str_keeps_sign_within_width():
    text = str(TimeStamp(-5, 0))
    assert text.startswith("[start:-")
    assert len(text.split(",")[0]) == len("[start:") + 8