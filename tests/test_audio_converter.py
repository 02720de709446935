import struct

import numpy as np
import pytest

from sttserver.audio_converter import (
    AudioConverterConfig,
    AudioConverterService,
    AudioFormat,
    decode_alaw,
    decode_mulaw,
    parse_audio_format,
)


@pytest.fixture
def plain():
    return AudioConverterService(AudioConverterConfig(enable_normalization=False))


def _loud_mulaw_byte():
    return max(range(256), key=lambda b: abs(decode_mulaw(b)))


def _quiet_mulaw_byte():
    return next(b for b in range(256) if 64 <= abs(decode_mulaw(b)) < 150)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("LINEAR16", AudioFormat.PCM16),
        (" linear16 ", AudioFormat.PCM16),
        ("mulaw", AudioFormat.MULAW),
        ("Float32", AudioFormat.FLOAT32),
        ("ALAW", AudioFormat.ALAW),
        ("pcm24", AudioFormat.PCM24),
    ],
)
def test_parse_audio_format(text, expected):
    assert parse_audio_format(text) is expected


def test_parse_unknown_format_raises():
    with pytest.raises(ValueError):
        parse_audio_format("OGG")


def test_wire_name_of_pcm16_parses_back():
    parsed = parse_audio_format("LINEAR16")
    assert parsed.value == "LINEAR16"
    assert parse_audio_format(parsed.value) is AudioFormat.PCM16


@pytest.mark.parametrize(
    "fmt, size",
    [
        (AudioFormat.MULAW, 1),
        (AudioFormat.ALAW, 1),
        (AudioFormat.PCM8, 1),
        (AudioFormat.PCM16, 2),
        (AudioFormat.PCM24, 3),
        (AudioFormat.PCM32, 4),
        (AudioFormat.FLOAT32, 4),
    ],
)
def test_bytes_per_sample(fmt, size):
    assert fmt.bytes_per_sample() == size


@pytest.mark.parametrize(
    "fmt, supported",
    [
        (AudioFormat.PCM16, True),
        (AudioFormat.MULAW, True),
        (AudioFormat.ALAW, True),
        (AudioFormat.FLOAT32, True),
        (AudioFormat.PCM8, False),
        (AudioFormat.PCM24, False),
        (AudioFormat.PCM32, False),
    ],
)
def test_supported_formats(fmt, supported):
    assert fmt.is_supported() is supported


def test_mulaw_silence_codes_decode_to_zero():
    assert decode_mulaw(0xFF) == 0
    assert decode_mulaw(0x7F) == 0


def test_mulaw_is_sign_symmetric_and_clipped():
    for code in range(256):
        value = decode_mulaw(code)
        assert value == -decode_mulaw(code ^ 0x80)
        assert abs(value) <= 8159


def test_alaw_is_sign_symmetric_and_bounded():
    for code in range(256):
        value = decode_alaw(code)
        assert value == -decode_alaw(code ^ 0x80)
        assert abs(value) <= 32767


def test_decoders_reject_non_bytes():
    with pytest.raises(ValueError):
        decode_mulaw(256)
    with pytest.raises(ValueError):
        decode_alaw(-1)


def test_pcm16_to_samples_scales_by_32768(plain):
    ints = [0, 16384, -32768, 32767, -5, 7]
    data = struct.pack(f"<{len(ints)}h", *ints)
    samples = plain.bytes_to_samples(data, AudioFormat.PCM16)
    assert samples.dtype == np.float32
    assert [round(float(s) * 32768) for s in samples] == ints


def test_pcm16_odd_length_raises(plain):
    with pytest.raises(ValueError):
        plain.bytes_to_samples(b"\x00\x01\x02", AudioFormat.PCM16)


def test_float32_round_trip(plain):
    values = np.array([0.25, -0.75, 0.5, 0.0, 1.0], dtype="<f4")
    samples = plain.bytes_to_samples(values.tobytes(), AudioFormat.FLOAT32)
    np.testing.assert_array_equal(samples, values)


def test_float32_bad_length_raises(plain):
    with pytest.raises(ValueError):
        plain.bytes_to_samples(b"\x00" * 5, AudioFormat.FLOAT32)


def test_empty_input_gives_empty_output(plain):
    assert plain.bytes_to_samples(b"", AudioFormat.MULAW).size == 0
    assert plain.to_pcm16_bytes(b"", AudioFormat.ALAW) == b""


@pytest.mark.parametrize("fmt", [AudioFormat.PCM8, AudioFormat.PCM24, AudioFormat.PCM32])
def test_unsupported_formats_raise(plain, fmt):
    with pytest.raises(ValueError):
        plain.bytes_to_samples(b"\x00" * 12, fmt)
    with pytest.raises(ValueError):
        plain.to_pcm16_bytes(b"\x00" * 12, fmt)


def test_alaw_samples_follow_gate(plain):
    gate = plain.config.alaw_noise_gate
    samples = plain.bytes_to_samples(bytes(range(256)), AudioFormat.ALAW)
    for code, sample in enumerate(samples):
        decoded = decode_alaw(code)
        if abs(decoded) < gate:
            assert sample == 0.0
        else:
            assert round(float(sample) * 32768) == decoded


def test_mulaw_short_input_follows_gate(plain):
    gate = plain.config.mulaw_noise_gate
    codes = bytes(range(0, 256, 4))
    samples = plain.bytes_to_samples(codes, AudioFormat.MULAW)
    assert len(samples) == len(codes)
    for code, sample in zip(codes, samples):
        decoded = decode_mulaw(code)
        expected = 0 if abs(decoded) < gate else decoded
        assert round(float(sample) * 32768) == expected


def test_mulaw_phantom_tail_removed_from_samples(plain):
    loud, quiet = _loud_mulaw_byte(), _quiet_mulaw_byte()
    data = bytes([loud]) * 300 + bytes([quiet]) * 80
    samples = plain.bytes_to_samples(data, AudioFormat.MULAW)
    assert len(samples) == 380
    assert samples[-80:].tolist() == [0.0] * 80
    expected_loud = float(np.float32(decode_mulaw(loud)) / np.float32(32768))
    assert samples[:300].tolist() == [expected_loud] * 300


def test_mulaw_phantom_tail_removed_from_pcm16(plain):
    loud, quiet = _loud_mulaw_byte(), _quiet_mulaw_byte()
    data = bytes([loud]) * 200 + bytes([quiet]) * 40
    pcm = np.frombuffer(plain.to_pcm16_bytes(data, AudioFormat.MULAW), dtype="<i2")
    assert len(pcm) == 240
    assert pcm[-40:].tolist() == [0] * 40
    assert pcm[:200].tolist() == [decode_mulaw(loud)] * 200


def test_short_mulaw_tail_is_kept(plain):
    loud, quiet = _loud_mulaw_byte(), _quiet_mulaw_byte()
    data = bytes([loud]) * 10 + bytes([quiet]) * 10
    pcm = np.frombuffer(plain.to_pcm16_bytes(data, AudioFormat.MULAW), dtype="<i2")
    assert len(pcm) == 20
    assert pcm[-10:].tolist() == [decode_mulaw(quiet)] * 10


def test_pcm16_passthrough(plain):
    data = struct.pack("<3h", 1, -2, 300)
    assert plain.to_pcm16_bytes(data, AudioFormat.PCM16) == data


def test_float32_to_pcm16_clamps():
    service = AudioConverterService()
    data = np.array([1.0, -1.0, 2.0, -3.0, 0.0, np.nan], dtype="<f4").tobytes()
    pcm = struct.unpack("<6h", service.to_pcm16_bytes(data, AudioFormat.FLOAT32))
    assert pcm == (32767, -32767, 32767, -32767, 0, 0)


def test_float32_to_pcm16_bad_length_raises(plain):
    with pytest.raises(ValueError):
        plain.to_pcm16_bytes(b"\x00" * 6, AudioFormat.FLOAT32)


def test_alaw_to_pcm16_is_gated(plain):
    gate = plain.config.alaw_noise_gate
    pcm = np.frombuffer(plain.to_pcm16_bytes(bytes(range(256)), AudioFormat.ALAW), "<i2")
    for code, value in enumerate(pcm):
        assert value == 0 or (abs(int(value)) >= gate and value == decode_alaw(code))


def test_normalisation_applies_max_gain_to_quiet_audio():
    service = AudioConverterService()
    values = np.array([0.01, -0.01] * 50, dtype="<f4")
    samples = service.bytes_to_samples(values.tobytes(), AudioFormat.FLOAT32)
    np.testing.assert_allclose(samples, values * service.config.max_gain)


def test_normalisation_removes_dc_offset():
    service = AudioConverterService()
    values = np.full(64, 0.5, dtype="<f4")
    samples = service.bytes_to_samples(values.tobytes(), AudioFormat.FLOAT32)
    np.testing.assert_allclose(samples, np.zeros(64), atol=1e-7)


def test_normalisation_leaves_loud_audio_untouched():
    service = AudioConverterService()
    values = np.array([0.5, -0.5] * 20, dtype="<f4")
    samples = service.bytes_to_samples(values.tobytes(), AudioFormat.FLOAT32)
    np.testing.assert_array_equal(samples, values)


def test_with_config_builds_new_service(plain):
    config = AudioConverterConfig(enable_normalization=False, alaw_noise_gate=0)
    other = plain.with_config(config)
    assert other.config == config
    pcm = np.frombuffer(other.to_pcm16_bytes(bytes(range(256)), AudioFormat.ALAW), "<i2")
    assert [int(v) for v in pcm] == [decode_alaw(c) for c in range(256)]