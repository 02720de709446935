# sttserver

Building blocks for a streaming speech-to-text service. The package contains these parts:

- decoding of raw audio payloads (16-bit PCM, 32-bit float, G.711 mu-law and A-law)
- sample-rate conversion
- a voice activity detection (VAD) state machine over a recurrent speech-probability model
- transcription over a Whisper-style engine
- per-connection WebSocket protocol handlers that exchange JSON events

## Installation

```
pip install .
pip install ".[test]"   # with pytest and pytest-asyncio
```

## Audio decoding

`sttserver.audio_converter` does the decoding:

```python
from sttserver.audio_converter import AudioConverterService, AudioFormat, parse_audio_format

converter = AudioConverterService()
samples = converter.bytes_to_samples(pcm_bytes, AudioFormat.PCM16)   # float32 numpy array
pcm16 = converter.to_pcm16_bytes(mulaw_bytes, AudioFormat.MULAW)    # little-endian 16-bit bytes

parse_audio_format(" linear16 ")   # AudioFormat.PCM16
```

Only `LINEAR16`, `FLOAT32`, `MULAW` and `ALAW` are supported. The names `PCM8`, `PCM24`
and `PCM32` are recognised, but converting them raises `ValueError`. Each mu-law and A-law
code has a noise gate, set by `AudioConverterConfig`. A near-silent tail after audible mu-law
content is zeroed. `bytes_to_samples` applies gentle RMS normalisation and removes DC offset
unless `enable_normalization=False`. `decode_mulaw` and `decode_alaw` decode single bytes.

## Resampling

`sttserver.resampler.ResamplingService` does the rate conversion:

```python
from sttserver.api_models import ResamplingMethod
from sttserver.resampler import ResamplingService, determine_best_method

resampler = ResamplingService(16000)
data, audio_format = resampler.resample_bytes(
    mulaw_bytes, 8000, 16000, None, AudioFormat.MULAW, converter
)
out = resampler.resample_i16(int16_samples, 8000, 16000, ResamplingMethod.AUTO)
```

With `AUTO`, `determine_best_method` picks the method:

- 8 kHz to 16 kHz uses a custom filtered doubling.
- Pairs drawn from 8, 16 and 24 kHz use linear interpolation with pre-emphasis.
- Rates of 44.1 kHz or more use a cached windowed-sinc resampler. It processes a fixed
  chunk of 1024 input frames.

Any method other than `AUTO` falls back to linear interpolation. `resample_f32` treats an
omitted target rate as 0 Hz.

## Voice activity detection

The package ships no inference runtime. You supply a *loader*: a callable that takes a
model path and returns an engine. `run(inputs)` receives `input` (float32, 1x480), `state`
(float32, 2x1x128) and `sr` (int64, 1). It returns a mapping with `output` (the speech
probability) and `stateN` (the next state). Each path is loaded once per process.

```python
from sttserver.vad_service import VADService

vad = VADService("models/silero_vad.onnx", loader)   # the file must exist
session_id = await vad.create_session(hangover_ms=96, pad_ms=50)
speech = await vad.process_audio(session_id, pcm16_bytes)
vad.remove_session(session_id)
```

`VadSession` is the single-session layer. It reads 480-sample frames with a 240-sample hop
and feeds them through `VadIter`, the segment state machine. An unknown session id raises
`SessionNotFoundError`.

## Transcription

`sttserver.whisper_model.Whisper(model_path, loader)` also takes a loader. The loader
returns an engine whose `transcribe(samples, **options)` yields `(t0, t1, text)` for each
segment, with times in centiseconds.

`STTService(whisper_model, vad_service, config)` has these behaviours:

- It resamples incoming chunks to 16 kHz.
- It gates them with VAD.
- It collects speech until silence lasts `silence_duration_ms`.
- It transcribes the speech if it lasted at least `min_speech_duration_ms`. At most
  `max_concurrent_transcriptions` transcriptions run at once.

`STTController` and `VADController` in `sttserver.controllers` wrap the services and
return the response dataclasses of `sttserver.api_models`.

## WebSocket protocol handlers

`STTWebSocketSession` (`sttserver.ws_stt`) and `VadWebSocketSession` (`sttserver.ws_vad`)
implement the per-connection protocol. They are independent of any web framework. You
supply these callables:

- `send`: an async callable that delivers one text message to the client
- `close`: an optional async callable that closes the connection

You drive the handler through these methods:

- `start()` creates the backing session.
- `on_binary(data)` handles a binary frame.
- `on_text(text)` handles a text frame.
- `on_close()` handles the client closing the connection.
- `check_timeouts()` should be called periodically. It closes idle connections after
  300 s. The STT handler also closes after 60 s without activity.
- `stop()` releases the session.

Audio is buffered and processed in chunks of about 256 ms of 16-bit samples.

Every message sent to the client is a JSON object with an `event` field:

- `session_created`: `session_id`, `message`
- `vad_result`: `session_id`, `speech_detected`
- `stt_result`: `session_id`, `speech_detected`, `transcription`, `processing_time_ms`
- `session_ended`: `session_id`, `message`
- `error`: `message`

Client commands are JSON text frames with a `command` field:

```json
{"command": "end_session"}
{"command": "reset_session"}
{"command": "configure", "config": {"sample_rate": 8000, "audio_format": "MULAW"}}
```

## Configuration

`sttserver.config.Config.load(path=None)` applies a `.env` file to the environment. Without
a path it searches from the working directory. Variables that are already set are not
overridden.

## What this package does not do

- There is no HTTP server, route table or command to start one. To serve clients, connect
  the WebSocket handlers to a web framework of your choice.
- No speech-probability or transcription model is bundled. There is no inference runtime
  either: model loading is left to the loaders you pass in.