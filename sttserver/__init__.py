"""Audio decoding, resampling, voice activity detection, transcription and WebSocket session handling for streaming speech-to-text."""

__version__ = "0.1.0"