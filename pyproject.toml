[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sttserver"
version = "0.1.0"
description = "Building blocks for streaming speech-to-text: audio decoding, resampling, voice activity detection and WebSocket session handling"
requires-python = ">=3.10"
keywords = ["speech-to-text", "vad", "whisper", "silero", "websocket", "audio", "resampling", "g711"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Topic :: Multimedia :: Sound/Audio :: Speech",
]
dependencies = [
    "numpy",
    "scipy",
    "python-dotenv",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["sttserver"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
