"""Application configuration loaded from the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Config:
    """Server configuration; records which ``.env`` file was applied, if any."""

    env_file: Path | None = None

    @property
    def loaded(self) -> bool:
        return self.env_file is not None

    @classmethod
    def load(cls, path: str | os.PathLike[str] | None = None) -> Config:
        """Apply a ``.env`` file to the environment without overriding set variables."""
        if path is None:
            found = find_dotenv(usecwd=True)
            path = found or None
        if path is None or not Path(path).is_file():
            logger.error("No .env file found")
            return cls()
        load_dotenv(path, override=False)
        logger.info("Loaded .env file")
        return cls(env_file=Path(path))