"""
Environment-driven settings for the rules engine server.
"""

import os
from pathlib import Path

from pydantic import BaseModel, Field, field_validator


class EngineSettings(BaseModel):
    """Runtime settings, normally read from the environment (or a ``.env`` file).

    Environment variables:
        DM20_LOG_LEVEL: Logging level name (default ``INFO``).
        DM20_CHARACTERS_DIR: Directory of ``<id>.json`` character records.
            When unset, characters live in memory only.
        DM20_SEED: Integer seed for the shared random generator.
    """

    log_level: str = Field(default="INFO", description="Logging level name")
    characters_dir: Path | None = Field(
        default=None, description="Directory holding JSON character records"
    )
    seed: int | None = Field(default=None, description="Seed for reproducible rolls")

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.strip().upper() or "INFO"

    @classmethod
    def from_env(cls) -> "EngineSettings":
        """Build settings from ``os.environ``."""
        characters_dir = os.getenv("DM20_CHARACTERS_DIR") or None
        seed = os.getenv("DM20_SEED") or None
        return cls(
            log_level=os.getenv("DM20_LOG_LEVEL", "INFO"),
            characters_dir=Path(characters_dir).expanduser() if characters_dir else None,
            seed=int(seed) if seed is not None else None,
        )
