from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field

_TRUTHY = {"1", "true", "yes", "on"}


class Settings(BaseModel):
    refresh_hz: float = Field(60.0, gt=0)
    frames_count: int = Field(60, ge=1)
    # None means one frame interval.
    miss_tolerance_ms: float | None = Field(None, ge=0)
    dev: bool = False
    log_level: str = "INFO"
    redis_url: str = "redis://localhost:6379/0"


_SETTINGS: Settings | None = None


def load_settings(*, env_file: Path | None = None) -> Settings:
    """Build settings from the environment, after loading `.env` if present.

    Values already in the environment win over the file.
    """

    path = env_file if env_file is not None else Path.cwd() / ".env"
    if path.exists():
        from dotenv import load_dotenv

        load_dotenv(dotenv_path=path, override=False)

    values: dict[str, object] = {}
    if raw := os.environ.get("PSYSCENE_REFRESH_HZ"):
        values["refresh_hz"] = raw
    if raw := os.environ.get("PSYSCENE_FRAMES_COUNT"):
        values["frames_count"] = raw
    if raw := os.environ.get("PSYSCENE_MISS_TOLERANCE_MS"):
        values["miss_tolerance_ms"] = raw
    if raw := os.environ.get("PSYSCENE_DEV"):
        values["dev"] = raw.strip().casefold() in _TRUTHY
    if raw := os.environ.get("PSYSCENE_LOG_LEVEL"):
        values["log_level"] = raw.strip().upper()
    if raw := os.environ.get("REDIS_URL"):
        values["redis_url"] = raw
    return Settings.model_validate(values)


def get_settings() -> Settings:
    """Load settings once and cache them."""

    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = load_settings()
    return _SETTINGS


def reset_settings_for_tests() -> None:
    global _SETTINGS
    _SETTINGS = None
