"""Configuration for the calendar service, read from the environment / ``.env``."""

from __future__ import annotations

import tempfile
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings.

    Every field can be overridden with a ``LOCALCAL_``-prefixed environment
    variable, e.g. ``LOCALCAL_LOG_LEVEL=DEBUG``.
    """

    # Logging
    log_level: str = "INFO"
    log_file: Path | None = None

    # Import / export
    export_dir: Path = Field(default_factory=lambda: Path(tempfile.gettempdir()))
    prodid: str = "-//localcal//Local Calendar//EN"
    uid_domain: str = "localcal"

    # Recurrence expansion
    max_occurrences: int = Field(default=10_000, gt=0)

    model_config = SettingsConfigDict(
        env_prefix="LOCALCAL_",
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
