"""Configuration loading and management for clip-qa.

The storage root is always an explicit value: a CLI argument, the
CLIP_QA_DATA_DIR environment variable, or ~/.clip-qa/data. It is never
derived from the process working directory.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from clip_qa.errors import ConfigurationError
from clip_qa.ffmpeg_binary import FFmpegConfig
from clip_qa.store import atomic_write_json

CONFIG_FILENAME = "config.json"

ENV_DATA_DIR = "CLIP_QA_DATA_DIR"
ENV_SEGMENT_SECONDS = "CLIP_QA_SEGMENT_SECONDS"
ENV_FFMPEG = "CLIP_QA_FFMPEG"
ENV_FFPROBE = "CLIP_QA_FFPROBE"
ENV_LOG_DIR = "CLIP_QA_LOG_DIR"


def get_user_home() -> Path:
    """Per-user directory for clip-qa settings (.env, default data)."""
    return Path.home() / ".clip-qa"


def default_data_dir() -> Path:
    """Storage root used when nothing else is configured."""
    return get_user_home() / "data"


class AppConfig(BaseModel):
    """Runtime configuration for clip-qa."""

    data_dir: Path
    # Nominal clip length in seconds
    segment_seconds: int = Field(default=120, gt=0)
    # Extensions accepted on ingest (lowercase, with leading dot)
    allowed_extensions: list[str] = Field(default_factory=lambda: [".mp4"])

    # Precise mode preparation encode
    prepare_preset: str = "veryfast"
    prepare_crf: int = Field(default=23, ge=0, le=51)
    audio_bitrate: str = "192k"

    ffmpeg: FFmpegConfig = Field(default_factory=FFmpegConfig)

    # Per-run log files are written here when set
    log_dir: Path | None = None

    @field_validator("allowed_extensions")
    @classmethod
    def _normalize_extensions(cls, value: list[str]) -> list[str]:
        normalized = []
        for ext in value:
            ext = ext.strip().lower()
            if not ext.startswith("."):
                ext = "." + ext
            normalized.append(ext)
        return normalized

    @property
    def config_path(self) -> Path:
        """Location of the persisted settings file."""
        return self.data_dir / CONFIG_FILENAME


def _env_overrides() -> dict[str, Any]:
    overrides: dict[str, Any] = {}

    segment_seconds = os.environ.get(ENV_SEGMENT_SECONDS)
    if segment_seconds:
        overrides["segment_seconds"] = segment_seconds

    log_dir = os.environ.get(ENV_LOG_DIR)
    if log_dir:
        overrides["log_dir"] = log_dir

    return overrides


def load_config(data_dir: Path | str | None = None) -> AppConfig:
    """Load configuration.

    Resolution order for the storage root: argument, CLIP_QA_DATA_DIR,
    ~/.clip-qa/data. Settings are then read from <data_dir>/config.json
    if present, and environment overrides are applied last.

    Args:
        data_dir: Explicit storage root

    Returns:
        Validated AppConfig

    Raises:
        ConfigurationError: If config.json is unreadable or invalid
    """
    if data_dir is None:
        env_dir = os.environ.get(ENV_DATA_DIR)
        data_dir = Path(env_dir) if env_dir else default_data_dir()
    data_dir = Path(data_dir).expanduser().resolve()

    values: dict[str, Any] = {}
    config_path = data_dir / CONFIG_FILENAME
    if config_path.exists():
        try:
            with open(config_path, encoding="utf-8") as f:
                values = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                f"Cannot read config file: {e}", context={"path": str(config_path)}
            ) from e
        if not isinstance(values, dict):
            raise ConfigurationError(
                "Config file must contain a JSON object", context={"path": str(config_path)}
            )

    values.update(_env_overrides())
    values["data_dir"] = data_dir

    ffmpeg_values = dict(values.get("ffmpeg") or {})
    if os.environ.get(ENV_FFMPEG):
        ffmpeg_values["ffmpeg_path"] = os.environ[ENV_FFMPEG]
    if os.environ.get(ENV_FFPROBE):
        ffmpeg_values["ffprobe_path"] = os.environ[ENV_FFPROBE]
    values["ffmpeg"] = ffmpeg_values

    try:
        return AppConfig.model_validate(values)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def save_config(config: AppConfig) -> Path:
    """Persist configuration to <data_dir>/config.json atomically.

    data_dir itself is not written; it is implied by the file location.

    Returns:
        Path to the saved config file
    """
    data = config.model_dump(mode="json", exclude={"data_dir"})
    atomic_write_json(config.config_path, data)
    return config.config_path
