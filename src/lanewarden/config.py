"""Configuration management for Lanewarden."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated
import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

PERMISSION_MODES = {"default", "acceptEdits", "plan", "bypassPermissions"}


class LanewardenSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    home_dir: Path = Field(default=Path("~/.lanewarden"), validation_alias="LANEWARDEN_HOME")
    host: str = Field(default="127.0.0.1", validation_alias="LANEWARDEN_HOST")
    port: int = Field(default=8888, validation_alias="LANEWARDEN_PORT")
    log_level: str = Field(default="INFO", validation_alias="LANEWARDEN_LOG_LEVEL")
    claude_cli_path: str | None = Field(default=None, validation_alias="CLAUDE_CLI_PATH")
    permission_mode: str = Field(default="default", validation_alias="LANEWARDEN_PERMISSION_MODE")
    session_linger_seconds: float = Field(
        default=300.0, validation_alias="LANEWARDEN_SESSION_LINGER_SECONDS"
    )
    lane_profile_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(Path("lanes"),), validation_alias="LANEWARDEN_LANE_PATHS"
    )
    git_author_name: str = Field(default="lanewarden", validation_alias="LANEWARDEN_GIT_AUTHOR_NAME")
    git_author_email: str = Field(
        default="lanewarden@localhost", validation_alias="LANEWARDEN_GIT_AUTHOR_EMAIL"
    )
    store_retry_attempts: int = Field(default=3, validation_alias="LANEWARDEN_STORE_RETRIES")
    mcp_project_id: str | None = Field(default=None, validation_alias="LANEWARDEN_PROJECT_ID")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "LANEWARDEN_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("permission_mode")
    @classmethod
    def _validate_permission_mode(cls, value: str) -> str:
        normalized = value.strip()
        if normalized not in PERMISSION_MODES:
            raise ValueError(
                f"LANEWARDEN_PERMISSION_MODE must be one of {', '.join(sorted(PERMISSION_MODES))}"
            )
        return normalized

    @field_validator("lane_profile_paths", mode="before")
    @classmethod
    def _parse_lane_profile_paths(cls, value):
        if value is None or value == "":
            return (Path("lanes"),)
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts) or (Path("lanes"),)
        raise TypeError("LANEWARDEN_LANE_PATHS must be a list of paths or a path-separated string")

    @field_validator("session_linger_seconds")
    @classmethod
    def _validate_linger(cls, value: float) -> float:
        if value < 0:
            raise ValueError("LANEWARDEN_SESSION_LINGER_SECONDS must be >= 0")
        return value

    @field_validator("store_retry_attempts")
    @classmethod
    def _validate_store_retry_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("LANEWARDEN_STORE_RETRIES must be >= 1")
        return value


@lru_cache(maxsize=1)
def get_settings() -> LanewardenSettings:
    """Return cached settings instance."""

    settings = LanewardenSettings()
    settings.home_dir = settings.home_dir.expanduser().resolve()
    settings.lane_profile_paths = tuple(
        path.expanduser().resolve() for path in settings.lane_profile_paths
    )
    return settings


__all__ = ["LanewardenSettings", "PERMISSION_MODES", "get_settings"]
