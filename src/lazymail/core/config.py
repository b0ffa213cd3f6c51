"""Application settings models and environment loader utilities."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, cast

from dotenv import dotenv_values
from pydantic import BaseModel, Field, field_validator, model_validator

LOGGER = logging.getLogger(__name__)

DEFAULT_ENCRYPTION_KEY = "default-key-change-in-production"


class ServerSettings(BaseModel):
    """Settings for the management API server."""

    host: str = Field(default="127.0.0.1", description="Bind address")
    port: int = Field(default=3000, gt=0, le=65535, description="Bind port")


class SecuritySettings(BaseModel):
    """Secrets used to protect the stored configuration."""

    encryption_key: str | None = Field(
        default=None, description="Passphrase for encrypting stored configuration"
    )


class StorageSettings(BaseModel):
    """Settings for local persistence."""

    db_path: Path = Field(
        default=Path("./data/lazymail.db"), description="SQLite database path"
    )


class LoggingSettings(BaseModel):
    """Logging preferences."""

    level: str = Field(default="INFO", description="Root logging level")
    structured: bool = Field(
        default=False, description="Toggle JSON structured logging"
    )


class MonitorSettings(BaseModel):
    """Startup behaviour of the inbox monitor."""

    auto_start: bool = Field(
        default=True, description="Start polling when the server starts"
    )
    restore_pending: bool = Field(
        default=False,
        description="Re-queue stored pending replies for confirmation on startup",
    )


def _split_list(value: Any) -> Any:
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


class EmailOverrides(BaseModel):
    """Optional transport values that take precedence over stored config."""

    imap_host: str | None = None
    imap_port: int | None = Field(default=None, gt=0, le=65535)
    smtp_host: str | None = None
    smtp_port: int | None = Field(default=None, gt=0, le=65535)
    username: str | None = None
    password: str | None = None


class FilterOverrides(BaseModel):
    """Optional filter values that take precedence over stored config."""

    keywords_enabled: bool | None = None
    keywords: list[str] | None = None
    excluded_domains: list[str] | None = None

    split_lists = field_validator("keywords", "excluded_domains", mode="before")(
        _split_list
    )


class AutoReplyOverrides(BaseModel):
    """Optional reply values that take precedence over stored config."""

    manual_confirmation: bool | None = None
    reply_template: str | None = None
    check_interval: int | None = Field(default=None, gt=0)


class ConfigOverrides(BaseModel):
    """Environment overrides applied on top of the stored configuration."""

    email: EmailOverrides = Field(default_factory=EmailOverrides)
    filters: FilterOverrides = Field(default_factory=FilterOverrides)
    auto_reply: AutoReplyOverrides = Field(default_factory=AutoReplyOverrides)

    def as_update(self) -> dict[str, dict[str, Any]]:
        """Return the overrides as a partial configuration update."""
        update: dict[str, dict[str, Any]] = {}
        for section in ("email", "filters", "auto_reply"):
            values = getattr(self, section).model_dump(exclude_none=True)
            if values:
                update[section] = values
        return update


class AppSettings(BaseModel):
    """Aggregated application configuration."""

    environment: Literal["development", "production"] = "development"
    server: ServerSettings = Field(default_factory=ServerSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    monitor: MonitorSettings = Field(default_factory=MonitorSettings)
    overrides: ConfigOverrides = Field(default_factory=ConfigOverrides)

    @model_validator(mode="after")
    def _require_key_in_production(self) -> AppSettings:
        if self.environment == "production" and not self.security.encryption_key:
            raise ValueError(
                "security.encryption_key is required in the production environment"
            )
        return self

    @property
    def encryption_key(self) -> str:
        """Return the configured key, falling back to the development default."""
        key = self.security.encryption_key
        if key:
            return key
        LOGGER.warning(
            "No encryption key configured; using the development default key"
        )
        return DEFAULT_ENCRYPTION_KEY


ENV_PREFIX = "LAZYMAIL_"


def _normalize_key(raw_key: str) -> list[str]:
    """Convert an environment variable key into a nested attribute path."""
    trimmed = raw_key.removeprefix(ENV_PREFIX)
    return [segment.lower() for segment in trimmed.split("__") if segment]


def _merge_into_tree(tree: dict[str, Any], path: list[str], value: Any) -> None:
    """Assign a value to a nested dictionary given a path."""
    cursor = tree
    for segment in path[:-1]:
        next_node = cursor.setdefault(segment, {})
        cursor = cast(dict[str, Any], next_node)
    cursor[path[-1]] = value


def _collect_env_values(
    env_file: Path | str | None, *, include_environment: bool = True
) -> dict[str, Any]:
    """Load configuration values from environment variables and optional file."""
    collected: dict[str, Any] = {}

    file_values = {}
    if env_file:
        env_path = Path(env_file)
        if env_path.is_file():
            file_values = {
                key: value
                for key, value in dotenv_values(env_path).items()
                if key and key.startswith(ENV_PREFIX)
            }

    env_values = (
        {key: value for key, value in os.environ.items() if key.startswith(ENV_PREFIX)}
        if include_environment
        else {}
    )

    combined: dict[str, Any] = {**file_values, **env_values}

    for key, value in combined.items():
        path = _normalize_key(key)
        if not path:
            continue
        normalized_value: Any = value
        if isinstance(value, str) and value == "":
            normalized_value = None
        elif isinstance(value, str):
            lowercase_value = value.lower()
            if lowercase_value == "true":
                normalized_value = True
            elif lowercase_value == "false":
                normalized_value = False
        _merge_into_tree(collected, path, normalized_value)

    return collected


@lru_cache(maxsize=1)
def load_app_settings(
    env_file: Path | str | None = None,
    *,
    include_environment: bool = True,
    **overrides: Any,
) -> AppSettings:
    """Load application settings, applying env files and overrides."""
    collected = _collect_env_values(env_file, include_environment=include_environment)
    if overrides:
        collected.update(overrides)
    return AppSettings.model_validate(collected)


__all__ = [
    "AppSettings",
    "AutoReplyOverrides",
    "ConfigOverrides",
    "DEFAULT_ENCRYPTION_KEY",
    "EmailOverrides",
    "FilterOverrides",
    "LoggingSettings",
    "MonitorSettings",
    "SecuritySettings",
    "ServerSettings",
    "StorageSettings",
    "load_app_settings",
]
