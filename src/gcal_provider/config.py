"""Provider configuration loading and validation.

Reads ``gcal-provider.toml`` from a config directory, resolves ``${VAR}``
references against the environment, and returns a validated
``ProviderConfig``.
"""

from __future__ import annotations

import os
import re
import tomllib
from pathlib import Path
from typing import Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

CONFIG_FILE_NAME = "gcal-provider.toml"

# Task "updatedMin" floors older than this are discarded and force a full resync.
DEFAULT_TASKS_FRESHNESS_DAYS = 7
DEFAULT_IDLE_DETECTION_SECONDS = 300
DEFAULT_EVENTS_PAGE_SIZE = 1000
DEFAULT_TASKS_PAGE_SIZE = 100
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0
DEFAULT_RATE_LIMIT_MAX_RETRIES = 3

_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(Exception):
    """The provider config file is absent, unparsable or fails validation."""


class LoggingConfig(BaseModel):
    """Logging configuration from the [provider.logging] section."""

    model_config = ConfigDict(extra="forbid")

    level: str = "INFO"
    format: Literal["text", "json"] = "text"
    log_root: str | None = None

    @field_validator("level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {value!r}")
        return normalized


class ProviderConfig(BaseModel):
    """Validated provider settings with sensible defaults."""

    model_config = ConfigDict(extra="forbid")

    send_event_notifications: bool = False
    idle_detection_seconds: int = Field(default=DEFAULT_IDLE_DETECTION_SECONDS, ge=15)
    tasks_freshness_days: int = Field(default=DEFAULT_TASKS_FRESHNESS_DAYS, ge=1)
    events_page_size: int = Field(default=DEFAULT_EVENTS_PAGE_SIZE, ge=1, le=2500)
    tasks_page_size: int = Field(default=DEFAULT_TASKS_PAGE_SIZE, ge=1, le=100)
    request_timeout_seconds: float = Field(default=DEFAULT_REQUEST_TIMEOUT_SECONDS, gt=0)
    rate_limit_max_retries: int = Field(default=DEFAULT_RATE_LIMIT_MAX_RETRIES, ge=0)
    default_timezone: str = "UTC"
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("default_timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        normalized = value.strip()
        try:
            ZoneInfo(normalized)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone: {value!r}") from exc
        return normalized


def _expand(text: str) -> str:
    unset = sorted({name for name in _ENV_VAR_PATTERN.findall(text) if name not in os.environ})
    if unset:
        raise ConfigError(
            f"Unresolved environment variable(s) {', '.join(unset)} in config value {text!r}"
        )
    return _ENV_VAR_PATTERN.sub(lambda match: os.environ[match.group(1)], text)


def resolve_env_vars(value: Any) -> Any:
    """Expand ``${VAR}`` in every string nested inside *value*."""
    if isinstance(value, str):
        return _expand(value)
    if isinstance(value, dict):
        return {key: resolve_env_vars(item) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]
    return value


def load_config(config_dir: Path) -> ProviderConfig:
    """Load ``gcal-provider.toml`` from *config_dir*.

    Only the ``[provider]`` table is read; when it is absent every setting
    keeps its default.

    Raises
    ------
    ConfigError
        The file is missing, is not valid TOML, or fails validation.
    """
    path = Path(config_dir) / CONFIG_FILE_NAME
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file not found: {path}") from exc

    try:
        document = tomllib.loads(raw)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc

    section = resolve_env_vars(document.get("provider", {}))
    if not isinstance(section, dict):
        raise ConfigError("[provider] must be a TOML table")

    try:
        return ProviderConfig.model_validate(section)
    except ValidationError as exc:
        raise ConfigError(f"Invalid provider config in {path}: {exc}") from exc
