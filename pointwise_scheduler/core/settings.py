"""Scheduler settings with environment variable and YAML support."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .calendar_math import is_valid_time_zone

logger = logging.getLogger(__name__)

ENV_PREFIX = "POINTWISE_"

# Optional top-level section holding scheduler keys in a shared config file
YAML_SECTION = "scheduler"

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class SchedulerSettings(BaseSettings):
    """Scheduler settings.

    Every field can be set through a ``POINTWISE_<FIELD>`` environment
    variable, e.g. ``POINTWISE_DEFAULT_TIMEZONE=Europe/Berlin``.
    """

    # Time handling
    default_timezone: str = Field(
        default="UTC", description="Zone used for templates created without one"
    )
    default_locale: str = Field(default="en-US", description="Locale for schedule labels")

    # Storage
    store_path: Optional[Path] = Field(
        default=None, description="JSON series store file; in-memory store when unset"
    )

    # Logging
    log_level: str = Field(default="WARNING", description="Root log level")
    debug: bool = Field(default=False, description="Force DEBUG logging")

    # Buffer windows for materialize_upcoming, per frequency
    upcoming_days: int = Field(default=30, ge=1, description="Daily series window in days")
    upcoming_weeks: int = Field(default=12, ge=1, description="Weekly series window in weeks")
    upcoming_months: int = Field(default=12, ge=1, description="Monthly series window in months")

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("default_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Reject identifiers the IANA database does not know."""
        if not is_valid_time_zone(v):
            raise ValueError(f"Unknown time zone: {v!r}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and check the log level name."""
        level = v.upper()
        if level not in VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(VALID_LOG_LEVELS)}")
        return level


def _read_yaml_config(config_file: Path) -> dict[str, Any]:
    """Read scheduler keys from a YAML file.

    Keys may live under a ``scheduler:`` section or at the top level. A
    missing or unreadable file yields no values so that defaults and
    environment variables still apply.
    """
    if not config_file.exists():
        logger.warning("Config file not found, using defaults: %s", config_file)
        return {}

    try:
        with config_file.open(encoding="utf-8") as f:
            config_data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Could not load YAML config from %s: %s", config_file, e)
        return {}

    if not isinstance(config_data, dict):
        return {}

    section = config_data.get(YAML_SECTION)
    if isinstance(section, dict):
        config_data = section

    known = set(SchedulerSettings.model_fields)
    unknown = sorted(k for k in config_data if k not in known)
    if unknown:
        logger.debug("Ignoring unknown config keys in %s: %s", config_file, unknown)
    return {k: v for k, v in config_data.items() if k in known}


def load_settings(
    config_file: Optional[Union[str, Path]] = None, **overrides: Any
) -> SchedulerSettings:
    """Build settings from YAML, environment and explicit overrides.

    Precedence, lowest first: field defaults, YAML file, ``POINTWISE_*``
    environment variables, ``overrides``.

    Args:
        config_file: Optional YAML file
        **overrides: Field values that win over every other source

    Returns:
        SchedulerSettings instance
    """
    yaml_values = _read_yaml_config(Path(config_file)) if config_file is not None else {}

    # Init kwargs outrank the environment in pydantic-settings, so drop YAML
    # values the environment already provides.
    env_keys = {
        key[len(ENV_PREFIX) :].lower()
        for key in os.environ
        if key.upper().startswith(ENV_PREFIX)
    }
    values = {k: v for k, v in yaml_values.items() if k not in env_keys}
    values.update(overrides)

    settings = SchedulerSettings(**values)
    logger.debug(
        "Loaded settings (config_file=%s, timezone=%s, store=%s)",
        config_file,
        settings.default_timezone,
        settings.store_path,
    )
    return settings


# Global settings management
_settings_instance: Optional[SchedulerSettings] = None


def get_settings() -> SchedulerSettings:
    """Get the process-wide settings, creating them from the environment on first use."""
    if globals()["_settings_instance"] is None:
        globals()["_settings_instance"] = load_settings()
    return globals()["_settings_instance"]


def reset_settings() -> None:
    """Reset the process-wide settings (primarily for testing)."""
    globals()["_settings_instance"] = None
