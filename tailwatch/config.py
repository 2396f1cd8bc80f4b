"""
Configuration loading and validation for Tailwatch.
"""

import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from tailwatch.matcher import DEFAULT_PATTERNS, compile_rules

DEFAULT_SOURCES: tuple[str, ...] = (
    "/var/log/syslog",
    "/var/log/auth.log",
    "/var/log/kern.log",
)

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: Any) -> float:
    """
    Parse a duration into seconds.

    Accepts a number of seconds or a string such as "500ms", "30s",
    "5m" or "1h". A bare numeric string is taken as seconds.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        match = _DURATION_RE.match(value)
        if match:
            number, unit = match.groups()
            return float(number) * _DURATION_UNITS[unit or "s"]
    raise ValueError(f"Invalid duration: {value!r}")


class RetryBackoffConfig(BaseModel):
    """Retry policy for notification delivery."""
    initial: float = Field(1.0, ge=0)
    max: float = Field(30.0, ge=0)
    max_attempts: int = Field(3, ge=1)

    @field_validator("initial", "max", mode="before")
    @classmethod
    def _parse_duration(cls, value: Any) -> float:
        return parse_duration(value)


class NotifierConfig(BaseModel):
    """Configuration for a notification transport."""
    type: str  # "console", "desktop", "pushover", "webhook"
    config: dict[str, Any] = Field(default_factory=dict)  # Type-specific configuration


class Config(BaseModel):
    """Main configuration for Tailwatch."""
    sources: list[str] = Field(default_factory=lambda: list(DEFAULT_SOURCES))
    patterns: list[str] = Field(default_factory=lambda: list(DEFAULT_PATTERNS))
    throttle_window: float = Field(60.0, ge=0)
    poll_interval: float = Field(1.0, gt=0)
    retry_interval: float = Field(5.0, gt=0)  # Wait between attempts to open a missing source
    retry_backoff: RetryBackoffConfig = Field(default_factory=RetryBackoffConfig)
    max_alerts_per_hour: int = Field(0, ge=0)  # 0 = unlimited
    channel_capacity: int = Field(1000, ge=1)
    source_buffer: int = Field(1000, ge=1)
    shutdown_timeout: float = Field(5.0, ge=0)
    use_file_events: bool = True
    audit_file: str = "/var/lib/tailwatch/audit.log"
    audit_memory_limit: int = Field(10000, ge=1)
    notifiers: list[NotifierConfig] = Field(default_factory=list)

    @field_validator(
        "throttle_window", "poll_interval", "retry_interval", "shutdown_timeout",
        mode="before"
    )
    @classmethod
    def _parse_duration(cls, value: Any) -> float:
        return parse_duration(value)


def load_config(config_path: str | Path) -> Config:
    """
    Load and validate configuration from YAML file.

    Source paths are not checked here since files may appear later.
    Patterns are compiled so a bad one fails the load instead of
    surfacing mid-session.

    Args:
        config_path: Path to the YAML configuration file

    Returns:
        Validated Config object

    Raises:
        FileNotFoundError: If config file doesn't exist
        InvalidPattern: If a pattern fails to compile
        ValueError: If config is invalid
        yaml.YAMLError: If YAML parsing fails
    """
    path = Path(config_path)

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with path.open('r', encoding='utf-8') as f:
        raw_config: dict[str, Any] | None = yaml.safe_load(f)

    try:
        config = Config.model_validate(raw_config or {})
    except ValidationError as e:
        raise ValueError(f"Configuration validation error: {e}") from e

    compile_rules(config.patterns)
    return config
