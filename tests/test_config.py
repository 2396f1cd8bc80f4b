"""
Tests for configuration loading and validation.
"""

from pathlib import Path

import pytest
import yaml

from tailwatch.config import DEFAULT_SOURCES, Config, load_config, parse_duration
from tailwatch.errors import InvalidPattern
from tailwatch.matcher import DEFAULT_PATTERNS


class TestLoadConfig:
    """Tests for load_config function."""

    def test_load_valid_config(self, tmp_path: Path) -> None:
        """Test loading a valid configuration file."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text("""
sources:
  - /var/log/syslog
  - /var/log/nginx/error.log
patterns: ["error", "denied", "oom-killer"]
throttle_window: 5m
poll_interval: 500ms
retry_backoff:
  initial: 2s
  max: 1m
  max_attempts: 5
max_alerts_per_hour: 30
audit_file: /tmp/tailwatch-audit.log

notifiers:
  - type: "pushover"
    config:
      user_key: "test_user_key"
      api_token: "test_api_token"
  - type: "console"
""")

        config = load_config(config_file)

        assert config.sources == ["/var/log/syslog", "/var/log/nginx/error.log"]
        assert config.patterns == ["error", "denied", "oom-killer"]
        assert config.throttle_window == 300.0
        assert config.poll_interval == 0.5
        assert config.retry_backoff.initial == 2.0
        assert config.retry_backoff.max == 60.0
        assert config.retry_backoff.max_attempts == 5
        assert config.max_alerts_per_hour == 30
        assert config.audit_file == "/tmp/tailwatch-audit.log"
        assert [n.type for n in config.notifiers] == ["pushover", "console"]
        assert config.notifiers[0].config["user_key"] == "test_user_key"
        assert config.notifiers[1].config == {}

    def test_defaults(self, tmp_path: Path) -> None:
        """Test that an empty file gives the default configuration."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text("")

        config = load_config(config_file)

        assert config.sources == list(DEFAULT_SOURCES)
        assert config.patterns == list(DEFAULT_PATTERNS)
        assert config.throttle_window == 60.0
        assert config.poll_interval == 1.0
        assert config.retry_backoff.max_attempts == 3
        assert config.max_alerts_per_hour == 0
        assert config.use_file_events is True
        assert config.notifiers == []

    def test_missing_sources_are_allowed(self, tmp_path: Path) -> None:
        """Test that source paths are not checked at load time."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text("sources: [/nonexistent/app.log]\n")

        config = load_config(config_file)

        assert config.sources == ["/nonexistent/app.log"]

    def test_load_missing_file(self) -> None:
        """Test that loading a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_config("/nonexistent/config.yaml")

    def test_load_invalid_yaml(self, tmp_path: Path) -> None:
        """Test that invalid YAML raises an error."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text("invalid: yaml: content: [")

        with pytest.raises(yaml.YAMLError):
            load_config(config_file)

    def test_invalid_pattern_fails_load(self, tmp_path: Path) -> None:
        """Test that a pattern that does not compile is rejected."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text('patterns: ["error", "([unclosed"]\n')

        with pytest.raises(InvalidPattern) as excinfo:
            load_config(config_file)

        assert excinfo.value.pattern == "([unclosed"

    def test_negative_poll_interval(self, tmp_path: Path) -> None:
        """Test that out-of-range values are rejected."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text("poll_interval: -1\n")

        with pytest.raises(ValueError, match="Configuration validation error"):
            load_config(config_file)

    def test_bad_duration(self, tmp_path: Path) -> None:
        """Test that an unparseable duration is rejected."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text("throttle_window: soon\n")

        with pytest.raises(ValueError, match="Configuration validation error"):
            load_config(config_file)

    def test_notifier_without_type(self, tmp_path: Path) -> None:
        """Test that each notifier needs a type."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text("notifiers:\n  - config: {}\n")

        with pytest.raises(ValueError):
            load_config(config_file)


class TestParseDuration:
    """Tests for duration parsing."""

    @pytest.mark.parametrize("value,expected", [
        (30, 30.0),
        (1.5, 1.5),
        ("45", 45.0),
        ("500ms", 0.5),
        ("30s", 30.0),
        ("5m", 300.0),
        ("1h", 3600.0),
        (" 2 m ", 120.0),
    ])
    def test_valid(self, value: object, expected: float) -> None:
        """Test accepted duration forms."""
        assert parse_duration(value) == expected

    @pytest.mark.parametrize("value", ["", "fast", "5d", "-3s", True, None])
    def test_invalid(self, value: object) -> None:
        """Test rejected duration forms."""
        with pytest.raises(ValueError):
            parse_duration(value)


def test_config_accepts_numbers_directly() -> None:
    """Durations given as numbers are seconds."""
    config = Config(throttle_window=0, shutdown_timeout="10s")

    assert config.throttle_window == 0.0
    assert config.shutdown_timeout == 10.0
