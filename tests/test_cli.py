"""
Tests for the tailwatch command line interface.
"""

from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest

from tailwatch.audit import AuditSink
from tailwatch.cli import build_parser, main
from tailwatch.core import Alert, AuditRecord, LogLine


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    present = tmp_path / "present.log"
    present.write_text("")
    path = tmp_path / "config.yaml"
    path.write_text(f"""
sources:
  - {present}
  - {tmp_path / "absent.log"}
patterns: [error, denied]
audit_file: {tmp_path / "audit.log"}
notifiers:
  - type: console
""")
    return path


def test_parser_defaults() -> None:
    """The alerts command shows the last 20 alerts by default."""
    args = build_parser().parse_args(["alerts"])

    assert args.config == "config.yaml"
    assert args.count == 20
    assert args.all is False


class TestConfigValidate:
    """Tests for `tailwatch config validate`."""

    def test_valid(self, config_file: Path, capsys: Any) -> None:
        """Test a valid configuration summary."""
        assert main(["-c", str(config_file), "config", "validate"]) == 0

        out = capsys.readouterr().out
        assert "✓ Configuration valid" in out
        assert "2 source(s) configured" in out
        assert "2 pattern(s): error|denied" in out

    def test_missing_file(self, tmp_path: Path, capsys: Any) -> None:
        """Test a config path that does not exist."""
        assert main(["-c", str(tmp_path / "nope.yaml"), "config", "validate"]) == 1

        assert "Config file not found" in capsys.readouterr().err

    def test_invalid_pattern(self, tmp_path: Path, capsys: Any) -> None:
        """Test that a bad pattern is reported."""
        path = tmp_path / "config.yaml"
        path.write_text('patterns: ["(oops"]\n')

        assert main(["-c", str(path), "config", "validate"]) == 1

        assert "Invalid pattern" in capsys.readouterr().err


class TestSources:
    """Tests for `tailwatch sources`."""

    def test_lists_readability(self, config_file: Path, tmp_path: Path, capsys: Any) -> None:
        """Test that each source is marked readable or not."""
        assert main(["-c", str(config_file), "sources"]) == 0

        out = capsys.readouterr().out
        assert f"✓ {tmp_path / 'present.log'}" in out
        assert f"✗ {tmp_path / 'absent.log'} (file not found)" in out
        assert "1/2 source(s) readable" in out


class TestAlerts:
    """Tests for `tailwatch alerts`."""

    def test_no_audit_file(self, config_file: Path, capsys: Any) -> None:
        """Test output before anything was recorded."""
        assert main(["-c", str(config_file), "alerts"]) == 0

        assert "No alerts logged yet." in capsys.readouterr().out

    def test_shows_last_alerts(self, config_file: Path, tmp_path: Path, capsys: Any) -> None:
        """Test that alerts and delivery failures are listed, most recent last."""
        line = LogLine(source="/var/log/auth.log", text="denied login")
        sink = AuditSink(tmp_path / "audit.log")
        sink.record(AuditRecord.observation(line))
        for sequence in (1, 2, 3):
            sink.record(AuditRecord.alert(Alert(line=line, rule="denied", sequence=sequence)))
        sink.record(AuditRecord.delivery_failed(
            Alert(line=line, rule="denied", sequence=3), "ConsoleNotifier: aborted"
        ))
        sink.close()

        assert main(["-c", str(config_file), "alerts", "-n", "2"]) == 0

        out = capsys.readouterr().out
        assert "ALERT #3 [denied] /var/log/auth.log: denied login" in out
        assert "DELIVERY_FAILED #3" in out
        assert "ConsoleNotifier: aborted" in out
        assert "ALERT #2" not in out
        assert "OBSERVATION" not in out

    def test_all_kinds(self, config_file: Path, tmp_path: Path, capsys: Any) -> None:
        """Test --all includes observations."""
        sink = AuditSink(tmp_path / "audit.log")
        sink.record(AuditRecord.observation(LogLine(source="/var/log/syslog", text="hello")))
        sink.close()

        assert main(["-c", str(config_file), "alerts", "--all"]) == 0

        assert "OBSERVATION /var/log/syslog: hello" in capsys.readouterr().out


class TestNotify:
    """Tests for `tailwatch notify`."""

    def test_sends_through_console(self, config_file: Path, capsys: Any) -> None:
        """Test a test notification through the configured console notifier."""
        assert main(["-c", str(config_file), "notify", "Test", "hello there"]) == 0

        out = capsys.readouterr().out
        assert "ALERT → Test | hello there" in out
        assert "Sent to 1/1 notifier(s)" in out

    def test_no_notifiers(self, tmp_path: Path, capsys: Any) -> None:
        """Test that notify needs at least one notifier."""
        path = tmp_path / "config.yaml"
        path.write_text("patterns: [error]\n")

        assert main(["-c", str(path), "notify", "Test", "body"]) == 1

        assert "No notifiers configured" in capsys.readouterr().err

    def test_failing_notifier(self, tmp_path: Path, capsys: Any) -> None:
        """Test that a failing transport is reported."""
        path = tmp_path / "config.yaml"
        path.write_text("notifiers:\n  - type: desktop\n")

        with patch('shutil.which', return_value=None):
            assert main(["-c", str(path), "notify", "Test", "body"]) == 1

        assert "✗ desktop" in capsys.readouterr().out


def test_no_command_prints_help(capsys: Any) -> None:
    """Running without a command shows usage."""
    assert main([]) == 0

    assert "usage:" in capsys.readouterr().out
