"""
Tests for alert delivery with retries.
"""

import threading
import time
from datetime import datetime

import pytest
from conftest import RecordingNotifier

from tailwatch.config import RetryBackoffConfig
from tailwatch.core import Alert, AuditRecord, LogLine, RecordKind
from tailwatch.dispatcher import ALERT_TITLE, DeliveryDispatcher, format_alert


@pytest.fixture
def alert() -> Alert:
    line = LogLine(
        source="/var/log/auth.log",
        text="Failed password for root",
        timestamp=datetime(2024, 5, 1, 9, 5, 7),
    )
    return Alert(line=line, rule="fail", sequence=7)


def no_wait(max_attempts: int = 3) -> RetryBackoffConfig:
    return RetryBackoffConfig(initial=0, max=0, max_attempts=max_attempts)


class TestFormatAlert:
    """Tests for the notification text."""

    def test_title_and_body(self, alert: Alert) -> None:
        """Test the title names the rule and the body the line."""
        title, body = format_alert(alert)

        assert title == f"{ALERT_TITLE}: fail"
        assert body == "[09:05:07] /var/log/auth.log: Failed password for root"

    def test_repeats_mentioned(self, alert: Alert) -> None:
        """Test that suppressed repeats are summarized in the body."""
        repeated = Alert(line=alert.line, rule=alert.rule, sequence=8, repeats=3)

        _, body = format_alert(repeated)

        assert body.endswith("(3 similar suppressed)")


class TestDeliveryDispatcher:
    """Tests for DeliveryDispatcher.deliver()."""

    def test_delivers_to_every_notifier(self, alert: Alert) -> None:
        """Test the happy path."""
        first, second = RecordingNotifier(), RecordingNotifier()
        audited: list[AuditRecord] = []
        dispatcher = DeliveryDispatcher([first, second], audited.append, no_wait())

        assert dispatcher.deliver(alert) is True

        assert first.calls == [format_alert(alert)]
        assert second.calls == [format_alert(alert)]
        assert dispatcher.delivered == 1
        assert audited == []

    def test_retries_until_success(self, alert: Alert) -> None:
        """Test that a transient failure is retried."""
        notifier = RecordingNotifier([False, ConnectionError("reset"), True])
        audited: list[AuditRecord] = []
        dispatcher = DeliveryDispatcher([notifier], audited.append, no_wait(3))

        assert dispatcher.deliver(alert) is True

        assert len(notifier.calls) == 3
        assert audited == []

    def test_exhausted_retries_audited(self, alert: Alert) -> None:
        """Test that a notifier failing every attempt yields a delivery_failed record."""
        notifier = RecordingNotifier([False, False])
        audited: list[AuditRecord] = []
        dispatcher = DeliveryDispatcher([notifier], audited.append, no_wait(2))

        assert dispatcher.deliver(alert) is False

        assert len(notifier.calls) == 2
        assert dispatcher.failed == 1
        assert dispatcher.delivered == 0
        assert len(audited) == 1
        record = audited[0]
        assert record.kind is RecordKind.DELIVERY_FAILED
        assert record.sequence == 7
        assert record.matched_rule == "fail"
        assert record.detail == "RecordingNotifier: notifier reported failure"

    def test_exception_reason_recorded(self, alert: Alert) -> None:
        """Test that an exception from the transport is a failure, not a crash."""
        notifier = RecordingNotifier([RuntimeError("smtp down")])
        audited: list[AuditRecord] = []
        dispatcher = DeliveryDispatcher([notifier], audited.append, no_wait(1))

        assert dispatcher.deliver(alert) is False

        assert audited[0].detail == "RecordingNotifier: smtp down"

    def test_one_failing_notifier_does_not_block_others(self, alert: Alert) -> None:
        """Test that the remaining notifiers still get the alert."""
        broken = RecordingNotifier([False])
        working = RecordingNotifier()
        audited: list[AuditRecord] = []
        dispatcher = DeliveryDispatcher([broken, working], audited.append, no_wait(1))

        assert dispatcher.deliver(alert) is False

        assert working.calls == [format_alert(alert)]
        assert len(audited) == 1

    def test_stop_event_aborts_retries(self, alert: Alert) -> None:
        """Test that shutdown cuts the retry wait short."""
        notifier = RecordingNotifier([False, False, False])
        audited: list[AuditRecord] = []
        stop_event = threading.Event()
        stop_event.set()
        backoff = RetryBackoffConfig(initial=30, max=30, max_attempts=3)
        dispatcher = DeliveryDispatcher([notifier], audited.append, backoff, stop_event)

        assert dispatcher.deliver(alert) is False

        assert len(notifier.calls) == 1
        assert audited[0].detail == "RecordingNotifier: aborted"

    def test_stop_during_backoff_wait_aborts(self, alert: Alert) -> None:
        """Test that setting the stop event wakes a long retry wait."""
        notifier = RecordingNotifier([False, False, False])
        audited: list[AuditRecord] = []
        stop_event = threading.Event()
        backoff = RetryBackoffConfig(initial=30, max=30, max_attempts=3)
        dispatcher = DeliveryDispatcher([notifier], audited.append, backoff, stop_event)
        timer = threading.Timer(0.1, stop_event.set)
        timer.start()

        started = time.monotonic()
        assert dispatcher.deliver(alert) is False
        timer.join()

        assert time.monotonic() - started < 5
        assert len(notifier.calls) == 1
        assert audited[0].detail == "RecordingNotifier: aborted"


class TestBackoff:
    """Tests for the retry delay schedule."""

    def test_doubles_and_caps(self) -> None:
        """Test exponential growth bounded by max."""
        dispatcher = DeliveryDispatcher([], lambda _r: None, RetryBackoffConfig(initial=1, max=5))

        assert [dispatcher.delay(n) for n in range(1, 6)] == [1, 2, 4, 5, 5]

    def test_durations_parsed(self) -> None:
        """Test that backoff settings accept duration strings."""
        backoff = RetryBackoffConfig(initial="500ms", max="1m", max_attempts=4)

        assert backoff.initial == 0.5
        assert backoff.max == 60.0
