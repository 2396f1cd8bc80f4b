"""
Core data structures and interfaces for Tailwatch.

Values flowing through the pipeline are frozen dataclasses:
- LogLine: one line read from a source
- Alert / Suppressed: the throttler's verdict on a matching line
- HealthEvent: monitoring-health signals kept apart from content
- AuditRecord: one append-only entry of the audit trail

Notifier is the contract for notification transports.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class WatcherState(str, Enum):
    """Lifecycle state of a file watcher."""
    WAITING = "waiting"
    OPEN = "open"
    REOPENING = "reopening"
    STOPPED = "stopped"


class HealthKind(str, Enum):
    """Kinds of monitoring-health events."""
    SOURCE_UNAVAILABLE = "source_unavailable"
    ROTATED = "rotated"
    CHANNEL_OVERFLOW = "channel_overflow"
    AUDIT_WRITE_FAILED = "audit_write_failed"
    AUDIT_RECOVERED = "audit_recovered"


class RecordKind(str, Enum):
    """Kinds of audit records."""
    OBSERVATION = "observation"
    ALERT = "alert"
    SUPPRESSED = "suppressed"
    DELIVERY_FAILED = "delivery_failed"
    HEALTH = "health"


@dataclass(frozen=True)
class LogLine:
    """A single line read from a source."""
    source: str
    text: str
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class Alert:
    """A matching line admitted by the throttler."""
    line: LogLine
    rule: str
    sequence: int
    repeats: int = 0  # suppressed occurrences of the same key since the last emission

    @property
    def source(self) -> str:
        return self.line.source

    @property
    def text(self) -> str:
        return self.line.text


@dataclass(frozen=True)
class Suppressed:
    """A matching line held back by the throttler."""
    line: LogLine
    rule: str
    key: tuple[str, str]
    reason: str  # "duplicate" or "rate_limit"


@dataclass(frozen=True)
class HealthEvent:
    """A structured status signal about monitoring itself."""
    source: str
    kind: HealthKind
    message: str
    timestamp: datetime = field(default_factory=datetime.now)
    count: int | None = None


@dataclass(frozen=True)
class SourceStatus:
    """Point-in-time status of one monitored source."""
    path: str
    state: WatcherState
    offset: int
    size: int | None
    lines_read: int
    rotations: int
    dropped: int
    last_error: str | None


@dataclass(frozen=True)
class AuditRecord:
    """One entry of the audit trail."""
    kind: RecordKind
    source: str
    text: str
    timestamp: datetime = field(default_factory=datetime.now)
    matched_rule: str | None = None
    sequence: int | None = None
    detail: str | None = None

    @classmethod
    def observation(cls, line: LogLine) -> "AuditRecord":
        return cls(RecordKind.OBSERVATION, line.source, line.text, line.timestamp)

    @classmethod
    def alert(cls, alert: Alert) -> "AuditRecord":
        detail = f"repeats={alert.repeats}" if alert.repeats else None
        return cls(
            RecordKind.ALERT, alert.source, alert.text, datetime.now(),
            matched_rule=alert.rule, sequence=alert.sequence, detail=detail
        )

    @classmethod
    def suppressed(cls, suppressed: Suppressed) -> "AuditRecord":
        return cls(
            RecordKind.SUPPRESSED, suppressed.line.source, suppressed.line.text,
            datetime.now(), matched_rule=suppressed.rule, detail=suppressed.reason
        )

    @classmethod
    def delivery_failed(cls, alert: Alert, detail: str) -> "AuditRecord":
        return cls(
            RecordKind.DELIVERY_FAILED, alert.source, alert.text, datetime.now(),
            matched_rule=alert.rule, sequence=alert.sequence, detail=detail
        )

    @classmethod
    def health(cls, event: HealthEvent) -> "AuditRecord":
        detail = event.kind.value
        if event.count is not None:
            detail = f"{detail} count={event.count}"
        return cls(RecordKind.HEALTH, event.source, event.message, event.timestamp, detail=detail)


class Notifier(ABC):
    """
    Base class for all notification transports.

    Transports are fire-and-forget delivery sinks. They may fail or be
    unavailable; the dispatcher retries and records failures, so a
    notifier should report failure rather than retry on its own.
    """

    def __init__(self, config: dict[str, Any]):
        """
        Initialize the notifier with configuration.

        Args:
            config: Type-specific configuration dictionary
        """
        self.config = config

    @property
    def name(self) -> str:
        """Name used in logs and audit records."""
        return self.__class__.__name__

    @abstractmethod
    def notify(self, title: str, body: str) -> bool:
        """
        Send a notification.

        Args:
            title: Short notification title
            body: Notification text

        Returns:
            True if the notification was sent successfully, False otherwise
        """
        raise NotImplementedError
