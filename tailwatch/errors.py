"""
Exception types for Tailwatch.

Only configuration-time errors (InvalidPattern, NoReadableSources) escape
to the caller of a session. The others are raised and caught internally
at the component that owns the failure and surface as health or audit
events.
"""


class TailwatchError(Exception):
    """Base class for all Tailwatch errors."""


class InvalidPattern(TailwatchError, ValueError):
    """A configured pattern could not be compiled."""

    def __init__(self, pattern: str, reason: str) -> None:
        super().__init__(f"Invalid pattern {pattern!r}: {reason}")
        self.pattern = pattern
        self.reason = reason


class NoReadableSources(TailwatchError):
    """The source set is empty or none of its files can be read."""

    def __init__(self, paths: list[str]) -> None:
        if paths:
            message = f"No readable log files found among: {', '.join(paths)}"
        else:
            message = "No log files configured"
        super().__init__(message)
        self.paths = paths


class SourceUnavailable(TailwatchError):
    """A source file is missing or cannot be opened."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class AuditWriteFailed(TailwatchError):
    """The audit store rejected a write."""


class DeliveryFailed(TailwatchError):
    """A notifier failed to deliver an alert after all retries."""

    def __init__(self, notifier: str, attempts: int, reason: str) -> None:
        super().__init__(f"{notifier} failed after {attempts} attempt(s): {reason}")
        self.notifier = notifier
        self.attempts = attempts
        self.reason = reason
