"""
Delivers alerts to notification transports.
"""

import threading
from collections.abc import Callable

from tenacity import (
    Future,
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    stop_when_event_set,
    wait_exponential,
)

from tailwatch.config import RetryBackoffConfig
from tailwatch.core import Alert, AuditRecord, Notifier
from tailwatch.errors import DeliveryFailed
from tailwatch.logging_config import get_logger

logger = get_logger(__name__)

ALERT_TITLE = "Log Monitor Alert"


class _RetryAborted(Exception):
    """Raised when a retry wait is cut short by the stop event."""


def format_alert(alert: Alert) -> tuple[str, str]:
    """Build the (title, body) pair sent to transports."""
    title = f"{ALERT_TITLE}: {alert.rule}"
    body = f"[{alert.line.timestamp:%H:%M:%S}] {alert.source}: {alert.text}"
    if alert.repeats:
        body = f"{body} ({alert.repeats} similar suppressed)"
    return title, body


def _failure_reason(outcome: Future | None) -> str:
    if outcome is None:
        return "unknown error"
    if outcome.failed:
        error = outcome.exception()
        return str(error) or error.__class__.__name__
    return "notifier reported failure"


class DeliveryDispatcher:
    """
    Sends each alert to every notifier, retrying with bounded backoff.

    A notifier that still fails after `max_attempts` gets a
    delivery_failed audit record; the dispatcher then moves on. Retry
    waits end early when `stop_event` is set.

    Args:
        notifiers: Transports to deliver to
        audit: Callable that records an AuditRecord
        backoff: Retry policy
        stop_event: Aborts retries when set
    """

    def __init__(
        self,
        notifiers: list[Notifier],
        audit: Callable[[AuditRecord], object],
        backoff: RetryBackoffConfig | None = None,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.notifiers = notifiers
        self.audit = audit
        self.backoff = backoff or RetryBackoffConfig()
        self.stop_event = stop_event or threading.Event()
        self.wait = wait_exponential(multiplier=self.backoff.initial, max=self.backoff.max)
        self.delivered = 0
        self.failed = 0

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number `attempt` (1-based)."""
        state = RetryCallState(None, None, (), {})  # type: ignore[arg-type]
        state.attempt_number = attempt
        return self.wait(state)

    def deliver(self, alert: Alert) -> bool:
        """
        Deliver an alert to all notifiers.

        Returns:
            True if every notifier accepted it
        """
        title, body = format_alert(alert)
        ok = True
        for notifier in self.notifiers:
            try:
                self._deliver_one(notifier, title, body)
            except DeliveryFailed as e:
                ok = False
                self.failed += 1
                logger.error("Alert #%d not delivered: %s", alert.sequence, e)
                self.audit(AuditRecord.delivery_failed(alert, f"{e.notifier}: {e.reason}"))
        if ok:
            self.delivered += 1
        return ok

    def _sleep(self, seconds: float) -> None:
        if self.stop_event.wait(seconds):
            raise _RetryAborted()

    def _deliver_one(self, notifier: Notifier, title: str, body: str) -> None:
        attempts = self.backoff.max_attempts
        failed: list[int] = []

        def before_sleep(state: RetryCallState) -> None:
            failed.append(state.attempt_number)
            logger.warning(
                "Notifier %s failed attempt %d/%d: %s",
                notifier.name, state.attempt_number, attempts, _failure_reason(state.outcome)
            )

        retrying = Retrying(
            stop=stop_after_attempt(attempts) | stop_when_event_set(self.stop_event),
            wait=self.wait,
            sleep=self._sleep,
            retry=retry_if_result(lambda accepted: not accepted) | retry_if_exception_type(Exception),
            before_sleep=before_sleep,
        )
        try:
            retrying(notifier.notify, title, body)
        except _RetryAborted:
            raise DeliveryFailed(notifier.name, failed[-1], "aborted") from None
        except RetryError as e:
            tried = e.last_attempt.attempt_number
            if tried < attempts and self.stop_event.is_set():
                raise DeliveryFailed(notifier.name, tried, "aborted") from None
            raise DeliveryFailed(notifier.name, tried, _failure_reason(e.last_attempt)) from None
