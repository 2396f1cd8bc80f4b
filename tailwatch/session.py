"""
A monitoring session: the pipeline from log files to alerts.

    FileWatcher threads -> Multiplexer channel -> pipeline thread
        (classify, throttle) -> audit worker / delivery worker / subscribers

The pipeline thread is the only one touching the rule set reference and
the throttler. Audit writes and notifier calls run on their own workers,
so a slow transport never holds up reading.
"""

import queue
import threading
import time
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

from tailwatch.audit import AuditSink
from tailwatch.config import Config
from tailwatch.core import Alert, AuditRecord, HealthEvent, LogLine, Notifier, SourceStatus, Suppressed
from tailwatch.dispatcher import DeliveryDispatcher
from tailwatch.logging_config import get_logger
from tailwatch.matcher import RuleSet, classify, compile_rules
from tailwatch.multiplexer import Multiplexer
from tailwatch.registry import create_notifier
from tailwatch.throttle import AlertThrottler
from tailwatch.workers import QueueWorker

logger = get_logger(__name__)

AUDIT_SUBMIT_TIMEOUT = 1.0


class AlertSubscription:
    """A bounded stream of emitted alerts for one consumer."""

    def __init__(self, session: "Session", capacity: int) -> None:
        self._session = session
        self.queue: queue.Queue[Alert] = queue.Queue(maxsize=capacity)
        self.dropped = 0
        self.closed = False

    def get(self, timeout: float | None = None) -> Alert | None:
        """Next alert, or None if none arrives within `timeout`."""
        try:
            return self.queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def __iter__(self) -> Iterator[Alert]:
        """Yield alerts until the subscription or its session is closed."""
        while True:
            alert = self.get(timeout=0.1)
            if alert is not None:
                yield alert
            elif self.closed:
                return

    def close(self) -> None:
        """Stop receiving alerts."""
        self._session.unsubscribe(self)

    def offer(self, alert: Alert) -> None:
        try:
            self.queue.put_nowait(alert)
        except queue.Full:
            self.dropped += 1
            logger.warning("Alert subscriber is not keeping up, dropped alert #%d", alert.sequence)


class Session:
    """
    Runs the monitoring pipeline for one configuration.

    Args:
        config: Validated configuration
        notifiers: Transports to use instead of those in `config`
        on_health: Optional callback for every health event

    Raises:
        InvalidPattern: If a configured pattern does not compile
    """

    def __init__(
        self,
        config: Config,
        notifiers: list[Notifier] | None = None,
        on_health: Callable[[HealthEvent], None] | None = None,
    ) -> None:
        self.config = config
        self._rules: RuleSet = compile_rules(config.patterns)
        if notifiers is None:
            notifiers = [create_notifier(n.type, n.config) for n in config.notifiers]
        self.notifiers = notifiers
        self.on_health = on_health

        self.stop_event = threading.Event()
        self.multiplexer = Multiplexer(
            poll_interval=config.poll_interval,
            retry_interval=config.retry_interval,
            channel_capacity=config.channel_capacity,
            source_buffer=config.source_buffer,
            use_file_events=config.use_file_events,
        )
        self.throttler = AlertThrottler(
            window_seconds=config.throttle_window,
            max_per_hour=config.max_alerts_per_hour,
        )
        self.audit_sink = AuditSink(
            Path(config.audit_file),
            memory_limit=config.audit_memory_limit,
            on_health=self.multiplexer.publish_health,
        )
        self.dispatcher = DeliveryDispatcher(
            self.notifiers, self._audit, config.retry_backoff, self.stop_event
        )
        self._audit_worker: QueueWorker[AuditRecord] = QueueWorker(
            "audit", self.audit_sink.record, capacity=config.channel_capacity
        )
        self._delivery_worker: QueueWorker[Alert] = QueueWorker(
            "delivery", self.dispatcher.deliver, capacity=config.channel_capacity
        )

        self._subscribers: list[AlertSubscription] = []
        self._subscribers_lock = threading.Lock()
        self._pipeline: threading.Thread | None = None
        self._pipeline_stop = threading.Event()
        self._deadline = 0.0

        self.observed = 0
        self.audit_lost = 0
        self.shutdown_lost = 0
        self.running = False

    # Session interface

    def start(self) -> "Session":
        """
        Start monitoring.

        Raises:
            NoReadableSources: If no configured source can be read now
        """
        if self.running:
            raise RuntimeError("Session already started")

        self.multiplexer.start(self.config.sources)

        self._audit_worker.start()
        self._delivery_worker.start()
        self._pipeline = threading.Thread(target=self._run, name="tailwatch-pipeline", daemon=True)
        self._pipeline.start()
        self.running = True

        logger.info("===== Log monitor started =====")
        logger.info("Patterns: %s", "|".join(self._rules.patterns))
        logger.info("Audit trail: %s", self.config.audit_file)
        if not self.notifiers:
            logger.warning("No notifiers configured; alerts go to the audit trail only")
        return self

    def stop(self, timeout: float | None = None) -> None:
        """
        Stop monitoring gracefully.

        Lines already read are matched and audited before the workers
        exit. Whatever is left when `timeout` (default: shutdown_timeout)
        runs out is discarded and logged.
        """
        if not self.running:
            return
        timeout = self.config.shutdown_timeout if timeout is None else timeout
        self._deadline = time.monotonic() + timeout

        # Aborts delivery retries in flight.
        self.stop_event.set()

        self.multiplexer.stop(timeout=self._remaining())
        self._pipeline_stop.set()
        if self._pipeline:
            self._pipeline.join(timeout=self._remaining() + 1.0)

        lines_left = self.multiplexer.lines.qsize()
        alerts_left = self._delivery_worker.stop(timeout=self._remaining())
        records_left = self._audit_worker.stop(timeout=self._remaining() + 1.0)
        self.audit_sink.close()

        with self._subscribers_lock:
            for subscription in self._subscribers:
                subscription.closed = True
            self._subscribers.clear()

        self.running = False
        lost = lines_left + alerts_left + records_left + self.multiplexer.dropped
        self.shutdown_lost = lost
        if lost:
            logger.warning(
                "Lossy shutdown: %d unprocessed line(s), %d undelivered alert(s), "
                "%d unwritten audit record(s), %d dropped line(s)",
                lines_left, alerts_left, records_left, self.multiplexer.dropped
            )
        logger.info("===== Log monitor stopped =====")

    def health(self) -> list[SourceStatus]:
        """Per-source status."""
        return self.multiplexer.health()

    @property
    def audit_degraded(self) -> bool:
        """True while audit records are being held in memory."""
        return self.audit_sink.degraded

    @property
    def rules(self) -> RuleSet:
        return self._rules

    def stats(self) -> dict[str, Any]:
        """Counters for the whole session."""
        return {
            "observed": self.observed,
            "alerts": self.throttler.emitted,
            "suppressed": self.throttler.suppressed,
            "delivered": self.dispatcher.delivered,
            "delivery_failed": self.dispatcher.failed,
            "dropped_lines": self.multiplexer.dropped,
            "audit_lost": self.audit_lost + self.audit_sink.lost,
            "audit_degraded": self.audit_sink.degraded,
            "shutdown_lost": self.shutdown_lost,
        }

    def subscribe(self, capacity: int = 100) -> AlertSubscription:
        """Receive every emitted alert on a bounded queue."""
        subscription = AlertSubscription(self, capacity)
        with self._subscribers_lock:
            self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: AlertSubscription) -> None:
        with self._subscribers_lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)
        subscription.closed = True

    def add_source(self, path: str | Path) -> bool:
        """Watch another file without disturbing running watchers."""
        return self.multiplexer.add_source(path)

    def remove_source(self, path: str | Path) -> bool:
        """Stop watching a file."""
        return self.multiplexer.remove_source(path)

    def restart_source(self, path: str | Path) -> bool:
        """Start watching a file again after its worker gave up."""
        return self.multiplexer.restart_source(path)

    def reload_patterns(self, patterns: list[str]) -> RuleSet:
        """
        Replace the rule set.

        Raises:
            InvalidPattern: The old rule set stays in effect
        """
        rules = compile_rules(patterns)
        self._rules = rules
        logger.info("Reloaded patterns: %s", "|".join(rules.patterns))
        return rules

    def __enter__(self) -> "Session":
        return self.start()

    def __exit__(self, *_exc: object) -> None:
        self.stop()

    # Pipeline

    def _remaining(self) -> float:
        return max(self._deadline - time.monotonic(), 0.0)

    def _run(self) -> None:
        while not self._pipeline_stop.is_set():
            self._handle_health()
            line = self.multiplexer.next_line(timeout=0.1)
            if line is not None:
                self._process(line)

        # Drain what the watchers handed over before stopping.
        while time.monotonic() < self._deadline:
            line = self.multiplexer.next_line(timeout=0)
            if line is None:
                break
            self._process(line)
        self._handle_health()

    def _process(self, line: LogLine) -> None:
        try:
            self.observed += 1
            self._audit(AuditRecord.observation(line))

            rule = classify(line, self._rules)
            if rule is None:
                return

            verdict = self.throttler.admit(line, rule)
            if isinstance(verdict, Suppressed):
                self._audit(AuditRecord.suppressed(verdict))
                return

            logger.warning("ALERT #%d [%s] %s: %s", verdict.sequence, rule, line.source, line.text)
            self._audit(AuditRecord.alert(verdict))
            if self.notifiers and not self._delivery_worker.submit(verdict):
                logger.error("Delivery queue full, alert #%d not delivered", verdict.sequence)
                self._audit(AuditRecord.delivery_failed(verdict, "dispatch queue full"))
            self._publish(verdict)
        except Exception:  # pylint: disable=broad-exception-caught
            logger.error("Failed to process line from %s", line.source, exc_info=True)

    def _handle_health(self) -> None:
        while True:
            try:
                event = self.multiplexer.health_events.get_nowait()
            except queue.Empty:
                return
            self._audit(AuditRecord.health(event))
            if self.on_health is not None:
                try:
                    self.on_health(event)
                except Exception:  # pylint: disable=broad-exception-caught
                    logger.error("Health callback failed", exc_info=True)

    def _publish(self, alert: Alert) -> None:
        with self._subscribers_lock:
            subscribers = list(self._subscribers)
        for subscription in subscribers:
            subscription.offer(alert)

    def _audit(self, record: AuditRecord) -> None:
        if not self._audit_worker.submit(record, timeout=AUDIT_SUBMIT_TIMEOUT):
            self.audit_lost += 1
            logger.error("Audit queue full, dropped %s record from %s", record.kind.value, record.source)


def start_session(
    config: Config,
    notifiers: list[Notifier] | None = None,
    on_health: Callable[[HealthEvent], None] | None = None,
) -> Session:
    """
    Create and start a session.

    Raises:
        InvalidPattern: If a pattern does not compile
        NoReadableSources: If no configured source can be read now
    """
    return Session(config, notifiers=notifiers, on_health=on_health).start()


def stop_session(session: Session, timeout: float | None = None) -> None:
    """Stop a session started with start_session()."""
    session.stop(timeout)
