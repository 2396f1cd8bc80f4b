"""
Runs one FileWatcher per source and merges their lines into one stream.

Each source gets its own worker thread that owns the watcher. Workers
push lines into a single bounded queue, so the merged stream is in the
order lines were handed over (first observed, first out). When the
queue is full a worker keeps lines in its own bounded buffer; when that
overflows the oldest lines are dropped, counted, and reported on the
health channel.
"""

import queue
import threading
import time
from collections import deque
from collections.abc import Callable, Iterator
from pathlib import Path

from tailwatch.core import HealthEvent, HealthKind, LogLine, SourceStatus
from tailwatch.errors import NoReadableSources
from tailwatch.file_events import ChangeNotifier
from tailwatch.logging_config import get_logger
from tailwatch.watcher import FileWatcher

logger = get_logger(__name__)

# Restarts granted to a worker that keeps crashing; after that the source
# stays stopped until restart_source() is called.
MAX_RESTARTS = 5


class SourceWorker:
    """Drives one FileWatcher on its own thread and feeds the shared channel."""

    def __init__(  # pylint: disable=too-many-arguments,too-many-positional-arguments
        self,
        watcher: FileWatcher,
        channel: "queue.Queue[LogLine]",
        buffer_size: int,
        on_health: Callable[[HealthEvent], None],
        on_crash: Callable[["SourceWorker"], bool] | None = None,
        start_delay: float = 0.0,
    ) -> None:
        self.watcher = watcher
        self.channel = channel
        self.buffer_size = buffer_size
        self.on_health = on_health
        self.on_crash = on_crash
        self.start_delay = start_delay
        self.pending: deque[LogLine] = deque()
        self.dropped = 0
        self.crashes = 0
        self.thread: threading.Thread | None = None
        self._deadline: float | None = None

    @property
    def path(self) -> str:
        return self.watcher.path

    def start(self) -> None:
        """Start the worker thread."""
        self.thread = threading.Thread(
            target=self._run, name=f"tailwatch-source:{self.path}", daemon=True
        )
        self.thread.start()

    def stop(self, deadline: float) -> None:
        """Ask the worker to flush what it holds until `deadline` (monotonic) and exit."""
        self._deadline = deadline
        self.watcher.stop()

    def join(self, timeout: float) -> None:
        if self.thread:
            self.thread.join(timeout=max(timeout, 0))

    @property
    def running(self) -> bool:
        return self.thread is not None and self.thread.is_alive()

    def _run(self) -> None:
        restarted = False
        try:
            if self.start_delay:
                self.watcher.wait(self.start_delay)
            while not self.watcher.stop_requested:
                self._flush(self.watcher.poll_interval)
                self._accept(self.watcher.poll())
                self.crashes = 0
                if not self.pending and not self.watcher.has_backlog:
                    self.watcher.wait()
            # The first poll after a stop request reads what is left in the file.
            self._accept(self.watcher.poll())
        except Exception as e:  # pylint: disable=broad-exception-caught
            self.crashes += 1
            logger.error("Worker for %s crashed", self.path, exc_info=True)
            self.watcher.close()
            self.on_health(HealthEvent(
                source=self.path,
                kind=HealthKind.SOURCE_UNAVAILABLE,
                message=f"worker for {self.path} crashed: {e}",
            ))
            if self.on_crash is not None:
                restarted = self.on_crash(self)
        finally:
            if not restarted:
                self.watcher.close()
                self._flush_until_deadline()

    def _accept(self, lines: list[LogLine]) -> None:
        overflow = 0
        for line in lines:
            self.pending.append(line)
            if len(self.pending) > self.buffer_size:
                self.pending.popleft()
                overflow += 1
        if overflow:
            self.dropped += overflow
            logger.warning(
                "Channel overflow for %s: dropped %d line(s) (%d total)",
                self.path, overflow, self.dropped
            )
            self.on_health(HealthEvent(
                source=self.path,
                kind=HealthKind.CHANNEL_OVERFLOW,
                message=f"dropped {overflow} line(s) from {self.path}",
                count=overflow,
            ))

    def _flush(self, timeout: float) -> None:
        """Move pending lines into the channel, blocking up to `timeout` for space."""
        while self.pending:
            try:
                self.channel.put(self.pending[0], timeout=timeout)
            except queue.Full:
                return
            self.pending.popleft()

    def _flush_until_deadline(self) -> None:
        if self._deadline is not None:
            deadline = self._deadline
        else:
            deadline = time.monotonic() + self.watcher.poll_interval
        while self.pending:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            self._flush(min(remaining, 0.1))
        if self.pending:
            lost = len(self.pending)
            self.dropped += lost
            logger.warning("Shutdown discarded %d buffered line(s) from %s", lost, self.path)
            self.pending.clear()


class Multiplexer:
    """
    Owns the watchers for a set of sources and exposes one merged stream.

    Args:
        poll_interval: Seconds between polls of each source
        retry_interval: Seconds between attempts to open a missing source
        channel_capacity: Size of the merged line queue
        source_buffer: Lines each source may hold while the queue is full
        use_file_events: Wake watchers on filesystem events via watchdog
    """

    def __init__(  # pylint: disable=too-many-arguments,too-many-positional-arguments
        self,
        poll_interval: float = 1.0,
        retry_interval: float = 5.0,
        channel_capacity: int = 1000,
        source_buffer: int = 1000,
        use_file_events: bool = True,
        health_capacity: int = 1000,
    ) -> None:
        self.poll_interval = poll_interval
        self.retry_interval = retry_interval
        self.source_buffer = source_buffer
        self.lines: queue.Queue[LogLine] = queue.Queue(maxsize=channel_capacity)
        self.health_events: queue.Queue[HealthEvent] = queue.Queue(maxsize=health_capacity)
        self.health_dropped = 0

        self._workers: dict[str, SourceWorker] = {}
        self._retired: list[SourceWorker] = []
        self._lock = threading.Lock()
        self._notifier = ChangeNotifier() if use_file_events else None
        self._stopping = False
        self.restarts = 0
        self.running = False
        self.closed = False

    def start(self, paths: list[str]) -> None:
        """
        Start watching `paths`.

        Raises:
            NoReadableSources: If `paths` is empty or none can be opened now.
                Nothing is left running in that case.
        """
        if self.running:
            raise RuntimeError("Multiplexer already started")

        unique = list(dict.fromkeys(str(p) for p in paths))
        watchers = [self._make_watcher(path) for path in unique]
        readable = [watcher.open() for watcher in watchers]
        if not any(readable):
            for watcher in watchers:
                watcher.close()
            raise NoReadableSources(unique)

        if self._notifier is not None:
            self._notifier.start()
        self.running = True
        with self._lock:
            for watcher in watchers:
                self._start_worker(watcher)

        logger.info(
            "Monitoring %d of %d source(s): %s",
            sum(readable), len(unique), ", ".join(unique)
        )

    def add_source(self, path: str | Path) -> bool:
        """
        Start watching another source while running.

        The source may be missing; it is retried like any other.

        Returns:
            False if the path is already being watched or the multiplexer
            has been stopped
        """
        path = str(path)
        with self._lock:
            if path in self._workers or self._stopping or self.closed:
                return False
            watcher = self._make_watcher(path)
            watcher.open()
            self._start_worker(watcher)
        logger.info("Added source %s", path)
        return True

    def remove_source(self, path: str | Path, timeout: float = 1.0) -> bool:
        """
        Stop watching a source. Lines it already read are still delivered.

        Returns:
            False if the path was not being watched
        """
        path = str(path)
        with self._lock:
            worker = self._workers.pop(path, None)
        if worker is None:
            return False
        if self._notifier is not None:
            self._notifier.unwatch(path, worker.watcher.wake)
        worker.stop(time.monotonic() + timeout)
        worker.join(timeout + self.poll_interval)
        with self._lock:
            self._retired.append(worker)
        logger.info("Removed source %s", path)
        return True

    def restart_source(self, path: str | Path) -> bool:
        """
        Start a new worker for a source whose worker has exited.

        The watcher resumes at its old offset if the file is unchanged,
        and lines its previous worker still held are delivered first.

        Returns:
            False if the path is not watched, its worker is still running,
            or the multiplexer is stopping
        """
        path = str(path)
        with self._lock:
            worker = self._workers.get(path)
        if worker is None or worker.running:
            return False
        worker.crashes = 0
        return self._replace_worker(worker, delay=0.0)

    @property
    def sources(self) -> list[str]:
        with self._lock:
            return list(self._workers)

    def health(self) -> list[SourceStatus]:
        """Status of each source, in registration order."""
        with self._lock:
            workers = list(self._workers.values())
        return [worker.watcher.status(dropped=worker.dropped) for worker in workers]

    @property
    def dropped(self) -> int:
        """Total lines lost to overflow or shutdown across all sources."""
        with self._lock:
            workers = list(self._workers.values()) + self._retired
        return sum(worker.dropped for worker in workers)

    def next_line(self, timeout: float | None = None) -> LogLine | None:
        """Next merged line, or None if nothing arrives within `timeout`."""
        try:
            return self.lines.get(timeout=timeout)
        except queue.Empty:
            return None

    def __iter__(self) -> Iterator[LogLine]:
        """Yield merged lines until stop() has been called and the stream is drained."""
        while True:
            line = self.next_line(timeout=self.poll_interval)
            if line is not None:
                yield line
            elif self.closed:
                return

    def stop(self, timeout: float = 5.0) -> None:
        """
        Stop every watcher. Workers keep flushing buffered lines into the
        channel until `timeout` seconds have passed.
        """
        deadline = time.monotonic() + timeout
        with self._lock:
            self._stopping = True
            workers = list(self._workers.values())
        for worker in workers:
            worker.stop(deadline)
        for worker in workers:
            worker.join(deadline - time.monotonic() + self.poll_interval)
        with self._lock:
            self._retired.extend(self._workers.values())
            self._workers.clear()
        if self._notifier is not None:
            self._notifier.stop()
        self.running = False
        self.closed = True
        logger.info("Stopped monitoring %d source(s)", len(workers))

    def _make_watcher(self, path: str) -> FileWatcher:
        return FileWatcher(
            path,
            poll_interval=self.poll_interval,
            retry_interval=self.retry_interval,
            on_health=self.publish_health,
        )

    def _start_worker(self, watcher: FileWatcher) -> None:
        """Register and start a worker for `watcher`. Caller holds the lock."""
        worker = SourceWorker(
            watcher, self.lines, self.source_buffer, self.publish_health, self._on_worker_crash
        )
        self._workers[watcher.path] = worker
        if self._notifier is not None:
            self._notifier.watch(watcher.path, watcher.wake)
        worker.start()

    def _on_worker_crash(self, worker: SourceWorker) -> bool:
        if worker.crashes > MAX_RESTARTS:
            logger.error(
                "Worker for %s crashed %d times in a row; leaving it stopped",
                worker.path, worker.crashes
            )
            return False
        return self._replace_worker(worker, delay=self.retry_interval)

    def _replace_worker(self, worker: SourceWorker, delay: float) -> bool:
        with self._lock:
            if self._stopping or self.closed or self._workers.get(worker.path) is not worker:
                return False
            worker.watcher.restart()
            replacement = SourceWorker(
                worker.watcher, self.lines, self.source_buffer, self.publish_health,
                self._on_worker_crash, start_delay=delay,
            )
            replacement.pending = worker.pending
            replacement.dropped = worker.dropped
            replacement.crashes = worker.crashes
            self._workers[worker.path] = replacement
            self.restarts += 1
            replacement.start()
        logger.info("Restarted worker for %s", worker.path)
        return True

    def publish_health(self, event: HealthEvent) -> None:
        """Queue a health event on the side channel without blocking."""
        try:
            self.health_events.put_nowait(event)
        except queue.Full:
            self.health_dropped += 1
            logger.warning("Health channel full, dropped event: %s", event.message)
