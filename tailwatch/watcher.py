"""
Follows a single log file across growth, truncation and rotation.

The watcher keeps the identity (device, inode) of the file it has open
and its read offset, and on every poll compares them with what is
currently at the path:

- same identity, bigger      -> read the appended bytes
- same identity, smaller     -> truncated (copytruncate); reopen at 0
- same identity, rewritten   -> truncated and refilled past the offset; reopen at 0
- different identity         -> replaced (move/create); drain old, reopen at 0
- nothing at the path        -> drain old, wait for the file to come back
- same identity, same size   -> nothing to do

Lines written to the old file after the last poll and before the reopen
are read when the old handle is drained; lines written to a truncated
file between the truncation and the next poll are lost. That window is
bounded by the poll interval. A rewrite is recognised by comparing the
first and the last bytes read so far with what the file now holds; when
`<path>.1` is a new file the rotation is reported as a copytruncate.

A watcher is not thread-safe: one thread drives poll()/follow(). Only
stop() and wake() may be called from other threads.
"""

import threading
import time
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import BinaryIO

from tailwatch.core import HealthEvent, HealthKind, LogLine, SourceStatus, WatcherState
from tailwatch.errors import SourceUnavailable
from tailwatch.logging_config import get_logger
from tailwatch.platform import Fingerprint, get_file_fingerprint, get_handle_fingerprint

logger = get_logger(__name__)

DEFAULT_MAX_READ_BYTES = 1024 * 1024

# Bytes kept from the start of the file and from just before the offset
# to recognise a file rewritten in place.
SAMPLE_BYTES = 64

HealthCallback = Callable[[HealthEvent], None]


def _read_at(handle: BinaryIO, position: int, length: int) -> bytes:
    """Read `length` bytes at `position`. Moves the file position."""
    if length <= 0:
        return b""
    handle.seek(position)
    return handle.read(length)


class FileWatcher:
    """
    Tails one log file and yields its new lines.

    Args:
        path: File to follow
        poll_interval: Seconds between polls in follow()
        retry_interval: Seconds between attempts to open a missing file
        max_read_bytes: Upper bound on bytes read per poll
        on_health: Called with each HealthEvent (unavailable, rotated)
    """

    def __init__(  # pylint: disable=too-many-arguments,too-many-positional-arguments
        self,
        path: str | Path,
        poll_interval: float = 1.0,
        retry_interval: float = 5.0,
        max_read_bytes: int = DEFAULT_MAX_READ_BYTES,
        on_health: HealthCallback | None = None,
    ) -> None:
        self.path = str(path)
        self.poll_interval = poll_interval
        self.retry_interval = retry_interval
        self.max_read_bytes = max_read_bytes
        self.on_health = on_health

        self.state = WatcherState.WAITING
        self._handle: BinaryIO | None = None
        self._fingerprint: Fingerprint | None = None
        self._offset = 0
        self._size: int | None = None
        self._partial = b""
        self._backlog = False
        self._head = b""
        self._tail = b""
        self._rotated_path = f"{self.path}.1"
        self._rotated_fingerprint: Fingerprint | None = None

        # The first open seeks to the end; a file that shows up later is
        # new to this session and is read from the start.
        self._seek_end = True
        self._resume = False
        self._next_attempt = 0.0
        self._outage_reported = False

        self.lines_read = 0
        self.rotations = 0
        self.last_error: str | None = None

        self._stop_requested = threading.Event()
        self._wakeup = threading.Event()

    # Lifecycle

    def open(self) -> bool:
        """
        Try to open the file now.

        Returns:
            True if the watcher is Open afterwards
        """
        if self.state is WatcherState.OPEN:
            return True
        if self.state is WatcherState.STOPPED:
            return False
        try:
            self._open()
        except SourceUnavailable as e:
            self._enter_waiting(e.reason)
            return False
        return True

    def stop(self) -> None:
        """Request a stop. The thread driving the watcher releases the handle."""
        self._stop_requested.set()
        self._wakeup.set()

    def close(self) -> None:
        """Release the handle and enter the terminal Stopped state."""
        self._close_handle()
        self.state = WatcherState.STOPPED
        self._stop_requested.set()
        logger.debug("Stopped watching %s", self.path)

    def restart(self) -> None:
        """Bring a stopped watcher back, resuming where it left off if the file is unchanged."""
        if self.state is not WatcherState.STOPPED:
            return
        self._stop_requested.clear()
        self._wakeup.clear()
        self.state = WatcherState.WAITING
        self._resume = True
        self._seek_end = False
        self._next_attempt = 0.0

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested.is_set()

    @property
    def has_backlog(self) -> bool:
        """True if the last poll stopped at max_read_bytes with data left to read."""
        return self._backlog

    def wake(self) -> None:
        """Cut the current wait short, e.g. on a filesystem change event."""
        self._wakeup.set()

    def wait(self, timeout: float | None = None) -> bool:
        """
        Sleep until woken, stopped, or the timeout passes.

        Returns:
            False if a stop was requested
        """
        self._wakeup.wait(self.poll_interval if timeout is None else timeout)
        self._wakeup.clear()
        return not self._stop_requested.is_set()

    # Reading

    def poll(self) -> list[LogLine]:
        """
        Run one check of the file and return any complete new lines.

        Once stop() has been requested the next poll reads whatever complete
        lines are left, releases the handle and returns them; later polls
        return nothing.

        Never raises for file problems; those become health events and
        state transitions.
        """
        if self._stop_requested.is_set():
            if self.state is WatcherState.STOPPED:
                return []
            lines = self._drain_remaining()
            self.close()
            return lines

        if self.state is WatcherState.WAITING:
            if time.monotonic() < self._next_attempt:
                return []
            if not self.open():
                return []

        try:
            return self._check()
        except OSError as e:
            logger.warning("Error reading %s: %s", self.path, e)
            self._close_handle()
            self._enter_waiting(e.strerror or str(e))
            return []

    def follow(self) -> Iterator[LogLine]:
        """
        Lazily yield lines as they are appended, until stop() is called.

        The generator can be created again after restart().
        """
        try:
            while not self._stop_requested.is_set():
                yield from self.poll()
                if not self._backlog:
                    self.wait()
            yield from self.poll()
        finally:
            self.close()

    def status(self, dropped: int = 0) -> SourceStatus:
        """Snapshot of this source's read state."""
        return SourceStatus(
            path=self.path,
            state=self.state,
            offset=self._offset,
            size=self._size,
            lines_read=self.lines_read,
            rotations=self.rotations,
            dropped=dropped,
            last_error=self.last_error,
        )

    # Internals

    def _open(self) -> None:
        try:
            handle: BinaryIO = open(self.path, "rb")  # pylint: disable=consider-using-with
        except OSError as e:
            raise SourceUnavailable(self.path, e.strerror or str(e)) from e

        try:
            fingerprint, size = get_handle_fingerprint(handle)
        except OSError as e:
            handle.close()
            raise SourceUnavailable(self.path, e.strerror or str(e)) from e

        recreated = (
            self._outage_reported
            and self._fingerprint is not None
            and fingerprint != self._fingerprint
        )

        if (
            self._resume
            and fingerprint == self._fingerprint
            and size >= self._offset
            and self._content_matches(handle)
        ):
            offset = self._offset
        elif self._seek_end:
            offset = size
        else:
            offset = 0
            self._partial = b""
        sample = min(SAMPLE_BYTES, offset)
        try:
            head = _read_at(handle, 0, sample)
            tail = _read_at(handle, offset - sample, sample)
            handle.seek(offset)
        except OSError as e:
            handle.close()
            raise SourceUnavailable(self.path, e.strerror or str(e)) from e

        self._handle = handle
        self._fingerprint = fingerprint
        self._offset = offset
        self._size = size
        self._head = head
        self._tail = tail
        self._rotated_fingerprint = get_file_fingerprint(self._rotated_path)
        self._seek_end = False
        self._resume = False
        self.state = WatcherState.OPEN

        if self._outage_reported:
            logger.info("%s is available again", self.path)
        else:
            logger.debug("Opened %s at offset %d", self.path, offset)
        self._outage_reported = False
        self.last_error = None

        if recreated:
            self.rotations += 1
            self._emit_health(HealthKind.ROTATED, f"{self.path} was recreated")

    def _enter_waiting(self, reason: str) -> None:
        self.state = WatcherState.WAITING
        self._seek_end = False
        self._next_attempt = time.monotonic() + self.retry_interval
        self.last_error = reason
        if not self._outage_reported:
            self._outage_reported = True
            logger.warning("Log file unavailable: %s (%s)", self.path, reason)
            self._emit_health(HealthKind.SOURCE_UNAVAILABLE, f"{self.path}: {reason}")

    def _close_handle(self) -> None:
        if self._handle is not None:
            try:
                self._handle.close()
            except OSError:
                logger.debug("Error closing %s", self.path, exc_info=True)
            self._handle = None

    def _check(self) -> list[LogLine]:
        assert self._handle is not None
        current = get_file_fingerprint(self.path)
        _, handle_size = get_handle_fingerprint(self._handle)

        if current is None:
            lines = self._drain_old_file()
            self._close_handle()
            self._enter_waiting("file not found")
            # Retry on the next poll; a rotating writer usually recreates the file at once.
            self._next_attempt = 0.0
            return lines

        if current != self._fingerprint:
            lines = self._drain_old_file()
            self._reopen(f"{self.path} was replaced")
            return lines + self._read_new()

        if handle_size < self._offset or not self._content_matches(self._handle):
            self._partial = b""
            rotated = get_file_fingerprint(self._rotated_path)
            if rotated is not None and rotated != self._rotated_fingerprint:
                logger.info("Copytruncate rotation detected for %s", self.path)
                self._reopen(f"{self.path} was truncated (copied to {self._rotated_path})")
            else:
                self._reopen(f"{self.path} was truncated")
            return self._read_new()
        self._handle.seek(self._offset)

        self._size = handle_size
        if handle_size > self._offset:
            return self._read_new()
        self._backlog = False
        return []

    def _content_matches(self, handle: BinaryIO) -> bool:
        """True if the first and last bytes read so far are still in place."""
        if _read_at(handle, 0, len(self._head)) != self._head:
            return False
        return _read_at(handle, self._offset - len(self._tail), len(self._tail)) == self._tail

    def _drain_remaining(self) -> list[LogLine]:
        """Read up to the current end of file. An unterminated last line is not emitted."""
        lines: list[LogLine] = []
        while self.state is WatcherState.OPEN:
            try:
                lines.extend(self._check())
            except OSError as e:
                logger.warning("Error reading %s: %s", self.path, e)
                break
            if not self._backlog:
                break
        return lines

    def _drain_old_file(self) -> list[LogLine]:
        """Read what is left in a file that is going away, including an unterminated last line."""
        lines = []
        while True:
            chunk = self._read_new()
            lines.extend(chunk)
            if not self._backlog:
                break
        if self._partial:
            lines.append(self._make_line(self._partial))
            self._partial = b""
        return lines

    def _reopen(self, message: str) -> None:
        self.state = WatcherState.REOPENING
        self.rotations += 1
        self._close_handle()
        logger.info("Rotation detected: %s. Reopening from the start.", message)
        self._emit_health(HealthKind.ROTATED, message)

        self._seek_end = False
        self._resume = False
        try:
            self._open()
        except SourceUnavailable as e:
            self._enter_waiting(e.reason)

    def _read_new(self) -> list[LogLine]:
        if self._handle is None:
            self._backlog = False
            return []

        data = self._handle.read(self.max_read_bytes)
        self._offset += len(data)
        self._size = max(self._size or 0, self._offset)
        self._backlog = len(data) >= self.max_read_bytes
        if not data:
            return []

        if len(self._head) < SAMPLE_BYTES:
            self._head += data[:SAMPLE_BYTES - len(self._head)]
        self._tail = (self._tail + data)[-SAMPLE_BYTES:]

        parts = (self._partial + data).split(b"\n")
        self._partial = parts.pop()
        # A single line longer than the read budget is emitted in pieces
        # rather than buffered without bound.
        if len(self._partial) >= self.max_read_bytes:
            parts.append(self._partial)
            self._partial = b""

        return [self._make_line(part) for part in parts]

    def _make_line(self, raw: bytes) -> LogLine:
        self.lines_read += 1
        text = raw.decode("utf-8", errors="replace")
        if text.endswith("\r"):
            text = text[:-1]
        return LogLine(source=self.path, text=text)

    def _emit_health(self, kind: HealthKind, message: str) -> None:
        if self.on_health is None:
            return
        try:
            self.on_health(HealthEvent(source=self.path, kind=kind, message=message))
        except Exception:  # pylint: disable=broad-exception-caught
            logger.error("Health callback failed for %s", self.path, exc_info=True)
