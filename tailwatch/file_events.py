"""
Filesystem change notification using watchdog.

Watchers always poll; this only wakes them early when the OS reports a
change to a watched path. Directories are watched rather than files so
that rename/create rotations are seen too.
"""

import os
import threading
from collections import defaultdict
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer as WatchdogObserver

from tailwatch.logging_config import get_logger

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver, ObservedWatch

logger = get_logger(__name__)


def _event_paths(event: FileSystemEvent) -> list[str]:
    paths = []
    for raw in (event.src_path, getattr(event, "dest_path", "")):
        if not raw:
            continue
        path = raw if isinstance(raw, str) else raw.decode()
        paths.append(os.path.abspath(path))
    return paths


class ChangeNotifier:
    """
    Dispatches watchdog events to per-path callbacks.

    Callbacks run on the watchdog thread and must only do cheap,
    thread-safe work such as FileWatcher.wake().
    """

    def __init__(self) -> None:
        self.observer: BaseObserver | None = None
        self._callbacks: dict[str, list[Callable[[], None]]] = defaultdict(list)
        self._watches: dict[str, ObservedWatch] = {}
        self._lock = threading.Lock()

    def start(self) -> None:
        """Start the watchdog observer thread."""
        if self.observer is not None:
            return
        self.observer = WatchdogObserver()
        self.observer.start()

    def stop(self) -> None:
        """Stop the watchdog observer thread."""
        if self.observer is not None:
            self.observer.stop()
            self.observer.join(timeout=5)
            self.observer = None
        with self._lock:
            self._callbacks.clear()
            self._watches.clear()

    def watch(self, path: str | Path, callback: Callable[[], None]) -> bool:
        """
        Call `callback` whenever `path` is modified, created, moved or deleted.

        Returns:
            False if the parent directory could not be watched; the
            caller then relies on polling alone.
        """
        if self.observer is None:
            return False

        target = os.path.abspath(path)
        directory = os.path.dirname(target)
        with self._lock:
            self._callbacks[target].append(callback)
            if directory in self._watches:
                return True
            try:
                self._watches[directory] = self.observer.schedule(
                    _Handler(self), directory, recursive=False
                )
            except (OSError, RuntimeError) as e:
                logger.debug("Cannot watch %s for changes, polling only: %s", directory, e)
                self._callbacks[target].remove(callback)
                return False
        return True

    def unwatch(self, path: str | Path, callback: Callable[[], None]) -> None:
        """Remove a callback registered with watch()."""
        target = os.path.abspath(path)
        with self._lock:
            callbacks = self._callbacks.get(target, [])
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                self._callbacks.pop(target, None)

            directory = os.path.dirname(target)
            still_used = any(os.path.dirname(p) == directory for p in self._callbacks)
            watch = self._watches.get(directory)
            if watch is not None and not still_used and self.observer is not None:
                self.observer.unschedule(watch)
                del self._watches[directory]

    def dispatch(self, event: FileSystemEvent) -> None:
        """Run the callbacks of every watched path the event touches."""
        if event.is_directory:
            return
        with self._lock:
            callbacks = [
                callback
                for path in _event_paths(event)
                for callback in self._callbacks.get(path, [])
            ]
        for callback in callbacks:
            callback()


class _Handler(FileSystemEventHandler):
    """Forwards every event to the owning ChangeNotifier."""

    def __init__(self, notifier: ChangeNotifier) -> None:
        super().__init__()
        self.notifier = notifier

    def on_any_event(self, event: FileSystemEvent) -> None:
        self.notifier.dispatch(event)
