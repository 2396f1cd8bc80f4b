"""
Bounded-queue worker threads.
"""

import queue
import threading
from collections.abc import Callable
from typing import Generic, TypeVar

from tailwatch.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class QueueWorker(Generic[T]):
    """
    Runs `handler` on items submitted to a bounded queue, on its own thread.

    A handler exception is logged and the worker moves on to the next item.
    """

    def __init__(self, name: str, handler: Callable[[T], object], capacity: int = 1000) -> None:
        self.name = name
        self.handler = handler
        self.queue: queue.Queue[T] = queue.Queue(maxsize=capacity)
        self.rejected = 0
        self.thread: threading.Thread | None = None
        self.stop_event = threading.Event()
        self._draining = threading.Event()

    def start(self) -> None:
        """Start the worker thread."""
        self.thread = threading.Thread(target=self._run, name=f"tailwatch-{self.name}", daemon=True)
        self.thread.start()

    def submit(self, item: T, timeout: float | None = None) -> bool:
        """
        Queue an item.

        Args:
            item: Item for the handler
            timeout: Seconds to wait for space; None means don't wait

        Returns:
            False if the queue stayed full
        """
        try:
            if timeout is None:
                self.queue.put_nowait(item)
            else:
                self.queue.put(item, timeout=timeout)
        except queue.Full:
            self.rejected += 1
            return False
        return True

    def stop(self, timeout: float = 5.0, drain: bool = True) -> int:
        """
        Stop the worker.

        Args:
            timeout: Seconds to wait for the thread
            drain: Handle queued items before exiting; otherwise discard them

        Returns:
            Number of items left unhandled
        """
        if drain:
            self._draining.set()
        self.stop_event.set()
        if self.thread:
            self.thread.join(timeout=max(timeout, 0))
            if self.thread.is_alive():
                logger.warning("Worker %s did not finish within %.1fs", self.name, timeout)

        left = 0
        while True:
            try:
                self.queue.get_nowait()
            except queue.Empty:
                break
            left += 1
        return left

    def _run(self) -> None:
        while True:
            if self.stop_event.is_set() and not self._draining.is_set():
                return
            try:
                item = self.queue.get(timeout=0.1)
            except queue.Empty:
                if self.stop_event.is_set():
                    return
                continue
            try:
                self.handler(item)
            except Exception:  # pylint: disable=broad-exception-caught
                logger.error("Worker %s failed to handle an item", self.name, exc_info=True)
