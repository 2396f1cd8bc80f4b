"""
Deduplication and rate limiting for matched lines.

Windows are measured on the monotonic clock. Timestamps shown to users
come from the lines themselves.
"""

import itertools
import re
import time
from dataclasses import dataclass, field

from tailwatch.core import Alert, LogLine, Suppressed
from tailwatch.logging_config import get_logger

logger = get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")

AlertKey = tuple[str, str]


def alert_key(line: LogLine) -> AlertKey:
    """Deduplication key for a line: its source and whitespace-normalized text."""
    return (line.source, _WHITESPACE.sub(" ", line.text).strip())


@dataclass
class KeyState:
    """Throttling state for a single alert key."""
    last_emitted: float
    last_seen: float
    suppressed: int = 0


@dataclass
class HourlyBudget:
    """Alerts emitted in the current hour, across all keys."""
    count: int = 0
    hour_start: float = field(default_factory=time.monotonic)


class AlertThrottler:
    """
    Decides which matching lines become alerts.

    The first occurrence of a key is always emitted. Repeats within
    `window_seconds` of that key's last emission are suppressed. With
    `max_per_hour` set, emissions beyond that many per hour are
    suppressed as well.

    Sequence numbers are assigned here, so they increase strictly in
    emission order across all sources.

    Not thread-safe: a single pipeline thread owns the throttler.
    """

    def __init__(self, window_seconds: float = 60.0, max_per_hour: int = 0) -> None:
        """
        Initialize the throttler.

        Args:
            window_seconds: Suppression window per key (0 = no deduplication)
            max_per_hour: Maximum alerts per hour (0 = unlimited)
        """
        self.window = float(window_seconds)
        self.max_per_hour = max_per_hour
        self.keys: dict[AlertKey, KeyState] = {}
        self.budget = HourlyBudget()
        self.emitted = 0
        self.suppressed = 0
        self._sequence = itertools.count(1)
        self._last_sweep = time.monotonic()

    def admit(self, line: LogLine, rule: str, now: float | None = None) -> Alert | Suppressed:
        """
        Emit or suppress a line that matched `rule`.

        Args:
            line: The matching line
            rule: The pattern it matched
            now: Current time.monotonic() reading (defaults to now)

        Returns:
            An Alert to deliver, or a Suppressed verdict to audit
        """
        if now is None:
            now = time.monotonic()
        if now - self._last_sweep >= self.window:
            self.sweep(now)

        key = alert_key(line)
        state = self.keys.get(key)

        if state is not None and self.window and now - state.last_emitted < self.window:
            state.suppressed += 1
            state.last_seen = now
            self.suppressed += 1
            return Suppressed(line=line, rule=rule, key=key, reason="duplicate")

        if self.max_per_hour > 0:
            if now - self.budget.hour_start >= 3600:
                self.budget = HourlyBudget(count=0, hour_start=now)
            if self.budget.count >= self.max_per_hour:
                self.suppressed += 1
                if state is not None:
                    state.suppressed += 1
                    state.last_seen = now
                logger.debug("Hourly alert limit reached, suppressing: %s", line.text)
                return Suppressed(line=line, rule=rule, key=key, reason="rate_limit")
            self.budget.count += 1

        repeats = state.suppressed if state is not None else 0
        self.keys[key] = KeyState(last_emitted=now, last_seen=now)
        self.emitted += 1
        return Alert(line=line, rule=rule, sequence=next(self._sequence), repeats=repeats)

    def sweep(self, now: float | None = None) -> int:
        """
        Forget keys not seen for a whole window.

        Keys holding suppressed repeats stay until a window after the last
        repeat, so the count can still be reported on the next emission.

        Returns:
            Number of keys removed
        """
        if now is None:
            now = time.monotonic()
        expired = [
            key for key, state in self.keys.items()
            if now - state.last_seen >= self.window
        ]
        for key in expired:
            del self.keys[key]
        self._last_sweep = now
        if expired:
            logger.debug("Evicted %d expired alert key(s)", len(expired))
        return len(expired)
