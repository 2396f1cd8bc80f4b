"""
Append-only audit trail of everything the monitor observes.

Each record is one line of space-separated key=value pairs. String values
are JSON-quoted so the file stays readable with `less` and parseable by
read_records():

    timestamp=2024-05-01T12:00:00.123456 kind=alert source="/var/log/syslog" \
text="kernel: segfault at 0" rule="segfault" seq=4

Writes are flushed and fsync'ed one by one. When the file cannot be
written the sink keeps records in memory and retries the file
periodically; record() never raises.
"""

import json
import os
import re
import threading
import time
from collections import deque
from collections.abc import Callable, Iterable
from datetime import datetime
from pathlib import Path
from typing import IO, Any

from tailwatch.core import AuditRecord, HealthEvent, HealthKind, RecordKind
from tailwatch.errors import AuditWriteFailed
from tailwatch.logging_config import get_logger

logger = get_logger(__name__)

_FIELD_RE = re.compile(r'(\w+)=("(?:[^"\\]|\\.)*"|\S*)')


def format_record(record: AuditRecord) -> str:
    """Render a record as a single key=value line (without newline)."""
    fields = [
        f"timestamp={record.timestamp.isoformat()}",
        f"kind={record.kind.value}",
        f"source={json.dumps(record.source, ensure_ascii=False)}",
        f"text={json.dumps(record.text, ensure_ascii=False)}",
    ]
    if record.matched_rule is not None:
        fields.append(f"rule={json.dumps(record.matched_rule, ensure_ascii=False)}")
    if record.sequence is not None:
        fields.append(f"seq={record.sequence}")
    if record.detail is not None:
        fields.append(f"detail={json.dumps(record.detail, ensure_ascii=False)}")
    return " ".join(fields)


def parse_record(line: str) -> AuditRecord:
    """
    Parse a line written by format_record().

    Raises:
        ValueError: If the line is not a valid audit record
    """
    values: dict[str, Any] = {}
    for key, raw in _FIELD_RE.findall(line):
        values[key] = json.loads(raw) if raw.startswith('"') else raw

    try:
        return AuditRecord(
            kind=RecordKind(values["kind"]),
            source=values["source"],
            text=values["text"],
            timestamp=datetime.fromisoformat(values["timestamp"]),
            matched_rule=values.get("rule"),
            sequence=int(values["seq"]) if "seq" in values else None,
            detail=values.get("detail"),
        )
    except (KeyError, ValueError) as e:
        raise ValueError(f"Invalid audit record: {line!r}") from e


def read_records(
    path: str | Path,
    kinds: Iterable[RecordKind] | None = None,
    limit: int | None = None,
) -> list[AuditRecord]:
    """
    Read records back from an audit file.

    Unparseable lines are skipped with a warning.

    Args:
        path: Audit file
        kinds: Only return records of these kinds
        limit: Only return the last `limit` matching records

    Returns:
        Records in file order
    """
    wanted = set(kinds) if kinds is not None else None
    records: deque[AuditRecord] = deque(maxlen=limit)
    with open(path, encoding="utf-8") as f:
        for number, line in enumerate(f, 1):
            line = line.rstrip("\n")
            if not line:
                continue
            try:
                record = parse_record(line)
            except ValueError:
                logger.warning("Skipping malformed audit line %d in %s", number, path)
                continue
            if wanted is None or record.kind in wanted:
                records.append(record)
    return list(records)


class AuditSink:
    """
    Writes audit records to an append-only file.

    Args:
        path: Audit file; parent directories are created as needed
        memory_limit: Records held in memory while the file is unwritable
        recover_interval: Minimum seconds between attempts to reopen the file
        on_health: Called with AUDIT_WRITE_FAILED / AUDIT_RECOVERED events
    """

    def __init__(
        self,
        path: str | Path,
        memory_limit: int = 10000,
        recover_interval: float = 5.0,
        on_health: Callable[[HealthEvent], None] | None = None,
    ) -> None:
        self.path = Path(path)
        self.memory_limit = memory_limit
        self.recover_interval = recover_interval
        self.on_health = on_health

        self.backlog: deque[AuditRecord] = deque()
        self.written = 0
        self.lost = 0
        self.degraded = False
        self._file: IO[str] | None = None
        self._next_attempt = 0.0
        self._lock = threading.Lock()

    def record(self, record: AuditRecord) -> bool:
        """
        Append a record.

        Returns:
            True if the record reached the file, False if it is being held
            in memory (degraded mode)
        """
        with self._lock:
            if self.degraded:
                self._hold(record)
                if time.monotonic() < self._next_attempt:
                    return False
                if not self._write_backlog():
                    return False
                return True

            try:
                self._write(record)
            except AuditWriteFailed as e:
                self._hold(record)
                self._degrade(str(e))
                return False
            return True

    def close(self) -> None:
        """Try once more to write anything held in memory, then close the file."""
        with self._lock:
            if self.degraded:
                self._write_backlog()
            if self.backlog:
                logger.error(
                    "Audit trail closed with %d record(s) never written to %s",
                    len(self.backlog), self.path
                )
            if self._file is not None:
                try:
                    self._file.close()
                except OSError:
                    logger.debug("Error closing audit file %s", self.path, exc_info=True)
                self._file = None

    def _open(self) -> IO[str]:
        if self._file is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = self.path.open("a", encoding="utf-8")
        return self._file

    def _write(self, record: AuditRecord) -> None:
        try:
            f = self._open()
            f.write(format_record(record) + "\n")
            f.flush()
            os.fsync(f.fileno())
        except (OSError, ValueError) as e:
            if self._file is not None:
                try:
                    self._file.close()
                except OSError:
                    pass
                self._file = None
            raise AuditWriteFailed(f"Cannot write audit file {self.path}: {e}") from e
        self.written += 1

    def _hold(self, record: AuditRecord) -> None:
        self.backlog.append(record)
        if len(self.backlog) > self.memory_limit:
            self.backlog.popleft()
            self.lost += 1

    def _write_backlog(self) -> bool:
        while self.backlog:
            try:
                self._write(self.backlog[0])
            except AuditWriteFailed as e:
                self._next_attempt = time.monotonic() + self.recover_interval
                logger.debug("Audit file still unwritable: %s", e)
                return False
            self.backlog.popleft()

        self.degraded = False
        logger.info("Audit trail recovered: %s", self.path)
        self._emit_health(HealthKind.AUDIT_RECOVERED, f"audit file {self.path} writable again")
        return True

    def _degrade(self, reason: str) -> None:
        self.degraded = True
        self._next_attempt = time.monotonic() + self.recover_interval
        logger.error("%s; keeping records in memory", reason)
        self._emit_health(HealthKind.AUDIT_WRITE_FAILED, reason)

    def _emit_health(self, kind: HealthKind, message: str) -> None:
        if self.on_health is None:
            return
        try:
            self.on_health(HealthEvent(source=str(self.path), kind=kind, message=message))
        except Exception:  # pylint: disable=broad-exception-caught
            logger.error("Health callback failed for audit sink", exc_info=True)
