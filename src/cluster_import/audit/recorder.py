"""Hash-chained audit recorder for controller mutations.

One event is recorded per actual change on the hub: created-via annotation
set, legacy finalizer removed, import condition changed.  With a log path,
events are appended as JSON lines, each carrying:
- prev_hash: entry_hash of the line before it (GENESIS_HASH for the first)
- entry_hash: SHA-256 over the event's other fields, keys sorted

Without a path, events stay in memory, which is what one-shot CLI runs and
the tests use.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import uuid
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from cluster_import.models import AuditEvent

GENESIS_HASH = "0" * 64

logger = logging.getLogger(__name__)


class AuditError(Exception):
    """Raised when the audit log can't be read or extended."""


def _digest(fields: dict[str, Any]) -> str:
    payload = {k: v for k, v in fields.items() if k != "entry_hash"}
    return hashlib.sha256(json.dumps(payload, sort_keys=True).encode("utf-8")).hexdigest()


def _lines(log_path: Path) -> Iterator[tuple[int, str]]:
    """Yield (1-based line number, text) for every non-blank line."""
    with log_path.open("r", encoding="utf-8") as f:
        for number, line in enumerate(f, start=1):
            text = line.strip()
            if text:
                yield number, text


class AuditRecorder:
    """Append-only recorder; safe to share between reconcile workers."""

    def __init__(self, log_path: str | Path | None = None) -> None:
        self._path = Path(log_path) if log_path is not None else None
        self._lock = threading.Lock()
        self._memory: list[AuditEvent] = []
        self._prev_hash = self._tail_hash()

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def prev_hash(self) -> str:
        return self._prev_hash

    def record(
        self,
        reason: str,
        message: str,
        cluster: str = "",
        kind: str = "",
        timestamp: datetime | None = None,
    ) -> AuditEvent:
        """Chain and store one event.  Returns it with both hashes set."""
        logger.info("%s: %s", reason, message)

        with self._lock:
            event = AuditEvent(
                event_id=f"evt-{uuid.uuid4().hex[:12]}",
                timestamp=timestamp or datetime.now(tz=UTC),
                reason=reason,
                message=message,
                cluster=cluster,
                kind=kind,
                prev_hash=self._prev_hash,
            )
            event.entry_hash = _digest(event.model_dump(mode="json"))

            if self._path is not None:
                with self._path.open("a", encoding="utf-8") as f:
                    f.write(json.dumps(event.model_dump(mode="json"), sort_keys=True) + "\n")
            else:
                self._memory.append(event)
            self._prev_hash = event.entry_hash

        return event

    def read_events(self) -> list[AuditEvent]:
        """Every recorded event, oldest first."""
        if self._path is not None:
            return read_log(self._path)
        with self._lock:
            return list(self._memory)

    def events_for(self, cluster: str) -> list[AuditEvent]:
        return [e for e in self.read_events() if e.cluster == cluster]

    def _tail_hash(self) -> str:
        if self._path is None or not self._path.is_file():
            return GENESIS_HASH

        tail = None
        for _, text in _lines(self._path):
            tail = text
        if tail is None:
            return GENESIS_HASH

        try:
            return json.loads(tail).get("entry_hash", GENESIS_HASH)
        except json.JSONDecodeError as exc:
            raise AuditError(f"Corrupt audit log, last line is not valid JSON: {self._path}") from exc


def read_log(log_path: str | Path) -> list[AuditEvent]:
    """Parse a JSON-lines audit log.  A missing file reads as empty."""
    log_path = Path(log_path)
    if not log_path.is_file():
        return []

    events: list[AuditEvent] = []
    for number, text in _lines(log_path):
        try:
            events.append(AuditEvent.model_validate_json(text))
        except ValueError as exc:
            raise AuditError(f"Corrupt entry at line {number} in {log_path}: {exc}") from exc
    return events


def verify_log(log_path: str | Path) -> tuple[bool, list[str]]:
    """Walk the chain and recompute every hash.

    Returns (is_valid, errors); a missing log is trivially valid.
    """
    log_path = Path(log_path)
    if not log_path.is_file():
        return True, []

    errors: list[str] = []
    expected_prev = GENESIS_HASH
    for number, text in _lines(log_path):
        try:
            fields = json.loads(text)
        except json.JSONDecodeError as exc:
            errors.append(f"Line {number}: invalid JSON: {exc}")
            continue

        prev = fields.get("prev_hash", "")
        if prev != expected_prev:
            errors.append(
                f"Line {number}: chain broken, prev_hash {prev[:16]}... "
                f"does not follow {expected_prev[:16]}..."
            )

        stored = fields.get("entry_hash", "")
        computed = _digest(fields)
        if stored != computed:
            errors.append(
                f"Line {number}: hash mismatch, stored {stored[:16]}..., computed {computed[:16]}..."
            )
        expected_prev = stored

    return not errors, errors
