"""Append-only event log — the canonical record of every election action.

Every state change produces an event record that is appended to the
log. Events are immutable once written. The log serves as:
1. The notification stream for external observers.
2. The audit trail for third-party verification.
3. The history of past assembly configurations, which the live state
   overwrites.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional


class EventKind(str, enum.Enum):
    """Classification of election events."""
    ASSEMBLY_CONFIGURED = "assembly_configured"
    RESOLUTION_CREATED = "resolution_created"
    RESOLUTION_STATUS_CHANGED = "resolution_status_changed"
    VOTE_CAST = "vote_cast"
    VOTE_CERTIFICATE_ISSUED = "vote_certificate_issued"
    ROLE_GRANTED = "role_granted"
    ROLE_REVOKED = "role_revoked"
    BASE_URI_UPDATED = "base_uri_updated"
    PAUSED = "paused"
    UNPAUSED = "unpaused"


def format_timestamp(value: datetime) -> str:
    """Log timestamp form; naive values are taken as UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def _canonical_hash(
    event_id: str,
    event_kind: str,
    timestamp_utc: str,
    actor_id: str,
    payload: dict[str, Any],
) -> str:
    canonical = json.dumps(
        {
            "event_id": event_id,
            "event_kind": event_kind,
            "timestamp_utc": timestamp_utc,
            "actor_id": actor_id,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class EventRecord:
    """A single immutable event in the election log.

    The event_hash is computed at creation time from the canonical JSON
    form and re-verified whenever the log is loaded from disk.
    """
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    actor_id: str
    payload: dict[str, Any]
    event_hash: str

    @staticmethod
    def create(
        event_id: str,
        event_kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        """Create a new event record with computed hash."""
        ts = timestamp_utc or datetime.now(timezone.utc)
        ts_str = format_timestamp(ts)
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=ts_str,
            actor_id=actor_id,
            payload=payload,
            event_hash=_canonical_hash(
                event_id, event_kind.value, ts_str, actor_id, payload,
            ),
        )


class EventLog:
    """Append-only event log with optional file persistence.

    Events can only be appended, never modified or deleted. The log can
    be persisted to a JSONL file (one JSON object per line) and loaded
    back for recovery.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._storage_path = storage_path
        self._event_ids: set[str] = set()

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def append(self, event: EventRecord) -> None:
        """Append an event to the log.

        Raises ValueError if event_id is a duplicate (replay protection).
        The file write happens before the in-memory append, so a failed
        write leaves both untouched.
        """
        if event.event_id in self._event_ids:
            raise ValueError(f"Duplicate event ID: {event.event_id}")

        if self._storage_path:
            self._append_to_file(event)

        self._events.append(event)
        self._event_ids.add(event.event_id)

    def append_batch(self, events: list[EventRecord]) -> None:
        """Append several events as one unit: all of them or none.

        The batch is written to the file in a single write call.
        """
        ids = [e.event_id for e in events]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Duplicate event ID in batch: {ids}")
        for event_id in ids:
            if event_id in self._event_ids:
                raise ValueError(f"Duplicate event ID: {event_id}")

        if self._storage_path:
            self._append_to_file(*events)

        self._events.extend(events)
        self._event_ids.update(ids)

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        """Return events, optionally filtered by kind."""
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.event_kind == kind]

    def events_since(
        self,
        since_utc: str,
        kind: Optional[EventKind] = None,
    ) -> list[EventRecord]:
        """Return events at or after a timestamp, optionally filtered by kind."""
        result = [e for e in self._events if e.timestamp_utc >= since_utc]
        if kind is not None:
            result = [e for e in result if e.event_kind == kind]
        return result

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    def _append_to_file(self, *events: EventRecord) -> None:
        """Append events to the JSONL file."""
        lines = []
        for event in events:
            record = {
                "event_id": event.event_id,
                "event_kind": event.event_kind.value,
                "timestamp_utc": event.timestamp_utc,
                "actor_id": event.actor_id,
                "payload": event.payload,
                "event_hash": event.event_hash,
            }
            lines.append(json.dumps(record, sort_keys=True, ensure_ascii=False) + "\n")
        with self._storage_path.open("a", encoding="utf-8") as f:
            f.write("".join(lines))

    def _load_from_file(self, path: Path) -> None:
        """Load events from a JSONL file with integrity verification.

        Fail-closed: rejects tampered records (hash mismatch) and
        duplicate event IDs.
        """
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)

                event_id = data["event_id"]
                if event_id in self._event_ids:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): {event_id}"
                    )

                expected_hash = _canonical_hash(
                    data["event_id"],
                    data["event_kind"],
                    data["timestamp_utc"],
                    data["actor_id"],
                    data["payload"],
                )
                if data["event_hash"] != expected_hash:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): event {event_id} "
                        f"stored hash {data['event_hash']} != computed {expected_hash}"
                    )

                event = EventRecord(
                    event_id=data["event_id"],
                    event_kind=EventKind(data["event_kind"]),
                    timestamp_utc=data["timestamp_utc"],
                    actor_id=data["actor_id"],
                    payload=data["payload"],
                    event_hash=data["event_hash"],
                )
                self._events.append(event)
                self._event_ids.add(event.event_id)
