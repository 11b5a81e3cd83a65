"""Append-only audit log — the per-run record of ceremony decisions.

Every validation outcome, rejection and integration produces an event
record appended to the log. Records are immutable once written. The
log is informational, not authoritative state: the chain directory is
the source of truth. It serves as:
1. The diagnostic trail a rejected contributor uses to resubmit.
2. Evidence that an integration step ran to completion (an entry with
   no CONTRIBUTION_INTEGRATED record was never committed).
3. Input for third-party review of a ceremony run.
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
    """Classification of ceremony events."""
    PARAMETERS_VERIFIED = "parameters_verified"
    PARAMETERS_REJECTED = "parameters_rejected"
    BASE_KEY_CREATED = "base_key_created"
    BASE_KEY_VALIDATED = "base_key_validated"
    BASE_KEY_REJECTED = "base_key_rejected"
    CONTRIBUTION_SUBMITTED = "contribution_submitted"
    CONTRIBUTION_DISCOVERED = "contribution_discovered"
    CONTRIBUTION_REJECTED = "contribution_rejected"
    CONTRIBUTION_INTEGRATED = "contribution_integrated"
    MANIFEST_REGENERATED = "manifest_regenerated"
    RUN_COMPLETED = "run_completed"
    VERIFICATION_PASS = "verification_pass"
    BEACON_DEFERRED = "beacon_deferred"
    CHAIN_FINALIZED = "chain_finalized"
    VERIFICATION_KEY_EXPORTED = "verification_key_exported"


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
    """A single immutable event in the audit log.

    The event_hash is computed at creation time over the canonical JSON
    of every other field, so a tampered line is detected on reload.
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
        ts_str = ts.strftime("%Y-%m-%dT%H:%M:%SZ")
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=ts_str,
            actor_id=actor_id,
            payload=payload,
            event_hash=_canonical_hash(event_id, event_kind.value, ts_str, actor_id, payload),
        )


class EventLog:
    """Append-only event log with optional JSONL persistence.

    Events can only be appended, never modified or deleted. The file is
    opened lazily on the first append, so a run that records nothing
    leaves nothing on disk.
    """

    def __init__(self, storage_path: Optional[Path] = None, actor_id: str = "system") -> None:
        self._events: list[EventRecord] = []
        self._storage_path = storage_path
        self._event_ids: set[str] = set()
        self._actor_id = actor_id
        self._counter = 0

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)
            self._counter = len(self._events)

    @classmethod
    def for_run(cls, audit_dir: Path, component: str, now: Optional[datetime] = None) -> EventLog:
        """Per-run log at ``<audit_dir>/<component>_<YYYYmmdd_HHMMSS>.jsonl``."""
        ts = (now or datetime.now(timezone.utc)).strftime("%Y%m%d_%H%M%S")
        return cls(storage_path=audit_dir / f"{component}_{ts}.jsonl", actor_id=component)

    @property
    def storage_path(self) -> Optional[Path]:
        return self._storage_path

    def append(self, event: EventRecord) -> None:
        """Append an event to the log.

        Raises ValueError if event_id is a duplicate (replay protection).
        """
        if event.event_id in self._event_ids:
            raise ValueError(f"Duplicate event ID: {event.event_id}")

        self._events.append(event)
        self._event_ids.add(event.event_id)

        if self._storage_path:
            self._append_to_file(event)

    def record(self, kind: EventKind, **payload: Any) -> EventRecord:
        """Create and append an event with the next sequential ID."""
        self._counter += 1
        event = EventRecord.create(
            event_id=f"EVT-{self._counter:08d}",
            event_kind=kind,
            actor_id=self._actor_id,
            payload=payload,
        )
        self.append(event)
        return event

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        """Return events, optionally filtered by kind."""
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.event_kind == kind]

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    def _append_to_file(self, event: EventRecord) -> None:
        """Append a single event to the JSONL file."""
        record = {
            "event_id": event.event_id,
            "event_kind": event.event_kind.value,
            "timestamp_utc": event.timestamp_utc,
            "actor_id": event.actor_id,
            "payload": event.payload,
            "event_hash": event.event_hash,
        }
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        with self._storage_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record, sort_keys=True, ensure_ascii=False) + "\n")

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
                        f"Duplicate event ID on load (line {line_num}): {event_id}"
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
