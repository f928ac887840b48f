"""docket.core.event_log

Per-task hash-chained event log.

Append order is the chain order. Two appends to the same task never read the
same tail: an in-process lock per task plus an IMMEDIATE transaction around
read-tail/write-head, and a UNIQUE(task_id, prev_hash) index underneath so a
fork cannot be stored even by a second process. Appends to different tasks
hold different locks.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
import weakref
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from docket import CHAIN_VERSION, GENESIS_HASH
from docket.core.database import Database
from docket.core.events import EventType, TriggerSource, canonical_json, payload_hash
from docket.core.exceptions import (
    AppendCancelledError,
    ChainCorruptedError,
    DedupeConflictError,
    EventStoreError,
    PersistenceError,
    StaleTailError,
    TaskNotFoundError,
)
from docket.core.models import ChainVerification, Event, compute_event_hash, supported_chain_versions
from docket.core.time import parse_dt, to_iso, utc_now

logger = logging.getLogger(__name__)


def row_to_event(row: sqlite3.Row) -> Event:
    return Event(
        id=str(row["id"]),
        task_id=str(row["task_id"]),
        seq=int(row["seq"]),
        event_type=EventType(str(row["event_type"])),
        trigger_source=TriggerSource(str(row["trigger_source"])),
        payload=json.loads(row["payload"]),
        created_at=parse_dt(str(row["created_at"])),
        chain_version=int(row["chain_version"]),
        prev_hash=str(row["prev_hash"]),
        event_hash=str(row["event_hash"]),
        dedupe_key=row["dedupe_key"],
    )


@dataclass
class EventLog:
    """Append-only, verifiably ordered record of task lifecycle events."""

    db: Database
    # Entries live only while some append holds the lock.
    _locks: weakref.WeakValueDictionary[str, threading.Lock] = field(
        default_factory=weakref.WeakValueDictionary, init=False, repr=False
    )
    _locks_guard: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def _task_lock(self, task_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(task_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[task_id] = lock
            return lock

    def append(
        self,
        task_id: str,
        event_type: EventType | str,
        payload: dict[str, Any],
        trigger_source: TriggerSource | str = TriggerSource.AUTOMATIC,
        *,
        dedupe_key: str | None = None,
        now: datetime | None = None,
        expected_tail: str | None = None,
        cancel: threading.Event | None = None,
    ) -> Event:
        """Append one event to the task's chain.

        Dedup semantics (keys are scoped to the task):
        - new dedupe_key: insert
        - known dedupe_key, same payload: idempotent, returns the stored event
        - known dedupe_key, different payload: DedupeConflictError

        ``expected_tail`` makes the append conditional: StaleTailError unless
        the chain still ends at that event id. A set ``cancel`` aborts with
        AppendCancelledError before anything is written.
        """

        et = EventType(event_type)
        source = TriggerSource(trigger_source)
        payload_canon = json.loads(canonical_json(payload))
        p_hash = payload_hash(payload_canon)

        with self._task_lock(task_id):
            try:
                with self.db.transaction(immediate=True) as conn:
                    if conn.execute("SELECT 1 FROM tasks WHERE id = ?", (task_id,)).fetchone() is None:
                        raise TaskNotFoundError(task_id)

                    if dedupe_key is not None:
                        existing = self._lookup_dedupe(conn, task_id, dedupe_key, p_hash)
                        if existing is not None:
                            logger.info(
                                "event_deduplicated",
                                extra={"task_id": task_id, "dedupe_key": dedupe_key},
                            )
                            return existing

                    tail = conn.execute(
                        """
                        SELECT id, seq, created_at, event_hash FROM events
                        WHERE task_id = ? ORDER BY seq DESC LIMIT 1
                        """,
                        (task_id,),
                    ).fetchone()

                    if expected_tail is not None:
                        actual = None if tail is None else str(tail["id"])
                        if actual != expected_tail:
                            raise StaleTailError(task_id, expected_tail, actual)

                    prev = GENESIS_HASH if tail is None else str(tail["event_hash"])
                    seq = 1 if tail is None else int(tail["seq"]) + 1

                    created_at = now or utc_now()
                    if tail is not None:
                        tail_ts = parse_dt(str(tail["created_at"]))
                        if created_at < tail_ts:
                            # Wall clocks step backwards; the chain does not.
                            created_at = tail_ts
                    created_at = parse_dt(to_iso(created_at) or "")

                    h = compute_event_hash(
                        prev_hash=prev,
                        task_id=task_id,
                        event_type=et,
                        payload=payload_canon,
                        trigger_source=source,
                        created_at=created_at,
                        chain_version=CHAIN_VERSION,
                    )
                    if cancel is not None and cancel.is_set():
                        raise AppendCancelledError(f"append to task {task_id} cancelled")
                    eid = str(uuid.uuid4())

                    conn.execute(
                        """
                        INSERT INTO events (
                            id, task_id, seq, event_type, trigger_source, payload,
                            created_at, chain_version, prev_hash, event_hash, dedupe_key
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            eid,
                            task_id,
                            seq,
                            str(et),
                            str(source),
                            canonical_json(payload_canon),
                            to_iso(created_at),
                            CHAIN_VERSION,
                            prev,
                            h,
                            dedupe_key,
                        ),
                    )
                    if dedupe_key is not None:
                        conn.execute(
                            """
                            INSERT INTO event_dedup (task_id, dedupe_key, event_id, payload_hash, created_at)
                            VALUES (?, ?, ?, ?, ?)
                            """,
                            (task_id, dedupe_key, eid, p_hash, to_iso(utc_now())),
                        )
            except sqlite3.IntegrityError as e:
                raise PersistenceError(f"append rejected by store: {e}") from e

        event = Event(
            id=eid,
            task_id=task_id,
            seq=seq,
            event_type=et,
            trigger_source=source,
            payload=payload_canon,
            created_at=created_at,
            chain_version=CHAIN_VERSION,
            prev_hash=prev,
            event_hash=h,
            dedupe_key=dedupe_key,
        )
        logger.info(
            "event_appended",
            extra={"task_id": task_id, "event_id": eid, "event_type": str(et), "seq": seq},
        )
        return event

    @staticmethod
    def _lookup_dedupe(conn: sqlite3.Connection, task_id: str, dedupe_key: str, p_hash: str) -> Event | None:
        row = conn.execute(
            "SELECT event_id, payload_hash FROM event_dedup WHERE task_id = ? AND dedupe_key = ?",
            (task_id, dedupe_key),
        ).fetchone()
        if row is None:
            return None
        if str(row["payload_hash"]) != p_hash:
            raise DedupeConflictError(f"dedupe_key conflict for {dedupe_key}: payload changed")
        existing = conn.execute("SELECT * FROM events WHERE id = ?", (str(row["event_id"]),)).fetchone()
        if existing is None:
            raise EventStoreError("dedup index points to missing event")
        return row_to_event(existing)

    # -----------------
    # Reads
    # -----------------

    def _require_task(self, conn: sqlite3.Connection, task_id: str) -> None:
        if conn.execute("SELECT 1 FROM tasks WHERE id = ?", (task_id,)).fetchone() is None:
            raise TaskNotFoundError(task_id)

    def list_events(self, task_id: str) -> list[Event]:
        """All events for the task, ascending by (created_at, seq)."""

        return [row_to_event(r) for r in self._read_chain(task_id)]

    def get_event(self, event_id: str) -> Event | None:
        row = self.db.conn.execute("SELECT * FROM events WHERE id = ?", (event_id,)).fetchone()
        return None if row is None else row_to_event(row)

    def tail(self, task_id: str) -> Event | None:
        row = self.db.conn.execute(
            "SELECT * FROM events WHERE task_id = ? ORDER BY seq DESC LIMIT 1", (task_id,)
        ).fetchone()
        return None if row is None else row_to_event(row)

    def count(self, task_id: str) -> int:
        row = self.db.conn.execute("SELECT COUNT(1) FROM events WHERE task_id = ?", (task_id,)).fetchone()
        return int(row[0]) if row else 0

    # -----------------
    # Integrity
    # -----------------

    def verify_chain(self, task_id: str) -> ChainVerification:
        """Recompute the task's chain and report the first mismatching event.

        Reads inside one transaction, so the pass sees a single consistent tail.
        """

        return self._check_rows(task_id, self._read_chain(task_id))

    def _read_chain(self, task_id: str) -> list[sqlite3.Row]:
        with self.db.transaction() as conn:
            self._require_task(conn, task_id)
            return conn.execute(
                "SELECT * FROM events WHERE task_id = ? ORDER BY created_at ASC, seq ASC",
                (task_id,),
            ).fetchall()

    def _check_rows(self, task_id: str, rows: list[sqlite3.Row]) -> ChainVerification:
        expected_prev = GENESIS_HASH
        versions = supported_chain_versions()
        for i, row in enumerate(rows):
            eid = str(row["id"])
            if int(row["chain_version"]) not in versions:
                return self._corrupted(task_id, i, eid, "unsupported_version")

            try:
                payload = json.loads(row["payload"])
                recomputed = compute_event_hash(
                    prev_hash=expected_prev,
                    task_id=str(row["task_id"]),
                    event_type=EventType(str(row["event_type"])),
                    payload=payload,
                    trigger_source=TriggerSource(str(row["trigger_source"])),
                    created_at=parse_dt(str(row["created_at"])),
                    chain_version=int(row["chain_version"]),
                )
            except (ValueError, TypeError):
                # Unparseable content cannot hash to what was stored.
                return self._corrupted(task_id, i, eid, "invalid_hash")

            if recomputed != str(row["event_hash"]):
                return self._corrupted(task_id, i, eid, "invalid_hash")
            if str(row["prev_hash"]) != expected_prev:
                return self._corrupted(task_id, i, eid, "broken_link")

            expected_prev = str(row["event_hash"])

        return ChainVerification(task_id=task_id, valid=True, verified_count=len(rows))

    @staticmethod
    def _corrupted(task_id: str, index: int, event_id: str, reason: str) -> ChainVerification:
        logger.error(
            "chain_corrupted",
            extra={"task_id": task_id, "event_id": event_id, "index": index, "reason": reason},
        )
        return ChainVerification(
            task_id=task_id,
            valid=False,
            verified_count=index,
            corrupted_at=event_id,
            reason=reason,  # type: ignore[arg-type]
        )

    def verified_events(self, task_id: str) -> list[Event]:
        """Events for the task, or ChainCorruptedError if the chain does not verify."""

        rows = self._read_chain(task_id)
        result = self._check_rows(task_id, rows)
        if not result.valid:
            raise ChainCorruptedError(task_id, str(result.corrupted_at), str(result.reason))
        return [row_to_event(r) for r in rows]
