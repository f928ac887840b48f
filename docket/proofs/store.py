"""docket.proofs.store

Proof packet persistence.

Sealed rows are never rewritten except for export bookkeeping and the share
token. Every UPDATE that touches content is guarded on an open status.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel

from docket.core.database import Database
from docket.core.exceptions import PacketNotFoundError, PacketStateError
from docket.core.time import parse_dt, to_iso, utc_now
from docket.proofs.state_machine import SEALED_STATES, PacketStatus


class ProofPacket(BaseModel):
    id: str
    task_id: str
    status: PacketStatus
    event_ids: list[str]
    head_hash: str | None = None
    summary: str | None = None
    summary_model: str | None = None
    created_at: datetime
    updated_at: datetime
    finalized_at: datetime | None = None
    exported_at: datetime | None = None
    export_count: int = 0
    share_token: str | None = None

    model_config = {"frozen": True}

    @property
    def sealed(self) -> bool:
        return self.status in SEALED_STATES


def _opt_dt(value: object) -> datetime | None:
    return None if value is None else parse_dt(str(value))


def row_to_packet(row: sqlite3.Row) -> ProofPacket:
    return ProofPacket(
        id=str(row["id"]),
        task_id=str(row["task_id"]),
        status=PacketStatus(str(row["status"])),
        event_ids=list(json.loads(row["event_ids"] or "[]")),
        head_hash=row["head_hash"],
        summary=row["summary"],
        summary_model=row["summary_model"],
        created_at=parse_dt(str(row["created_at"])),
        updated_at=parse_dt(str(row["updated_at"])),
        finalized_at=_opt_dt(row["finalized_at"]),
        exported_at=_opt_dt(row["exported_at"]),
        export_count=int(row["export_count"] or 0),
        share_token=row["share_token"],
    )


_OPEN = (str(PacketStatus.DRAFT), str(PacketStatus.PENDING))


@dataclass
class ProofStore:
    db: Database

    def get(self, packet_id: str) -> ProofPacket:
        row = self.db.conn.execute(
            "SELECT * FROM proof_packets WHERE id = ?", (str(packet_id),)
        ).fetchone()
        if row is None:
            raise PacketNotFoundError(f"proof packet not found: {packet_id}")
        return row_to_packet(row)

    def list_for_task(self, task_id: str) -> list[ProofPacket]:
        rows = self.db.conn.execute(
            "SELECT * FROM proof_packets WHERE task_id = ? ORDER BY created_at ASC, rowid ASC",
            (str(task_id),),
        ).fetchall()
        return [row_to_packet(r) for r in rows]

    def open_packet(self, conn: sqlite3.Connection, task_id: str) -> ProofPacket | None:
        row = conn.execute(
            """
            SELECT * FROM proof_packets
            WHERE task_id = ? AND status IN (?, ?)
            ORDER BY created_at DESC, rowid DESC LIMIT 1
            """,
            (str(task_id), *_OPEN),
        ).fetchone()
        return None if row is None else row_to_packet(row)

    def last_sealed(self, conn: sqlite3.Connection, task_id: str) -> ProofPacket | None:
        row = conn.execute(
            """
            SELECT * FROM proof_packets
            WHERE task_id = ? AND status NOT IN (?, ?)
            ORDER BY created_at DESC, rowid DESC LIMIT 1
            """,
            (str(task_id), *_OPEN),
        ).fetchone()
        return None if row is None else row_to_packet(row)

    def insert(
        self,
        conn: sqlite3.Connection,
        *,
        task_id: str,
        status: PacketStatus,
        event_ids: list[str],
        head_hash: str | None,
        summary: str | None = None,
        summary_model: str | None = None,
        now: datetime | None = None,
    ) -> str:
        pid = str(uuid.uuid4())
        ts = to_iso(now or utc_now())
        conn.execute(
            """
            INSERT INTO proof_packets (
                id, task_id, status, event_ids, head_hash, summary, summary_model,
                created_at, updated_at, finalized_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                pid,
                str(task_id),
                str(status),
                json.dumps(event_ids),
                head_hash,
                summary,
                summary_model,
                ts,
                ts,
                ts if status in SEALED_STATES else None,
            ),
        )
        return pid

    def update_open(
        self,
        conn: sqlite3.Connection,
        packet_id: str,
        *,
        status: PacketStatus,
        event_ids: list[str],
        head_hash: str | None,
        summary: str | None,
        summary_model: str | None,
        now: datetime | None = None,
    ) -> None:
        ts = to_iso(now or utc_now())
        cur = conn.execute(
            """
            UPDATE proof_packets
            SET status = ?, event_ids = ?, head_hash = ?, summary = ?, summary_model = ?,
                updated_at = ?, finalized_at = ?
            WHERE id = ? AND status IN (?, ?)
            """,
            (
                str(status),
                json.dumps(event_ids),
                head_hash,
                summary,
                summary_model,
                ts,
                ts if status in SEALED_STATES else None,
                str(packet_id),
                *_OPEN,
            ),
        )
        if cur.rowcount != 1:
            raise PacketStateError(f"packet {packet_id} is sealed")

    def set_summary(self, packet_id: str, *, summary: str, model: str) -> bool:
        """Store a summary on an open packet. False if the packet sealed meanwhile."""

        with self.db.transaction() as conn:
            cur = conn.execute(
                """
                UPDATE proof_packets SET summary = ?, summary_model = ?, updated_at = ?
                WHERE id = ? AND status IN (?, ?)
                """,
                (summary, model, to_iso(utc_now()), str(packet_id), *_OPEN),
            )
        return cur.rowcount == 1

    def mark_exported(self, packet_id: str, *, now: datetime | None = None) -> ProofPacket:
        ts = to_iso(now or utc_now())
        with self.db.transaction() as conn:
            cur = conn.execute(
                """
                UPDATE proof_packets
                SET status = ?, export_count = export_count + 1, exported_at = ?, updated_at = ?
                WHERE id = ? AND status IN (?, ?)
                """,
                (
                    str(PacketStatus.EXPORTED),
                    ts,
                    ts,
                    str(packet_id),
                    str(PacketStatus.FINALIZED),
                    str(PacketStatus.EXPORTED),
                ),
            )
        if cur.rowcount != 1:
            raise PacketStateError(f"packet {packet_id} is not finalized")
        return self.get(packet_id)

    def set_share_token(self, packet_id: str, token: str | None) -> ProofPacket:
        self.get(packet_id)
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE proof_packets SET share_token = ?, updated_at = ? WHERE id = ?",
                (token, to_iso(utc_now()), str(packet_id)),
            )
        return self.get(packet_id)

    def get_by_share_token(self, token: str) -> ProofPacket:
        row = self.db.conn.execute(
            "SELECT * FROM proof_packets WHERE share_token = ?", (str(token),)
        ).fetchone()
        if row is None:
            raise PacketNotFoundError("share link not found or revoked")
        return row_to_packet(row)
