"""docket.proofs.assembler

Proof packet assembly.

A packet is a fold over the verified log. The assembler never writes events;
it only reads the chain, snapshots it into packets, and seals a packet when
the fold crosses PENDING → FINALIZED. Sealed packets are never rebuilt.
"""

from __future__ import annotations

import logging
import secrets
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime

from docket.core.database import Database
from docket.core.event_log import EventLog
from docket.core.exceptions import ChainCorruptedError, EventStoreError, PacketStateError, PayloadError
from docket.core.models import Event, Task
from docket.core.registry import Registry
from docket.proofs.export import ExportArtifact, render
from docket.proofs.state_machine import PacketStateMachine, PacketStatus, Segment, fold
from docket.proofs.store import ProofPacket, ProofStore
from docket.summary.base import FALLBACK_MODEL, SummaryInput, SummaryOptions, SummaryResult
from docket.summary.cascade import SummaryCascade
from docket.summary.fallback import render_template

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("pdf", "json")


@dataclass(frozen=True, slots=True)
class SharedProof:
    packet: ProofPacket
    task: Task
    events: tuple[Event, ...]


@dataclass
class ProofAssembler:
    db: Database
    registry: Registry
    event_log: EventLog
    cascade: SummaryCascade
    store: ProofStore = field(init=False)
    _sm: PacketStateMachine = field(default_factory=PacketStateMachine, init=False, repr=False)

    def __post_init__(self) -> None:
        self.store = ProofStore(self.db)

    # -----------------
    # Assembly
    # -----------------

    def assemble(self, task_id: str, *, now: datetime | None = None) -> ProofPacket:
        """Bring the task's packets up to date with its log and return the latest.

        Raises ChainCorruptedError before touching any packet if the chain does
        not verify.
        """

        task = self.registry.get_task(task_id)
        events = self.event_log.verified_events(task_id)

        with self.db.transaction(immediate=True) as conn:
            sealed = self.store.last_sealed(conn, task_id)
            open_pkt = self.store.open_packet(conn, task_id)

            start = 0
            if sealed is not None and sealed.event_ids:
                ids = [e.id for e in events]
                last = sealed.event_ids[-1]
                if last in ids:
                    start = ids.index(last) + 1
                elif conn.execute("SELECT 1 FROM events WHERE id = ?", (last,)).fetchone() is not None:
                    # Another assemble sealed past our read; its result is newer.
                    start = len(events)
                else:
                    raise EventStoreError(f"sealed packet {sealed.id} references unknown event")

            remaining = events[start:]
            if not remaining and sealed is not None:
                latest_id = open_pkt.id if open_pkt is not None else sealed.id
            else:
                latest_id = ""
                for seg in fold(remaining):
                    latest_id, open_pkt = self._apply_segment(conn, task, seg, open_pkt, now=now)

        packet = self.store.get(latest_id)
        logger.info(
            "proof_assembled",
            extra={
                "task_id": task_id,
                "packet_id": packet.id,
                "status": str(packet.status),
                "events": len(packet.event_ids),
            },
        )
        return packet

    def _apply_segment(
        self,
        conn: sqlite3.Connection,
        task: Task,
        seg: Segment,
        open_pkt: ProofPacket | None,
        *,
        now: datetime | None,
    ) -> tuple[str, ProofPacket | None]:
        """Persist one folded segment. Returns (packet id, still-open packet)."""

        event_ids = [e.id for e in seg.events]
        head = seg.events[-1].event_hash if seg.events else None

        if seg.sealed:
            if open_pkt is not None and open_pkt.summary:
                summary, model = open_pkt.summary, open_pkt.summary_model or FALLBACK_MODEL
            else:
                summary, model = render_template(SummaryInput.from_events(task, seg.events)), FALLBACK_MODEL

            if open_pkt is not None:
                self.store.update_open(
                    conn,
                    open_pkt.id,
                    status=PacketStatus.FINALIZED,
                    event_ids=event_ids,
                    head_hash=head,
                    summary=summary,
                    summary_model=model,
                    now=now,
                )
                pid = open_pkt.id
            else:
                pid = self.store.insert(
                    conn,
                    task_id=task.id,
                    status=PacketStatus.FINALIZED,
                    event_ids=event_ids,
                    head_hash=head,
                    summary=summary,
                    summary_model=model,
                    now=now,
                )
            logger.info("proof_sealed", extra={"task_id": task.id, "packet_id": pid, "head_hash": head})
            return pid, None

        if open_pkt is None:
            pid = self.store.insert(
                conn, task_id=task.id, status=seg.status, event_ids=event_ids, head_hash=head, now=now
            )
            return pid, None

        # A concurrent assemble may already have stored a longer snapshot.
        if len(open_pkt.event_ids) > len(event_ids):
            return open_pkt.id, open_pkt
        if open_pkt.event_ids != event_ids or open_pkt.status != seg.status:
            self.store.update_open(
                conn,
                open_pkt.id,
                status=seg.status,
                event_ids=event_ids,
                head_hash=head,
                summary=open_pkt.summary,
                summary_model=open_pkt.summary_model,
                now=now,
            )
        return open_pkt.id, open_pkt

    # -----------------
    # Reads
    # -----------------

    def get(self, packet_id: str) -> ProofPacket:
        return self.store.get(packet_id)

    def list_packets(self, task_id: str) -> list[ProofPacket]:
        self.registry.get_task(task_id)
        return self.store.list_for_task(task_id)

    def packet_events(self, packet: ProofPacket) -> list[Event]:
        """The packet's snapshot, re-read from a verified chain."""

        by_id = {e.id: e for e in self.event_log.verified_events(packet.task_id)}
        missing = [eid for eid in packet.event_ids if eid not in by_id]
        if missing:
            raise EventStoreError(f"packet {packet.id} references unknown events: {missing[:3]}")
        return [by_id[eid] for eid in packet.event_ids]

    # -----------------
    # Summary
    # -----------------

    async def request_summary(self, packet_id: str, options: SummaryOptions | None = None) -> SummaryResult:
        """Run the cascade for an open packet. Sealed packets keep their summary."""

        packet = self.store.get(packet_id)
        if packet.sealed:
            return SummaryResult(summary=packet.summary or "", model=packet.summary_model or FALLBACK_MODEL)

        task = self.registry.get_task(packet.task_id)
        data = SummaryInput.from_events(task, self.packet_events(packet))
        result = await self.cascade.run(data, options)

        if not self.store.set_summary(packet_id, summary=result.summary, model=result.model):
            # Sealed while the cascade ran; the sealed summary stands.
            current = self.store.get(packet_id)
            return SummaryResult(summary=current.summary or "", model=current.summary_model or FALLBACK_MODEL)

        logger.info("proof_summarized", extra={"packet_id": packet_id, "model": result.model})
        return result

    # -----------------
    # Export + sharing
    # -----------------

    def export(self, packet_id: str, fmt: str = "pdf") -> ExportArtifact:
        if fmt not in EXPORT_FORMATS:
            raise PayloadError(f"unsupported export format: {fmt}")

        packet = self.store.get(packet_id)
        if not self._sm.can_export(state=packet.status):
            raise PacketStateError(f"packet {packet_id} is {packet.status}; only finalized packets export")

        verification = self.event_log.verify_chain(packet.task_id)
        if not verification.valid:
            raise ChainCorruptedError(packet.task_id, str(verification.corrupted_at), str(verification.reason))

        task = self.registry.get_task(packet.task_id)
        artifact = render(fmt, packet, task, self.packet_events(packet), verification)

        self._sm.transition(state=packet.status, new_state=PacketStatus.EXPORTED, reason=f"export:{fmt}")
        exported = self.store.mark_exported(packet_id)
        logger.info(
            "proof_exported",
            extra={"packet_id": packet_id, "format": fmt, "export_count": exported.export_count},
        )
        return artifact

    def share(self, packet_id: str) -> ProofPacket:
        packet = self.store.get(packet_id)
        if not packet.sealed:
            raise PacketStateError(f"packet {packet_id} is {packet.status}; only finalized packets can be shared")
        if packet.share_token:
            return packet
        shared = self.store.set_share_token(packet_id, secrets.token_urlsafe(24))
        logger.info("proof_shared", extra={"packet_id": packet_id})
        return shared

    def revoke_share(self, packet_id: str) -> ProofPacket:
        revoked = self.store.set_share_token(packet_id, None)
        logger.info("proof_share_revoked", extra={"packet_id": packet_id})
        return revoked

    def get_by_share_token(self, token: str) -> SharedProof:
        packet = self.store.get_by_share_token(token)
        task = self.registry.get_task(packet.task_id)
        return SharedProof(packet=packet, task=task, events=tuple(self.packet_events(packet)))

