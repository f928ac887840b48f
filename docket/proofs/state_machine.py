"""docket.proofs.state_machine

Proof packet lifecycle.

DRAFT → PENDING → FINALIZED → EXPORTED

Only closure events move a packet between the first three states. Export is
an explicit action and may repeat. Anything else in the log is content, not
control.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import Final

from docket.core.events import EventType
from docket.core.exceptions import PacketStateError
from docket.core.models import Event


class PacketStatus(StrEnum):
    DRAFT = "draft"
    PENDING = "pending"
    FINALIZED = "finalized"
    EXPORTED = "exported"


SEALED_STATES: Final[frozenset[PacketStatus]] = frozenset({PacketStatus.FINALIZED, PacketStatus.EXPORTED})

ALLOWED_TRANSITIONS: Final[dict[PacketStatus, set[PacketStatus]]] = {
    PacketStatus.DRAFT: {PacketStatus.PENDING},
    PacketStatus.PENDING: {PacketStatus.DRAFT, PacketStatus.FINALIZED},
    PacketStatus.FINALIZED: {PacketStatus.EXPORTED},
    PacketStatus.EXPORTED: {PacketStatus.EXPORTED},
}

EVENT_TRANSITIONS: Final[dict[tuple[PacketStatus, EventType], PacketStatus]] = {
    (PacketStatus.DRAFT, EventType.CLOSURE_PROPOSED): PacketStatus.PENDING,
    (PacketStatus.PENDING, EventType.CLOSURE_VETOED): PacketStatus.DRAFT,
    (PacketStatus.PENDING, EventType.CLOSURE_FINALIZED): PacketStatus.FINALIZED,
}


def next_status(status: PacketStatus, event_type: EventType) -> PacketStatus | None:
    """Status after ``event_type``, or None when the event does not move the packet."""

    return EVENT_TRANSITIONS.get((status, event_type))


@dataclass(frozen=True, slots=True)
class Segment:
    """Events covered by one packet and the status they fold to."""

    events: tuple[Event, ...]
    status: PacketStatus

    @property
    def sealed(self) -> bool:
        return self.status in SEALED_STATES


def fold(events: Iterable[Event], start: PacketStatus = PacketStatus.DRAFT) -> list[Segment]:
    """Split an ordered event stream into packets.

    Every PENDING → FINALIZED transition closes a segment; the next event
    opens a fresh DRAFT. A trailing open segment is returned only when it has
    events, or when there is nothing else to return.
    """

    status = start
    current: list[Event] = []
    out: list[Segment] = []

    for ev in events:
        current.append(ev)
        nxt = next_status(status, ev.event_type)
        if nxt is None:
            continue
        status = nxt
        if status is PacketStatus.FINALIZED:
            out.append(Segment(events=tuple(current), status=status))
            current = []
            status = PacketStatus.DRAFT

    if current or not out:
        out.append(Segment(events=tuple(current), status=status))
    return out


@dataclass(frozen=True, slots=True)
class PacketTransition:
    previous: PacketStatus
    new: PacketStatus
    reason: str


class PacketStateMachine:
    def transition(self, *, state: PacketStatus, new_state: PacketStatus, reason: str) -> PacketTransition:
        allowed = ALLOWED_TRANSITIONS.get(state, set())
        if new_state not in allowed:
            raise PacketStateError(f"invalid transition {state} -> {new_state}")
        return PacketTransition(previous=state, new=new_state, reason=reason)

    def can_export(self, *, state: PacketStatus) -> bool:
        return PacketStatus.EXPORTED in ALLOWED_TRANSITIONS.get(state, set())
