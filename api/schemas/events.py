from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel

from docket.core.models import Event


class EventResponse(BaseModel):
    id: str
    task_id: str
    seq: int
    event_type: str
    trigger_source: str
    payload: dict[str, Any]
    created_at: datetime
    chain_version: int
    prev_hash: str
    event_hash: str

    @classmethod
    def from_event(cls, ev: Event) -> EventResponse:
        return cls(
            id=ev.id,
            task_id=ev.task_id,
            seq=ev.seq,
            event_type=str(ev.event_type),
            trigger_source=str(ev.trigger_source),
            payload=ev.payload,
            created_at=ev.created_at,
            chain_version=ev.chain_version,
            prev_hash=ev.prev_hash,
            event_hash=ev.event_hash,
        )


class EventListResponse(BaseModel):
    task_id: str
    items: list[EventResponse]
    total: int


class WebhookEventRef(BaseModel):
    id: str
    task_id: str
    event_type: str


class WebhookResponse(BaseModel):
    accepted: bool
    delivery_id: str | None = None
    events: list[WebhookEventRef] = []
    ignored: str | None = None
