from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from api.schemas.events import EventResponse
from docket.proofs.assembler import SharedProof
from docket.proofs.store import ProofPacket


class ProofResponse(BaseModel):
    id: str
    task_id: str
    status: str
    event_ids: list[str]
    head_hash: str | None = None
    summary: str | None = None
    summary_model: str | None = None
    created_at: datetime
    updated_at: datetime
    finalized_at: datetime | None = None
    exported_at: datetime | None = None
    export_count: int = 0
    shared: bool = False

    @classmethod
    def from_packet(cls, p: ProofPacket) -> ProofResponse:
        data = p.model_dump(exclude={"share_token"})
        data["status"] = str(p.status)
        return cls(**data, shared=p.share_token is not None)


class ProofListResponse(BaseModel):
    task_id: str
    items: list[ProofResponse]


class SummarizeRequest(BaseModel):
    include_commits: bool = True
    include_pr_description: bool = True
    tone: Literal["professional", "casual", "technical"] = "professional"
    mode: Literal["fast", "deep"] = "fast"


class SummarizeResponse(BaseModel):
    packet_id: str
    summary: str
    model: str


class ShareResponse(BaseModel):
    packet_id: str
    share_token: str | None = Field(None, description="Present only when sharing is active")
    share_path: str | None = None


class SharedProofResponse(BaseModel):
    task_key: str
    task_summary: str
    proof: ProofResponse
    events: list[EventResponse]

    @classmethod
    def from_shared(cls, s: SharedProof) -> SharedProofResponse:
        return cls(
            task_key=s.task.key,
            task_summary=s.task.summary,
            proof=ProofResponse.from_packet(s.packet),
            events=[EventResponse.from_event(e) for e in s.events],
        )
