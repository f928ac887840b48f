from __future__ import annotations

from fastapi import APIRouter, Depends

from api.auth import AuthDep
from api.deps import get_assembler, get_event_log
from api.rate_limit import ApiLimit
from api.schemas.common import error_responses
from api.schemas.events import EventListResponse, EventResponse
from api.schemas.proofs import ProofListResponse, ProofResponse
from docket.core.event_log import EventLog
from docket.core.models import ChainVerification
from docket.proofs.assembler import ProofAssembler

router = APIRouter(prefix="/tasks", dependencies=[AuthDep, ApiLimit])


@router.get("/{task_id}/events", response_model=EventListResponse, responses=error_responses(404))
def list_events(task_id: str, event_log: EventLog = Depends(get_event_log)) -> EventListResponse:
    events = event_log.list_events(task_id)
    return EventListResponse(
        task_id=task_id,
        items=[EventResponse.from_event(e) for e in events],
        total=len(events),
    )


@router.get("/{task_id}/verify", response_model=ChainVerification, responses=error_responses(404))
def verify_chain(task_id: str, event_log: EventLog = Depends(get_event_log)) -> ChainVerification:
    return event_log.verify_chain(task_id)


@router.post("/{task_id}/proof", response_model=ProofResponse, responses=error_responses(404, 409))
def assemble_proof(task_id: str, assembler: ProofAssembler = Depends(get_assembler)) -> ProofResponse:
    return ProofResponse.from_packet(assembler.assemble(task_id))


@router.get("/{task_id}/proofs", response_model=ProofListResponse, responses=error_responses(404))
def list_proofs(task_id: str, assembler: ProofAssembler = Depends(get_assembler)) -> ProofListResponse:
    return ProofListResponse(
        task_id=task_id,
        items=[ProofResponse.from_packet(p) for p in assembler.list_packets(task_id)],
    )
