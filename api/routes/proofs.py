from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from api.auth import AuthDep
from api.deps import get_assembler
from api.rate_limit import ApiLimit
from api.schemas.common import error_responses
from api.schemas.proofs import ProofResponse, ShareResponse, SummarizeRequest, SummarizeResponse
from docket.proofs.assembler import ProofAssembler
from docket.summary.base import SummaryOptions

router = APIRouter(prefix="/proofs", dependencies=[AuthDep, ApiLimit])


@router.get("/{packet_id}", response_model=ProofResponse, responses=error_responses(404))
def get_proof(packet_id: str, assembler: ProofAssembler = Depends(get_assembler)) -> ProofResponse:
    return ProofResponse.from_packet(assembler.get(packet_id))


@router.post("/{packet_id}/summarize", response_model=SummarizeResponse, responses=error_responses(404, 409))
async def summarize_proof(
    packet_id: str,
    req: SummarizeRequest | None = None,
    assembler: ProofAssembler = Depends(get_assembler),
) -> SummarizeResponse:
    r = req or SummarizeRequest()
    result = await assembler.request_summary(
        packet_id,
        SummaryOptions(
            tone=r.tone,
            include_commits=r.include_commits,
            include_pr_description=r.include_pr_description,
            mode=r.mode,
        ),
    )
    return SummarizeResponse(packet_id=packet_id, summary=result.summary, model=result.model)


@router.post(
    "/{packet_id}/export",
    responses={
        200: {"content": {"application/pdf": {}, "application/json": {}}},
        **error_responses(404, 409, 422),
    },
)
def export_proof(
    packet_id: str,
    fmt: Literal["pdf", "json"] = Query("pdf", alias="format"),
    assembler: ProofAssembler = Depends(get_assembler),
) -> Response:
    artifact = assembler.export(packet_id, fmt)
    return Response(
        content=artifact.content,
        media_type=artifact.media_type,
        headers={"Content-Disposition": f'attachment; filename="{artifact.filename}"'},
    )


@router.post("/{packet_id}/share", response_model=ShareResponse, responses=error_responses(404, 409))
def share_proof(packet_id: str, assembler: ProofAssembler = Depends(get_assembler)) -> ShareResponse:
    p = assembler.share(packet_id)
    return ShareResponse(packet_id=p.id, share_token=p.share_token, share_path=f"/api/v1/share/{p.share_token}")


@router.delete("/{packet_id}/share", response_model=ShareResponse, responses=error_responses(404))
def revoke_share(packet_id: str, assembler: ProofAssembler = Depends(get_assembler)) -> ShareResponse:
    p = assembler.revoke_share(packet_id)
    return ShareResponse(packet_id=p.id, share_token=None, share_path=None)
