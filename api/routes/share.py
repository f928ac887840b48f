from __future__ import annotations

from fastapi import APIRouter, Depends

from api.deps import get_assembler
from api.rate_limit import AuthLimit
from api.schemas.common import error_responses
from api.schemas.proofs import SharedProofResponse
from docket.proofs.assembler import ProofAssembler

# Public: the token is the credential, so it gets the tight limit.
router = APIRouter(prefix="/share", dependencies=[AuthLimit])


@router.get("/{token}", response_model=SharedProofResponse, responses=error_responses(404, 429))
def get_shared_proof(token: str, assembler: ProofAssembler = Depends(get_assembler)) -> SharedProofResponse:
    return SharedProofResponse.from_shared(assembler.get_by_share_token(token))
