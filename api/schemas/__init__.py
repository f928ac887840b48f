from api.schemas.common import ErrorResponse
from api.schemas.events import EventListResponse, EventResponse, WebhookResponse
from api.schemas.proofs import (
    ProofListResponse,
    ProofResponse,
    ShareResponse,
    SharedProofResponse,
    SummarizeRequest,
    SummarizeResponse,
)

__all__ = [
    "ErrorResponse",
    "EventListResponse",
    "EventResponse",
    "ProofListResponse",
    "ProofResponse",
    "ShareResponse",
    "SharedProofResponse",
    "SummarizeRequest",
    "SummarizeResponse",
    "WebhookResponse",
]
