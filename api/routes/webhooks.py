from __future__ import annotations

import asyncio
import logging
import threading

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.deps import get_config, get_pipeline
from api.errors import ApiError
from api.rate_limit import WebhookLimit
from api.schemas.common import error_responses
from api.schemas.events import WebhookEventRef, WebhookResponse
from docket.core.config import Config
from docket.core.events import Provider
from docket.ingestion.pipeline import WebhookIngestionPipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", dependencies=[WebhookLimit])


@router.post(
    "/{workspace_id}/{provider}",
    response_model=WebhookResponse,
    responses=error_responses(401, 403, 404, 409, 422, 429, 500, 503),
)
async def receive_webhook(
    workspace_id: str,
    provider: Provider,
    request: Request,
    pipeline: WebhookIngestionPipeline = Depends(get_pipeline),
    config: Config = Depends(get_config),
) -> WebhookResponse | JSONResponse:
    # Signatures cover the exact bytes on the wire; read them before anything parses.
    raw = await request.body()

    # wait_for cannot stop the worker thread; the flag stops its writes.
    cancel = threading.Event()
    try:
        result = await asyncio.wait_for(
            asyncio.to_thread(pipeline.ingest, provider, workspace_id, raw, request.headers, cancel=cancel),
            timeout=config.api.ingest_timeout_seconds,
        )
    except TimeoutError as e:
        cancel.set()
        logger.error(
            "webhook_deadline_exceeded",
            extra={"provider": str(provider), "workspace_id": workspace_id},
        )
        raise ApiError(
            code="webhook.deadline_exceeded",
            message="Ingestion did not finish in time; retry the delivery",
            status=503,
        ) from e

    if result.challenge is not None:
        return JSONResponse({"challenge": result.challenge})

    return WebhookResponse(
        accepted=result.accepted,
        delivery_id=result.delivery_id,
        events=[WebhookEventRef(id=e.id, task_id=e.task_id, event_type=str(e.event_type)) for e in result.events],
        ignored=result.ignored,
    )
