from __future__ import annotations

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from docket.core.exceptions import (
    AppendCancelledError,
    ChainCorruptedError,
    ConfigError,
    DedupeConflictError,
    DocketError,
    PacketNotFoundError,
    PacketStateError,
    PayloadError,
    PersistenceError,
    SecretNotConfiguredError,
    SignatureExpiredError,
    SignatureInvalidError,
    StaleTailError,
    TaskNotFoundError,
    WorkspaceNotFoundError,
)

logger = logging.getLogger(__name__)


class ApiError(Exception):
    def __init__(
        self,
        code: str,
        message: str,
        status: int = 400,
        *,
        headers: dict[str, str] | None = None,
        **extra: object,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status = status
        self.headers = headers
        self.extra = extra


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    body = {"error": {"code": exc.code, "message": exc.message, **exc.extra}}
    return JSONResponse(status_code=exc.status, content=body, headers=exc.headers)


# Most specific first; the first isinstance match wins.
_DOMAIN_ERRORS: list[tuple[type[DocketError], str, int]] = [
    (SignatureExpiredError, "webhook.signature_expired", 401),
    (SignatureInvalidError, "webhook.signature_invalid", 401),
    (SecretNotConfiguredError, "webhook.secret_not_configured", 403),
    (WorkspaceNotFoundError, "workspace.not_found", 404),
    (TaskNotFoundError, "task.not_found", 404),
    (PacketNotFoundError, "proof.not_found", 404),
    (DedupeConflictError, "event.dedupe_conflict", 409),
    (StaleTailError, "event.stale_tail", 409),
    (ChainCorruptedError, "chain.corrupted", 409),
    (PacketStateError, "proof.invalid_state", 409),
    (PayloadError, "webhook.invalid_payload", 422),
    (PersistenceError, "store.unavailable", 500),
    (AppendCancelledError, "webhook.deadline_exceeded", 503),
    (ConfigError, "config.invalid", 500),
]


def to_api_error(exc: DocketError) -> ApiError:
    for cls, code, status in _DOMAIN_ERRORS:
        if isinstance(exc, cls):
            extra: dict[str, object] = {}
            if isinstance(exc, ChainCorruptedError):
                extra = {"task_id": exc.task_id, "event_id": exc.event_id, "reason": exc.reason}
            elif isinstance(exc, WorkspaceNotFoundError):
                extra = {"workspace_id": exc.workspace_id}
            elif isinstance(exc, TaskNotFoundError):
                extra = {"task": exc.task_ref}
            return ApiError(code=code, message=str(exc), status=status, **extra)
    return ApiError(code="internal", message="Internal error", status=500)


async def docket_error_handler(request: Request, exc: DocketError) -> JSONResponse:
    err = to_api_error(exc)
    if err.status >= 500:
        logger.error("request_failed", extra={"path": request.url.path, "code": err.code, "error": str(exc)})
    return await api_error_handler(request, err)
