from __future__ import annotations

import hmac

from fastapi import Depends, Header

from api.deps import get_config
from api.errors import ApiError
from docket.core.config import Config


def require_bearer_token(
    authorization: str | None = Header(default=None, alias="Authorization"),
    config: Config = Depends(get_config),
) -> None:
    """Require Authorization: Bearer <token>.

    If config.api.auth_token is empty, auth is treated as disabled (startup
    refuses that unless DOCKET_INSECURE_OK is set).
    """

    expected = str(config.api.auth_token or "")
    if not expected:
        return

    if not authorization:
        raise ApiError(
            code="auth.missing_token",
            message="Missing bearer token",
            status=401,
        )

    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise ApiError(
            code="auth.invalid_header",
            message="Invalid authorization header",
            status=401,
        )

    token = parts[1].strip()
    if not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
        raise ApiError(
            code="auth.invalid_token",
            message="Invalid bearer token",
            status=401,
        )


AuthDep = Depends(require_bearer_token)
