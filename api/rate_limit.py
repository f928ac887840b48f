from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, Request, Response

from api.deps import get_config, get_rate_limiter
from api.errors import ApiError
from docket.core.config import Config
from docket.core.rate_limiter import RateLimitDecision, RateLimiter


def _client_id(request: Request) -> str:
    return request.client.host if request.client else "anonymous"


def _headers(decision: RateLimitDecision) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(decision.reset_at),
    }


def rate_limited(rule_name: str) -> Callable[..., None]:
    """Dependency enforcing the named rule from ``rate_limits``. Key is ``path:client``."""

    def _check(
        request: Request,
        response: Response,
        config: Config = Depends(get_config),
        limiter: RateLimiter = Depends(get_rate_limiter),
    ) -> None:
        rule = getattr(config.rate_limits, rule_name)
        decision = limiter.check(key=f"{request.url.path}:{_client_id(request)}", rule=rule)
        headers = _headers(decision)
        if not decision.allowed:
            retry_after = decision.retry_after_seconds()
            raise ApiError(
                code="rate_limited",
                message="Too many requests",
                status=429,
                headers={**headers, "Retry-After": str(retry_after)},
                retry_after=retry_after,
            )
        response.headers.update(headers)

    return _check


WebhookLimit = Depends(rate_limited("webhooks"))
ApiLimit = Depends(rate_limited("api"))
AuthLimit = Depends(rate_limited("auth"))
