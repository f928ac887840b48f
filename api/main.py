from __future__ import annotations

import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.deps import load_config, assembler_for, pipeline_for, rate_limiter_for
from api.errors import ApiError, api_error_handler, docket_error_handler
from api.routes import get_api_router
from docket import __version__
from docket.core.config import Config
from docket.core.exceptions import ConfigError, DocketError
from docket.core.log import configure_logging


def create_app(config: Config | None = None) -> FastAPI:
    start = time.monotonic()

    if config is None:
        config = load_config()

    # Security check: refuse to start with empty auth_token unless explicitly overridden
    auth_token = str(config.api.auth_token or "")
    insecure_ok = os.environ.get("DOCKET_INSECURE_OK", "").lower() in ("1", "true", "yes")

    if not auth_token and not insecure_ok:
        msg = (
            "SECURITY ERROR: API auth_token is empty\n"
            "\n"
            "Set DOCKET_API__AUTH_TOKEN environment variable or add to config:\n"
            "  api:\n"
            "    auth_token: your-secret-token\n"
            "\n"
            "To run without auth (dev/test only), set DOCKET_INSECURE_OK=1"
        )
        raise RuntimeError(msg)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.started_at = start
        app.state.config = getattr(app.state, "config", None) or config
        configure_logging(app.state.config.logging)

        created_db = getattr(app.state, "db", None) is None

        # Build the service graph once; routes share these instances.
        pipeline_for(app)
        cascade = assembler_for(app).cascade
        limiter = rate_limiter_for(app)
        await limiter.start()

        yield

        await limiter.aclose()
        await cascade.aclose()
        if created_db:
            app.state.db.close()

    openapi_tags = [
        {"name": "health", "description": "Liveness and version metadata."},
        {"name": "webhooks", "description": "Signed provider webhooks (Slack, GitHub, Jira)."},
        {"name": "tasks", "description": "Task event trails and chain verification."},
        {"name": "proofs", "description": "Proof packet assembly, summaries, export and sharing."},
        {"name": "share", "description": "Public read-only access to shared proof packets."},
    ]

    app = FastAPI(
        title="docket API",
        description="Verified delivery receipts from hash-chained task events",
        version=__version__,
        openapi_tags=openapi_tags,
        lifespan=lifespan,
    )
    app.state.config = config

    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(DocketError, docket_error_handler)

    # CORS: only enable if origins explicitly configured
    if config.api.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.api.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(get_api_router(), prefix="/api/v1")
    return app


# Module-level app for uvicorn (e.g. `uvicorn api.main:app`).
# Guarded so test imports don't crash when auth_token isn't configured.
try:
    app = create_app()
except (RuntimeError, ConfigError):
    app = None
