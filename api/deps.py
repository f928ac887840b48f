from __future__ import annotations

import threading
from collections.abc import Callable
from functools import lru_cache
from pathlib import Path
from typing import TypeVar

from fastapi import FastAPI, Request

from docket.core.config import Config
from docket.core.database import Database
from docket.core.event_log import EventLog
from docket.core.rate_limiter import RateLimiter, build_rate_limiter
from docket.core.registry import Registry
from docket.ingestion.pipeline import WebhookIngestionPipeline
from docket.proofs.assembler import ProofAssembler
from docket.proofs.closure import ClosureSweeper
from docket.summary.cascade import SummaryCascade

T = TypeVar("T")

_STATE_LOCK = threading.RLock()


@lru_cache
def _repo_root() -> Path:
    # Assume running from repo root (uvicorn started there). Fallback to parent of this file.
    here = Path(__file__).resolve()
    for p in [Path.cwd(), here.parent.parent]:
        if (p / "config" / "default.yaml").exists():
            return p
    return Path.cwd()


@lru_cache
def load_config() -> Config:
    return Config.from_repo_defaults(_repo_root())


def _state(app: FastAPI, name: str, factory: Callable[[], T]) -> T:
    """Return ``app.state.<name>``, building and caching it on first use.

    Services hold per-process state (task locks, limiter buckets, HTTP pools),
    so every request must see the same instance.
    """

    value = getattr(app.state, name, None)
    if value is not None:
        return value
    with _STATE_LOCK:
        value = getattr(app.state, name, None)
        if value is None:
            value = factory()
            setattr(app.state, name, value)
    return value


# -----------------
# Service graph (per app)
# -----------------


def config_for(app: FastAPI) -> Config:
    return getattr(app.state, "config", None) or load_config()


def db_for(app: FastAPI) -> Database:
    return _state(app, "db", lambda: Database(config_for(app).db_path))


def registry_for(app: FastAPI) -> Registry:
    return _state(app, "registry", lambda: Registry(db_for(app)))


def event_log_for(app: FastAPI) -> EventLog:
    return _state(app, "event_log", lambda: EventLog(db_for(app)))


def rate_limiter_for(app: FastAPI) -> RateLimiter:
    return _state(app, "rate_limiter", lambda: build_rate_limiter(config_for(app).rate_limits, db_for(app)))


def cascade_for(app: FastAPI) -> SummaryCascade:
    return _state(app, "summary_cascade", lambda: SummaryCascade(config_for(app).summary))


def closure_for(app: FastAPI) -> ClosureSweeper:
    return _state(
        app,
        "closure",
        lambda: ClosureSweeper(registry=registry_for(app), event_log=event_log_for(app), cfg=config_for(app).closure),
    )


def pipeline_for(app: FastAPI) -> WebhookIngestionPipeline:
    return _state(
        app,
        "pipeline",
        lambda: WebhookIngestionPipeline(
            registry=registry_for(app), event_log=event_log_for(app), closure=closure_for(app)
        ),
    )


def assembler_for(app: FastAPI) -> ProofAssembler:
    return _state(
        app,
        "assembler",
        lambda: ProofAssembler(
            db=db_for(app), registry=registry_for(app), event_log=event_log_for(app), cascade=cascade_for(app)
        ),
    )


# -----------------
# Request dependencies
# -----------------


def get_config(request: Request) -> Config:
    return config_for(request.app)


def get_db(request: Request) -> Database:
    return db_for(request.app)


def get_event_log(request: Request) -> EventLog:
    return event_log_for(request.app)


def get_rate_limiter(request: Request) -> RateLimiter:
    return rate_limiter_for(request.app)


def get_cascade(request: Request) -> SummaryCascade:
    return cascade_for(request.app)


def get_pipeline(request: Request) -> WebhookIngestionPipeline:
    return pipeline_for(request.app)


def get_assembler(request: Request) -> ProofAssembler:
    return assembler_for(request.app)
