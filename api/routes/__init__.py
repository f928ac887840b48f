from __future__ import annotations

from fastapi import APIRouter

from api.routes import health, proofs, share, tasks, webhooks


def get_api_router() -> APIRouter:
    router = APIRouter()

    router.include_router(health.router, tags=["health"])
    router.include_router(webhooks.router, tags=["webhooks"])
    router.include_router(tasks.router, tags=["tasks"])
    router.include_router(proofs.router, tags=["proofs"])
    router.include_router(share.router, tags=["share"])

    return router
