"""docket.core.models

Core domain models.

The event record is immutable. The log is append-only.
"""

from __future__ import annotations

import hashlib
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel

from docket import CHAIN_VERSION
from docket.core.events import EventType, TriggerSource, canonical_json
from docket.core.time import to_iso


class Event(BaseModel):
    """Immutable event record."""

    id: str
    task_id: str
    seq: int
    event_type: EventType
    trigger_source: TriggerSource
    payload: dict[str, Any]
    created_at: datetime
    chain_version: int = CHAIN_VERSION
    prev_hash: str
    event_hash: str
    dedupe_key: str | None = None

    model_config = {"frozen": True}


class Workspace(BaseModel):
    id: str
    name: str
    slack_signing_secret: str | None = None
    github_webhook_secret: str | None = None
    jira_webhook_secret: str | None = None
    slack_team_id: str | None = None
    github_org: str | None = None
    jira_site: str | None = None
    policy_tier: str = "standard"
    veto_window_hours: float | None = None
    created_at: datetime

    model_config = {"frozen": True}

    def secret_for(self, provider: str) -> str | None:
        return {
            "slack": self.slack_signing_secret,
            "github": self.github_webhook_secret,
            "jira": self.jira_webhook_secret,
        }.get(str(provider))


class Task(BaseModel):
    id: str
    workspace_id: str
    key: str
    summary: str = ""
    created_at: datetime

    model_config = {"frozen": True}


class ChainVerification(BaseModel):
    task_id: str
    valid: bool
    verified_count: int
    corrupted_at: str | None = None
    reason: Literal["invalid_hash", "broken_link", "unsupported_version"] | None = None


def _canonical_v1(
    *,
    task_id: str,
    event_type: EventType,
    payload: dict[str, Any],
    trigger_source: TriggerSource,
    created_at: datetime,
) -> bytes:
    body = {
        "task_id": task_id,
        "event_type": str(event_type),
        "payload": payload,
        "trigger_source": str(trigger_source),
        "created_at": to_iso(created_at),
    }
    return canonical_json(body).encode("utf-8")


_ENCODERS = {1: _canonical_v1}


def supported_chain_versions() -> frozenset[int]:
    return frozenset(_ENCODERS)


def compute_event_hash(
    *,
    prev_hash: str,
    task_id: str,
    event_type: EventType,
    payload: dict[str, Any],
    trigger_source: TriggerSource,
    created_at: datetime,
    chain_version: int = CHAIN_VERSION,
) -> str:
    """Compute the chained SHA-256 event hash.

    Hash = sha256(version_byte || canonical_json(content) || prev_hash)

    Content is {task_id, event_type, payload, trigger_source, created_at} with
    sorted keys. The leading byte pins the encoding so historical events keep
    verifying after the encoding evolves.
    """

    encoder = _ENCODERS.get(int(chain_version))
    if encoder is None:
        raise ValueError(f"unsupported chain version: {chain_version}")

    h = hashlib.sha256()
    h.update(bytes([int(chain_version)]))
    h.update(
        encoder(
            task_id=task_id,
            event_type=event_type,
            payload=payload,
            trigger_source=trigger_source,
            created_at=created_at,
        )
    )
    h.update(prev_hash.encode("ascii"))
    return h.hexdigest()
