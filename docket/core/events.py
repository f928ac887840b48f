"""docket.core.events

The event contract is the primitive.

Providers speak their own dialects; the log speaks only this one.
"""

from __future__ import annotations

import hashlib
import json
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field


class EventType(StrEnum):
    """Canonical task lifecycle events."""

    HANDSHAKE = "handshake"
    HANDSHAKE_REJECTED = "handshake_rejected"
    PR_OPENED = "pr_opened"
    PR_MERGED = "pr_merged"
    PR_APPROVED = "pr_approved"
    CI_PASSED = "ci_passed"
    CI_FAILED = "ci_failed"
    CLOSURE_PROPOSED = "closure_proposed"
    CLOSURE_VETOED = "closure_vetoed"
    CLOSURE_FINALIZED = "closure_finalized"
    JIRA_STATUS_CHANGED = "jira_status_changed"
    SLACK_MESSAGE = "slack_message"


CLOSURE_EVENTS: frozenset[EventType] = frozenset(
    {EventType.CLOSURE_PROPOSED, EventType.CLOSURE_VETOED, EventType.CLOSURE_FINALIZED}
)


class TriggerSource(StrEnum):
    AUTOMATIC = "automatic"
    JIRA_WEBHOOK = "jira_webhook"
    GITHUB_WEBHOOK = "github_webhook"
    SLACK_WEBHOOK = "slack_webhook"
    MANUAL = "manual"


class Provider(StrEnum):
    SLACK = "slack"
    GITHUB = "github"
    JIRA = "jira"


PROVIDER_TRIGGER: dict[Provider, TriggerSource] = {
    Provider.SLACK: TriggerSource.SLACK_WEBHOOK,
    Provider.GITHUB: TriggerSource.GITHUB_WEBHOOK,
    Provider.JIRA: TriggerSource.JIRA_WEBHOOK,
}


# -----------------
# Typed payloads
# -----------------


class HandshakePayload(BaseModel):
    """Task accepted (passive detection: moved to In Progress)."""

    issue_title: str
    status: str
    assignee: str | None = None
    jira_site: str | None = None


class HandshakeRejectedPayload(BaseModel):
    rejected_by: str | None = None
    reason: str | None = None


class PullRequestPayload(BaseModel):
    repo: str | None = None
    sender: str | None = None
    pr_number: int | None = None
    pr_title: str | None = None
    pr_url: str | None = None
    pr_description: str | None = None
    branch: str | None = None
    commits: list[dict[str, str]] = Field(default_factory=list)


class ReviewPayload(BaseModel):
    repo: str | None = None
    pr_number: int | None = None
    reviewer: str | None = None
    state: str = "approved"


class CIPayload(BaseModel):
    repo: str | None = None
    check_name: str | None = None
    conclusion: str
    head_sha: str | None = None
    branch: str | None = None


class ClosureProposedPayload(BaseModel):
    policy_tier: str
    scheduled_close_at: str
    veto_window_hours: float


class ClosureVetoedPayload(BaseModel):
    vetoed_by: str | None = None
    reason: str | None = None


class ClosureFinalizedPayload(BaseModel):
    reason: Literal["manual_approval", "veto_window_elapsed"]
    approved_by: str | None = None


class JiraStatusPayload(BaseModel):
    from_status: str | None = None
    to_status: str | None = None


_EVENT_PAYLOAD_MODELS: dict[EventType, type[BaseModel]] = {
    EventType.HANDSHAKE: HandshakePayload,
    EventType.HANDSHAKE_REJECTED: HandshakeRejectedPayload,
    EventType.PR_OPENED: PullRequestPayload,
    EventType.PR_MERGED: PullRequestPayload,
    EventType.PR_APPROVED: ReviewPayload,
    EventType.CI_PASSED: CIPayload,
    EventType.CI_FAILED: CIPayload,
    EventType.CLOSURE_PROPOSED: ClosureProposedPayload,
    EventType.CLOSURE_VETOED: ClosureVetoedPayload,
    EventType.CLOSURE_FINALIZED: ClosureFinalizedPayload,
    EventType.JIRA_STATUS_CHANGED: JiraStatusPayload,
}


def payload_model_for(event_type: EventType) -> type[BaseModel] | None:
    return _EVENT_PAYLOAD_MODELS.get(event_type)


def canonical_json(data: Any) -> str:
    """Canonical JSON serialization used for hashing and dedupe."""

    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def payload_hash(payload: BaseModel | dict[str, Any]) -> str:
    """SHA-256 hash of canonical payload JSON."""

    obj = payload.model_dump(mode="json") if isinstance(payload, BaseModel) else payload
    return hashlib.sha256(canonical_json(obj).encode("utf-8")).hexdigest()
