"""docket.ingestion.normalizers

Provider dialects → canonical events.

Each normalizer is a pure function of an already-verified, already-parsed
body. Unknown or irrelevant deliveries normalize to nothing. Raw provider
bodies are never stored; payloads are rebuilt through the typed models in
``docket.core.events``.
"""

from __future__ import annotations

import hashlib
import json
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qs, urlparse

from pydantic import ValidationError

from docket.core.events import EventType, Provider, TriggerSource, payload_model_for
from docket.core.exceptions import PayloadError
from docket.security.signatures import header

TASK_KEY_RE = re.compile(r"([A-Z][A-Z0-9]*-\d+)")

MAX_COMMITS = 50

SLACK_REJECT_ACTIONS = frozenset({"reject_task", "reject_handshake"})
SLACK_VETO_ACTIONS = frozenset({"veto_closure"})
SLACK_APPROVE_ACTIONS = frozenset({"approve_closure"})


@dataclass(frozen=True, slots=True)
class NormalizedEvent:
    task_key: str
    event_type: EventType
    payload: dict[str, Any]
    trigger_source: TriggerSource
    task_summary: str = ""
    # Only the issue tracker may introduce a task.
    registers_task: bool = False


@dataclass(frozen=True, slots=True)
class Normalized:
    events: tuple[NormalizedEvent, ...] = ()
    challenge: str | None = None
    ignored: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)


def extract_task_key(*texts: str | None) -> str | None:
    """First ``ABC-123`` style key found in the given strings, in order."""

    for t in texts:
        if not t:
            continue
        m = TASK_KEY_RE.search(t)
        if m:
            return m.group(1)
    return None


def _typed(event_type: EventType, data: dict[str, Any]) -> dict[str, Any]:
    model = payload_model_for(event_type)
    if model is None:
        return data
    try:
        return model.model_validate(data).model_dump(mode="json")
    except ValidationError as e:
        raise PayloadError(f"{event_type} payload invalid: {e.errors()[0].get('msg', 'invalid')}") from e


def _dig(obj: Any, *path: str) -> Any:
    for p in path:
        if not isinstance(obj, Mapping):
            return None
        obj = obj.get(p)
    return obj


# -----------------
# Parsing
# -----------------


def parse_body(provider: Provider, raw_body: bytes, headers: Mapping[str, str]) -> dict[str, Any]:
    """Decode a verified body. Slack interactive deliveries are form-encoded ``payload=``."""

    try:
        text = raw_body.decode("utf-8")
    except UnicodeDecodeError as e:
        raise PayloadError("body is not UTF-8") from e

    ctype = (header(headers, "Content-Type") or "").lower()
    if provider is Provider.SLACK and (
        "application/x-www-form-urlencoded" in ctype or text.startswith("payload=")
    ):
        form = parse_qs(text, keep_blank_values=True)
        values = form.get("payload")
        if not values:
            raise PayloadError("slack form body has no payload field")
        text = values[0]

    try:
        body = json.loads(text)
    except json.JSONDecodeError as e:
        raise PayloadError(f"body is not valid JSON: {e.msg}") from e
    if not isinstance(body, dict):
        raise PayloadError("body must be a JSON object")
    return body


def delivery_id(provider: Provider, headers: Mapping[str, str], body: Mapping[str, Any], raw_body: bytes) -> str:
    """Provider delivery id, or a digest of the exact bytes when there is none."""

    did: Any = None
    if provider is Provider.GITHUB:
        did = header(headers, "X-GitHub-Delivery")
    elif provider is Provider.JIRA:
        did = header(headers, "X-Atlassian-Webhook-Identifier")
    else:
        did = body.get("event_id") or body.get("trigger_id")
        if not did and isinstance(body.get("actions"), list) and body["actions"]:
            did = body["actions"][0].get("action_ts")
    if did:
        return str(did)
    return "sha256-" + hashlib.sha256(raw_body).hexdigest()


# -----------------
# GitHub
# -----------------


def _commits(body: Mapping[str, Any]) -> list[dict[str, str]]:
    out: list[dict[str, str]] = []
    for c in (body.get("commits") or [])[:MAX_COMMITS]:
        if not isinstance(c, Mapping):
            continue
        out.append(
            {
                "message": str(c.get("message") or _dig(c, "commit", "message") or "").strip(),
                "author": str(_dig(c, "author", "name") or _dig(c, "author", "login") or ""),
            }
        )
    return [c for c in out if c["message"]]


def normalize_github(event_name: str | None, body: Mapping[str, Any]) -> Normalized:
    action = body.get("action")
    repo = _dig(body, "repository", "full_name")
    sender = _dig(body, "sender", "login")
    pr = body.get("pull_request") or {}
    branch = _dig(pr, "head", "ref")
    title = pr.get("title") if isinstance(pr, Mapping) else None

    if event_name == "ping":
        return Normalized(ignored="ping")

    if event_name == "pull_request":
        if action == "opened":
            et = EventType.PR_OPENED
        elif action == "closed" and pr.get("merged"):
            et = EventType.PR_MERGED
        else:
            return Normalized(ignored=f"pull_request:{action}")

        key = extract_task_key(branch, title)
        if key is None:
            return Normalized(ignored="no_task_key")
        payload = _typed(
            et,
            {
                "repo": repo,
                "sender": sender,
                "pr_number": body.get("number") or pr.get("number"),
                "pr_title": title,
                "pr_url": pr.get("html_url"),
                "pr_description": pr.get("body"),
                "branch": branch,
                "commits": _commits(body),
            },
        )
        return Normalized(events=(NormalizedEvent(key, et, payload, TriggerSource.GITHUB_WEBHOOK),))

    if event_name == "pull_request_review":
        state = str(_dig(body, "review", "state") or "").lower()
        if action != "submitted" or state != "approved":
            return Normalized(ignored=f"pull_request_review:{action}:{state}")
        key = extract_task_key(branch, title)
        if key is None:
            return Normalized(ignored="no_task_key")
        payload = _typed(
            EventType.PR_APPROVED,
            {
                "repo": repo,
                "pr_number": pr.get("number"),
                "reviewer": _dig(body, "review", "user", "login") or sender,
                "state": "approved",
            },
        )
        return Normalized(
            events=(NormalizedEvent(key, EventType.PR_APPROVED, payload, TriggerSource.GITHUB_WEBHOOK),)
        )

    if event_name in ("check_suite", "check_run"):
        if action != "completed":
            return Normalized(ignored=f"{event_name}:{action}")
        check = body.get(event_name) or {}
        conclusion = str(check.get("conclusion") or body.get("conclusion") or "")
        if conclusion in ("neutral", "skipped"):
            return Normalized(ignored=f"{event_name}:{conclusion}")
        et = EventType.CI_PASSED if conclusion == "success" else EventType.CI_FAILED

        head_branch = check.get("head_branch") or _dig(check, "check_suite", "head_branch")
        pr_titles: list[str | None] = []
        for p in check.get("pull_requests") or []:
            if isinstance(p, Mapping):
                pr_titles.append(_dig(p, "head", "ref"))
        key = extract_task_key(head_branch, *pr_titles)
        if key is None:
            return Normalized(ignored="no_task_key")
        payload = _typed(
            et,
            {
                "repo": repo,
                "check_name": check.get("name") or _dig(check, "app", "name") or event_name,
                "conclusion": conclusion or "unknown",
                "head_sha": check.get("head_sha"),
                "branch": head_branch,
            },
        )
        return Normalized(events=(NormalizedEvent(key, et, payload, TriggerSource.GITHUB_WEBHOOK),))

    return Normalized(ignored=f"event:{event_name}")


# -----------------
# Jira
# -----------------


def normalize_jira(body: Mapping[str, Any]) -> Normalized:
    issue = body.get("issue") or {}
    key = issue.get("key") if isinstance(issue, Mapping) else None
    if not key:
        return Normalized(ignored="no_issue")

    items = _dig(body, "changelog", "items") or []
    change = next((i for i in items if isinstance(i, Mapping) and i.get("field") == "status"), None)
    if change is None:
        return Normalized(ignored="no_status_change")

    to_status = change.get("toString")
    summary = str(_dig(issue, "fields", "summary") or "Untitled Task")
    site = urlparse(str(issue.get("self") or "")).hostname

    if to_status and "in progress" in str(to_status).lower():
        payload = _typed(
            EventType.HANDSHAKE,
            {
                "issue_title": summary,
                "status": to_status,
                "assignee": _dig(issue, "fields", "assignee", "displayName")
                or _dig(body, "user", "displayName"),
                "jira_site": site,
            },
        )
        ev = NormalizedEvent(
            str(key),
            EventType.HANDSHAKE,
            payload,
            TriggerSource.JIRA_WEBHOOK,
            task_summary=summary,
            registers_task=True,
        )
        return Normalized(events=(ev,))

    payload = _typed(
        EventType.JIRA_STATUS_CHANGED,
        {"from_status": change.get("fromString"), "to_status": to_status},
    )
    return Normalized(
        events=(NormalizedEvent(str(key), EventType.JIRA_STATUS_CHANGED, payload, TriggerSource.JIRA_WEBHOOK),)
    )


# -----------------
# Slack
# -----------------


def normalize_slack(body: Mapping[str, Any]) -> Normalized:
    kind = body.get("type")

    if kind == "url_verification":
        challenge = body.get("challenge")
        if not isinstance(challenge, str):
            raise PayloadError("url_verification without challenge")
        return Normalized(challenge=challenge)

    if kind == "block_actions":
        actions = body.get("actions") or []
        if not actions or not isinstance(actions[0], Mapping):
            return Normalized(ignored="no_action")
        action = actions[0]
        action_id = str(action.get("action_id") or "")
        key = extract_task_key(str(action.get("value") or ""))
        if key is None:
            return Normalized(ignored="no_task_key")
        user = _dig(body, "user", "id")
        reason = _dig(body, "state", "values", "reason", "reason", "value")

        if action_id in SLACK_REJECT_ACTIONS:
            et, data = EventType.HANDSHAKE_REJECTED, {"rejected_by": user, "reason": reason}
        elif action_id in SLACK_VETO_ACTIONS:
            et, data = EventType.CLOSURE_VETOED, {"vetoed_by": user, "reason": reason}
        elif action_id in SLACK_APPROVE_ACTIONS:
            et, data = EventType.CLOSURE_FINALIZED, {"reason": "manual_approval", "approved_by": user}
        else:
            return Normalized(ignored=f"action:{action_id}")
        return Normalized(
            events=(NormalizedEvent(key, et, _typed(et, data), TriggerSource.SLACK_WEBHOOK),),
            meta={"action_id": action_id, "task_key": key},
        )

    if kind == "event_callback":
        event = body.get("event") or {}
        if event.get("type") != "message" or event.get("subtype") or event.get("bot_id"):
            return Normalized(ignored="not_user_message")
        key = extract_task_key(str(event.get("text") or ""))
        if key is None:
            return Normalized(ignored="no_task_key")
        payload = {
            "channel": event.get("channel"),
            "user": event.get("user"),
            "text": str(event.get("text") or "")[:2000],
            "ts": event.get("ts"),
        }
        return Normalized(
            events=(NormalizedEvent(key, EventType.SLACK_MESSAGE, payload, TriggerSource.SLACK_WEBHOOK),)
        )

    return Normalized(ignored=f"type:{kind}")
