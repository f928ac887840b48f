"""docket.ingestion.pipeline

Webhook ingestion: verify → parse → normalize → resolve → dedupe → append.

Nothing reaches the log until the signature verifies against the workspace's
own secret. A replayed delivery maps to the same dedupe keys and returns the
events already stored.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime

from docket.core.event_log import EventLog
from docket.core.events import EventType, Provider
from docket.core.exceptions import AppendCancelledError, SignatureError
from docket.core.models import Event, Task, Workspace
from docket.core.registry import Registry
from docket.ingestion.normalizers import (
    Normalized,
    NormalizedEvent,
    delivery_id,
    normalize_github,
    normalize_jira,
    normalize_slack,
    parse_body,
)
from docket.proofs.closure import ClosureSweeper
from docket.security.signatures import header, verify_request

logger = logging.getLogger(__name__)

# Delivery evidence after which closure eligibility is re-evaluated.
CLOSURE_TRIGGERS = frozenset({EventType.PR_MERGED, EventType.PR_APPROVED, EventType.CI_PASSED})


@dataclass(frozen=True, slots=True)
class IngestResult:
    accepted: bool
    provider: Provider
    workspace_id: str
    delivery_id: str | None = None
    events: tuple[Event, ...] = ()
    challenge: str | None = None
    ignored: str | None = None


def _normalize(provider: Provider, body: Mapping, headers: Mapping[str, str]) -> Normalized:
    if provider is Provider.GITHUB:
        return normalize_github(header(headers, "X-GitHub-Event"), body)
    if provider is Provider.JIRA:
        return normalize_jira(body)
    return normalize_slack(body)


@dataclass
class WebhookIngestionPipeline:
    registry: Registry
    event_log: EventLog
    closure: ClosureSweeper

    def ingest(
        self,
        provider: Provider | str,
        workspace_id: str,
        raw_body: bytes,
        headers: Mapping[str, str],
        *,
        now: datetime | None = None,
        cancel: threading.Event | None = None,
    ) -> IngestResult:
        """Authenticate one delivery and append what it maps to.

        Once ``cancel`` is set (the HTTP deadline passed) no further task or
        event is written; the provider's retry completes the delivery.
        """

        p = Provider(provider)
        workspace = self.registry.get_workspace(workspace_id)

        try:
            verify_request(
                p,
                raw_body,
                headers,
                workspace.secret_for(p),
                now=None if now is None else now.timestamp(),
            )
        except SignatureError as e:
            logger.warning(
                "signature_rejected",
                extra={"provider": str(p), "workspace_id": workspace.id, "error": type(e).__name__},
            )
            raise

        body = parse_body(p, raw_body, headers)
        norm = _normalize(p, body, headers)

        if norm.challenge is not None:
            logger.info("slack_url_verification", extra={"workspace_id": workspace.id})
            return IngestResult(accepted=True, provider=p, workspace_id=workspace.id, challenge=norm.challenge)

        if not norm.events:
            logger.info(
                "webhook_ignored",
                extra={"provider": str(p), "workspace_id": workspace.id, "reason": norm.ignored},
            )
            return IngestResult(accepted=True, provider=p, workspace_id=workspace.id, ignored=norm.ignored)

        did = delivery_id(p, headers, body, raw_body)
        appended: list[Event] = []
        touched: dict[str, Task] = {}

        for i, ne in enumerate(norm.events):
            if cancel is not None and cancel.is_set():
                raise AppendCancelledError(f"{p} delivery {did} cancelled after {i} event(s)")
            task = self._resolve_task(workspace, ne)
            ev = self.event_log.append(
                task.id,
                ne.event_type,
                ne.payload,
                ne.trigger_source,
                dedupe_key=f"{p}:{did}:{i}",
                now=now,
                cancel=cancel,
            )
            appended.append(ev)
            if ne.event_type in CLOSURE_TRIGGERS:
                touched[task.id] = task

        for task in touched.values():
            proposal = self.closure.propose_if_eligible(task, workspace, now=now, cancel=cancel)
            if proposal is not None:
                appended.append(proposal)

        logger.info(
            "webhook_ingested",
            extra={
                "provider": str(p),
                "workspace_id": workspace.id,
                "delivery_id": did,
                "events": [str(e.event_type) for e in appended],
            },
        )
        return IngestResult(
            accepted=True,
            provider=p,
            workspace_id=workspace.id,
            delivery_id=did,
            events=tuple(appended),
        )

    def _resolve_task(self, workspace: Workspace, ne: NormalizedEvent) -> Task:
        if ne.registers_task:
            return self.registry.ensure_task(workspace.id, ne.task_key, ne.task_summary)
        return self.registry.require_task(workspace.id, ne.task_key)
