from __future__ import annotations

import pytest

from docket.core.config import ClosureConfig
from docket.core.event_log import EventLog
from docket.core.events import EventType
from docket.core.exceptions import (
    PayloadError,
    SecretNotConfiguredError,
    SignatureExpiredError,
    SignatureInvalidError,
    TaskNotFoundError,
    WorkspaceNotFoundError,
)
from docket.core.models import Workspace
from docket.core.registry import Registry
from docket.ingestion.pipeline import WebhookIngestionPipeline
from docket.proofs.closure import ClosureSweeper
from tests.unit._webhook_fixtures import (
    GITHUB_SECRET,
    JIRA_SECRET,
    SLACK_SECRET,
    dumps,
    github_check_suite,
    github_headers,
    github_pull_request,
    github_review,
    jira_headers,
    jira_transition,
    slack_block_action,
    slack_form,
    slack_headers,
)


@pytest.fixture()
def pipeline(registry: Registry, event_log: EventLog) -> WebhookIngestionPipeline:
    closure = ClosureSweeper(registry=registry, event_log=event_log, cfg=ClosureConfig())
    return WebhookIngestionPipeline(registry=registry, event_log=event_log, closure=closure)


def _jira_handshake(pipeline: WebhookIngestionPipeline, workspace: Workspace, key: str = "TRAIL-123"):
    raw = dumps(jira_transition(key, "Add CSV export to billing report"))
    return pipeline.ingest("jira", workspace.id, raw, jira_headers(raw, JIRA_SECRET))


def test_jira_handshake_registers_task(pipeline, registry: Registry, workspace: Workspace) -> None:
    result = _jira_handshake(pipeline, workspace)

    assert result.accepted
    assert [e.event_type for e in result.events] == [EventType.HANDSHAKE]
    task = registry.find_task(workspace.id, "TRAIL-123")
    assert task is not None
    assert task.summary == "Add CSV export to billing report"
    assert result.events[0].task_id == task.id


def test_bad_signature_writes_nothing(pipeline, event_log: EventLog, workspace: Workspace, task) -> None:
    raw = dumps(github_pull_request("TRAIL-123"))
    headers = github_headers(raw, "wrong-secret", event="pull_request")

    with pytest.raises(SignatureInvalidError):
        pipeline.ingest("github", workspace.id, raw, headers)
    assert event_log.count(task.id) == 0


def test_stale_slack_delivery_is_rejected(pipeline, event_log: EventLog, workspace: Workspace, task) -> None:
    raw = slack_form(slack_block_action("TRAIL-123", "veto_closure"))
    headers = slack_headers(raw, SLACK_SECRET, ts=1_700_000_000, form=True)

    with pytest.raises(SignatureExpiredError):
        pipeline.ingest("slack", workspace.id, raw, headers)
    assert event_log.count(task.id) == 0


def test_missing_secret_rejects(pipeline, registry: Registry, workspace: Workspace) -> None:
    registry.set_secret(workspace.id, "github", None)
    raw = dumps(github_pull_request("TRAIL-123"))
    with pytest.raises(SecretNotConfiguredError):
        pipeline.ingest("github", workspace.id, raw, github_headers(raw, GITHUB_SECRET, event="pull_request"))


def test_unknown_workspace(pipeline) -> None:
    with pytest.raises(WorkspaceNotFoundError):
        pipeline.ingest("jira", "nope", b"{}", {})


def test_github_event_for_unregistered_task_is_rejected(pipeline, workspace: Workspace) -> None:
    raw = dumps(github_pull_request("TRAIL-999"))
    with pytest.raises(TaskNotFoundError):
        pipeline.ingest("github", workspace.id, raw, github_headers(raw, GITHUB_SECRET, event="pull_request"))


def test_signed_garbage_is_a_payload_error(pipeline, workspace: Workspace) -> None:
    raw = b"{not json"
    with pytest.raises(PayloadError):
        pipeline.ingest("jira", workspace.id, raw, jira_headers(raw, JIRA_SECRET))


def test_redelivery_is_idempotent(pipeline, event_log: EventLog, workspace: Workspace, task) -> None:
    raw = dumps(github_pull_request("TRAIL-123"))
    headers = github_headers(raw, GITHUB_SECRET, event="pull_request", delivery="d-42")

    first = pipeline.ingest("github", workspace.id, raw, headers)
    second = pipeline.ingest("github", workspace.id, raw, headers)

    assert [e.id for e in first.events] == [e.id for e in second.events]
    assert event_log.count(task.id) == 1
    assert first.delivery_id == "d-42"


def test_ignored_delivery_is_accepted(pipeline, workspace: Workspace) -> None:
    raw = dumps({"zen": "Design for failure."})
    result = pipeline.ingest("github", workspace.id, raw, github_headers(raw, GITHUB_SECRET, event="ping"))
    assert result.accepted
    assert result.events == ()
    assert result.ignored == "ping"


def test_slack_url_verification(pipeline, workspace: Workspace) -> None:
    raw = dumps({"type": "url_verification", "challenge": "c-123"})
    result = pipeline.ingest("slack", workspace.id, raw, slack_headers(raw, SLACK_SECRET))
    assert result.challenge == "c-123"


def test_delivery_evidence_proposes_closure(pipeline, event_log: EventLog, workspace: Workspace) -> None:
    _jira_handshake(pipeline, workspace)

    for event, body in [
        ("pull_request", github_pull_request("TRAIL-123")),
        ("pull_request", github_pull_request("TRAIL-123", action="closed", merged=True)),
        ("check_suite", github_check_suite("TRAIL-123")),
    ]:
        raw = dumps(body)
        result = pipeline.ingest("github", workspace.id, raw, github_headers(raw, GITHUB_SECRET, event=event))
        assert EventType.CLOSURE_PROPOSED not in [e.event_type for e in result.events]

    raw = dumps(github_review("TRAIL-123", reviewer="sam"))
    result = pipeline.ingest(
        "github", workspace.id, raw, github_headers(raw, GITHUB_SECRET, event="pull_request_review")
    )
    assert [e.event_type for e in result.events] == [EventType.PR_APPROVED, EventType.CLOSURE_PROPOSED]

    task_id = result.events[0].task_id
    assert event_log.verify_chain(task_id).verified_count == 6
