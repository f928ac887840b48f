from __future__ import annotations

import pytest

from docket.core.events import EventType, Provider, TriggerSource
from docket.core.exceptions import PayloadError
from docket.ingestion.normalizers import (
    delivery_id,
    extract_task_key,
    normalize_github,
    normalize_jira,
    normalize_slack,
    parse_body,
)
from tests.unit._webhook_fixtures import (
    dumps,
    github_check_suite,
    github_pull_request,
    github_review,
    jira_transition,
    slack_block_action,
    slack_form,
)


def test_extract_task_key() -> None:
    assert extract_task_key("feature/TRAIL-123-csv") == "TRAIL-123"
    assert extract_task_key(None, "", "fix: AB2-7 typo") == "AB2-7"
    assert extract_task_key("lowercase trail-123") is None


def test_github_pr_opened_and_merged() -> None:
    opened = normalize_github("pull_request", github_pull_request("TRAIL-123"))
    (ev,) = opened.events
    assert ev.task_key == "TRAIL-123"
    assert ev.event_type == EventType.PR_OPENED
    assert ev.trigger_source == TriggerSource.GITHUB_WEBHOOK
    assert ev.payload["pr_number"] == 42
    assert ev.payload["repo"] == "acme/billing"
    assert [c["message"] for c in ev.payload["commits"]] == ["Add CSV writer", "Wire export button"]
    assert not ev.registers_task

    merged = normalize_github("pull_request", github_pull_request("TRAIL-123", action="closed", merged=True))
    assert merged.events[0].event_type == EventType.PR_MERGED

    closed = normalize_github("pull_request", github_pull_request("TRAIL-123", action="closed", merged=False))
    assert closed.events == ()
    assert closed.ignored == "pull_request:closed"


def test_github_review_only_counts_approvals() -> None:
    approved = normalize_github("pull_request_review", github_review("TRAIL-123", reviewer="sam"))
    (ev,) = approved.events
    assert ev.event_type == EventType.PR_APPROVED
    assert ev.payload["reviewer"] == "sam"

    commented = normalize_github("pull_request_review", github_review("TRAIL-123", state="commented"))
    assert commented.events == ()


def test_github_check_suite_conclusions() -> None:
    passed = normalize_github("check_suite", github_check_suite("TRAIL-123"))
    assert passed.events[0].event_type == EventType.CI_PASSED
    assert passed.events[0].payload["check_name"] == "GitHub Actions"

    failed = normalize_github("check_suite", github_check_suite("TRAIL-123", conclusion="failure"))
    assert failed.events[0].event_type == EventType.CI_FAILED

    skipped = normalize_github("check_suite", github_check_suite("TRAIL-123", conclusion="skipped"))
    assert skipped.events == ()


def test_github_without_task_key_or_unknown_event_is_ignored() -> None:
    body = github_pull_request("TRAIL-1")
    body["pull_request"]["head"]["ref"] = "main"
    body["pull_request"]["title"] = "chore: bump deps"
    assert normalize_github("pull_request", body).ignored == "no_task_key"
    assert normalize_github("ping", {"zen": "Keep it logically awesome."}).ignored == "ping"
    assert normalize_github("issues", {"action": "opened"}).ignored == "event:issues"


def test_jira_in_progress_is_a_handshake() -> None:
    out = normalize_jira(jira_transition("TRAIL-123", "Add CSV export to billing report"))
    (ev,) = out.events
    assert ev.event_type == EventType.HANDSHAKE
    assert ev.registers_task
    assert ev.task_summary == "Add CSV export to billing report"
    assert ev.payload["issue_title"] == "Add CSV export to billing report"
    assert ev.payload["status"] == "In Progress"
    assert ev.payload["assignee"] == "Dana Reyes"
    assert ev.payload["jira_site"] == "acme.atlassian.net"


def test_jira_other_transitions_are_status_changes() -> None:
    out = normalize_jira(jira_transition("TRAIL-123", "x", to_status="Done", from_status="In Review"))
    (ev,) = out.events
    assert ev.event_type == EventType.JIRA_STATUS_CHANGED
    assert ev.payload == {"from_status": "In Review", "to_status": "Done"}
    assert not ev.registers_task

    body = jira_transition("TRAIL-123", "x")
    body["changelog"]["items"] = [{"field": "assignee", "toString": "Sam"}]
    assert normalize_jira(body).ignored == "no_status_change"


def test_slack_url_verification_returns_challenge() -> None:
    out = normalize_slack({"type": "url_verification", "challenge": "3eZbrw1a"})
    assert out.challenge == "3eZbrw1a"
    assert out.events == ()


@pytest.mark.parametrize(
    ("action_id", "event_type"),
    [
        ("reject_task", EventType.HANDSHAKE_REJECTED),
        ("veto_closure", EventType.CLOSURE_VETOED),
        ("approve_closure", EventType.CLOSURE_FINALIZED),
    ],
)
def test_slack_block_actions(action_id: str, event_type: EventType) -> None:
    out = normalize_slack(slack_block_action("TRAIL-123", action_id, user="U42"))
    (ev,) = out.events
    assert ev.event_type == event_type
    assert ev.task_key == "TRAIL-123"
    assert ev.trigger_source == TriggerSource.SLACK_WEBHOOK


def test_slack_manual_approval_payload() -> None:
    (ev,) = normalize_slack(slack_block_action("TRAIL-123", "approve_closure", user="U42")).events
    assert ev.payload == {"reason": "manual_approval", "approved_by": "U42"}


def test_slack_messages_mentioning_a_task() -> None:
    body = {
        "type": "event_callback",
        "event_id": "Ev01",
        "event": {"type": "message", "channel": "C1", "user": "U1", "text": "TRAIL-123 is live", "ts": "1.2"},
    }
    (ev,) = normalize_slack(body).events
    assert ev.event_type == EventType.SLACK_MESSAGE
    assert ev.payload["text"] == "TRAIL-123 is live"

    body["event"]["bot_id"] = "B1"
    assert normalize_slack(body).ignored == "not_user_message"


def test_parse_body_handles_slack_forms_and_rejects_garbage() -> None:
    action = slack_block_action("TRAIL-123", "veto_closure")
    parsed = parse_body(Provider.SLACK, slack_form(action), {"Content-Type": "application/x-www-form-urlencoded"})
    assert parsed["type"] == "block_actions"

    with pytest.raises(PayloadError):
        parse_body(Provider.GITHUB, b"not json", {})
    with pytest.raises(PayloadError):
        parse_body(Provider.GITHUB, b"[1, 2]", {})
    with pytest.raises(PayloadError):
        parse_body(Provider.JIRA, b"\xff\xfe", {})


def test_delivery_id_sources() -> None:
    raw = dumps({"a": 1})
    assert delivery_id(Provider.GITHUB, {"x-github-delivery": "d-1"}, {}, raw) == "d-1"
    assert delivery_id(Provider.JIRA, {"X-Atlassian-Webhook-Identifier": "j-1"}, {}, raw) == "j-1"
    assert delivery_id(Provider.SLACK, {}, {"event_id": "Ev9"}, raw) == "Ev9"
    fallback = delivery_id(Provider.GITHUB, {}, {}, raw)
    assert fallback.startswith("sha256-")
    assert fallback == delivery_id(Provider.GITHUB, {}, {}, raw)
