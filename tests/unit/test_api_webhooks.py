from __future__ import annotations

import threading
import time

import anyio
import pytest

from api.main import create_app
from docket.core.database import Database
from docket.core.event_log import EventLog
from docket.core.registry import Registry
from tests.unit._api_test_client import make_client
from tests.unit._webhook_fixtures import (
    GITHUB_SECRET,
    JIRA_SECRET,
    SLACK_SECRET,
    dumps,
    github_headers,
    github_pull_request,
    jira_headers,
    jira_transition,
    slack_block_action,
    slack_form,
    slack_headers,
)


def _app(api_config, db: Database):
    app = create_app(api_config)
    app.state.db = db
    return app


@pytest.fixture()
def seeded(db: Database):
    registry = Registry(db)
    ws = registry.create_workspace("acme", policy_tier="agile")
    for provider, secret in (("slack", SLACK_SECRET), ("github", GITHUB_SECRET), ("jira", JIRA_SECRET)):
        registry.set_secret(ws.id, provider, secret)
    return registry, ws


@pytest.mark.anyio
async def test_signed_jira_transition_creates_task_and_handshake(api_config, db, seeded):
    registry, ws = seeded
    raw = dumps(jira_transition("TRAIL-123", "Add CSV export to billing report"))

    async with make_client(_app(api_config, db)) as ac:
        r = await ac.post(f"/api/v1/webhooks/{ws.id}/jira", content=raw, headers=jira_headers(raw, JIRA_SECRET))

    assert r.status_code == 200
    body = r.json()
    assert body["accepted"] is True
    assert [e["event_type"] for e in body["events"]] == ["handshake"]

    task = registry.find_task(ws.id, "TRAIL-123")
    assert task is not None
    assert EventLog(db).verify_chain(task.id).verified_count == 1


@pytest.mark.anyio
async def test_invalid_signature_is_401_and_writes_nothing(api_config, db, seeded):
    registry, ws = seeded
    raw = dumps(jira_transition("TRAIL-123", "Add CSV export"))

    async with make_client(_app(api_config, db)) as ac:
        r = await ac.post(f"/api/v1/webhooks/{ws.id}/jira", content=raw, headers=jira_headers(raw, "not-the-secret"))

    assert r.status_code == 401
    assert r.json()["error"]["code"] == "webhook.signature_invalid"
    assert registry.find_task(ws.id, "TRAIL-123") is None


@pytest.mark.anyio
async def test_stale_slack_timestamp_is_expired(api_config, db, seeded):
    _, ws = seeded
    raw = slack_form(slack_block_action("TRAIL-123", "veto_closure"))
    headers = slack_headers(raw, SLACK_SECRET, ts=1_700_000_000, form=True)

    async with make_client(_app(api_config, db)) as ac:
        r = await ac.post(f"/api/v1/webhooks/{ws.id}/slack", content=raw, headers=headers)

    assert r.status_code == 401
    assert r.json()["error"]["code"] == "webhook.signature_expired"


@pytest.mark.anyio
async def test_missing_secret_and_unknown_workspace(api_config, db, seeded):
    registry, ws = seeded
    registry.set_secret(ws.id, "github", None)
    raw = dumps(github_pull_request("TRAIL-123"))

    async with make_client(_app(api_config, db)) as ac:
        r = await ac.post(
            f"/api/v1/webhooks/{ws.id}/github",
            content=raw,
            headers=github_headers(raw, GITHUB_SECRET, event="pull_request"),
        )
        assert r.status_code == 403
        assert r.json()["error"]["code"] == "webhook.secret_not_configured"

        r = await ac.post("/api/v1/webhooks/nope/github", content=raw)
        assert r.status_code == 404
        assert r.json()["error"]["code"] == "workspace.not_found"

        r = await ac.post(f"/api/v1/webhooks/{ws.id}/gitlab", content=raw)
        assert r.status_code == 422


@pytest.mark.anyio
async def test_event_for_unknown_task_is_404(api_config, db, seeded):
    _, ws = seeded
    raw = dumps(github_pull_request("TRAIL-404"))

    async with make_client(_app(api_config, db)) as ac:
        r = await ac.post(
            f"/api/v1/webhooks/{ws.id}/github",
            content=raw,
            headers=github_headers(raw, GITHUB_SECRET, event="pull_request"),
        )

    assert r.status_code == 404
    assert r.json()["error"]["code"] == "task.not_found"


@pytest.mark.anyio
async def test_slack_url_verification_echoes_challenge(api_config, db, seeded):
    _, ws = seeded
    raw = dumps({"type": "url_verification", "challenge": "3eZbrw1aBm2rZgRNFdxV2595E9CY3gmdALWMmHkvFXO7tYXAYM8P"})

    async with make_client(_app(api_config, db)) as ac:
        r = await ac.post(f"/api/v1/webhooks/{ws.id}/slack", content=raw, headers=slack_headers(raw, SLACK_SECRET))

    assert r.status_code == 200
    assert r.json() == {"challenge": "3eZbrw1aBm2rZgRNFdxV2595E9CY3gmdALWMmHkvFXO7tYXAYM8P"}


@pytest.mark.anyio
async def test_signed_but_unparseable_body_is_422(api_config, db, seeded):
    _, ws = seeded
    raw = b"definitely not json"

    async with make_client(_app(api_config, db)) as ac:
        r = await ac.post(f"/api/v1/webhooks/{ws.id}/jira", content=raw, headers=jira_headers(raw, JIRA_SECRET))

    assert r.status_code == 422
    assert r.json()["error"]["code"] == "webhook.invalid_payload"


@pytest.mark.anyio
async def test_irrelevant_delivery_is_accepted_and_ignored(api_config, db, seeded):
    _, ws = seeded
    raw = dumps({"zen": "Practicality beats purity."})

    async with make_client(_app(api_config, db)) as ac:
        r = await ac.post(
            f"/api/v1/webhooks/{ws.id}/github", content=raw, headers=github_headers(raw, GITHUB_SECRET, event="ping")
        )

    assert r.status_code == 200
    assert r.json()["events"] == []
    assert r.json()["ignored"] == "ping"


@pytest.mark.anyio
async def test_deadline_exceeded_is_503_and_nothing_lands_afterwards(api_config, db, seeded, monkeypatch):
    registry, ws = seeded
    task = registry.ensure_task(ws.id, "TRAIL-123", "Add CSV export to billing report")
    raw = dumps(github_pull_request("TRAIL-123"))
    headers = github_headers(raw, GITHUB_SECRET, event="pull_request")

    real_append = EventLog.append
    worker_done = threading.Event()

    def slow_append(self, *args, **kwargs):
        try:
            time.sleep(0.3)
            return real_append(self, *args, **kwargs)
        finally:
            worker_done.set()

    monkeypatch.setattr(EventLog, "append", slow_append)
    tight = api_config.model_copy(
        update={"api": api_config.api.model_copy(update={"ingest_timeout_seconds": 0.05})}
    )

    async with make_client(_app(tight, db)) as ac:
        r = await ac.post(f"/api/v1/webhooks/{ws.id}/github", content=raw, headers=headers)

    assert r.status_code == 503
    assert r.json()["error"]["code"] == "webhook.deadline_exceeded"

    # The abandoned worker finishes without writing.
    assert await anyio.to_thread.run_sync(worker_done.wait, 5)
    assert EventLog(db).count(task.id) == 0

    monkeypatch.undo()
    async with make_client(_app(api_config, db)) as ac:
        r = await ac.post(f"/api/v1/webhooks/{ws.id}/github", content=raw, headers=headers)

    assert r.status_code == 200
    assert [e["event_type"] for e in r.json()["events"]] == ["pr_opened"]
    assert EventLog(db).count(task.id) == 1
