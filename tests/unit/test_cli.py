from __future__ import annotations

import json
import shutil
from datetime import timedelta
from pathlib import Path

import pytest

from docket.cli import build_parser, main
from docket.core.database import Database
from docket.core.event_log import EventLog
from docket.core.events import EventType
from docket.core.registry import Registry
from docket.core.time import to_iso, utc_now


def _scaffold_repo(tmp_path: Path) -> Path:
    """Create a minimal repo root layout expected by the CLI."""

    repo_root = tmp_path
    src_root = Path(__file__).resolve().parents[2]

    (repo_root / "config").mkdir(parents=True, exist_ok=True)
    shutil.copy2(src_root / "config" / "default.yaml", repo_root / "config" / "default.yaml")
    (repo_root / "data").mkdir(parents=True, exist_ok=True)
    return repo_root


def _open_db(repo_root: Path) -> Database:
    return Database(repo_root / "data" / "docket.db")


def test_cli_help_includes_subcommands(capsys: pytest.CaptureFixture[str]) -> None:
    rc = main([])
    assert rc == 2
    out = capsys.readouterr().out
    for cmd in ("api", "verify-chain", "sweep-closures", "workspace", "status"):
        assert cmd in out


def test_cli_version_flag(capsys: pytest.CaptureFixture[str]) -> None:
    rc = main(["--version"])
    assert rc == 0
    assert capsys.readouterr().out.strip().startswith("docket v")


def test_cli_unknown_command_errors() -> None:
    parser = build_parser()
    with pytest.raises(SystemExit):
        parser.parse_args(["nope"])
    with pytest.raises(SystemExit):
        main(["nope"])


def test_cli_workspace_create_list_and_secret(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    repo_root = _scaffold_repo(tmp_path)
    monkeypatch.chdir(repo_root)

    rc = main(["workspace", "create", "acme", "--tier", "agile", "--json"])
    assert rc == 0
    created = json.loads(capsys.readouterr().out)
    assert created["name"] == "acme"
    assert created["policy_tier"] == "agile"

    monkeypatch.setenv("DOCKET_WEBHOOK_SECRET", "gh-secret")
    rc = main(["workspace", "set-secret", created["id"], "github"])
    assert rc == 0
    capsys.readouterr()

    rc = main(["workspace", "list", "--json"])
    assert rc == 0
    listed = json.loads(capsys.readouterr().out)["workspaces"]
    assert [w["id"] for w in listed] == [created["id"]]
    assert listed[0]["secrets"] == ["github"]


def test_cli_verify_chain(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    repo_root = _scaffold_repo(tmp_path)
    monkeypatch.chdir(repo_root)

    db = _open_db(repo_root)
    registry = Registry(db)
    ws = registry.create_workspace("acme", policy_tier="agile")
    task = registry.ensure_task(ws.id, "TRAIL-1", "Ship it")
    log = EventLog(db)
    log.append(task.id, EventType.PR_OPENED, {"pr_number": 1})
    second = log.append(task.id, EventType.PR_MERGED, {"pr_number": 1})

    rc = main(["verify-chain", task.id, "--json"])
    assert rc == 0
    out = json.loads(capsys.readouterr().out)
    assert out["valid"] is True
    assert out["verified_count"] == 2

    db.conn.execute("UPDATE events SET payload = ? WHERE id = ?", ('{"pr_number":2}', second.id))
    rc = main(["verify-chain", task.id])
    assert rc == 1
    assert "CORRUPTED" in capsys.readouterr().out

    assert main(["verify-chain", "missing"]) == 2
    db.close()


def test_cli_sweep_closures(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    repo_root = _scaffold_repo(tmp_path)
    monkeypatch.chdir(repo_root)

    db = _open_db(repo_root)
    registry = Registry(db)
    ws = registry.create_workspace("acme", policy_tier="agile")
    task = registry.ensure_task(ws.id, "TRAIL-1", "Ship it")
    log = EventLog(db)
    log.append(task.id, EventType.PR_MERGED, {"pr_number": 1})
    log.append(
        task.id,
        EventType.CLOSURE_PROPOSED,
        {
            "policy_tier": "agile",
            "scheduled_close_at": to_iso(utc_now() - timedelta(minutes=1)),
            "veto_window_hours": 24,
        },
    )

    rc = main(["sweep-closures", "--json"])
    assert rc == 0
    out = json.loads(capsys.readouterr().out)
    assert [f["task_id"] for f in out["finalized"]] == [task.id]
    assert log.list_events(task.id)[-1].event_type == EventType.CLOSURE_FINALIZED
    db.close()


def test_cli_status(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    repo_root = _scaffold_repo(tmp_path)
    monkeypatch.chdir(repo_root)

    rc = main(["status"])
    assert rc == 0
    out = capsys.readouterr().out
    assert "docket status" in out
    assert "system health: ok" in out
