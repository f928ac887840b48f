from __future__ import annotations

import shutil
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

# uv/pytest may run without installing the project; ensure repo root is importable.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from docket.core.config import Config  # noqa: E402
from docket.core.database import Database  # noqa: E402
from docket.core.event_log import EventLog  # noqa: E402
from docket.core.models import Task, Workspace  # noqa: E402
from docket.core.registry import Registry  # noqa: E402
from tests.unit._webhook_fixtures import GITHUB_SECRET, JIRA_SECRET, SLACK_SECRET  # noqa: E402


@pytest.fixture()
def temp_dir(tmp_path: Path) -> Path:
    return tmp_path


@pytest.fixture()
def test_config(temp_dir: Path) -> Config:
    """Config fixture that points data_dir to a temp directory."""

    cfg_src = REPO_ROOT / "config" / "default.yaml"
    cfg_dst_dir = temp_dir / "config"
    cfg_dst_dir.mkdir(parents=True, exist_ok=True)
    shutil.copy2(cfg_src, cfg_dst_dir / "default.yaml")

    c = Config.from_yaml(cfg_dst_dir / "default.yaml")
    return c.model_copy(update={"data_dir": temp_dir / "data", "config_dir": cfg_dst_dir})


@pytest.fixture()
def db(temp_dir: Path) -> Iterator[Database]:
    d = Database(temp_dir / "docket.db")
    try:
        yield d
    finally:
        d.close()


@pytest.fixture()
def registry(db: Database) -> Registry:
    return Registry(db)


@pytest.fixture()
def event_log(db: Database) -> EventLog:
    return EventLog(db)


@pytest.fixture()
def workspace(registry: Registry) -> Workspace:
    ws = registry.create_workspace("acme", policy_tier="agile", github_org="acme", jira_site="acme.atlassian.net")
    registry.set_secret(ws.id, "slack", SLACK_SECRET)
    registry.set_secret(ws.id, "github", GITHUB_SECRET)
    registry.set_secret(ws.id, "jira", JIRA_SECRET)
    return registry.get_workspace(ws.id)


@pytest.fixture()
def task(registry: Registry, workspace: Workspace) -> Task:
    return registry.ensure_task(workspace.id, "TRAIL-123", "Add CSV export to billing report")


@pytest.fixture()
def api_config(test_config: Config) -> Config:
    """test_config with API auth enabled (token: ``secret``)."""

    return test_config.model_copy(update={"api": test_config.api.model_copy(update={"auth_token": "secret"})})


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """The code under test is asyncio-based; run anyio-marked tests on asyncio only."""

    return "asyncio"
