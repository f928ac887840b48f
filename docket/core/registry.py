"""docket.core.registry

Tenants and tasks.

Both are owned elsewhere (identity provider, issue tracker). The core keeps
only what it needs to key the log and authenticate inbound webhooks.
"""

from __future__ import annotations

import sqlite3
import uuid
from dataclasses import dataclass
from typing import Any

from docket.core.database import Database
from docket.core.exceptions import PersistenceError, TaskNotFoundError, WorkspaceNotFoundError
from docket.core.models import Task, Workspace
from docket.core.time import parse_dt, to_iso, utc_now

_SECRET_COLUMNS = {
    "slack": "slack_signing_secret",
    "github": "github_webhook_secret",
    "jira": "jira_webhook_secret",
}


def _row_to_workspace(row: sqlite3.Row) -> Workspace:
    data: dict[str, Any] = dict(row)
    data["created_at"] = parse_dt(str(row["created_at"]))
    return Workspace(**data)


def _row_to_task(row: sqlite3.Row) -> Task:
    return Task(
        id=str(row["id"]),
        workspace_id=str(row["workspace_id"]),
        key=str(row["key"]),
        summary=str(row["summary"] or ""),
        created_at=parse_dt(str(row["created_at"])),
    )


@dataclass
class Registry:
    db: Database

    # -----------------
    # Workspaces
    # -----------------

    def create_workspace(
        self,
        name: str,
        *,
        policy_tier: str = "standard",
        veto_window_hours: float | None = None,
        slack_team_id: str | None = None,
        github_org: str | None = None,
        jira_site: str | None = None,
        workspace_id: str | None = None,
    ) -> Workspace:
        wid = workspace_id or str(uuid.uuid4())
        try:
            with self.db.transaction():
                self.db.conn.execute(
                    """
                    INSERT INTO workspaces (
                        id, name, policy_tier, veto_window_hours,
                        slack_team_id, github_org, jira_site, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        wid,
                        name,
                        policy_tier,
                        veto_window_hours,
                        slack_team_id,
                        github_org,
                        jira_site,
                        to_iso(utc_now()),
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise PersistenceError(str(e)) from e
        return self.get_workspace(wid)

    def get_workspace(self, workspace_id: str) -> Workspace:
        row = self.db.conn.execute(
            "SELECT * FROM workspaces WHERE id = ?", (str(workspace_id),)
        ).fetchone()
        if row is None:
            raise WorkspaceNotFoundError(workspace_id)
        return _row_to_workspace(row)

    def list_workspaces(self) -> list[Workspace]:
        rows = self.db.conn.execute("SELECT * FROM workspaces ORDER BY created_at ASC").fetchall()
        return [_row_to_workspace(r) for r in rows]

    def set_secret(self, workspace_id: str, provider: str, secret: str | None) -> None:
        column = _SECRET_COLUMNS.get(str(provider))
        if column is None:
            raise ValueError(f"unknown provider: {provider}")
        self.get_workspace(workspace_id)
        with self.db.transaction():
            self.db.conn.execute(
                f"UPDATE workspaces SET {column} = ? WHERE id = ?",  # noqa: S608 - column is allowlisted
                (secret, str(workspace_id)),
            )

    def set_policy(
        self, workspace_id: str, *, policy_tier: str, veto_window_hours: float | None = None
    ) -> Workspace:
        self.get_workspace(workspace_id)
        with self.db.transaction():
            self.db.conn.execute(
                "UPDATE workspaces SET policy_tier = ?, veto_window_hours = ? WHERE id = ?",
                (policy_tier, veto_window_hours, str(workspace_id)),
            )
        return self.get_workspace(workspace_id)

    # -----------------
    # Tasks
    # -----------------

    def ensure_task(self, workspace_id: str, key: str, summary: str = "") -> Task:
        """Return the task for (workspace, key), creating it on first sight.

        A non-empty summary refreshes the stored one.
        """

        self.get_workspace(workspace_id)
        existing = self.find_task(workspace_id, key)
        if existing is not None:
            if summary and summary != existing.summary:
                with self.db.transaction():
                    self.db.conn.execute(
                        "UPDATE tasks SET summary = ? WHERE id = ?", (summary, existing.id)
                    )
                return existing.model_copy(update={"summary": summary})
            return existing

        tid = str(uuid.uuid4())
        with self.db.transaction():
            self.db.conn.execute(
                """
                INSERT INTO tasks (id, workspace_id, key, summary, created_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(workspace_id, key) DO NOTHING
                """,
                (tid, str(workspace_id), key, summary, to_iso(utc_now())),
            )
        task = self.find_task(workspace_id, key)
        assert task is not None
        return task

    def get_task(self, task_id: str) -> Task:
        row = self.db.conn.execute("SELECT * FROM tasks WHERE id = ?", (str(task_id),)).fetchone()
        if row is None:
            raise TaskNotFoundError(task_id)
        return _row_to_task(row)

    def find_task(self, workspace_id: str, key: str) -> Task | None:
        row = self.db.conn.execute(
            "SELECT * FROM tasks WHERE workspace_id = ? AND key = ?",
            (str(workspace_id), key),
        ).fetchone()
        return None if row is None else _row_to_task(row)

    def require_task(self, workspace_id: str, key: str) -> Task:
        task = self.find_task(workspace_id, key)
        if task is None:
            raise TaskNotFoundError(f"{workspace_id}/{key}")
        return task

    def list_tasks(self, workspace_id: str | None = None) -> list[Task]:
        if workspace_id is None:
            rows = self.db.conn.execute("SELECT * FROM tasks ORDER BY created_at ASC").fetchall()
        else:
            rows = self.db.conn.execute(
                "SELECT * FROM tasks WHERE workspace_id = ? ORDER BY created_at ASC",
                (str(workspace_id),),
            ).fetchall()
        return [_row_to_task(r) for r in rows]
