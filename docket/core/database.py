"""docket.core.database

The journal: append-only task events with a per-task hash chain, plus the
small amount of relational state the core needs around it (tenants, tasks,
proof packets).

One SQLite connection per thread. Writers serialize inside SQLite; callers
that need read-then-write atomicity open an IMMEDIATE transaction.
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from docket.core.exceptions import PersistenceError

SCHEMA_VERSION = 1

SCHEMA = """
-- ============================================================
-- Schema Version Tracking
-- ============================================================
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT DEFAULT (datetime('now'))
);

-- ============================================================
-- Workspaces (tenants) + provider secrets
-- ============================================================
CREATE TABLE IF NOT EXISTS workspaces (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    slack_signing_secret TEXT,
    github_webhook_secret TEXT,
    jira_webhook_secret TEXT,
    slack_team_id TEXT,
    github_org TEXT,
    jira_site TEXT,
    policy_tier TEXT NOT NULL DEFAULT 'standard'
        CHECK(policy_tier IN ('agile', 'standard', 'hardened')),
    veto_window_hours REAL,
    created_at TEXT NOT NULL
);

-- ============================================================
-- Tasks (external entity, referenced by key)
-- ============================================================
CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    workspace_id TEXT NOT NULL REFERENCES workspaces(id),
    key TEXT NOT NULL,
    summary TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL,
    UNIQUE (workspace_id, key)
);

-- ============================================================
-- Task Events (hash chain per task, append-only)
-- ============================================================
CREATE TABLE IF NOT EXISTS events (
    id TEXT PRIMARY KEY,
    task_id TEXT NOT NULL REFERENCES tasks(id),
    seq INTEGER NOT NULL,
    event_type TEXT NOT NULL,
    trigger_source TEXT NOT NULL,
    payload TEXT NOT NULL,
    created_at TEXT NOT NULL,
    chain_version INTEGER NOT NULL,
    prev_hash TEXT NOT NULL,
    event_hash TEXT NOT NULL,
    dedupe_key TEXT,
    UNIQUE (task_id, seq),
    UNIQUE (task_id, prev_hash)
);

CREATE INDEX IF NOT EXISTS idx_events_task_order ON events(task_id, created_at, seq);
CREATE INDEX IF NOT EXISTS idx_events_type ON events(event_type);

-- ============================================================
-- Delivery Deduplication
-- ============================================================
CREATE TABLE IF NOT EXISTS event_dedup (
    task_id TEXT NOT NULL REFERENCES tasks(id),
    dedupe_key TEXT NOT NULL,
    event_id TEXT NOT NULL REFERENCES events(id),
    payload_hash TEXT NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (task_id, dedupe_key)
);

-- ============================================================
-- Proof Packets
-- ============================================================
CREATE TABLE IF NOT EXISTS proof_packets (
    id TEXT PRIMARY KEY,
    task_id TEXT NOT NULL REFERENCES tasks(id),
    status TEXT NOT NULL DEFAULT 'draft' CHECK(status IN (
        'draft', 'pending', 'finalized', 'exported'
    )),
    event_ids TEXT NOT NULL DEFAULT '[]',
    head_hash TEXT,
    summary TEXT,
    summary_model TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    finalized_at TEXT,
    exported_at TEXT,
    export_count INTEGER NOT NULL DEFAULT 0,
    share_token TEXT UNIQUE
);

CREATE INDEX IF NOT EXISTS idx_packets_task ON proof_packets(task_id, created_at);

-- ============================================================
-- API Rate Limits (sqlite limiter backend)
-- ============================================================
CREATE TABLE IF NOT EXISTS api_rate_limits (
    key TEXT NOT NULL,
    window_start INTEGER NOT NULL,
    window_seconds INTEGER NOT NULL,
    count INTEGER NOT NULL,
    updated_at TEXT DEFAULT (datetime('now')),
    PRIMARY KEY (key, window_start, window_seconds)
);
"""


@dataclass
class Database:
    """SQLite-backed store with one connection per thread."""

    db_path: Path
    busy_timeout_ms: int = 10_000
    _local: threading.local = field(default_factory=threading.local, init=False, repr=False)
    _conns: list[sqlite3.Connection] = field(default_factory=list, init=False, repr=False)
    _conns_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        self.db_path = Path(self.db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.db_path,
            timeout=self.busy_timeout_ms / 1000,
            check_same_thread=False,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row
        conn.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_ms)}")
        conn.execute("PRAGMA foreign_keys=ON")
        with self._conns_lock:
            self._conns.append(conn)
        return conn

    @property
    def conn(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = self._connect()
            self._local.conn = conn
        return conn

    def close(self) -> None:
        with self._conns_lock:
            conns, self._conns = self._conns, []
        for c in conns:
            c.close()
        self._local = threading.local()

    def _init_schema(self) -> None:
        conn = self.conn
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.executescript(SCHEMA)
        conn.execute(
            "INSERT OR IGNORE INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,),
        )

    @contextmanager
    def transaction(self, *, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """Explicit transaction on this thread's connection.

        IMMEDIATE takes the write lock up front so a read-then-write sequence
        cannot interleave with another writer. sqlite3 errors surface as
        PersistenceError.
        """

        conn = self.conn
        try:
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
        except sqlite3.Error as e:
            raise PersistenceError(str(e)) from e
        try:
            yield conn
        except sqlite3.IntegrityError:
            conn.execute("ROLLBACK")
            raise
        except sqlite3.Error as e:
            conn.execute("ROLLBACK")
            raise PersistenceError(str(e)) from e
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        else:
            try:
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                conn.execute("ROLLBACK")
                raise PersistenceError(str(e)) from e
