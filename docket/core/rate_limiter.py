"""docket.core.rate_limiter

Fixed-window rate limiting in front of the HTTP surface.

The limiter is a service with an explicit lifecycle (``start``/``aclose``),
injected into the app rather than living in module state. Two backends share
the contract:

- InMemoryRateLimiter: process-local buckets plus a periodic sweep task
- SqliteRateLimiter: DB-backed counters (survive restarts, shared by workers)
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from docket.core.config import RateLimitConfig, RateLimitRule
from docket.core.database import Database

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: int  # epoch seconds

    def retry_after_seconds(self, *, now: float | None = None) -> int:
        ref = time.time() if now is None else now
        return max(1, int(self.reset_at - ref))


@runtime_checkable
class RateLimiter(Protocol):
    def check(self, *, key: str, rule: RateLimitRule) -> RateLimitDecision: ...

    async def start(self) -> None: ...

    async def aclose(self) -> None: ...


@dataclass(slots=True)
class _Bucket:
    count: int
    reset_at: float


class InMemoryRateLimiter:
    """Process-local fixed-window limiter.

    Expired buckets are dropped by a sweep task started in ``start()``.
    """

    def __init__(
        self,
        *,
        sweep_interval_seconds: float = 300.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.sweep_interval_seconds = float(sweep_interval_seconds)
        self._clock = clock
        self._buckets: dict[str, _Bucket] = {}
        self._lock = threading.Lock()
        self._sweeper: asyncio.Task[None] | None = None

    def check(self, *, key: str, rule: RateLimitRule) -> RateLimitDecision:
        now = self._clock()
        bucket_key = f"{rule.window_seconds}:{key}"
        with self._lock:
            bucket = self._buckets.get(bucket_key)
            if bucket is None or bucket.reset_at <= now:
                bucket = _Bucket(count=0, reset_at=now + rule.window_seconds)
                self._buckets[bucket_key] = bucket

            if bucket.count >= rule.max_requests:
                return RateLimitDecision(
                    allowed=False, limit=rule.max_requests, remaining=0, reset_at=int(bucket.reset_at)
                )

            bucket.count += 1
            return RateLimitDecision(
                allowed=True,
                limit=rule.max_requests,
                remaining=rule.max_requests - bucket.count,
                reset_at=int(bucket.reset_at),
            )

    def sweep(self) -> int:
        """Drop expired buckets. Returns how many were removed."""

        now = self._clock()
        with self._lock:
            expired = [k for k, b in self._buckets.items() if b.reset_at <= now]
            for k in expired:
                del self._buckets[k]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            removed = self.sweep()
            if removed:
                logger.debug("rate_limit_sweep", extra={"removed": removed})

    async def start(self) -> None:
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_loop())

    async def aclose(self) -> None:
        task, self._sweeper = self._sweeper, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        with self._lock:
            self._buckets.clear()


class SqliteRateLimiter:
    """DB-backed fixed-window limiter. Keyed by a string (path + client)."""

    def __init__(self, db: Database, *, clock: Callable[[], float] = time.time) -> None:
        self._db = db
        self._clock = clock

    def check(self, *, key: str, rule: RateLimitRule) -> RateLimitDecision:
        now = int(self._clock())
        window = int(rule.window_seconds)
        window_start = now - (now % window)
        reset_at = window_start + window

        with self._db.transaction(immediate=True) as conn:
            row = conn.execute(
                """
                SELECT count FROM api_rate_limits
                WHERE key = ? AND window_start = ? AND window_seconds = ?
                """,
                (key, window_start, window),
            ).fetchone()

            count = 0 if row is None else int(row[0] or 0)
            if count >= rule.max_requests:
                return RateLimitDecision(
                    allowed=False, limit=rule.max_requests, remaining=0, reset_at=reset_at
                )

            if row is None:
                conn.execute(
                    """
                    INSERT INTO api_rate_limits (key, window_start, window_seconds, count, updated_at)
                    VALUES (?, ?, ?, 1, datetime('now'))
                    """,
                    (key, window_start, window),
                )
            else:
                conn.execute(
                    """
                    UPDATE api_rate_limits
                    SET count = count + 1, updated_at = datetime('now')
                    WHERE key = ? AND window_start = ? AND window_seconds = ?
                    """,
                    (key, window_start, window),
                )
        return RateLimitDecision(
            allowed=True,
            limit=rule.max_requests,
            remaining=rule.max_requests - (count + 1),
            reset_at=reset_at,
        )

    def sweep(self) -> int:
        now = int(self._clock())
        with self._db.transaction() as conn:
            cur = conn.execute(
                "DELETE FROM api_rate_limits WHERE window_start + window_seconds <= ?", (now,)
            )
        return int(cur.rowcount)

    async def start(self) -> None:
        self.sweep()

    async def aclose(self) -> None:
        return None


def build_rate_limiter(cfg: RateLimitConfig, db: Database) -> RateLimiter:
    if cfg.backend == "sqlite":
        return SqliteRateLimiter(db)
    return InMemoryRateLimiter(sweep_interval_seconds=cfg.sweep_interval_seconds)
