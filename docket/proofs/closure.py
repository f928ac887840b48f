"""docket.proofs.closure

Closure policy and the veto-window sweeper.

The assembler never decides when a task is done; it reacts to closure
events. This module is the orchestration that emits them:

- after delivery evidence lands, ``propose_if_eligible`` appends
  ``closure_proposed`` carrying ``scheduled_close_at``
- ``ClosureSweeper.finalize_due`` appends ``closure_finalized`` once that
  time has passed with no veto in between
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta

from docket.core.config import ClosureConfig, PolicyTierConfig
from docket.core.event_log import EventLog
from docket.core.events import EventType, TriggerSource
from docket.core.exceptions import ChainCorruptedError, DedupeConflictError, StaleTailError
from docket.core.models import Event, Task, Workspace
from docket.core.registry import Registry
from docket.core.time import parse_dt, to_iso, utc_now
from docket.proofs.state_machine import PacketStatus, fold

logger = logging.getLogger(__name__)

# Re-reads allowed when another append moves the tail under a conditional append.
TAIL_RETRIES = 3


@dataclass(frozen=True, slots=True)
class ResolvedPolicy:
    tier: str
    rules: PolicyTierConfig
    veto_window_hours: float


def resolve_policy(workspace: Workspace, cfg: ClosureConfig) -> ResolvedPolicy:
    tier = workspace.policy_tier if workspace.policy_tier in cfg.tiers else cfg.default_tier
    rules = cfg.tiers[tier]
    hours = workspace.veto_window_hours if workspace.veto_window_hours is not None else rules.veto_window_hours
    return ResolvedPolicy(tier=tier, rules=rules, veto_window_hours=float(hours))


@dataclass(frozen=True, slots=True)
class ClosureChecks:
    pr_merged: bool = False
    ci_passed: bool = False
    approvals: int = 0
    all_checks_passed: bool = False
    linked_issue: bool = False

    @classmethod
    def from_events(cls, events: Sequence[Event]) -> ClosureChecks:
        merged = False
        ci_latest: str | None = None
        checks: dict[str, str] = {}
        reviewers: set[str] = set()
        linked = False

        for ev in events:
            et = ev.event_type
            if et == EventType.PR_MERGED:
                merged = True
            elif et == EventType.PR_APPROVED:
                reviewers.add(str(ev.payload.get("reviewer") or ev.id))
            elif et in (EventType.CI_PASSED, EventType.CI_FAILED):
                ci_latest = str(et)
                checks[str(ev.payload.get("check_name") or "ci")] = str(et)
            elif et == EventType.HANDSHAKE:
                linked = True

        return cls(
            pr_merged=merged,
            ci_passed=ci_latest == EventType.CI_PASSED,
            approvals=len(reviewers),
            all_checks_passed=bool(checks) and all(v == EventType.CI_PASSED for v in checks.values()),
            linked_issue=linked,
        )


@dataclass(frozen=True, slots=True)
class ClosureEvaluation:
    eligible: bool
    policy_tier: str
    veto_window_hours: float
    scheduled_close_at: datetime | None
    unmet: tuple[str, ...] = field(default=())


def evaluate_closure(
    events: Sequence[Event],
    policy: ResolvedPolicy,
    *,
    now: datetime | None = None,
    history: Sequence[Event] | None = None,
) -> ClosureEvaluation:
    """Whether the task meets its workspace's closure rules right now.

    ``events`` is the current delivery cycle. ``history`` (the whole chain)
    only contributes the linked-issue check, which is made once per task.
    """

    c = ClosureChecks.from_events(events)
    if history is not None and not c.linked_issue:
        c = replace(c, linked_issue=ClosureChecks.from_events(history).linked_issue)
    r = policy.rules
    unmet: list[str] = []

    if not c.pr_merged:
        unmet.append("pr_not_merged")
    if r.require_ci_pass and not c.ci_passed:
        unmet.append("ci_not_passed")
    if c.approvals < r.required_approvals:
        unmet.append(f"insufficient_approvals ({c.approvals}/{r.required_approvals})")
    if r.require_all_checks_pass and not c.all_checks_passed:
        unmet.append("checks_not_passed")
    if r.require_linked_issue and not c.linked_issue:
        unmet.append("no_linked_issue")

    eligible = not unmet
    ref = now or utc_now()
    return ClosureEvaluation(
        eligible=eligible,
        policy_tier=policy.tier,
        veto_window_hours=policy.veto_window_hours,
        scheduled_close_at=ref + timedelta(hours=policy.veto_window_hours) if eligible else None,
        unmet=tuple(unmet),
    )


def current_cycle(events: Sequence[Event]) -> list[Event]:
    """Events after the most recent sealing finalization.

    A ``closure_finalized`` that arrived while nothing was pending (a stale
    approval after a veto) seals nothing, so it does not start a new cycle.
    """

    last = fold(events)[-1]
    return [] if last.sealed else list(last.events)


def open_proposal(events: Sequence[Event]) -> Event | None:
    """The ``closure_proposed`` the open packet is pending on, if any."""

    last = fold(events)[-1]
    if last.status is not PacketStatus.PENDING:
        return None
    for ev in reversed(last.events):
        if ev.event_type == EventType.CLOSURE_PROPOSED:
            return ev
    return None


def proposal_open(events: Sequence[Event]) -> bool:
    return open_proposal(events) is not None


@dataclass
class ClosureSweeper:
    registry: Registry
    event_log: EventLog
    cfg: ClosureConfig

    def propose_if_eligible(
        self,
        task: Task,
        workspace: Workspace,
        *,
        now: datetime | None = None,
        cancel: threading.Event | None = None,
    ) -> Event | None:
        """Append ``closure_proposed`` when the policy is met and no proposal is open.

        A vetoed closure may be proposed again only after new evidence; the
        delivery that triggered this call is that evidence.
        """

        policy = resolve_policy(workspace, self.cfg)
        for _ in range(TAIL_RETRIES):
            events = self.event_log.verified_events(task.id)
            if proposal_open(events):
                return None
            cycle = current_cycle(events)
            if not cycle:
                return None

            result = evaluate_closure(cycle, policy, now=now, history=events)
            if not result.eligible:
                logger.info(
                    "closure_not_eligible",
                    extra={"task_id": task.id, "task_key": task.key, "unmet": list(result.unmet)},
                )
                return None

            try:
                ev = self.event_log.append(
                    task.id,
                    EventType.CLOSURE_PROPOSED,
                    {
                        "policy_tier": result.policy_tier,
                        "scheduled_close_at": to_iso(result.scheduled_close_at),
                        "veto_window_hours": result.veto_window_hours,
                    },
                    TriggerSource.AUTOMATIC,
                    dedupe_key=f"closure:{events[-1].id}:proposed",
                    now=now,
                    expected_tail=events[-1].id,
                    cancel=cancel,
                )
            except StaleTailError:
                continue
            except DedupeConflictError:
                # A concurrent delivery proposed from the same tail first.
                return None
            logger.info(
                "closure_proposed",
                extra={
                    "task_id": task.id,
                    "task_key": task.key,
                    "scheduled_close_at": ev.payload["scheduled_close_at"],
                },
            )
            return ev

        logger.warning("closure_proposal_contended", extra={"task_id": task.id, "task_key": task.key})
        return None

    def finalize_due(self, now: datetime | None = None) -> list[Event]:
        """Finalize every open proposal whose veto window has elapsed."""

        ref = now or utc_now()
        finalized: list[Event] = []

        for task in self.registry.list_tasks():
            try:
                ev = self._finalize_task(task, ref)
            except ChainCorruptedError as e:
                logger.error("closure_skipped_corrupt_chain", extra={"task_id": task.id, "event_id": e.event_id})
                continue
            if ev is not None:
                finalized.append(ev)

        return finalized

    def _finalize_task(self, task: Task, ref: datetime) -> Event | None:
        # The append is conditional on the tail read here, so a veto that
        # lands in between makes this pass re-read instead of finalizing.
        for _ in range(TAIL_RETRIES):
            events = self.event_log.verified_events(task.id)
            proposal = open_proposal(events)
            if proposal is None:
                return None
            try:
                due = parse_dt(str(proposal.payload.get("scheduled_close_at") or ""))
            except ValueError:
                logger.warning("closure_schedule_unreadable", extra={"task_id": task.id, "event_id": proposal.id})
                return None
            if due > ref:
                return None

            try:
                ev = self.event_log.append(
                    task.id,
                    EventType.CLOSURE_FINALIZED,
                    {"reason": "veto_window_elapsed", "approved_by": None},
                    TriggerSource.AUTOMATIC,
                    dedupe_key=f"closure:{proposal.id}:finalized",
                    now=ref,
                    expected_tail=events[-1].id,
                )
            except StaleTailError:
                continue
            logger.info("closure_finalized", extra={"task_id": task.id, "task_key": task.key})
            return ev

        logger.warning("closure_finalize_contended", extra={"task_id": task.id, "task_key": task.key})
        return None
