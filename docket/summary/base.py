"""docket.summary.base

Summary contract.

A summarizer turns the structured facts of a task into 2-3 sentences. It
never sees raw provider payloads, only what ``SummaryInput.from_events``
extracted from the verified log.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Literal, Protocol, runtime_checkable

from docket.core.events import EventType
from docket.core.models import Event, Task

Tone = Literal["professional", "casual", "technical"]
Mode = Literal["fast", "deep"]

MAX_PROMPT_COMMITS = 10
MAX_PR_DESCRIPTION_CHARS = 500

FALLBACK_MODEL = "fallback"

TONE_INSTRUCTIONS: dict[str, str] = {
    "professional": (
        "Write in a professional, concise tone suitable for client billing reports "
        "and executive summaries."
    ),
    "casual": "Write in a friendly, conversational tone while remaining informative.",
    "technical": "Include technical details while remaining accessible to stakeholders.",
}


@dataclass(frozen=True, slots=True)
class Commit:
    message: str
    author: str = ""


@dataclass(frozen=True, slots=True)
class SummaryInput:
    task_key: str
    task_summary: str
    commits: tuple[Commit, ...] = ()
    pr_description: str | None = None
    approvers: tuple[str, ...] = ()
    ci_status: Literal["passed", "failed"] | None = None
    pr_count: int = 0

    @classmethod
    def from_events(cls, task: Task, events: Sequence[Event]) -> SummaryInput:
        """Derive summary facts from a task's events (oldest first).

        The most recent CI result wins; approvers are de-duplicated in
        first-seen order; commits and PRs are counted across every PR event.
        """

        commits: list[Commit] = []
        approvers: list[str] = []
        prs: set[tuple[str, int]] = set()
        pr_description: str | None = None
        ci_status: Literal["passed", "failed"] | None = None

        for ev in events:
            p = ev.payload
            if ev.event_type in (EventType.PR_OPENED, EventType.PR_MERGED):
                if p.get("pr_number") is not None:
                    prs.add((str(p.get("repo") or ""), int(p["pr_number"])))
                if p.get("pr_description"):
                    pr_description = str(p["pr_description"])
                for c in p.get("commits") or []:
                    msg = str(c.get("message") or "").strip()
                    if msg and all(existing.message != msg for existing in commits):
                        commits.append(Commit(message=msg, author=str(c.get("author") or "")))
            elif ev.event_type == EventType.PR_APPROVED:
                reviewer = p.get("reviewer")
                if reviewer and reviewer not in approvers:
                    approvers.append(str(reviewer))
            elif ev.event_type == EventType.CI_PASSED:
                ci_status = "passed"
            elif ev.event_type == EventType.CI_FAILED:
                ci_status = "failed"

        return cls(
            task_key=task.key,
            task_summary=task.summary or task.key,
            commits=tuple(commits),
            pr_description=pr_description,
            approvers=tuple(approvers),
            ci_status=ci_status,
            pr_count=len(prs),
        )


@dataclass(frozen=True, slots=True)
class SummaryOptions:
    tone: Tone = "professional"
    include_commits: bool = True
    include_pr_description: bool = True
    mode: Mode = "fast"


@dataclass(frozen=True, slots=True)
class SummaryResult:
    summary: str
    model: str
    attempts: tuple[str, ...] = field(default=())

    @property
    def is_fallback(self) -> bool:
        return self.model == FALLBACK_MODEL


@runtime_checkable
class Summarizer(Protocol):
    """One tier of the cascade.

    Implementations raise on any failure; the cascade decides what happens next.
    """

    name: str

    async def summarize(self, data: SummaryInput, options: SummaryOptions, timeout: float) -> str: ...


def build_prompt(data: SummaryInput, options: SummaryOptions) -> str:
    sections: list[str] = []

    if options.include_commits and data.commits:
        lines = "\n".join(f"- {c.message}" for c in data.commits[:MAX_PROMPT_COMMITS])
        sections.append(f"\n\nCommit History:\n{lines}")

    if options.include_pr_description and data.pr_description:
        sections.append(
            f"\n\nPull Request Description:\n{data.pr_description[:MAX_PR_DESCRIPTION_CHARS]}"
        )

    if data.approvers:
        sections.append(f"\n\nApproved by: {', '.join(data.approvers)}")

    if data.ci_status:
        ci = "All tests passed" if data.ci_status == "passed" else "Tests failed"
        sections.append(f"\nCI Status: {ci}")

    tone = TONE_INSTRUCTIONS.get(options.tone, TONE_INSTRUCTIONS["professional"])

    return (
        "You are a professional software delivery reporter helping agencies "
        "communicate with their clients.\n\n"
        f"Task: {data.task_key} - {data.task_summary}\n"
        f"{''.join(sections)}\n\n"
        f"{tone}\n\n"
        "Generate a 2-3 sentence summary of what was delivered. Focus on:\n"
        "- What value was delivered to the client\n"
        "- Key changes or improvements made\n"
        "- Confirmation of quality (approvals, testing)\n\n"
        "Do NOT include:\n"
        "- Technical jargon without context\n"
        "- Specific code details\n"
        "- Internal process information\n\n"
        "Summary:"
    )
