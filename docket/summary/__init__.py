"""docket.summary

AI narrative for proof packets, with a deterministic floor.
"""

from docket.summary.base import SummaryInput, SummaryOptions, SummaryResult, Summarizer, build_prompt
from docket.summary.cascade import SummaryCascade, tier_order
from docket.summary.fallback import TemplateSummarizer, render_template
from docket.summary.openrouter import ModelTierSummarizer

__all__ = [
    "ModelTierSummarizer",
    "Summarizer",
    "SummaryCascade",
    "SummaryInput",
    "SummaryOptions",
    "SummaryResult",
    "TemplateSummarizer",
    "build_prompt",
    "render_template",
    "tier_order",
]
