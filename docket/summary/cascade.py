"""docket.summary.cascade

Ordered fallback over summarizers.

The cascade is total: every call returns a SummaryResult. Tiers run one at a
time, each under its own deadline; the template tier closes the chain.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

import httpx

from docket.core.config import SummaryConfig
from docket.security.redaction import redact_secrets
from docket.summary.base import (
    FALLBACK_MODEL,
    Summarizer,
    SummaryInput,
    SummaryOptions,
    SummaryResult,
)
from docket.summary.fallback import TemplateSummarizer
from docket.summary.openrouter import ModelTierSummarizer

logger = logging.getLogger(__name__)


def tier_order(cfg: SummaryConfig, mode: str) -> list[str]:
    """primary, then deep or fast by mode, then fast. Duplicates dropped."""

    second = cfg.deep_model if mode == "deep" else cfg.fast_model
    ordered: list[str] = []
    for m in (cfg.primary_model, second, cfg.fast_model):
        if m and m not in ordered:
            ordered.append(m)
    return ordered


class SummaryCascade:
    def __init__(
        self,
        cfg: SummaryConfig,
        *,
        client: httpx.AsyncClient | None = None,
        tiers: Sequence[Summarizer] | None = None,
    ) -> None:
        self.cfg = cfg
        self._client = client
        self._owns_client = client is None
        # Explicit tiers replace the model table (mode no longer reorders them).
        self._tiers = list(tiers) if tiers is not None else None
        self._fallback = TemplateSummarizer()

    def is_configured(self) -> bool:
        return self._tiers is not None or bool(self.cfg.api_key)

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    def tiers_for(self, options: SummaryOptions) -> list[Summarizer]:
        if self._tiers is not None:
            return list(self._tiers)
        client = self._http()
        return [ModelTierSummarizer(m, self.cfg, client) for m in tier_order(self.cfg, options.mode)]

    async def run(self, data: SummaryInput, options: SummaryOptions | None = None) -> SummaryResult:
        opts = options or SummaryOptions()
        attempts: list[str] = []

        if self.is_configured():
            for tier in self.tiers_for(opts):
                attempts.append(tier.name)
                try:
                    text = await asyncio.wait_for(
                        tier.summarize(data, opts, self.cfg.timeout_seconds),
                        timeout=self.cfg.timeout_seconds,
                    )
                except Exception as e:  # noqa: BLE001 - any tier failure advances the cascade
                    logger.warning(
                        "summary_tier_failed",
                        extra={
                            "model": tier.name,
                            "task_key": data.task_key,
                            "error": redact_secrets(f"{type(e).__name__}: {e}"),
                        },
                    )
                    continue

                text = (text or "").strip()
                if text:
                    logger.info("summary_generated", extra={"model": tier.name, "task_key": data.task_key})
                    return SummaryResult(summary=text, model=tier.name, attempts=tuple(attempts))
                logger.warning("summary_tier_empty", extra={"model": tier.name, "task_key": data.task_key})
        else:
            logger.info("summary_not_configured", extra={"task_key": data.task_key})

        attempts.append(FALLBACK_MODEL)
        text = await self._fallback.summarize(data, opts, self.cfg.timeout_seconds)
        logger.info("summary_fallback_used", extra={"task_key": data.task_key})
        return SummaryResult(summary=text, model=FALLBACK_MODEL, attempts=tuple(attempts))

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
