from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from docket.core.config import SummaryConfig
from docket.core.exceptions import SummaryUnavailableError
from docket.summary.base import SummaryInput, SummaryOptions
from docket.summary.cascade import SummaryCascade, tier_order
from docket.summary.fallback import render_template
from docket.summary.openrouter import extract_content

DATA = SummaryInput(task_key="TRAIL-123", task_summary="Add CSV export to billing report", ci_status="passed")


class FakeTier:
    def __init__(self, name: str, *, text: str = "", exc: Exception | None = None, delay: float = 0.0) -> None:
        self.name = name
        self.text = text
        self.exc = exc
        self.delay = delay
        self.calls = 0

    async def summarize(self, data: SummaryInput, options: SummaryOptions, timeout: float) -> str:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.exc is not None:
            raise self.exc
        return self.text


def test_tier_order_by_mode() -> None:
    cfg = SummaryConfig()
    assert tier_order(cfg, "fast") == [cfg.primary_model, cfg.fast_model]
    assert tier_order(cfg, "deep") == [cfg.primary_model, cfg.deep_model, cfg.fast_model]

    same = SummaryConfig(primary_model="m", fast_model="m", deep_model="m")
    assert tier_order(same, "deep") == ["m"]


@pytest.mark.anyio
async def test_first_success_wins() -> None:
    a = FakeTier("a", exc=RuntimeError("boom"))
    b = FakeTier("b", text="  Delivered CSV export.  ")
    c = FakeTier("c", text="never")

    result = await SummaryCascade(SummaryConfig(), tiers=[a, b, c]).run(DATA)

    assert result.summary == "Delivered CSV export."
    assert result.model == "b"
    assert result.attempts == ("a", "b")
    assert not result.is_fallback
    assert c.calls == 0


@pytest.mark.anyio
async def test_all_tiers_failing_falls_back_to_template() -> None:
    tiers = [FakeTier("a", exc=RuntimeError("boom")), FakeTier("b", text="   ")]

    result = await SummaryCascade(SummaryConfig(), tiers=tiers).run(DATA)

    assert result.is_fallback
    assert result.model == "fallback"
    assert result.summary == render_template(DATA)
    assert result.attempts == ("a", "b", "fallback")


@pytest.mark.anyio
async def test_slow_tier_times_out_and_cascade_moves_on() -> None:
    slow = FakeTier("slow", text="too late", delay=1.0)
    fast = FakeTier("fast", text="On time.")

    result = await SummaryCascade(SummaryConfig(timeout_seconds=0.05), tiers=[slow, fast]).run(DATA)

    assert result.model == "fast"
    assert result.summary == "On time."


@pytest.mark.anyio
async def test_unconfigured_cascade_uses_template_only() -> None:
    cascade = SummaryCascade(SummaryConfig(api_key=""))
    assert not cascade.is_configured()

    result = await cascade.run(DATA)
    assert result.attempts == ("fallback",)
    assert result.summary == render_template(DATA)
    await cascade.aclose()


@pytest.mark.anyio
async def test_model_tiers_over_http() -> None:
    cfg = SummaryConfig(api_key="sk-or-v1-test", base_url="https://llm.test/api/v1")
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-or-v1-test"
        body = json.loads(request.content)
        seen.append(body["model"])
        assert "TRAIL-123" in body["messages"][0]["content"]
        if body["model"] == cfg.primary_model:
            return httpx.Response(503, json={"error": "overloaded"})
        return httpx.Response(200, json={"choices": [{"message": {"content": "Shipped CSV export."}}]})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        result = await SummaryCascade(cfg, client=client).run(DATA, SummaryOptions(mode="fast"))

    assert seen == [cfg.primary_model, cfg.fast_model]
    assert result.model == cfg.fast_model
    assert result.summary == "Shipped CSV export."


@pytest.mark.anyio
async def test_malformed_completion_falls_back() -> None:
    cfg = SummaryConfig(api_key="k", primary_model="only", fast_model="only")

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": []})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        result = await SummaryCascade(cfg, client=client).run(DATA)

    assert result.is_fallback
    assert result.attempts == ("only", "fallback")


def test_extract_content_rejects_empty_and_malformed() -> None:
    assert extract_content({"choices": [{"message": {"content": " ok "}}]}, model="m") == "ok"
    with pytest.raises(SummaryUnavailableError):
        extract_content({"choices": [{"message": {"content": ""}}]}, model="m")
    with pytest.raises(SummaryUnavailableError):
        extract_content({"unexpected": True}, model="m")
    with pytest.raises(SummaryUnavailableError):
        extract_content(None, model="m")
