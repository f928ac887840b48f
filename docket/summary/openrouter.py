"""docket.summary.openrouter

Model tiers over an OpenAI-compatible chat completions endpoint.

OpenRouter is the default ``base_url``; any compatible gateway works.
"""

from __future__ import annotations

from typing import Any

import httpx

from docket.core.config import SummaryConfig
from docket.core.exceptions import SummaryUnavailableError
from docket.summary.base import SummaryInput, SummaryOptions, build_prompt


class ModelTierSummarizer:
    """One configured model id. Raises on anything short of usable text."""

    def __init__(self, model: str, cfg: SummaryConfig, client: httpx.AsyncClient) -> None:
        self.name = model
        self.model = model
        self._cfg = cfg
        self._client = client

    def _request_body(self, prompt: str) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self._cfg.temperature,
            "max_tokens": self._cfg.max_tokens,
        }

    async def summarize(self, data: SummaryInput, options: SummaryOptions, timeout: float) -> str:
        resp = await self._client.post(
            f"{self._cfg.base_url.rstrip('/')}/chat/completions",
            json=self._request_body(build_prompt(data, options)),
            headers={"Authorization": f"Bearer {self._cfg.api_key}"},
            timeout=timeout,
        )
        resp.raise_for_status()
        return extract_content(resp.json(), model=self.model)


def extract_content(body: Any, *, model: str) -> str:
    try:
        content = body["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as e:
        raise SummaryUnavailableError(f"{model}: malformed completion response") from e
    if not isinstance(content, str) or not content.strip():
        raise SummaryUnavailableError(f"{model}: empty completion")
    return content.strip()
