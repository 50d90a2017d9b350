"""
AI analysis calls over litellm, wrapped in the bounded retry envelope.

Rate limits (429) and provider overloads (5xx) are retried with backoff;
everything else, and the last failure after the final attempt, propagates
to the caller unchanged.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable
from typing import Any

import litellm

from brokerlink.brokers.models import Position
from brokerlink.config import InsightsConfig, get_config
from brokerlink.errors import UpstreamError
from brokerlink.resilience.retry import ResilientCallExecutor

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


def portfolio_context(positions: Iterable[Position]) -> str:
    """Render holdings as a markdown list for a prompt."""
    lines = [
        f"- {p.ticker} ({p.name}): {p.quantity:g} units, value {p.currency} {p.current_value:.2f}, "
        f"P&L {p.pnl:+.2f} ({p.pnl_percent:+.2f}%)"
        for p in positions
    ]
    if not lines:
        return "## No portfolio data available - provide general market insights."
    return "## Current Portfolio Holdings:\n" + "\n".join(lines)


class InsightsClient:
    """Model calls for portfolio analysis."""

    def __init__(self, config: InsightsConfig | None = None, *, executor: ResilientCallExecutor | None = None):
        self.config = config or get_config().insights
        self.executor = executor or ResilientCallExecutor(
            self.config.max_attempts,
            self.config.base_delay,
            name=f"insights {self.config.model}",
        )

    async def _acompletion(self, **kwargs: Any) -> Any:
        return await litellm.acompletion(**kwargs)

    async def complete(
        self,
        prompt: str,
        *,
        system: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        json_mode: bool = False,
    ) -> str:
        """Single-turn completion. Returns the reply text."""
        messages: list[dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        kwargs: dict[str, Any] = {
            "model": self.config.model,
            "messages": messages,
            "max_tokens": max_tokens or self.config.max_tokens,
            "temperature": self.config.temperature if temperature is None else temperature,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        response = await self.executor.call(self._acompletion, **kwargs)
        content = response.choices[0].message.content
        if not content:
            raise UpstreamError(502, "Empty completion", "insights")
        return content

    async def analyze_json(self, prompt: str, *, system: str | None = None, **kwargs: Any) -> dict[str, Any]:
        """Completion whose reply must be a JSON object."""
        content = await self.complete(prompt, system=system, json_mode=True, **kwargs)
        text = _FENCE_RE.sub("", content.strip())
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning("Insights reply was not JSON: %.200s", content)
            raise UpstreamError(502, "Invalid JSON in model reply", "insights") from e
        if not isinstance(data, dict):
            raise UpstreamError(502, "Model reply is not a JSON object", "insights")
        return data


# Module-level helpers

_default_client: InsightsClient | None = None


def _client() -> InsightsClient:
    global _default_client
    if _default_client is None:
        _default_client = InsightsClient()
    return _default_client


async def complete(prompt: str, *, system: str | None = None, **kwargs: Any) -> str:
    return await _client().complete(prompt, system=system, **kwargs)


async def analyze_json(prompt: str, *, system: str | None = None, **kwargs: Any) -> dict[str, Any]:
    return await _client().analyze_json(prompt, system=system, **kwargs)
