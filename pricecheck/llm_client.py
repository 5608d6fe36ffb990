"""Async client for OpenAI-compatible chat completion endpoints.

DeepSeek, OpenAI and any other compatible host work by swapping
``base_url`` and ``model``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from openai import AsyncOpenAI

from pricecheck.config import Settings, get_settings
from pricecheck.errors import ConfigurationError, PriceCheckError
from pricecheck.utils import backoff_delay

logger = logging.getLogger(__name__)


class LLMError(PriceCheckError):
    """The completion endpoint kept failing after every retry."""


class LLMClient:
    def __init__(
        self,
        provider: str,
        api_key: str,
        base_url: str,
        model: str,
        max_retries: int = 3,
        backoff_base: float = 2.0,
        temperature: float = 0.0,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.provider = provider
        self.model = model
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.temperature = temperature
        self._client = client or AsyncOpenAI(api_key=api_key, base_url=base_url)

        self._prompt_tokens = 0
        self._completion_tokens = 0
        self._calls = 0

    # ── completion ─────────────────────────────────────────────────────
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        json_mode: bool = False,
    ) -> str:
        """One chat completion with retry and exponential backoff."""
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self.temperature,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        last_exc: BaseException | None = None
        for attempt in range(self.max_retries):
            try:
                response = await self._client.chat.completions.create(**kwargs)
            except Exception as exc:
                last_exc = exc
                if attempt + 1 >= self.max_retries:
                    break
                wait = backoff_delay(self.backoff_base, attempt, jitter=0.1)
                logger.warning(
                    "[llm] %s call failed (attempt %d/%d): %s, retrying in %.1fs",
                    self.provider, attempt + 1, self.max_retries, exc, wait,
                )
                await asyncio.sleep(wait)
                continue

            self._calls += 1
            usage = getattr(response, "usage", None)
            if usage:
                self._prompt_tokens += usage.prompt_tokens
                self._completion_tokens += usage.completion_tokens
                logger.debug(
                    "[llm] usage %s/%s prompt=%d completion=%d",
                    self.provider, self.model, usage.prompt_tokens, usage.completion_tokens,
                )
            return response.choices[0].message.content or ""

        raise LLMError(
            f"{self.provider} completion failed after {self.max_retries} attempts: {last_exc}"
        ) from last_exc

    @property
    def token_usage(self) -> dict[str, int]:
        return {
            "calls": self._calls,
            "prompt_tokens": self._prompt_tokens,
            "completion_tokens": self._completion_tokens,
            "total_tokens": self._prompt_tokens + self._completion_tokens,
        }


def get_judge_client(settings: Settings | None = None) -> LLMClient:
    """LLMClient configured from the ``judge_*`` settings."""
    s = settings or get_settings()
    if not s.judge_api_key:
        raise ConfigurationError("JUDGE_API_KEY is not set")
    return LLMClient(
        provider=s.judge_provider,
        api_key=s.judge_api_key,
        base_url=s.judge_base_url,
        model=s.judge_model,
    )
