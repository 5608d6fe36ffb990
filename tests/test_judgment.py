from __future__ import annotations

import json
from datetime import date, timedelta
from types import SimpleNamespace
from typing import Any

import pytest

from pricecheck.config import Settings
from pricecheck.errors import ConfigurationError
from pricecheck.llm_client import LLMClient, LLMError, get_judge_client
from pricecheck.verification.context import (
    HorizonWindow,
    PostInfo,
    PredictionInfo,
    VerificationContext,
)
from pricecheck.verification.judgment import (
    TRANSCRIPT_HEAD,
    TRANSCRIPT_TAIL,
    AIJudge,
    build_prompt,
    parse_response,
    sample_history,
    truncate_transcript,
)

WINDOW = HorizonWindow(date(2025, 3, 15), date(2025, 6, 15))


def _payload(**overrides: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "status": "correct",
        "confidence": "high",
        "reasoning": "Price crossed 120 in May",
        "correctedHorizon": {
            "horizonStart": "2025-03-15",
            "horizonEnd": "2025-12-31",
            "wasCorrected": True,
            "correctionReason": "speaker said by year end",
        },
        "interpretation": {"interpretedTarget": "AAPL >= 120", "successCriteria": "close above 120"},
        "evidence": {"targetMet": True, "targetMetDate": "2025-05-12", "highestPrice": 125.5, "lowestPrice": None},
        "flags": {"hedgedLanguage": False, "conditionalPrediction": True, "conditionsMet": None},
        "corrections": {
            "correctedPredictionText": "Apple yıl sonuna kadar 120 olur",
            "correctedAssetType": "stock",
            "correctedHorizonValue": "end of year",
        },
    }
    data.update(overrides)
    return data


def _context(transcript: str | None = None, history: dict[date, float] | None = None) -> VerificationContext:
    return VerificationContext.build(
        prediction=PredictionInfo(
            id="pred-1",
            asset="AAPL",
            asset_type="stock",
            sentiment="bullish",
            prediction_text="Apple will hit 120 by year end",
            horizon_value="end of year",
            target_price=120.0,
        ),
        post=PostInfo(video_id="abc123", channel_name="Borsa Kanalı", post_date=date(2025, 3, 15)),
        window=WINDOW,
        history=history if history is not None else {date(2025, 3, 17): 100.0, date(2025, 3, 18): 110.0},
        transcript=transcript,
    )


# ── response parsing ──────────────────────────────────────────────────

def test_parse_full_response() -> None:
    judgment = parse_response(json.dumps(_payload()), WINDOW)
    assert judgment is not None
    assert judgment.status == "correct"
    assert judgment.horizon_end == date(2025, 12, 31)
    assert judgment.corrects(WINDOW) is True
    assert judgment.target_met_date == date(2025, 5, 12)
    assert judgment.highest_price == 125.5
    assert judgment.lowest_price is None
    assert judgment.conditional_prediction is True
    assert judgment.conditions_met is None
    assert judgment.corrected_asset_type == "stock"
    assert judgment.to_dict()["horizon_end"] == "2025-12-31"


def test_parse_fenced_and_prefixed_json() -> None:
    fenced = "```json\n" + json.dumps(_payload(status="WRONG")) + "\n```"
    chatty = "Here is my analysis:\n" + json.dumps(_payload(status="pending")) + "\nThanks."

    assert parse_response(fenced, WINDOW).status == "wrong"
    assert parse_response(chatty, WINDOW).status == "pending"


@pytest.mark.parametrize(
    "content",
    [
        "",
        "I cannot evaluate this prediction.",
        json.dumps(_payload(status="maybe")),
        json.dumps([1, 2, 3]),
    ],
)
def test_unusable_responses_return_none(content: str) -> None:
    assert parse_response(content, WINDOW) is None


def test_missing_sections_default_to_current_window() -> None:
    judgment = parse_response('{"status": "pending"}', WINDOW)
    assert judgment is not None
    assert (judgment.horizon_start, judgment.horizon_end) == (WINDOW.start, WINDOW.end)
    assert judgment.horizon_corrected is False
    assert judgment.confidence == "medium"
    assert judgment.reasoning == "No reasoning provided"
    assert judgment.interpreted_target == "Unknown"
    assert judgment.corrects(WINDOW) is False


def test_inverted_horizon_is_ignored() -> None:
    payload = _payload(correctedHorizon={
        "horizonStart": "2025-12-31",
        "horizonEnd": "2025-01-01",
        "wasCorrected": True,
    })
    judgment = parse_response(json.dumps(payload), WINDOW)
    assert judgment.horizon_corrected is False
    assert (judgment.horizon_start, judgment.horizon_end) == (WINDOW.start, WINDOW.end)


def test_unknown_asset_type_and_bad_numbers_are_dropped() -> None:
    payload = _payload(
        corrections={"correctedAssetType": "meme"},
        evidence={"highestPrice": "n/a", "targetMet": "yes", "targetMetDate": "soon"},
    )
    judgment = parse_response(json.dumps(payload), WINDOW)
    assert judgment.corrected_asset_type is None
    assert judgment.highest_price is None
    assert judgment.target_met is None
    assert judgment.target_met_date is None


# ── prompt construction ───────────────────────────────────────────────

def test_sample_history_keeps_endpoints_and_limit() -> None:
    start = date(2025, 1, 1)
    history = [(start + timedelta(days=i), float(i)) for i in range(100)]

    sampled = sample_history(history)
    assert len(sampled) == 15
    assert sampled[0] == history[0]
    assert sampled[-1] == history[-1]
    assert sample_history(history[:10]) == history[:10]


def test_truncate_transcript() -> None:
    assert truncate_transcript(None) == "Not available - use prediction text only"
    assert truncate_transcript("short") == "short"

    text = "a" * TRANSCRIPT_HEAD + "b" * 5000 + "c" * TRANSCRIPT_TAIL
    out = truncate_transcript(text)
    assert out.startswith("a" * TRANSCRIPT_HEAD)
    assert out.endswith("c" * TRANSCRIPT_TAIL)
    assert "transcript truncated" in out
    assert "b" not in out.replace("truncated", "")


def test_build_prompt_includes_context() -> None:
    prompt = build_prompt(_context(transcript="Apple yıl sonuna kadar 120 olur"), date(2025, 7, 1))

    assert "**Asset**: AAPL (stock)" in prompt
    assert "Borsa Kanalı" in prompt
    assert "**Target Price**: 120.0" in prompt
    assert "**Entry Price** (2025-03-15): 100.0" in prompt
    assert "**Price Change**: 10.00%" in prompt
    assert "  - 2025-03-18: 110.0" in prompt
    assert "**Horizon End**: 2025-06-15" in prompt
    assert "2025-07-01" in prompt
    assert "yıl sonuna kadar" in prompt


def test_build_prompt_without_prices() -> None:
    prompt = build_prompt(_context(history={}), date(2025, 7, 1))
    assert "No price data available" in prompt
    assert "**Price Change**: N/A%" in prompt
    assert "Not available - use prediction text only" in prompt


# ── AIJudge ───────────────────────────────────────────────────────────

class FakeLLM:
    def __init__(self, content: str | None = None, error: Exception | None = None) -> None:
        self.content = content
        self.error = error
        self.calls: list[tuple[str, str, bool]] = []

    async def complete(self, system_prompt: str, user_prompt: str, json_mode: bool = False) -> str:
        self.calls.append((system_prompt, user_prompt, json_mode))
        if self.error:
            raise self.error
        return self.content or ""


@pytest.mark.asyncio
async def test_judge_returns_parsed_judgment() -> None:
    llm = FakeLLM(json.dumps(_payload()))
    judge = AIJudge(llm, today=lambda: date(2025, 7, 1))

    judgment = await judge.judge(_context())
    assert judgment.status == "correct"
    assert llm.calls[0][2] is True
    assert judge.judged == 1 and judge.failures == 0


@pytest.mark.asyncio
async def test_judge_failures_return_none() -> None:
    judge = AIJudge(FakeLLM(error=LLMError("deepseek completion failed")))
    assert await judge.judge(_context()) is None

    judge.client = FakeLLM("not json at all")
    assert await judge.judge(_context()) is None
    assert judge.failures == 2


# ── LLMClient ─────────────────────────────────────────────────────────

class FakeCompletions:
    def __init__(self, outcomes: list[Any]) -> None:
        self.outcomes = list(outcomes)
        self.requests: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> Any:
        self.requests.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=outcome))],
            usage=SimpleNamespace(prompt_tokens=120, completion_tokens=30),
        )


def _llm(outcomes: list[Any], max_retries: int = 3) -> tuple[LLMClient, FakeCompletions]:
    completions = FakeCompletions(outcomes)
    fake = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    client = LLMClient(
        provider="deepseek",
        api_key="test",
        base_url="https://api.deepseek.com",
        model="deepseek-chat",
        max_retries=max_retries,
        backoff_base=0.0,
        client=fake,
    )
    return client, completions


@pytest.mark.asyncio
async def test_llm_client_retries_then_succeeds() -> None:
    client, completions = _llm([RuntimeError("502 Bad Gateway"), '{"status": "pending"}'])

    assert await client.complete("system", "user", json_mode=True) == '{"status": "pending"}'
    assert len(completions.requests) == 2
    assert completions.requests[0]["response_format"] == {"type": "json_object"}
    assert completions.requests[0]["temperature"] == 0.0
    assert client.token_usage == {
        "calls": 1,
        "prompt_tokens": 120,
        "completion_tokens": 30,
        "total_tokens": 150,
    }


@pytest.mark.asyncio
async def test_llm_client_raises_after_last_attempt() -> None:
    client, completions = _llm([RuntimeError("timeout")] * 2, max_retries=2)

    with pytest.raises(LLMError):
        await client.complete("system", "user")
    assert len(completions.requests) == 2
    assert "response_format" not in completions.requests[0]


def test_judge_client_requires_api_key() -> None:
    with pytest.raises(ConfigurationError):
        get_judge_client(Settings(judge_api_key=""))
