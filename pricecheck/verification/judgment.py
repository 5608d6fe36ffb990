"""LLM-assisted judgment of a prediction in its full context.

The judge reads the prediction, its transcript and the priced window, and
may propose a corrected horizon. Its status is advisory; the correction is
applied by the engine as a new window version and the outcome still comes
from the price scan.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, dataclass
from datetime import date
from typing import Any, Callable

from pricecheck.errors import ValidationError
from pricecheck.llm_client import LLMClient, LLMError
from pricecheck.utils import as_date, utc_today
from pricecheck.verification.context import STATUSES, HorizonWindow, VerificationContext

logger = logging.getLogger(__name__)

MAX_HISTORY_POINTS = 15
TRANSCRIPT_LIMIT = 8000
TRANSCRIPT_HEAD = 4000
TRANSCRIPT_TAIL = 3500

ASSET_TYPES = ("stock", "crypto", "forex", "commodity", "index", "etf")
_CONFIDENCES = frozenset({"low", "medium", "high"})

SYSTEM_PROMPT = (
    "You are a financial prediction verification expert. You read a market "
    "prediction made by a finfluencer together with its transcript and the "
    "asset's price history, and you answer with a single JSON object."
)

_RESPONSE_FORMAT = """{
  "status": "correct|wrong|pending",
  "confidence": "low|medium|high",
  "reasoning": "Brief explanation of your decision",
  "correctedHorizon": {
    "horizonStart": "YYYY-MM-DD",
    "horizonEnd": "YYYY-MM-DD",
    "wasCorrected": true|false,
    "correctionReason": "Why dates were changed" or null
  },
  "interpretation": {
    "interpretedTarget": "Description of target criteria",
    "successCriteria": "What would make this correct"
  },
  "evidence": {
    "targetMet": true|false|null,
    "targetMetDate": "YYYY-MM-DD" or null,
    "highestPrice": number or null,
    "lowestPrice": number or null
  },
  "flags": {
    "hedgedLanguage": true|false,
    "conditionalPrediction": true|false,
    "conditionsMet": true|false|null
  },
  "corrections": {
    "correctedPredictionText": "Exact quote from transcript" or null,
    "correctedAssetType": "stock|crypto|forex|commodity|index|etf" or null,
    "correctedHorizonValue": "Corrected horizon expression" or null
  }
}"""

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


@dataclass(frozen=True)
class Judgment:
    status: str
    confidence: str
    reasoning: str
    horizon_start: date
    horizon_end: date
    horizon_corrected: bool = False
    correction_reason: str | None = None
    interpreted_target: str = "Unknown"
    success_criteria: str = "Unknown"
    target_met: bool | None = None
    target_met_date: date | None = None
    highest_price: float | None = None
    lowest_price: float | None = None
    hedged_language: bool = False
    conditional_prediction: bool = False
    conditions_met: bool | None = None
    corrected_prediction_text: str | None = None
    corrected_asset_type: str | None = None
    corrected_horizon_value: str | None = None

    def corrects(self, window: HorizonWindow) -> bool:
        """True when the judge proposes a different window than ``window``."""
        if not self.horizon_corrected:
            return False
        return (self.horizon_start, self.horizon_end) != (window.start, window.end)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("horizon_start", "horizon_end", "target_met_date"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


# ── prompt construction ───────────────────────────────────────────────

def sample_history(
    history: tuple[tuple[date, float], ...] | list[tuple[date, float]],
    limit: int = MAX_HISTORY_POINTS,
) -> list[tuple[date, float]]:
    """At most ``limit`` evenly spaced points, always keeping first and last."""
    points = list(history)
    if len(points) <= limit:
        return points
    last = len(points) - 1
    indices = sorted({round(i * last / (limit - 1)) for i in range(limit)})
    return [points[i] for i in indices]


def truncate_transcript(text: str | None) -> str:
    if not text:
        return "Not available - use prediction text only"
    if len(text) <= TRANSCRIPT_LIMIT:
        return text
    return (
        f"{text[:TRANSCRIPT_HEAD]}\n\n[... transcript truncated for length ...]\n\n"
        f"{text[-TRANSCRIPT_TAIL:]}"
    )


def _fmt(value: Any, missing: str = "Unknown") -> str:
    return missing if value is None or value == "" else str(value)


def build_prompt(context: VerificationContext, today: date) -> str:
    p = context.prediction
    post = context.post
    prices = context.prices
    window = context.window

    sampled = sample_history(prices.history)
    if sampled:
        history_lines = "\n".join(f"  - {d.isoformat()}: {price}" for d, price in sampled)
    else:
        history_lines = "  No price data available"

    change = prices.change_percent
    change_str = f"{change:.2f}" if change is not None else "N/A"

    return f"""Analyze the following prediction and decide whether it is CORRECT, WRONG, or PENDING.

## Prediction Details
- **Asset**: {p.asset} ({p.asset_type})
- **Finfluencer**: {_fmt(post.channel_name)}
- **Prediction Date**: {_fmt(post.post_date)}
- **Sentiment**: {p.sentiment}
- **Stated Horizon**: "{p.horizon_value}"
- **Target Price**: {_fmt(p.target_price, "Not explicitly specified")}
- **Conditions**: {_fmt(p.conditions, "None stated")}
- **Confidence Level**: {p.confidence}

## Original Prediction Text
"{p.prediction_text}"

## Raw Transcript Context
<transcript>
{truncate_transcript(context.transcript)}
</transcript>

## Price Data
- **Entry Price** ({_fmt(prices.entry_price_date)}): {_fmt(prices.entry_price)}
- **Current Price**: {_fmt(prices.current_price)}
- **Price Change**: {change_str}%
- **Price History** ({window.start.isoformat()} to {window.end.isoformat()}):
{history_lines}

## Current Horizon Dates (May Be Wrong!)
- **Horizon Start**: {window.start.isoformat()}
- **Horizon End**: {window.end.isoformat()}

## Current Date
{today.isoformat()}

## Your Analysis Tasks
1. Validate the horizon dates against the prediction text and transcript.
   "by end of year" ends Dec 31 of that year; "2026" covers all of 2026;
   vague phrases like "soon" / "yakında" mean 1-3 months from the post date;
   "long term" / "uzun vadede" means 1-2 years.
2. Interpret the success criteria: explicit targets, implied percentage
   moves, relative terms ("new ATH", "2x"), hedging and conditions.
3. Evaluate: CORRECT if the criteria were met within the (corrected)
   horizon, WRONG if the horizon has passed without meeting them, PENDING
   if the horizon has not passed yet.
4. Flag hedged or conditional language and whether conditions were met.
5. Quote the exact prediction from the transcript in its original
   language, or null if you cannot find it.
6. Check the asset type "{p.asset_type}". Valid types: {", ".join(ASSET_TYPES)}.
7. Check that "{p.horizon_value}" is a valid future horizon. If it is a past
   reference, a condition or a vague phrase, propose a corrected value
   ("3 months" when nothing better is implied).

## Response Format (JSON only, no markdown code blocks)
{_RESPONSE_FORMAT}"""


# ── response parsing ──────────────────────────────────────────────────

def _optional_date(value: Any) -> date | None:
    if not value:
        return None
    try:
        return as_date(str(value))
    except ValidationError:
        return None


def _optional_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _optional_bool(value: Any) -> bool | None:
    return value if isinstance(value, bool) else None


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def _load_object(content: str) -> dict[str, Any] | None:
    text = _FENCE_RE.sub("", content.strip())
    try:
        data = json.loads(text)
        if isinstance(data, dict):
            return data
    except json.JSONDecodeError:
        pass

    match = _OBJECT_RE.search(text)
    if match:
        try:
            data = json.loads(match.group())
            if isinstance(data, dict):
                return data
        except json.JSONDecodeError:
            pass
    return None


def parse_response(content: str, window: HorizonWindow) -> Judgment | None:
    """Parse the judge's reply; missing fields default to the current window."""
    data = _load_object(content or "")
    if data is None:
        logger.warning("[judge] no JSON object in response: %s", (content or "")[:200])
        return None

    status = str(data.get("status") or "").strip().lower()
    if status not in STATUSES:
        logger.warning("[judge] invalid status %r in response", data.get("status"))
        return None

    horizon = _section(data, "correctedHorizon")
    start = _optional_date(horizon.get("horizonStart")) or window.start
    end = _optional_date(horizon.get("horizonEnd")) or window.end
    corrected = bool(horizon.get("wasCorrected"))
    if start > end:
        logger.warning("[judge] ignoring inverted horizon %s..%s", start, end)
        start, end, corrected = window.start, window.end, False

    confidence = str(data.get("confidence") or "medium").lower()
    interpretation = _section(data, "interpretation")
    evidence = _section(data, "evidence")
    flags = _section(data, "flags")
    corrections = _section(data, "corrections")

    asset_type = corrections.get("correctedAssetType")
    if asset_type not in ASSET_TYPES:
        asset_type = None

    return Judgment(
        status=status,
        confidence=confidence if confidence in _CONFIDENCES else "medium",
        reasoning=str(data.get("reasoning") or "No reasoning provided"),
        horizon_start=start,
        horizon_end=end,
        horizon_corrected=corrected,
        correction_reason=horizon.get("correctionReason") or None,
        interpreted_target=str(interpretation.get("interpretedTarget") or "Unknown"),
        success_criteria=str(interpretation.get("successCriteria") or "Unknown"),
        target_met=_optional_bool(evidence.get("targetMet")),
        target_met_date=_optional_date(evidence.get("targetMetDate")),
        highest_price=_optional_float(evidence.get("highestPrice")),
        lowest_price=_optional_float(evidence.get("lowestPrice")),
        hedged_language=bool(flags.get("hedgedLanguage")),
        conditional_prediction=bool(flags.get("conditionalPrediction")),
        conditions_met=_optional_bool(flags.get("conditionsMet")),
        corrected_prediction_text=corrections.get("correctedPredictionText") or None,
        corrected_asset_type=asset_type,
        corrected_horizon_value=corrections.get("correctedHorizonValue") or None,
    )


class AIJudge:
    def __init__(self, client: LLMClient, *, today: Callable[[], date] = utc_today) -> None:
        self.client = client
        self._today = today
        self.judged = 0
        self.failures = 0

    async def judge(self, context: VerificationContext) -> Judgment | None:
        """Ask the model about one prediction. Returns None when it cannot answer."""
        prompt = build_prompt(context, self._today())
        logger.info(
            "[judge] %s %s (transcript=%s, price points=%d)",
            context.prediction.id, context.prediction.asset,
            bool(context.transcript), len(context.prices.history),
        )
        try:
            content = await self.client.complete(SYSTEM_PROMPT, prompt, json_mode=True)
        except LLMError as exc:
            self.failures += 1
            logger.error("[judge] completion failed for %s: %s", context.prediction.id, exc)
            return None

        judgment = parse_response(content, context.window)
        if judgment is None:
            self.failures += 1
            return None

        self.judged += 1
        logger.info(
            "[judge] %s -> %s (%s confidence, horizon corrected=%s)",
            context.prediction.id, judgment.status, judgment.confidence, judgment.horizon_corrected,
        )
        return judgment
