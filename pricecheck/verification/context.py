"""Immutable value types shared by the horizon calculator, engine and judge."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from typing import Any

from pricecheck.errors import ValidationError

PENDING = "pending"
CORRECT = "correct"
WRONG = "wrong"
STATUSES = frozenset({PENDING, CORRECT, WRONG})

SENTIMENTS = frozenset({"bullish", "bearish", "neutral"})


def normalize_sentiment(sentiment: str | None) -> str:
    """Lower-case sentiment, rejecting anything outside bullish/bearish/neutral."""
    value = (sentiment or "").strip().lower()
    if value not in SENTIMENTS:
        raise ValidationError(f"unknown sentiment: {sentiment!r}")
    return value


@dataclass(frozen=True)
class HorizonWindow:
    """Calendar window in which a prediction is expected to resolve.

    Windows are never edited in place. A correction goes through
    :meth:`supersede`, which returns the next version.
    """

    start: date
    end: date
    corrected: bool = False
    correction_reason: str | None = None
    version: int = 1
    source: str = "calculator"

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValidationError(f"horizon start {self.start} is after end {self.end}")

    @property
    def days(self) -> int:
        return (self.end - self.start).days

    def supersede(
        self,
        start: date,
        end: date,
        reason: str | None = None,
        source: str = "judge",
    ) -> HorizonWindow:
        return replace(
            self,
            start=start,
            end=end,
            corrected=True,
            correction_reason=reason,
            version=self.version + 1,
            source=source,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "corrected": self.corrected,
            "correction_reason": self.correction_reason,
            "version": self.version,
            "source": self.source,
        }


@dataclass(frozen=True)
class VerificationOutcome:
    """Result of one verification pass.

    ``correct`` always carries both ``met_date`` and ``actual_price``; the
    other statuses never carry ``met_date``.
    """

    status: str
    met_date: date | None = None
    actual_price: float | None = None

    def __post_init__(self) -> None:
        if self.status not in STATUSES:
            raise ValidationError(f"unknown verification status: {self.status!r}")
        if self.status == CORRECT and (self.met_date is None or self.actual_price is None):
            raise ValidationError("a correct outcome needs met_date and actual_price")
        if self.status != CORRECT and self.met_date is not None:
            raise ValidationError(f"a {self.status} outcome cannot carry met_date")

    @classmethod
    def pending(cls) -> VerificationOutcome:
        return cls(PENDING)

    @classmethod
    def correct(cls, met_date: date, price: float) -> VerificationOutcome:
        return cls(CORRECT, met_date=met_date, actual_price=price)

    @classmethod
    def wrong(cls, final_price: float | None = None) -> VerificationOutcome:
        return cls(WRONG, actual_price=final_price if final_price and final_price > 0 else None)

    @property
    def resolved(self) -> bool:
        return self.status != PENDING

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "met_date": self.met_date.isoformat() if self.met_date else None,
            "actual_price": self.actual_price,
        }


# ── Verification context snapshot ─────────────────────────────────────

@dataclass(frozen=True)
class PredictionInfo:
    id: str
    asset: str
    asset_type: str
    sentiment: str
    prediction_text: str = ""
    horizon_value: str = "1 month"
    horizon_type: str = "custom"
    target_price: float | None = None
    conditions: str | None = None
    confidence: str = "medium"


@dataclass(frozen=True)
class PostInfo:
    video_id: str = ""
    title: str = ""
    channel_name: str = ""
    post_date: date | None = None
    language: str = "en"


@dataclass(frozen=True)
class PriceSnapshot:
    entry_price: float | None
    entry_price_date: date | None
    history: tuple[tuple[date, float], ...] = ()

    @property
    def current_price(self) -> float | None:
        return self.history[-1][1] if self.history else None

    @property
    def change_percent(self) -> float | None:
        current = self.current_price
        if not self.entry_price or current is None:
            return None
        return (current - self.entry_price) / self.entry_price * 100

    @property
    def highest(self) -> float | None:
        return max((p for _, p in self.history), default=None)

    @property
    def lowest(self) -> float | None:
        return min((p for _, p in self.history), default=None)


@dataclass(frozen=True)
class VerificationContext:
    """Everything the judge sees about one prediction, fixed at build time."""

    prediction: PredictionInfo
    post: PostInfo
    prices: PriceSnapshot
    window: HorizonWindow
    transcript: str | None = None

    @classmethod
    def build(
        cls,
        *,
        prediction: PredictionInfo,
        post: PostInfo,
        window: HorizonWindow,
        history: dict[date, float],
        entry_price: float | None = None,
        transcript: str | None = None,
    ) -> VerificationContext:
        ordered = tuple(sorted(history.items()))
        if entry_price is None and ordered:
            entry_price = ordered[0][1]
        return cls(
            prediction=prediction,
            post=post,
            prices=PriceSnapshot(
                entry_price=entry_price,
                entry_price_date=post.post_date,
                history=ordered,
            ),
            window=window,
            transcript=transcript,
        )
