"""Deterministic verification of a prediction over its horizon window."""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import TYPE_CHECKING, Callable, Protocol

from pricecheck.marketdata.symbols import is_crypto
from pricecheck.utils import as_date, date_range, is_weekend, utc_today
from pricecheck.verification.context import (
    HorizonWindow,
    VerificationOutcome,
    normalize_sentiment,
)

if TYPE_CHECKING:
    from pricecheck.verification.judgment import Judgment

logger = logging.getLogger(__name__)

HIT_EPSILON = 1e-4

# (up, down) move against the entry price when no explicit target exists.
_THRESHOLDS: dict[str, tuple[float, float]] = {
    "crypto": (0.10, 0.05),
    "forex": (0.01, 0.01),
    "fx": (0.01, 0.01),
    "stock": (0.05, 0.05),
    "commodity": (0.03, 0.03),
    "index": (0.03, 0.03),
}
_DEFAULT_THRESHOLD = (0.05, 0.05)


class PriceSource(Protocol):
    async def get_price(
        self, asset: str, day: date | str, asset_type: str | None = None
    ) -> float | None: ...


def check_hit(
    entry: float | None,
    current: float,
    target: float | None,
    sentiment: str,
    asset_type: str | None = None,
) -> bool:
    """Does ``current`` satisfy the prediction?

    An explicit target is the only criterion when present: bullish needs
    ``current >= target``, bearish ``current <= target``, neutral never hits.
    Without a target, the asset-class move threshold against ``entry`` applies.
    """
    sent = normalize_sentiment(sentiment)

    if target is not None and target > 0:
        if sent == "bullish":
            return current >= target
        if sent == "bearish":
            return current <= target
        return False

    if entry is None or entry <= 0:
        return False

    up, down = _THRESHOLDS.get((asset_type or "").lower(), _DEFAULT_THRESHOLD)
    if sent == "bullish":
        return current >= entry * (1 + up) - HIT_EPSILON
    if sent == "bearish":
        return current <= entry * (1 - down) + HIT_EPSILON
    return False


class VerificationEngine:
    """Scan a horizon window day by day for the first satisfying price.

    Windows longer than ``scan_cap_days`` only look at their first and last
    day. Weekend days are skipped for non-crypto assets since their price is
    the preceding Friday's close.
    """

    def __init__(
        self,
        resolver: PriceSource,
        *,
        scan_cap_days: int = 60,
        today: Callable[[], date] = utc_today,
    ) -> None:
        self.resolver = resolver
        self.scan_cap_days = scan_cap_days
        self._today = today

    def scan_days(self, window: HorizonWindow, check_end: date, crypto: bool) -> list[date]:
        """Days to price, from ``window.start`` up to ``check_end``.

        A window longer than ``scan_cap_days`` contributes only its endpoints,
        and only those already reached by ``check_end``.
        """
        if window.days > self.scan_cap_days:
            return [d for d in dict.fromkeys((window.start, window.end)) if d <= check_end]
        return [d for d in date_range(window.start, check_end) if crypto or not is_weekend(d)]

    async def verify_prediction_with_range(
        self,
        asset: str,
        entry_price: float | None,
        target_price: float | None,
        sentiment: str,
        horizon_start: date | datetime | str,
        horizon_end: date | datetime | str,
        asset_type: str | None = None,
    ) -> VerificationOutcome:
        window = HorizonWindow(as_date(horizon_start), as_date(horizon_end))
        sent = normalize_sentiment(sentiment)
        now = self._today()

        if now < window.start:
            return VerificationOutcome.pending()

        check_end = min(window.end, now)
        crypto = is_crypto(asset, asset_type)
        days = self.scan_days(window, check_end, crypto)
        if window.days > self.scan_cap_days:
            logger.info(
                "[engine] %s window %s..%s exceeds %d days, checking endpoints only",
                asset, window.start, window.end, self.scan_cap_days,
            )

        for day in days:
            price = await self.resolver.get_price(asset, day, asset_type)
            if price is None:
                continue
            if check_hit(entry_price, price, target_price, sent, asset_type):
                logger.info("[engine] %s hit on %s at %s", asset, day, price)
                return VerificationOutcome.correct(day, price)

        if now > window.end:
            final_price = await self.resolver.get_price(asset, check_end, asset_type)
            return VerificationOutcome.wrong(final_price)

        return VerificationOutcome.pending()

    async def verify_window(
        self,
        asset: str,
        entry_price: float | None,
        target_price: float | None,
        sentiment: str,
        window: HorizonWindow,
        asset_type: str | None = None,
    ) -> VerificationOutcome:
        return await self.verify_prediction_with_range(
            asset, entry_price, target_price, sentiment, window.start, window.end, asset_type
        )

    async def verify_with_judgment(
        self,
        asset: str,
        entry_price: float | None,
        target_price: float | None,
        sentiment: str,
        window: HorizonWindow,
        judgment: Judgment | None,
        asset_type: str | None = None,
    ) -> tuple[HorizonWindow, VerificationOutcome]:
        """Apply a judge's horizon correction, then verify deterministically.

        The judge's window replaces the current one through ``supersede``;
        the outcome itself always comes from the price scan.
        """
        effective = window
        if judgment is not None and judgment.corrects(window):
            effective = window.supersede(
                judgment.horizon_start,
                judgment.horizon_end,
                reason=judgment.correction_reason,
            )
            logger.info(
                "[engine] %s horizon v%d %s..%s -> v%d %s..%s (%s)",
                asset, window.version, window.start, window.end,
                effective.version, effective.start, effective.end,
                judgment.correction_reason or "no reason given",
            )
        outcome = await self.verify_window(
            asset, entry_price, target_price, sentiment, effective, asset_type
        )
        return effective, outcome
