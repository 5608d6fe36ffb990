"""PredictionChecker: re-verifies pending predictions whose check date is due.

Each cycle selects pending rows with ``horizon_check_date`` null or on/before
today, works out their horizon window, fills a missing entry price, runs the
deterministic verification (optionally after an LLM judgment), and writes the
outcome back. Rows that stay pending get ``horizon_check_date`` = tomorrow so
they are picked up again on the next day.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Callable

from sqlalchemy import or_, select

from pricecheck.db.database import get_session
from pricecheck.db.models import CombinedPrediction, HorizonRevision
from pricecheck.marketdata.resolver import PriceResolver
from pricecheck.utils import utc_now, utc_today
from pricecheck.verification.context import (
    HorizonWindow,
    PostInfo,
    PredictionInfo,
    VerificationContext,
    VerificationOutcome,
    normalize_sentiment,
)
from pricecheck.verification.engine import VerificationEngine
from pricecheck.verification.horizon import calculate_horizon_date_range
from pricecheck.verification.judgment import AIJudge, Judgment

logger = logging.getLogger(__name__)


@dataclass
class CheckResult:
    prediction_id: Any
    window: HorizonWindow
    outcome: VerificationOutcome
    entry_price: float | None = None
    judgment: Judgment | None = None
    new_windows: list[HorizonWindow] = field(default_factory=list)
    updates: dict[str, Any] = field(default_factory=dict)


class PredictionChecker:
    """Batch driver over ``combined_predictions``."""

    def __init__(
        self,
        resolver: PriceResolver,
        engine: VerificationEngine | None = None,
        judge: AIJudge | None = None,
        *,
        batch_size: int = 200,
        concurrency: int = 4,
        lookback_days: int = 5,
        interval_seconds: int = 3600,
        dry_run: bool = False,
        today: Callable[[], date] = utc_today,
    ) -> None:
        self.resolver = resolver
        self.engine = engine or VerificationEngine(resolver, today=today)
        self.judge = judge
        self.batch_size = batch_size
        self.lookback_days = lookback_days
        self.interval_seconds = interval_seconds
        self.dry_run = dry_run
        self._today = today
        self._semaphore = asyncio.Semaphore(max(1, concurrency))

        self.cycles = 0
        self.checked = 0
        self.resolved = 0
        self.still_pending = 0
        self.errors = 0
        self.last_cycle_at: str | None = None

    # ── Window / context ──────────────────────────────────────────────

    def window_for(self, row: Any) -> tuple[HorizonWindow, bool]:
        """Stored window when the row has a valid one, else a calculated one.

        The flag is True when the window was calculated now and has not been
        stored yet.
        """
        start, end = row.horizon_start_date, row.horizon_end_date
        if start is not None and end is not None and start <= end:
            version = row.horizon_version or 1
            return HorizonWindow(start, end, corrected=version > 1, version=version), False
        window = calculate_horizon_date_range(
            row.post_date,
            row.horizon_value or "1 month",
            row.horizon_type or "custom",
        )
        return window, True

    async def build_context(
        self, row: Any, window: HorizonWindow, entry_price: float | None
    ) -> VerificationContext:
        today = self._today()
        history: dict[date, float] = {}
        if today >= window.start:
            history = await self.resolver.get_price_range(
                row.asset, window.start, min(window.end, today), row.asset_type
            )
        return VerificationContext.build(
            prediction=PredictionInfo(
                id=str(row.id),
                asset=row.asset,
                asset_type=row.asset_type or "stock",
                sentiment=row.sentiment or "neutral",
                prediction_text=row.prediction_text or "",
                horizon_value=row.horizon_value or "1 month",
                horizon_type=row.horizon_type or "custom",
                target_price=row.target_price,
                conditions=row.conditions,
                confidence=row.confidence or "medium",
            ),
            post=PostInfo(
                video_id=row.video_id or "",
                title=row.video_title or "",
                channel_name=row.channel_name or "",
                post_date=row.post_date,
                language=row.language or "en",
            ),
            window=window,
            history=history,
            entry_price=entry_price,
            transcript=row.raw_transcript,
        )

    # ── Single prediction ─────────────────────────────────────────────

    async def check_prediction(self, row: Any) -> CheckResult:
        sentiment = normalize_sentiment(row.sentiment)
        window, calculated = self.window_for(row)
        new_windows = [window] if calculated else []

        entry = row.asset_entry_price
        if entry is None or entry <= 0:
            entry = await self.resolver.get_price_with_fallback(
                row.asset, row.post_date, row.asset_type, max_lookback_days=self.lookback_days
            )
            if entry is not None:
                logger.info("[checker] %s: entry price %s resolved for %s", row.id, entry, row.post_date)

        judgment: Judgment | None = None
        if self.judge is not None:
            context = await self.build_context(row, window, entry)
            judgment = await self.judge.judge(context)
            window_after, outcome = await self.engine.verify_with_judgment(
                row.asset, entry, row.target_price, sentiment, window, judgment, row.asset_type
            )
            if window_after.version != window.version:
                new_windows.append(window_after)
            window = window_after
        else:
            outcome = await self.engine.verify_window(
                row.asset, entry, row.target_price, sentiment, window, row.asset_type
            )

        result = CheckResult(
            prediction_id=row.id,
            window=window,
            outcome=outcome,
            entry_price=entry,
            judgment=judgment,
            new_windows=new_windows,
        )
        result.updates = self._updates_for(row, result)
        return result

    def _updates_for(self, row: Any, result: CheckResult) -> dict[str, Any]:
        outcome = result.outcome
        verification: dict[str, Any] = {
            "checked_at": utc_now().isoformat(),
            "outcome": outcome.to_dict(),
            "window": result.window.to_dict(),
        }
        if result.judgment is not None:
            verification["judgment"] = result.judgment.to_dict()

        updates: dict[str, Any] = {
            "status": outcome.status,
            "met_date": outcome.met_date,
            "actual_price": outcome.actual_price,
            "horizon_start_date": result.window.start,
            "horizon_end_date": result.window.end,
            "horizon_version": result.window.version,
            "verification": verification,
        }
        if (row.asset_entry_price is None or row.asset_entry_price <= 0) and result.entry_price:
            updates["asset_entry_price"] = result.entry_price
        if outcome.resolved:
            updates["resolved_at"] = utc_now()
            updates["horizon_check_date"] = None
        else:
            updates["resolved_at"] = None
            updates["horizon_check_date"] = self._today() + timedelta(days=1)
        return updates

    # ── Persistence ───────────────────────────────────────────────────

    async def _load_due(self, limit: int) -> list[CombinedPrediction]:
        today = self._today()
        stmt = (
            select(CombinedPrediction)
            .where(
                CombinedPrediction.status == "pending",
                or_(
                    CombinedPrediction.horizon_check_date.is_(None),
                    CombinedPrediction.horizon_check_date <= today,
                ),
            )
            .order_by(
                CombinedPrediction.horizon_check_date.asc().nulls_first(),
                CombinedPrediction.post_date.asc(),
            )
            .limit(limit)
        )
        async with get_session() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def _persist(self, result: CheckResult) -> None:
        if self.dry_run:
            logger.info(
                "[checker] dry run: %s would become %s (check date %s)",
                result.prediction_id, result.outcome.status,
                result.updates.get("horizon_check_date"),
            )
            return
        async with get_session() as session:
            row = await session.get(CombinedPrediction, result.prediction_id)
            if row is None:
                logger.warning("[checker] prediction %s disappeared before update", result.prediction_id)
                return
            for key, value in result.updates.items():
                setattr(row, key, value)
            for window in result.new_windows:
                session.add(HorizonRevision(
                    prediction_id=result.prediction_id,
                    version=window.version,
                    horizon_start=window.start,
                    horizon_end=window.end,
                    corrected=window.corrected,
                    correction_reason=window.correction_reason,
                    source=window.source,
                ))

    # ── Batch ─────────────────────────────────────────────────────────

    async def _check_one(self, row: Any) -> CheckResult | None:
        async with self._semaphore:
            try:
                result = await self.check_prediction(row)
                await self._persist(result)
            except Exception:
                self.errors += 1
                logger.warning("[checker] error checking prediction %s", getattr(row, "id", "unknown"), exc_info=True)
                return None

        self.checked += 1
        if result.outcome.resolved:
            self.resolved += 1
            logger.info(
                "[checker] %s %s -> %s (met %s, price %s)",
                row.id, row.asset, result.outcome.status,
                result.outcome.met_date, result.outcome.actual_price,
            )
        else:
            self.still_pending += 1
        return result

    async def run_once(self, limit: int | None = None) -> dict[str, int]:
        """One pass over due predictions. Per-row failures never abort the batch."""
        t0 = time.monotonic()
        rows = await self._load_due(limit or self.batch_size)
        if not rows:
            logger.debug("[checker] no predictions due")
            return {"total": 0, "resolved": 0, "pending": 0, "errors": 0}

        logger.info("[checker] %d predictions due (dry_run=%s, judge=%s)", len(rows), self.dry_run, self.judge is not None)
        results = await asyncio.gather(*(self._check_one(row) for row in rows))

        done = [r for r in results if r is not None]
        stats = {
            "total": len(rows),
            "resolved": sum(1 for r in done if r.outcome.resolved),
            "pending": sum(1 for r in done if not r.outcome.resolved),
            "errors": len(rows) - len(done),
        }
        logger.info(
            "[checker] batch: %d checked, %d resolved, %d pending, %d errors (%.1fs)",
            stats["total"], stats["resolved"], stats["pending"], stats["errors"], time.monotonic() - t0,
        )
        return stats

    async def run(self) -> None:
        """Continuous loop: one pass every ``interval_seconds``."""
        logger.info("[checker] starting (interval=%ds, batch=%d)", self.interval_seconds, self.batch_size)
        while True:
            self.cycles += 1
            try:
                await self.run_once()
            except Exception:
                logger.error("[checker] fatal cycle error", exc_info=True)
            self.last_cycle_at = utc_now().isoformat()
            await asyncio.sleep(self.interval_seconds)

    def get_stats(self) -> dict[str, Any]:
        return {
            "cycles": self.cycles,
            "checked": self.checked,
            "resolved": self.resolved,
            "still_pending": self.still_pending,
            "errors": self.errors,
            "last_cycle_at": self.last_cycle_at,
            "dry_run": self.dry_run,
        }
