"""Shared utilities: logging, backoff, calendar and timestamp helpers."""

from __future__ import annotations

import calendar
import json
import logging
import random
import sys
from datetime import date, datetime, timedelta, timezone
from typing import Any

from pricecheck.errors import ValidationError


# ── Structured JSON logging ───────────────────────────────────────────

class _JSONFormatter(logging.Formatter):
    """Emit each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Configure root logger with structured JSON output to stderr."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JSONFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("yfinance").setLevel(logging.CRITICAL)


# ── Backoff ───────────────────────────────────────────────────────────

def backoff_delay(
    base: float,
    attempt: int,
    *,
    factor: float = 2.0,
    jitter: float = 0.25,
    cap: float | None = None,
) -> float:
    """Exponential delay ``base * factor**attempt`` with +/- ``jitter`` fraction."""
    delay = base * (factor ** attempt)
    if cap is not None:
        delay = min(delay, cap)
    if jitter > 0:
        delay *= 1.0 + random.uniform(-jitter, jitter)
    return max(0.0, delay)


# ── Timestamp helpers ─────────────────────────────────────────────────

def utc_now() -> datetime:
    """Return the current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def utc_today() -> date:
    return utc_now().date()


def parse_iso(value: str) -> datetime:
    """Parse an ISO-8601 string into a timezone-aware datetime."""
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def as_date(value: date | datetime | str) -> date:
    """Coerce a date, datetime or ISO string into a calendar date.

    Raises ``ValidationError`` for anything that cannot be parsed.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            pass
        try:
            return parse_iso(text).date()
        except ValueError as exc:
            raise ValidationError(f"invalid date: {value!r}") from exc
    raise ValidationError(f"invalid date: {value!r}")


# ── Calendar helpers ──────────────────────────────────────────────────

def is_weekend(d: date) -> bool:
    return d.weekday() >= 5


def last_trading_day(d: date) -> date:
    """Roll a Saturday/Sunday back to the preceding Friday."""
    if d.weekday() == 5:
        return d - timedelta(days=1)
    if d.weekday() == 6:
        return d - timedelta(days=2)
    return d


def add_months(d: date, months: int) -> date:
    """Add calendar months, clamping the day to the target month's length."""
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def month_end(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def date_range(start: date, end: date) -> list[date]:
    """Inclusive list of calendar days from ``start`` to ``end``."""
    if end < start:
        return []
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]
