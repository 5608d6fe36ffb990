"""Turn a free-text prediction horizon into a calendar window.

Horizons arrive in several languages ("by end of year", "3 ay", "Q2 2025",
"ocak, şubat aylarında"). Rules are tried in a fixed order and the first
one that matches wins. Relative forms always start on the post date.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta

from pricecheck.errors import ValidationError
from pricecheck.utils import add_months, as_date, month_end
from pricecheck.verification.context import HorizonWindow

logger = logging.getLogger(__name__)

# Month name -> month number, EN/TR/ES/DE/FR/PT/IT. Names shared between
# languages appear once.
MONTH_NAMES: dict[str, int] = {
    # English
    "january": 1, "february": 2, "march": 3, "april": 4, "may": 5, "june": 6,
    "july": 7, "august": 8, "september": 9, "october": 10, "november": 11,
    "december": 12,
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "jun": 6, "jul": 7, "aug": 8,
    "sep": 9, "sept": 9, "oct": 10, "nov": 11, "dec": 12,
    # Turkish
    "ocak": 1, "subat": 2, "şubat": 2, "mart": 3, "nisan": 4, "mayis": 5,
    "mayıs": 5, "haziran": 6, "temmuz": 7, "agustos": 8, "ağustos": 8,
    "eylul": 9, "eylül": 9, "ekim": 10, "kasim": 11, "kasım": 11,
    "aralik": 12, "aralık": 12,
    # Spanish
    "enero": 1, "febrero": 2, "abril": 4, "mayo": 5, "junio": 6, "julio": 7,
    "septiembre": 9, "octubre": 10, "noviembre": 11, "diciembre": 12,
    # German
    "januar": 1, "februar": 2, "marz": 3, "märz": 3, "mai": 5, "juni": 6,
    "juli": 7, "oktober": 10, "dezember": 12,
    # French
    "janvier": 1, "février": 2, "fevrier": 2, "mars": 3, "avril": 4,
    "juillet": 7, "août": 8, "aout": 8, "octobre": 10, "décembre": 12,
    "decembre": 12,
    # Portuguese
    "janeiro": 1, "fevereiro": 2, "março": 3, "marco": 3, "maio": 5,
    "junho": 6, "julho": 7, "setembro": 9, "outubro": 10, "novembro": 11,
    "dezembro": 12,
    # Italian
    "gennaio": 1, "febbraio": 2, "aprile": 4, "maggio": 5, "giugno": 6,
    "luglio": 7, "settembre": 9, "ottobre": 10,
    # Shared ES/PT/IT/FR
    "agosto": 8, "marzo": 3, "novembre": 11,
}

# Short names only count as whole words ("mar" must not match "market");
# longer names and the short Turkish ones may carry a suffix ("haziranda", "ekimde").
_SHORT_NAME_LEN = 4
_SUFFIXED_SHORT_NAMES = frozenset({"ocak", "mart", "ekim"})
_MONTH_RE = re.compile(
    "|".join(
        rf"\b{re.escape(name)}\b"
        if len(name) <= _SHORT_NAME_LEN and name not in _SUFFIXED_SHORT_NAMES
        else rf"\b{re.escape(name)}"
        for name in sorted(MONTH_NAMES, key=len, reverse=True)
    )
)

_BARE_YEAR_RE = re.compile(r"^(20\d{2})$")
_YEAR_RE = re.compile(r"20\d{2}")
_QUARTER_RE = re.compile(r"\bq([1-4])\b")
_NUMBER_RE = re.compile(r"(\d+)")
_MONTH_WORD_RE = re.compile(r"month|\bay(lar|lık|lik)?\b")

_NEXT_YEAR_PHRASES = (
    "next year",
    "coming year",
    "gelecek yil",
    "gelecek yıl",
    "önümüzdeki yil",
    "önümüzdeki yıl",
)
_END_OF_YEAR_PHRASES = ("end of year", "eoy", "yil sonu", "yıl sonu")


def _first_number(value: str, default: int = 1) -> int:
    match = _NUMBER_RE.search(value)
    return int(match.group(1)) if match else default


def _mentioned_months(value: str) -> list[int]:
    return sorted({MONTH_NAMES[m.group(0)] for m in _MONTH_RE.finditer(value)})


def calculate_horizon_date_range(
    post_date: date | datetime | str,
    horizon_value: str | None,
    horizon_type: str | None = "custom",
) -> HorizonWindow:
    """Resolve ``horizon_value`` relative to ``post_date``.

    "end of year" posted 2025-03-15 gives 2025-12-01..2025-12-31;
    "3 months" posted 2025-01-10 gives 2025-01-10..2025-04-10.
    """
    posted = as_date(post_date)
    value = (horizon_value or "").strip().lower()
    kind = (horizon_type or "custom").strip().lower()

    # 1. Exact date
    if kind == "exact":
        try:
            exact = as_date(value)
        except ValidationError:
            logger.debug("[horizon] unparseable exact date %r, trying other rules", value)
        else:
            return HorizonWindow(exact, exact)

    # 2. Bare year: the whole calendar year
    match = _BARE_YEAR_RE.match(value)
    if match:
        year = int(match.group(1))
        return HorizonWindow(date(year, 1, 1), date(year, 12, 31))

    # 3. Next year
    if any(p in value for p in _NEXT_YEAR_PHRASES):
        year = posted.year + 1
        return HorizonWindow(date(year, 1, 1), date(year, 12, 31))

    # 4. End of year: December of the post year
    if kind == "end_of_year" or any(p in value for p in _END_OF_YEAR_PHRASES):
        return HorizonWindow(date(posted.year, 12, 1), date(posted.year, 12, 31))

    # 5. Quarter
    if kind == "quarter" or "quarter" in value or "çeyrek" in value or _QUARTER_RE.search(value):
        q = _QUARTER_RE.search(value)
        if q:
            quarter = int(q.group(1))
            year_match = _YEAR_RE.search(value)
            year = int(year_match.group(0)) if year_match else posted.year
            first_month = (quarter - 1) * 3 + 1
            return HorizonWindow(date(year, first_month, 1), month_end(year, first_month + 2))
        return HorizonWindow(posted, add_months(posted, 3))

    # 6. Named month(s): first mentioned month's 1st to last mentioned month's end
    months = _mentioned_months(value)
    if months:
        first, last = months[0], months[-1]
        year_match = _YEAR_RE.search(value)
        if year_match:
            year = int(year_match.group(0))
        else:
            year = posted.year + 1 if first < posted.month else posted.year
        return HorizonWindow(date(year, first, 1), month_end(year, last))

    # 7. Relative months
    if kind == "month" or _MONTH_WORD_RE.search(value):
        return HorizonWindow(posted, add_months(posted, _first_number(value)))

    # 8. Relative years, weeks, days
    number = _first_number(value)
    if "year" in value or "yil" in value or "yıl" in value:
        return HorizonWindow(posted, add_months(posted, 12 * number))
    if "week" in value or "hafta" in value:
        return HorizonWindow(posted, posted + timedelta(weeks=number))
    if "day" in value or "gun" in value or "gün" in value:
        return HorizonWindow(posted, posted + timedelta(days=number))

    # 9. Vague or unknown
    logger.debug("[horizon] no rule matched %r, using one month", value)
    return HorizonWindow(posted, add_months(posted, 1))
