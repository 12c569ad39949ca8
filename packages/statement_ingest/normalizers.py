"""Amount, date and description normalization.

Parsing here never raises on bad input: amounts degrade to ``0`` (callers
drop zero-amount rows as noise) and dates degrade to today's date. Formats
handled:

- amounts: ``"R1,234.56"``, ``"-R500.00"``, ``"$ 12.00"``, ``"(45.10)"``,
  ``"1 234.56"``; the sign is always discarded.
- dates: ``YYYY-MM-DD`` as-is; day-first ``DD/MM/YYYY`` and year-first
  ``YYYY/MM/DD`` with ``/``, ``-`` or ``.`` separators (two-digit years are
  read as 20YY); anything else through ``dateutil`` (day-first), else today.
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import date
from decimal import Decimal, InvalidOperation

from dateutil import parser as date_parser

from .duplicates import dedupe
from .models import RawTransaction

_ZERO = Decimal("0")

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DAY_FIRST_RE = re.compile(r"^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{2,4})$")
_YEAR_FIRST_RE = re.compile(r"^(\d{4})[/\-.](\d{1,2})[/\-.](\d{1,2})$")

_CURRENCY_CODE_RE = re.compile(r"\b(?:ZAR|USD|EUR|GBP)\b", re.IGNORECASE)
_STRIP_RE = re.compile(r"[R$€£¥\s,()]")
_NUMBER_PREFIX_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)")

_PUNCT_RE = re.compile(r"[^\w\s]")

Today = Callable[[], date]


# ---------------------------------------------------------------------------
# Amounts
# ---------------------------------------------------------------------------


def parse_amount(raw: str | float | int | Decimal | None) -> Decimal:
    """Return the positive magnitude of ``raw`` or ``0`` when unparseable.

    Currency symbols and codes, whitespace, thousands separators and
    surrounding parentheses are removed. Like a lenient float parse, trailing
    garbage after the leading number is ignored (``"12.50 DR"`` -> ``12.50``).
    """

    if raw is None or isinstance(raw, bool):
        return _ZERO
    if isinstance(raw, Decimal):
        return abs(raw) if raw.is_finite() else _ZERO
    if isinstance(raw, (int, float)):
        try:
            d = Decimal(str(raw))
        except InvalidOperation:
            return _ZERO
        return abs(d) if d.is_finite() else _ZERO
    if not isinstance(raw, str):
        return _ZERO

    cleaned = _STRIP_RE.sub("", _CURRENCY_CODE_RE.sub("", raw))
    m = _NUMBER_PREFIX_RE.match(cleaned)
    if not m:
        return _ZERO
    try:
        return abs(Decimal(m.group(0)))
    except InvalidOperation:
        return _ZERO


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------


def _iso_or_none(year: str, month: str, day: str) -> str | None:
    y = int(year) + 2000 if len(year) == 2 else int(year)
    try:
        return date(y, int(month), int(day)).isoformat()
    except ValueError:
        return None


def parse_date(raw: str | None, *, today: Today = date.today) -> str:
    """Return ``raw`` as ``YYYY-MM-DD``; falls back to ``today()``."""

    if not raw or not isinstance(raw, str):
        return today().isoformat()
    s = raw.strip()
    if not s:
        return today().isoformat()

    if _ISO_DATE_RE.match(s):
        iso = _iso_or_none(s[0:4], s[5:7], s[8:10])
        if iso is not None:
            return iso

    m = _DAY_FIRST_RE.match(s)
    if m:
        day, month, year = m.groups()
        if len(year) != 3:
            iso = _iso_or_none(year, month, day)
            if iso is not None:
                return iso

    m = _YEAR_FIRST_RE.match(s)
    if m:
        year, month, day = m.groups()
        iso = _iso_or_none(year, month, day)
        if iso is not None:
            return iso

    try:
        return date_parser.parse(s, dayfirst=True).date().isoformat()
    except (ValueError, OverflowError):
        return today().isoformat()


# ---------------------------------------------------------------------------
# Descriptions
# ---------------------------------------------------------------------------


def normalize_description(description: str) -> str:
    """Return the cache/rule key for ``description``.

    NFKC-normalized, case-folded, punctuation stripped and whitespace
    collapsed to single spaces.
    """

    s = unicodedata.normalize("NFKC", description or "").casefold()
    s = _PUNCT_RE.sub("", s)
    return " ".join(s.split())


# ---------------------------------------------------------------------------
# Transaction lists
# ---------------------------------------------------------------------------


def normalize(raw: Iterable[RawTransaction], *, today: Today = date.today) -> list[RawTransaction]:
    """Canonicalize dates and amounts, drop zero amounts and duplicates.

    Pure: inputs are not mutated. First occurrences win; duplicates compare
    exact descriptions (case-sensitive), equal dates and amounts within 0.01.
    ``normalize(normalize(x)) == normalize(x)``.
    """

    canonical: list[RawTransaction] = []
    for tx in raw:
        amount = parse_amount(tx.amount)
        if amount == _ZERO:
            continue
        canonical.append(
            replace(
                tx,
                date=parse_date(tx.date, today=today),
                amount=amount,
                description=(tx.description or "").strip(),
            )
        )
    return dedupe(canonical)


__all__ = [
    "normalize",
    "normalize_description",
    "parse_amount",
    "parse_date",
]
