"""Pattern-matching transaction locator for unstructured statement text.

This is the fallback used when no extraction delegate is configured, when it
is rate limited or fails, and when it returns nothing. It favours recall:

- every non-trivial line is a candidate; lines with runs of 3+ spaces
  (columnar layouts) are also split into column fragments, and both the line
  and its fragments are kept;
- dates are searched on the candidate line; amounts on the line itself and,
  failing that, on the line joined with its previous and next candidates so
  that wrapped rows still pair up;
- amounts outside ``(0.01, 1_000_000)`` are ignored so account numbers, page
  numbers and running balances are not mistaken for transactions;
- at most one transaction is emitted per (date pattern, line), and a final
  pass removes duplicates, treating descriptions that share a 10-character
  prefix as the same.
"""

from __future__ import annotations

import re
from datetime import date
from decimal import Decimal, InvalidOperation

from .duplicates import dedupe
from .logging_setup import get_logger
from .models import RawTransaction
from .normalizers import Today, parse_date

MIN_AMOUNT = Decimal("0.01")
MAX_AMOUNT = Decimal("1000000")
DEFAULT_DESCRIPTION = "Transaction"
_MAX_DESCRIPTION_LEN = 150
_MIN_DESCRIPTION_LEN = 3

_LINE_SPLIT_RE = re.compile(r"\r\n|\r|\n")
_COLUMN_GAP_RE = re.compile(r"\s{3,}")

# Day-first (DD/MM/YYYY, D-M-YY, DD.MM.YYYY) and year-first (YYYY/MM/DD).
DATE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"(?<!\d)(\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4})(?!\d)"),
    re.compile(r"(?<!\d)(\d{4}[/\-.]\d{1,2}[/\-.]\d{1,2})(?!\d)"),
)

# Currency-prefixed first; thousands-separated and bare decimals rank by position.
AMOUNT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(
        r"(?<![A-Za-z])[R$€£]\s?-?(\d{1,3}(?:[ ,]\d{3})+(?:\.\d{2})?|\d+(?:\.\d{2})?)(?![\d])"
    ),
    re.compile(r"(?<![\d.,])-?(\d{1,3}(?:,\d{3})+(?:\.\d{2})?)(?![\d])"),
    re.compile(r"(?<![\d.,])-?(\d+\.\d{2})(?![\d])"),
)

_AMOUNT_TOKEN_RE = re.compile(r"[-+]?[R$€£]?[-+]?\d[\d,]*(?:\.\d+)?")
_CODE_TOKEN_RE = re.compile(r"[A-Z]{2,4}\d+")

_logger = get_logger("statement_ingest.locator")


def candidate_lines(text: str) -> list[str]:
    """Return the trimmed candidate lines for ``text``.

    Lines of 3 characters or fewer are dropped. A line containing a run of
    3+ spaces is kept and followed by its column fragments.
    """

    out: list[str] = []
    for raw in _LINE_SPLIT_RE.split(text):
        line = raw.strip()
        if len(line) <= 3:
            continue
        out.append(line)
        if _COLUMN_GAP_RE.search(line):
            out.extend(
                part.strip() for part in _COLUMN_GAP_RE.split(line) if len(part.strip()) > 3
            )
    return out


def _contains_date(token: str) -> bool:
    return any(p.search(token) for p in DATE_PATTERNS)


def _usable_token(token: str) -> bool:
    if len(token) <= 2:
        return False
    if _contains_date(token):
        return False
    if _AMOUNT_TOKEN_RE.fullmatch(token):
        return False
    if token.isdigit():
        return False
    return not _CODE_TOKEN_RE.fullmatch(token)


def _description_from(line: str) -> str:
    parts = [t for t in line.split() if _usable_token(t)]
    return " ".join(parts).strip()[:_MAX_DESCRIPTION_LEN]


def build_description(line: str, next_line: str) -> str:
    description = _description_from(line)
    if len(description) < _MIN_DESCRIPTION_LEN:
        description = _description_from(next_line)
    if len(description) < _MIN_DESCRIPTION_LEN:
        description = DEFAULT_DESCRIPTION
    return description


def _mask_dates(text: str) -> str:
    for pattern in DATE_PATTERNS:
        text = pattern.sub(" ", text)
    return text


def find_amount(text: str) -> Decimal | None:
    """Return the first plausible amount in ``text`` (dates are ignored).

    A currency-prefixed amount wins; otherwise the left-most plausible number
    does, so a trailing running balance is not taken for the amount.
    """

    masked = _mask_dates(text)
    currency, *plain = AMOUNT_PATTERNS
    for patterns in ((currency,), tuple(plain)):
        matches = sorted(
            (m for pattern in patterns for m in pattern.finditer(masked)),
            key=lambda m: m.start(1),
        )
        for m in matches:
            digits = m.group(1).replace(",", "").replace(" ", "")
            try:
                amount = Decimal(digits)
            except InvalidOperation:
                continue
            if MIN_AMOUNT < amount < MAX_AMOUNT:
                return amount
    return None


def locate_transactions(text: str, *, today: Today = date.today) -> list[RawTransaction]:
    """Locate transaction-like rows in unstructured statement text."""

    lines = candidate_lines(text or "")
    found: list[RawTransaction] = []

    for i, line in enumerate(lines):
        prev_line = lines[i - 1] if i > 0 else ""
        next_line = lines[i + 1] if i < len(lines) - 1 else ""
        combined = f"{prev_line} {line} {next_line}"

        for pattern in DATE_PATTERNS:
            for date_match in pattern.finditer(line):
                # Prefer an amount on the line itself over one from a neighbour.
                amount = find_amount(line)
                if amount is None:
                    amount = find_amount(combined)
                if amount is None:
                    continue
                found.append(
                    RawTransaction(
                        date=parse_date(date_match.group(1), today=today),
                        description=build_description(line, next_line),
                        amount=amount,
                    )
                )
                # One transaction per (date pattern, line).
                break

    unique = dedupe(found, prefix_match=True)
    _logger.info(
        "locate:done lines=%d candidates=%d unique=%d", len(lines), len(found), len(unique)
    )
    return unique


__all__ = [
    "AMOUNT_PATTERNS",
    "DATE_PATTERNS",
    "DEFAULT_DESCRIPTION",
    "build_description",
    "candidate_lines",
    "find_amount",
    "locate_transactions",
]
