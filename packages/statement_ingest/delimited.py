"""Delimited-text (CSV and TSV) statement extraction.

Bank exports disagree on column names, so columns are resolved by role
rather than by exact header: each role (date, description, amount,
reference) has an ordered alias list and the first header containing an
alias (case-insensitive) wins. Aliases are tried in list order and, for each
alias, headers in column order.

Failure policy:

- empty content, no data rows or unresolvable date/description/amount columns
  are structural: ``transactions`` is empty and one error per problem is
  returned;
- a row that cannot be parsed adds ``"Error parsing row N: ..."`` and is
  skipped; the rest of the file is still read;
- rows with neither description nor amount, and rows whose amount is zero, are
  skipped silently.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import date
from os import PathLike

from .errors import RowLevelError, StructuralInputError, missing_column, row_error
from .logging_setup import get_logger
from .models import ParseResult, RawTransaction
from .normalizers import Today, parse_amount, parse_date

DATE_ALIASES: tuple[str, ...] = ("date", "transaction date", "posting date", "value date")
DESCRIPTION_ALIASES: tuple[str, ...] = (
    "description",
    "details",
    "narration",
    "reference",
    "transaction details",
    "particulars",
    "memo",
)
AMOUNT_ALIASES: tuple[str, ...] = ("amount", "debit", "credit", "value", "transaction amount")
REFERENCE_ALIASES: tuple[str, ...] = (
    "reference",
    "ref",
    "transaction id",
    "id",
    "transaction reference",
)

EMPTY_FILE = "CSV file is empty"
NO_DATA_ROWS = "CSV file must have at least a header row and one data row"
NO_TRANSACTIONS = "No valid transactions found in CSV file"

_logger = get_logger("statement_ingest.delimited")


@dataclass(frozen=True, slots=True)
class ColumnMap:
    date: int
    description: int
    amount: int
    reference: int | None = None


def split_delimited_row(line: str, *, delimiter: str = ",") -> list[str]:
    """Split one line into trimmed fields.

    A double quote toggles the in-quotes state and is not kept; a delimiter
    inside quotes is literal. A line that ends while still inside quotes is
    rejected with :class:`RowLevelError`.
    """

    values: list[str] = []
    current: list[str] = []
    in_quotes = False
    for ch in line:
        if ch == '"':
            in_quotes = not in_quotes
        elif ch == delimiter and not in_quotes:
            values.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
    if in_quotes:
        raise RowLevelError("unterminated quoted field")
    values.append("".join(current).strip())
    return values


def _find_column(headers: list[str], aliases: tuple[str, ...]) -> int | None:
    normalized = [h.lower().strip() for h in headers]
    for alias in aliases:
        name = alias.lower().strip()
        for idx, header in enumerate(normalized):
            if not header:
                continue
            if name in header or header in name:
                return idx
    return None


def resolve_columns(headers: list[str]) -> ColumnMap:
    """Map header cells to column roles.

    Raises :class:`StructuralInputError` listing every missing required role,
    or when date, description and amount all land on the same column.
    """

    date_idx = _find_column(headers, DATE_ALIASES)
    desc_idx = _find_column(headers, DESCRIPTION_ALIASES)
    amount_idx = _find_column(headers, AMOUNT_ALIASES)
    ref_idx = _find_column(headers, REFERENCE_ALIASES)

    problems: list[str] = []
    if date_idx is None:
        problems.append(missing_column("Date", DATE_ALIASES))
    if desc_idx is None:
        problems.append(missing_column("Description", DESCRIPTION_ALIASES))
    if amount_idx is None:
        problems.append(missing_column("Amount", AMOUNT_ALIASES))
    if problems:
        raise StructuralInputError("\n".join(problems))
    assert date_idx is not None and desc_idx is not None and amount_idx is not None
    if date_idx == desc_idx == amount_idx:
        # One header cell matched every role: usually the wrong delimiter.
        raise StructuralInputError(
            f"Date, Description and Amount all resolve to column {headers[date_idx]!r}"
        )

    return ColumnMap(date=date_idx, description=desc_idx, amount=amount_idx, reference=ref_idx)


def _cell(values: list[str], idx: int | None) -> str:
    if idx is None or idx >= len(values):
        return ""
    return values[idx]


def _parse_row(
    line: str, columns: ColumnMap, *, delimiter: str, today: Today
) -> RawTransaction | None:
    values = split_delimited_row(line, delimiter=delimiter)
    description = _cell(values, columns.description).strip()
    amount_str = _cell(values, columns.amount)
    if not description and not amount_str:
        return None

    amount = parse_amount(amount_str)
    if amount == 0:
        return None

    reference = _cell(values, columns.reference).strip() or None
    return RawTransaction(
        date=parse_date(_cell(values, columns.date), today=today),
        description=description,
        amount=amount,
        reference=reference,
    )


def parse_delimited_text(
    content: str, *, delimiter: str = ",", today: Today = date.today
) -> ParseResult:
    """Parse delimited statement text (comma-separated by default) into raw transactions."""

    result = ParseResult()
    if not content or not content.strip():
        result.errors.append(EMPTY_FILE)
        return result

    lines = [ln for ln in content.lstrip("\ufeff").splitlines() if ln.strip()]
    if len(lines) < 2:
        result.errors.append(NO_DATA_ROWS)
        return result

    try:
        header_cells = split_delimited_row(lines[0], delimiter=delimiter)
        headers = [h.strip().strip('"').strip() for h in header_cells]
        columns = resolve_columns(headers)
    except (StructuralInputError, RowLevelError) as e:
        result.errors.extend(str(e).split("\n"))
        _logger.info("delimited:structural_error problems=%d", len(result.errors))
        return result

    for i, line in enumerate(lines[1:], start=1):
        try:
            tx = _parse_row(line, columns, delimiter=delimiter, today=today)
        except Exception as e:  # noqa: BLE001 - one bad row never aborts the file
            result.errors.append(row_error(i + 1, e))
            continue
        if tx is not None:
            result.transactions.append(tx)

    if not result.transactions and not result.errors:
        result.errors.append(NO_TRANSACTIONS)

    _logger.info(
        "delimited:done rows=%d transactions=%d errors=%d",
        len(lines) - 1,
        len(result.transactions),
        len(result.errors),
    )
    return result


def parse_delimited_file(
    path: str | PathLike[str], *, delimiter: str = ",", today: Today = date.today
) -> ParseResult:
    """Read ``path`` as UTF-8 text and parse it; read failures become errors."""

    try:
        with open(path, encoding="utf-8-sig", newline="") as f:
            content = f.read()
    except (OSError, UnicodeDecodeError) as e:
        _logger.warning(
            "delimited:read_failed path=%s error=%s", os.fspath(path), e.__class__.__name__
        )
        return ParseResult(errors=[f"Failed to read file: {e}"])
    return parse_delimited_text(content, delimiter=delimiter, today=today)


__all__ = [
    "AMOUNT_ALIASES",
    "DATE_ALIASES",
    "DESCRIPTION_ALIASES",
    "REFERENCE_ALIASES",
    "ColumnMap",
    "parse_delimited_file",
    "parse_delimited_text",
    "resolve_columns",
    "split_delimited_row",
]
