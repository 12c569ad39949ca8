"""End-to-end statement import.

Data flow::

    delimited text ------------------------------> parse_delimited_text --+
    document bytes -> TextExtractor -> text -+-> DelegateExtractor ----+   |
                                             +-> locate_transactions --+---+
                                                                           |
        normalize -> CategorizationEngine.categorize -> ImportResult <-----+
        to_storage_entries -> group_by_month -> external month store

Delegate problems never escape :func:`parse_document_text`; they are turned
into diagnostics and the pattern-matching locator runs instead.
"""

from __future__ import annotations

import os
from collections.abc import Iterable
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from pathlib import Path
from typing import Literal

from .categorize import CategorizationEngine
from .config import Settings
from .delimited import parse_delimited_file, parse_delimited_text
from .documents import PdfPlumberTextExtractor, PlainTextExtractor, TextExtractor
from .errors import DelegateError, DelegateRateLimited, TextExtractionError, ValidationError
from .extraction import DelegateExtractor
from .locator import locate_transactions
from .logging_setup import get_logger
from .models import CategorizedTransaction, ImportResult, ParseResult, StorageEntry
from .normalizers import Today, normalize

NO_TEXT = "Could not extract text from document. The document may be image-based or corrupted."
AI_NO_TRANSACTIONS = (
    "AI extraction completed but found no transactions. "
    "The statement format may not be recognized."
)
AI_RATE_LIMITED = "AI rate limit reached. Using pattern matching instead."
AI_NOT_CONFIGURED = (
    "Generative delegate API key not configured. AI extraction unavailable. "
    "Using pattern matching..."
)
NO_DOCUMENT_TRANSACTIONS = (
    "No transactions found in document. The statement format may not be supported. "
    "Please ensure your bank statement contains transaction data with dates and amounts."
)

MAX_EXPENSE_AMOUNT = Decimal("10000000")
_CENT = Decimal("0.01")

type StatementKind = Literal["delimited", "document", "text"]

_logger = get_logger("statement_ingest.pipeline")


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_document_text(
    text: str,
    *,
    extractor: DelegateExtractor | None = None,
    use_delegate: bool = True,
    today: Today = date.today,
) -> ParseResult:
    """Recover transactions from extracted document text.

    The delegate is tried first when enabled and configured; a non-empty
    result is returned as-is (with any later-chunk diagnostics). Otherwise
    the pattern-matching locator runs and every reason for falling back is
    recorded in ``errors``.
    """

    result = ParseResult()
    if not text or not text.strip():
        result.errors.append(NO_TEXT)
        return result

    if use_delegate:
        if extractor is None:
            extractor = DelegateExtractor(today=today)
        if extractor.configured:
            try:
                delegated = extractor.extract(text)
            except DelegateRateLimited:
                _logger.warning("parse_document:delegate_rate_limited; using pattern matching")
                result.errors.append(AI_RATE_LIMITED)
            except DelegateError as e:
                _logger.warning(
                    "parse_document:delegate_failed kind=%s; using pattern matching", e.kind
                )
                result.errors.append(f"AI extraction failed: {e}. Trying pattern matching...")
            else:
                if delegated.transactions:
                    return delegated
                result.errors.extend(delegated.errors)
                result.errors.append(AI_NO_TRANSACTIONS)
        else:
            result.errors.append(AI_NOT_CONFIGURED)

    result.transactions = locate_transactions(text, today=today)
    if not result.transactions:
        result.errors.append(NO_DOCUMENT_TRANSACTIONS)
    _logger.info(
        "parse_document:located transactions=%d errors=%d",
        len(result.transactions),
        len(result.errors),
    )
    return result


def parse_document(
    data: bytes,
    text_extractor: TextExtractor | None = None,
    *,
    extractor: DelegateExtractor | None = None,
    use_delegate: bool = True,
    today: Today = date.today,
) -> ParseResult:
    """Extract text from document bytes (PDF by default) and parse it."""

    if text_extractor is None:
        text_extractor = PdfPlumberTextExtractor()
    try:
        text = text_extractor.extract_text(data)
    except TextExtractionError as e:
        _logger.warning("parse_document:text_extraction_failed error=%s", e)
        return ParseResult(errors=[f"Failed to parse document: {e}"])
    return parse_document_text(text, extractor=extractor, use_delegate=use_delegate, today=today)


def _as_text(content: str | bytes) -> str:
    if isinstance(content, bytes):
        return PlainTextExtractor().extract_text(content)
    return content


def parse_statement(
    content: str | bytes,
    *,
    kind: StatementKind,
    extractor: DelegateExtractor | None = None,
    text_extractor: TextExtractor | None = None,
    delimiter: str = ",",
    use_delegate: bool = True,
    today: Today = date.today,
) -> ParseResult:
    """Dispatch ``content`` to the parser for ``kind``."""

    if kind == "document":
        data = content.encode("utf-8") if isinstance(content, str) else content
        return parse_document(
            data, text_extractor, extractor=extractor, use_delegate=use_delegate, today=today
        )
    try:
        text = _as_text(content)
    except TextExtractionError as e:
        return ParseResult(errors=[f"Failed to read file: {e}"])
    if kind == "delimited":
        return parse_delimited_text(text, delimiter=delimiter, today=today)
    if kind == "text":
        return parse_document_text(
            text, extractor=extractor, use_delegate=use_delegate, today=today
        )
    raise ValueError(f"unknown statement kind: {kind!r}")


def kind_for_path(path: str | os.PathLike[str]) -> StatementKind:
    suffix = Path(path).suffix.lower()
    if suffix in (".csv", ".tsv"):
        return "delimited"
    if suffix == ".pdf":
        return "document"
    return "text"


def delimiter_for_path(path: str | os.PathLike[str]) -> str:
    return "\t" if Path(path).suffix.lower() == ".tsv" else ","


def parse_file(
    path: str | os.PathLike[str],
    *,
    extractor: DelegateExtractor | None = None,
    text_extractor: TextExtractor | None = None,
    use_delegate: bool = True,
    today: Today = date.today,
) -> ParseResult:
    """Parse the statement at ``path``; the kind is chosen by file suffix."""

    kind = kind_for_path(path)
    if kind == "delimited":
        return parse_delimited_file(path, delimiter=delimiter_for_path(path), today=today)
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        return ParseResult(errors=[f"Failed to read file: {e}"])
    return parse_statement(
        data,
        kind=kind,
        extractor=extractor,
        text_extractor=text_extractor,
        use_delegate=use_delegate,
        today=today,
    )


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


def finish_import(
    parsed: ParseResult,
    *,
    engine: CategorizationEngine | None = None,
    use_delegate: bool = True,
    today: Today = date.today,
) -> ImportResult:
    """Normalize and categorize parsed transactions."""

    if not parsed.transactions:
        return ImportResult(errors=list(parsed.errors))
    normalized = normalize(parsed.transactions, today=today)
    if engine is None:
        engine = CategorizationEngine.from_settings(
            Settings.from_env(), use_delegate=use_delegate, today=today
        )
    categorized = engine.categorize(normalized)
    _logger.info(
        "import:done parsed=%d normalized=%d errors=%d",
        len(parsed.transactions),
        len(categorized),
        len(parsed.errors),
    )
    return ImportResult(transactions=categorized, errors=list(parsed.errors))


def import_statement(
    content: str | bytes,
    *,
    kind: StatementKind,
    engine: CategorizationEngine | None = None,
    extractor: DelegateExtractor | None = None,
    text_extractor: TextExtractor | None = None,
    use_delegate: bool = True,
    today: Today = date.today,
) -> ImportResult:
    """Parse, normalize, deduplicate and categorize one statement."""

    parsed = parse_statement(
        content,
        kind=kind,
        extractor=extractor,
        text_extractor=text_extractor,
        use_delegate=use_delegate,
        today=today,
    )
    return finish_import(parsed, engine=engine, use_delegate=use_delegate, today=today)


def import_file(
    path: str | os.PathLike[str],
    *,
    engine: CategorizationEngine | None = None,
    extractor: DelegateExtractor | None = None,
    text_extractor: TextExtractor | None = None,
    use_delegate: bool = True,
    today: Today = date.today,
) -> ImportResult:
    parsed = parse_file(
        path,
        extractor=extractor,
        text_extractor=text_extractor,
        use_delegate=use_delegate,
        today=today,
    )
    return finish_import(parsed, engine=engine, use_delegate=use_delegate, today=today)


# ---------------------------------------------------------------------------
# Storage handoff
# ---------------------------------------------------------------------------


def validate_expense_amount(amount: str | int | float | Decimal) -> Decimal:
    """Return ``amount`` rounded to cents, or raise :class:`ValidationError`."""

    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount).strip())
    except InvalidOperation as e:
        raise ValidationError("Please enter a valid number") from e
    if not value.is_finite():
        raise ValidationError("Please enter a valid number")
    if value < 0:
        raise ValidationError("Amount cannot be negative")
    if value > MAX_EXPENSE_AMOUNT:
        raise ValidationError("Amount is too large")
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def to_storage_entries(
    items: Iterable[CategorizedTransaction], *, selected_only: bool = True
) -> list[StorageEntry]:
    """Map categorized transactions to store entries; the description becomes the note."""

    return [
        StorageEntry(
            date=item.date,
            amount=validate_expense_amount(item.amount),
            category=item.category,
            note=item.description or None,
        )
        for item in items
        if item.selected or not selected_only
    ]


def group_by_month(entries: Iterable[StorageEntry]) -> dict[str, list[StorageEntry]]:
    """Group entries by ``YYYY-MM`` month key, preserving order within each month."""

    out: dict[str, list[StorageEntry]] = {}
    for entry in entries:
        out.setdefault(entry.month_key, []).append(entry)
    return out


__all__ = [
    "AI_NOT_CONFIGURED",
    "AI_NO_TRANSACTIONS",
    "AI_RATE_LIMITED",
    "NO_DOCUMENT_TRANSACTIONS",
    "NO_TEXT",
    "delimiter_for_path",
    "finish_import",
    "group_by_month",
    "import_file",
    "import_statement",
    "kind_for_path",
    "parse_document",
    "parse_document_text",
    "parse_file",
    "parse_statement",
    "to_storage_entries",
    "validate_expense_amount",
]
