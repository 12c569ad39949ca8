from __future__ import annotations

import sys
from decimal import Decimal

import pytest

from statement_ingest.categorize import CategorizationEngine
from statement_ingest.errors import (
    DelegateRateLimited,
    DelegateTimeout,
    TextExtractionError,
    ValidationError,
)
from statement_ingest.models import CategorizedTransaction, ParseResult, RawTransaction
from statement_ingest.pipeline import (
    AI_NO_TRANSACTIONS,
    AI_NOT_CONFIGURED,
    AI_RATE_LIMITED,
    NO_DOCUMENT_TRANSACTIONS,
    NO_TEXT,
    delimiter_for_path,
    finish_import,
    group_by_month,
    import_file,
    import_statement,
    kind_for_path,
    parse_document,
    parse_document_text,
    parse_file,
    parse_statement,
    to_storage_entries,
    validate_expense_amount,
)

STATEMENT = """\
Statement for account 1234567890
15/01/2024   CHECKERS SANDTON   R450.00
2024/01/16 ENGEN GARAGE 120.50
"""


class _FakeExtractor:
    configured = True

    def __init__(self, outcome):
        self.outcome = outcome
        self.texts: list[str] = []

    def extract(self, text):
        self.texts.append(text)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


class _BrokenTextExtractor:
    def extract_text(self, data):
        raise TextExtractionError("no text layer")


def _located(result):
    return [(t.date, t.description) for t in result.transactions]


LOCATED = [("2024-01-15", "CHECKERS SANDTON"), ("2024-01-16", "ENGEN GARAGE")]


def test_blank_text_stops_before_any_parser(today):
    extractor = _FakeExtractor(AssertionError("not reached"))

    result = parse_document_text("  \n ", extractor=extractor, today=today)

    assert result.errors == [NO_TEXT]
    assert extractor.texts == []


def test_unconfigured_delegate_is_reported_and_locator_runs(today):
    result = parse_document_text(STATEMENT, today=today)

    assert result.errors == [AI_NOT_CONFIGURED]
    assert _located(result) == LOCATED


def test_disabled_delegate_goes_straight_to_the_locator(today):
    result = parse_document_text(STATEMENT, use_delegate=False, today=today)

    assert result.errors == []
    assert _located(result) == LOCATED


def test_rate_limit_falls_back_to_locator(today):
    extractor = _FakeExtractor(DelegateRateLimited("429", status_code=429))

    result = parse_document_text(STATEMENT, extractor=extractor, today=today)

    assert result.errors == [AI_RATE_LIMITED]
    assert _located(result) == LOCATED


def test_other_delegate_errors_fall_back_with_message(today):
    extractor = _FakeExtractor(DelegateTimeout("request timed out"))

    result = parse_document_text(STATEMENT, extractor=extractor, today=today)

    assert result.errors == ["AI extraction failed: request timed out. Trying pattern matching..."]
    assert _located(result) == LOCATED


def test_delegate_result_is_used_as_is(today):
    found = ParseResult(
        transactions=[RawTransaction("2024-01-15", "CHECKERS", Decimal("450"))],
        errors=["Extraction of part 2 of 2 failed: boom"],
    )

    result = parse_document_text(STATEMENT, extractor=_FakeExtractor(found), today=today)

    assert result is found


def test_empty_delegate_result_keeps_its_errors_and_falls_back(today):
    empty = ParseResult(errors=["Extraction of part 2 of 2 failed: boom"])

    result = parse_document_text(STATEMENT, extractor=_FakeExtractor(empty), today=today)

    assert result.errors == ["Extraction of part 2 of 2 failed: boom", AI_NO_TRANSACTIONS]
    assert _located(result) == LOCATED


def test_nothing_found_anywhere(today):
    result = parse_document_text("Thank you for banking with us", use_delegate=False, today=today)

    assert result.transactions == []
    assert result.errors == [NO_DOCUMENT_TRANSACTIONS]


def test_parse_document_reports_text_extraction_failures(today):
    result = parse_document(b"%PDF-1.4", _BrokenTextExtractor(), today=today)

    assert result.transactions == []
    assert result.errors == ["Failed to parse document: no text layer"]


def test_parse_statement_dispatches_by_kind(today):
    csv = b"Date,Description,Amount\n2024-01-05,Woolworths,88.10\n"

    delimited = parse_statement(csv, kind="delimited", today=today)
    text = parse_statement(STATEMENT, kind="text", use_delegate=False, today=today)

    assert [t.description for t in delimited.transactions] == ["Woolworths"]
    assert _located(text) == LOCATED
    with pytest.raises(ValueError):
        parse_statement("x", kind="spreadsheet", today=today)  # type: ignore[arg-type]


@pytest.mark.parametrize(
    ("name", "kind"),
    [("s.csv", "delimited"), ("S.TSV", "delimited"), ("s.PDF", "document"), ("s.txt", "text")],
)
def test_kind_for_path(name, kind):
    assert kind_for_path(name) == kind


def test_tsv_files_are_split_on_tabs(tmp_path, today):
    path = tmp_path / "statement.tsv"
    path.write_text("Date\tDescription\tAmount\n2024-01-15\tCHECKERS\t450.00\n", encoding="utf-8")

    result = parse_file(path, today=today)

    assert delimiter_for_path(path) == "\t"
    assert result.errors == []
    assert [(t.date, t.description, t.amount) for t in result.transactions] == [
        ("2024-01-15", "CHECKERS", Decimal("450.00"))
    ]


def test_import_statement_normalizes_dedupes_and_categorizes(today):
    content = (
        "Date,Description,Amount,Reference\n"
        "2024-01-15,Checkers Sandton,-450.00,A1\n"
        "15/01/2024,Checkers Sandton,450.00,A2\n"
        "2024-01-20,Mystery Shop 42,75.5,\n"
    )
    engine = CategorizationEngine(None, today=today)

    result = import_statement(content, kind="delimited", engine=engine, today=today)

    assert result.errors == []
    rows = [(t.description, t.category, t.confidence, t.reference) for t in result.transactions]
    assert rows == [
        ("Checkers Sandton", "groceries", 0.95, "A1"),
        ("Mystery Shop 42", "random", 0.5, None),
    ]


def test_import_file_reads_text_statements(tmp_path, today):
    path = tmp_path / "statement.txt"
    path.write_text(STATEMENT, encoding="utf-8")
    engine = CategorizationEngine(None, today=today)

    result = import_file(path, engine=engine, use_delegate=False, today=today)

    assert [(t.description, t.category) for t in result.transactions] == [
        ("CHECKERS SANDTON", "groceries"),
        ("ENGEN GARAGE", "petrol"),
    ]


def test_failed_parse_skips_categorization(tmp_path, today):
    missing = import_file(tmp_path / "nope.csv", today=today)
    assert missing.transactions == []
    assert missing.errors[0].startswith("Failed to read file:")

    carried = finish_import(ParseResult(errors=["CSV file is empty"]), today=today)
    assert carried.errors == ["CSV file is empty"]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("12.345", Decimal("12.35")),
        ("0", Decimal("0.00")),
        (99.999, Decimal("100.00")),
        ("10000000", Decimal("10000000.00")),
    ],
)
def test_validate_expense_amount_rounds_to_cents(raw, expected):
    assert validate_expense_amount(raw) == expected


@pytest.mark.parametrize(
    ("raw", "message"),
    [
        ("abc", "Please enter a valid number"),
        ("", "Please enter a valid number"),
        ("NaN", "Please enter a valid number"),
        ("-1", "Amount cannot be negative"),
        ("10000000.01", "Amount is too large"),
    ],
)
def test_validate_expense_amount_rejects(raw, message):
    with pytest.raises(ValidationError, match=message):
        validate_expense_amount(raw)


def _categorized(date, description, amount, category, *, selected=True):
    return CategorizedTransaction(
        date=date,
        description=description,
        amount=Decimal(amount),
        category=category,
        confidence=0.95,
        selected=selected,
    )


def test_storage_entries_drop_unselected_and_group_by_month():
    items = [
        _categorized("2024-01-15", "Checkers", "450.004", "groceries"),
        _categorized("2024-01-20", "Skipped", "10", "random", selected=False),
        _categorized("2024-02-01", "Landlord", "8500", "rent"),
        _categorized("2024-01-31", "", "20", "random"),
    ]

    entries = to_storage_entries(items)
    grouped = group_by_month(entries)

    assert [e.note for e in entries] == ["Checkers", "Landlord", None]
    assert entries[0].amount == Decimal("450.00")
    assert list(grouped) == ["2024-01", "2024-02"]
    assert [e.date for e in grouped["2024-01"]] == ["2024-01-15", "2024-01-31"]
    assert grouped["2024-01"][1].to_dict() == {
        "date": "2024-01-31",
        "amount": "20.00",
        "category": "random",
    }
    assert len(to_storage_entries(items, selected_only=False)) == 4


def test_pdf_extraction_without_pdfplumber_is_reported(monkeypatch, today):
    monkeypatch.setitem(sys.modules, "pdfplumber", None)

    result = parse_document(b"%PDF-1.4", today=today)

    assert result.errors == [
        "Failed to parse document: PDF support requires pdfplumber; "
        "install statement-ingest[pdf]"
    ]


def test_case_differing_rows_survive_import_and_share_a_rule(today):
    content = (
        "Date,Details,Amount\n"
        "2024-01-15,Checkers Sandton,-450.00\n"
        "15/01/2024,CHECKERS SANDTON,450.00\n"
    )
    engine = CategorizationEngine(None, today=today)

    result = import_statement(content, kind="delimited", engine=engine, today=today)

    assert [(t.date, t.amount, t.category, t.confidence) for t in result.transactions] == [
        ("2024-01-15", Decimal("450.00"), "groceries", 0.95),
        ("2024-01-15", Decimal("450.00"), "groceries", 0.95),
    ]
