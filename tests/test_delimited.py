from __future__ import annotations

from decimal import Decimal

import pytest

from statement_ingest.delimited import (
    EMPTY_FILE,
    NO_DATA_ROWS,
    NO_TRANSACTIONS,
    parse_delimited_file,
    parse_delimited_text,
    resolve_columns,
    split_delimited_row,
)
from statement_ingest.errors import RowLevelError, StructuralInputError
from statement_ingest.models import RawTransaction


def test_well_formed_file_yields_one_transaction_per_data_row(today):
    content = (
        "Date,Description,Amount,Reference\n"
        "2024-01-15,Checkers Sandton,-450.00,REF1\n"
        "\n"
        "16/01/2024,ENGEN GARAGE,R120.50,\n"
        "2024/01/17,Netflix,199,REF3\n"
    )

    result = parse_delimited_text(content, today=today)

    assert result.errors == []
    assert [(t.date, t.description, t.amount, t.reference) for t in result.transactions] == [
        ("2024-01-15", "Checkers Sandton", Decimal("450.00"), "REF1"),
        ("2024-01-16", "ENGEN GARAGE", Decimal("120.50"), None),
        ("2024-01-17", "Netflix", Decimal("199"), "REF3"),
    ]


def test_checkers_rows_both_kept_because_descriptions_differ_in_case(today):
    content = (
        "Date,Details,Amount\n"
        "2024-01-15,Checkers Sandton,-450.00\n"
        "15/01/2024,CHECKERS SANDTON,450.00\n"
    )

    result = parse_delimited_text(content, today=today)

    assert result.errors == []
    assert [(t.date, t.amount) for t in result.transactions] == [
        ("2024-01-15", Decimal("450.00")),
        ("2024-01-15", Decimal("450.00")),
    ]
    assert [t.description for t in result.transactions] == ["Checkers Sandton", "CHECKERS SANDTON"]


@pytest.mark.parametrize("content", ["", "   \n\t\n"])
def test_empty_input_is_structural(content):
    result = parse_delimited_text(content)
    assert result.transactions == []
    assert result.errors == [EMPTY_FILE]


def test_header_only_has_no_data_rows():
    result = parse_delimited_text("Date,Description,Amount\n\n")
    assert result.transactions == []
    assert result.errors == [NO_DATA_ROWS]


def test_missing_columns_report_one_error_per_role():
    result = parse_delimited_text("Foo,Bar\n1,2\n")

    assert result.transactions == []
    assert len(result.errors) == 3
    assert result.errors[0].startswith("Could not find Date column. Expected: date,")
    assert result.errors[1].startswith("Could not find Description column.")
    assert result.errors[2].startswith("Could not find Amount column.")


def test_quoted_fields_keep_commas_and_headers_are_unquoted(today):
    content = (
        '"Posting Date","Transaction Details","Debit"\n'
        '2024-02-01,"SPAR, Rosebank","1,234.56"\n'
    )

    result = parse_delimited_text(content, today=today)

    assert result.errors == []
    (tx,) = result.transactions
    assert tx.description == "SPAR, Rosebank"
    assert tx.amount == Decimal("1234.56")


def test_blank_and_zero_rows_are_skipped_silently(today):
    content = (
        "Date,Description,Amount\n"
        "2024-01-01,,\n"
        "2024-01-02,Fee reversal,0.00\n"
        "2024-01-03,Spar,10\n"
    )

    result = parse_delimited_text(content, today=today)

    assert result.errors == []
    assert [t.description for t in result.transactions] == ["Spar"]


def test_all_rows_zero_reports_no_valid_transactions(today):
    result = parse_delimited_text("Date,Description,Amount\n2024-01-02,Nothing,0\n", today=today)
    assert result.transactions == []
    assert result.errors == [NO_TRANSACTIONS]


def test_bad_row_is_reported_and_skipped(today):
    content = 'Date,Description,Amount\n2024-01-01,"Unclosed,5\n2024-01-02,Spar,10\n'

    result = parse_delimited_text(content, today=today)

    assert result.errors == ["Error parsing row 2: unterminated quoted field"]
    assert [t.description for t in result.transactions] == ["Spar"]


def test_unparseable_date_degrades_to_today(today):
    result = parse_delimited_text("Date,Description,Amount\nnot a date,Spar,10\n", today=today)
    assert result.transactions[0].date == "2024-03-01"


def test_column_resolution_walks_aliases_before_headers():
    # "reference" is a description alias as well; "details" wins for description
    # only because it comes earlier in the alias list.
    columns = resolve_columns(["Reference", "Value Date", "Details", "Amount"])
    assert columns.date == 1
    assert columns.description == 2
    assert columns.amount == 3
    assert columns.reference == 0


def test_resolve_columns_raises_structural_error():
    with pytest.raises(StructuralInputError):
        resolve_columns(["only", "junk"])


def test_split_row_rejects_unterminated_quote():
    assert split_delimited_row('a," b, c ",d') == ["a", "b, c", "d"]
    with pytest.raises(RowLevelError):
        split_delimited_row('a,"b')


def test_wrong_delimiter_is_a_structural_error(today):
    content = "Date\tDescription\tAmount\n2024-01-15\tCHECKERS\t450.00\n"

    comma = parse_delimited_text(content, today=today)
    tab = parse_delimited_text(content, delimiter="\t", today=today)

    assert comma.transactions == []
    assert comma.errors == [
        "Date, Description and Amount all resolve to column 'Date\\tDescription\\tAmount'"
    ]
    assert tab.errors == []
    assert tab.transactions == [
        RawTransaction(date="2024-01-15", description="CHECKERS", amount=Decimal("450.00"))
    ]


def test_parse_file_reads_bom_and_reports_missing_file(tmp_path, today):
    path = tmp_path / "statement.csv"
    path.write_text(
        "\ufeffDate,Description,Amount\n2024-01-05,Woolworths,88.10\n", encoding="utf-8"
    )

    ok = parse_delimited_file(path, today=today)
    missing = parse_delimited_file(tmp_path / "nope.csv", today=today)

    assert [t.description for t in ok.transactions] == ["Woolworths"]
    assert missing.transactions == []
    assert len(missing.errors) == 1
    assert missing.errors[0].startswith("Failed to read file:")
