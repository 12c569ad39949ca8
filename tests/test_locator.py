from __future__ import annotations

from decimal import Decimal

from statement_ingest.locator import (
    DEFAULT_DESCRIPTION,
    build_description,
    candidate_lines,
    find_amount,
    locate_transactions,
)

STATEMENT = """\
Statement for account 1234567890
15/01/2024   CHECKERS SANDTON   R450.00
2024/01/16 ENGEN GARAGE 120.50
"""


def test_locates_day_first_and_year_first_rows(today):
    found = locate_transactions(STATEMENT, today=today)

    assert [(t.date, t.description, t.amount) for t in found] == [
        ("2024-01-15", "CHECKERS SANDTON", Decimal("450.00")),
        ("2024-01-16", "ENGEN GARAGE", Decimal("120.50")),
    ]


def test_columnar_lines_are_kept_with_their_fragments():
    lines = candidate_lines("abc\n15/01/2024   SPAR   R10.00\n")
    assert lines == ["15/01/2024   SPAR   R10.00", "15/01/2024", "SPAR", "R10.00"]


def test_amounts_come_from_neighbours_when_a_row_wraps(today):
    text = "03/02/2024 WOOLWORTHS FOOD\nCard purchase R89.99\n"

    (tx,) = locate_transactions(text, today=today)

    assert tx.date == "2024-02-03"
    assert tx.amount == Decimal("89.99")
    assert tx.description == "WOOLWORTHS FOOD"


def test_implausible_amounts_are_ignored():
    assert find_amount("Balance R1,500,000.00") is None
    assert find_amount("Fee 0.01") is None
    assert find_amount("Account 1234567890") is None
    assert find_amount("Paid R 1 234.50 today") == Decimal("1234.50")


def test_dates_are_not_read_as_amounts():
    assert find_amount("15.01.2024 SPAR") is None


def test_transaction_amount_wins_over_trailing_balance(today):
    (tx,) = locate_transactions("15/01/2024 CHECKERS SANDTON 450.00 12,345.67\n", today=today)

    assert tx.amount == Decimal("450.00")
    assert find_amount("SPAR 1,200.00 R88.10") == Decimal("88.10")


def test_description_skips_codes_numbers_and_falls_back():
    assert build_description("15/01/2024 POS123 SPAR 4411 R10.00", "") == "SPAR"
    assert build_description("15/01/2024 R10.00", "NETFLIX.COM") == "NETFLIX.COM"
    assert build_description("15/01/2024 R10.00", "") == DEFAULT_DESCRIPTION


def test_no_dates_means_no_transactions(today):
    text = "Opening balance R1,000.00\nClosing balance R900.00"
    assert locate_transactions(text, today=today) == []
