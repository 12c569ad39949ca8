"""Tolerant duplicate detection shared by every extraction path.

Two transactions are duplicates when their dates are equal, their amounts
differ by less than ``0.01`` and their descriptions are identical. Descriptions
are compared case-sensitively. The unstructured-text locator additionally
treats two descriptions longer than 10 characters that share their first 10
characters as identical (``prefix_match=True``), which absorbs the partial
descriptions produced when columnar lines are re-split.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from decimal import Decimal
from typing import TypeVar

from .models import RawTransaction

AMOUNT_TOLERANCE = Decimal("0.01")
_PREFIX_LEN = 10

T = TypeVar("T", bound=RawTransaction)


def _same_description(a: str, b: str, *, prefix_match: bool) -> bool:
    if a == b:
        return True
    if not prefix_match:
        return False
    return len(a) > _PREFIX_LEN and len(b) > _PREFIX_LEN and a[:_PREFIX_LEN] == b[:_PREFIX_LEN]


def is_duplicate(a: RawTransaction, b: RawTransaction, *, prefix_match: bool = False) -> bool:
    return (
        a.date == b.date
        and abs(a.amount - b.amount) < AMOUNT_TOLERANCE
        and _same_description(a.description, b.description, prefix_match=prefix_match)
    )


def dedupe(items: Iterable[T], *, prefix_match: bool = False) -> list[T]:
    """Return ``items`` without duplicates, keeping first occurrences in order.

    Each candidate is compared against the items already kept, so the result
    holds no duplicate pair and deduplicating it again is a no-op.
    """

    kept: list[T] = []
    for item in items:
        if any(is_duplicate(k, item, prefix_match=prefix_match) for k in kept):
            continue
        kept.append(item)
    return kept


def count_removed(before: Sequence[object], after: Sequence[object]) -> int:
    return len(before) - len(after)


__all__ = ["AMOUNT_TOLERANCE", "count_removed", "dedupe", "is_duplicate"]
