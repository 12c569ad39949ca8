"""Prompt construction for the extraction and categorization delegates.

This module builds:
- A deterministic JSON serialization of categorization items with a fixed
  field order and 1-based ``index`` back-references.
- The system and user prompts for statement-text extraction.
- The user prompt for batch categorization.

Embedded payloads are delimited by ``BEGIN_*``/``END_*`` markers so a reply
can be traced to its request.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from decimal import Decimal
from typing import Any

from .models import CategorizationRequest

ITEM_FIELD_ORDER: tuple[str, ...] = ("index", "description", "amount", "date")

EXTRACTION_SYSTEM = (
    "You are a financial data extraction expert. Extract transaction data from bank "
    "statements and return only valid JSON arrays."
)

_EXTRACTION_TEMPLATE = """\
You are a financial data extraction expert. Extract ALL financial transactions from this \
bank statement text.

IMPORTANT INSTRUCTIONS:
1. Look for transaction rows that contain: dates, descriptions/merchant names, and amounts
2. Extract debit/expense transactions (money going out)
3. Ignore credits, deposits, or balance information unless they are expenses
4. Amounts should be positive numbers (expenses)
5. Dates should be converted to YYYY-MM-DD format
6. Extract the full merchant/description text

Bank statement text ({{PART_LABEL}}):
BEGIN_STATEMENT_TEXT
{{CHUNK}}
END_STATEMENT_TEXT

Return ONLY a valid JSON array of transactions. Each transaction must have:
- "date": string in YYYY-MM-DD format
- "description": string (merchant name or transaction description)
- "amount": number (positive, expenses only)
- "reference": string (optional, transaction ID or reference number if available)

Example format:
[
  {"date": "2024-01-15", "description": "GROCERY STORE ABC", "amount": 250.50, \
"reference": "TXN123456"},
  {"date": "2024-01-16", "description": "PETROL STATION XYZ", "amount": 500.00}
]

Return ONLY the JSON array, no explanations, no markdown, just the array."""

_CATEGORIZE_TEMPLATE = """\
You are a financial transaction categorizer. Categorize each transaction into ONE of \
these categories: {{CATEGORIES}}.

Transactions to categorize:
BEGIN_TRANSACTIONS_JSON
{{ITEMS_JSON}}
END_TRANSACTIONS_JSON

Return your response as a JSON array of objects, where each object has:
- "index": the transaction number (1-based, as given above)
- "category": the category name (must be one of: {{CATEGORIES}})
- "confidence": a number between 0 and 1 indicating your confidence

Example response format:
[
  {"index": 1, "category": "{{EXAMPLE_A}}", "confidence": 0.95},
  {"index": 2, "category": "{{EXAMPLE_B}}", "confidence": 0.90}
]

Return ONLY the JSON array, no other text."""


def _json_amount(amount: Decimal) -> float:
    return float(amount.quantize(Decimal("0.01")))


def serialize_items_to_json(items: Sequence[CategorizationRequest]) -> str:
    """Serialize items to a JSON array with a fixed field order.

    ``index`` is 1-based and page-relative; ``date`` is ``null`` when absent.
    """

    arr: list[dict[str, Any]] = []
    for pos, item in enumerate(items, start=1):
        values = {
            "index": pos,
            "description": item.description,
            "amount": _json_amount(item.amount),
            "date": item.date,
        }
        arr.append({key: values[key] for key in ITEM_FIELD_ORDER})
    return json.dumps(arr, ensure_ascii=False)


def build_extraction_prompt(chunk: str, *, chunk_index: int, chunk_count: int) -> str:
    """Return the user prompt for one statement-text chunk (0-based index)."""

    if chunk_index == chunk_count - 1:
        label = "final"
    else:
        label = f"part {chunk_index + 1} of {chunk_count}"
    return _EXTRACTION_TEMPLATE.replace("{{PART_LABEL}}", label).replace(
        "{{CHUNK}}", chunk.rstrip("\n")
    )


def build_categorization_prompt(
    items: Sequence[CategorizationRequest], categories: Sequence[str]
) -> str:
    """Return the user prompt asking for one category per item."""

    if not categories:
        raise ValueError("categories must contain at least one name")
    example_a = categories[0]
    example_b = categories[1] if len(categories) > 1 else categories[0]
    return (
        _CATEGORIZE_TEMPLATE.replace("{{CATEGORIES}}", ", ".join(categories))
        .replace("{{EXAMPLE_A}}", example_a)
        .replace("{{EXAMPLE_B}}", example_b)
        # Items last so descriptions are never rescanned for placeholders.
        .replace("{{ITEMS_JSON}}", serialize_items_to_json(items))
    )


__all__ = [
    "EXTRACTION_SYSTEM",
    "ITEM_FIELD_ORDER",
    "build_categorization_prompt",
    "build_extraction_prompt",
    "serialize_items_to_json",
]
