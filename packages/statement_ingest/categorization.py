"""Parsing and alignment of batch categorization replies.

The delegate is asked for a JSON array of ``{index, category, confidence}``
objects with 1-based ``index`` back-references. Replies are untrusted:

- items that fail validation or point outside the batch are ignored, and the
  first item for an index wins;
- a category outside the vocabulary is coerced to the fallback category at
  confidence 0.5;
- a valid category without a confidence gets 0.8; confidences are clamped to
  ``[0, 1]``;
- positions with no usable item get the fallback category at 0.5;
- a reply with no decodable array is scanned line by line, one line per
  expected item, for any vocabulary name (0.7 on a hit, fallback at 0.5
  otherwise).
"""

from __future__ import annotations

import json
import re
from collections.abc import Sequence
from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import ValidationError as PydanticValidationError

from .logging_setup import get_logger

DEFAULT_DELEGATE_CONFIDENCE = 0.8
LINE_SCAN_CONFIDENCE = 0.7
FALLBACK_CONFIDENCE = 0.5

_ARRAY_RE = re.compile(r"\[[\s\S]*\]")

_logger = get_logger("statement_ingest.categorization")


class CategoryDecision(NamedTuple):
    category: str
    confidence: float


class _ReplyItem(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    index: int
    category: str
    confidence: float | None = None

    @field_validator("confidence", mode="before")
    @classmethod
    def _tolerate_bad_confidence(cls, v: Any) -> Any:
        if v is None or isinstance(v, bool):
            return None
        try:
            return float(v)
        except (TypeError, ValueError):
            return None


def _clamp(v: float) -> float:
    return min(1.0, max(0.0, v))


def _decode_items(content: str) -> list[Any] | None:
    m = _ARRAY_RE.search(content or "")
    if m:
        try:
            decoded = json.loads(m.group(0))
        except json.JSONDecodeError:
            decoded = None
        if isinstance(decoded, list):
            return decoded
    try:
        decoded = json.loads(content)
    except (json.JSONDecodeError, TypeError):
        return None
    if isinstance(decoded, list):
        return decoded
    if isinstance(decoded, dict):
        for key in ("results", "categorizations", "transactions"):
            if isinstance(decoded.get(key), list):
                return decoded[key]
    return None


def line_scan_categories(
    content: str,
    *,
    num_items: int,
    allowed_categories: Sequence[str],
    fallback_category: str,
) -> list[CategoryDecision]:
    """Return one decision per expected item by scanning reply lines in order."""

    lines = (content or "").split("\n")
    out: list[CategoryDecision] = []
    for i in range(num_items):
        line = lines[i].lower() if i < len(lines) else ""
        found = next((c for c in allowed_categories if c.lower() in line), None)
        if found is None:
            out.append(CategoryDecision(fallback_category, FALLBACK_CONFIDENCE))
        else:
            out.append(CategoryDecision(found, LINE_SCAN_CONFIDENCE))
    return out


def parse_categorization_response(
    content: str,
    *,
    num_items: int,
    allowed_categories: Sequence[str],
    fallback_category: str,
) -> list[CategoryDecision]:
    """Return exactly ``num_items`` decisions aligned by 1-based ``index``."""

    raw_items = _decode_items(content)
    if raw_items is None:
        _logger.warning("categorize:reply_unparsed num_items=%d; scanning lines", num_items)
        return line_scan_categories(
            content,
            num_items=num_items,
            allowed_categories=allowed_categories,
            fallback_category=fallback_category,
        )

    canonical = {c.lower(): c for c in allowed_categories}
    by_pos: list[CategoryDecision | None] = [None] * num_items
    for raw in raw_items:
        try:
            item = _ReplyItem.model_validate(raw)
        except PydanticValidationError:
            continue
        pos = item.index - 1
        if not (0 <= pos < num_items) or by_pos[pos] is not None:
            continue
        category = canonical.get(item.category.lower())
        if category is None:
            by_pos[pos] = CategoryDecision(fallback_category, FALLBACK_CONFIDENCE)
        elif item.confidence is None:
            by_pos[pos] = CategoryDecision(category, DEFAULT_DELEGATE_CONFIDENCE)
        else:
            by_pos[pos] = CategoryDecision(category, _clamp(item.confidence))

    missing = [i + 1 for i, d in enumerate(by_pos) if d is None]
    if missing:
        _logger.info("categorize:reply_missing indices=%s", missing)
    return [
        d if d is not None else CategoryDecision(fallback_category, FALLBACK_CONFIDENCE)
        for d in by_pos
    ]


__all__ = [
    "DEFAULT_DELEGATE_CONFIDENCE",
    "FALLBACK_CONFIDENCE",
    "LINE_SCAN_CONFIDENCE",
    "CategoryDecision",
    "line_scan_categories",
    "parse_categorization_response",
]
