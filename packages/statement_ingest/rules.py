"""Category vocabulary and merchant/keyword rules.

Rules are data: an ordered table of ``(category, patterns)`` pairs evaluated
first-match against the normalized description. Patterns are unanchored
substring searches, so ``"bp"`` also matches inside longer words; keep the
table order in mind when adding entries.
"""

from __future__ import annotations

import re
from collections.abc import Collection, Sequence
from dataclasses import dataclass

from .normalizers import normalize_description

FALLBACK_CATEGORY = "random"

DEFAULT_CATEGORIES: tuple[str, ...] = (
    "groceries",
    "petrol",
    "eatingOut",
    "entertainment",
    "random",
    "rent",
    "electricity",
    "water",
    "medicalAid",
    "gym",
    "internet",
)


@dataclass(frozen=True, slots=True)
class CategoryRule:
    category: str
    patterns: tuple[re.Pattern[str], ...]

    def matches(self, normalized: str) -> bool:
        return any(p.search(normalized) for p in self.patterns)


def _rule(category: str, *patterns: str) -> CategoryRule:
    return CategoryRule(category, tuple(re.compile(p, re.IGNORECASE) for p in patterns))


DEFAULT_RULES: tuple[CategoryRule, ...] = (
    _rule(
        "groceries",
        r"checkers",
        r"pick[_\s]?n[_\s]?pay",
        r"woolworths",
        r"spar",
        r"shoprite",
        r"food lovers",
        r"dischem",
        r"clicks",
        r"pharmacy",
        r"supermarket",
        r"grocery",
    ),
    _rule(
        "petrol",
        r"engen",
        r"shell",
        r"bp",
        r"sasol",
        r"caltex",
        r"total",
        r"petrol",
        r"fuel",
        r"gas station",
        r"filling station",
    ),
    _rule(
        "eatingOut",
        r"restaurant",
        r"mcdonald",
        r"kfc",
        r"nandos",
        r"steers",
        r"debonairs",
        r"pizza",
        r"coffee",
        r"cafe",
        r"take[_\s]?away",
        r"uber[_\s]?eats",
        r"mr[_\s]?d[_\s]?food",
    ),
    _rule(
        "entertainment",
        r"netflix",
        r"spotify",
        r"disney",
        r"showmax",
        r"movie",
        r"cinema",
        r"theatre",
        r"game",
        r"playstation",
        r"xbox",
    ),
    _rule("rent", r"rent", r"landlord", r"property", r"housing"),
    _rule("electricity", r"eskom", r"electricity", r"power", r"prepaid"),
    _rule("water", r"water", r"municipality", r"city[_\s]?of"),
    _rule(
        "medicalAid",
        r"medical[_\s]?aid",
        r"discovery",
        r"bonitas",
        r"momentum",
        r"hospital",
        r"doctor",
        r"clinic",
    ),
    _rule("gym", r"gym", r"virgin[_\s]?active", r"planet[_\s]?fitness", r"fitness"),
    _rule(
        "internet",
        r"vodacom",
        r"mtn",
        r"cell[_\s]?c",
        r"telkom",
        r"afrihost",
        r"webafrica",
        r"internet",
        r"fibre",
        r"broadband",
    ),
)


def match_rule(
    description: str,
    *,
    rules: Sequence[CategoryRule] = DEFAULT_RULES,
    allowed: Collection[str] | None = None,
) -> str | None:
    """Return the first rule category matching ``description``, else ``None``.

    When ``allowed`` is given, rules for categories outside it are skipped.
    """

    normalized = normalize_description(description)
    if not normalized:
        return None
    for rule in rules:
        if allowed is not None and rule.category not in allowed:
            continue
        if rule.matches(normalized):
            return rule.category
    return None


def with_fallback(categories: Sequence[str], fallback: str = FALLBACK_CATEGORY) -> tuple[str, ...]:
    """Return ``categories`` deduplicated, with ``fallback`` appended when missing."""

    out = tuple(dict.fromkeys(c.strip() for c in categories if c and c.strip()))
    if fallback not in out:
        out = (*out, fallback)
    return out


__all__ = [
    "DEFAULT_CATEGORIES",
    "DEFAULT_RULES",
    "FALLBACK_CATEGORY",
    "CategoryRule",
    "match_rule",
    "with_fallback",
]
