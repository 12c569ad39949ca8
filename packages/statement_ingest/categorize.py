"""Three-tier transaction categorization.

Public API:
    - :class:`CategorizationEngine`
    - :func:`categorize`

Each item is resolved by the first tier that answers:

1. rules (confidence 0.95, written to the cache);
2. the description cache (confidence 0.9);
3. the generative delegate, in sequential sub-batches of ``batch_size``.

Items reaching tier 3 are grouped by normalized description and only one
exemplar per group is sent; its decision fans out to the whole group. No
request is made when nothing reaches tier 3. Output order always matches
input order.

When the delegate is missing or a sub-batch fails, the affected items get the
fallback category at confidence 0.5 and nothing is cached for them. With
``on_delegate_error="raise"`` a failure on the first sub-batch (including a
missing delegate) propagates instead; later sub-batches always degrade.
"""

from __future__ import annotations

import math
import time
from collections.abc import Iterable, Sequence
from datetime import date
from typing import Literal

from .cache import CategorizationCache
from .categorization import FALLBACK_CONFIDENCE, CategoryDecision, parse_categorization_response
from .config import CATEGORIZATION_TEMPERATURE, DEFAULT_BATCH_SIZE, Settings
from .errors import DelegateError, DelegateNotConfigured
from .llm_client import GenerativeClient
from .logging_setup import get_logger
from .models import CategorizationRequest, CategorizedTransaction, RawTransaction
from .normalizers import Today, normalize_description
from .prompting import build_categorization_prompt
from .rules import (
    DEFAULT_CATEGORIES,
    DEFAULT_RULES,
    FALLBACK_CATEGORY,
    CategoryRule,
    match_rule,
    with_fallback,
)

RULE_CONFIDENCE = 0.95
CACHE_CONFIDENCE = 0.9

type OnDelegateError = Literal["fallback", "raise"]

_logger = get_logger("statement_ingest.categorize")


def _paginate(n_total: int, page_size: int) -> Iterable[tuple[int, int, int]]:
    """Yield ``(page_index, base, end)`` half-open ranges over ``n_total`` items."""

    pages_total = math.ceil(n_total / page_size)
    for k in range(pages_total):
        base = k * page_size
        end = min(base + page_size, n_total)
        yield (k, base, end)


def _group_pending(
    requests: Sequence[CategorizationRequest], pending: Sequence[int]
) -> tuple[list[int], dict[int, list[int]]]:
    """Return ``(exemplars, members)`` for items sharing a normalized description.

    ``exemplars`` holds the smallest absolute index of each group, in input
    order; ``members`` maps each exemplar to every index in its group.
    Items without a usable key form their own group.
    """

    by_key: dict[str, int] = {}
    members: dict[int, list[int]] = {}
    for i in pending:
        key = normalize_description(requests[i].description)
        if key and key in by_key:
            members[by_key[key]].append(i)
            continue
        if key:
            by_key[key] = i
        members[i] = [i]
    return sorted(members), members


class CategorizationEngine:
    """Assign a category to each transaction with rule, cache and delegate tiers."""

    def __init__(
        self,
        client: GenerativeClient | None = None,
        *,
        cache: CategorizationCache | None = None,
        categories: Sequence[str] = DEFAULT_CATEGORIES,
        fallback_category: str = FALLBACK_CATEGORY,
        batch_size: int = DEFAULT_BATCH_SIZE,
        rules: Sequence[CategoryRule] = DEFAULT_RULES,
        on_delegate_error: OnDelegateError = "fallback",
        today: Today = date.today,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        if on_delegate_error not in ("fallback", "raise"):
            raise ValueError(
                f"on_delegate_error must be 'fallback' or 'raise', got {on_delegate_error!r}"
            )
        self.client = client
        self.cache = cache if cache is not None else CategorizationCache()
        self.fallback_category = fallback_category
        self.categories = with_fallback(categories, fallback_category)
        self.batch_size = batch_size
        self.rules = tuple(rules)
        self.on_delegate_error = on_delegate_error
        self.today = today

    @classmethod
    def from_settings(
        cls, settings: Settings, *, use_delegate: bool = True, **kwargs: object
    ) -> CategorizationEngine:
        """Build an engine with the settings' delegate, cache store and batch size."""

        client = GenerativeClient(settings) if use_delegate else None
        kwargs.setdefault("cache", CategorizationCache.from_settings(settings))
        kwargs.setdefault("batch_size", settings.batch_size)
        return cls(client, **kwargs)  # type: ignore[arg-type]

    @property
    def delegate_available(self) -> bool:
        return self.client is not None and self.client.configured

    # ---- tiers ----------------------------------------------------------------

    def _resolve_locally(self, description: str) -> tuple[CategoryDecision, str] | None:
        category = match_rule(description, rules=self.rules, allowed=self.categories)
        if category is not None:
            self.cache.put(description, category, RULE_CONFIDENCE)
            return CategoryDecision(category, RULE_CONFIDENCE), "rule"
        entry = self.cache.get(description)
        if entry is not None and entry.category in self.categories:
            return CategoryDecision(entry.category, CACHE_CONFIDENCE), "cache"
        return None

    def _categorize_page(
        self, page_index: int, requests: Sequence[CategorizationRequest]
    ) -> list[CategoryDecision]:
        assert self.client is not None
        _logger.info(
            "categorize:page_llm page_index=%d num_transactions=%d", page_index, len(requests)
        )
        t0 = time.perf_counter()
        content = self.client.complete(
            build_categorization_prompt(requests, self.categories),
            temperature=CATEGORIZATION_TEMPERATURE,
        )
        decisions = parse_categorization_response(
            content,
            num_items=len(requests),
            allowed_categories=self.categories,
            fallback_category=self.fallback_category,
        )
        _logger.info(
            "categorize:page_done page_index=%d num_transactions=%d latency_ms=%.2f",
            page_index,
            len(decisions),
            (time.perf_counter() - t0) * 1000.0,
        )
        return decisions

    def _fallback(self) -> CategoryDecision:
        return CategoryDecision(self.fallback_category, FALLBACK_CONFIDENCE)

    def _resolve_via_delegate(
        self,
        requests: Sequence[CategorizationRequest],
        pending: Sequence[int],
        decisions: list[CategoryDecision | None],
    ) -> int:
        """Fill ``decisions`` for ``pending`` indices; return how many fell back."""

        if not self.delegate_available:
            if self.on_delegate_error == "raise":
                raise DelegateNotConfigured("generative delegate API key not configured")
            _logger.info("categorize:delegate_unavailable pending=%d", len(pending))
            for i in pending:
                decisions[i] = self._fallback()
            return len(pending)

        exemplars, members = _group_pending(requests, pending)
        fell_back = 0
        for page_index, base, end in _paginate(len(exemplars), self.batch_size):
            page_abs = exemplars[base:end]
            page_requests = [requests[i] for i in page_abs]
            try:
                page_decisions = self._categorize_page(page_index, page_requests)
            except DelegateError as e:
                if page_index == 0 and self.on_delegate_error == "raise":
                    _logger.error(
                        "categorize:page_failed_terminal page_index=0 kind=%s", e.kind
                    )
                    raise
                _logger.warning(
                    "categorize:page_failed page_index=%d exemplars=%d kind=%s",
                    page_index,
                    len(page_abs),
                    e.kind,
                )
                for abs_i in page_abs:
                    for i in members[abs_i]:
                        decisions[i] = self._fallback()
                        fell_back += 1
                continue

            for abs_i, decision in zip(page_abs, page_decisions, strict=True):
                self.cache.put(requests[abs_i].description, decision.category, decision.confidence)
                for i in members[abs_i]:
                    decisions[i] = decision
        return fell_back

    # ---- public ---------------------------------------------------------------

    def categorize(
        self, batch: Iterable[CategorizationRequest | RawTransaction]
    ) -> list[CategorizedTransaction]:
        """Return one categorized transaction per input item, in input order."""

        items = list(batch)
        requests = [
            it
            if isinstance(it, CategorizationRequest)
            else CategorizationRequest.from_transaction(it)
            for it in items
        ]
        decisions: list[CategoryDecision | None] = [None] * len(requests)
        counts = {"rule": 0, "cache": 0}
        pending: list[int] = []
        for i, req in enumerate(requests):
            local = self._resolve_locally(req.description)
            if local is None:
                pending.append(i)
                continue
            decisions[i], tier = local
            counts[tier] += 1

        fell_back = 0
        if pending:
            fell_back = self._resolve_via_delegate(requests, pending, decisions)

        _logger.info(
            "categorize:done total=%d rule=%d cache=%d delegate=%d fallback=%d",
            len(requests),
            counts["rule"],
            counts["cache"],
            len(pending) - fell_back,
            fell_back,
        )

        out: list[CategorizedTransaction] = []
        for item, req, decision in zip(items, requests, decisions, strict=True):
            assert decision is not None
            out.append(
                CategorizedTransaction(
                    date=req.date or self.today().isoformat(),
                    description=req.description,
                    amount=req.amount,
                    reference=getattr(item, "reference", None),
                    category=decision.category,
                    confidence=decision.confidence,
                )
            )
        return out


def categorize(
    batch: Iterable[CategorizationRequest | RawTransaction],
    *,
    engine: CategorizationEngine | None = None,
) -> list[CategorizedTransaction]:
    """Categorize ``batch`` with ``engine`` or one built from the environment."""

    if engine is None:
        engine = CategorizationEngine.from_settings(Settings.from_env())
    return engine.categorize(batch)


__all__ = [
    "CACHE_CONFIDENCE",
    "RULE_CONFIDENCE",
    "CategorizationEngine",
    "categorize",
]
