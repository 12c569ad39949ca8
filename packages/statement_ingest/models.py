"""Data models for statement ingestion.

Records produced by the pipeline are frozen dataclasses so they can be shared
between stages without defensive copies. Persisted shapes (cache entries) and
untrusted delegate items are Pydantic models so that anything read back from
disk, a database or a model reply is validated before use.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import asdict, dataclass, field
from datetime import date as _date
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RawTransaction:
    """A recovered transaction before categorization.

    ``date`` is an ISO-8601 calendar date (``YYYY-MM-DD``). ``amount`` is a
    positive magnitude; every recovered transaction is treated as an expense.
    """

    date: str
    description: str
    amount: Decimal
    reference: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["amount"] = str(self.amount)
        return out


@dataclass(frozen=True, slots=True, kw_only=True)
class CategorizedTransaction(RawTransaction):
    """A transaction with an assigned category.

    ``confidence`` records provenance: rule matches 0.95, cache hits 0.9,
    delegate results as returned, fallbacks 0.5. ``selected`` is a UI
    affordance and is dropped when handing entries to storage.
    """

    category: str
    confidence: float
    selected: bool = True


@dataclass(slots=True)
class ParseResult:
    """Transactions recovered from one input plus diagnostics.

    ``errors`` may be non-empty while ``transactions`` is still partially
    populated; structural failures leave ``transactions`` empty.
    """

    transactions: list[RawTransaction] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors and bool(self.transactions)


@dataclass(frozen=True, slots=True)
class CategorizationRequest:
    description: str
    amount: Decimal
    date: str | None = None

    @classmethod
    def from_transaction(cls, tx: RawTransaction) -> CategorizationRequest:
        return cls(description=tx.description, amount=tx.amount, date=tx.date)


@dataclass(slots=True)
class ImportResult:
    """Categorized, deduplicated transactions for one import plus diagnostics."""

    transactions: list[CategorizedTransaction] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class StorageEntry:
    """Entry handed to the external append-only month store."""

    date: str
    amount: Decimal
    category: str
    note: str | None = None

    @property
    def month_key(self) -> str:
        return self.date[:7]

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "date": self.date,
            "amount": str(self.amount),
            "category": self.category,
        }
        if self.note:
            out["note"] = self.note
        return out


# ---------------------------------------------------------------------------
# Cache DTOs
# ---------------------------------------------------------------------------


class CacheEntry(BaseModel):
    """A persisted description -> category decision."""

    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=True)

    normalized_key: str
    category: str
    confidence: float
    timestamp: datetime

    @field_validator("normalized_key", "category")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("must be non-empty")
        return v

    @field_validator("confidence")
    @classmethod
    def _confidence_in_unit_interval(cls, v: float) -> float:
        if 0.0 <= v <= 1.0:
            return float(v)
        raise ValueError("confidence must be within [0,1]")


class CacheFile(BaseModel):
    """Top-level schema for the JSON file cache."""

    model_config = ConfigDict(extra="forbid")

    schema_version: int
    entries: dict[str, CacheEntry]


# ---------------------------------------------------------------------------
# Untrusted delegate records
# ---------------------------------------------------------------------------


def _first_text(data: Mapping[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = data.get(key)
        if value is None or isinstance(value, (bool, dict, list)):
            continue
        s = str(value).strip()
        if s:
            return s
    return None


class RawExternalRecord(BaseModel):
    """One transaction-shaped item from a generative delegate reply.

    Nothing about the item is trusted. Alternate field names are folded in
    (``merchant``/``details`` for the description, ``ref``/``transactionId``
    for the reference) and the amount is kept raw until
    :meth:`to_transaction` coerces it.
    """

    model_config = ConfigDict(extra="ignore")

    date: str | None = None
    description: str = ""
    amount: Any = None
    reference: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _fold_alternate_fields(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            raise ValueError("item must be a JSON object")
        return {
            "date": _first_text(data, "date"),
            "description": _first_text(data, "description", "merchant", "details") or "",
            "amount": data.get("amount"),
            "reference": _first_text(data, "reference", "ref", "transactionId"),
        }

    def to_transaction(self, *, today: Callable[[], _date] = _date.today) -> RawTransaction | None:
        """Return a :class:`RawTransaction`, or ``None`` when the item is unusable.

        Items whose amount is not a positive number or whose description is
        empty are dropped.
        """

        from .normalizers import parse_amount, parse_date

        amount = parse_amount(self.amount)
        if amount <= 0 or not self.description:
            return None
        return RawTransaction(
            date=parse_date(self.date, today=today),
            description=self.description,
            amount=amount,
            reference=self.reference,
        )


type Transactions = Iterable[RawTransaction]


__all__ = [
    "CacheEntry",
    "CacheFile",
    "CategorizationRequest",
    "CategorizedTransaction",
    "ImportResult",
    "ParseResult",
    "RawExternalRecord",
    "RawTransaction",
    "StorageEntry",
    "Transactions",
]
