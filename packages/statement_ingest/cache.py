"""Description -> category cache.

:class:`CategorizationCache` owns the policy (key normalization, 30-day
retention checked lazily on lookup, a 1000-entry cap enforced lazily on
write). Storage is injected as a :class:`CacheStore`:

- :class:`MemoryCacheStore`: process-local dict, for tests and one-off runs.
- :class:`JsonFileCacheStore`: one JSON document, by default
  ``<cache_root>/categorization_cache.json`` where the cache root is
  ``./.cache`` or ``SI_CACHE_DIR``.
- :class:`SqlCacheStore`: a ``category_cache`` table behind any SQLAlchemy URL
  (``SI_CACHE_URL``).

Atomicity: each JSON write goes to its own temporary file in the cache
directory and is then ``os.replace``d into place, so a reader never sees a
partial file and concurrent writers are last-write-wins. Within one process
the read-modify-write of a given file is serialized; separate processes
sharing one JSON file can still drop each other's unrelated keys, so
concurrent importers should share a ``SI_CACHE_URL`` store instead. SQL
writes are one transaction per operation.
"""

from __future__ import annotations

import contextlib
import json
import os
import tempfile
import threading
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import DateTime, Float, String, create_engine, delete, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from .config import Settings
from .logging_setup import get_logger
from .models import CacheEntry, CacheFile
from .normalizers import normalize_description

# Bump only when the on-disk JSON shape changes.
SCHEMA_VERSION: int = 1

DEFAULT_RETENTION = timedelta(days=30)
DEFAULT_MAX_ENTRIES = 1000
CACHE_FILENAME = "categorization_cache.json"

Clock = Callable[[], datetime]

_logger = get_logger("statement_ingest.cache")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _aware(ts: datetime) -> datetime:
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=UTC)


class CacheStore(Protocol):
    """Keyed storage for :class:`CacheEntry` records."""

    def get(self, key: str) -> CacheEntry | None: ...

    def put(self, entry: CacheEntry) -> None: ...

    def delete_many(self, keys: Iterable[str]) -> None: ...

    def entries(self) -> list[CacheEntry]: ...

    def count(self) -> int: ...


# ----------------------------------------------------------------------------
# Stores
# ----------------------------------------------------------------------------


class MemoryCacheStore:
    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}

    def get(self, key: str) -> CacheEntry | None:
        return self._entries.get(key)

    def put(self, entry: CacheEntry) -> None:
        self._entries[entry.normalized_key] = entry

    def delete_many(self, keys: Iterable[str]) -> None:
        for key in keys:
            self._entries.pop(key, None)

    def entries(self) -> list[CacheEntry]:
        return list(self._entries.values())

    def count(self) -> int:
        return len(self._entries)


_path_locks: dict[Path, threading.Lock] = {}
_path_locks_guard = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
    key = path.resolve()
    with _path_locks_guard:
        return _path_locks.setdefault(key, threading.Lock())


class JsonFileCacheStore:
    """Whole-document JSON store; every mutation rewrites the file atomically."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)
        self._lock = _lock_for(self.path)

    @classmethod
    def in_dir(cls, root: str | os.PathLike[str]) -> JsonFileCacheStore:
        return cls(Path(root) / CACHE_FILENAME)

    def _read(self) -> dict[str, CacheEntry]:
        if not self.path.exists():
            return {}
        try:
            text = self.path.read_text(encoding="utf-8")
            parsed = CacheFile.model_validate_json(text)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError, PydanticValidationError):
            _logger.debug(
                "cache:read_failed; treating as empty path=%s",
                os.fspath(self.path),
                exc_info=True,
            )
            return {}
        if parsed.schema_version != SCHEMA_VERSION:
            return {}
        return dict(parsed.entries)

    def _write(self, entries: dict[str, CacheEntry]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        doc = CacheFile(schema_version=SCHEMA_VERSION, entries=entries)
        payload = json.dumps(doc.model_dump(mode="json"), ensure_ascii=False, separators=(",", ":"))
        tmp = tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=self.path.parent,
            prefix=self.path.name + ".",
            suffix=".tmp",
            delete=False,
        )
        tmp_path = Path(tmp.name)
        try:
            with tmp:
                tmp.write(payload)
            os.replace(tmp_path, self.path)
        except Exception:
            with contextlib.suppress(FileNotFoundError):
                tmp_path.unlink()
            raise

    def get(self, key: str) -> CacheEntry | None:
        return self._read().get(key)

    def put(self, entry: CacheEntry) -> None:
        with self._lock:
            entries = self._read()
            entries[entry.normalized_key] = entry
            self._write(entries)

    def delete_many(self, keys: Iterable[str]) -> None:
        with self._lock:
            entries = self._read()
            removed = [k for k in keys if entries.pop(k, None) is not None]
            if removed:
                self._write(entries)

    def entries(self) -> list[CacheEntry]:
        return list(self._read().values())

    def count(self) -> int:
        return len(self._read())


class _Base(DeclarativeBase):
    pass


class CategoryCacheRow(_Base):
    __tablename__ = "category_cache"

    normalized_key: Mapped[str] = mapped_column(String, primary_key=True)
    category: Mapped[str] = mapped_column(String, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    # Stored as UTC; SQLite drops tzinfo on the way back.
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def to_entry(self) -> CacheEntry:
        return CacheEntry(
            normalized_key=self.normalized_key,
            category=self.category,
            confidence=self.confidence,
            timestamp=_aware(self.timestamp),
        )


class SqlCacheStore:
    """Cache rows in a relational database via SQLAlchemy."""

    def __init__(self, database_url: str | None = None, *, engine: Engine | None = None) -> None:
        if engine is None:
            if not database_url:
                raise ValueError("SqlCacheStore requires a database_url or an engine")
            engine = create_engine(database_url, pool_pre_ping=True)
        self.engine = engine
        self._session_maker = sessionmaker(bind=engine, expire_on_commit=False, class_=Session)
        _Base.metadata.create_all(engine)

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Provide a transactional scope around a series of operations."""

        session = self._session_maker()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get(self, key: str) -> CacheEntry | None:
        with self.session_scope() as s:
            row = s.get(CategoryCacheRow, key)
            return row.to_entry() if row is not None else None

    def put(self, entry: CacheEntry) -> None:
        with self.session_scope() as s:
            s.merge(
                CategoryCacheRow(
                    normalized_key=entry.normalized_key,
                    category=entry.category,
                    confidence=entry.confidence,
                    timestamp=entry.timestamp.astimezone(UTC),
                )
            )

    def delete_many(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if not keys:
            return
        with self.session_scope() as s:
            s.execute(delete(CategoryCacheRow).where(CategoryCacheRow.normalized_key.in_(keys)))

    def entries(self) -> list[CacheEntry]:
        with self.session_scope() as s:
            rows = s.scalars(select(CategoryCacheRow)).all()
            return [r.to_entry() for r in rows]

    def count(self) -> int:
        with self.session_scope() as s:
            return int(s.scalar(select(func.count()).select_from(CategoryCacheRow)) or 0)


def open_cache_store(settings: Settings) -> CacheStore:
    """Return the store selected by ``settings`` (SQL when a URL is set)."""

    if settings.cache_url:
        return SqlCacheStore(settings.cache_url)
    return JsonFileCacheStore.in_dir(settings.resolved_cache_dir())


# ----------------------------------------------------------------------------
# Policy
# ----------------------------------------------------------------------------


class CategorizationCache:
    """Expiring, capacity-bounded description -> category lookup.

    Store failures never reach the caller: a failed read is a miss and a
    failed write is logged and dropped.
    """

    def __init__(
        self,
        store: CacheStore | None = None,
        *,
        clock: Clock = _utcnow,
        retention: timedelta = DEFAULT_RETENTION,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.store: CacheStore = store if store is not None else MemoryCacheStore()
        self.clock = clock
        self.retention = retention
        self.max_entries = max_entries

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: object) -> CategorizationCache:
        return cls(open_cache_store(settings), **kwargs)  # type: ignore[arg-type]

    def get(self, description: str) -> CacheEntry | None:
        """Return the live entry for ``description``; expired entries are evicted."""

        key = normalize_description(description)
        if not key:
            return None
        try:
            entry = self.store.get(key)
            if entry is None:
                return None
            if _aware(self.clock()) - _aware(entry.timestamp) > self.retention:
                self.store.delete_many([key])
                _logger.debug("cache:expired key=%s", key)
                return None
        except Exception:  # noqa: BLE001 - an unreadable cache is a miss
            _logger.debug("cache:get_failed key=%s", key, exc_info=True)
            return None
        return entry

    def put(self, description: str, category: str, confidence: float) -> None:
        """Record ``category`` for ``description``, overwriting any prior entry."""

        key = normalize_description(description)
        if not key or not category:
            return
        entry = CacheEntry(
            normalized_key=key,
            category=category,
            confidence=min(1.0, max(0.0, float(confidence))),
            timestamp=_aware(self.clock()),
        )
        try:
            self.store.put(entry)
            self._evict_overflow()
        except Exception:  # noqa: BLE001 - a failed write never fails categorization
            _logger.warning("cache:put_failed key=%s", key, exc_info=True)

    def _evict_overflow(self) -> None:
        overflow = self.store.count() - self.max_entries
        if overflow <= 0:
            return
        oldest = sorted(self.store.entries(), key=lambda e: _aware(e.timestamp))[:overflow]
        self.store.delete_many(e.normalized_key for e in oldest)
        _logger.debug("cache:evicted count=%d", len(oldest))


__all__ = [
    "DEFAULT_MAX_ENTRIES",
    "DEFAULT_RETENTION",
    "CacheStore",
    "CategorizationCache",
    "CategoryCacheRow",
    "JsonFileCacheStore",
    "MemoryCacheStore",
    "SqlCacheStore",
    "open_cache_store",
]
