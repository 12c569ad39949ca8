"""Public interface for the ``statement_ingest`` package.

This module exposes the package's API functions and public models/types as the
stable import surface. There is no runtime logic here, only symbol re-exports.
"""

from .cache import CategorizationCache, JsonFileCacheStore, MemoryCacheStore, SqlCacheStore
from .categorize import CategorizationEngine, categorize
from .config import Settings
from .delimited import parse_delimited_file, parse_delimited_text
from .errors import (
    DelegateError,
    DelegateErrorKind,
    DelegateFailure,
    DelegateMalformedResponse,
    DelegateNotConfigured,
    DelegateRateLimited,
    DelegateTimeout,
    IngestError,
    RowLevelError,
    StructuralInputError,
    TextExtractionError,
    ValidationError,
)
from .extraction import DelegateExtractor, extract_via_delegate
from .locator import locate_transactions
from .models import (
    CacheEntry,
    CategorizationRequest,
    CategorizedTransaction,
    ImportResult,
    ParseResult,
    RawExternalRecord,
    RawTransaction,
    StorageEntry,
    Transactions,
)
from .normalizers import normalize, normalize_description, parse_amount, parse_date
from .pipeline import (
    group_by_month,
    import_file,
    import_statement,
    parse_document,
    parse_document_text,
    parse_file,
    to_storage_entries,
    validate_expense_amount,
)

__all__ = [
    # API
    "parse_delimited_text",
    "parse_delimited_file",
    "locate_transactions",
    "extract_via_delegate",
    "normalize",
    "categorize",
    "parse_document_text",
    "parse_document",
    "parse_file",
    "import_statement",
    "import_file",
    "to_storage_entries",
    "group_by_month",
    "validate_expense_amount",
    "parse_amount",
    "parse_date",
    "normalize_description",
    # Components
    "CategorizationCache",
    "CategorizationEngine",
    "DelegateExtractor",
    "JsonFileCacheStore",
    "MemoryCacheStore",
    "Settings",
    "SqlCacheStore",
    # Models / types
    "CacheEntry",
    "CategorizationRequest",
    "CategorizedTransaction",
    "ImportResult",
    "ParseResult",
    "RawExternalRecord",
    "RawTransaction",
    "StorageEntry",
    "Transactions",
    # Errors
    "DelegateError",
    "DelegateErrorKind",
    "DelegateFailure",
    "DelegateMalformedResponse",
    "DelegateNotConfigured",
    "DelegateRateLimited",
    "DelegateTimeout",
    "IngestError",
    "RowLevelError",
    "StructuralInputError",
    "TextExtractionError",
    "ValidationError",
]
