"""Statement-text extraction through the generative delegate.

Flow for one document:

1. :func:`chunk_text` splits the text on line boundaries into chunks under the
   configured threshold (``SI_CHUNK_SIZE``, 12,000 characters by default).
2. Each chunk is sent on its own, in order. A reply is decoded by
   :func:`parse_extraction_response` and every item is revalidated through
   :class:`~statement_ingest.models.RawExternalRecord`.
3. A failure on the first chunk propagates as a typed
   :class:`~statement_ingest.errors.DelegateError`. A failure on any later chunk
   is logged and recorded as a diagnostic, and that chunk contributes nothing.
4. Results from all chunks are deduplicated (exact description, same date,
   amounts within 0.01).
"""

from __future__ import annotations

import json
import re
import time
from collections.abc import Sequence
from datetime import date
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from .config import EXTRACTION_TEMPERATURE, Settings
from .duplicates import count_removed, dedupe
from .errors import DelegateError, DelegateMalformedResponse, DelegateNotConfigured
from .llm_client import GenerativeClient
from .logging_setup import get_logger
from .models import ParseResult, RawExternalRecord, RawTransaction
from .normalizers import Today
from .prompting import EXTRACTION_SYSTEM, build_extraction_prompt

_ARRAY_RE = re.compile(r"\[[\s\S]*\]")

_logger = get_logger("statement_ingest.extraction")


def chunk_text(text: str, *, max_chars: int) -> list[str]:
    """Split ``text`` into chunks of whole lines, each under ``max_chars``.

    Text that already fits is returned as a single chunk. A single line longer
    than ``max_chars`` becomes its own chunk rather than being cut.
    """

    if max_chars <= 0:
        raise ValueError("max_chars must be positive")
    if len(text) <= max_chars:
        return [text]

    chunks: list[str] = []
    current = ""
    for line in text.split("\n"):
        if current and len(current) + len(line) + 1 > max_chars:
            chunks.append(current)
            current = ""
        current += line + "\n"
    if current.strip():
        chunks.append(current)
    return chunks


def parse_extraction_response(content: str) -> list[Any]:
    """Return the list of raw items found in a delegate reply.

    The first ``[...]`` span is tried first (replies often wrap the array in
    prose or code fences), then the whole body as either an array or an
    object with a ``transactions`` array. Raises
    :class:`DelegateMalformedResponse` when neither yields a list.
    """

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
    except (json.JSONDecodeError, TypeError) as e:
        raise DelegateMalformedResponse(f"reply is not valid JSON: {e}") from e
    if isinstance(decoded, list):
        return decoded
    if isinstance(decoded, dict) and isinstance(decoded.get("transactions"), list):
        return decoded["transactions"]
    raise DelegateMalformedResponse("reply JSON does not contain a transactions array")


def revalidate_items(items: Sequence[Any], *, today: Today = date.today) -> list[RawTransaction]:
    """Convert untrusted reply items to transactions, dropping unusable ones."""

    out: list[RawTransaction] = []
    dropped = 0
    for item in items:
        try:
            record = RawExternalRecord.model_validate(item)
        except PydanticValidationError:
            dropped += 1
            continue
        tx = record.to_transaction(today=today)
        if tx is None:
            dropped += 1
            continue
        out.append(tx)
    if dropped:
        _logger.debug("extract:items_dropped dropped=%d kept=%d", dropped, len(out))
    return out


class DelegateExtractor:
    """Chunked extraction as a fold over chunks producing ``(transactions, errors)``."""

    def __init__(
        self,
        client: GenerativeClient | None = None,
        *,
        settings: Settings | None = None,
        today: Today = date.today,
    ) -> None:
        if settings is None:
            settings = client.settings if client is not None else Settings.from_env()
        self.settings = settings
        self.client = client if client is not None else GenerativeClient(settings)
        self.today = today

    @property
    def configured(self) -> bool:
        return self.client.configured

    def _extract_chunk(self, chunk: str, index: int, count: int) -> list[RawTransaction]:
        prompt = build_extraction_prompt(chunk, chunk_index=index, chunk_count=count)
        content = self.client.complete(
            prompt, system=EXTRACTION_SYSTEM, temperature=EXTRACTION_TEMPERATURE
        )
        return revalidate_items(parse_extraction_response(content), today=self.today)

    def extract(self, text: str) -> ParseResult:
        """Extract transactions from ``text``.

        Raises :class:`DelegateError` when the delegate is not configured or
        the first chunk fails. Later chunk failures are returned in
        ``errors``.
        """

        if not self.configured:
            raise DelegateNotConfigured("generative delegate API key not configured")

        chunks = chunk_text(text, max_chars=self.settings.chunk_size)
        _logger.info(
            "extract:start chars=%d chunks=%d model=%s",
            len(text),
            len(chunks),
            self.settings.model,
        )

        result = ParseResult()
        for i, chunk in enumerate(chunks):
            t0 = time.perf_counter()
            try:
                found = self._extract_chunk(chunk, i, len(chunks))
            except DelegateError as e:
                dt_ms = (time.perf_counter() - t0) * 1000.0
                if i == 0:
                    _logger.error(
                        "extract:chunk_failed_terminal chunk=1/%d kind=%s latency_ms=%.2f",
                        len(chunks),
                        e.kind,
                        dt_ms,
                    )
                    raise
                _logger.warning(
                    "extract:chunk_failed chunk=%d/%d kind=%s latency_ms=%.2f",
                    i + 1,
                    len(chunks),
                    e.kind,
                    dt_ms,
                )
                result.errors.append(f"Extraction of part {i + 1} of {len(chunks)} failed: {e}")
                continue

            result.transactions.extend(found)
            _logger.info(
                "extract:chunk_done chunk=%d/%d items=%d latency_ms=%.2f",
                i + 1,
                len(chunks),
                len(found),
                (time.perf_counter() - t0) * 1000.0,
            )

        unique = dedupe(result.transactions)
        _logger.info(
            "extract:done transactions=%d duplicates_removed=%d",
            len(unique),
            count_removed(result.transactions, unique),
        )
        result.transactions = list(unique)
        return result


def extract_via_delegate(
    text: str,
    *,
    client: GenerativeClient | None = None,
    settings: Settings | None = None,
    today: Today = date.today,
) -> list[RawTransaction]:
    """Return the transactions the delegate finds in ``text``.

    Raises :class:`DelegateError` under the same rules as
    :meth:`DelegateExtractor.extract`.
    """

    return DelegateExtractor(client, settings=settings, today=today).extract(text).transactions


__all__ = [
    "DelegateExtractor",
    "chunk_text",
    "extract_via_delegate",
    "parse_extraction_response",
    "revalidate_items",
]
