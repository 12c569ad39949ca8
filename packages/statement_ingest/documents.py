"""Document-text extraction capability.

The pipeline only needs ``bytes -> str``; how the text is produced is up to
the :class:`TextExtractor` passed in. Failures are reported as
:class:`~statement_ingest.errors.TextExtractionError`.
"""

from __future__ import annotations

import io
from typing import Protocol

from .errors import TextExtractionError
from .logging_setup import get_logger

_logger = get_logger("statement_ingest.documents")


class TextExtractor(Protocol):
    def extract_text(self, data: bytes) -> str: ...


class PlainTextExtractor:
    """Treat the document as already-extracted UTF-8 text."""

    def extract_text(self, data: bytes) -> str:
        try:
            return data.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise TextExtractionError(f"document is not UTF-8 text: {e}") from e


class PdfPlumberTextExtractor:
    """Extract text from a PDF with ``pdfplumber`` (the ``pdf`` extra).

    Page texts are joined with blank lines. Pages without a text layer
    contribute nothing, so an image-only PDF yields an empty string.
    """

    def extract_text(self, data: bytes) -> str:
        try:
            import pdfplumber
        except ImportError as e:
            raise TextExtractionError(
                "PDF support requires pdfplumber; install statement-ingest[pdf]"
            ) from e

        try:
            with pdfplumber.open(io.BytesIO(data)) as pdf:
                pages = [page.extract_text() or "" for page in pdf.pages]
        except Exception as e:  # noqa: BLE001 - pdfminer raises many unrelated types
            raise TextExtractionError(f"could not read PDF: {e}") from e

        text = "\n\n".join(p for p in pages if p.strip())
        _logger.info("documents:pdf_extracted pages=%d chars=%d", len(pages), len(text))
        return text


__all__ = ["PdfPlumberTextExtractor", "PlainTextExtractor", "TextExtractor"]
