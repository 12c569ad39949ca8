"""Client for the generative text delegate.

The delegate is any OpenAI-compatible chat-completions endpoint (OpenRouter
by default). This module owns the translation from SDK failures to the
:mod:`statement_ingest.errors` taxonomy so callers can choose a fallback by
error kind:

- missing credentials -> :class:`DelegateNotConfigured` (no request is made)
- HTTP 429, either raised or embedded in the body -> :class:`DelegateRateLimited`
- request timeout -> :class:`DelegateTimeout`
- a body without message text -> :class:`DelegateMalformedResponse`
- anything else -> :class:`DelegateFailure`

SDK retries are disabled; a rate limit must surface to the caller.
"""

from __future__ import annotations

import time
from typing import Any

from openai import APIConnectionError, APIStatusError, APITimeoutError, OpenAI, RateLimitError

from .config import Settings
from .errors import (
    DelegateError,
    DelegateFailure,
    DelegateMalformedResponse,
    DelegateNotConfigured,
    DelegateRateLimited,
    DelegateTimeout,
)
from .logging_setup import get_logger

_logger = get_logger("statement_ingest.llm_client")


def _create_client(settings: Settings) -> OpenAI:
    return OpenAI(
        api_key=settings.api_key,
        base_url=settings.base_url,
        timeout=settings.timeout_seconds,
        max_retries=0,
    )


def _body_error(resp: Any) -> DelegateError | None:
    """Return a typed error for an error object embedded in a 200 response."""

    err = getattr(resp, "error", None)
    if err is None and isinstance(resp, dict):
        err = resp.get("error")
    if not err:
        return None
    if isinstance(err, dict):
        code = err.get("code")
        message = str(err.get("message") or "Unknown API error")
    else:
        code = getattr(err, "code", None)
        message = str(getattr(err, "message", None) or err)
    if code == 429 or str(code) == "429":
        return DelegateRateLimited(f"rate limited: {message}", status_code=429)
    return DelegateFailure(f"delegate error: {message}")


def _extract_message_text(resp: Any) -> str:
    """Return the first choice's message text from a chat-completions result."""

    body_err = _body_error(resp)
    if body_err is not None:
        raise body_err

    choices = getattr(resp, "choices", None)
    if not choices:
        raise DelegateMalformedResponse("response does not contain a choices array")
    message = getattr(choices[0], "message", None)
    content = getattr(message, "content", None)
    if isinstance(content, list):
        # Some providers return content parts; keep the text ones.
        content = "".join(
            str(getattr(part, "text", None) or (part.get("text") if isinstance(part, dict) else ""))
            for part in content
        )
    if not isinstance(content, str):
        raise DelegateMalformedResponse("response message has no text content")
    return content


def _translate(exc: Exception) -> DelegateError:
    if isinstance(exc, RateLimitError):
        return DelegateRateLimited(f"rate limited: {exc}", status_code=429)
    if isinstance(exc, APITimeoutError):
        return DelegateTimeout(f"request timed out: {exc}")
    if isinstance(exc, APIStatusError):
        if exc.status_code == 429:
            return DelegateRateLimited(f"rate limited: {exc}", status_code=429)
        return DelegateFailure(
            f"delegate error: {exc.status_code} {exc}", status_code=exc.status_code
        )
    if isinstance(exc, APIConnectionError):
        return DelegateFailure(f"connection failed: {exc}")
    if isinstance(exc, TimeoutError):
        return DelegateTimeout(f"request timed out: {exc}")
    sc = getattr(exc, "status_code", None)
    if sc == 429:
        return DelegateRateLimited(f"rate limited: {exc}", status_code=429)
    return DelegateFailure(
        f"delegate error: {exc}", status_code=sc if isinstance(sc, int) else None
    )


class GenerativeClient:
    """Send single-turn prompts to the configured model and return text."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings if settings is not None else Settings.from_env()
        self._client: OpenAI | None = None

    @property
    def configured(self) -> bool:
        return self.settings.delegate_configured

    def complete(self, prompt: str, *, temperature: float, system: str | None = None) -> str:
        """Return the model's text reply for ``prompt``.

        Raises a :class:`~statement_ingest.errors.DelegateError` subclass on
        any failure.
        """

        if not self.configured:
            raise DelegateNotConfigured("generative delegate API key not configured")
        if self._client is None:
            self._client = _create_client(self.settings)

        messages: list[dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        t0 = time.perf_counter()
        try:
            resp = self._client.chat.completions.create(
                model=self.settings.model,
                messages=messages,
                temperature=temperature,
                timeout=self.settings.timeout_seconds,
            )
        except DelegateError:
            raise
        except Exception as e:  # noqa: BLE001 - every SDK failure maps to a typed error
            dt_ms = (time.perf_counter() - t0) * 1000.0
            err = _translate(e)
            _logger.warning(
                "llm:request_failed kind=%s latency_ms=%.2f error=%s",
                err.kind,
                dt_ms,
                e.__class__.__name__,
            )
            raise err from e

        text = _extract_message_text(resp)
        _logger.debug(
            "llm:request_done latency_ms=%.2f chars=%d",
            (time.perf_counter() - t0) * 1000.0,
            len(text),
        )
        return text


__all__ = ["GenerativeClient"]
