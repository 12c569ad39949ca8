"""Runtime settings for the ingestion pipeline.

Settings are read from the process environment by :meth:`Settings.from_env`.
Nothing is read at import time; entrypoints load a local ``.env`` with
``python-dotenv`` before building settings.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, replace
from pathlib import Path

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "meta-llama/llama-3.2-3b-instruct:free"
DEFAULT_TIMEOUT_SECONDS = 90.0
DEFAULT_CHUNK_SIZE = 12_000
DEFAULT_BATCH_SIZE = 10
EXTRACTION_TEMPERATURE = 0.1
CATEGORIZATION_TEMPERATURE = 0.3


def _get_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if value <= 0:
        raise ValueError(f"{name} must be a positive integer, got {value}")
    return value


def _get_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw.strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def _get_str(env: Mapping[str, str], *names: str) -> str | None:
    for name in names:
        raw = env.get(name)
        if raw and raw.strip():
            return raw.strip()
    return None


@dataclass(frozen=True, slots=True)
class Settings:
    """Delegate, chunking and cache settings.

    ``api_key`` being ``None`` means the generative delegate is not
    configured; every tier that does not need it keeps working.
    """

    api_key: str | None = None
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    chunk_size: int = DEFAULT_CHUNK_SIZE
    batch_size: int = DEFAULT_BATCH_SIZE
    cache_dir: Path | None = None
    cache_url: str | None = None

    @property
    def delegate_configured(self) -> bool:
        return bool(self.api_key)

    def resolved_cache_dir(self) -> Path:
        """Return the JSON cache root, defaulting to ``./.cache`` under the CWD."""

        if self.cache_dir is not None:
            return self.cache_dir.expanduser().resolve()
        return (Path.cwd() / ".cache").resolve()

    def with_overrides(self, **changes: object) -> Settings:
        return replace(self, **changes)  # type: ignore[arg-type]

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if env is None else env
        cache_dir = _get_str(env, "SI_CACHE_DIR")
        return cls(
            api_key=_get_str(env, "SI_API_KEY", "OPENROUTER_API_KEY"),
            base_url=_get_str(env, "SI_BASE_URL") or DEFAULT_BASE_URL,
            model=_get_str(env, "SI_MODEL") or DEFAULT_MODEL,
            timeout_seconds=_get_float(env, "SI_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS),
            chunk_size=_get_int(env, "SI_CHUNK_SIZE", DEFAULT_CHUNK_SIZE),
            batch_size=_get_int(env, "SI_BATCH_SIZE", DEFAULT_BATCH_SIZE),
            cache_dir=Path(cache_dir) if cache_dir else None,
            cache_url=_get_str(env, "SI_CACHE_URL"),
        )


__all__ = [
    "CATEGORIZATION_TEMPERATURE",
    "DEFAULT_BASE_URL",
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_MODEL",
    "DEFAULT_TIMEOUT_SECONDS",
    "EXTRACTION_TEMPERATURE",
    "Settings",
]
