"""Pytest configuration for test isolation.

The categorization cache persists under a project-relative directory
(``./.cache``) by default, and the generative delegate is enabled whenever an
API key is present in the environment. Either would make tests depend on the
machine they run on: a cache written by an earlier test can satisfy a later
one without touching the stubbed client, and a developer's real key would
send requests over the network.

To keep tests hermetic, an autouse fixture points the cache root at a
per-test temporary directory and removes delegate credentials.
"""

from __future__ import annotations

import os
from datetime import date
from pathlib import Path

import pytest

FIXED_TODAY = date(2024, 3, 1)


@pytest.fixture(autouse=True)
def _isolate_environment(
    tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Force a per-test cache root and an unconfigured delegate."""

    cache_root: Path = tmp_path_factory.mktemp("cache")
    monkeypatch.setenv("SI_CACHE_DIR", os.fspath(cache_root))
    for name in ("SI_API_KEY", "OPENROUTER_API_KEY", "SI_CACHE_URL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def today():
    return lambda: FIXED_TODAY
