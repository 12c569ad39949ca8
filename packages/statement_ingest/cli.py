# ruff: noqa: I001
"""CLI for the ``statement_ingest`` package.

This module exposes callable command handlers (``cmd_parse``, ``cmd_import``)
and a Typer-based console interface. Environment variables (notably
``SI_API_KEY``) are loaded from a local ``.env`` using ``python-dotenv`` before
delegating to command logic. Business logic lives in
``statement_ingest.pipeline`` and related modules.

Both commands print one JSON document to stdout and exit with status 1 when
no transactions were recovered.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import typer
from dotenv import load_dotenv
from typer.models import OptionInfo

from .config import Settings
from .logging_setup import configure_logging


def _emit(doc: dict[str, Any]) -> None:
    typer.echo(json.dumps(doc, ensure_ascii=False, indent=2))


def _load_settings() -> Settings | None:
    try:
        return Settings.from_env()
    except ValueError as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return None


def cmd_parse(path: str, *, use_delegate: bool = True) -> int:
    """Parse ``path`` and print raw transactions plus diagnostics."""

    from .extraction import DelegateExtractor
    from .pipeline import parse_file

    settings = _load_settings()
    if settings is None:
        return 2

    extractor = DelegateExtractor(settings=settings) if use_delegate else None
    result = parse_file(path, extractor=extractor, use_delegate=use_delegate)
    _emit(
        {
            "transactions": [tx.to_dict() for tx in result.transactions],
            "errors": result.errors,
        }
    )
    return 0 if result.transactions else 1


def cmd_import(
    path: str,
    *,
    use_delegate: bool = True,
    cache_dir: Path | None = None,
    as_entries: bool = False,
) -> int:
    """Parse, categorize and print the transactions found in ``path``.

    With ``as_entries`` the output is the storage handoff: entries grouped
    by ``YYYY-MM`` month key.
    """

    from .categorize import CategorizationEngine
    from .errors import ValidationError
    from .pipeline import group_by_month, import_file, to_storage_entries

    settings = _load_settings()
    if settings is None:
        return 2
    if cache_dir is not None:
        settings = settings.with_overrides(cache_dir=cache_dir)

    engine = CategorizationEngine.from_settings(settings, use_delegate=use_delegate)
    result = import_file(path, engine=engine, use_delegate=use_delegate)

    if as_entries:
        try:
            grouped = group_by_month(to_storage_entries(result.transactions))
        except ValidationError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        _emit(
            {
                "months": {k: [e.to_dict() for e in v] for k, v in grouped.items()},
                "errors": result.errors,
            }
        )
    else:
        _emit(
            {
                "transactions": [tx.to_dict() for tx in result.transactions],
                "errors": result.errors,
            }
        )
    return 0 if result.transactions else 1


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Import bank statements (CSV, PDF or plain text) and categorize their transactions. "
        "Loads SI_API_KEY and other settings from a local .env before running."
    ),
)

# Module-level option objects to satisfy ruff B008 (no calls in parameter
# defaults).
PATH_ARGUMENT = typer.Argument(
    ...,
    help="Statement file: .csv or .tsv exports, .pdf documents, anything else as text.",
    dir_okay=False,
    file_okay=True,
    exists=False,  # the handler reports unreadable files as errors
)
NO_DELEGATE_OPTION: OptionInfo = typer.Option(
    False, "--no-delegate", help="Never call the generative delegate; rules and cache only."
)


@app.command("parse")
def parse_cmd(
    path: Path = PATH_ARGUMENT,
    *,
    no_delegate: bool = NO_DELEGATE_OPTION,
) -> None:
    """Print the raw transactions recovered from a statement."""

    raise typer.Exit(cmd_parse(str(path), use_delegate=not no_delegate))


@app.command("import")
def import_cmd(
    path: Path = PATH_ARGUMENT,
    *,
    no_delegate: bool = NO_DELEGATE_OPTION,
    cache_dir: Path | None = typer.Option(
        None, help="Override SI_CACHE_DIR for the categorization cache."
    ),
    as_entries: bool = typer.Option(
        False, "--as-entries", help="Print storage entries grouped by month."
    ),
) -> None:
    """Parse, deduplicate and categorize a statement."""

    raise typer.Exit(
        cmd_import(
            str(path),
            use_delegate=not no_delegate,
            cache_dir=cache_dir,
            as_entries=as_entries,
        )
    )


@app.callback()
def _root(
    log_level: str | None = typer.Option(
        None, help="Logging level (falls back to STATEMENT_INGEST_LOG_LEVEL, then INFO)."
    ),
) -> None:
    """Load ``.env`` from the current directory and configure logging."""

    # override=False keeps variables already set in the environment
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging(log_level)


if __name__ == "__main__":  # pragma: no cover
    app()
