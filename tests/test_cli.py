from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from statement_ingest.cli import app, cmd_import, cmd_parse

CSV = (
    "Date,Description,Amount\n"
    "2024-01-15,Checkers Sandton,-450.00\n"
    "2024-02-03,Engen Garage,120.50\n"
)


@pytest.fixture
def runner(tmp_path, monkeypatch) -> CliRunner:
    # Keep any developer .env out of the run.
    monkeypatch.chdir(tmp_path)
    return CliRunner()


def test_parse_prints_raw_transactions(runner, tmp_path):
    path = tmp_path / "statement.csv"
    path.write_text(CSV, encoding="utf-8")

    result = runner.invoke(app, ["parse", str(path), "--no-delegate"])

    assert result.exit_code == 0
    doc = json.loads(result.stdout)
    assert doc["errors"] == []
    assert doc["transactions"][0] == {
        "date": "2024-01-15",
        "description": "Checkers Sandton",
        "amount": "450.00",
        "reference": None,
    }


def test_import_groups_entries_by_month(runner, tmp_path):
    path = tmp_path / "statement.csv"
    path.write_text(CSV, encoding="utf-8")

    result = runner.invoke(
        app,
        ["import", str(path), "--no-delegate", "--as-entries", "--cache-dir", str(tmp_path / "c")],
    )

    assert result.exit_code == 0
    doc = json.loads(result.stdout)
    assert doc["months"] == {
        "2024-01": [
            {
                "date": "2024-01-15",
                "amount": "450.00",
                "category": "groceries",
                "note": "Checkers Sandton",
            }
        ],
        "2024-02": [
            {
                "date": "2024-02-03",
                "amount": "120.50",
                "category": "petrol",
                "note": "Engen Garage",
            }
        ],
    }
    assert (tmp_path / "c" / "categorization_cache.json").exists()


def test_import_without_transactions_exits_nonzero(runner, tmp_path):
    path = tmp_path / "empty.csv"
    path.write_text("", encoding="utf-8")

    result = runner.invoke(app, ["import", str(path), "--no-delegate"])

    assert result.exit_code == 1
    assert json.loads(result.stdout)["errors"] == ["CSV file is empty"]


def test_invalid_configuration_exits_with_usage_error(monkeypatch, tmp_path, capsys):
    monkeypatch.setenv("SI_BATCH_SIZE", "zero")

    code = cmd_import(str(tmp_path / "statement.csv"), use_delegate=False)

    assert code == 2
    assert "SI_BATCH_SIZE must be an integer" in capsys.readouterr().err


def test_parse_reports_invalid_configuration(monkeypatch, tmp_path, capsys):
    monkeypatch.setenv("SI_CHUNK_SIZE", "abc")
    path = tmp_path / "statement.txt"
    path.write_text("15/01/2024 CHECKERS R450.00\n", encoding="utf-8")

    code = cmd_parse(str(path))

    assert code == 2
    assert "SI_CHUNK_SIZE must be an integer" in capsys.readouterr().err
