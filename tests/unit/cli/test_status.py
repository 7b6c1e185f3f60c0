"""Tests for caseforge status and the version commands."""

from __future__ import annotations

import asyncio

from typer.testing import CliRunner

from caseforge.cli.main import app
from caseforge.db.store import DocumentStore
from conftest import COLLECTION, make_record

runner = CliRunner()


# ---------------------------------------------------------------------------
# caseforge --version / version
# ---------------------------------------------------------------------------


def test_version_flag() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "caseforge" in result.output.lower()


def test_version_command() -> None:
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert result.output.startswith("caseforge ")


# ---------------------------------------------------------------------------
# caseforge status
# ---------------------------------------------------------------------------


def test_status_no_database(tmp_path) -> None:
    result = runner.invoke(app, ["status", "--db", str(tmp_path / "absent.db")])
    assert result.exit_code == 1
    assert "No database found" in result.output
    assert "caseforge init" in result.output


def test_status_shows_collection_and_counts(store, db_path) -> None:
    records = [
        make_record("TC-1", "Login", [1.0, 0.0, 0.0]),
        make_record("TC-2", "Logout"),
    ]
    asyncio.run(store.bulk_insert(COLLECTION, records))

    result = runner.invoke(app, ["status", "--db", str(db_path)])

    assert result.exit_code == 0, result.output
    assert COLLECTION in result.output
    assert "lexical_index" in result.output
    assert "vector_index" in result.output
    row = next(line for line in result.output.splitlines() if COLLECTION in line)
    assert "2" in row and "1" in row


def test_status_collection_without_indexes(db_path) -> None:
    DocumentStore(db_path).provision("bare")
    result = runner.invoke(app, ["status", "--db", str(db_path)])
    assert result.exit_code == 0, result.output
    assert "bare" in result.output
    assert "none" in result.output
