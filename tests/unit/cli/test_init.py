"""Tests for caseforge init."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
import yaml
from typer.testing import CliRunner

from caseforge.cli.main import app
from caseforge.db.connection import Database
from caseforge.db.repository import Repository

runner = CliRunner()


@pytest.fixture
def global_cfg(tmp_path: Path):
    target = tmp_path / "global-config.yaml"
    with patch("caseforge.cli.init.ensure_global_config", return_value=target) as mock_ensure:
        yield mock_ensure


def test_init_provisions_store(tmp_path, global_cfg):
    project = tmp_path / "proj"
    result = runner.invoke(app, ["init", str(project)])

    assert result.exit_code == 0, result.output
    db_path = project / ".caseforge.db"
    assert db_path.exists()
    with Database(db_path) as conn:
        repo = Repository(conn)
        assert repo.list_collections() == ["testcases"]
        kinds = {i.name: i.kind for i in repo.list_search_indexes("testcases")}
    assert kinds == {"lexical_index": "lexical", "vector_index": "vector"}
    global_cfg.assert_called_once()


def test_init_writes_project_yaml(tmp_path, global_cfg):
    result = runner.invoke(app, ["init", str(tmp_path), "--collection", "stories"])
    assert result.exit_code == 0, result.output
    data = yaml.safe_load((tmp_path / "caseforge.yaml").read_text(encoding="utf-8"))
    assert data["store"]["collection"] == "stories"
    assert data["retrieval"]["fusion"] == "weighted"


def test_init_keeps_existing_yaml(tmp_path, global_cfg):
    (tmp_path / "caseforge.yaml").write_text("store:\n  collection: mine\n", encoding="utf-8")
    result = runner.invoke(app, ["init", str(tmp_path)])
    assert result.exit_code == 0, result.output
    assert "already exists" in result.output
    with Database(tmp_path / ".caseforge.db") as conn:
        assert Repository(conn).list_collections() == ["mine"]


def test_init_rerun_is_safe(tmp_path, global_cfg):
    assert runner.invoke(app, ["init", str(tmp_path)]).exit_code == 0
    result = runner.invoke(app, ["init", str(tmp_path)])
    assert result.exit_code == 0, result.output
    with Database(tmp_path / ".caseforge.db") as conn:
        assert len(Repository(conn).list_search_indexes("testcases")) == 2


def test_init_custom_db_path(tmp_path, global_cfg):
    result = runner.invoke(app, ["init", str(tmp_path), "--db", "data/store.db"])
    assert result.exit_code == 0, result.output
    assert (tmp_path / "data" / "store.db").exists()


def test_init_invalid_config_exits(tmp_path, global_cfg):
    (tmp_path / "caseforge.yaml").write_text("ingestion:\n  concurrency: 0\n", encoding="utf-8")
    result = runner.invoke(app, ["init", str(tmp_path)])
    assert result.exit_code == 1
    assert "Invalid configuration" in result.output
