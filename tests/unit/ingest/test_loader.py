"""Tests for JSON record loading."""

from __future__ import annotations

import json

import pytest

from caseforge.ingest.loader import load_records


def _write(tmp_path, data, name="cases.json"):
    path = tmp_path / name
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_top_level_array(tmp_path):
    path = _write(
        tmp_path,
        [
            {"id": "TC-1", "title": "Login", "module": "Auth", "priority": 1},
            {"id": "TC-2", "title": "Logout", "automated": True},
        ],
    )
    records = load_records(path)
    assert [r.record_id for r in records] == ["TC-1", "TC-2"]
    assert records[0].title == "Login"
    assert records[0].fields == {"module": "Auth", "priority": "1"}
    assert records[1].fields == {"automated": "true"}
    assert records[0].source_file == "cases.json"


def test_container_key(tmp_path):
    path = _write(tmp_path, {"userStories": [{"id": "US-1", "title": "As a user"}]})
    assert [r.record_id for r in load_records(path)] == ["US-1"]


def test_lists_joined_and_objects_kept_as_json(tmp_path):
    path = _write(
        tmp_path,
        [{"id": "TC-1", "steps": ["Open app", "Tap login"], "meta": {"owner": "qa"}}],
    )
    rec = load_records(path)[0]
    assert rec.fields["steps"] == "Open app, Tap login"
    assert rec.fields["meta"] == '{"owner":"qa"}'


def test_embedding_fields_ignored(tmp_path):
    path = _write(tmp_path, [{"id": "TC-1", "embedding": [0.1], "embeddingMetadata": {}}])
    rec = load_records(path)[0]
    assert rec.fields == {}
    assert rec.embedding is None


def test_numeric_id_accepted(tmp_path):
    path = _write(tmp_path, [{"id": 42}])
    assert load_records(path)[0].record_id == "42"


def test_tracker_story_shape(tmp_path):
    path = _write(
        tmp_path,
        {
            "userStories": [
                {
                    "key": "US-1",
                    "summary": "As a user I can log in",
                    "status": {"name": "Open"},
                    "priority": {"name": "High", "id": "2"},
                    "assignee": {"displayName": "Sam Lee", "accountId": "a1"},
                    "components": [{"name": "Auth"}, {"name": "Web"}],
                    "storyPoints": 3,
                }
            ]
        },
        name="stories.json",
    )
    rec = load_records(path)[0]
    assert rec.record_id == "US-1"
    assert rec.title == "As a user I can log in"
    assert rec.fields == {
        "status": "Open",
        "priority": "High",
        "assignee": "Sam Lee",
        "components": "Auth, Web",
        "storyPoints": "3",
    }


def test_id_preferred_over_key(tmp_path):
    path = _write(tmp_path, [{"id": "TC-9", "key": "US-9", "title": "", "summary": "Fallback"}])
    rec = load_records(path)[0]
    assert rec.record_id == "TC-9"
    assert rec.title == "Fallback"
    assert "key" not in rec.fields


def test_missing_id_rejected(tmp_path):
    path = _write(tmp_path, [{"title": "no id"}])
    with pytest.raises(ValueError, match=r"\[0\]: missing 'id' \(or 'key'\)"):
        load_records(path)


def test_non_object_item_rejected(tmp_path):
    path = _write(tmp_path, ["TC-1"])
    with pytest.raises(ValueError, match="expected an object"):
        load_records(path)


def test_wrong_shape_rejected(tmp_path):
    path = _write(tmp_path, {"cases": []})
    with pytest.raises(ValueError, match="expected a JSON array"):
        load_records(path)


def test_invalid_json_raises_value_error(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("[{", encoding="utf-8")
    with pytest.raises(ValueError):
        load_records(path)
