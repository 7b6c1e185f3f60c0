"""Load test cases / user stories from JSON files into Records.

Accepted shapes:
  - a top-level array of objects
  - an object whose ``testCases``, ``userStories`` or ``records`` key holds
    such an array

``id`` and ``title`` map onto the core schema. Tracker exports name them
``key`` and ``summary`` instead, and both spellings are accepted. Every other
field goes into the open-ended ``fields`` map. List values are joined with
", ". Named references such as ``{"name": "Open"}`` or
``{"displayName": "Ana"}`` collapse to that name; any other nested object is
kept as compact JSON.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from caseforge.db.models import Record

_CONTAINER_KEYS = ("testCases", "userStories", "records")
_ID_KEYS = ("id", "key")
_TITLE_KEYS = ("title", "summary")
_NAME_KEYS = ("name", "displayName")
_SKIPPED = frozenset(_ID_KEYS + _TITLE_KEYS + ("embedding", "embeddingMetadata"))


def load_records(path: Path | str) -> list[Record]:
    """Parse *path* and return one Record per object.

    Raises:
        ValueError: If the file is not one of the accepted shapes, or an
            object has no usable ``id`` or ``key``.
    """
    path = Path(path)
    data = json.loads(path.read_text(encoding="utf-8"))
    items = _extract_items(data, path)
    return [_to_record(item, pos, path) for pos, item in enumerate(items)]


def _extract_items(data: Any, path: Path) -> list[Any]:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in _CONTAINER_KEYS:
            if isinstance(data.get(key), list):
                return data[key]
    raise ValueError(
        f"{path.name}: expected a JSON array of records "
        f"or an object with one of {list(_CONTAINER_KEYS)}"
    )


def _to_record(item: Any, pos: int, path: Path) -> Record:
    if not isinstance(item, dict):
        raise ValueError(f"{path.name}[{pos}]: expected an object, got {type(item).__name__}")
    record_id = _first_text(item, _ID_KEYS)
    if not record_id:
        raise ValueError(f"{path.name}[{pos}]: missing 'id' (or 'key')")

    fields: dict[str, str] = {}
    for key, value in item.items():
        if key in _SKIPPED:
            continue
        text = _as_text(value)
        if text:
            fields[key] = text
    return Record(
        record_id=record_id,
        title=_first_text(item, _TITLE_KEYS),
        fields=fields,
        source_file=path.name,
    )


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, list):
        return ", ".join(_as_text(v) for v in value if _as_text(v))
    if isinstance(value, dict):
        for key in _NAME_KEYS:
            if isinstance(value.get(key), str):
                return value[key]
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def _first_text(item: dict[str, Any], keys: tuple[str, ...]) -> str:
    for key in keys:
        text = _as_text(item.get(key)).strip()
        if text:
            return text
    return ""
