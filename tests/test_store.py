from pathlib import Path

import pytest

from evvl.errors import StoreIOError
from evvl.storage.fs import JsonDocumentStore


def test_save_then_load_round_trips(tmp_path: Path) -> None:
    store = JsonDocumentStore(tmp_path / "store.json")
    value = [{"id": "a", "name": "Ünïcode ✓", "nested": {"n": 1}}]

    store.save("evvl_projects_v2", value)

    assert store.load("evvl_projects_v2") == value
    assert store.keys() == ["evvl_projects_v2"]


def test_save_keeps_other_keys(tmp_path: Path) -> None:
    store = JsonDocumentStore(tmp_path / "store.json")
    store.save("first", [1])
    store.save("second", [2])
    store.save("first", [3])

    assert store.load("first") == [3]
    assert store.load("second") == [2]


def test_missing_file_loads_nothing(tmp_path: Path) -> None:
    store = JsonDocumentStore(tmp_path / "nope" / "store.json")

    assert store.load("anything") is None
    assert store.keys() == []


def test_invalid_json_is_treated_as_empty(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    path.write_text("{not json", encoding="utf-8")
    store = JsonDocumentStore(path)

    assert store.load("evvl_projects_v2") is None

    store.save("evvl_projects_v2", [])
    assert store.load("evvl_projects_v2") == []


def test_non_object_document_is_treated_as_empty(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    path.write_text("[1, 2, 3]", encoding="utf-8")

    assert JsonDocumentStore(path).keys() == []


def test_save_creates_parent_and_leaves_no_temp_files(tmp_path: Path) -> None:
    path = tmp_path / "home" / "store.json"
    store = JsonDocumentStore(path)

    store.save("k", {"v": True})

    assert path.exists()
    assert [p.name for p in path.parent.iterdir()] == ["store.json"]


def test_save_wraps_filesystem_errors(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("a file, not a directory", encoding="utf-8")
    store = JsonDocumentStore(blocker / "store.json")

    with pytest.raises(StoreIOError):
        store.save("k", [])


def test_save_wraps_serialization_errors(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    store = JsonDocumentStore(path)
    store.save("k", [1])

    with pytest.raises(StoreIOError):
        store.save("k", {1, 2})

    assert store.load("k") == [1]
