# tests/test_progress_store.py

from __future__ import annotations

import json
from pathlib import Path

import pytest

from material_uploader.progress.store import ProgressStore


def _update(store: ProgressStore, record_id: str, completed: int, total: int = 3) -> None:
    store.update(
        record_id,
        work_item_name="drama",
        date="2025-01-07",
        account="123",
        total_batches=total,
        completed_batches=completed,
    )


def test_checkpoints_survive_restart(tmp_path: Path) -> None:
    path = tmp_path / "progress.json"
    store = ProgressStore(path)
    _update(store, "rec1", 1)
    _update(store, "rec2", 2)

    reloaded = ProgressStore(path)
    cp = reloaded.get("rec1")
    assert cp is not None
    assert (cp.work_item_name, cp.completed_batches, cp.total_batches) == ("drama", 1, 3)
    assert cp.last_updated
    assert {c.record_id for c in reloaded.get_all()} == {"rec1", "rec2"}
    assert not path.with_suffix(".tmp").exists()


def test_update_overwrites_existing_checkpoint(tmp_path: Path) -> None:
    store = ProgressStore(tmp_path / "progress.json")
    _update(store, "rec1", 1)
    _update(store, "rec1", 2)

    assert len(store.get_all()) == 1
    assert store.get("rec1").completed_batches == 2


def test_update_rejects_completed_beyond_total(tmp_path: Path) -> None:
    store = ProgressStore(tmp_path / "progress.json")
    with pytest.raises(ValueError):
        _update(store, "rec1", 4, total=3)
    assert store.get("rec1") is None


def test_clear_and_clear_all(tmp_path: Path) -> None:
    path = tmp_path / "progress.json"
    store = ProgressStore(path)
    _update(store, "rec1", 1)
    _update(store, "rec2", 1)

    assert store.clear("rec1") is True
    assert store.clear("rec1") is False
    assert ProgressStore(path).get("rec1") is None

    assert store.clear_all() == 1
    assert ProgressStore(path).get_all() == []


def test_corrupt_file_starts_empty(tmp_path: Path) -> None:
    path = tmp_path / "progress.json"
    path.write_text("{not json", "utf-8")

    store = ProgressStore(path)
    assert store.get_all() == []

    _update(store, "rec1", 1)
    assert json.loads(path.read_text("utf-8"))[0]["record_id"] == "rec1"


def test_malformed_entries_are_skipped(tmp_path: Path) -> None:
    path = tmp_path / "progress.json"
    path.write_text(
        json.dumps(
            [
                {"record_id": "ok", "total_batches": 2, "completed_batches": 1},
                {"record_id": "bad"},
                "junk",
            ]
        ),
        "utf-8",
    )

    store = ProgressStore(path)
    assert [c.record_id for c in store.get_all()] == ["ok"]
