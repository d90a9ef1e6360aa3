# src/material_uploader/progress/store.py

from __future__ import annotations

import contextlib
import json
import logging
import os
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ProgressCheckpoint:
    record_id: str
    work_item_name: str
    date: str
    account: str
    total_batches: int
    completed_batches: int
    last_updated: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProgressCheckpoint:
        return cls(
            record_id=str(data["record_id"]),
            work_item_name=str(data.get("work_item_name", "")),
            date=str(data.get("date", "")),
            account=str(data.get("account", "")),
            total_batches=int(data["total_batches"]),
            completed_batches=int(data["completed_batches"]),
            last_updated=str(data.get("last_updated", "")),
        )


class ProgressStore:
    """
    JSON-file checkpoint store keyed by record_id.

    - loaded eagerly in __init__, so a restarted process sees prior progress
    - every mutation rewrites the whole file (tmp + os.replace) before returning
    - independent of Task ids: tasks are in-memory only, checkpoints survive restarts
    """

    def __init__(self, path: str | Path = ".local/uploader/upload-progress/progress.json") -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._items: dict[str, ProgressCheckpoint] = {}
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    # ---- persistence ----

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text("utf-8"))
        except Exception:
            logger.exception("Failed to read progress file %s; starting empty", self._path)
            return

        if not isinstance(data, list):
            logger.warning("Progress file %s is not a JSON array; ignoring it", self._path)
            return

        for raw in data:
            if not isinstance(raw, dict):
                continue
            try:
                cp = ProgressCheckpoint.from_dict(raw)
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed checkpoint entry: %r", raw)
                continue
            self._items[cp.record_id] = cp

        logger.debug("Loaded %d upload checkpoints from %s", len(self._items), self._path)

    def _save(self) -> None:
        payload = [cp.to_dict() for cp in self._items.values()]
        tmp = self._path.with_suffix(".tmp")
        try:
            tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), "utf-8")
            os.replace(tmp, self._path)
        except Exception:
            logger.exception("Failed to write progress file %s", self._path)
            with contextlib.suppress(Exception):
                tmp.unlink()

    # ---- public API ----

    def get(self, record_id: str) -> ProgressCheckpoint | None:
        return self._items.get(record_id)

    def get_all(self) -> list[ProgressCheckpoint]:
        return list(self._items.values())

    def update(
        self,
        record_id: str,
        *,
        work_item_name: str,
        date: str,
        account: str,
        total_batches: int,
        completed_batches: int,
    ) -> ProgressCheckpoint:
        if completed_batches < 0 or completed_batches > total_batches:
            raise ValueError(
                f"completed_batches={completed_batches} out of range for total_batches={total_batches}"
            )

        cp = ProgressCheckpoint(
            record_id=record_id,
            work_item_name=work_item_name,
            date=date,
            account=account,
            total_batches=int(total_batches),
            completed_batches=int(completed_batches),
            last_updated=datetime.now().astimezone().isoformat(timespec="seconds"),
        )
        self._items[record_id] = cp
        self._save()

        logger.debug(
            "Checkpoint %s (%s): %d/%d batches",
            record_id,
            work_item_name,
            completed_batches,
            total_batches,
        )
        return cp

    def clear(self, record_id: str) -> bool:
        if record_id not in self._items:
            return False
        cp = self._items.pop(record_id)
        self._save()
        logger.info("Cleared upload checkpoint for %s (%s)", record_id, cp.work_item_name)
        return True

    def clear_all(self) -> int:
        n = len(self._items)
        self._items.clear()
        self._save()
        logger.info("Cleared all upload checkpoints (%d)", n)
        return n
