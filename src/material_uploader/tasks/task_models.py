# src/material_uploader/tasks/task_models.py

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import StrEnum


class TaskStatus(StrEnum):
    """
    Task lifecycle status.

    PENDING -> RUNNING -> COMPLETED | SKIPPED. SKIPPED covers both "nothing to
    upload" and "try again on a later fetch"; the record's remote status decides
    whether it comes back.
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    SKIPPED = "skipped"


@dataclass(slots=True)
class Task:
    record_id: str
    work_item_name: str
    date: str
    account: str
    status: TaskStatus = TaskStatus.PENDING
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    local_path: str | None = None
    files: list[str] | None = None
    error: str | None = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @classmethod
    def from_record(cls, record: RemoteRecord) -> Task:
        return cls(
            record_id=record.record_id,
            work_item_name=record.work_item_name,
            date=record.date,
            account=record.account,
        )


@dataclass(slots=True, frozen=True)
class RemoteRecord:
    """One pending row from the tracking table, already normalised."""

    record_id: str
    work_item_name: str
    date: str
    account: str
    status: str


@dataclass(slots=True, frozen=True)
class ScanResult:
    exists: bool
    path: str
    files: list[str] = field(default_factory=list)
    error: str | None = None


@dataclass(slots=True, frozen=True)
class TransferCounts:
    """What the upload panel shows right now: rows listed and rows marked done."""

    listed: int
    completed: int


@dataclass(slots=True)
class UploadResult:
    success: bool
    total_files: int
    uploaded_batches: int
    total_batches: int = 0
    failed_batch: int | None = None  # 1-based, as shown in logs
    partial_count: int = 0
    error: str | None = None
