# src/material_uploader/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The task queue, scheduler and batch executor depend on these Protocols instead
of Feishu / Playwright / the filesystem directly. Tests plug in-memory fakes in.
"""

from collections.abc import Sequence
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ..tasks.task_models import RemoteRecord, ScanResult, Task, TransferCounts, UploadResult


class RecordSource(Protocol):
    """
    Remote tracking table.

    get_pending_records raises FetchFailure, update_record_status raises
    RemoteUpdateFailure. Both are idempotent per record_id.
    """

    async def get_pending_records(self) -> list[RemoteRecord]: ...

    async def update_record_status(self, record_id: str, status: str) -> None: ...


class LocalFiles(Protocol):
    def scan(self, date: str, work_item_name: str) -> ScanResult: ...

    def validate_files(self, files: Sequence[str]) -> tuple[list[str], list[str]]: ...

    def total_size_mb(self, files: Sequence[str]) -> float: ...

    def delete_directory(self, path: str) -> bool: ...


class AutomationSurface(Protocol):
    """
    The one browser session the uploader drives.

    All methods raise AutomationTransientError on interaction failures, except
    abort() which is best-effort and never raises.
    """

    async def open(self) -> None: ...

    async def close(self) -> None: ...

    async def navigate(self, url: str) -> None: ...

    async def select_files(self, files: Sequence[str]) -> None: ...

    async def read_transfer_counts(self) -> TransferCounts: ...

    async def confirm(self) -> None: ...

    async def abort(self) -> None: ...

    async def reset(self) -> None: ...


class Uploader(Protocol):
    async def upload_files(self, url: str, files: Sequence[str], task: Task) -> UploadResult: ...
