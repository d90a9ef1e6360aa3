# tests/fakes.py

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from material_uploader.errors import AutomationTransientError, RemoteUpdateFailure
from material_uploader.tasks.task_models import (
    RemoteRecord,
    ScanResult,
    Task,
    TransferCounts,
    UploadResult,
)


def make_record(record_id: str, name: str = "drama", date: str = "2025-01-07", account: str = "123") -> RemoteRecord:
    return RemoteRecord(record_id=record_id, work_item_name=name, date=date, account=account, status="待上传")


def make_files(n: int) -> list[str]:
    return [f"/material/{i + 1}.mp4" for i in range(n)]


class FakeRecordSource:
    """
    Scripted RecordSource.

    responses are consumed one per fetch; once exhausted every fetch returns [].
    Items may be an exception instance to raise instead.
    """

    def __init__(self, responses: list[list[RemoteRecord] | Exception] | None = None) -> None:
        self.responses = list(responses or [])
        self.fetch_calls = 0
        self.updates: list[tuple[str, str]] = []
        self.fail_statuses: set[str] = set()

    async def get_pending_records(self) -> list[RemoteRecord]:
        self.fetch_calls += 1
        item = self.responses.pop(0) if self.responses else []
        if isinstance(item, Exception):
            raise item
        return list(item)

    async def update_record_status(self, record_id: str, status: str) -> None:
        if status in self.fail_statuses:
            raise RemoteUpdateFailure(record_id, status, "scripted failure")
        self.updates.append((record_id, status))


@dataclass(slots=True)
class FakeFiles:
    """LocalFiles returning one fixed scan result for every lookup."""

    scan_result: ScanResult
    unreadable: set[str] = field(default_factory=set)
    scanned: list[tuple[str, str]] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    delete_ok: bool = True

    def scan(self, date: str, work_item_name: str) -> ScanResult:
        self.scanned.append((date, work_item_name))
        return self.scan_result

    def validate_files(self, files: Sequence[str]) -> tuple[list[str], list[str]]:
        ok = [f for f in files if f not in self.unreadable]
        bad = [f for f in files if f in self.unreadable]
        return ok, bad

    def total_size_mb(self, files: Sequence[str]) -> float:
        return len(files) * 1.5

    def delete_directory(self, path: str) -> bool:
        self.deleted.append(path)
        return self.delete_ok


class FakeUploader:
    def __init__(self, result: UploadResult | Exception, gate: asyncio.Event | None = None) -> None:
        self.result = result
        self.gate = gate
        self.calls: list[tuple[str, list[str], str]] = []

    async def upload_files(self, url: str, files: Sequence[str], task: Task) -> UploadResult:
        self.calls.append((url, list(files), task.record_id))
        if self.gate is not None:
            await self.gate.wait()
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


CountsPlan = Callable[[list[str]], list[TransferCounts]]


def full_success(batch: list[str]) -> list[TransferCounts]:
    n = len(batch)
    return [TransferCounts(listed=n, completed=n)]


class FakeSurface:
    """
    Scripted AutomationSurface.

    For every select_files() call, plan(batch) gives the sequence of counts the
    panel will report; the last entry repeats until the next selection.
    """

    def __init__(self, plan: CountsPlan = full_success) -> None:
        self.plan = plan
        self.opened = False
        self.closed = False
        self.navigations: list[str] = []
        self.selected: list[list[str]] = []
        self.confirmed: list[list[str]] = []
        self.aborts = 0
        self.resets = 0
        self.fail_navigation = False
        self.fail_open = False
        self._counts: list[TransferCounts] = []

    async def open(self) -> None:
        if self.fail_open:
            raise RuntimeError("no browser")
        self.opened = True

    async def close(self) -> None:
        self.closed = True

    async def navigate(self, url: str) -> None:
        if self.fail_navigation:
            raise AutomationTransientError("page did not load")
        self.navigations.append(url)

    async def select_files(self, files: Sequence[str]) -> None:
        batch = list(files)
        self.selected.append(batch)
        self._counts = list(self.plan(batch))

    async def read_transfer_counts(self) -> TransferCounts:
        if not self._counts:
            return TransferCounts(listed=0, completed=0)
        if len(self._counts) > 1:
            return self._counts.pop(0)
        return self._counts[0]

    async def confirm(self) -> None:
        self.confirmed.append(self.selected[-1])

    async def abort(self) -> None:
        self.aborts += 1

    async def reset(self) -> None:
        self.resets += 1
        self._counts = []


async def wait_until(cond: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll cond() until true; fail the test on timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not cond():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.002)
