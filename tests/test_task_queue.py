# tests/test_task_queue.py

from __future__ import annotations

import asyncio
import logging

import pytest

from material_uploader.tasks.task_models import ScanResult, Task, TaskStatus, UploadResult
from material_uploader.tasks.task_queue import TaskPipeline, TaskQueue

from .fakes import FakeFiles, FakeRecordSource, FakeUploader, make_files, make_record, wait_until

ITEM_DIR = "/material/1.7导出/drama"


def _task(record_id: str = "rec1") -> Task:
    return Task.from_record(make_record(record_id))


def _pipeline(files: FakeFiles, records: FakeRecordSource, uploader: FakeUploader) -> TaskPipeline:
    return TaskPipeline(
        files=files,
        records=records,
        uploader=uploader,
        upload_url=lambda account: f"https://ad.example.com/upload?aadvid={account}",
    )


def _found(n: int = 3) -> FakeFiles:
    return FakeFiles(ScanResult(exists=True, path=ITEM_DIR, files=make_files(n)))


def _ok(n: int = 3) -> UploadResult:
    return UploadResult(success=True, total_files=n, uploaded_batches=1, total_batches=1)


# ---- queue operations ----


def test_duplicate_record_is_rejected() -> None:
    q = TaskQueue()
    assert q.add_task(_task("rec1")) is True
    assert q.add_task(_task("rec1")) is False
    assert len(q) == 1


def test_add_tasks_counts_only_new_records() -> None:
    q = TaskQueue()
    q.add_task(_task("rec1"))
    added = q.add_tasks([_task("rec1"), _task("rec2"), _task("rec3"), _task("rec2")])
    assert added == 2
    assert len(q) == 3


def test_next_task_is_first_pending_in_insertion_order() -> None:
    q = TaskQueue()
    a, b, c = _task("a"), _task("b"), _task("c")
    q.add_tasks([a, b, c])

    assert q.get_next_task() is a
    q.update_status(a, TaskStatus.RUNNING)
    assert q.get_next_task() is b
    q.update_status(b, TaskStatus.SKIPPED, "nope")
    assert q.get_next_task() is c
    assert b.error == "nope"


def test_cleanup_frees_record_ids_for_requeue() -> None:
    q = TaskQueue()
    a, b, c = _task("a"), _task("b"), _task("c")
    q.add_tasks([a, b, c])
    q.update_status(a, TaskStatus.COMPLETED)
    q.update_status(b, TaskStatus.SKIPPED)

    assert q.cleanup() == 2
    assert len(q) == 1
    assert q.get_task("a") is None
    assert q.add_task(_task("a")) is True


def test_stats_count_by_status() -> None:
    q = TaskQueue()
    a, b, c = _task("a"), _task("b"), _task("c")
    q.add_tasks([a, b, c])
    q.update_status(a, TaskStatus.RUNNING)
    q.update_status(b, TaskStatus.COMPLETED)

    assert q.get_stats() == {"total": 3, "pending": 1, "running": 1, "completed": 1, "skipped": 0}


# ---- per-task outcomes ----


@pytest.mark.asyncio
async def test_missing_directory_skips_without_status_update() -> None:
    files = FakeFiles(ScanResult(exists=False, path=ITEM_DIR, error="work item folder not found"))
    records = FakeRecordSource()
    uploader = FakeUploader(_ok())
    q = TaskQueue()
    task = _task()
    q.add_task(task)

    await q.process_task(task, _pipeline(files, records, uploader))

    assert task.status == TaskStatus.SKIPPED
    assert task.error == "work item folder not found"
    assert records.updates == []
    assert uploader.calls == []


@pytest.mark.asyncio
async def test_no_readable_files_skips() -> None:
    files = _found(2)
    files.unreadable = set(make_files(2))
    records = FakeRecordSource()
    q = TaskQueue()
    task = _task()

    await q.process_task(task, _pipeline(files, records, FakeUploader(_ok())))

    assert task.status == TaskStatus.SKIPPED
    assert records.updates == []


@pytest.mark.asyncio
async def test_invalid_upload_url_skips_before_touching_remote() -> None:
    files = _found(2)
    records = FakeRecordSource()
    uploader = FakeUploader(_ok())
    q = TaskQueue()
    task = _task()
    pipeline = _pipeline(files, records, uploader)
    pipeline.upload_url = lambda account: "not a url"

    await q.process_task(task, pipeline)

    assert task.status == TaskStatus.SKIPPED
    assert task.error == "invalid upload url"
    assert records.updates == []
    assert uploader.calls == []


@pytest.mark.asyncio
async def test_batch_size_is_logged_before_upload(caplog: pytest.LogCaptureFixture) -> None:
    q = TaskQueue()
    task = _task()

    with caplog.at_level(logging.INFO, logger="material_uploader.tasks.task_queue"):
        await q.process_task(task, _pipeline(_found(4), FakeRecordSource(), FakeUploader(_ok(4))))

    assert task.status == TaskStatus.COMPLETED
    assert any(m.endswith("4 file(s), 6.0 MB") for m in caplog.messages)


@pytest.mark.asyncio
async def test_success_marks_done_and_deletes_source() -> None:
    files = _found(3)
    records = FakeRecordSource()
    uploader = FakeUploader(_ok())
    q = TaskQueue()
    task = _task()

    await q.process_task(task, _pipeline(files, records, uploader))

    assert task.status == TaskStatus.COMPLETED
    assert records.updates == [("rec1", "上传中"), ("rec1", "待资产化")]
    assert uploader.calls == [("https://ad.example.com/upload?aadvid=123", make_files(3), "rec1")]
    assert files.deleted == [ITEM_DIR]


@pytest.mark.asyncio
async def test_unreadable_files_are_left_out_of_upload() -> None:
    files = _found(3)
    files.unreadable = {make_files(3)[1]}
    uploader = FakeUploader(_ok(2))
    q = TaskQueue()
    task = _task()

    await q.process_task(task, _pipeline(files, FakeRecordSource(), uploader))

    assert task.status == TaskStatus.COMPLETED
    assert uploader.calls[0][1] == [make_files(3)[0], make_files(3)[2]]


@pytest.mark.asyncio
async def test_failed_upload_reverts_remote_status() -> None:
    files = _found(3)
    records = FakeRecordSource()
    failed = UploadResult(success=False, total_files=3, uploaded_batches=0, failed_batch=1, error="batch 1 failed")
    q = TaskQueue()
    task = _task()

    await q.process_task(task, _pipeline(files, records, FakeUploader(failed)))

    assert task.status == TaskStatus.SKIPPED
    assert task.error == "batch 1 failed"
    assert records.updates == [("rec1", "上传中"), ("rec1", "待上传")]
    assert files.deleted == []


@pytest.mark.asyncio
async def test_done_status_failure_skips_for_retry() -> None:
    files = _found(3)
    records = FakeRecordSource()
    records.fail_statuses = {"待资产化"}
    q = TaskQueue()
    task = _task()

    await q.process_task(task, _pipeline(files, records, FakeUploader(_ok())))

    assert task.status == TaskStatus.SKIPPED
    assert task.error == "status update failed"
    assert files.deleted == []


@pytest.mark.asyncio
async def test_uploading_status_failure_does_not_block_upload() -> None:
    files = _found(3)
    records = FakeRecordSource()
    records.fail_statuses = {"上传中"}
    uploader = FakeUploader(_ok())
    q = TaskQueue()
    task = _task()

    await q.process_task(task, _pipeline(files, records, uploader))

    assert task.status == TaskStatus.COMPLETED
    assert len(uploader.calls) == 1
    assert records.updates == [("rec1", "待资产化")]


@pytest.mark.asyncio
async def test_failed_source_delete_still_completes() -> None:
    files = _found(3)
    files.delete_ok = False
    q = TaskQueue()
    task = _task()

    await q.process_task(task, _pipeline(files, FakeRecordSource(), FakeUploader(_ok())))

    assert task.status == TaskStatus.COMPLETED


@pytest.mark.asyncio
async def test_unexpected_error_is_caught_at_task_boundary() -> None:
    q = TaskQueue()
    task = _task()

    await q.process_task(task, _pipeline(_found(3), FakeRecordSource(), FakeUploader(RuntimeError("boom"))))

    assert task.status == TaskStatus.SKIPPED
    assert task.error == "boom"


# ---- worker loop ----


@pytest.mark.asyncio
async def test_worker_processes_in_order_and_calls_hooks() -> None:
    started: list[str] = []
    finished: list[str] = []

    async def on_complete(task: Task) -> None:
        finished.append(task.record_id)

    q = TaskQueue(on_task_start=lambda t: started.append(t.record_id), on_task_complete=on_complete)
    q.add_tasks([_task("a"), _task("b")])
    pipeline = _pipeline(_found(1), FakeRecordSource(), FakeUploader(_ok(1)))

    runner = asyncio.create_task(q.start_processing(pipeline, idle_seconds=0.001, task_delay_seconds=0.001))
    await wait_until(lambda: len(finished) == 2)
    assert q.is_running is True

    q.stop()
    await asyncio.wait_for(runner, timeout=1.0)

    assert started == ["a", "b"]
    assert finished == ["a", "b"]
    assert q.get_stats()["completed"] == 2
    assert q.is_running is False
