# src/material_uploader/tasks/task_queue.py

from __future__ import annotations

"""
Single-worker task queue.

Tasks are processed strictly one at a time because the browser session is one
exclusive handle. The queue owns every Task state transition:

    PENDING -> RUNNING -> COMPLETED | SKIPPED

Per-task failures never escape process_task(); they end as SKIPPED with the
error recorded, and the worker loop moves on.
"""

import asyncio
import inspect
import logging
import time
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..errors import RemoteUpdateFailure
from ..logging_setup import task_logger
from ..uploader.target import is_valid_url
from .task_models import Task, TaskStatus

if TYPE_CHECKING:
    from ..core.ports import LocalFiles, RecordSource, Uploader

logger = logging.getLogger(__name__)

Hook = Callable[[Task], Any]


@dataclass(slots=True)
class TaskPipeline:
    """Collaborators one task needs, injected by the caller."""

    files: LocalFiles
    records: RecordSource
    uploader: Uploader
    upload_url: Callable[[str], str]
    status_pending: str = "待上传"
    status_uploading: str = "上传中"
    status_done: str = "待资产化"
    auto_delete_source: bool = True


async def _call_hook(hook: Hook | None, task: Task) -> None:
    if hook is None:
        return
    try:
        res = hook(task)
        if inspect.isawaitable(res):
            await res
    except Exception:
        logger.exception("Task hook %r failed", hook)


class TaskQueue:
    def __init__(
        self,
        *,
        on_task_start: Hook | None = None,
        on_task_complete: Hook | None = None,
    ) -> None:
        self._tasks: deque[Task] = deque()
        self._index: dict[str, Task] = {}
        self._running = False
        self.on_task_start = on_task_start
        self.on_task_complete = on_task_complete

    def __len__(self) -> int:
        return len(self._tasks)

    # ---- queue operations ----

    def add_task(self, task: Task) -> bool:
        if task.record_id in self._index:
            logger.debug("Record %s already queued; skipping", task.record_id)
            return False
        self._tasks.append(task)
        self._index[task.record_id] = task
        return True

    def add_tasks(self, tasks: Iterable[Task]) -> int:
        added = sum(1 for t in tasks if self.add_task(t))
        if added:
            logger.info("Queued %d new task(s) (queue size %d)", added, len(self._tasks))
        return added

    def get_next_task(self) -> Task | None:
        for task in self._tasks:
            if task.status == TaskStatus.PENDING:
                return task
        return None

    def get_task(self, record_id: str) -> Task | None:
        return self._index.get(record_id)

    def update_status(self, task: Task, status: TaskStatus, error: str | None = None) -> None:
        task.status = status
        task.updated_at = time.time()
        if error is not None:
            task.error = error

    def cleanup(self) -> int:
        """Drop finished tasks so their records can be enqueued again."""
        done = (TaskStatus.COMPLETED, TaskStatus.SKIPPED)
        kept = [t for t in self._tasks if t.status not in done]
        removed = len(self._tasks) - len(kept)
        if removed:
            self._tasks = deque(kept)
            self._index = {t.record_id: t for t in kept}
            logger.debug("Removed %d finished task(s) from queue", removed)
        return removed

    def get_stats(self) -> dict[str, int]:
        stats = {"total": len(self._tasks)}
        for status in TaskStatus:
            stats[status.value] = 0
        for t in self._tasks:
            stats[t.status.value] += 1
        return stats

    @property
    def is_running(self) -> bool:
        return self._running

    def stop(self) -> None:
        """Ask the worker loop to exit at its next iteration."""
        if self._running:
            logger.info("Stopping task queue")
        self._running = False

    # ---- worker ----

    async def start_processing(
        self,
        pipeline: TaskPipeline,
        *,
        idle_seconds: float = 5.0,
        task_delay_seconds: float = 2.0,
    ) -> None:
        if self._running:
            logger.warning("Task queue already processing")
            return

        self._running = True
        logger.info("Task queue started")

        while self._running:
            task = self.get_next_task()
            if task is None:
                await asyncio.sleep(idle_seconds)
                continue

            await _call_hook(self.on_task_start, task)
            try:
                await self.process_task(task, pipeline)
            finally:
                await _call_hook(self.on_task_complete, task)

            if self._running:
                await asyncio.sleep(task_delay_seconds)

        logger.info("Task queue stopped")

    async def process_task(self, task: Task, pipeline: TaskPipeline) -> None:
        log = task_logger(logger, task)
        self.update_status(task, TaskStatus.RUNNING)
        log.info("Processing (date=%s account=%s)", task.date, task.account)

        try:
            await self._run(task, pipeline, log)
        except Exception as exc:
            log.exception("Task failed")
            self.update_status(task, TaskStatus.SKIPPED, str(exc) or type(exc).__name__)

        log.info("Finished with status %s%s", task.status.value, f" ({task.error})" if task.error else "")

    async def _run(self, task: Task, p: TaskPipeline, log: logging.LoggerAdapter) -> None:
        scan = await asyncio.to_thread(p.files.scan, task.date, task.work_item_name)
        task.local_path = scan.path
        if not scan.exists or not scan.files:
            log.warning("Nothing to upload: %s", scan.error or "no files")
            self.update_status(task, TaskStatus.SKIPPED, scan.error or "no files")
            return

        readable, unreadable = await asyncio.to_thread(p.files.validate_files, scan.files)
        if unreadable:
            log.warning("%d unreadable file(s) will be left out", len(unreadable))
        if not readable:
            self.update_status(task, TaskStatus.SKIPPED, "no readable files")
            return
        task.files = readable
        size_mb = await asyncio.to_thread(p.files.total_size_mb, readable)
        log.info("%d file(s), %.1f MB", len(readable), size_mb)

        url = p.upload_url(task.account)
        if not is_valid_url(url):
            log.error("Upload URL is not a valid http(s) URL: %r", url)
            self.update_status(task, TaskStatus.SKIPPED, "invalid upload url")
            return

        try:
            await p.records.update_record_status(task.record_id, p.status_uploading)
        except RemoteUpdateFailure as exc:
            log.warning("Could not mark record as uploading (continuing): %s", exc)

        result = await p.uploader.upload_files(url, readable, task)

        if not result.success:
            self.update_status(task, TaskStatus.SKIPPED, result.error or "upload failed")
            try:
                await p.records.update_record_status(task.record_id, p.status_pending)
                log.info("Record returned to %r for the next fetch", p.status_pending)
            except RemoteUpdateFailure as exc:
                log.error("Could not revert record status: %s", exc)
            return

        try:
            await p.records.update_record_status(task.record_id, p.status_done)
        except RemoteUpdateFailure as exc:
            log.error("Upload done but status update failed: %s", exc)
            self.update_status(task, TaskStatus.SKIPPED, "status update failed")
            return

        self.update_status(task, TaskStatus.COMPLETED)
        log.info("Uploaded %d files in %d batches", result.total_files, result.uploaded_batches)

        if p.auto_delete_source and task.local_path:
            deleted = await asyncio.to_thread(p.files.delete_directory, task.local_path)
            if not deleted:
                log.warning("Source directory was not deleted: %s", task.local_path)
