# src/material_uploader/uploader/executor.py

from __future__ import annotations

"""
Batch upload executor.

Drives the single browser session through one work item:
- split files into fixed-size batches
- resume from the stored checkpoint when it still matches the batch layout
- per batch: select files, poll the upload panel, confirm only on an exact count
- retry a batch (reload + backoff) up to max_retries, checkpoint after each batch

The exact-count rule exists because the upload page can silently drop files:
a batch is done only when every file it holds shows as completed.
"""

import asyncio
import logging
import random
import time
from collections.abc import Sequence
from dataclasses import dataclass
from types import TracebackType
from typing import TYPE_CHECKING

from ..errors import (
    AutomationTransientError,
    ConfigMismatchError,
    InitializationFailure,
    PartialBatchError,
)
from ..logging_setup import task_logger
from ..tasks.task_models import Task, UploadResult

if TYPE_CHECKING:
    from ..core.ports import AutomationSurface
    from ..progress.store import ProgressCheckpoint, ProgressStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class UploadTimings:
    """All waits of one batch attempt, in seconds."""

    poll_interval: float = 30.0
    batch_timeout: float = 600.0
    partial_grace: float = 20.0
    settle: float = 5.0
    empty_poll: float = 5.0
    retry_backoff: float = 5.0
    between_batches: tuple[float, float] = (5.0, 8.0)
    after_last_batch: tuple[float, float] = (3.0, 5.0)

    @classmethod
    def from_settings(cls, settings) -> UploadTimings:
        return cls(
            poll_interval=float(settings.poll_interval_seconds),
            batch_timeout=float(settings.batch_timeout_seconds),
            partial_grace=float(settings.partial_grace_seconds),
            retry_backoff=float(settings.retry_backoff_seconds),
            after_last_batch=(
                settings.batch_delay_min_ms / 1000.0,
                settings.batch_delay_max_ms / 1000.0,
            ),
        )


def partition(files: Sequence[str], batch_size: int) -> list[list[str]]:
    """Contiguous batches of batch_size; the last one may be shorter."""
    if batch_size <= 0:
        raise ValueError("batch_size must be greater than 0")
    return [list(files[i : i + batch_size]) for i in range(0, len(files), batch_size)]


class BatchUploadExecutor:
    """
    Owns the automation surface for the process lifetime.

    Use as an async context manager: the browser is opened on enter and closed
    on exit. upload_files() must not be called concurrently.
    """

    def __init__(
        self,
        surface: AutomationSurface,
        progress: ProgressStore,
        *,
        batch_size: int = 50,
        max_retries: int = 10,
        timings: UploadTimings | None = None,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be greater than 0")
        if max_retries <= 0:
            raise ValueError("max_retries must be greater than 0")
        self._surface = surface
        self._progress = progress
        self._batch_size = int(batch_size)
        self._max_retries = int(max_retries)
        self._timings = timings or UploadTimings()
        self._opened = False

    # ---- session lifecycle ----

    async def __aenter__(self) -> BatchUploadExecutor:
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def open(self) -> None:
        if self._opened:
            return
        try:
            await self._surface.open()
        except Exception as exc:
            raise InitializationFailure(f"Browser session failed to start: {exc}") from exc
        self._opened = True
        logger.info("Upload session ready (batch_size=%d, max_retries=%d)", self._batch_size, self._max_retries)

    async def close(self) -> None:
        if not self._opened:
            return
        self._opened = False
        try:
            await self._surface.close()
        except Exception:
            logger.exception("Closing the browser session failed")

    @property
    def surface(self) -> AutomationSurface:
        return self._surface

    # ---- checkpoints ----

    @staticmethod
    def _check_checkpoint(cp: ProgressCheckpoint, total_batches: int) -> None:
        if cp.total_batches != total_batches or cp.completed_batches > cp.total_batches:
            raise ConfigMismatchError(cp.record_id, cp.total_batches, total_batches)

    def resume_point(self, task: Task, total_batches: int) -> int:
        """Index of the first batch still to upload for this record."""
        cp = self._progress.get(task.record_id)
        if cp is None:
            return 0
        try:
            self._check_checkpoint(cp, total_batches)
        except ConfigMismatchError as exc:
            task_logger(logger, task).warning("Discarding stale checkpoint: %s", exc)
            self._progress.clear(task.record_id)
            return 0
        return cp.completed_batches

    def _save_checkpoint(self, task: Task, total_batches: int, completed: int) -> None:
        self._progress.update(
            task.record_id,
            work_item_name=task.work_item_name,
            date=task.date,
            account=task.account,
            total_batches=total_batches,
            completed_batches=completed,
        )

    # ---- upload ----

    async def upload_files(self, url: str, files: Sequence[str], task: Task) -> UploadResult:
        log = task_logger(logger, task)
        files = list(files)
        batches = partition(files, self._batch_size)
        total = len(batches)

        if total == 0:
            return UploadResult(success=False, total_files=0, uploaded_batches=0, error="no files to upload")

        start = self.resume_point(task, total)
        if start > 0:
            log.info("Resuming upload at batch %d/%d", start + 1, total)
        else:
            log.info("Uploading %d files in %d batches", len(files), total)

        try:
            await self._surface.navigate(url)
        except Exception as exc:
            log.error("Opening upload page failed: %s", exc)
            return UploadResult(
                success=False,
                total_files=len(files),
                uploaded_batches=start,
                total_batches=total,
                error=f"navigation failed: {exc}",
            )

        for index in range(start, total):
            batch = batches[index]
            ok, confirmed = await self._upload_batch(batch, index, total, log)

            if not ok:
                self._save_checkpoint(task, total, index)
                return UploadResult(
                    success=False,
                    total_files=len(files),
                    uploaded_batches=index,
                    total_batches=total,
                    failed_batch=index + 1,
                    partial_count=confirmed,
                    error=(
                        f"batch {index + 1}/{total} failed after {self._max_retries} attempts "
                        f"({confirmed}/{len(batch)} confirmed)"
                    ),
                )

            if index + 1 < total:
                self._save_checkpoint(task, total, index + 1)
                await self._pause(*self._timings.between_batches)
            else:
                await self._pause(*self._timings.after_last_batch)

        self._progress.clear(task.record_id)
        log.info("All %d files uploaded in %d batches", len(files), total)
        return UploadResult(success=True, total_files=len(files), uploaded_batches=total, total_batches=total)

    async def _upload_batch(
        self,
        batch: list[str],
        index: int,
        total: int,
        log: logging.LoggerAdapter,
    ) -> tuple[bool, int]:
        """Run attempts until one confirms the exact count. Returns (ok, last confirmed count)."""
        label = f"{index + 1}/{total}"
        confirmed = 0

        for attempt in range(1, self._max_retries + 1):
            if attempt > 1:
                log.info("Batch %s: retry %d/%d", label, attempt - 1, self._max_retries - 1)
                try:
                    await self._surface.reset()
                except Exception as exc:
                    log.warning("Page reload before retry failed: %s", exc)
                await asyncio.sleep(self._timings.retry_backoff)

            log.info("Batch %s: uploading %d files (attempt %d)", label, len(batch), attempt)
            try:
                await self._attempt(batch, log)
                log.info("Batch %s confirmed", label)
                return True, len(batch)
            except PartialBatchError as exc:
                confirmed = exc.confirmed
                log.warning("Batch %s short: %s", label, exc)
            except AutomationTransientError as exc:
                confirmed = int(exc.details.get("completed", 0))
                log.error("Batch %s attempt %d failed: %s", label, attempt, exc)
            except Exception:
                confirmed = 0
                log.exception("Batch %s attempt %d crashed", label, attempt)

        log.error(
            "Batch %s failed after %d attempts (%d/%d confirmed)",
            label,
            self._max_retries,
            confirmed,
            len(batch),
        )
        return False, confirmed

    async def _attempt(self, batch: list[str], log: logging.LoggerAdapter) -> None:
        """
        One attempt: hand the files to the page, then poll until exact success.

        Raises PartialBatchError when the page keeps listing fewer rows than
        expected past the grace period, AutomationTransientError on timeout
        (details carry the last completed count).
        """
        t = self._timings
        expected = len(batch)
        completed = 0

        await self._surface.select_files(batch)
        started = time.monotonic()
        await asyncio.sleep(t.settle)

        while time.monotonic() - started < t.batch_timeout:
            try:
                counts = await self._surface.read_transfer_counts()
            except AutomationTransientError as exc:
                log.debug("Reading upload progress failed: %s", exc)
                await asyncio.sleep(t.empty_poll)
                continue

            if counts.listed == 0:
                log.debug("No upload rows yet")
                await asyncio.sleep(t.empty_poll)
                continue

            if counts.listed > expected:
                raise AutomationTransientError(
                    f"Upload panel lists {counts.listed} rows for a batch of {expected}"
                )

            if counts.listed < expected:
                if time.monotonic() - started > t.partial_grace:
                    log.warning("Page accepted only %d/%d files; cancelling", counts.listed, expected)
                    await self._surface.abort()
                    raise PartialBatchError(counts.listed, expected)
                await asyncio.sleep(t.poll_interval)
                continue

            completed = counts.completed
            log.debug("Upload progress: %d/%d done", completed, expected)
            if completed == expected:
                await self._surface.confirm()
                return

            await asyncio.sleep(t.poll_interval)

        raise AutomationTransientError(
            f"Upload did not finish within {t.batch_timeout:.0f}s",
            {"completed": completed, "expected": expected},
        )

    @staticmethod
    async def _pause(low: float, high: float) -> None:
        await asyncio.sleep(random.uniform(low, high) if high > low else max(0.0, low))
