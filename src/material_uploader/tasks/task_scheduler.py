# src/material_uploader/tasks/task_scheduler.py

from __future__ import annotations

"""
Adaptive fetch scheduler.

Two modes:
- timer mode: a fetch found nothing new, so poll every fetch_interval_seconds
- event mode: a fetch found work; no timer runs, the next fetch happens when
  the queue reports a finished task

The "processing" flag is advisory only. A timer tick that sees it set skips its
fetch; any overlap that slips through is harmless because enqueue dedups by
record_id.
"""

import asyncio
import logging
from enum import StrEnum
from typing import TYPE_CHECKING

from ..errors import FetchFailure
from .task_models import Task

if TYPE_CHECKING:
    from ..core.ports import RecordSource
    from .task_queue import TaskPipeline, TaskQueue

logger = logging.getLogger(__name__)


class SchedulerMode(StrEnum):
    IDLE = "idle"
    TIMER = "timer"
    EVENT = "event"


class Scheduler:
    def __init__(
        self,
        records: RecordSource,
        queue: TaskQueue,
        *,
        fetch_interval_seconds: float = 300.0,
    ) -> None:
        if fetch_interval_seconds <= 0:
            raise ValueError("fetch_interval_seconds must be greater than 0")
        self._records = records
        self._queue = queue
        self._interval = float(fetch_interval_seconds)

        self._running = False
        self._processing = False
        self._mode = SchedulerMode.IDLE
        self._timer_task: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()

        queue.on_task_start = self.on_task_start
        queue.on_task_complete = self.on_task_complete

    # ---- state ----

    @property
    def mode(self) -> SchedulerMode:
        return self._mode

    @property
    def timer_active(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    @property
    def processing(self) -> bool:
        return self._processing

    @property
    def is_running(self) -> bool:
        return self._running

    # ---- fetching ----

    async def _fetch_and_enqueue(self) -> int:
        self._queue.cleanup()
        try:
            records = await self._records.get_pending_records()
        except FetchFailure as exc:
            logger.error("Fetching pending records failed: %s", exc)
            return 0
        except Exception:
            logger.exception("Unexpected error while fetching pending records")
            return 0

        if not self._running:
            logger.debug("Scheduler stopped during fetch; dropping %d record(s)", len(records))
            return 0

        added = self._queue.add_tasks(Task.from_record(r) for r in records)
        stats = self._queue.get_stats()
        logger.info(
            "Fetched %d pending record(s), %d new; queue: %d pending, %d running",
            len(records),
            added,
            stats["pending"],
            stats["running"],
        )
        return added

    async def fetch_now(self) -> int:
        """Run one fetch and switch mode by its outcome."""
        if not self._running:
            return 0

        fut = asyncio.create_task(self._fetch_and_enqueue())
        self._inflight.add(fut)
        fut.add_done_callback(self._inflight.discard)
        added = await asyncio.shield(fut)

        if not self._running:
            return 0

        if added == 0:
            self._enter_timer_mode()
        else:
            self._enter_event_mode()
        return added

    def _enter_timer_mode(self) -> None:
        self._mode = SchedulerMode.TIMER
        if self.timer_active:
            return
        logger.info("No new work; polling every %.0fs", self._interval)
        self._timer_task = asyncio.create_task(self._timer_loop())

    def _enter_event_mode(self) -> None:
        self._mode = SchedulerMode.EVENT
        timer = self._timer_task
        self._timer_task = None
        if timer is not None and not timer.done():
            logger.info("New work queued; timer stopped, waiting for task completion")
            # A tick that found work clears the slot; its loop then exits on its own.
            if timer is not asyncio.current_task():
                timer.cancel()

    async def _timer_loop(self) -> None:
        me = asyncio.current_task()
        while self._running and self._timer_task is me:
            await asyncio.sleep(self._interval)
            if not self._running or self._timer_task is not me:
                break
            if self._processing:
                logger.debug("Timer tick skipped: a task is processing")
                continue
            await self.fetch_now()

    # ---- queue hooks ----

    def on_task_start(self, task: Task) -> None:
        self._processing = True

    async def on_task_complete(self, task: Task) -> None:
        self._processing = False
        if self._running:
            await self.fetch_now()

    # ---- lifecycle ----

    async def start(
        self,
        pipeline: TaskPipeline,
        *,
        idle_seconds: float = 5.0,
        task_delay_seconds: float = 2.0,
    ) -> None:
        """Initial fetch, then run the queue worker until stop()."""
        if self._running:
            logger.warning("Scheduler already running")
            return
        self._running = True
        logger.info("Scheduler started (fetch interval %.0fs)", self._interval)

        await self.fetch_now()
        if not self._running:
            return
        await self._queue.start_processing(
            pipeline,
            idle_seconds=idle_seconds,
            task_delay_seconds=task_delay_seconds,
        )

    async def stop(self) -> None:
        self._running = False
        timer = self._timer_task
        self._timer_task = None
        if timer is not None and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()
        self._mode = SchedulerMode.IDLE
        self._queue.stop()

        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
        logger.info("Scheduler stopped")
