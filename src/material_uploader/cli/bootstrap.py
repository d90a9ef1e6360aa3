# src/material_uploader/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- takes the settings object built once in main(),
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (Feishu, files, browser, queue).

Nothing here touches the network or launches the browser; that happens when
main() enters the executor / Feishu client contexts.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.state import AppState
from ..feishu.client import FeishuClient
from ..files.local import LocalFileProvider
from ..progress.store import ProgressStore
from ..tasks.task_queue import TaskQueue
from ..tasks.task_scheduler import Scheduler
from ..uploader.browser import PlaywrightSurface
from ..uploader.executor import BatchUploadExecutor, UploadTimings

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.log_dir.mkdir(parents=True, exist_ok=True)
    settings.progress_path.parent.mkdir(parents=True, exist_ok=True)
    settings.user_data_dir.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    progress = ProgressStore(settings.progress_path)
    executor = BatchUploadExecutor(
        PlaywrightSurface.from_settings(settings),
        progress,
        batch_size=settings.batch_size,
        max_retries=settings.max_batch_retries,
        timings=UploadTimings.from_settings(settings),
    )
    records = FeishuClient.from_settings(settings)
    queue = TaskQueue()
    scheduler = Scheduler(
        records,
        queue,
        fetch_interval_seconds=settings.fetch_interval_minutes * 60,
    )

    logger.debug("Application state wired (progress file %s)", settings.progress_path)
    return AppState(
        settings=settings,
        progress=progress,
        files=LocalFileProvider.from_settings(settings),
        records=records,
        executor=executor,
        queue=queue,
        scheduler=scheduler,
    )
