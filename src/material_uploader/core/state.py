# src/material_uploader/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..tasks.task_queue import TaskPipeline
from ..uploader.target import build_upload_url

if TYPE_CHECKING:
    from ..feishu.client import FeishuClient
    from ..files.local import LocalFileProvider
    from ..progress.store import ProgressStore
    from ..tasks.task_queue import TaskQueue
    from ..tasks.task_scheduler import Scheduler
    from ..uploader.executor import BatchUploadExecutor


@dataclass(slots=True)
class AppState:
    # Settings live on the state so every component reads the same object.
    settings: Any

    progress: ProgressStore
    files: LocalFileProvider
    records: FeishuClient
    executor: BatchUploadExecutor
    queue: TaskQueue
    scheduler: Scheduler

    def upload_url(self, account: str) -> str:
        return build_upload_url(self.settings.upload_url_template, account)

    def pipeline(self) -> TaskPipeline:
        s = self.settings
        return TaskPipeline(
            files=self.files,
            records=self.records,
            uploader=self.executor,
            upload_url=self.upload_url,
            status_pending=s.status_pending,
            status_uploading=s.status_uploading,
            status_done=s.status_done,
            auto_delete_source=s.auto_delete_source,
        )
