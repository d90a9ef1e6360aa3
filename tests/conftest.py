# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from material_uploader.progress.store import ProgressStore
from material_uploader.uploader.executor import UploadTimings


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object for the modules under test.

    A SimpleNamespace rather than the real Settings keeps tests independent of
    the process environment.
    """
    return SimpleNamespace(
        data_dir=tmp_path,
        progress_path=tmp_path / "upload-progress" / "progress.json",
        root_dir=tmp_path / "material",
        media_extension=".mp4",
        date_folder_suffix="导出",
        upload_url_template="https://ad.example.com/upload?aadvid={accountId}",
        status_pending="待上传",
        status_uploading="上传中",
        status_done="待资产化",
        auto_delete_source=True,
        batch_size=50,
        max_batch_retries=3,
    )


@pytest.fixture()
def progress(settings: SimpleNamespace) -> ProgressStore:
    return ProgressStore(settings.progress_path)


@pytest.fixture()
def fast_timings() -> UploadTimings:
    """Millisecond-scale waits so retry / timeout paths run quickly."""
    return UploadTimings(
        poll_interval=0.001,
        batch_timeout=0.05,
        partial_grace=0.005,
        settle=0.0,
        empty_poll=0.001,
        retry_backoff=0.0,
        between_batches=(0.0, 0.0),
        after_last_batch=(0.0, 0.0),
    )
