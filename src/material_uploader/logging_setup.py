# src/material_uploader/logging_setup.py

from __future__ import annotations

import logging
import sys
from collections.abc import MutableMapping
from pathlib import Path
from typing import Any

LOG_FILE_NAME = "upload.log"


class _ConsoleNoiseFilter(logging.Filter):
    """
    Keep the console readable during multi-hour runs:
    - allow all material_uploader logs
    - playwright / httpx / asyncio only at WARNING+
    - any other 3rd party only at ERROR+
    """

    _CHATTY = ("playwright", "httpx", "httpcore", "asyncio")

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name

        if name.startswith("material_uploader"):
            return True

        if name == "py.warnings":
            return record.levelno >= logging.ERROR

        if name.startswith(self._CHATTY):
            return record.levelno >= logging.WARNING

        return record.levelno >= logging.ERROR


def setup_logging(
    *,
    log_dir: str | Path = ".local/uploader/logs",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Configure logging with:
    - Console handler: filtered, at console_level
    - File handler: everything, appended to <log_dir>/upload.log

    Call this ONCE, very early (before first logger.info). Returns the log file path.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    # Remove any pre-existing handlers to avoid duplicates.
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(console_level)
    ch.setFormatter(fmt)
    ch.addFilter(_ConsoleNoiseFilter())
    root.addHandler(ch)

    fh = logging.FileHandler(str(log_file), encoding="utf-8")
    fh.setLevel(file_level)
    fh.setFormatter(fmt)
    root.addHandler(fh)

    logging.captureWarnings(True)
    return log_file


class TaskLogAdapter(logging.LoggerAdapter):
    """Prefix every message with the task id and work item name."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        extra = self.extra or {}
        return f"[task={extra.get('task_id', '-')} item={extra.get('item', '-')}] {msg}", kwargs


def task_logger(logger: logging.Logger, task: Any) -> TaskLogAdapter:
    """Build a TaskLogAdapter for anything carrying .id and .work_item_name."""
    task_id = str(getattr(task, "id", "-"))[:8]
    item = getattr(task, "work_item_name", "-")
    return TaskLogAdapter(logger, {"task_id": task_id, "item": item})
