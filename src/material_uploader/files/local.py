# src/material_uploader/files/local.py

from __future__ import annotations

"""
Local material folders.

Layout on disk:

    <root>/<M.D导出>/<work item name>/*.mp4

The date folder has no leading zeros: 2025-01-07 -> "1.7导出".
"""

import logging
import os
import re
import shutil
from collections.abc import Sequence
from datetime import date as date_cls
from datetime import datetime
from pathlib import Path

from ..tasks.task_models import ScanResult

logger = logging.getLogger(__name__)

_DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%Y.%m.%d")
_DIGITS = re.compile(r"(\d+)")


def parse_date(value: str) -> date_cls:
    s = (value or "").strip()
    # Tolerate "2025-01-07 00:00:00" and ISO timestamps.
    s = s.split(" ")[0].split("T")[0]
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Invalid date: {value!r}")


def is_safe_folder_name(name: str) -> bool:
    """A work item name must address exactly one folder under its date folder."""
    if not name or not name.strip() or name.strip() in (".", ".."):
        return False
    return not any(sep in name for sep in ("/", "\\", os.sep))


def natural_key(name: str) -> list[object]:
    """Sort key that compares digit runs numerically: 2.mp4 < 10.mp4."""
    parts = _DIGITS.split(name.lower())
    return [(0, int(p)) if p.isdigit() else (1, p) for p in parts]


class LocalFileProvider:
    def __init__(
        self,
        root_dir: str | Path,
        *,
        extension: str = ".mp4",
        date_folder_suffix: str = "导出",
    ) -> None:
        self.root_dir = Path(root_dir)
        ext = extension.strip().lower()
        self.extension = ext if ext.startswith(".") else f".{ext}"
        self.date_folder_suffix = date_folder_suffix

    @classmethod
    def from_settings(cls, settings) -> LocalFileProvider:
        return cls(
            settings.root_dir,
            extension=settings.media_extension,
            date_folder_suffix=settings.date_folder_suffix,
        )

    # ---- naming ----

    def date_folder(self, date: str) -> str:
        d = parse_date(date)
        return f"{d.month}.{d.day}{self.date_folder_suffix}"

    def work_item_path(self, date: str, work_item_name: str) -> Path:
        return self.root_dir / self.date_folder(date) / work_item_name

    # ---- scanning ----

    def list_media(self, directory: str | Path) -> list[str]:
        d = Path(directory)
        if not d.is_dir():
            return []
        files = [p for p in d.iterdir() if p.is_file() and p.suffix.lower() == self.extension]
        files.sort(key=lambda p: natural_key(p.stem))
        return [str(p) for p in files]

    def scan(self, date: str, work_item_name: str) -> ScanResult:
        if not is_safe_folder_name(work_item_name):
            logger.error("Refusing work item name that is not a single folder: %r", work_item_name)
            return ScanResult(exists=False, path="", error=f"invalid work item name: {work_item_name!r}")

        try:
            date_dir = self.root_dir / self.date_folder(date)
        except ValueError as exc:
            logger.error("Cannot resolve folder for %s: %s", work_item_name, exc)
            return ScanResult(exists=False, path="", error=str(exc))

        item_dir = date_dir / work_item_name
        if not date_dir.is_dir():
            return ScanResult(exists=False, path=str(item_dir), error=f"date folder not found: {date_dir}")
        if not item_dir.is_dir():
            return ScanResult(exists=False, path=str(item_dir), error=f"work item folder not found: {item_dir}")

        try:
            files = self.list_media(item_dir)
        except OSError as exc:
            logger.error("Listing %s failed: %s", item_dir, exc)
            return ScanResult(exists=True, path=str(item_dir), error=f"listing failed: {exc}")

        if not files:
            return ScanResult(
                exists=True,
                path=str(item_dir),
                error=f"no {self.extension} files in {item_dir}",
            )

        logger.debug("Found %d media file(s) in %s", len(files), item_dir)
        return ScanResult(exists=True, path=str(item_dir), files=files)

    def validate_files(self, files: Sequence[str]) -> tuple[list[str], list[str]]:
        readable: list[str] = []
        unreadable: list[str] = []
        for f in files:
            if os.path.isfile(f) and os.access(f, os.R_OK):
                readable.append(f)
            else:
                logger.warning("File is not readable: %s", f)
                unreadable.append(f)
        return readable, unreadable

    def total_size_mb(self, files: Sequence[str]) -> float:
        total = 0
        for f in files:
            try:
                total += os.path.getsize(f)
            except OSError:
                continue
        return total / (1024 * 1024)

    # ---- cleanup ----

    def delete_directory(self, path: str | Path) -> bool:
        p = Path(path)
        if not p.exists():
            logger.warning("Directory already gone, nothing to delete: %s", p)
            return True
        try:
            shutil.rmtree(p)
        except OSError as exc:
            logger.error("Deleting %s failed: %s", p, exc)
            return False
        logger.info("Deleted source directory %s", p)
        return True
