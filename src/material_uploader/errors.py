# src/material_uploader/errors.py

"""
Error taxonomy.

Who raises what:
- FeishuClient -> FetchFailure / RemoteUpdateFailure
- PlaywrightSurface -> AutomationTransientError
- BatchUploadExecutor -> PartialBatchError (per attempt), ConfigMismatchError (stale checkpoint)
- startup (settings, browser) -> InitializationFailure / ConfigurationError

Only InitializationFailure is fatal. Everything else is caught by the component
one level up and turned into a retry, a SKIPPED task or a log line.
"""

from __future__ import annotations

from typing import Any


class UploaderError(Exception):
    """Base exception for all material_uploader errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({detail_str})"
        return self.message


class PartialBatchError(UploaderError):
    """The page confirmed fewer transfers than the batch holds."""

    def __init__(self, confirmed: int, expected: int) -> None:
        super().__init__(
            f"Batch confirmed {confirmed}/{expected} files",
            {"shortfall": expected - confirmed},
        )
        self.confirmed = confirmed
        self.expected = expected


class AutomationTransientError(UploaderError):
    """Any browser interaction failure during a batch attempt."""


class ConfigMismatchError(UploaderError):
    """Stored checkpoint was computed for a different batch layout."""

    def __init__(self, record_id: str, stored: int, computed: int) -> None:
        super().__init__(
            "Checkpoint batch count does not match current file set",
            {"record_id": record_id, "stored": stored, "computed": computed},
        )
        self.record_id = record_id
        self.stored = stored
        self.computed = computed


class RemoteUpdateFailure(UploaderError):
    """Pushing a status to the tracking table failed."""

    def __init__(self, record_id: str, status: str, cause: str = "") -> None:
        msg = f"Failed to set status {status!r} on record {record_id}"
        if cause:
            msg = f"{msg}: {cause}"
        super().__init__(msg, {"record_id": record_id})
        self.record_id = record_id
        self.status = status


class FetchFailure(UploaderError):
    """Fetching pending records from the tracking table failed."""


class InitializationFailure(UploaderError):
    """The process cannot start (browser session, settings)."""


class ConfigurationError(InitializationFailure):
    """Settings are missing or invalid."""

    def __init__(self, problems: list[str]) -> None:
        super().__init__("Invalid configuration:\n  " + "\n  ".join(problems))
        self.problems = list(problems)
