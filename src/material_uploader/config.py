# src/material_uploader/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app, built once and passed down explicitly.
- No secrets required at import time (validation happens at startup).
- Every knob has a UPLOADER_* env var; see .env.example.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .errors import ConfigurationError

ENV_PREFIX = "UPLOADER"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str
    data_dir: Path
    log_dir: Path
    progress_path: Path

    # ---- Feishu (tracking table) ----
    feishu_app_id: str
    feishu_app_secret: str
    feishu_app_token: str
    feishu_table_id: str
    feishu_base_url: str
    feishu_auth_url: str
    feishu_field_status: str
    feishu_field_account: str
    feishu_field_drama: str
    feishu_field_date: str
    feishu_page_size: int
    feishu_timeout_seconds: float

    # ---- Status values written back to the table ----
    status_pending: str
    status_uploading: str
    status_done: str

    # ---- Local material ----
    root_dir: Path | None
    media_extension: str
    date_folder_suffix: str
    auto_delete_source: bool

    # ---- Upload target ----
    upload_url_template: str

    # ---- Batch uploader ----
    batch_size: int
    batch_delay_min_ms: int
    batch_delay_max_ms: int
    max_batch_retries: int
    retry_backoff_seconds: float
    poll_interval_seconds: float
    batch_timeout_seconds: float
    partial_grace_seconds: float

    selector_upload_button: str
    selector_upload_panel: str
    selector_progress_bar: str
    selector_progress_success: str
    selector_confirm_button: str
    selector_cancel_button: str

    # ---- Scheduler / queue ----
    fetch_interval_minutes: float
    idle_poll_seconds: float
    task_delay_seconds: float

    # ---- Browser ----
    headless: bool
    slow_mo_ms: int
    user_data_dir: Path
    page_timeout_seconds: float
    event_timeout_seconds: float

    @staticmethod
    def from_env() -> "Settings":
        load_dotenv(override=False)

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/uploader"))
        raw_root = _env(_k("ROOT_DIR"), "").strip()

        return Settings(
            app_name=_env(_k("APP_NAME"), "material-uploader"),
            log_level=_env(_k("LOG_LEVEL"), "INFO"),
            data_dir=data_dir,
            log_dir=_env_path(_k("LOG_DIR"), data_dir / "logs"),
            progress_path=_env_path(
                _k("PROGRESS_PATH"), data_dir / "upload-progress" / "progress.json"
            ),
            feishu_app_id=_env(_k("FEISHU_APP_ID")).strip(),
            feishu_app_secret=_env(_k("FEISHU_APP_SECRET")).strip(),
            feishu_app_token=_env(_k("FEISHU_APP_TOKEN")).strip(),
            feishu_table_id=_env(_k("FEISHU_TABLE_ID")).strip(),
            feishu_base_url=_env(
                _k("FEISHU_BASE_URL"), "https://open.feishu.cn/open-apis/bitable/v1"
            ).rstrip("/"),
            feishu_auth_url=_env(
                _k("FEISHU_AUTH_URL"),
                "https://open.feishu.cn/open-apis/auth/v3/tenant_access_token/internal",
            ),
            feishu_field_status=_env(_k("FEISHU_FIELD_STATUS"), "状态"),
            feishu_field_account=_env(_k("FEISHU_FIELD_ACCOUNT"), "账户"),
            feishu_field_drama=_env(_k("FEISHU_FIELD_DRAMA"), "剧名"),
            feishu_field_date=_env(_k("FEISHU_FIELD_DATE"), "日期"),
            feishu_page_size=_env_int(_k("FEISHU_PAGE_SIZE"), 100),
            feishu_timeout_seconds=_env_float(_k("FEISHU_TIMEOUT_SECONDS"), 30.0),
            status_pending=_env(_k("STATUS_PENDING"), "待上传"),
            status_uploading=_env(_k("STATUS_UPLOADING"), "上传中"),
            status_done=_env(_k("STATUS_DONE"), "待资产化"),
            root_dir=Path(raw_root).expanduser() if raw_root else None,
            media_extension=_env(_k("MEDIA_EXTENSION"), ".mp4"),
            date_folder_suffix=_env(_k("DATE_FOLDER_SUFFIX"), "导出"),
            auto_delete_source=_env_bool(_k("AUTO_DELETE_SOURCE"), True),
            upload_url_template=_env(_k("UPLOAD_URL_TEMPLATE")).strip(),
            batch_size=_env_int(_k("BATCH_SIZE"), 50),
            batch_delay_min_ms=_env_int(_k("BATCH_DELAY_MIN_MS"), 3000),
            batch_delay_max_ms=_env_int(_k("BATCH_DELAY_MAX_MS"), 5000),
            max_batch_retries=_env_int(_k("MAX_BATCH_RETRIES"), 10),
            retry_backoff_seconds=_env_float(_k("RETRY_BACKOFF_SECONDS"), 5.0),
            poll_interval_seconds=_env_float(_k("POLL_INTERVAL_SECONDS"), 30.0),
            batch_timeout_seconds=_env_float(_k("BATCH_TIMEOUT_SECONDS"), 600.0),
            partial_grace_seconds=_env_float(_k("PARTIAL_GRACE_SECONDS"), 20.0),
            selector_upload_button=_env(
                _k("SELECTOR_UPLOAD_BUTTON"), "button:has-text('上传视频')"
            ),
            selector_upload_panel=_env(
                _k("SELECTOR_UPLOAD_PANEL"), ".material-center-v2-oc-upload-drag"
            ),
            selector_progress_bar=_env(
                _k("SELECTOR_PROGRESS_BAR"), ".material-center-v2-oc-upload-table-name-progress"
            ),
            selector_progress_success=_env(
                _k("SELECTOR_PROGRESS_SUCCESS"),
                ".material-center-v2-oc-upload-table-name-progress-success",
            ),
            selector_confirm_button=_env(
                _k("SELECTOR_CONFIRM_BUTTON"), ".material-center-v2-oc-upload-footer button:has-text('确定')"
            ),
            selector_cancel_button=_env(
                _k("SELECTOR_CANCEL_BUTTON"), ".material-center-v2-oc-upload-footer button:has-text('取消')"
            ),
            fetch_interval_minutes=_env_float(_k("FETCH_INTERVAL_MINUTES"), 5.0),
            idle_poll_seconds=_env_float(_k("IDLE_POLL_SECONDS"), 5.0),
            task_delay_seconds=_env_float(_k("TASK_DELAY_SECONDS"), 2.0),
            headless=_env_bool(_k("HEADLESS"), False),
            slow_mo_ms=_env_int(_k("SLOW_MO_MS"), 0),
            user_data_dir=_env_path(_k("USER_DATA_DIR"), data_dir / "browser-profile"),
            page_timeout_seconds=_env_float(_k("PAGE_TIMEOUT_SECONDS"), 30.0),
            event_timeout_seconds=_env_float(_k("EVENT_TIMEOUT_SECONDS"), 15.0),
        )


def validate_settings(settings: Settings) -> None:
    """
    Collect every problem first, then raise once.

    Only checks what would make the service fail later in a confusing way.
    """
    problems: list[str] = []

    required = {
        "FEISHU_APP_ID": settings.feishu_app_id,
        "FEISHU_APP_SECRET": settings.feishu_app_secret,
        "FEISHU_APP_TOKEN": settings.feishu_app_token,
        "FEISHU_TABLE_ID": settings.feishu_table_id,
        "FEISHU_FIELD_STATUS": settings.feishu_field_status,
        "FEISHU_FIELD_ACCOUNT": settings.feishu_field_account,
        "FEISHU_FIELD_DRAMA": settings.feishu_field_drama,
        "FEISHU_FIELD_DATE": settings.feishu_field_date,
    }
    for suffix, value in required.items():
        if not value:
            problems.append(f"{_k(suffix)} must not be empty")

    if settings.root_dir is None:
        problems.append(f"{_k('ROOT_DIR')} must not be empty")

    if not settings.upload_url_template:
        problems.append(f"{_k('UPLOAD_URL_TEMPLATE')} must not be empty")
    elif "{accountId}" not in settings.upload_url_template:
        problems.append(f"{_k('UPLOAD_URL_TEMPLATE')} must contain the {{accountId}} placeholder")

    if settings.batch_size <= 0:
        problems.append(f"{_k('BATCH_SIZE')} must be greater than 0")
    if settings.max_batch_retries <= 0:
        problems.append(f"{_k('MAX_BATCH_RETRIES')} must be greater than 0")
    if settings.fetch_interval_minutes <= 0:
        problems.append(f"{_k('FETCH_INTERVAL_MINUTES')} must be greater than 0")
    if settings.batch_delay_min_ms > settings.batch_delay_max_ms:
        problems.append(
            f"{_k('BATCH_DELAY_MIN_MS')} must not exceed {_k('BATCH_DELAY_MAX_MS')}"
        )

    if problems:
        raise ConfigurationError(problems)


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
