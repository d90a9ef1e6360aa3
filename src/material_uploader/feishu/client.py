# src/material_uploader/feishu/client.py

from __future__ import annotations

"""
Feishu Bitable record source.

- tenant access token from the internal-app auth endpoint, cached until shortly
  before it expires
- records/search filtered on the pending status, followed page by page
- single-record PATCH for status changes

Every API envelope carries a "code"; anything other than 0 is an error.
"""

import logging
import time
from datetime import datetime
from types import TracebackType
from typing import Any

import httpx

from ..errors import FetchFailure, RemoteUpdateFailure, UploaderError
from ..tasks.task_models import RemoteRecord

logger = logging.getLogger(__name__)

TOKEN_REFRESH_MARGIN_SECONDS = 60


class FeishuApiError(UploaderError):
    """Transport failure or non-zero API code."""


def _first(value: Any) -> Any:
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, dict):
        value = value.get("text") or None
    return value


def normalize_date(value: Any) -> str | None:
    """Date cells come back as epoch milliseconds or already as text."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000).strftime("%Y-%m-%d")
    return str(value).strip() or None


class FeishuClient:
    def __init__(
        self,
        *,
        app_id: str,
        app_secret: str,
        app_token: str,
        table_id: str,
        fields: dict[str, str],
        pending_status: str = "待上传",
        base_url: str = "https://open.feishu.cn/open-apis/bitable/v1",
        auth_url: str = "https://open.feishu.cn/open-apis/auth/v3/tenant_access_token/internal",
        page_size: int = 100,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._app_id = app_id
        self._app_secret = app_secret
        self._app_token = app_token
        self._table_id = table_id
        self._fields = dict(fields)
        self._pending_status = pending_status
        self._base_url = base_url.rstrip("/")
        self._auth_url = auth_url
        self._page_size = int(page_size)
        self._timeout = float(timeout_seconds)
        self._transport = transport

        self._client: httpx.AsyncClient | None = None
        self._token: str | None = None
        self._token_expires_at = 0.0

    @classmethod
    def from_settings(cls, settings, *, transport: httpx.AsyncBaseTransport | None = None) -> FeishuClient:
        return cls(
            app_id=settings.feishu_app_id,
            app_secret=settings.feishu_app_secret,
            app_token=settings.feishu_app_token,
            table_id=settings.feishu_table_id,
            fields={
                "status": settings.feishu_field_status,
                "account": settings.feishu_field_account,
                "drama": settings.feishu_field_drama,
                "date": settings.feishu_field_date,
            },
            pending_status=settings.status_pending,
            base_url=settings.feishu_base_url,
            auth_url=settings.feishu_auth_url,
            page_size=settings.feishu_page_size,
            timeout_seconds=settings.feishu_timeout_seconds,
            transport=transport,
        )

    # ---- client management ----

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                headers={"Content-Type": "application/json; charset=utf-8"},
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> FeishuClient:
        self._get_client()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    # ---- auth ----

    async def _get_token(self) -> str:
        now = time.monotonic()
        if self._token and now < self._token_expires_at:
            return self._token

        logger.debug("Requesting Feishu tenant access token")
        try:
            resp = await self._get_client().post(
                self._auth_url,
                json={"app_id": self._app_id, "app_secret": self._app_secret},
            )
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise FeishuApiError(f"Token request failed: {exc}") from exc

        if body.get("code") != 0:
            raise FeishuApiError(
                "Token request rejected",
                {"code": body.get("code"), "msg": body.get("msg")},
            )
        token = body.get("tenant_access_token")
        if not token:
            raise FeishuApiError("Token response carried no tenant_access_token")

        expire = int(body.get("expire") or 0)
        self._token = str(token)
        self._token_expires_at = now + max(0, expire - TOKEN_REFRESH_MARGIN_SECONDS)
        return self._token

    async def _request(self, method: str, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        token = await self._get_token()
        url = f"{self._base_url}{path}"
        try:
            resp = await self._get_client().request(
                method,
                url,
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
            )
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise FeishuApiError(f"{method} {path} failed: {exc}") from exc

        if body.get("code") != 0:
            raise FeishuApiError(
                f"{method} {path} rejected",
                {"code": body.get("code"), "msg": body.get("msg")},
            )
        return body.get("data") or {}

    # ---- records ----

    def _records_path(self) -> str:
        return f"/apps/{self._app_token}/tables/{self._table_id}/records"

    def parse_record(self, item: dict[str, Any]) -> RemoteRecord | None:
        record_id = item.get("record_id")
        fields = item.get("fields") or {}

        try:
            drama = _first(fields.get(self._fields["drama"]))
            date = normalize_date(_first(fields.get(self._fields["date"])))
            account = _first(fields.get(self._fields["account"]))
            status = _first(fields.get(self._fields["status"]))
        except (ValueError, OverflowError, OSError, TypeError) as exc:
            logger.warning("Record %s could not be parsed (%s); skipping", record_id, exc)
            return None

        if not record_id or not drama or not date or not account or not status:
            logger.warning("Record %s is missing required fields; skipping", record_id)
            return None

        return RemoteRecord(
            record_id=str(record_id),
            work_item_name=str(drama).strip(),
            date=date,
            account=str(account).strip(),
            status=str(status),
        )

    async def get_pending_records(self) -> list[RemoteRecord]:
        path = f"{self._records_path()}/search"
        items: list[dict[str, Any]] = []
        page_token: str | None = None

        try:
            while True:
                payload: dict[str, Any] = {
                    "field_names": [
                        self._fields["drama"],
                        self._fields["date"],
                        self._fields["account"],
                        self._fields["status"],
                    ],
                    "page_size": self._page_size,
                    "filter": {
                        "conjunction": "and",
                        "conditions": [
                            {
                                "field_name": self._fields["status"],
                                "operator": "is",
                                "value": [self._pending_status],
                            }
                        ],
                    },
                }
                if page_token:
                    payload["page_token"] = page_token

                data = await self._request("POST", path, payload)
                items.extend(data.get("items") or [])

                page_token = data.get("page_token")
                if not data.get("has_more") or not page_token:
                    break
        except FeishuApiError as exc:
            raise FetchFailure(f"Fetching pending records failed: {exc}") from exc

        records = [r for r in (self.parse_record(i) for i in items) if r is not None]
        logger.info("Feishu returned %d pending record(s)", len(records))
        return records

    async def update_record_status(self, record_id: str, status: str) -> None:
        path = f"{self._records_path()}/{record_id}"
        try:
            await self._request("PATCH", path, {"fields": {self._fields["status"]: status}})
        except FeishuApiError as exc:
            raise RemoteUpdateFailure(record_id, status, str(exc)) from exc
        logger.info("Record %s status -> %s", record_id, status)
