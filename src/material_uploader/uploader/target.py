# src/material_uploader/uploader/target.py

from __future__ import annotations

from urllib.parse import urlparse

ACCOUNT_PLACEHOLDER = "{accountId}"


def build_upload_url(template: str, account: str) -> str:
    """Fill the advertiser account into the upload page template."""
    if ACCOUNT_PLACEHOLDER not in template:
        raise ValueError(f"Upload URL template has no {ACCOUNT_PLACEHOLDER} placeholder: {template}")
    return template.replace(ACCOUNT_PLACEHOLDER, str(account).strip())


def is_valid_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)

