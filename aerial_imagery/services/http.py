from __future__ import annotations

from typing import Dict

import httpx

ERROR_DETAIL_LIMIT = 160


def bearer_headers(token: str, *, json_body: bool = False) -> Dict[str, str]:
    headers = {"Authorization": f"Bearer {token}"}
    if json_body:
        headers["Content-Type"] = "application/json"
        headers["Accept"] = "application/json"
    return headers


def short_error_detail(detail: str) -> str:
    detail = detail.strip()
    if len(detail) > ERROR_DETAIL_LIMIT:
        return f"{detail[:ERROR_DETAIL_LIMIT - 3]}..."
    return detail or "(no detail)"


def response_detail(response: httpx.Response) -> str:
    """Summarize an error response for logging."""

    content_type = response.headers.get("Content-Type", "").lower()
    if "image" in content_type:
        return f"{content_type} payload ({len(response.content)} bytes)"

    if "json" in content_type:
        try:
            payload = response.json()
        except ValueError:
            return short_error_detail(response.text)
        if isinstance(payload, dict):
            for key in ("message", "error_description", "error", "detail", "description"):
                value = payload.get(key)
                if isinstance(value, str) and value.strip():
                    return short_error_detail(value)
        return short_error_detail(str(payload))

    return short_error_detail(response.text)
