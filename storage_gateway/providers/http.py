# storage_gateway/providers/http.py
"""
Small aiohttp helpers shared by the HTTP-based adapters.

All calls go through `session.request(method, url, **kwargs)` so any
aiohttp-compatible session (including test fakes) can be injected.
"""
from typing import Any, Dict, Optional

import aiohttp

from storage_gateway.monitoring.logger import log


class RemoteCallError(Exception):
    """Non-2xx answer from a provider API."""

    def __init__(self, status: int, body: str, url: Optional[str] = None):
        super().__init__(f"HTTP {status}: {body}")
        self.status = status
        self.body = body or ""
        self.url = url


async def request(session, method: str, url: str, expect: str = "json", **kwargs) -> Any:
    """Perform a request and decode the answer.

    `expect` is one of "json", "bytes", "text" or "none". Any status >= 400
    raises `RemoteCallError` carrying the response body.
    """
    async with session.request(method, url, **kwargs) as resp:
        if resp.status >= 400:
            text = await resp.text()
            log("WARNING", f"{method} {url} returned {resp.status}", module="provider_http", status=resp.status)
            raise RemoteCallError(resp.status, text, url)
        if expect == "bytes":
            return await resp.read()
        if expect == "text":
            return await resp.text()
        if expect == "none" or resp.status == 204:
            return None
        return await resp.json(content_type=None)


async def refresh_access_token(
    session,
    token_url: str,
    client_id: str,
    client_secret: str,
    refresh_token: str,
    scope: Optional[str] = None,
) -> str:
    """Exchange a long-lived refresh token for a short-lived access token."""
    data: Dict[str, str] = {
        "client_id": client_id,
        "client_secret": client_secret,
        "refresh_token": refresh_token,
        "grant_type": "refresh_token",
    }
    if scope:
        data["scope"] = scope
    payload = await request(session, "POST", token_url, data=data)
    access_token = (payload or {}).get("access_token")
    if not access_token:
        log("ERROR", "OAuth token response missing access_token", module="provider_http")
        raise RuntimeError("Token response missing access_token")
    return access_token


def related_body(metadata: Dict[str, Any], content: bytes, content_type: str) -> aiohttp.MultipartWriter:
    """multipart/related body: JSON metadata part followed by the media part."""
    writer = aiohttp.MultipartWriter("related")
    writer.append_json(metadata)
    writer.append(content, {"Content-Type": content_type})
    return writer
