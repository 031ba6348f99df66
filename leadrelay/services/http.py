# leadrelay/services/http.py
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

import aiohttp

from leadrelay.core.config import settings

USER_AGENT = "LeadRelay/1.0"


@dataclass(frozen=True)
class HttpResponse:
    status: int
    text: str
    body: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def _parse_body(text: str) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return {"error": "Non-JSON response", "body": text[:1000]}


class HttpClient:
    """
    Outbound JSON calls to providers.

    Transport failures (timeouts, DNS, refused connections) are raised as
    ``aiohttp.ClientError`` / ``asyncio.TimeoutError``; any HTTP status is
    returned as an ``HttpResponse``.
    """

    def __init__(self, timeout: Optional[float] = None) -> None:
        self.timeout = timeout if timeout is not None else settings.outbound_timeout_seconds

    def _client_timeout(self, timeout: Optional[float]) -> aiohttp.ClientTimeout:
        total = timeout if timeout is not None else self.timeout
        if total is None:
            return aiohttp.ClientTimeout(total=300)
        return aiohttp.ClientTimeout(total=total)

    async def request(
        self,
        method: str,
        url: str,
        *,
        json_body: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> HttpResponse:
        request_headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        }
        request_headers.update(headers or {})

        async with aiohttp.ClientSession() as session:
            async with session.request(
                method,
                url,
                json=json_body,
                headers=request_headers,
                timeout=self._client_timeout(timeout),
            ) as response:
                text = await response.text()
                return HttpResponse(status=response.status, text=text, body=_parse_body(text))

    async def post_json(
        self,
        url: str,
        payload: Dict[str, Any],
        *,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> HttpResponse:
        return await self.request("POST", url, json_body=payload, headers=headers, timeout=timeout)

    async def get_json(
        self,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> HttpResponse:
        return await self.request("GET", url, headers=headers, timeout=timeout)


def describe_transport_error(exc: BaseException) -> str:
    if isinstance(exc, asyncio.TimeoutError):
        return "Request timeout"
    if isinstance(exc, aiohttp.ClientError):
        return f"Client error: {str(exc)[:200]}"
    return f"Unexpected error: {str(exc)[:200]}"
