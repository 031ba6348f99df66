# leadrelay/services/evolution.py
"""
Client for Evolution-API-compatible WhatsApp providers.
"""
from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional
from urllib.parse import quote

import aiohttp

from leadrelay.core.config import settings
from leadrelay.core.exceptions import ProviderError
from leadrelay.core.logging import get_structlog_logger
from leadrelay.services.composer import MediaPayload
from leadrelay.services.http import HttpClient, HttpResponse, describe_transport_error
from leadrelay.services.records import InstanceRecord

logger = get_structlog_logger(__name__)


def provider_error_message(body: Any, status: Optional[int] = None) -> str:
    """Best-effort human message out of an Evolution error body."""
    if isinstance(body, dict):
        response = body.get("response")
        if isinstance(response, dict) and response.get("message"):
            message = response["message"]
            if isinstance(message, list):
                return "; ".join(str(m) for m in message)
            return str(message)
        for key in ("message", "error"):
            if body.get(key):
                value = body[key]
                return value if isinstance(value, str) else str(value)
    if status is not None:
        return f"HTTP {status}"
    return "Unknown error"


class EvolutionClient:
    def __init__(
        self,
        instance: InstanceRecord,
        http: Optional[HttpClient] = None,
        presence_delay_ms: Optional[int] = None,
    ) -> None:
        self.instance = instance
        self.http = http or HttpClient()
        self.presence_delay_ms = (
            presence_delay_ms if presence_delay_ms is not None else settings.whatsapp_presence_delay_ms
        )

    @property
    def base_url(self) -> str:
        return self.instance.effective_api_url

    @property
    def headers(self) -> Dict[str, str]:
        return {"apikey": self.instance.api_key}

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}/{quote(self.instance.name, safe='')}"

    async def _post(self, path: str, payload: Dict[str, Any]) -> Any:
        url = self._url(path)
        try:
            response = await self.http.post_json(url, payload, headers=self.headers)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ProviderError(describe_transport_error(e)) from e

        return self._unwrap(response, url)

    def _unwrap(self, response: HttpResponse, url: str) -> Any:
        if response.ok:
            return response.body
        logger.warning(
            "evolution.request_failed",
            instance=self.instance.name,
            url=url,
            status=response.status,
        )
        raise ProviderError(
            provider_error_message(response.body, response.status),
            payload=response.body,
            status=response.status,
        )

    async def send_text(self, number: str, text: str, *, link_preview: bool = True) -> Any:
        return await self._post(
            "/message/sendText",
            {
                "number": number,
                "text": text,
                "delay": self.presence_delay_ms,
                "linkPreview": link_preview,
            },
        )

    async def send_media(
        self,
        number: str,
        media: MediaPayload,
        mediatype: str,
        *,
        caption: Optional[str] = None,
    ) -> Any:
        payload: Dict[str, Any] = {
            "number": number,
            "mediatype": mediatype,
            "media": media.media,
            "fileName": media.file_name,
            "delay": self.presence_delay_ms,
        }
        if media.mimetype:
            payload["mimetype"] = media.mimetype
        if caption:
            payload["caption"] = caption
        return await self._post("/message/sendMedia", payload)

    async def send_audio(self, number: str, media: MediaPayload) -> Any:
        return await self._post(
            "/message/sendWhatsAppAudio",
            {
                "number": number,
                "audio": media.media,
                "delay": self.presence_delay_ms,
            },
        )

    async def connection_state(self) -> Any:
        return await self._diagnostic_get("/instance/connectionState")

    async def connect(self) -> Any:
        """QR code / pairing payload for an instance that is not yet connected."""
        return await self._diagnostic_get("/instance/connect")

    async def _diagnostic_get(self, path: str) -> Any:
        url = self._url(path)
        try:
            response = await self.http.get_json(
                url,
                headers=self.headers,
                timeout=settings.diagnostics_timeout_seconds,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ProviderError(describe_transport_error(e)) from e
        return self._unwrap(response, url)
