# leadrelay/services/composer.py
from __future__ import annotations

import asyncio
import base64
import ipaddress
import json
import mimetypes
import re
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import unquote, urlsplit

from leadrelay.core.config import settings
from leadrelay.core.logging import get_structlog_logger
from leadrelay.services.fields import find_name, unwrap_answer

logger = get_structlog_logger(__name__)

MESSAGE_TYPES = ("text", "audio", "video", "document", "image")
MEDIA_TYPES = ("audio", "video", "document", "image")

DEFAULT_NOTIFICATION_TEMPLATE = "🎉 Novo lead!\n\nFormulário: {{form_name}}\n\n{{dados}}"

_PLACEHOLDER = re.compile(r"\{\{\s*([^{}]*?)\s*\}\}")

_DEFAULT_MIMETYPES = {
    "audio": "audio/mpeg",
    "video": "video/mp4",
    "image": "image/jpeg",
    "document": "application/pdf",
}


class MessageFormatError(ValueError):
    pass


@dataclass(frozen=True)
class MessageItem:
    type: str
    content: str
    filename: Optional[str] = None
    mimetype: Optional[str] = None
    caption: Optional[str] = None

    @property
    def is_media(self) -> bool:
        return self.type in MEDIA_TYPES


@dataclass(frozen=True)
class MediaPayload:
    media: str
    mimetype: Optional[str]
    file_name: str
    inline: bool = False


def format_answers(data: Mapping[str, Any]) -> str:
    return "\n".join(f"{key}: {unwrap_answer(value)}" for key, value in data.items())


def compose(template: Optional[str], lead_data: Optional[Mapping[str, Any]], form_name: Optional[str] = "") -> str:
    """
    Render ``{{placeholder}}`` tokens against a lead's answers.

    ``form_name``/``formulario`` resolve to the form name, ``name``/``nome``
    to the heuristic name answer, ``dados`` to every answer as ``key: value``
    lines, and anything else to the answer whose key matches
    case-insensitively. Unknown placeholders render as an empty string.
    """
    if not template:
        return ""

    data = dict(lead_data or {})
    by_lower_key: Dict[str, Any] = {}
    for key, value in data.items():
        by_lower_key.setdefault(str(key).lower(), value)
    lead_name = find_name(data) or ""

    def _replace(match: re.Match) -> str:
        token = match.group(1).lower()
        if token in ("form_name", "formulario"):
            return form_name or ""
        if token in ("name", "nome"):
            return lead_name
        if token == "dados":
            return format_answers(data)
        if token in by_lower_key:
            return unwrap_answer(by_lower_key[token])
        return ""

    return _PLACEHOLDER.sub(_replace, str(template))


def _item_from_mapping(raw: Mapping[str, Any]) -> MessageItem:
    item_type = str(raw.get("type") or "text").lower()
    if item_type not in MESSAGE_TYPES:
        raise MessageFormatError(f"Unsupported message type: {item_type}")
    return MessageItem(
        type=item_type,
        content=str(raw.get("content") or ""),
        filename=raw.get("filename") or raw.get("fileName"),
        mimetype=raw.get("mimetype"),
        caption=raw.get("caption"),
    )


def parse_message_items(message_type: str, content: Any) -> List[MessageItem]:
    """Ordered message items for a remarketing step."""
    message_type = (message_type or "text").lower()

    if message_type == "multi":
        raw = content
        if isinstance(content, str):
            try:
                raw = json.loads(content)
            except ValueError as e:
                raise MessageFormatError("Invalid multi-message content") from e
        if isinstance(raw, Mapping):
            raw = raw.get("items")
        if not isinstance(raw, list):
            raise MessageFormatError("Multi-message content must be a list of items")
        return [_item_from_mapping(entry) for entry in raw if isinstance(entry, Mapping)]

    if message_type not in MESSAGE_TYPES:
        raise MessageFormatError(f"Unsupported message type: {message_type}")
    return [MessageItem(type=message_type, content=str(content or ""))]


def items_from_setting(whatsapp_message: Any) -> List[MessageItem]:
    """Message items configured in a form's ``whatsapp_message`` setting."""
    if isinstance(whatsapp_message, Mapping) and isinstance(whatsapp_message.get("items"), list):
        return parse_message_items("multi", whatsapp_message["items"])
    if isinstance(whatsapp_message, str) and whatsapp_message.strip():
        return [MessageItem(type="text", content=whatsapp_message)]
    return [MessageItem(type="text", content=DEFAULT_NOTIFICATION_TEMPLATE)]


def _is_private_host(host: Optional[str]) -> bool:
    if not host:
        return True
    host = host.lower()
    if host == "localhost" or host.endswith((".local", ".internal", ".localhost")):
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        # Bare service names (docker/k8s) only resolve inside the network
        return "." not in host
    return address.is_private or address.is_loopback or address.is_link_local


def _local_upload_path(path: str, upload_dir: Path, upload_prefix: str) -> Optional[Path]:
    if not path.startswith(upload_prefix):
        return None
    relative = PurePosixPath(unquote(path[len(upload_prefix):]))
    if not relative.parts or ".." in relative.parts:
        return None
    return upload_dir.joinpath(*relative.parts)


def _guess_mimetype(name: str, mime_type: Optional[str], item_type: Optional[str]) -> Optional[str]:
    if mime_type:
        return mime_type
    guessed, _ = mimetypes.guess_type(name)
    if guessed:
        return guessed
    return _DEFAULT_MIMETYPES.get(item_type or "")


async def resolve_media(
    url: str,
    mime_type: Optional[str] = None,
    *,
    item_type: Optional[str] = None,
    file_name: Optional[str] = None,
    upload_dir: Optional[str] = None,
    upload_prefix: Optional[str] = None,
    public_base_url: Optional[str] = None,
) -> MediaPayload:
    """
    Turn a media reference into something the provider can fetch.

    Files in our own upload storage are read from disk and inlined as
    base64. Host-relative URLs and URLs on private hosts are rewritten onto
    the public base URL. Anything else is passed through.
    """
    url = (url or "").strip()
    upload_root = Path(upload_dir or settings.upload_dir)
    prefix = upload_prefix or settings.upload_url_prefix
    base_url = public_base_url if public_base_url is not None else settings.public_base_url

    parts = urlsplit(url)
    name = file_name or PurePosixPath(parts.path).name or "file"
    mimetype = _guess_mimetype(name, mime_type, item_type)
    private = not parts.netloc or _is_private_host(parts.hostname)

    if private or (base_url and parts.netloc == urlsplit(base_url).netloc):
        local_path = _local_upload_path(parts.path, upload_root, prefix)
        if local_path is not None and local_path.is_file():
            content = await asyncio.to_thread(local_path.read_bytes)
            logger.debug("media.inlined", url=url, size=len(content))
            return MediaPayload(
                media=base64.b64encode(content).decode("ascii"),
                mimetype=mimetype,
                file_name=name,
                inline=True,
            )

    if private and base_url:
        rewritten = base_url.rstrip("/") + (parts.path or "/")
        if parts.query:
            rewritten = f"{rewritten}?{parts.query}"
        logger.debug("media.rewritten", url=url, rewritten=rewritten)
        return MediaPayload(media=rewritten, mimetype=mimetype, file_name=name)

    if private:
        logger.warning("media.unreachable_url", url=url)

    return MediaPayload(media=url, mimetype=mimetype, file_name=name)
