# leadrelay/services/whatsapp_sender.py
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Sequence

from leadrelay.core.config import settings
from leadrelay.core.logging import get_structlog_logger
from leadrelay.services.composer import MessageItem, compose, resolve_media
from leadrelay.services.evolution import EvolutionClient
from leadrelay.services.retry import RetryOutcome, send_with_retry

logger = get_structlog_logger(__name__)

SleepFn = Callable[[float], Awaitable[Any]]


@dataclass
class SendReport:
    total: int
    sent: int = 0
    error: Optional[str] = None
    responses: List[Any] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.error is None and self.sent == self.total


class WhatsAppSender:
    """
    Sends an ordered list of message items to one number.

    Items go out strictly in order, each after its pacing delay and each
    through ``send_with_retry``. The first failed item stops the sequence;
    items already delivered stay delivered.
    """

    def __init__(
        self,
        client: EvolutionClient,
        *,
        sleep: SleepFn = asyncio.sleep,
        first_item_delay: Optional[float] = None,
        item_delay: Optional[float] = None,
        max_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        transient_markers: Optional[Sequence[str]] = None,
    ) -> None:
        self.client = client
        self.sleep = sleep
        self.first_item_delay = (
            settings.whatsapp_first_item_delay_seconds if first_item_delay is None else first_item_delay
        )
        self.item_delay = settings.whatsapp_item_delay_seconds if item_delay is None else item_delay
        self.max_attempts = max_attempts or settings.remarketing_max_attempts
        self.retry_delay = retry_delay
        self.transient_markers = transient_markers

    def pacing_delay(self, index: int) -> float:
        return self.first_item_delay if index == 0 else self.item_delay

    async def _send_item(
        self,
        number: str,
        item: MessageItem,
        lead_data: Mapping[str, Any],
        form_name: str,
    ) -> Any:
        if item.type == "text":
            text = compose(item.content, lead_data, form_name)
            return await self.client.send_text(number, text)

        media = await resolve_media(
            item.content,
            item.mimetype,
            item_type=item.type,
            file_name=item.filename,
        )
        if item.type == "audio":
            return await self.client.send_audio(number, media)

        caption = compose(item.caption, lead_data, form_name) if item.caption else None
        return await self.client.send_media(number, media, item.type, caption=caption)

    async def send_items(
        self,
        number: str,
        items: Sequence[MessageItem],
        lead_data: Mapping[str, Any],
        form_name: str = "",
    ) -> SendReport:
        report = SendReport(total=len(items))
        if not items:
            report.error = "No message items configured"
            return report

        for index, item in enumerate(items):
            if item.is_media and not item.content.strip():
                report.error = f"Item {index + 1} ({item.type}): missing media URL"
                break

            delay = self.pacing_delay(index)
            if delay > 0:
                await self.sleep(delay)

            outcome: RetryOutcome = await send_with_retry(
                lambda: self._send_item(number, item, lead_data, form_name),
                self.max_attempts,
                retry_delay=self.retry_delay,
                transient_markers=self.transient_markers,
                sleep=self.sleep,
            )
            if not outcome.success:
                report.error = f"Item {index + 1} ({item.type}): {outcome.error}"
                break

            report.sent += 1
            report.responses.append(outcome.response)
            logger.debug(
                "whatsapp.item_sent",
                instance=self.client.instance.name,
                item=index + 1,
                total=len(items),
                type=item.type,
                attempts=outcome.attempts,
            )

        return report
