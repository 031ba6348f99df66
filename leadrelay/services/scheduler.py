# leadrelay/services/scheduler.py
"""
Remarketing scheduler.

Every tick walks the active campaigns, works out which leads have become
due for each step, and sends the step's messages over WhatsApp. A lead is
contacted at most once per step: any ``success`` row in remarketing_logs
for (lead, step) removes it from later ticks, while ``error`` and
``skipped`` rows do not.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional

from leadrelay.core.config import settings
from leadrelay.core.logging import get_structlog_logger
from leadrelay.services.composer import MessageFormatError, parse_message_items
from leadrelay.services.delivery_logger import DeliveryLogger
from leadrelay.services.eligibility import eligibility_window
from leadrelay.services.evolution import EvolutionClient
from leadrelay.services.fields import lookup_phone
from leadrelay.services.locks import NullLock, lock_key
from leadrelay.services.records import (
    CampaignRecord,
    DeliveryStatus,
    InstanceRecord,
    LeadRecord,
    StepRecord,
    parse_instance_id,
)
from leadrelay.services.whatsapp_sender import WhatsAppSender

logger = get_structlog_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TickStats:
    campaigns: int = 0
    leads: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0


class RemarketingScheduler:
    def __init__(
        self,
        store,
        delivery_logger: Optional[DeliveryLogger] = None,
        *,
        client_factory: Callable[[InstanceRecord], EvolutionClient] = EvolutionClient,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        lock=None,
        interval: Optional[float] = None,
        window: Optional[timedelta] = None,
    ) -> None:
        self.store = store
        self.delivery_logger = delivery_logger or DeliveryLogger(store)
        self.client_factory = client_factory
        self.clock = clock
        self.sleep = sleep
        self.lock = lock or NullLock()
        self.interval = interval if interval is not None else settings.scheduler_interval_seconds
        self.window = window or timedelta(hours=settings.eligibility_window_hours)

        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()
        self.last_tick_at: Optional[datetime] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if self.running:
            return self._task
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name="remarketing-scheduler")
        logger.info("scheduler.started", interval_seconds=self.interval)
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stopping.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("scheduler.stopped")

    async def _loop(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.run_tick()
            except Exception as e:
                logger.error("scheduler.tick.crashed", error=str(e), exc_info=True)

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                continue

    async def run_tick(self) -> TickStats:
        stats = TickStats()
        self.last_tick_at = self.clock()
        campaigns = await self.store.list_active_campaigns()
        logger.info("scheduler.tick.started", campaigns=len(campaigns))

        for campaign in campaigns:
            stats.campaigns += 1
            try:
                await self._process_campaign(campaign, stats)
            except Exception as e:
                logger.error(
                    "scheduler.campaign.failed",
                    campaign_id=campaign.id,
                    error=str(e),
                    exc_info=True,
                )

        logger.info(
            "scheduler.tick.finished",
            campaigns=stats.campaigns,
            leads=stats.leads,
            sent=stats.sent,
            failed=stats.failed,
            skipped=stats.skipped,
        )
        return stats

    async def _resolve_instance(self, campaign: CampaignRecord) -> Optional[InstanceRecord]:
        raw = campaign.form_settings.get("evolution_instance_id")
        instance_id = parse_instance_id(raw)
        if instance_id is None:
            if raw not in (None, ""):
                logger.warning("scheduler.campaign.invalid_instance_id", campaign_id=campaign.id, value=str(raw))
            return None
        return await self.store.get_instance(instance_id)

    async def _process_campaign(self, campaign: CampaignRecord, stats: TickStats) -> None:
        log = logger.bind(campaign_id=campaign.id, campaign_type=campaign.type.value)

        steps = await self.store.list_steps(campaign.id)
        if not steps:
            log.debug("scheduler.campaign.no_steps")
            return

        instance = await self._resolve_instance(campaign)
        if instance is None:
            log.debug("scheduler.campaign.no_instance")
            return

        sender = WhatsAppSender(
            self.client_factory(instance),
            sleep=self.sleep,
            first_item_delay=0,
            item_delay=settings.whatsapp_item_delay_seconds,
        )
        for step in steps:
            await self._process_step(campaign, step, sender, stats)

    async def _process_step(
        self,
        campaign: CampaignRecord,
        step: StepRecord,
        sender: WhatsAppSender,
        stats: TickStats,
    ) -> None:
        window = eligibility_window(self.clock(), step, campaign.type, self.window)
        key = lock_key(campaign.id, step.id)
        if not await self.lock.acquire(key):
            logger.info("scheduler.step.locked", campaign_id=campaign.id, step_id=step.id)
            return

        try:
            leads = await self.store.find_eligible_leads(campaign.form_id, step.id, window)
            if leads:
                logger.info(
                    "scheduler.step.due",
                    campaign_id=campaign.id,
                    step_id=step.id,
                    leads=len(leads),
                )
            for lead in leads:
                stats.leads += 1
                status = await self._deliver(campaign, step, lead, sender)
                if status is DeliveryStatus.SUCCESS:
                    stats.sent += 1
                elif status is DeliveryStatus.ERROR:
                    stats.failed += 1
                elif status is DeliveryStatus.SKIPPED:
                    stats.skipped += 1
        finally:
            await self.lock.release(key)

    async def _deliver(
        self,
        campaign: CampaignRecord,
        step: StepRecord,
        lead: LeadRecord,
        sender: WhatsAppSender,
    ) -> Optional[DeliveryStatus]:
        if await self.store.has_successful_delivery(lead.id, step.id):
            return None

        async def record(status: DeliveryStatus, error: Optional[str] = None) -> DeliveryStatus:
            await self.delivery_logger.remarketing(
                lead_id=lead.id,
                campaign_id=campaign.id,
                step_id=step.id,
                status=status,
                error_message=error,
            )
            return status

        phone = lookup_phone(lead.data, settings.whatsapp_min_phone_digits)
        if not phone.valid:
            return await record(DeliveryStatus.SKIPPED, phone.skip_reason)

        try:
            items = parse_message_items(step.message_type, step.message_content)
        except MessageFormatError as e:
            return await record(DeliveryStatus.ERROR, str(e))

        report = await sender.send_items(phone.digits, items, lead.data, campaign.form_name)
        if report.success:
            logger.info(
                "scheduler.message.sent",
                campaign_id=campaign.id,
                step_id=step.id,
                lead_id=lead.id,
                items=report.sent,
            )
            return await record(DeliveryStatus.SUCCESS)

        logger.warning(
            "scheduler.message.failed",
            campaign_id=campaign.id,
            step_id=step.id,
            lead_id=lead.id,
            error=report.error,
        )
        return await record(DeliveryStatus.ERROR, report.error)
