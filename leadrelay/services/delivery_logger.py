# leadrelay/services/delivery_logger.py
from __future__ import annotations

from typing import Any, Optional

from leadrelay.core.exceptions import DatabaseError
from leadrelay.core.logging import get_structlog_logger
from leadrelay.services.records import DeliveryStatus, IntegrationType

logger = get_structlog_logger(__name__)

_MAX_ERROR_LENGTH = 2000


def _truncate(message: Optional[str]) -> Optional[str]:
    if message is None:
        return None
    message = str(message)
    return message if len(message) <= _MAX_ERROR_LENGTH else message[:_MAX_ERROR_LENGTH]


class DeliveryLogger:
    """
    Audit writes for both pipelines.

    A failed log write is reported and dropped: losing an audit row must
    not turn a delivered message into a failed dispatch.
    """

    def __init__(self, store) -> None:
        self.store = store

    async def integration(
        self,
        *,
        form_id: Optional[int],
        lead_id: Optional[int],
        integration_type: IntegrationType,
        status: DeliveryStatus,
        payload: Any = None,
        response: Any = None,
        error_message: Optional[str] = None,
    ) -> None:
        log = logger.bind(
            form_id=form_id,
            lead_id=lead_id,
            integration_type=integration_type.value,
            status=status.value,
        )
        if status is DeliveryStatus.ERROR:
            log.warning("integration.failed", error=error_message)
        else:
            log.info("integration.logged", reason=error_message)

        try:
            await self.store.insert_integration_log(
                form_id=form_id,
                lead_id=lead_id,
                integration_type=integration_type.value,
                status=status,
                payload=payload,
                response=response,
                error_message=_truncate(error_message),
            )
        except DatabaseError as e:
            log.error("integration_log.write_failed", error=e.message)

    async def remarketing(
        self,
        *,
        lead_id: int,
        campaign_id: int,
        step_id: int,
        status: DeliveryStatus,
        error_message: Optional[str] = None,
    ) -> None:
        try:
            await self.store.insert_remarketing_log(
                lead_id=lead_id,
                campaign_id=campaign_id,
                step_id=step_id,
                status=status,
                error_message=_truncate(error_message),
            )
        except DatabaseError as e:
            logger.error(
                "remarketing_log.write_failed",
                lead_id=lead_id,
                campaign_id=campaign_id,
                step_id=step_id,
                status=status.value,
                error=e.message,
            )
