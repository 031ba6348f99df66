# leadrelay/services/channels/base.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from leadrelay.core.exceptions import ChannelConfigurationError
from leadrelay.core.logging import get_structlog_logger
from leadrelay.services.delivery_logger import DeliveryLogger
from leadrelay.services.http import HttpClient
from leadrelay.services.records import (
    DeliveryStatus,
    FormRecord,
    IntegrationType,
    LeadRecord,
    RequestContext,
)

logger = get_structlog_logger(__name__)


@dataclass(frozen=True)
class ChannelResult:
    status: DeliveryStatus
    response: Any = None
    error: Optional[str] = None
    payload: Any = None

    @property
    def success(self) -> bool:
        return self.status is DeliveryStatus.SUCCESS

    @classmethod
    def ok(cls, response: Any = None, payload: Any = None) -> "ChannelResult":
        return cls(status=DeliveryStatus.SUCCESS, response=response, payload=payload)

    @classmethod
    def failed(cls, error: str, response: Any = None, payload: Any = None) -> "ChannelResult":
        return cls(status=DeliveryStatus.ERROR, error=error, response=response, payload=payload)

    @classmethod
    def skipped(cls, reason: str, payload: Any = None) -> "ChannelResult":
        return cls(status=DeliveryStatus.SKIPPED, error=reason, payload=payload)


class Channel:
    """
    One outbound integration.

    ``check_config`` runs before any task is spawned and raises
    ``ChannelConfigurationError`` when a required setting is missing; what
    it returns is handed to ``deliver``. ``run`` never raises: whatever
    ``deliver`` does ends up as exactly one IntegrationLog row.
    """

    integration_type: IntegrationType

    def __init__(self, delivery_logger: DeliveryLogger, http: Optional[HttpClient] = None) -> None:
        self.delivery_logger = delivery_logger
        self.http = http or HttpClient()

    def is_enabled(self, form_settings: Mapping[str, Any]) -> bool:
        raise NotImplementedError

    async def check_config(self, form: FormRecord) -> Any:
        return None

    async def deliver(
        self,
        form: FormRecord,
        lead: LeadRecord,
        answers: Dict[str, Any],
        context: RequestContext,
        config: Any,
    ) -> ChannelResult:
        raise NotImplementedError

    async def run(
        self,
        form: FormRecord,
        lead: LeadRecord,
        answers: Dict[str, Any],
        context: RequestContext,
        config: Any = None,
    ) -> ChannelResult:
        try:
            result = await self.deliver(form, lead, answers, context, config)
        except Exception as e:
            logger.error(
                "channel.unexpected_error",
                integration_type=self.integration_type.value,
                form_id=form.id,
                lead_id=lead.id,
                error=str(e),
                exc_info=True,
            )
            result = ChannelResult.failed(f"Unexpected error: {str(e)[:200]}")

        await self.delivery_logger.integration(
            form_id=form.id,
            lead_id=lead.id,
            integration_type=self.integration_type,
            status=result.status,
            payload=result.payload,
            response=result.response,
            error_message=result.error,
        )
        return result

    async def log_error(self, form: FormRecord, lead: LeadRecord, message: str) -> None:
        await self.delivery_logger.integration(
            form_id=form.id,
            lead_id=lead.id,
            integration_type=self.integration_type,
            status=DeliveryStatus.ERROR,
            error_message=message,
        )

    async def log_configuration_error(
        self, form: FormRecord, lead: LeadRecord, error: ChannelConfigurationError
    ) -> None:
        await self.log_error(form, lead, error.message)


def require_setting(form_settings: Mapping[str, Any], key: str, code: str, message: str) -> Any:
    value = form_settings.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ChannelConfigurationError(code=code, message=message)
    return value.strip() if isinstance(value, str) else value
