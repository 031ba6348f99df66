# leadrelay/services/repository.py
"""
Persistence for the dispatch engine.

Every write is one statement committed on its own; no call here spans a
multi-statement transaction.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, List, Optional, Tuple

from sqlalchemy import and_, func, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leadrelay.core.exceptions import DatabaseError
from leadrelay.core.logging import get_structlog_logger
from leadrelay.models.campaign import RemarketingCampaign, RemarketingStep
from leadrelay.models.form import Form
from leadrelay.models.lead import Lead
from leadrelay.models.logs import IntegrationLog, RemarketingLog
from leadrelay.models.whatsapp_instance import EvolutionInstance
from leadrelay.services.eligibility import EligibilityWindow, build_eligible_leads_query
from leadrelay.services.records import (
    CampaignRecord,
    DeliveryStatus,
    FormRecord,
    InstanceRecord,
    LeadRecord,
    RequestContext,
    StepRecord,
    campaign_from_row,
    form_from_row,
    instance_from_row,
    lead_from_row,
    step_from_row,
)

logger = get_structlog_logger(__name__)

_LEAD_COLUMNS = (
    Lead.id,
    Lead.form_id,
    Lead.data,
    Lead.source,
    Lead.ip_address,
    Lead.user_agent,
    Lead.is_partial,
    Lead.created_at,
    Lead.updated_at,
)


def complete_lead_statement(lead_id: int, form_id: int, data: Dict[str, Any]):
    """Partial-to-complete upgrade; an already completed lead never matches."""
    return (
        update(Lead)
        .where(Lead.id == lead_id, Lead.form_id == form_id, Lead.is_partial.is_(True))
        .values(
            data=data,
            is_partial=False,
            created_at=func.now(),
            updated_at=func.now(),
        )
        .returning(*_LEAD_COLUMNS)
    )


class SqlStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error("store.query_failed", error=str(e))
            raise DatabaseError(message="Database error", details={"error": str(e)}) from e
        finally:
            await session.close()

    # Forms

    async def get_active_form_by_slug(self, slug: str) -> Optional[FormRecord]:
        async with self._session() as session:
            result = await session.execute(
                select(Form.id, Form.name, Form.slug, Form.settings, Form.is_active).where(
                    Form.slug == slug, Form.is_active.is_(True)
                )
            )
            row = result.mappings().first()
        return form_from_row(row) if row else None

    async def get_public_form(self, slug: str) -> Optional[Dict[str, Any]]:
        async with self._session() as session:
            result = await session.execute(
                select(
                    Form.id,
                    Form.name,
                    Form.slug,
                    Form.description,
                    Form.type,
                    Form.fields,
                    Form.settings,
                    Form.is_active,
                ).where(Form.slug == slug, Form.is_active.is_(True))
            )
            row = result.mappings().first()
        return dict(row) if row else None

    # Leads

    async def insert_lead(
        self,
        form_id: int,
        data: Dict[str, Any],
        *,
        is_partial: bool,
        context: RequestContext,
    ) -> LeadRecord:
        async with self._session() as session:
            result = await session.execute(
                insert(Lead)
                .values(
                    form_id=form_id,
                    data=data,
                    source=context.source,
                    ip_address=context.ip_address,
                    user_agent=context.user_agent,
                    is_partial=is_partial,
                )
                .returning(*_LEAD_COLUMNS)
            )
            row = result.mappings().one()
        return lead_from_row(row)

    async def update_partial_lead(
        self, lead_id: int, form_id: int, data: Dict[str, Any]
    ) -> Optional[LeadRecord]:
        """Refresh a partial lead; completed leads never match."""
        async with self._session() as session:
            result = await session.execute(
                update(Lead)
                .where(Lead.id == lead_id, Lead.form_id == form_id, Lead.is_partial.is_(True))
                .values(data=data, updated_at=func.now())
                .returning(*_LEAD_COLUMNS)
            )
            row = result.mappings().first()
        return lead_from_row(row) if row else None

    async def complete_lead(
        self, lead_id: int, form_id: int, data: Dict[str, Any]
    ) -> Optional[LeadRecord]:
        """Upgrade a partial lead to completed; created_at becomes the submission time."""
        async with self._session() as session:
            result = await session.execute(complete_lead_statement(lead_id, form_id, data))
            row = result.mappings().first()
        return lead_from_row(row) if row else None

    # WhatsApp instances

    async def get_instance(self, instance_id: int, *, active_only: bool = True) -> Optional[InstanceRecord]:
        query = select(
            EvolutionInstance.id,
            EvolutionInstance.name,
            EvolutionInstance.api_url,
            EvolutionInstance.internal_api_url,
            EvolutionInstance.api_key,
            EvolutionInstance.default_number,
            EvolutionInstance.is_active,
        ).where(EvolutionInstance.id == instance_id)
        if active_only:
            query = query.where(EvolutionInstance.is_active.is_(True))

        async with self._session() as session:
            row = (await session.execute(query)).mappings().first()
        return instance_from_row(row) if row else None

    # Campaigns and steps

    async def list_active_campaigns(self) -> List[CampaignRecord]:
        async with self._session() as session:
            result = await session.execute(
                select(
                    RemarketingCampaign.id,
                    RemarketingCampaign.form_id,
                    RemarketingCampaign.name,
                    RemarketingCampaign.type,
                    RemarketingCampaign.is_active,
                    Form.name.label("form_name"),
                    Form.settings.label("form_settings"),
                )
                .join(Form, Form.id == RemarketingCampaign.form_id)
                .where(RemarketingCampaign.is_active.is_(True), Form.is_active.is_(True))
                .order_by(RemarketingCampaign.id.asc())
            )
            rows = result.mappings().all()
        return [campaign_from_row(row) for row in rows]

    async def list_steps(self, campaign_id: int) -> List[StepRecord]:
        async with self._session() as session:
            result = await session.execute(
                select(
                    RemarketingStep.id,
                    RemarketingStep.campaign_id,
                    RemarketingStep.step_order,
                    RemarketingStep.delay_value,
                    RemarketingStep.delay_unit,
                    RemarketingStep.message_type,
                    RemarketingStep.message_content,
                )
                .where(RemarketingStep.campaign_id == campaign_id)
                .order_by(RemarketingStep.step_order.asc())
            )
            rows = result.mappings().all()
        return [step_from_row(row) for row in rows]

    async def find_eligible_leads(
        self, form_id: int, step_id: int, window: EligibilityWindow
    ) -> List[LeadRecord]:
        query = build_eligible_leads_query(form_id, step_id, window).with_only_columns(*_LEAD_COLUMNS)
        async with self._session() as session:
            rows = (await session.execute(query)).mappings().all()
        return [lead_from_row(row) for row in rows]

    async def has_successful_delivery(self, lead_id: int, step_id: int) -> bool:
        async with self._session() as session:
            result = await session.execute(
                select(RemarketingLog.id)
                .where(
                    RemarketingLog.lead_id == lead_id,
                    RemarketingLog.step_id == step_id,
                    RemarketingLog.status == DeliveryStatus.SUCCESS.value,
                )
                .limit(1)
            )
            return result.first() is not None

    # Logs

    async def insert_remarketing_log(
        self,
        *,
        lead_id: int,
        campaign_id: int,
        step_id: int,
        status: DeliveryStatus,
        error_message: Optional[str] = None,
    ) -> None:
        async with self._session() as session:
            await session.execute(
                insert(RemarketingLog).values(
                    lead_id=lead_id,
                    campaign_id=campaign_id,
                    step_id=step_id,
                    status=status.value,
                    error_message=error_message,
                )
            )

    async def insert_integration_log(
        self,
        *,
        form_id: Optional[int],
        lead_id: Optional[int],
        integration_type: str,
        status: DeliveryStatus,
        payload: Any = None,
        response: Any = None,
        error_message: Optional[str] = None,
    ) -> None:
        async with self._session() as session:
            await session.execute(
                insert(IntegrationLog).values(
                    form_id=form_id,
                    lead_id=lead_id,
                    integration_type=integration_type,
                    status=status.value,
                    payload=payload,
                    response=response,
                    error_message=error_message,
                )
            )

    async def list_integration_logs(
        self,
        *,
        form_id: Optional[int] = None,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Dict[str, Any]], int]:
        filters = []
        if form_id is not None:
            filters.append(IntegrationLog.form_id == form_id)
        if status:
            filters.append(IntegrationLog.status == status)
        condition = and_(True, *filters)

        async with self._session() as session:
            result = await session.execute(
                select(IntegrationLog.__table__, Form.name.label("form_name"))
                .outerjoin(Form, Form.id == IntegrationLog.form_id)
                .where(condition)
                .order_by(IntegrationLog.created_at.desc(), IntegrationLog.id.desc())
                .limit(limit)
                .offset(offset)
            )
            rows = [dict(row) for row in result.mappings().all()]
            total = await session.scalar(
                select(func.count()).select_from(IntegrationLog).where(condition)
            )
        return rows, int(total or 0)

    async def list_remarketing_logs(
        self,
        *,
        campaign_id: Optional[int] = None,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Dict[str, Any]], int]:
        filters = []
        if campaign_id is not None:
            filters.append(RemarketingLog.campaign_id == campaign_id)
        if status:
            filters.append(RemarketingLog.status == status)
        condition = and_(True, *filters)

        async with self._session() as session:
            result = await session.execute(
                select(
                    RemarketingLog.__table__,
                    RemarketingCampaign.name.label("campaign_name"),
                    RemarketingStep.step_order,
                )
                .outerjoin(RemarketingCampaign, RemarketingCampaign.id == RemarketingLog.campaign_id)
                .outerjoin(RemarketingStep, RemarketingStep.id == RemarketingLog.step_id)
                .where(condition)
                .order_by(RemarketingLog.sent_at.desc(), RemarketingLog.id.desc())
                .limit(limit)
                .offset(offset)
            )
            rows = [dict(row) for row in result.mappings().all()]
            total = await session.scalar(
                select(func.count()).select_from(RemarketingLog).where(condition)
            )
        return rows, int(total or 0)
