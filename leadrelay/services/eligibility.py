# leadrelay/services/eligibility.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import Select, and_, exists, select

from leadrelay.core.config import settings
from leadrelay.models.lead import Lead
from leadrelay.models.logs import RemarketingLog
from leadrelay.services.records import (
    CampaignType,
    DelayUnit,
    DeliveryStatus,
    LeadRecord,
    StepRecord,
)

_UNIT_TO_TIMEDELTA_ARG = {
    DelayUnit.MINUTES: "minutes",
    DelayUnit.HOURS: "hours",
    DelayUnit.DAYS: "days",
}


def delay_to_timedelta(value: int, unit: DelayUnit | str) -> timedelta:
    unit = DelayUnit(unit) if isinstance(unit, str) else unit
    if value < 0:
        raise ValueError("delay_value must not be negative")
    return timedelta(**{_UNIT_TO_TIMEDELTA_ARG[unit]: value})


@dataclass(frozen=True)
class EligibilityWindow:
    """
    Leads whose anchor timestamp satisfies ``lower < anchor <= upper``.

    ``upper`` is the step's due time (now - delay); ``lower`` trails it by
    the safety window so a backlog of old leads never fires after downtime.
    """
    anchor_field: str
    is_partial: bool
    lower: datetime
    upper: datetime

    def anchor_of(self, lead: LeadRecord) -> datetime:
        return getattr(lead, self.anchor_field)

    def contains(self, lead: LeadRecord) -> bool:
        if lead.is_partial != self.is_partial:
            return False
        anchor = self.anchor_of(lead)
        return self.lower < anchor <= self.upper


def eligibility_window(
    now: datetime,
    step: StepRecord,
    campaign_type: CampaignType,
    window: Optional[timedelta] = None,
) -> EligibilityWindow:
    if window is None:
        window = timedelta(hours=settings.eligibility_window_hours)

    upper = now - delay_to_timedelta(step.delay_value, step.delay_unit)
    if campaign_type is CampaignType.RECOVERY:
        # Time since the last interaction with the abandoned form
        anchor_field, is_partial = "updated_at", True
    else:
        # Time since submission
        anchor_field, is_partial = "created_at", False

    return EligibilityWindow(
        anchor_field=anchor_field,
        is_partial=is_partial,
        lower=upper - window,
        upper=upper,
    )


def build_eligible_leads_query(form_id: int, step_id: int, window: EligibilityWindow) -> Select:
    anchor = getattr(Lead, window.anchor_field)
    already_sent = exists().where(
        and_(
            RemarketingLog.lead_id == Lead.id,
            RemarketingLog.step_id == step_id,
            RemarketingLog.status == DeliveryStatus.SUCCESS.value,
        )
    )
    return (
        select(Lead)
        .where(
            Lead.form_id == form_id,
            Lead.is_partial.is_(window.is_partial),
            anchor > window.lower,
            anchor <= window.upper,
            ~already_sent,
        )
        .order_by(anchor.asc(), Lead.id.asc())
    )
