# leadrelay/services/lead_capture.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from leadrelay.core.logging import get_structlog_logger
from leadrelay.services.records import FormRecord, LeadRecord, RequestContext

logger = get_structlog_logger(__name__)


@dataclass(frozen=True)
class CaptureResult:
    lead: LeadRecord
    created: bool


async def save_partial(
    store,
    form: FormRecord,
    data: Dict[str, Any],
    *,
    partial_lead_id: Optional[int],
    context: RequestContext,
) -> CaptureResult:
    """
    Progressive save while the visitor is still filling the form.

    An id that no longer matches a partial lead (unknown, other form, or
    already completed) starts a fresh partial lead instead.
    """
    if partial_lead_id:
        lead = await store.update_partial_lead(partial_lead_id, form.id, data)
        if lead is not None:
            logger.debug("lead.partial_updated", form_id=form.id, lead_id=lead.id)
            return CaptureResult(lead=lead, created=False)
        logger.info("lead.partial_missing", form_id=form.id, partial_lead_id=partial_lead_id)

    lead = await store.insert_lead(form.id, data, is_partial=True, context=context)
    logger.info("lead.partial_created", form_id=form.id, lead_id=lead.id)
    return CaptureResult(lead=lead, created=True)


async def submit(
    store,
    form: FormRecord,
    data: Dict[str, Any],
    *,
    partial_lead_id: Optional[int],
    context: RequestContext,
) -> CaptureResult:
    if partial_lead_id:
        lead = await store.complete_lead(partial_lead_id, form.id, data)
        if lead is not None:
            logger.info("lead.completed", form_id=form.id, lead_id=lead.id)
            return CaptureResult(lead=lead, created=False)

    lead = await store.insert_lead(form.id, data, is_partial=False, context=context)
    logger.info("lead.created", form_id=form.id, lead_id=lead.id, source=context.source)
    return CaptureResult(lead=lead, created=True)
