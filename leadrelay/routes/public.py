# leadrelay/routes/public.py
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, status

from leadrelay.core.exceptions import NotFoundError
from leadrelay.core.logging import get_structlog_logger
from leadrelay.routes.deps import get_dispatcher, get_request_context, get_store
from leadrelay.schemas.capture import (
    CaptureRequest,
    PartialLeadResponse,
    PublicFormResponse,
    SubmitResponse,
)
from leadrelay.services import lead_capture
from leadrelay.services.dispatcher import IntegrationDispatcher
from leadrelay.services.records import FormRecord, RequestContext

logger = get_structlog_logger(__name__)

router = APIRouter(prefix="/public/forms", tags=["public"])

_SECRET_SUFFIXES = ("_access_token", "_api_key", "_apikey", "_secret")


def _public_settings(form_settings: Dict[str, Any]) -> Dict[str, Any]:
    return {
        key: value
        for key, value in (form_settings or {}).items()
        if not key.lower().endswith(_SECRET_SUFFIXES)
    }


async def _active_form(store, slug: str) -> FormRecord:
    form = await store.get_active_form_by_slug(slug)
    if form is None:
        raise NotFoundError("Form not found", code="form_not_found")
    return form


@router.get("/{slug}", response_model=PublicFormResponse)
async def get_public_form(slug: str, store=Depends(get_store)) -> PublicFormResponse:
    form = await store.get_public_form(slug)
    if form is None:
        raise NotFoundError("Form not found", code="form_not_found")
    form["settings"] = _public_settings(form.get("settings"))
    return PublicFormResponse(data=form)


@router.post("/{slug}/partial", response_model=PartialLeadResponse)
async def save_partial_lead(
    slug: str,
    body: CaptureRequest,
    store=Depends(get_store),
    context: RequestContext = Depends(get_request_context),
) -> PartialLeadResponse:
    form = await _active_form(store, slug)
    result = await lead_capture.save_partial(
        store,
        form,
        body.data,
        partial_lead_id=body.partial_lead_id,
        context=context,
    )
    return PartialLeadResponse(data={"lead_id": result.lead.id})


@router.post("/{slug}/submit", response_model=SubmitResponse, status_code=status.HTTP_201_CREATED)
async def submit_form(
    slug: str,
    body: CaptureRequest,
    store=Depends(get_store),
    dispatcher: IntegrationDispatcher = Depends(get_dispatcher),
    context: RequestContext = Depends(get_request_context),
) -> SubmitResponse:
    form = await _active_form(store, slug)
    result = await lead_capture.submit(
        store,
        form,
        body.data,
        partial_lead_id=body.partial_lead_id,
        context=context,
    )

    # The submitter never waits on (or sees) integration outcomes
    dispatcher.dispatch_in_background(form, result.lead, body.data, context)

    return SubmitResponse(
        message=form.settings.get("success_message") or "Lead created successfully",
        redirect_url=form.settings.get("redirect_url"),
        lead_id=result.lead.id,
    )
