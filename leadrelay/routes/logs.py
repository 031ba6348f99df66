# leadrelay/routes/logs.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from leadrelay.routes.deps import get_store
from leadrelay.schemas.logs import IntegrationLogPage, RemarketingLogPage

router = APIRouter(prefix="/logs", tags=["logs"])

_STATUS_PATTERN = "^(success|error|skipped)$"


@router.get("/integrations", response_model=IntegrationLogPage)
async def list_integration_logs(
    form_id: Optional[int] = Query(default=None, ge=1),
    status: Optional[str] = Query(default=None, pattern=_STATUS_PATTERN),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    store=Depends(get_store),
) -> IntegrationLogPage:
    rows, total = await store.list_integration_logs(
        form_id=form_id, status=status, limit=limit, offset=offset
    )
    return IntegrationLogPage(
        data=rows,
        pagination={"total": total, "limit": limit, "offset": offset},
    )


@router.get("/remarketing", response_model=RemarketingLogPage)
async def list_remarketing_logs(
    campaign_id: Optional[int] = Query(default=None, ge=1),
    status: Optional[str] = Query(default=None, pattern=_STATUS_PATTERN),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    store=Depends(get_store),
) -> RemarketingLogPage:
    rows, total = await store.list_remarketing_logs(
        campaign_id=campaign_id, status=status, limit=limit, offset=offset
    )
    return RemarketingLogPage(
        data=rows,
        pagination={"total": total, "limit": limit, "offset": offset},
    )
