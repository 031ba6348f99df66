# leadrelay/routes/evolution.py
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from leadrelay.core.exceptions import ExternalServiceError, NotFoundError, ProviderError
from leadrelay.core.logging import get_structlog_logger
from leadrelay.routes.deps import get_store
from leadrelay.services.evolution import EvolutionClient
from leadrelay.services.records import InstanceRecord

logger = get_structlog_logger(__name__)

router = APIRouter(prefix="/evolution-instances", tags=["evolution"])


async def _instance(store, instance_id: int) -> InstanceRecord:
    instance = await store.get_instance(instance_id, active_only=False)
    if instance is None:
        raise NotFoundError("Instance not found", code="instance_not_found")
    return instance


def _client(request: Request, instance: InstanceRecord) -> EvolutionClient:
    factory = getattr(request.app.state, "evolution_client_factory", None) or EvolutionClient
    return factory(instance)


@router.get("/{instance_id}/status")
async def instance_status(instance_id: int, request: Request, store=Depends(get_store)) -> Dict[str, Any]:
    instance = await _instance(store, instance_id)
    try:
        state = await _client(request, instance).connection_state()
    except ProviderError as e:
        logger.warning("evolution.status_failed", instance_id=instance_id, error=e.message)
        raise ExternalServiceError(
            f"Evolution API unreachable: {e.message}",
            code="evolution_unavailable",
            details={"status": e.status},
        ) from e
    return {"success": True, "data": state}


@router.get("/{instance_id}/connect")
async def instance_connect(instance_id: int, request: Request, store=Depends(get_store)) -> Dict[str, Any]:
    instance = await _instance(store, instance_id)
    try:
        payload = await _client(request, instance).connect()
    except ProviderError as e:
        logger.warning("evolution.connect_failed", instance_id=instance_id, error=e.message)
        raise ExternalServiceError(
            f"Evolution API unreachable: {e.message}",
            code="evolution_unavailable",
            details={"status": e.status},
        ) from e
    return {"success": True, "data": payload}
