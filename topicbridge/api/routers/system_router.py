# =============================================================================
# system_router.py – Health, Metrics, Bridge Stats & Operator Endpoints
# -----------------------------------------------------------------------------
# • Health check (store ping, destination adapter state)
# • Prometheus metrics
# • Bridge statistics
# • Operator actions: enable/disable, resync, suspend/resume, link user
#   (bearer token required, see security/operator_auth.py)
# =============================================================================

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from topicbridge import __version__
from topicbridge.api.dependencies.runtime_deps import get_runtime, get_runtime_optional
from topicbridge.api.models.bridge_api_models import (
    HealthCheckResponse,
    BridgeStatsResponse,
    OperatorActionResponse,
    LinkUserRequest,
)
from topicbridge.common.exceptions.exceptions import BridgeException, MappingNotFoundError
from topicbridge.core.runtime import BridgeRuntime
from topicbridge.security.operator_auth import require_operator

log = logging.getLogger("topicbridge.api.system")

router = APIRouter(tags=["System"])

# Every /api/bridge route requires the operator bearer token
operator_router = APIRouter(prefix="/api/bridge", tags=["Bridge"], dependencies=[Depends(require_operator)])

_start_time = datetime.now(timezone.utc)


@router.get("/health", summary="Health Check", response_model=HealthCheckResponse)
async def healthcheck(runtime: Optional[BridgeRuntime] = Depends(get_runtime_optional)) -> HealthCheckResponse:
    """Check the document store and the destination adapter."""
    now = datetime.now(timezone.utc)
    uptime = (now - _start_time).total_seconds()

    if runtime is None:
        return HealthCheckResponse(
            status="error",
            version=__version__,
            store="unknown",
            destination="disconnected",
            bridge_enabled=False,
            uptime_seconds=uptime,
            current_time_utc=now.isoformat(),
            error="runtime not started",
        )

    try:
        store_ok = await runtime.ping_store()
        destination_ok = runtime.destination_ready
        return HealthCheckResponse(
            status="healthy" if (store_ok and destination_ok) else "degraded",
            version=__version__,
            store="alive" if store_ok else "unreachable",
            destination="connected" if destination_ok else "disconnected",
            bridge_enabled=runtime.controller.enabled,
            uptime_seconds=uptime,
            current_time_utc=now.isoformat(),
        )
    except Exception as exc:
        log.error(f"Error in health check: {exc}", exc_info=True)
        return HealthCheckResponse(
            status="error",
            version=__version__,
            store="unknown",
            destination="disconnected",
            bridge_enabled=False,
            uptime_seconds=uptime,
            current_time_utc=now.isoformat(),
            error=str(exc),
        )


@router.get("/metrics", summary="Prometheus metrics")
async def prometheus_metrics() -> Response:
    """Bridge metrics in Prometheus text format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# =============================================================================
# Bridge
# =============================================================================

@operator_router.get("/stats", summary="Bridge statistics", response_model=BridgeStatsResponse)
async def bridge_stats(runtime: BridgeRuntime = Depends(get_runtime)) -> BridgeStatsResponse:
    return BridgeStatsResponse(**runtime.stats())


@operator_router.post("/enable", response_model=OperatorActionResponse)
async def enable_bridge(runtime: BridgeRuntime = Depends(get_runtime)) -> OperatorActionResponse:
    return OperatorActionResponse(enabled=runtime.operator.enable_bridge())


@operator_router.post("/disable", response_model=OperatorActionResponse)
async def disable_bridge(runtime: BridgeRuntime = Depends(get_runtime)) -> OperatorActionResponse:
    return OperatorActionResponse(enabled=runtime.operator.disable_bridge())


@operator_router.post("/conversations/{source_chat_id}/resync", response_model=OperatorActionResponse)
async def resync_conversation(source_chat_id: str, runtime: BridgeRuntime = Depends(get_runtime)) -> OperatorActionResponse:
    try:
        state = await runtime.operator.resync_conversation(source_chat_id)
    except BridgeException as e:
        log.warning(f"Resync of {source_chat_id} failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    return OperatorActionResponse(source_chat_id=source_chat_id, state=state.value)


@operator_router.post("/conversations/{source_chat_id}/suspend", response_model=OperatorActionResponse)
async def suspend_conversation(source_chat_id: str, runtime: BridgeRuntime = Depends(get_runtime)) -> OperatorActionResponse:
    changed = runtime.operator.suspend_conversation(source_chat_id)
    return OperatorActionResponse(
        ok=changed,
        source_chat_id=source_chat_id,
        state="suspended",
        message=None if changed else "already suspended",
    )


@operator_router.post("/conversations/{source_chat_id}/resume", response_model=OperatorActionResponse)
async def resume_conversation(source_chat_id: str, runtime: BridgeRuntime = Depends(get_runtime)) -> OperatorActionResponse:
    changed = runtime.operator.resume_conversation(source_chat_id)
    return OperatorActionResponse(
        ok=changed,
        source_chat_id=source_chat_id,
        message=None if changed else "not suspended",
    )


@operator_router.post("/users", response_model=OperatorActionResponse)
async def link_user(body: LinkUserRequest, runtime: BridgeRuntime = Depends(get_runtime)) -> OperatorActionResponse:
    try:
        await runtime.operator.link_user(body.destination_user_id, body.source_chat_id)
    except MappingNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except BridgeException as e:
        raise HTTPException(status_code=502, detail=str(e))
    return OperatorActionResponse(source_chat_id=body.source_chat_id, message=f"user {body.destination_user_id} linked")


@operator_router.get("/mappings/counts", summary="Mapping counts")
async def mapping_counts(runtime: BridgeRuntime = Depends(get_runtime)) -> dict:
    return runtime.operator.mapping_counts()
