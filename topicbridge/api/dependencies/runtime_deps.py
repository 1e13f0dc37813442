# =============================================================================
# File: topicbridge/api/dependencies/runtime_deps.py
# Description: FastAPI dependencies for the bridge runtime
# =============================================================================

from typing import Optional

from fastapi import Request, HTTPException

from topicbridge.config.logging_config import get_logger
from topicbridge.core.runtime import BridgeRuntime

log = get_logger("topicbridge.api.dependencies.runtime")


def get_runtime(request: Request) -> BridgeRuntime:
    """
    Get the bridge runtime from app state.

    Usage in API routes:
        @router.get("/api/bridge/stats")
        async def stats(runtime: BridgeRuntime = Depends(get_runtime)):
            return runtime.stats()

    Raises:
        HTTPException: 503 while the runtime is not started
    """
    runtime: Optional[BridgeRuntime] = getattr(request.app.state, "runtime", None)
    if runtime is None or not runtime.started:
        log.warning("Bridge runtime requested before startup completed")
        raise HTTPException(status_code=503, detail="Bridge runtime not started")
    return runtime


def get_runtime_optional(request: Request) -> Optional[BridgeRuntime]:
    """Bridge runtime, or None if it is not started (health checks)."""
    runtime: Optional[BridgeRuntime] = getattr(request.app.state, "runtime", None)
    if runtime is None or not runtime.started:
        return None
    return runtime
