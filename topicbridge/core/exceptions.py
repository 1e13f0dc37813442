# =============================================================================
# File: topicbridge/core/exceptions.py
# Description: Exception handlers for the FastAPI application
# =============================================================================

import logging

from fastapi import FastAPI, Request
from starlette import status
from starlette.responses import JSONResponse

from topicbridge.common.exceptions.exceptions import (
    BridgeException,
    PermanentConfigError,
    TransientError,
)

logger = logging.getLogger("topicbridge.exceptions")


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application"""
    app.add_exception_handler(BridgeException, bridge_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
    logger.info("Exception handlers registered")


async def bridge_exception_handler(request: Request, exc: BridgeException) -> JSONResponse:
    """Bridge errors that escaped an operator endpoint"""
    if isinstance(exc, TransientError):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif isinstance(exc, PermanentConfigError):
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    else:
        code = status.HTTP_502_BAD_GATEWAY

    logger.warning(f"{type(exc).__name__} on path {request.url.path}: {exc}")
    return JSONResponse(status_code=code, content={"detail": str(exc), "error": type(exc).__name__})


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on path {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )
