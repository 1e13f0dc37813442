# =============================================================================
# File: topicbridge/core/routes.py
# Description: Route registration for the FastAPI application
# =============================================================================

import logging

from fastapi import FastAPI

from topicbridge.api.routers.system_router import router as system_router, operator_router
from topicbridge.api.routers.telegram_router import router as telegram_router

logger = logging.getLogger("topicbridge.routes")


def setup_routes(app: FastAPI) -> None:
    """Register all routers with the FastAPI application"""
    app.include_router(system_router)
    app.include_router(operator_router)
    app.include_router(telegram_router, tags=["Telegram"])
    logger.info("Routers registered")
