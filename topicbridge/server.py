# =============================================================================
# File: topicbridge/server.py
# Description: Main FastAPI application entry point
# =============================================================================

from __future__ import annotations

import os
import logging

from dotenv import load_dotenv
from fastapi import FastAPI

# LOG_* and ENVIRONMENT are read with os.getenv, not through the settings classes
load_dotenv()

from topicbridge import __version__
from topicbridge.config.logging_config import setup_logging
from topicbridge.core.exceptions import setup_exception_handlers
from topicbridge.core.lifespan import lifespan
from topicbridge.core.routes import setup_routes

# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================
setup_logging(
    service_name="topicbridge",
    log_file=os.getenv("LOG_FILE") or None,
    enable_json=os.getenv("ENVIRONMENT") == "production" or None,
)

logger = logging.getLogger("topicbridge.server")


# =============================================================================
# FASTAPI APP
# =============================================================================
def create_app() -> FastAPI:
    application = FastAPI(
        title="topicbridge",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url=None,
        openapi_url="/openapi.json",
    )
    setup_routes(application)
    setup_exception_handlers(application)
    return application


app = create_app()

__all__ = ["app", "create_app", "__version__"]

# =============================================================================
# Development entry point
# =============================================================================
if __name__ == "__main__":
    import subprocess

    port = os.getenv("PORT", "8080")
    host = os.getenv("HOST", "0.0.0.0")
    reload = os.getenv("RELOAD", "false").lower() == "true"

    logger.info(f"Starting topicbridge on {host}:{port} (reload={reload})")

    cmd = [
        "granian",
        "--interface", "asgi",
        "topicbridge.server:app",
        "--host", host,
        "--port", str(port),
    ]

    if reload:
        cmd.extend([
            "--reload",
            "--reload-paths", "topicbridge/",
        ])

    subprocess.run(cmd)
