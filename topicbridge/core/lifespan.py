# =============================================================================
# File: topicbridge/core/lifespan.py
# Description: Application lifespan management (startup/shutdown)
# =============================================================================

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from topicbridge import __version__
from topicbridge.config.bridge_config import get_bridge_config
from topicbridge.config.logging_config import log_section
from topicbridge.config.redis_config import get_redis_config
from topicbridge.config.telegram_config import get_telegram_config
from topicbridge.core.runtime import BridgeRuntime
from topicbridge.core.shutdown import shutdown_runtime

logger = logging.getLogger("topicbridge.lifespan")


@asynccontextmanager
async def lifespan(app_instance: FastAPI):
    """Build the bridge runtime on startup, drain and release it on shutdown."""

    log_section(logger, f"topicbridge v{__version__} starting")

    # Tests install a prepared runtime before startup
    runtime = getattr(app_instance.state, "runtime", None)
    if runtime is None:
        logger.info("Phase 1: Loading configuration...")
        runtime = BridgeRuntime(
            bridge_config=get_bridge_config(),
            telegram_config=get_telegram_config(),
            redis_config=get_redis_config(),
        )
        app_instance.state.runtime = runtime

    try:
        logger.info("Phase 2: Starting bridge runtime...")
        await runtime.start()

        logger.info("=" * 60)
        logger.info(f"topicbridge v{__version__} ready")
        logger.info("=" * 60)

        yield

    except Exception as startup_error:
        logger.error(f"Critical error during startup: {startup_error}", exc_info=True)
        raise

    finally:
        logger.info(f"topicbridge v{__version__} shutting down...")
        grace = runtime.bridge_config.shutdown_grace_seconds
        try:
            # Queue drain has its own grace period; the rest must not hang
            async with asyncio.timeout(grace + 30.0):
                await shutdown_runtime(app_instance)
            logger.info("topicbridge stopped gracefully")
        except TimeoutError:
            logger.error(f"Shutdown timed out after {grace + 30.0:.0f}s, forcing exit")
        except Exception as e:
            logger.error(f"Error during shutdown: {e}", exc_info=True)
