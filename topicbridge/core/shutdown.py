# =============================================================================
# File: topicbridge/core/shutdown.py
# Description: Graceful shutdown of the bridge runtime
# =============================================================================

import logging

from fastapi import FastAPI

logger = logging.getLogger("topicbridge.shutdown")


async def shutdown_runtime(app: FastAPI) -> None:
    """Stop the runtime once; later calls are no-ops."""

    if getattr(app.state, "shutdown_in_progress", False):
        logger.warning("Shutdown already in progress, skipping")
        return
    app.state.shutdown_in_progress = True

    runtime = getattr(app.state, "runtime", None)
    if runtime is None:
        logger.info("No runtime to stop")
        return

    if runtime.controller is not None:
        stats = runtime.controller.stats()
        logger.info(
            f"Stopping bridge: {stats['active_queues']} active queues, "
            f"outcomes so far {stats['outcomes'] or '{}'}"
        )

    await runtime.stop()
