# =============================================================================
# File: topicbridge/api/routers/telegram_router.py
# Description: Telegram webhook endpoint (destination platform ingress)
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Request, HTTPException, Depends

from topicbridge.api.dependencies.runtime_deps import get_runtime
from topicbridge.api.models.bridge_api_models import WebhookResponse
from topicbridge.core.runtime import BridgeRuntime
from topicbridge.infra.metrics.bridge_metrics import record_webhook_request
from topicbridge.security.webhook_security import (
    verify_webhook_secret,
    is_telegram_ip,
    get_client_ip,
)

log = logging.getLogger("topicbridge.telegram.webhook")

router = APIRouter(prefix="/api/telegram", tags=["telegram"])


@router.post("/webhook", response_model=WebhookResponse)
async def telegram_webhook(
    request: Request,
    runtime: BridgeRuntime = Depends(get_runtime),
) -> WebhookResponse:
    """
    Receive Telegram Bot updates.

    Messages typed in a bridged topic (or sent privately to the bot) are
    handed to the bridge controller, which queues them for the source
    platform. Processing errors are logged and acknowledged so Telegram
    does not redeliver the update.

    Security:
    - Optional source network check (TELEGRAM_VERIFY_SOURCE_IP)
    - X-Telegram-Bot-Api-Secret-Token header when a secret is configured
    """
    config = runtime.telegram_config

    if config.verify_source_ip:
        client_ip = get_client_ip(
            x_forwarded_for=request.headers.get("X-Forwarded-For"),
            x_real_ip=request.headers.get("X-Real-IP"),
            remote_addr=request.client.host if request.client else "0.0.0.0",
        )
        if not is_telegram_ip(client_ip):
            record_webhook_request("invalid_ip")
            log.warning(f"Webhook request from non-Telegram IP: {client_ip}")
            raise HTTPException(status_code=403, detail="Forbidden")

    secret_header = request.headers.get("X-Telegram-Bot-Api-Secret-Token")
    if not verify_webhook_secret(secret_header, config.webhook_secret.get_secret_value()):
        record_webhook_request("invalid_secret")
        log.warning("Invalid webhook secret token received")
        raise HTTPException(status_code=403, detail="Invalid secret token")

    try:
        update_data = await request.json()
        update = runtime.telegram.parse_webhook_update(update_data)
        if update is None:
            record_webhook_request("ignored")
            return WebhookResponse(ok=True)

        accepted = await runtime.controller.handle_destination_update(update)
        record_webhook_request("accepted" if accepted else "ignored")
        return WebhookResponse(ok=True)

    except Exception as e:
        record_webhook_request("error")
        log.error(f"Error processing Telegram webhook: {type(e).__name__}: {e}", exc_info=True)
        return WebhookResponse(ok=True, message="error")
