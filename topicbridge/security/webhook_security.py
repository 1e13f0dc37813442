# =============================================================================
# File: topicbridge/security/webhook_security.py
# Description: Webhook request checks (secret token, source network)
# =============================================================================
# Telegram webhook requests are accepted only when:
#   - the X-Telegram-Bot-Api-Secret-Token header matches the configured secret
#   - (optionally) the caller is inside Telegram's published webhook networks
# =============================================================================

from __future__ import annotations

import hmac
import ipaddress
from typing import Optional, Tuple

from topicbridge.config.logging_config import get_logger

log = get_logger("topicbridge.security.webhook")

# https://core.telegram.org/bots/webhooks
TELEGRAM_IP_RANGES: Tuple[str, ...] = (
    "149.154.160.0/20",
    "91.108.4.0/22",
)

_TELEGRAM_NETWORKS = tuple(ipaddress.ip_network(cidr) for cidr in TELEGRAM_IP_RANGES)


def verify_webhook_secret(request_secret: Optional[str], expected_secret: str) -> bool:
    """
    Constant-time check of the X-Telegram-Bot-Api-Secret-Token header.

    With no secret configured every request passes (logged).
    """
    if not expected_secret:
        log.warning("Webhook secret not configured - skipping verification")
        return True

    if not request_secret:
        log.warning("Webhook request missing X-Telegram-Bot-Api-Secret-Token header")
        return False

    return hmac.compare_digest(request_secret.encode(), expected_secret.encode())


def is_telegram_ip(ip_address: str) -> bool:
    try:
        ip = ipaddress.ip_address(ip_address)
    except ValueError:
        log.warning(f"Invalid IP address format: {ip_address}")
        return False
    return any(ip in network for network in _TELEGRAM_NETWORKS)


def get_client_ip(x_forwarded_for: Optional[str], x_real_ip: Optional[str], remote_addr: str) -> str:
    """Leftmost X-Forwarded-For entry, then X-Real-IP, then the socket peer."""
    if x_forwarded_for:
        return x_forwarded_for.split(",")[0].strip()
    if x_real_ip:
        return x_real_ip.strip()
    return remote_addr
