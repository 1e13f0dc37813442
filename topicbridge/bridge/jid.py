# =============================================================================
# File: topicbridge/bridge/jid.py
# Description: Helpers for source platform chat identifiers (JIDs)
# =============================================================================

STATUS_BROADCAST = "status@broadcast"
CALL_BROADCAST = "call@broadcast"

GROUP_SUFFIX = "@g.us"


def is_group_jid(jid: str) -> bool:
    return jid.endswith(GROUP_SUFFIX)


def is_broadcast_jid(jid: str) -> bool:
    return jid in (STATUS_BROADCAST, CALL_BROADCAST)


def user_part(jid: str) -> str:
    """'4915112345678:12@s.whatsapp.net' -> '4915112345678'"""
    return jid.split("@", 1)[0].split(":", 1)[0]


def handle_for(jid: str) -> str:
    """Human-readable fallback name: '+<phone>' for users, the bare id otherwise."""
    if is_group_jid(jid) or is_broadcast_jid(jid):
        return user_part(jid)
    part = user_part(jid)
    return f"+{part}" if part.isdigit() else part
