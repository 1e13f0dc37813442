# =============================================================================
# File: topicbridge/api/models/bridge_api_models.py
# Description: Request/response models for the HTTP surface
# =============================================================================

from typing import Optional, Dict, Any

from pydantic import BaseModel, Field


class WebhookResponse(BaseModel):
    ok: bool = True
    message: Optional[str] = None


class HealthCheckResponse(BaseModel):
    status: str = Field(description="healthy, degraded or error")
    version: str
    store: str = Field(description="alive, unreachable or unknown")
    destination: str = Field(description="connected or disconnected")
    bridge_enabled: bool
    uptime_seconds: float
    current_time_utc: str
    error: Optional[str] = None


class BridgeStatsResponse(BaseModel):
    enabled: bool
    active_queues: int
    dedup_entries: int
    reply_index_entries: int
    active_media_sessions: int
    suspended: Dict[str, str]
    mappings: Dict[str, int]
    outcomes: Dict[str, int]
    modules: Dict[str, Any]


class OperatorActionResponse(BaseModel):
    ok: bool = True
    enabled: Optional[bool] = None
    source_chat_id: Optional[str] = None
    state: Optional[str] = None
    message: Optional[str] = None


class LinkUserRequest(BaseModel):
    destination_user_id: int = Field(description="Destination platform user id")
    source_chat_id: str = Field(description="Source conversation to route the user's private messages to")
