# =============================================================================
# File: topicbridge/security/operator_auth.py
# Description: Bearer-token guard for the /api/bridge operator routes
# =============================================================================
# Operator routes accept 'Authorization: Bearer <BRIDGE_OPERATOR_API_TOKEN>'.
# While no token is configured they answer 403 to everyone.
# =============================================================================

from __future__ import annotations

import hmac

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from topicbridge.api.dependencies.runtime_deps import get_runtime
from topicbridge.config.logging_config import get_logger
from topicbridge.core.runtime import BridgeRuntime

log = get_logger("topicbridge.security.operator")

security_scheme = HTTPBearer(auto_error=False)


def verify_operator_token(presented: str, expected: str) -> bool:
    """Constant-time token comparison. An empty expected token never matches."""
    if not expected or not presented:
        return False
    return hmac.compare_digest(presented.encode(), expected.encode())


async def require_operator(
        credentials: HTTPAuthorizationCredentials = Depends(security_scheme),
        runtime: BridgeRuntime = Depends(get_runtime),
) -> None:
    """
    FastAPI dependency for operator endpoints.
    - 403 while BRIDGE_OPERATOR_API_TOKEN is unset.
    - 401 for a missing, non-bearer or wrong token.
    """
    expected = runtime.bridge_config.operator_api_token.get_secret_value()
    if not expected:
        log.warning("Operator API called but BRIDGE_OPERATOR_API_TOKEN is not set")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Operator API disabled")

    if not credentials or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid auth scheme",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not verify_operator_token(credentials.credentials, expected):
        log.warning("Operator API call with an invalid token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid operator token",
            headers={"WWW-Authenticate": "Bearer"},
        )
