"""Guards for the caregiver admin surface: runtime config and live-session
inspection.  The same key protects both; only its transport differs.

  HTTP       Authorization: Bearer <ADMIN_API_KEY>
  WebSocket  ?token=<ADMIN_API_KEY>, refused with close code 4001 / 4003

With no ADMIN_API_KEY the surface is open only when DEBUG is on.
"""

from __future__ import annotations

import hmac
import logging

from fastapi import Depends, HTTPException, Query, WebSocket, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from caregiver.config import settings

log = logging.getLogger("caregiver.auth")

_bearer_scheme = HTTPBearer(auto_error=False)

_WS_CLOSE_CODES = {
    status.HTTP_401_UNAUTHORIZED: (4001, "Unauthorized"),
    status.HTTP_403_FORBIDDEN: (4003, "Admin API key not configured"),
}


def _refusal(supplied: str | None) -> int | None:
    """HTTP status to refuse with, or None when the caller is let through."""
    key = settings.admin_api_key
    if not key:
        if settings.debug:
            return None
        log.warning("Admin request refused: ADMIN_API_KEY not configured")
        return status.HTTP_403_FORBIDDEN
    if supplied and hmac.compare_digest(supplied.encode(), key.encode()):
        return None
    return status.HTTP_401_UNAUTHORIZED


async def require_admin_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> None:
    refused = _refusal(credentials.credentials if credentials else None)
    if refused == status.HTTP_403_FORBIDDEN:
        raise HTTPException(
            status_code=refused,
            detail="Admin API key not configured. Set ADMIN_API_KEY in .env.",
        )
    if refused is not None:
        raise HTTPException(
            status_code=refused,
            detail="Invalid or missing admin token.",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def require_admin_ws(
    websocket: WebSocket,
    token: str = Query(default=""),
) -> None:
    refused = _refusal(token)
    if refused is None:
        return
    code, reason = _WS_CLOSE_CODES[refused]
    await websocket.close(code=code, reason=reason)
    raise HTTPException(status_code=refused)
