"""Authentication dependency for mutation endpoints."""
from __future__ import annotations

import hmac
import logging
from typing import Optional

from fastapi import HTTPException, Request

logger = logging.getLogger(__name__)


def _presented_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    return request.headers.get("X-API-Key", "").strip() or None


async def require_auth(request: Request) -> None:
    """Enforce the bearer token / ``X-API-Key`` configured in ``ApiSettings``.

    Returns immediately when ``auth_enabled`` is off (local use).

    Raises
    ------
    HTTPException(401)
        If the server has no token configured, or the presented token is
        missing or wrong.
    """
    settings = request.app.state.services.settings
    if not settings.auth_enabled:
        return

    if not settings.api_token:
        logger.warning(
            "auth_enabled is set but BOOKRELAY_API_API_TOKEN is empty; "
            "rejecting mutation request to %s", request.url.path,
        )
        raise HTTPException(status_code=401, detail="Server auth token not configured")

    token = _presented_token(request)
    if token is None:
        raise HTTPException(status_code=401, detail="Missing authentication token")
    if not hmac.compare_digest(token, settings.api_token):
        raise HTTPException(status_code=401, detail="Invalid authentication token")
