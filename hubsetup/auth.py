"""Optional shared-secret check for the HTTP API."""

from __future__ import annotations

import secrets

from fastapi import HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

from hubsetup.config import settings
from hubsetup.utils.logging import get_logger

log = get_logger(__name__)

API_KEY_HEADER = "X-API-Key"

_api_key_header = APIKeyHeader(
    name=API_KEY_HEADER,
    auto_error=False,
    description="Required when HUB_API_KEY is set",
)


def key_matches(presented: str | None, expected: str) -> bool:
    """Constant-time comparison; a blank *expected* key accepts any request."""
    if not expected:
        return True
    if presented is None:
        return False
    return secrets.compare_digest(presented.encode(), expected.encode())


async def require_api_key(
    request: Request,
    api_key: str | None = Security(_api_key_header),
) -> None:
    if key_matches(api_key, settings.hub_api_key):
        return
    client = request.client.host if request.client else None
    log.warning("auth.rejected", path=request.url.path, client=client)
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or missing API key",
    )
