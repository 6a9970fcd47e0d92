"""Admin API key authentication."""

import hmac
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from cips.config import settings

API_KEY_HEADER = APIKeyHeader(name="Authorization", auto_error=False)


async def require_admin(auth_header: str | None = Depends(API_KEY_HEADER)) -> str:
    """Check the Bearer token against the configured admin key."""
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid Authorization header",
        )
    api_key = auth_header[7:].strip()
    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key",
        )
    expected = settings.admin_api_key
    if not expected or not hmac.compare_digest(api_key.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )
    return api_key


# Type alias for dependency injection
AdminDep = Annotated[str, Depends(require_admin)]
