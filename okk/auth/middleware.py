"""Bearer token authentication for the /v1 routes."""

import hashlib
import hmac
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from okk.config import settings

API_KEY_HEADER = APIKeyHeader(name="Authorization", auto_error=False)


def hash_api_key(api_key: str) -> str:
    """Hash API token with salt for comparison with the configured hash."""
    return hashlib.sha256(
        f"{settings.api_key_hash_salt}:{api_key}".encode()
    ).hexdigest()


async def require_token(
    auth_header: str | None = Depends(API_KEY_HEADER),
) -> str:
    """Check the Bearer token (scheduler or operator) and return its hash."""
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
    token_hash = hash_api_key(api_key)
    if not settings.api_token_hash or not hmac.compare_digest(token_hash, settings.api_token_hash):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )
    return token_hash


# Type alias for dependency injection
AuthDep = Annotated[str, Depends(require_token)]
