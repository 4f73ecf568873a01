"""FastAPI authentication dependencies."""

import secrets
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from fasthook.config import Settings, get_settings


async def require_api_key(
    x_api_key: Annotated[str | None, Header()] = None,
    settings: Settings = Depends(get_settings),
) -> str:
    """Check the X-API-Key header against the configured root API key.

    Returns:
        The accepted key.
    """
    if not x_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key required",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    # Timing-safe comparison
    if not secrets.compare_digest(
        x_api_key.encode("utf-8"),
        settings.root_api_key.get_secret_value().encode("utf-8"),
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )
    return x_api_key


# Type alias for dependency injection
Auth = Annotated[str, Depends(require_api_key)]
