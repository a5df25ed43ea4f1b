"""
FastAPI dependency injection.

Provides the tunnel service and API key authentication.
"""

import os
import secrets
from typing import Optional

from fastapi import HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

from ..services.tunnel_service import TunnelService


API_KEY_ENV = "XTUNNEL_API_KEY"

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def get_tunnel_service(request: Request) -> TunnelService:
    """Get the tunnel service attached to the application."""
    service = getattr(request.app.state, "tunnel_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Tunnel service not initialized"
        )
    return service


async def verify_api_key(
    api_key: Optional[str] = Security(api_key_header),
) -> str:
    """
    Verify the API key for control endpoints.

    The key must match the XTUNNEL_API_KEY environment variable.
    """
    expected_key = os.getenv(API_KEY_ENV)

    if expected_key is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"API key not configured. Set {API_KEY_ENV} environment variable."
        )

    if api_key is None or not secrets.compare_digest(api_key, expected_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key"
        )

    return api_key


# Alias for clarity
get_current_admin = verify_api_key
