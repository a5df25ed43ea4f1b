"""
Health check endpoints.
"""

from fastapi import APIRouter, Request

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
@router.get("/")
async def health_check() -> dict:
    """
    Health check endpoint.

    Returns basic service status.
    """
    return {
        "status": "healthy",
        "service": "xtunnel"
    }


@router.get("/ready")
async def readiness_check(request: Request) -> dict:
    """Whether a tunnel service is attached and can take commands."""
    ready = getattr(request.app.state, "tunnel_service", None) is not None
    return {
        "status": "ready" if ready else "starting",
        "service": "xtunnel"
    }
