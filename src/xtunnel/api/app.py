"""
FastAPI application factory.

The control API lets the CLI and other local tools drive a tunnel that is
running inside an ``xtunnel up`` process.
"""

import os
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..core.logging import get_logger
from ..errors import (
    AssetDownloadFailure,
    ConfigError,
    ConflictError,
    CoreLaunchFailure,
    InterfaceSetupFailure,
    TunnelError,
)
from ..schemas.common import ErrorResponse
from ..services.tunnel_service import TunnelService
from .endpoints import geo, health, tunnel


logger = get_logger(__name__)


def _get_cors_origins() -> list[str]:
    """
    Get CORS allowed origins from XTUNNEL_CORS_ORIGINS (comma-separated).

    Returns an empty list if not configured (CORS disabled).
    """
    origins_str = os.getenv("XTUNNEL_CORS_ORIGINS", "")
    if not origins_str:
        return []
    return [origin.strip() for origin in origins_str.split(",") if origin.strip()]


def error_status(error: TunnelError) -> int:
    if isinstance(error, ConfigError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(error, ConflictError):
        return status.HTTP_409_CONFLICT
    if isinstance(error, (CoreLaunchFailure, InterfaceSetupFailure, AssetDownloadFailure)):
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def tunnel_error_handler(request: Request, exc: TunnelError) -> JSONResponse:
    details = None
    if isinstance(exc, ConflictError):
        details = {"sessions": [s.model_dump(mode="json") for s in exc.sessions]}
    elif getattr(exc, "key", None):
        details = {"key": exc.key}

    logger.warning("Request failed", path=request.url.path, error=exc.code, message=exc.message)
    body = ErrorResponse(error=exc.code, message=exc.message, details=details)
    return JSONResponse(status_code=error_status(exc), content=body.model_dump())


def create_app(
    service: Optional[TunnelService] = None,
    title: str = "xtunnel control API",
    enable_cors: bool = True,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        service: Tunnel service to control; the owner stays responsible
            for shutting it down
        title: API title
        enable_cors: Enable CORS middleware when origins are configured

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title=title,
        version=__version__,
        description="Local control API for the xtunnel tunnel manager",
        docs_url="/api/docs",
        redoc_url=None,
        openapi_url="/api/openapi.json",
    )
    app.state.tunnel_service = service

    cors_origins = _get_cors_origins()
    if enable_cors and cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "DELETE"],
            allow_headers=["X-API-Key", "Content-Type"],
        )

    app.add_exception_handler(TunnelError, tunnel_error_handler)

    app.include_router(health.router, prefix="/api")
    app.include_router(tunnel.router, prefix="/api")
    app.include_router(geo.router, prefix="/api")

    @app.get("/")
    async def root():
        """Root endpoint with API info."""
        return {
            "name": title,
            "version": __version__,
            "docs": "/api/docs",
            "health": "/api/health"
        }

    return app


async def serve_api(service: TunnelService, host: str = "127.0.0.1", port: int = 8787) -> None:
    """Serve the control API on the running event loop until cancelled."""
    import uvicorn

    config = uvicorn.Config(
        create_app(service),
        host=host,
        port=port,
        log_config=None,
        access_log=False,
    )
    await uvicorn.Server(config).serve()
