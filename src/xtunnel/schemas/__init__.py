"""
API request/response schemas.
"""

from .common import ErrorResponse, SuccessResponse
from .tunnel import (
    GeoAssetFile,
    GeoAssetsResponse,
    ModeUpdate,
    ShareLinkUpdate,
    TrafficResponse,
    TunnelStatusResponse,
)

__all__ = [
    "ErrorResponse",
    "SuccessResponse",
    "GeoAssetFile",
    "GeoAssetsResponse",
    "ModeUpdate",
    "ShareLinkUpdate",
    "TrafficResponse",
    "TunnelStatusResponse",
]
