"""
Geo-data asset endpoints.
"""

from fastapi import APIRouter, Depends

from ...schemas.common import SuccessResponse
from ...schemas.tunnel import GeoAssetFile, GeoAssetsResponse
from ...services.tunnel_service import TunnelService
from ..deps import get_current_admin, get_tunnel_service


router = APIRouter(prefix="/geo", tags=["geo"])


@router.get("", response_model=GeoAssetsResponse, summary="List geo assets")
async def list_geo_assets(
    service: TunnelService = Depends(get_tunnel_service),
    _admin: str = Depends(get_current_admin),
) -> GeoAssetsResponse:
    files = service.geo_assets.list_files()
    return GeoAssetsResponse(
        present=bool(files),
        files=[GeoAssetFile(name=f.name, size=f.stat().st_size) for f in files],
    )


@router.post("/download", response_model=SuccessResponse, summary="Download geo assets")
async def download_geo_assets(
    service: TunnelService = Depends(get_tunnel_service),
    _admin: str = Depends(get_current_admin),
) -> SuccessResponse:
    """Fetch geoip/geosite files; a connected tunnel restarts to use them."""
    restarted = await service.orchestrator.refresh_geo_assets()
    return SuccessResponse(message="Geo assets downloaded", data={"restarted": restarted})


@router.delete("", response_model=SuccessResponse, summary="Remove geo assets")
async def clear_geo_assets(
    service: TunnelService = Depends(get_tunnel_service),
    _admin: str = Depends(get_current_admin),
) -> SuccessResponse:
    restarted = await service.orchestrator.clear_geo_assets()
    return SuccessResponse(message="Geo assets removed", data={"restarted": restarted})
