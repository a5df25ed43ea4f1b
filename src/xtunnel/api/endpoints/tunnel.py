"""
Tunnel control endpoints.

RESTful API for tunnel status, lifecycle and routing mode.
"""

from fastapi import APIRouter, Depends

from ...preferences import SOCKS_PORT_KEY, TRAFFIC_PORT_KEY
from ...schemas.common import SuccessResponse
from ...schemas.tunnel import ModeUpdate, ShareLinkUpdate, TrafficResponse, TunnelStatusResponse
from ...services.tunnel_service import TunnelService
from ..deps import get_current_admin, get_tunnel_service


router = APIRouter(prefix="/tunnel", tags=["tunnel"])


def _status(service: TunnelService) -> TunnelStatusResponse:
    session = service.orchestrator.session()
    prefs = service.preferences.all()
    return TunnelStatusResponse(
        name=session.name,
        status=session.status,
        connected_at=session.connected_at,
        mode=service.preferences.mode,
        socks_port=prefs.get(SOCKS_PORT_KEY),
        traffic_port=prefs.get(TRAFFIC_PORT_KEY),
        share_link_set=bool(service.preferences.share_link),
        other_sessions=service.host.list_other_active_sessions(),
    )


@router.get(
    "",
    response_model=TunnelStatusResponse,
    summary="Get tunnel status",
    responses={401: {"description": "Invalid API key"}},
)
async def get_tunnel_status(
    service: TunnelService = Depends(get_tunnel_service),
    _admin: str = Depends(get_current_admin),
) -> TunnelStatusResponse:
    """Current status, ports and mode of the tunnel."""
    return _status(service)


@router.post("/start", response_model=SuccessResponse, summary="Start the tunnel")
async def start_tunnel(
    service: TunnelService = Depends(get_tunnel_service),
    _admin: str = Depends(get_current_admin),
) -> SuccessResponse:
    """
    Start the tunnel with the stored share link.

    Configuration errors return 400, a conflicting tunnel 409, and launch
    failures 502.
    """
    await service.orchestrator.start()
    return SuccessResponse(message="Tunnel started", data={"status": service.orchestrator.status.value})


@router.post("/stop", response_model=SuccessResponse, summary="Stop the tunnel")
async def stop_tunnel(
    service: TunnelService = Depends(get_tunnel_service),
    _admin: str = Depends(get_current_admin),
) -> SuccessResponse:
    await service.orchestrator.stop()
    return SuccessResponse(message="Stop requested", data={"status": service.orchestrator.status.value})


@router.post("/restart", response_model=SuccessResponse, summary="Restart the tunnel")
async def restart_tunnel(
    service: TunnelService = Depends(get_tunnel_service),
    _admin: str = Depends(get_current_admin),
) -> SuccessResponse:
    await service.orchestrator.restart()
    return SuccessResponse(message="Tunnel restarted", data={"status": service.orchestrator.status.value})


@router.post("/reassert", response_model=SuccessResponse, summary="Re-apply network settings")
async def reassert_tunnel(
    service: TunnelService = Depends(get_tunnel_service),
    _admin: str = Depends(get_current_admin),
) -> SuccessResponse:
    await service.orchestrator.reassert()
    return SuccessResponse(message="Network settings re-applied")


@router.post("/reprovision", response_model=SuccessResponse, summary="Re-register with the host")
async def reprovision_tunnel(
    service: TunnelService = Depends(get_tunnel_service),
    _admin: str = Depends(get_current_admin),
) -> SuccessResponse:
    await service.orchestrator.reprovision()
    return SuccessResponse(message="Tunnel re-registered", data={"status": service.orchestrator.status.value})


@router.put("/mode", response_model=SuccessResponse, summary="Change routing mode")
async def update_mode(
    update: ModeUpdate,
    service: TunnelService = Depends(get_tunnel_service),
    _admin: str = Depends(get_current_admin),
) -> SuccessResponse:
    """Persist the mode; a connected tunnel is restarted to apply it."""
    restarted = await service.orchestrator.set_mode(update.mode)
    return SuccessResponse(
        message=f"Mode set to {update.mode.value}",
        data={"mode": update.mode.value, "restarted": restarted},
    )


@router.put("/link", response_model=SuccessResponse, summary="Replace the share link")
async def update_share_link(
    update: ShareLinkUpdate,
    service: TunnelService = Depends(get_tunnel_service),
    _admin: str = Depends(get_current_admin),
) -> SuccessResponse:
    service.builder.check_share_link(update.share_link)
    restarted = await service.orchestrator.set_share_link(update.share_link)
    return SuccessResponse(message="Share link updated", data={"restarted": restarted})


@router.get("/config", summary="Preview the runtime configuration")
async def preview_config(
    service: TunnelService = Depends(get_tunnel_service),
    _admin: str = Depends(get_current_admin),
) -> dict:
    return service.orchestrator.preview_config().to_dict()


@router.get("/traffic", response_model=TrafficResponse, summary="SOCKS traffic counters")
async def get_traffic(
    service: TunnelService = Depends(get_tunnel_service),
    _admin: str = Depends(get_current_admin),
) -> TrafficResponse:
    stats = await service.traffic()
    if stats is None:
        return TrafficResponse(available=False)
    return TrafficResponse(available=True, downlink=stats.downlink, uplink=stats.uplink)


@router.post("/ping", response_model=SuccessResponse, summary="Measure latency of the stored link")
async def ping_link(
    service: TunnelService = Depends(get_tunnel_service),
    _admin: str = Depends(get_current_admin),
) -> SuccessResponse:
    latency = await service.ping()
    return SuccessResponse(message=f"{latency} ms", data={"latency_ms": latency})
