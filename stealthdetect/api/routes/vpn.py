"""VPN capture session routes.

Response bodies mirror the capture plugin contract (camelCase keys).
"""

from fastapi import APIRouter, Depends

from ...dependencies import get_vpn_service
from ...vpn.service import VpnService

router = APIRouter(prefix="/vpn", tags=["vpn"])


@router.post("/start")
async def start_vpn(service: VpnService = Depends(get_vpn_service)):
    """Start intercepting DNS and connection traffic."""
    result = await service.start_vpn()
    return result.to_dict()


@router.post("/stop")
async def stop_vpn(service: VpnService = Depends(get_vpn_service)):
    """Stop the capture session."""
    result = await service.stop_vpn()
    return result.to_dict()


@router.get("/status")
async def get_vpn_status(service: VpnService = Depends(get_vpn_service)):
    """Get the current session snapshot."""
    status = await service.get_vpn_status()
    return status.to_dict()


@router.get("/permission")
async def check_permission(service: VpnService = Depends(get_vpn_service)):
    result = await service.check_permission()
    return result.to_dict()


@router.post("/permission")
async def request_permission(service: VpnService = Depends(get_vpn_service)):
    """Ask the platform for capture consent."""
    result = await service.request_permission()
    return result.to_dict()


@router.get("/diagnostics")
async def get_diagnostics(service: VpnService = Depends(get_vpn_service)):
    """Backend selection, failover history and dispatcher statistics."""
    diagnostics = await service.diagnostics()
    diagnostics["using_native"] = service.is_using_native()
    return diagnostics
