"""Traffic monitor routes."""

from fastapi import APIRouter, Depends, Query

from ...dependencies import get_traffic_monitor
from ...modules.traffic_monitor import TrafficMonitor

router = APIRouter(prefix="/monitor", tags=["monitor"])


@router.get("/summary")
async def get_summary(monitor: TrafficMonitor = Depends(get_traffic_monitor)):
    """Aggregated network statistics and monitor health."""
    return {
        "stats": monitor.get_stats(),
        "health": await monitor.health_check(),
    }


@router.get("/events")
async def get_recent_events(
    limit: int = Query(50, ge=1, le=500),
    monitor: TrafficMonitor = Depends(get_traffic_monitor),
):
    """Most recent DNS events, newest first."""
    return monitor.get_recent_events(limit=limit)


@router.get("/threats")
async def get_threats(
    limit: int = Query(50, ge=1, le=500),
    monitor: TrafficMonitor = Depends(get_traffic_monitor),
):
    """DNS events matched against stalkerware indicators, newest first."""
    return monitor.get_threats(limit=limit)


@router.post("/clear")
async def clear_monitor(monitor: TrafficMonitor = Depends(get_traffic_monitor)):
    monitor.clear()
    return {"cleared": True}
