"""Master API router: includes all sub-routers."""

from fastapi import APIRouter

from .routes.indicators import router as indicators_router
from .routes.monitor import router as monitor_router
from .routes.vpn import router as vpn_router
from .websockets.events import router as ws_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(vpn_router)
api_router.include_router(monitor_router)
api_router.include_router(indicators_router)

# WebSocket router is mounted at root level (no prefix)
websocket_router = ws_router
