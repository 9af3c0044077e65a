"""StealthDetect: on-device stalkerware traffic detection.

FastAPI entry point: wires the capture service, the traffic monitor and the
local HTTP/WebSocket surface together.
"""

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api.router import api_router, websocket_router
from .api.websockets.events import manager as ws_manager
from .dependencies import (
    get_app_config,
    get_indicator_store,
    get_traffic_monitor,
    get_vpn_service,
)
from .middleware.error_handler import register_error_handlers
from .middleware.request_id import RequestIDMiddleware
from .utils.logging import get_logger, setup_logging

config = get_app_config()
setup_logging(
    debug=config.debug,
    log_dir=config.log_dir,
    log_max_bytes=config.log_max_bytes,
    log_backup_count=config.log_backup_count,
)
logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logger.info("stealthdetect_starting", host=config.host, port=config.port, platform=config.platform)

    store = get_indicator_store()
    service = get_vpn_service()
    monitor = get_traffic_monitor()
    await monitor.start()
    logger.info(
        "stealthdetect_ready",
        using_native=service.is_using_native(),
        indicators=store.get_stats(),
    )

    yield

    # --- Shutdown ---
    logger.info("stealthdetect_shutting_down")
    await ws_manager.close_all()
    await monitor.stop()
    await service.close()
    logger.info("stealthdetect_stopped")


app = FastAPI(
    title="STEALTHDETECT",
    description="Stalkerware traffic detection service",
    version=__version__,
    lifespan=lifespan,
)

register_error_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in config.cors_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "X-Request-ID"],
)

# Added last so it runs first
app.add_middleware(RequestIDMiddleware)

app.include_router(api_router)
app.include_router(websocket_router)


@app.get("/health")
async def health():
    """Service health: capture session, monitor and websocket clients."""
    service = get_vpn_service()
    monitor = get_traffic_monitor()
    status = await service.get_vpn_status()
    monitor_health = await monitor.health_check()
    return {
        "status": "ok",
        "name": config.app_name,
        "version": __version__,
        "vpn": {
            "state": status.state.value,
            "using_native": service.is_using_native(),
            **status.to_dict(),
        },
        "modules": {"traffic_monitor": monitor_health},
        "websocket_clients": ws_manager.connection_count,
    }


def main():
    """Run the StealthDetect server."""
    uvicorn.run(
        "stealthdetect.main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )


if __name__ == "__main__":
    main()
