"""Real-time WebSocket feed of capture events."""

import asyncio
import json
from datetime import datetime, timezone

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ...dependencies import get_app_config, get_vpn_service
from ...utils.event_bus import Subscription
from ...utils.logging import get_logger
from ...vpn.events import EventName

logger = get_logger("websocket.events")

router = APIRouter()


def encode_event(event_name: str, event) -> str:
    """``{"type": <eventName>, "data": <event>}`` as JSON text."""
    data = event.to_dict() if hasattr(event, "to_dict") else event
    return json.dumps({"type": event_name, "data": data})


class ConnectionManager:
    """Manages WebSocket clients with per-connection queues and heartbeat.

    Each client holds its own subscriptions on the capture service. Bus
    handlers may run on platform threads, so they only hand the encoded
    message to the loop; a writer task per client drains its queue.
    """

    def __init__(self, max_connections: int = 20, queue_size: int = 100, heartbeat_interval: int = 30):
        self._connections: dict[WebSocket, asyncio.Queue] = {}
        self._writer_tasks: dict[WebSocket, asyncio.Task] = {}
        self._subscriptions: dict[WebSocket, list[Subscription]] = {}
        self._max_connections = max_connections
        self._queue_size = queue_size
        self._heartbeat_interval = heartbeat_interval

    async def connect(self, websocket: WebSocket, service) -> bool:
        """Accept connection if under limit. Returns False if rejected."""
        if len(self._connections) >= self._max_connections:
            await websocket.close(code=1013)  # Try Again Later
            logger.warning("ws_connection_rejected", reason="max_connections", total=len(self._connections))
            return False
        await websocket.accept()
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._connections[websocket] = queue
        self._writer_tasks[websocket] = asyncio.create_task(self._writer(websocket, queue))

        loop = asyncio.get_running_loop()
        self._subscriptions[websocket] = [
            service.subscribe(name.value, self._forwarder(loop, websocket, name.value))
            for name in EventName
        ]
        logger.info("ws_client_connected", total=len(self._connections))
        return True

    def _forwarder(self, loop: asyncio.AbstractEventLoop, websocket: WebSocket, event_name: str):
        def forward(event) -> None:
            text = encode_event(event_name, event)
            loop.call_soon_threadsafe(self._enqueue, websocket, text)
        forward.__qualname__ = f"ws_forward[{event_name}]"
        return forward

    def _enqueue(self, websocket: WebSocket, text: str) -> None:
        queue = self._connections.get(websocket)
        if queue is None:
            return
        try:
            queue.put_nowait(text)
        except asyncio.QueueFull:
            # Client can't keep up
            logger.warning("ws_client_backpressure_disconnect")
            asyncio.ensure_future(self.disconnect(websocket))

    async def disconnect(self, websocket: WebSocket) -> None:
        """Remove connection, its subscriptions and its writer task."""
        for subscription in self._subscriptions.pop(websocket, []):
            subscription.remove()
        if self._connections.pop(websocket, None) is None:
            return
        task = self._writer_tasks.pop(websocket, None)
        if task and not task.done():
            task.cancel()
        try:
            await websocket.close()
        except Exception as e:
            logger.debug("ws_close_failed", error=str(e))
        logger.info("ws_client_disconnected", total=len(self._connections))

    async def close_all(self) -> None:
        for ws in list(self._connections.keys()):
            await self.disconnect(ws)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def _writer(self, websocket: WebSocket, queue: asyncio.Queue) -> None:
        """Per-connection writer coroutine that drains the queue."""
        try:
            while True:
                try:
                    message = await asyncio.wait_for(queue.get(), timeout=self._heartbeat_interval)
                    await websocket.send_text(message)
                except asyncio.TimeoutError:
                    await websocket.send_text(json.dumps({
                        "type": "heartbeat",
                        "timestamp": datetime.now(timezone.utc).isoformat(),
                    }))
        except asyncio.CancelledError:
            return
        except Exception as e:
            logger.debug("ws_writer_error", error=str(e))
            return


_config = get_app_config()
manager = ConnectionManager(
    max_connections=_config.ws_max_connections,
    queue_size=_config.ws_queue_size,
    heartbeat_interval=_config.ws_heartbeat_interval,
)


@router.websocket("/ws/events")
async def websocket_events(websocket: WebSocket):
    """Stream capture events as they are published.

    Each message is JSON:
    {
        "type": "dnsRequest" | "connectionEvent" | "vpnStateChange" | "heartbeat",
        "data": { ... }
    }
    """
    service = get_vpn_service()
    if not await manager.connect(websocket, service):
        return
    try:
        while True:
            # Clients only listen; anything they send is ignored
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await manager.disconnect(websocket)
