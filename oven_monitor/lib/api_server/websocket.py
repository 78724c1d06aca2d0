"""Live temperature streaming over WebSocket.

Clients receive an ``oven_state`` snapshot on connect, then one
``temperature_update`` per accepted reading. They may send ``ping`` (answered
with ``pong``) or ``get_state`` (answered with a fresh snapshot).
"""

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

import structlog
from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from ...models import OvenId, Reading, utc_now

logger = structlog.get_logger(__name__)


class WebSocketMessage(BaseModel):
    type: str
    timestamp: datetime = Field(default_factory=utc_now)
    data: Dict[str, Any] = Field(default_factory=dict)


class TemperatureUpdateMessage(WebSocketMessage):
    type: str = "temperature_update"

    @classmethod
    def from_reading(cls, reading: Reading) -> 'TemperatureUpdateMessage':
        return cls(data={
            "oven_id": reading.oven_id.value,
            "value": reading.value,
            "timestamp": reading.received_at.isoformat()
        })


class OvenStateMessage(WebSocketMessage):
    type: str = "oven_state"


@dataclass
class ClientInfo:
    client_id: str
    connected_at: datetime = field(default_factory=utc_now)
    last_ping: Optional[datetime] = None


class ConnectionManager:
    """Tracks connected clients and fans readings out to them.

    ``on_reading`` is subscribed to the live state cache and is called
    synchronously during ingestion, possibly from another thread. It never
    sends directly; it schedules ``broadcast_message`` on the loop that
    accepted the connections.
    """

    def __init__(self, controller):
        self.controller = controller
        self.clients: Dict[WebSocket, ClientInfo] = {}
        self.messages_sent = 0
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._pending: Set[Any] = set()

    @property
    def active_connections(self) -> List[WebSocket]:
        return list(self.clients)

    async def connect(self, websocket: WebSocket, client_id: Optional[str] = None) -> None:
        await websocket.accept()
        self._loop = asyncio.get_running_loop()

        info = ClientInfo(client_id=client_id or f"client_{id(websocket)}")
        self.clients[websocket] = info
        logger.info("WebSocket client connected", client_id=info.client_id, clients=len(self.clients))

        await self.send_state(websocket)

    def disconnect(self, websocket: WebSocket) -> None:
        info = self.clients.pop(websocket, None)
        if info is not None:
            logger.info("WebSocket client disconnected", client_id=info.client_id, clients=len(self.clients))

    async def send_to(self, websocket: WebSocket, message: Dict[str, Any]) -> bool:
        """Send one message; a failed send drops the client."""
        try:
            await websocket.send_text(json.dumps(message, default=str))
        except Exception as e:
            logger.warning("WebSocket send failed", error=str(e))
            self.disconnect(websocket)
            return False
        self.messages_sent += 1
        return True

    async def broadcast_message(self, message: Dict[str, Any]) -> None:
        for websocket in self.active_connections:
            await self.send_to(websocket, message)

    def on_reading(self, reading: Reading) -> None:
        loop = self._loop
        if not self.clients or loop is None or loop.is_closed():
            return

        message = TemperatureUpdateMessage.from_reading(reading).model_dump(mode='json')
        coroutine = self.broadcast_message(message)

        try:
            same_loop = asyncio.get_running_loop() is loop
        except RuntimeError:
            same_loop = False

        if same_loop:
            pending = loop.create_task(coroutine)
        else:
            pending = asyncio.run_coroutine_threadsafe(coroutine, loop)

        self._pending.add(pending)
        pending.add_done_callback(self._pending.discard)

    async def handle_client_message(self, websocket: WebSocket, message: Dict[str, Any]) -> None:
        kind = message.get("type")

        if kind == "ping":
            info = self.clients.get(websocket)
            if info is not None:
                info.last_ping = utc_now()
            await self.send_to(websocket, {"type": "pong", "timestamp": utc_now().isoformat()})
        elif kind == "get_state":
            await self.send_state(websocket)
        else:
            logger.warning("Unknown WebSocket message type", message_type=kind)

    async def send_state(self, websocket: WebSocket) -> None:
        snapshot = {
            oven_id.value: self.controller.get_active_session(oven_id).model_dump(mode='json')
            for oven_id in OvenId
        }
        await self.send_to(websocket, OvenStateMessage(data=snapshot).model_dump(mode='json'))


async def websocket_endpoint(manager: ConnectionManager,
                             websocket: WebSocket,
                             client_id: Optional[str] = None) -> None:
    """Serve one client until it disconnects."""
    await manager.connect(websocket, client_id)

    try:
        while True:
            text = await websocket.receive_text()
            try:
                message = json.loads(text)
            except json.JSONDecodeError:
                logger.warning("Ignoring non-JSON WebSocket message")
                continue

            if isinstance(message, dict):
                await manager.handle_client_message(websocket, message)
    except WebSocketDisconnect:
        manager.disconnect(websocket)


__all__ = [
    "ClientInfo",
    "ConnectionManager",
    "OvenStateMessage",
    "TemperatureUpdateMessage",
    "WebSocketMessage",
    "websocket_endpoint",
]
