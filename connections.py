import asyncio
import json
from typing import Dict, Optional

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from logging_config import get_logger

logger = get_logger(__name__)


class WebSocketChannel:
    """Addressable endpoint for one WebSocket. Sends are serialized."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self._send_lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send(self, event: str, payload: dict):
        frame = json.dumps({"event": event, "data": payload})
        async with self._send_lock:
            await self.websocket.send_text(frame)


class ConnectionRegistry:
    """Maps connection ids to live channels for one server instance.

    Holds no room membership: that always comes from the session store.
    """

    def __init__(self):
        # Format: {connection_id: channel}
        self._channels: Dict[str, WebSocketChannel] = {}

    def __len__(self):
        return len(self._channels)

    def register(self, connection_id: str, channel):
        self._channels[connection_id] = channel
        logger.debug(f"Registered connection {connection_id} (live connections: {len(self._channels)})")

    def unregister(self, connection_id: str):
        if self._channels.pop(connection_id, None) is not None:
            logger.debug(f"Unregistered connection {connection_id} (live connections: {len(self._channels)})")

    def resolve(self, connection_id: Optional[str]):
        if not connection_id:
            return None
        return self._channels.get(connection_id)

    def is_alive(self, connection_id: Optional[str]) -> bool:
        channel = self.resolve(connection_id)
        return channel is not None and channel.is_open

    async def send(self, connection_id: Optional[str], event: str, payload: Optional[dict] = None) -> bool:
        """Deliver an event. False means the recipient is currently offline."""
        channel = self.resolve(connection_id)
        if channel is None:
            logger.debug(f"Cannot emit {event}: connection {connection_id} not found")
            return False
        try:
            await channel.send(event, payload or {})
        except Exception as e:
            logger.warning(f"Error sending {event} to connection {connection_id}: {e}")
            return False
        logger.debug(f"Emitted {event} to connection {connection_id}")
        return True
