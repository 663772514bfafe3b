"""
Real-time "orders" channel over WebSockets.

Every connected client receives each broadcast message. There is no
per-subscriber acknowledgment; a client whose send fails is dropped.
"""

import asyncio
from typing import Any

from fastapi import WebSocket

from lifebank.core.logging import get_logger

logger = get_logger(__name__)


class OrdersBroadcaster:
    """Fan-out of order messages to connected WebSocket clients."""

    def __init__(self, channel: str = "orders"):
        self.channel = channel
        self._connections: list[WebSocket] = []
        self._lock = asyncio.Lock()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def connect(self, websocket: WebSocket) -> None:
        """Accept a client and subscribe it to the channel."""
        await websocket.accept()
        async with self._lock:
            self._connections.append(websocket)
        logger.info(
            "WebSocket client connected",
            channel=self.channel,
            connections=self.connection_count,
        )

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            if websocket in self._connections:
                self._connections.remove(websocket)
        logger.info(
            "WebSocket client disconnected",
            channel=self.channel,
            connections=self.connection_count,
        )

    async def broadcast(self, message_type: str, payload: dict[str, Any]) -> int:
        """
        Send one message to every connected client.

        Args:
            message_type: Message name, e.g. ``order.status.updated``
            payload: JSON-serializable message body

        Returns:
            Number of clients the message was sent to
        """
        message = {"type": message_type, "data": payload}

        async with self._lock:
            connections = list(self._connections)

        sent = 0
        dropped: list[WebSocket] = []
        for websocket in connections:
            try:
                await websocket.send_json(message)
                sent += 1
            except Exception as e:
                logger.warning(
                    "Dropping WebSocket client after failed send",
                    channel=self.channel,
                    message_type=message_type,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                dropped.append(websocket)

        if dropped:
            async with self._lock:
                self._connections = [
                    ws for ws in self._connections if ws not in dropped
                ]

        logger.info(
            "Broadcast sent",
            channel=self.channel,
            message_type=message_type,
            sent=sent,
            dropped=len(dropped),
        )
        return sent
