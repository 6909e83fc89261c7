import logging
from typing import Dict, Optional

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    Tracks active WebSocket connections by connection id.
    Safe for asyncio single-threaded event loop (no extra locking needed).
    """

    def __init__(self):
        # {connection_id: WebSocket}
        self._sockets: Dict[str, WebSocket] = {}

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    async def connect(self, connection_id: str, ws: WebSocket) -> None:
        await ws.accept()
        self._sockets[connection_id] = ws
        logger.debug("%s connected (%d total)", connection_id, self.count())

    def disconnect(self, connection_id: str) -> None:
        self._sockets.pop(connection_id, None)

    def count(self) -> int:
        return len(self._sockets)

    async def close_all(self) -> None:
        for connection_id, ws in list(self._sockets.items()):
            try:
                await ws.close(code=1012, reason="Server reset")
            except Exception as exc:
                logger.debug(f"close {connection_id} failed: {exc}")
        self._sockets.clear()

    # ── Sending ────────────────────────────────────────────────────────────────

    async def send_to(self, connection_id: str, message: Dict) -> None:
        """Send a private message to a single connection."""
        ws = self._sockets.get(connection_id)
        if ws:
            try:
                await ws.send_json(message)
            except Exception as exc:
                logger.warning(f"send_to {connection_id} failed: {exc}")
                self.disconnect(connection_id)

    async def broadcast(self, message: Dict, exclude: Optional[str] = None) -> None:
        """Broadcast a message to every connected client."""
        for connection_id, ws in list(self._sockets.items()):
            if connection_id == exclude:
                continue
            try:
                await ws.send_json(message)
            except Exception as exc:
                logger.warning(f"broadcast to {connection_id} failed: {exc}")
                self.disconnect(connection_id)
