"""
WebSocket Hub — realtime lobby transport.

URL: /ws?windowIdentity={window_identity}

Connection flow:
  1. Accept connection, assign a fresh connection id
  2. engine.connect(): reconcile the window identity (a stale connection for
     the same window is retired), send "server-session"
  3. Message loop: every frame {type, data} goes to engine.handle()
  4. On disconnect: engine.disconnect() leaves the room and drops the player

Client → server message types (see models/events.py):
  ping, join-lobby, create-room, join-room, leave-room, start-game,
  add-bot, remove-bot, start-conversation, conversation-message,
  finish-conversation, generate-group-summary, get-room-state
"""
import json
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


@router.websocket("/ws")
async def websocket_endpoint(
    ws: WebSocket,
    windowIdentity: Optional[str] = Query(None, description="Stable per-tab identity"),
):
    engine = ws.app.state.engine
    manager = ws.app.state.connections

    connection_id = uuid.uuid4().hex
    # Without a window identity the connection is its own identity (no reconnect matching)
    window_identity = windowIdentity or f"conn_{connection_id}"

    await manager.connect(connection_id, ws)
    await engine.connect(connection_id, window_identity)

    try:
        while True:
            raw = await ws.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                await manager.send_to(connection_id, {
                    "type": "command-error",
                    "message": "Invalid JSON",
                    "code": "PARSE_ERROR",
                })
                continue
            if not isinstance(data, dict):
                await manager.send_to(connection_id, {
                    "type": "command-error",
                    "message": "Expected a JSON object",
                    "code": "PARSE_ERROR",
                })
                continue
            await engine.handle(connection_id, data)

    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(connection_id)
        try:
            await engine.disconnect(connection_id)
        except Exception:
            logger.exception("Error while disconnecting %s", connection_id)
