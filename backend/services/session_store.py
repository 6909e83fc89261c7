"""
Durable session store (Redis).

Keys:
  windowSession:{windowIdentity} → durable player id (no expiry)
  player:{durableId}             → player snapshot JSON (SESSION_TTL once disconnected)
  socket:{connectionId}          → durable player id (SESSION_TTL)
  room:{roomId}                  → room snapshot JSON (ROOM_TTL, refreshed on save)
  rooms:active                   → set of room ids

Write-through only: the in-process RoomStore stays authoritative. With no
REDIS_URL configured the store is disabled and every call is a no-op.
"""
import json
import logging
import time
import uuid
from typing import Any, Dict, List, Optional

import redis.asyncio as redis

from config import settings
from models.room import Room

logger = logging.getLogger(__name__)

ACTIVE_ROOMS_KEY = "rooms:active"


class SessionStore:
    def __init__(
        self,
        url: str = "",
        room_ttl: Optional[int] = None,
        session_ttl: Optional[int] = None,
        client: Optional[redis.Redis] = None,
    ):
        self.url = url or settings.redis_url
        self.room_ttl = room_ttl or settings.redis_room_ttl
        self.session_ttl = session_ttl or settings.redis_session_ttl
        self.client: Optional[redis.Redis] = client

    @property
    def enabled(self) -> bool:
        return self.client is not None

    async def connect(self) -> bool:
        """Open the connection. Returns False (store disabled) when Redis is unreachable."""
        if self.client is not None:
            return True
        if not self.url:
            logger.info("REDIS_URL not set; durable session store disabled")
            return False
        client = redis.from_url(self.url, encoding="utf-8", decode_responses=True)
        try:
            await client.ping()
        except redis.RedisError as exc:
            logger.warning("Redis unavailable (%s); durable session store disabled", exc)
            await client.aclose()
            return False
        self.client = client
        logger.info("Connected to Redis")
        return True

    async def close(self) -> None:
        if self.client is not None:
            await self.client.aclose()
            self.client = None
            logger.info("Redis connection closed")

    # ── Keys ──────────────────────────────────────────────────────────────────

    @staticmethod
    def _window_key(window_identity: str) -> str:
        return f"windowSession:{window_identity}"

    @staticmethod
    def _player_key(durable_id: str) -> str:
        return f"player:{durable_id}"

    @staticmethod
    def _socket_key(connection_id: str) -> str:
        return f"socket:{connection_id}"

    @staticmethod
    def _room_key(room_id: str) -> str:
        return f"room:{room_id}"

    # ── Players ───────────────────────────────────────────────────────────────

    async def durable_id_for(self, window_identity: str) -> Optional[str]:
        """Get or create the durable player id for a window identity."""
        if not self.enabled:
            return None
        key = self._window_key(window_identity)
        durable_id = await self.client.get(key)
        if not durable_id:
            durable_id = str(uuid.uuid4())
            await self.client.set(key, durable_id)
            logger.info("Created durable id %s for window %s", durable_id, window_identity)
        return durable_id

    async def save_player(
        self, durable_id: str, data: Dict[str, Any], ttl: Optional[int] = None
    ) -> None:
        if not self.enabled:
            return
        await self.client.set(self._player_key(durable_id), json.dumps(data), ex=ttl)

    async def get_player(self, durable_id: str) -> Optional[Dict[str, Any]]:
        if not self.enabled:
            return None
        raw = await self.client.get(self._player_key(durable_id))
        return json.loads(raw) if raw else None

    async def map_connection(self, connection_id: str, durable_id: str) -> None:
        if not self.enabled:
            return
        await self.client.set(self._socket_key(connection_id), durable_id, ex=self.session_ttl)

    async def mark_disconnected(self, connection_id: str, durable_id: Optional[str]) -> None:
        """Drop the connection mapping and let the player snapshot expire after SESSION_TTL."""
        if not self.enabled:
            return
        await self.client.delete(self._socket_key(connection_id))
        if not durable_id:
            return
        player = await self.get_player(durable_id)
        if player:
            player["disconnectedAt"] = int(time.time() * 1000)
            player["socketId"] = None
            await self.save_player(durable_id, player, ttl=self.session_ttl)
            logger.info(
                "Player %s (%s) marked disconnected, expires in %ss",
                durable_id, player.get("name"), self.session_ttl,
            )

    # ── Rooms ─────────────────────────────────────────────────────────────────

    async def save_room(self, room: Room) -> None:
        if not self.enabled:
            return
        data = room.model_dump(mode="json")
        await self.client.set(self._room_key(room.id), json.dumps(data), ex=self.room_ttl)
        await self.client.sadd(ACTIVE_ROOMS_KEY, room.id)

    async def get_room(self, room_id: str) -> Optional[Room]:
        if not self.enabled:
            return None
        raw = await self.client.get(self._room_key(room_id))
        return Room.model_validate_json(raw) if raw else None

    async def delete_room(self, room_id: str) -> None:
        if not self.enabled:
            return
        await self.client.delete(self._room_key(room_id))
        await self.client.srem(ACTIVE_ROOMS_KEY, room_id)

    async def active_room_ids(self) -> List[str]:
        if not self.enabled:
            return []
        return sorted(await self.client.smembers(ACTIVE_ROOMS_KEY))

    async def clear(self) -> None:
        """Forget every mirrored room (used by the admin reset)."""
        if not self.enabled:
            return
        for room_id in await self.client.smembers(ACTIVE_ROOMS_KEY):
            await self.client.delete(self._room_key(room_id))
        await self.client.delete(ACTIVE_ROOMS_KEY)
