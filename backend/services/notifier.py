"""
Routes outbound events to connections.

Player ids are connection ids, so a room broadcast is a direct walk over the
room's member list; a summary for a named player is a lookup in the
directory's name index. Bots have no connection and are skipped.
"""
import logging
from typing import Any, Dict, Optional, Protocol

from models.events import OutboundEvent, PlayerListUpdated, RoomListUpdated
from models.room import Room
from services.room_store import PlayerDirectory, RoomStore

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    """Transport that actually delivers JSON messages (WebSocket hub, test recorder)."""

    async def send_to(self, connection_id: str, message: Dict[str, Any]) -> None:
        ...

    async def broadcast(self, message: Dict[str, Any], exclude: Optional[str] = None) -> None:
        ...

    async def close_all(self) -> None:
        ...


class Notifier:
    def __init__(self, sink: EventSink, rooms: RoomStore, directory: PlayerDirectory):
        self._sink = sink
        self._rooms = rooms
        self._directory = directory

    async def to_connection(self, connection_id: str, event: OutboundEvent) -> None:
        await self._sink.send_to(connection_id, event.to_wire())

    async def to_everyone(self, event: OutboundEvent) -> None:
        await self._sink.broadcast(event.to_wire())

    async def to_room(
        self, room: Room, event: OutboundEvent, exclude: Optional[str] = None
    ) -> None:
        message = event.to_wire()
        for player_id in list(room.members):
            if player_id == exclude:
                continue
            player = self._directory.get(player_id)
            if player is None or player.is_bot:
                continue
            await self._sink.send_to(player_id, message)

    async def to_player(self, room: Room, player_name: str, event: OutboundEvent) -> bool:
        """
        Deliver to the named player's live connection in this room.
        Falls back to the whole room (clients filter by name) when the player
        is not connected. Returns True on direct delivery.
        """
        connection_id = self._directory.connection_for(player_name, room.id)
        if connection_id:
            await self.to_connection(connection_id, event)
            return True
        logger.info(
            "[%s] No live connection for %s; broadcasting %s to room",
            room.id, player_name, event.type,
        )
        await self.to_room(room, event)
        return False

    async def player_list(self) -> None:
        await self.to_everyone(PlayerListUpdated(players=self._directory.snapshot()))

    async def room_list(self) -> None:
        await self.to_everyone(
            RoomListUpdated(rooms=[r.to_summary() for r in self._rooms.all()])
        )

    def room_view(self, room: Room) -> Dict[str, Any]:
        return room.to_public(self._directory.players)
