"""
In-process state for the realtime lobby.

RoomStore        room_id → Room, with a case-insensitive room-name index.
PlayerDirectory  connection id → Player, with window-identity and name indexes.

Both are owned by the RoomEngine and passed by reference to every component.
All methods are synchronous: a mutation never spans an await, so asyncio's
single-threaded loop is enough to keep each one atomic.
"""
import logging
from typing import Dict, Iterator, List, Optional

from models.room import Player, Room

logger = logging.getLogger(__name__)


class PlayerDirectory:
    """Single source of truth for who is online."""

    def __init__(self):
        self._players: Dict[str, Player] = {}
        self._by_window: Dict[str, str] = {}   # window identity → player id
        self._by_name: Dict[str, str] = {}     # lower-cased name → player id

    def __len__(self) -> int:
        return len(self._players)

    def __contains__(self, player_id: str) -> bool:
        return player_id in self._players

    def __iter__(self) -> Iterator[Player]:
        return iter(list(self._players.values()))

    @property
    def players(self) -> Dict[str, Player]:
        """Live view keyed by player id. Read-only by convention."""
        return self._players

    def get(self, player_id: str) -> Optional[Player]:
        return self._players.get(player_id)

    def add(self, player: Player) -> None:
        self._players[player.id] = player
        self._by_window[player.window_identity] = player.id
        if player.name:
            self._by_name[player.name.lower()] = player.id

    def remove(self, player_id: str) -> Optional[Player]:
        player = self._players.pop(player_id, None)
        if not player:
            return None
        if self._by_window.get(player.window_identity) == player_id:
            del self._by_window[player.window_identity]
        if player.name and self._by_name.get(player.name.lower()) == player_id:
            del self._by_name[player.name.lower()]
        return player

    def rename(self, player: Player, name: str) -> None:
        if player.name and self._by_name.get(player.name.lower()) == player.id:
            del self._by_name[player.name.lower()]
        player.name = name
        self._by_name[name.lower()] = player.id

    def by_window(self, window_identity: str) -> Optional[Player]:
        player_id = self._by_window.get(window_identity)
        return self._players.get(player_id) if player_id else None

    def by_name(self, name: str) -> Optional[Player]:
        player_id = self._by_name.get(name.strip().lower())
        return self._players.get(player_id) if player_id else None

    def connection_for(self, name: str, room_id: str) -> Optional[str]:
        """Live connection of the human player with this name seated in this room."""
        player = self.by_name(name)
        if player and not player.is_bot and player.room_id == room_id:
            return player.id
        return None

    def snapshot(self) -> List[dict]:
        """Public list of players who have joined the lobby."""
        return [p.to_public() for p in self._players.values() if p.in_lobby]

    def clear(self) -> None:
        self._players.clear()
        self._by_window.clear()
        self._by_name.clear()


class RoomStore:
    """Owns room lifecycle. An empty room never outlives the call that emptied it."""

    def __init__(self):
        self._rooms: Dict[str, Room] = {}
        self._by_name: Dict[str, str] = {}   # lower-cased room name → room id

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._rooms

    def get(self, room_id: Optional[str]) -> Optional[Room]:
        if not room_id:
            return None
        return self._rooms.get(room_id)

    def all(self) -> List[Room]:
        return list(self._rooms.values())

    def find_by_name(self, name: str) -> Optional[Room]:
        room_id = self._by_name.get(name.strip().lower())
        return self._rooms.get(room_id) if room_id else None

    def add(self, room: Room) -> None:
        self._rooms[room.id] = room
        self._by_name[room.name.lower()] = room.id

    def delete(self, room_id: str) -> Optional[Room]:
        room = self._rooms.pop(room_id, None)
        if room and self._by_name.get(room.name.lower()) == room_id:
            del self._by_name[room.name.lower()]
        if room:
            logger.info("[%s] Deleted room \"%s\"; name is available again", room_id, room.name)
        return room

    def remove_member(
        self, room: Room, player_id: str, player_name: Optional[str] = None
    ) -> bool:
        """
        Drop a member (and their finished mark) from a room.
        Deletes the room in the same step if it is now empty.
        Returns True when the room was deleted.
        """
        if player_id in room.members:
            room.members.remove(player_id)
        if player_name and player_name in room.finished:
            room.finished.remove(player_name)
        if room.is_empty:
            self.delete(room.id)
            return True
        return False

    def prune(self, room: Room, directory: PlayerDirectory) -> bool:
        """
        Remove member ids whose Player record no longer exists.
        Returns True when pruning emptied (and deleted) the room.
        """
        stale = [pid for pid in room.members if pid not in directory]
        for pid in stale:
            room.members.remove(pid)
        if stale:
            logger.info("[%s] Pruned %d stale member(s)", room.id, len(stale))
            member_names = {directory.get(pid).name for pid in room.members}
            room.finished = [n for n in room.finished if n in member_names]
        if room.is_empty:
            self.delete(room.id)
            return True
        return False

    def clear(self) -> None:
        self._rooms.clear()
        self._by_name.clear()
