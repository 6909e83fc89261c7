"""
Identity Registry — reconciles a browser window's stable identity with its
current connection.

A page reload opens a new connection before (or after) the old one closes.
Whichever arrives, the newest connection wins: the stale Player is retired
from the directory and from its room in the same synchronous step, so two
connections for one window identity never coexist as live players.
"""
import logging
from typing import NamedTuple, Optional

from models.room import Player, Room
from services.room_store import PlayerDirectory, RoomStore

logger = logging.getLogger(__name__)


class Resolution(NamedTuple):
    player: Player
    is_new: bool
    retired: Optional[Player] = None
    # Room the retired player was removed from (already gone if room_deleted)
    vacated_room: Optional[Room] = None
    room_deleted: bool = False


class IdentityRegistry:
    def __init__(self, directory: PlayerDirectory, rooms: RoomStore):
        self._directory = directory
        self._rooms = rooms

    def resolve(self, window_identity: str, connection_id: str) -> Resolution:
        """
        Return the live Player for this window identity bound to connection_id.
        The first two fields of the result are (player, is_new).
        """
        existing = self._directory.by_window(window_identity)

        if existing and existing.id == connection_id:
            return Resolution(existing, False)

        if existing is None:
            player = Player(id=connection_id, window_identity=window_identity)
            self._directory.add(player)
            return Resolution(player, True)

        # Stale connection for the same window: retire it, carry the identity over.
        retired, vacated, deleted = self.retire(existing)
        player = Player(
            id=connection_id,
            window_identity=window_identity,
            name=retired.name,
            durable_id=retired.durable_id,
        )
        self._directory.add(player)
        logger.info(
            "Window %s reconnected: %s → %s (%s)",
            window_identity, retired.id, connection_id, retired.name or "unnamed",
        )
        return Resolution(player, False, retired, vacated, deleted)

    def retire(self, player: Player):
        """
        Remove a player from the directory and from its room.
        Returns (player, room_or_None, room_was_deleted).
        """
        self._directory.remove(player.id)
        room = self._rooms.get(player.room_id)
        if not room:
            return player, None, False
        deleted = self._rooms.remove_member(room, player.id, player.name)
        return player, room, deleted
