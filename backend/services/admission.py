"""
Admission Controller — lobby and room membership.

Every operation validates first and raises an AdmissionError subclass before
touching state, so a rejection never leaves a partial mutation behind. On
success the controller emits the matching events itself: a unicast to the
requester plus broadcasts to the affected room and the whole lobby.

Rooms only hold player ids. Before each mutation touching a room its member
list is pruned against the directory, and a room that ends up empty (or with
only bots left) is deleted in the same step.
"""
import logging
from typing import Awaitable, Callable, Optional

from agents.bot_actor import BotSupervisor, make_bot, pick_bot_name
from agents.completion_barrier import CompletionBarrier
from agents.summary_pipeline import SummaryPipeline
from models.errors import (
    BotNotFound, BotsDisabled, GameInProgress, InvalidCapacity, InvalidName,
    NameTaken, NotInLobby, NotInRoom, RoomFull, RoomNotFound,
)
from models.events import (
    BotAdded, BotRemoved, GameStarted, LobbyJoined, PlayerJoinedRoom,
    PlayerLeftRoom, RoomCreated, RoomJoined, RoomLeft,
)
from models.room import MAX_CAPACITY, MIN_CAPACITY, Player, Room, RoomStatus
from services.notifier import Notifier
from services.room_store import PlayerDirectory, RoomStore

logger = logging.getLogger(__name__)

MIN_NAME_LENGTH = 2

RoomHook = Callable[[Room], Awaitable[None]]


def clean_name(name: Optional[str]) -> str:
    return (name or "").strip()


class AdmissionController:
    def __init__(
        self,
        rooms: RoomStore,
        directory: PlayerDirectory,
        notifier: Notifier,
        barrier: CompletionBarrier,
        pipeline: SummaryPipeline,
        bots: BotSupervisor,
        bots_enabled: bool = True,
        on_game_started: Optional[RoomHook] = None,
        on_room_closed: Optional[RoomHook] = None,
    ):
        self._rooms = rooms
        self._directory = directory
        self._notifier = notifier
        self._barrier = barrier
        self._pipeline = pipeline
        self._bots = bots
        self.bots_enabled = bots_enabled
        self._on_game_started = on_game_started
        self._on_room_closed = on_room_closed

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _lobby_player(self, connection_id: str) -> Player:
        player = self._directory.get(connection_id)
        if not player or not player.in_lobby:
            raise NotInLobby("You must join the lobby first. Please refresh the page.")
        return player

    async def _live_room(self, room_id: Optional[str]) -> Optional[Room]:
        """Fetch a room after pruning stale members; None if it does not (or no longer) exist."""
        room = self._rooms.get(room_id)
        if room is None:
            return None
        if self._rooms.prune(room, self._directory):
            await self.closed(room)
            return None
        return room

    async def closed(self, room: Room) -> None:
        self._bots.cancel_room(room.id)
        self._barrier.forget(room.id)
        self._pipeline.forget(room.id)
        if self._on_room_closed:
            try:
                await self._on_room_closed(room)
            except Exception:
                logger.warning("[%s] Room-closed hook failed", room.id, exc_info=True)

    async def _broadcast_lists(self) -> None:
        await self._notifier.room_list()
        await self._notifier.player_list()

    async def detach(self, player: Player, room: Room, reason: Optional[str] = None) -> bool:
        """
        Remove a player from a room and notify whoever remains.
        Returns True when the room was deleted as a result.
        """
        deleted = self._rooms.remove_member(room, player.id, player.name)
        if player.room_id == room.id:
            player.room_id = None
        return await self.vacated(room, player, reason, deleted)

    async def vacated(
        self, room: Room, player: Player, reason: Optional[str], deleted: bool = False
    ) -> bool:
        """Follow-up once a player is out of room.members (also used after a reconnect retire)."""
        if not deleted and not self._has_humans(room):
            self._dissolve_bots(room)
            deleted = True
        if deleted:
            logger.info("[%s] Room \"%s\" closed after %s left", room.id, room.name, player.name or player.id)
            await self.closed(room)
            return True
        await self.settle_departure(room, player, reason)
        return False

    async def settle_departure(self, room: Room, player: Player, reason: Optional[str]) -> None:
        """Post-removal bookkeeping for a room that still has people in it."""
        if room.host_id == player.id:
            room.host_id = self._next_host(room)
        await self._notifier.to_room(
            room,
            PlayerLeftRoom(
                player_id=player.id,
                player_name=player.name,
                room=self._notifier.room_view(room),
                reason=reason,
            ),
        )
        if room.status == RoomStatus.PLAYING:
            await self._barrier.reevaluate(room.id)

    def _has_humans(self, room: Room) -> bool:
        return any(
            pid in self._directory and not self._directory.get(pid).is_bot
            for pid in room.members
        )

    def _dissolve_bots(self, room: Room) -> None:
        for pid in list(room.members):
            self._directory.remove(pid)
        room.members.clear()
        self._rooms.delete(room.id)

    def _next_host(self, room: Room) -> str:
        for pid in room.members:
            player = self._directory.get(pid)
            if player and not player.is_bot:
                return pid
        return room.members[0]

    # ── Lobby ─────────────────────────────────────────────────────────────────

    async def join_lobby(self, connection_id: str, name: str) -> Player:
        player = self._directory.get(connection_id)
        if player is None:
            raise NotInLobby("Session not found. Please refresh the page.")
        name = clean_name(name)
        if len(name) < MIN_NAME_LENGTH:
            raise InvalidName(f"Name must be at least {MIN_NAME_LENGTH} characters")
        other = self._directory.by_name(name)
        if other and other.id != connection_id:
            raise NameTaken(f"The name \"{name}\" is already taken. Please choose another name.")
        # Finish marks and conversation logs are keyed by name during a game
        seated = self._rooms.get(player.room_id)
        if (
            seated is not None
            and seated.status == RoomStatus.PLAYING
            and player.name
            and player.name.lower() != name.lower()
        ):
            raise GameInProgress("You cannot change your name while your game is in progress")

        self._directory.rename(player, name)
        logger.info("%s joined the lobby as %s", connection_id, name)

        await self._notifier.to_connection(
            connection_id,
            LobbyJoined(
                player_id=player.id,
                name=player.name,
                rooms=[r.to_summary() for r in self._rooms.all()],
            ),
        )
        await self._notifier.player_list()
        return player

    # ── Rooms ─────────────────────────────────────────────────────────────────

    async def create_room(self, connection_id: str, name: str, capacity: int) -> Room:
        player = self._lobby_player(connection_id)
        name = clean_name(name)
        if not name:
            raise InvalidName("Room name cannot be empty")
        existing = self._rooms.find_by_name(name)
        if existing is not None:
            existing = await self._live_room(existing.id)
        if existing is not None:
            raise NameTaken(f"A room named \"{name}\" already exists. Please choose a different name.")
        if not MIN_CAPACITY <= capacity <= MAX_CAPACITY:
            raise InvalidCapacity(f"Room capacity must be between {MIN_CAPACITY} and {MAX_CAPACITY}")

        previous = self._rooms.get(player.room_id)
        if previous:
            await self.detach(player, previous)

        room = Room(name=name, capacity=capacity, host_id=player.id, members=[player.id])
        self._rooms.add(room)
        player.room_id = room.id
        logger.info("[%s] %s created room \"%s\" (capacity %d)", room.id, player.name, name, capacity)

        await self._notifier.to_connection(
            connection_id, RoomCreated(room=self._notifier.room_view(room))
        )
        await self._broadcast_lists()
        return room

    async def join_room(self, connection_id: str, room_id: str) -> Room:
        player = self._lobby_player(connection_id)
        room = await self._live_room(room_id)
        if room is None:
            raise RoomNotFound("Room does not exist")

        if player.id in room.members:
            # Already seated here: answer with the current state.
            player.room_id = room.id
            await self._notifier.to_connection(
                connection_id, RoomJoined(room=self._notifier.room_view(room))
            )
            return room

        if room.is_full:
            raise RoomFull("Room is full")
        if room.status == RoomStatus.PLAYING:
            raise GameInProgress("Game already in progress")

        previous = self._rooms.get(player.room_id)
        if previous and previous is not room:
            await self.detach(player, previous)

        room.members.append(player.id)
        player.room_id = room.id
        logger.info("[%s] %s joined (%d/%d)", room.id, player.name, len(room.members), room.capacity)

        view = self._notifier.room_view(room)
        await self._notifier.to_connection(connection_id, RoomJoined(room=view))
        await self._notifier.to_room(
            room, PlayerJoinedRoom(player_id=player.id, room=view), exclude=connection_id
        )
        await self._broadcast_lists()
        return room

    async def leave_room(self, connection_id: str, room_id: Optional[str] = None) -> None:
        player = self._lobby_player(connection_id)
        room = self._rooms.get(room_id or player.room_id)
        if room is None or player.id not in room.members:
            raise NotInRoom("You are not in that room")

        await self.detach(player, room)
        player.room_id = None
        await self._notifier.to_connection(
            connection_id, RoomLeft(room_id=room.id, message="You have left the room")
        )
        await self._broadcast_lists()

    async def disconnect(self, connection_id: str) -> Optional[Player]:
        """Drop a closed connection: leave its room, then delete the player record."""
        player = self._directory.get(connection_id)
        if player is None:
            return None
        room = self._rooms.get(player.room_id)
        if room is not None:
            await self.detach(player, room, reason="disconnected")
        self._directory.remove(connection_id)
        logger.info("%s (%s) disconnected", connection_id, player.name or "unnamed")
        await self._broadcast_lists()
        return player

    # ── Game start ────────────────────────────────────────────────────────────

    async def start_game(self, connection_id: str, room_id: str) -> Optional[Room]:
        player = self._lobby_player(connection_id)
        room = await self._live_room(room_id)
        if room is None:
            raise RoomNotFound("Room does not exist")
        if player.id not in room.members:
            logger.info("[%s] Ignoring start from non-member %s", room_id, player.name)
            return None
        if room.status == RoomStatus.PLAYING:
            await self._notifier.to_connection(
                connection_id, GameStarted(room=self._notifier.room_view(room))
            )
            return room

        room.status = RoomStatus.PLAYING
        room.conversation_logs = {}
        room.finished = []
        room.summaries_started = False
        room.group_summary = None
        logger.info("[%s] Game started by %s with %d player(s)", room.id, player.name, len(room.members))

        if self._on_game_started:
            try:
                await self._on_game_started(room)
            except Exception:
                logger.warning("[%s] Game-started hook failed", room.id, exc_info=True)

        await self._notifier.to_room(room, GameStarted(room=self._notifier.room_view(room)))
        await self._notifier.room_list()

        for pid in list(room.members):
            member = self._directory.get(pid)
            if member and member.is_bot:
                self._bots.spawn(room.id, member)
        return room

    # ── Bots ──────────────────────────────────────────────────────────────────

    async def add_bot(self, connection_id: str, room_id: str) -> Player:
        self._lobby_player(connection_id)
        if not self.bots_enabled:
            raise BotsDisabled("Bots are not available on this server")
        room = await self._live_room(room_id)
        if room is None:
            raise RoomNotFound("Room not found")
        if room.is_full:
            raise RoomFull("Room is full")
        if room.status == RoomStatus.PLAYING:
            raise GameInProgress("Game already in progress")

        name = pick_bot_name(p.name for p in self._directory if p.name)
        bot = make_bot(name, room.id)
        self._directory.add(bot)
        room.members.append(bot.id)
        logger.info("[%s] Bot %s (%s) added", room.id, bot.name, bot.id)

        view = self._notifier.room_view(room)
        await self._notifier.to_room(room, BotAdded(bot=bot.to_public()))
        await self._notifier.to_room(room, PlayerJoinedRoom(player_id=bot.id, room=view))
        await self._broadcast_lists()
        return bot

    async def remove_bot(self, connection_id: str, room_id: str, bot_id: str) -> Player:
        self._lobby_player(connection_id)
        if not self.bots_enabled:
            raise BotsDisabled("Bots are not available on this server")
        room = await self._live_room(room_id)
        if room is None:
            raise RoomNotFound("Room not found")
        bot = self._directory.get(bot_id)
        if bot is None or not bot.is_bot or bot_id not in room.members:
            raise BotNotFound("Bot not found")

        self._bots.cancel(room.id, bot.id)
        self._directory.remove(bot.id)
        logger.info("[%s] Bot %s removed", room.id, bot.name)

        deleted = self._rooms.remove_member(room, bot.id, bot.name)
        if deleted:
            await self.closed(room)
        else:
            await self._notifier.to_room(room, BotRemoved(bot_id=bot.id))
            await self.settle_departure(room, bot, reason="removed")
        await self._broadcast_lists()
        return bot
