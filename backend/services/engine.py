"""
RoomEngine — composes the realtime lobby and owns its state.

Created once per process (FastAPI lifespan) and handed to the transport.
Everything stateful (RoomStore, PlayerDirectory, scheduler, bot actors) is
built here and passed by reference to the components that need it.

Transport contract:
  connect(connection_id, window_identity)  — a socket opened
  handle(connection_id, frame)             — one client frame {type, data}
  disconnect(connection_id)                — a socket closed

Commands that wait on the completion provider (start-conversation,
conversation-message, generate-group-summary) run as background tasks so a
connection's message loop never blocks on a reply. Rejections from those
tasks are still reported to the requester.
"""
import logging
import time
import uuid
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from agents.bot_actor import BotSupervisor
from agents.completion_barrier import CompletionBarrier
from agents.conversation import ConversationOrchestrator
from agents.llm import CompletionClient, GeminiCompletionClient
from agents.summary_pipeline import SummaryPipeline
from config import settings
from models.errors import AdmissionError, NotInLobby, RoomNotFound
from models.events import (
    ERROR_TYPE_FOR_COMMAND, ErrorEvent, GroupSummaryGenerated, LobbyJoined,
    Pong, RoomStateUpdate, ServerReset, ServerSession, parse_command,
)
from models.room import MIN_CAPACITY, Player, Room, RoomStatus
from services.admission import MIN_NAME_LENGTH, AdmissionController, clean_name
from services.identity import IdentityRegistry
from services.notifier import EventSink, Notifier
from services.room_store import PlayerDirectory, RoomStore
from services.scheduler import Scheduler
from services.session_store import SessionStore
from services.voice_rooms import VoiceRoom, VoiceRoomClient

logger = logging.getLogger(__name__)

RESET_GRACE_SECONDS = 1.0

# Commands handed to the scheduler instead of being awaited inline
_BACKGROUND_COMMANDS = {"start-conversation", "conversation-message", "generate-group-summary"}


class RoomEngine:
    def __init__(
        self,
        sink: EventSink,
        llm: Optional[CompletionClient] = None,
        scheduler: Optional[Scheduler] = None,
        session_store: Optional[SessionStore] = None,
        archive: Optional[Any] = None,
        voice: Optional[VoiceRoomClient] = None,
        bots_enabled: Optional[bool] = None,
        reply_delay: Optional[float] = None,
        greeting_delay: Optional[float] = None,
    ):
        self.session_id = uuid.uuid4().hex
        self.started_at = time.time()
        self._sink = sink
        self.scheduler = scheduler or Scheduler()
        self.session_store = session_store or SessionStore()
        self.archive = archive
        self.voice = voice or VoiceRoomClient()
        self.bots_enabled = settings.bots_available if bots_enabled is None else bots_enabled

        self.rooms = RoomStore()
        self.directory = PlayerDirectory()
        self.notifier = Notifier(sink, self.rooms, self.directory)
        self.identity = IdentityRegistry(self.directory, self.rooms)

        llm = llm or GeminiCompletionClient()
        self.orchestrator = ConversationOrchestrator(
            self.rooms, self.directory, self.notifier, llm, self.scheduler,
            reply_delay=settings.reply_delay_seconds if reply_delay is None else reply_delay,
            greeting_delay=settings.greeting_delay_seconds if greeting_delay is None else greeting_delay,
        )
        self.pipeline = SummaryPipeline(
            self.rooms, self.directory, self.notifier, llm, archive=archive,
            summary_max_tokens=settings.summary_max_tokens,
            group_max_tokens=settings.group_summary_max_tokens,
        )
        self.barrier = CompletionBarrier(
            self.rooms, self.directory, self.notifier, self.scheduler, self.pipeline
        )
        self.bots = BotSupervisor(
            self.rooms, self.directory, self.orchestrator, self.barrier, self.scheduler
        )
        self.admission = AdmissionController(
            self.rooms, self.directory, self.notifier, self.barrier, self.pipeline, self.bots,
            bots_enabled=self.bots_enabled,
            on_game_started=self._on_game_started,
            on_room_closed=self._on_room_closed,
        )

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def start(self) -> None:
        await self.session_store.connect()
        logger.info("Room engine started (session %s, bots %s)",
                    self.session_id, "on" if self.bots_enabled else "off")

    async def stop(self) -> None:
        self.bots.stop()
        await self.scheduler.cancel_all()
        await self.session_store.close()
        logger.info("Room engine stopped")

    async def reset(self) -> None:
        """Tell every client the server is resetting, then drop all state after a short grace period."""
        await self.notifier.to_everyone(
            ServerReset(message="Server is resetting. Please refresh the page.")
        )
        self.scheduler.spawn(self._clear_after(RESET_GRACE_SECONDS), name="server-reset")

    async def _clear_after(self, delay: float) -> None:
        await self.scheduler.sleep(delay)
        await self.clear()

    async def clear(self) -> None:
        self.bots.stop()
        rooms = len(self.rooms)
        players = len(self.directory)
        for room in self.rooms.all():
            self.barrier.forget(room.id)
            self.pipeline.forget(room.id)
        self.rooms.clear()
        self.directory.clear()
        await self._sink.close_all()
        await self._best_effort(self.session_store.clear(), "clear session store")
        logger.warning("Server state reset: dropped %d room(s) and %d player(s)", rooms, players)

    # ── Connections ───────────────────────────────────────────────────────────

    async def connect(self, connection_id: str, window_identity: str) -> Player:
        resolution = self.identity.resolve(window_identity, connection_id)
        player = resolution.player

        if resolution.retired and resolution.vacated_room:
            await self.admission.vacated(
                resolution.vacated_room, resolution.retired, "reconnected", resolution.room_deleted
            )
            await self._mirror_room(resolution.vacated_room.id)

        if self.session_store.enabled:
            try:
                if not player.durable_id:
                    player.durable_id = await self.session_store.durable_id_for(window_identity)
                await self.session_store.map_connection(connection_id, player.durable_id)
            except Exception:
                logger.warning("Session store unavailable for %s", connection_id, exc_info=True)

        await self.notifier.to_connection(
            connection_id,
            ServerSession(session_id=self.session_id, bots_available=self.bots_enabled),
        )
        if player.in_lobby:
            # Reconnect of a named player: restore the lobby view
            await self.notifier.to_connection(
                connection_id,
                LobbyJoined(
                    player_id=player.id,
                    name=player.name,
                    rooms=[r.to_summary() for r in self.rooms.all()],
                ),
            )
        if resolution.retired:
            await self.notifier.room_list()
            await self.notifier.player_list()
        return player

    async def disconnect(self, connection_id: str) -> None:
        current = self.directory.get(connection_id)
        room_id = current.room_id if current else None
        player = await self.admission.disconnect(connection_id)
        if player is None:
            # Already retired by a newer connection for the same window
            return
        if room_id:
            await self._mirror_room(room_id)
        await self._best_effort(
            self.session_store.mark_disconnected(connection_id, player.durable_id),
            "mark disconnected",
        )

    # ── Commands ──────────────────────────────────────────────────────────────

    async def handle(self, connection_id: str, frame: Dict[str, Any]) -> None:
        try:
            command = parse_command(frame)
        except ValidationError as exc:
            await self.notifier.to_connection(
                connection_id,
                ErrorEvent(
                    type="command-error",
                    code="INVALID_COMMAND",
                    message=f"Invalid '{frame.get('type', '')}' command: {exc.errors()[0]['msg']}",
                ),
            )
            return

        if command.type in _BACKGROUND_COMMANDS:
            self.scheduler.spawn(
                self._run(connection_id, command), name=f"{command.type}-{connection_id}"
            )
        else:
            await self._run(connection_id, command)

    async def _run(self, connection_id: str, command) -> None:
        try:
            await self._dispatch(connection_id, command)
        except AdmissionError as exc:
            logger.info("%s rejected for %s: %s", command.type, connection_id, exc.message)
            await self.notifier.to_connection(
                connection_id,
                ErrorEvent(
                    type=ERROR_TYPE_FOR_COMMAND.get(command.type, "command-error"),
                    code=exc.code,
                    message=exc.message,
                ),
            )
        except Exception:
            logger.exception("Unhandled error in %s for %s", command.type, connection_id)
            await self.notifier.to_connection(
                connection_id,
                ErrorEvent(type="command-error", code="SERVER_ERROR", message="Internal server error"),
            )

    async def _dispatch(self, connection_id: str, command) -> None:
        msg_type = command.type

        if msg_type == "ping":
            await self.notifier.to_connection(connection_id, Pong())

        elif msg_type == "join-lobby":
            player = await self.admission.join_lobby(connection_id, command.name)
            await self._save_player(player)

        elif msg_type == "create-room":
            room = await self.admission.create_room(connection_id, command.name, command.max_players)
            await self._mirror_room(room.id)

        elif msg_type == "join-room":
            await self.admission.join_room(connection_id, command.room_id)
            await self._mirror_room(command.room_id)

        elif msg_type == "leave-room":
            current = self.directory.get(connection_id)
            room_id = command.room_id or (current.room_id if current else None)
            await self.admission.leave_room(connection_id, command.room_id)
            if room_id:
                await self._mirror_room(room_id)

        elif msg_type == "start-game":
            await self.admission.start_game(connection_id, command.room_id)
            await self._mirror_room(command.room_id)

        elif msg_type == "add-bot":
            await self.admission.add_bot(connection_id, command.room_id)
            await self._mirror_room(command.room_id)

        elif msg_type == "remove-bot":
            await self.admission.remove_bot(connection_id, command.room_id, command.bot_id)
            await self._mirror_room(command.room_id)

        elif msg_type == "start-conversation":
            await self.orchestrator.start_conversation(connection_id, command.room_id)

        elif msg_type == "conversation-message":
            await self.orchestrator.send_message(connection_id, command.room_id, command.text)

        elif msg_type == "finish-conversation":
            player, room = self.orchestrator.seat(connection_id, command.room_id)
            await self.barrier.mark_finished(room.id, player.name)
            await self._mirror_room(room.id)

        elif msg_type == "generate-group-summary":
            await self._group_summary(connection_id, command.room_id)

        elif msg_type == "get-room-state":
            room = self.rooms.get(command.room_id)
            if room is None:
                raise RoomNotFound("Room not found")
            await self.notifier.to_connection(
                connection_id,
                RoomStateUpdate(
                    room_id=room.id, status=room.status.value, finished_players=list(room.finished)
                ),
            )

    async def _group_summary(self, connection_id: str, room_id: str) -> None:
        player = self.directory.get(connection_id)
        if not player or not player.in_lobby:
            raise NotInLobby("You must join the lobby first. Please refresh the page.")
        summary = await self.pipeline.generate_group_summary(room_id)
        room = self.rooms.get(room_id)
        if room is not None:
            await self.notifier.to_room(room, GroupSummaryGenerated(summary=summary.to_public()))

    # ── Hooks ─────────────────────────────────────────────────────────────────

    async def _on_game_started(self, room: Room) -> None:
        if self.archive is not None:
            room.session_id = await self.archive.create_game_session(room)
            logger.info("[%s] Archive session %s opened", room.id, room.session_id)

    async def _on_room_closed(self, room: Room) -> None:
        await self._best_effort(self.session_store.delete_room(room.id), "delete mirrored room")
        if room.voice_room_name and self.voice.configured:
            await self.voice.delete(room.voice_room_name)
        if self.archive is not None and room.session_id and room.group_summary is None:
            await self._best_effort(
                self.archive.end_game_session(room.session_id, "abandoned"), "close archive session"
            )

    # ── Durable mirror ────────────────────────────────────────────────────────

    async def _best_effort(self, coro, what: str) -> None:
        try:
            await coro
        except Exception:
            logger.warning("Could not %s", what, exc_info=True)

    async def _mirror_room(self, room_id: str) -> None:
        if not self.session_store.enabled:
            return
        room = self.rooms.get(room_id)
        if room is None:
            await self._best_effort(self.session_store.delete_room(room_id), "delete mirrored room")
        else:
            await self._best_effort(self.session_store.save_room(room), "mirror room")

    async def _save_player(self, player: Player) -> None:
        if not self.session_store.enabled or not player.durable_id:
            return
        data = player.model_dump(mode="json")
        data["socketId"] = player.id
        await self._best_effort(
            self.session_store.save_player(player.durable_id, data), "save player"
        )

    # ── Queries for the HTTP shim ─────────────────────────────────────────────

    def check_name(self, name: str) -> Dict[str, Any]:
        name = clean_name(name)
        if len(name) < MIN_NAME_LENGTH:
            return {"available": False, "message": f"Name must be at least {MIN_NAME_LENGTH} characters"}
        if self.directory.by_name(name) is not None:
            return {"available": False, "message": "This name is already taken"}
        return {"available": True, "message": "Name is available"}

    def check_room_name(self, name: str) -> Dict[str, Any]:
        name = clean_name(name)
        if len(name) < MIN_NAME_LENGTH:
            return {"available": False, "message": f"Room name must be at least {MIN_NAME_LENGTH} characters"}
        if self.rooms.find_by_name(name) is not None:
            return {"available": False, "message": "A room with this name already exists"}
        return {"available": True, "message": "Room name is available"}

    def server_config(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "botsAvailable": self.bots_enabled,
            "voiceAvailable": self.voice.configured,
            "minPlayers": MIN_CAPACITY,
        }

    def stats(self) -> Dict[str, Any]:
        players = list(self.directory)
        return {
            "rooms": len(self.rooms),
            "playingRooms": sum(1 for r in self.rooms.all() if r.status == RoomStatus.PLAYING),
            "players": sum(1 for p in players if p.in_lobby and not p.is_bot),
            "connections": sum(1 for p in players if not p.is_bot),
            "bots": sum(1 for p in players if p.is_bot),
            "backgroundTasks": self.scheduler.pending,
            "uptimeSeconds": int(time.time() - self.started_at),
        }

    def debug_rooms(self) -> List[Dict[str, Any]]:
        rooms = []
        for room in self.rooms.all():
            view = self.notifier.room_view(room)
            view["conversationTurns"] = {
                name: len(log) for name, log in room.conversation_logs.items()
            }
            view["summariesStarted"] = room.summaries_started
            view["hasGroupSummary"] = room.group_summary is not None
            rooms.append(view)
        return rooms

    # ── Voice rooms ───────────────────────────────────────────────────────────

    async def open_voice_room(self, room_id: str) -> VoiceRoom:
        room = self.rooms.get(room_id)
        if room is None:
            raise RoomNotFound("Room not found")
        if room.voice_room_name and room.voice_room_url:
            return VoiceRoom(name=room.voice_room_name, url=room.voice_room_url)
        voice_room = await self.voice.create(room.id, max(len(room.members), MIN_CAPACITY))
        room.voice_room_name = voice_room.name
        room.voice_room_url = voice_room.url
        await self.notifier.room_list()
        await self._mirror_room(room.id)
        return voice_room

    async def close_voice_room(self, name: str) -> bool:
        for room in self.rooms.all():
            if room.voice_room_name == name:
                room.voice_room_name = None
                room.voice_room_url = None
        return await self.voice.delete(name)

    async def archive_voice_transcripts(self, name: str) -> Dict[str, Any]:
        transcripts = await self.voice.fetch_transcripts(name)
        room = next((r for r in self.rooms.all() if r.voice_room_name == name), None)
        saved = 0
        if self.archive is not None and room is not None and room.session_id:
            try:
                saved = await self.archive.save_transcripts(room.session_id, transcripts)
            except Exception:
                logger.warning("[%s] Could not archive transcripts", room.id, exc_info=True)
        return {
            "roomName": name,
            "transcripts": [t.model_dump(by_alias=True) for t in transcripts],
            "archived": saved,
        }
