"""
Conversation Orchestrator — one private Life Coach conversation per player.

Each playing room keeps a log per player name, created on first turn. A human
turn is appended and echoed, then the full user/assistant transcript is sent
to the completion provider and the reply is appended and delivered to the
originating connection. Bots feed turns through the same path.

Provider failures never stall a conversation: a fixed fallback reply is
appended instead. Every completion result is re-checked against the live
room before it is written, since the room may have been deleted while the
request was in flight.
"""
import logging
from typing import Dict, List, Optional

from agents.llm import CompletionClient, CompletionError
from models.errors import GameNotStarted, NotInLobby, NotInRoom, RoomNotFound
from models.events import ConversationMessage
from models.room import AI_PERSONA, Room, RoomStatus, Turn, TurnOrigin, TurnRole
from services.notifier import Notifier
from services.room_store import PlayerDirectory, RoomStore
from services.scheduler import Scheduler

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000

CONVERSATION_SYSTEM_PROMPT = """You are a wise, empathetic life coach specializing in personal reinvention and transformation. You help people explore deep questions about their lives with thoughtful, probing questions and gentle guidance.

Your role is to:
- Ask thoughtful follow-up questions that help the person explore their feelings and motivations
- Provide gentle insights and reflections
- Help them discover their own answers rather than giving direct advice
- Be supportive and non-judgmental
- Keep responses concise but meaningful (2-3 sentences max)
- Focus on the person's inner wisdom and potential

The current question being explored is: "What new experience or skill would make you feel truly alive again?"

Start the conversation by warmly greeting the person and gently introducing this question for exploration."""

FALLBACK_REPLY = (
    "I'm here to listen and explore this question with you. What thoughts or "
    "feelings come up when you think about what might make you feel truly alive?"
)

FALLBACK_GREETING = (
    "Welcome! I'm here to explore a meaningful question with you: What new "
    "experience or skill would make you feel truly alive again? Take your time "
    "to reflect, and share whatever comes to mind."
)


def transcript(log: List[Turn]) -> List[Dict[str, str]]:
    """User/assistant turns in append order, in completion-request shape."""
    return [
        {"role": t.role.value, "content": t.text}
        for t in log
        if t.role in (TurnRole.USER, TurnRole.ASSISTANT)
    ]


class ConversationOrchestrator:
    def __init__(
        self,
        rooms: RoomStore,
        directory: PlayerDirectory,
        notifier: Notifier,
        llm: CompletionClient,
        scheduler: Scheduler,
        reply_delay: float = 1.0,
        greeting_delay: float = 1.5,
    ):
        self._rooms = rooms
        self._directory = directory
        self._notifier = notifier
        self._llm = llm
        self._scheduler = scheduler
        self.reply_delay = reply_delay
        self.greeting_delay = greeting_delay

    # ── Shared core ───────────────────────────────────────────────────────────

    def append_user_turn(self, room: Room, player_name: str, text: str, origin: TurnOrigin) -> Turn:
        turn = Turn(text=text, speaker=player_name, role=TurnRole.USER, origin=origin)
        room.log_for(player_name).append(turn)
        return turn

    async def request_reply(
        self, room: Room, player_name: str, fallback: str = FALLBACK_REPLY
    ) -> Optional[Turn]:
        """
        Ask the provider for the next assistant turn and append it.
        Returns None if the room disappeared while waiting.
        """
        messages = transcript(room.log_for(player_name))
        try:
            text = await self._llm.complete(CONVERSATION_SYSTEM_PROMPT, messages)
            origin = TurnOrigin.AI
        except CompletionError as exc:
            logger.warning("[%s] Completion failed for %s, using fallback: %s", room.id, player_name, exc)
            text, origin = fallback, TurnOrigin.SYSTEM_FALLBACK

        if self._rooms.get(room.id) is not room:
            logger.info("[%s] Room gone before reply for %s arrived; dropping it", room.id, player_name)
            return None

        turn = Turn(text=text, speaker=AI_PERSONA, role=TurnRole.ASSISTANT, origin=origin)
        room.log_for(player_name).append(turn)
        return turn

    # ── Human entry points ────────────────────────────────────────────────────

    def seat(self, connection_id: str, room_id: str):
        """(player, room) for a connection seated in a playing room, or raise."""
        player = self._directory.get(connection_id)
        if not player or not player.in_lobby:
            raise NotInLobby("You must join the lobby first. Please refresh the page.")
        room = self._rooms.get(room_id)
        if not room:
            raise RoomNotFound("Room does not exist")
        if connection_id not in room.members:
            raise NotInRoom("You are not a member of this room")
        if room.status != RoomStatus.PLAYING:
            raise GameNotStarted("The game has not started yet")
        return player, room

    async def send_message(self, connection_id: str, room_id: str, text: str) -> Optional[Turn]:
        player, room = self.seat(connection_id, room_id)
        text = text.strip()[:MAX_MESSAGE_LENGTH]
        if not text:
            return None

        user_turn = self.append_user_turn(room, player.name, text, TurnOrigin.HUMAN)
        await self._deliver(connection_id, room, player.name, user_turn)

        reply = await self.request_reply(room, player.name)
        if reply is None:
            return None
        await self._scheduler.sleep(self.reply_delay)
        await self._deliver(connection_id, room, player.name, reply)
        return reply

    async def start_conversation(self, connection_id: str, room_id: str) -> None:
        """Open with a coach greeting, or replay the log if the conversation already began."""
        player, room = self.seat(connection_id, room_id)
        log = room.log_for(player.name)

        if log:
            for turn in list(log):
                await self._deliver(connection_id, room, player.name, turn)
            return

        greeting = await self.request_reply(room, player.name, fallback=FALLBACK_GREETING)
        if greeting is None:
            return
        await self._scheduler.sleep(self.greeting_delay)
        await self._deliver(connection_id, room, player.name, greeting)

    async def _deliver(self, connection_id: str, room: Room, player_name: str, turn: Turn) -> None:
        await self._notifier.to_connection(
            connection_id,
            ConversationMessage(
                room_id=room.id, player_name=player_name, turn=turn.to_public(room.id)
            ),
        )

    # ── Bot entry point ───────────────────────────────────────────────────────

    async def bot_turn(self, room: Room, bot_name: str, text: str) -> Optional[Turn]:
        """Append a simulated user turn for a bot and fetch the coach's reply."""
        if self._rooms.get(room.id) is not room:
            return None
        self.append_user_turn(room, bot_name, text, TurnOrigin.BOT)
        return await self.request_reply(room, bot_name)
