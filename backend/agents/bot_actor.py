"""
Bot Actor — a simulated participant driven by timers instead of user input.

One actor task per (room, bot) per game start:
  think → opening turn + coach reply → think → follow-up + coach reply
  → short pause → mark itself finished.

The actor shares the human data path (the orchestrator appends its turns to
its own log). Provider problems are absorbed so the barrier is never starved:
whatever happens mid-script, a bot still seated in its playing room always
reaches mark_finished.
"""
import asyncio
import logging
import random
import time
from typing import Dict, Iterable, Tuple

from agents.completion_barrier import CompletionBarrier
from agents.conversation import ConversationOrchestrator
from models.room import Player, RoomStatus
from services.room_store import PlayerDirectory, RoomStore
from services.scheduler import Scheduler

logger = logging.getLogger(__name__)

BOT_NAMES = [
    "BotAlex", "BotSamantha", "BotJorge", "BotEmily", "BotFede",
    "BotTaylor", "BotCasey", "BotMorgan", "BotAvery", "BotRiley",
]

BOT_OPENINGS = [
    "I think learning a new language would make me feel alive. It opens up new cultures and perspectives.",
    "I've always wanted to try rock climbing. The physical challenge and mental focus sound exhilarating.",
    "Teaching others what I've learned would be fulfilling. Sharing knowledge creates meaningful connections.",
    "Traveling to places I've never been excites me. New experiences help us grow.",
    "I'd love to learn an instrument. Music has a way of expressing what words cannot.",
]

BOT_FOLLOW_UPS = [
    "It's about pushing boundaries and discovering what I'm truly capable of.",
    "I want to feel that sense of accomplishment that comes from mastering something new.",
    "Connection with others is what makes life meaningful to me.",
    "I think it's time to stop planning and start doing.",
    "I've been in my comfort zone too long. I need a challenge.",
]

# Think-time ranges in seconds
OPENING_DELAY = (3.0, 5.0)
FOLLOW_UP_DELAY = (5.0, 8.0)
FINISH_DELAY = 2.0


def pick_bot_name(taken: Iterable[str]) -> str:
    """First pool name not in use (case-insensitive), else the lowest free BotN."""
    used = {name.lower() for name in taken}
    for name in BOT_NAMES:
        if name.lower() not in used:
            return name
    n = 1
    while f"bot{n}" in used:
        n += 1
    return f"Bot{n}"


def make_bot(name: str, room_id: str) -> Player:
    bot_id = f"bot_{int(time.time() * 1000)}_{random.randint(0, 1_000_000):x}"
    return Player(
        id=bot_id,
        window_identity=f"bot_session_{bot_id}",
        name=name,
        room_id=room_id,
        is_bot=True,
    )


class BotActor:
    def __init__(
        self,
        room_id: str,
        bot: Player,
        rooms: RoomStore,
        directory: PlayerDirectory,
        orchestrator: ConversationOrchestrator,
        barrier: CompletionBarrier,
        scheduler: Scheduler,
    ):
        self.room_id = room_id
        self.bot = bot
        self._rooms = rooms
        self._directory = directory
        self._orchestrator = orchestrator
        self._barrier = barrier
        self._scheduler = scheduler

    def _seated(self) -> bool:
        room = self._rooms.get(self.room_id)
        return bool(
            room
            and room.status == RoomStatus.PLAYING
            and self.bot.id in room.members
            and self._directory.get(self.bot.id) is self.bot
        )

    async def _say(self, text: str) -> None:
        room = self._rooms.get(self.room_id)
        try:
            await self._orchestrator.bot_turn(room, self.bot.name, text)
        except Exception:
            logger.warning(
                "[%s] Bot %s turn failed; continuing", self.room_id, self.bot.name, exc_info=True
            )

    async def run(self) -> None:
        logger.info("[%s] Bot %s starting conversation", self.room_id, self.bot.name)

        await self._scheduler.sleep(self._scheduler.jitter(*OPENING_DELAY))
        if not self._seated():
            return
        await self._say(self._scheduler.choice(BOT_OPENINGS))

        await self._scheduler.sleep(self._scheduler.jitter(*FOLLOW_UP_DELAY))
        if not self._seated():
            return
        await self._say(self._scheduler.choice(BOT_FOLLOW_UPS))

        await self._scheduler.sleep(FINISH_DELAY)
        if not self._seated():
            return
        await self._barrier.mark_finished(self.room_id, self.bot.name)
        logger.info("[%s] Bot %s finished", self.room_id, self.bot.name)


class BotSupervisor:
    """Owns the running actors, at most one per (room, bot)."""

    def __init__(
        self,
        rooms: RoomStore,
        directory: PlayerDirectory,
        orchestrator: ConversationOrchestrator,
        barrier: CompletionBarrier,
        scheduler: Scheduler,
    ):
        self._rooms = rooms
        self._directory = directory
        self._orchestrator = orchestrator
        self._barrier = barrier
        self._scheduler = scheduler
        self._actors: Dict[Tuple[str, str], asyncio.Task] = {}

    def spawn(self, room_id: str, bot: Player) -> bool:
        key = (room_id, bot.id)
        task = self._actors.get(key)
        if task and not task.done():
            return False
        actor = BotActor(
            room_id, bot, self._rooms, self._directory,
            self._orchestrator, self._barrier, self._scheduler,
        )
        task = self._scheduler.spawn(actor.run(), name=f"bot-{room_id}-{bot.name}")
        self._actors[key] = task
        task.add_done_callback(lambda _t, key=key: self._discard(key, _t))
        return True

    def _discard(self, key: Tuple[str, str], task: asyncio.Task) -> None:
        if self._actors.get(key) is task:
            del self._actors[key]

    def running(self, room_id: str) -> int:
        return sum(1 for (rid, _), t in self._actors.items() if rid == room_id and not t.done())

    def cancel(self, room_id: str, bot_id: str) -> None:
        task = self._actors.pop((room_id, bot_id), None)
        if task and not task.done():
            task.cancel()

    def cancel_room(self, room_id: str) -> None:
        for key in [k for k in self._actors if k[0] == room_id]:
            self.cancel(*key)

    def stop(self) -> None:
        for key in list(self._actors):
            self.cancel(*key)
