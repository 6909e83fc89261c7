"""
Completion Barrier — decides when a room's summaries run.

mark_finished is idempotent per (room, player name). The append, the count
check and the claim of the fan-in all happen under one per-room lock, and the
claim is recorded on the room (``summaries_started``), so the summary pipeline
is spawned exactly once even when the last two finish signals land together.
"""
import asyncio
import logging
from typing import Dict

from models.events import PlayerFinishedConversation
from models.room import Room, RoomStatus
from services.notifier import Notifier
from services.room_store import PlayerDirectory, RoomStore
from services.scheduler import Scheduler

logger = logging.getLogger(__name__)


class CompletionBarrier:
    def __init__(
        self,
        rooms: RoomStore,
        directory: PlayerDirectory,
        notifier: Notifier,
        scheduler: Scheduler,
        pipeline,
    ):
        self._rooms = rooms
        self._directory = directory
        self._notifier = notifier
        self._scheduler = scheduler
        self._pipeline = pipeline
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock(self, room_id: str) -> asyncio.Lock:
        return self._locks.setdefault(room_id, asyncio.Lock())

    def _member_names(self, room: Room) -> set:
        return {
            self._directory.get(pid).name
            for pid in room.members
            if pid in self._directory
        }

    async def mark_finished(self, room_id: str, player_name: str) -> bool:
        """
        Record that a player finished their conversation.
        Returns True only for a new addition; repeats and non-members are no-ops.
        """
        async with self._lock(room_id):
            room = self._rooms.get(room_id)
            if not room or room.status != RoomStatus.PLAYING:
                logger.info("[%s] Ignoring finish from %s: room not playing", room_id, player_name)
                return False
            if player_name in room.finished:
                return False
            if player_name not in self._member_names(room):
                logger.info("[%s] Ignoring finish from non-member %s", room_id, player_name)
                return False

            room.finished.append(player_name)
            total = len(room.members)
            logger.info("[%s] %s finished (%d/%d)", room_id, player_name, len(room.finished), total)
            await self._notifier.to_room(
                room,
                PlayerFinishedConversation(
                    room_id=room_id,
                    player_name=player_name,
                    finished_count=len(room.finished),
                    total_players=total,
                ),
            )
            self._claim_fan_in(room)
            return True

    async def reevaluate(self, room_id: str) -> None:
        """Re-check the barrier after membership shrank (a member left mid-game)."""
        async with self._lock(room_id):
            room = self._rooms.get(room_id)
            if room and room.status == RoomStatus.PLAYING:
                self._claim_fan_in(room)

    def _claim_fan_in(self, room: Room) -> None:
        # Caller holds the room lock.
        if room.summaries_started or not room.members:
            return
        if not self._member_names(room).issubset(room.finished):
            return
        room.summaries_started = True
        logger.info("[%s] All players finished; generating summaries", room.id)
        self._scheduler.spawn(
            self._pipeline.generate_summaries_for_all_players(room.id),
            name=f"summaries-{room.id}",
        )

    def forget(self, room_id: str) -> None:
        self._locks.pop(room_id, None)
