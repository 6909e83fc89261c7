"""
Summary Pipeline — runs once a room's completion barrier fires.

Stage 1: one individual summary per player with a non-empty log, appended to
         that player's log as a `summary` turn and delivered to their live
         connection (or the whole room when they are not connected).
Stage 2: one group summary built from every participant's word count and
         individual summary, broadcast to the room.

Both stages fall back to deterministic text on provider failure. The group
summary is cached on the room under a per-room lock, so it is generated at
most once no matter how many times it is requested.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from agents.llm import CompletionClient, CompletionError
from models.errors import IncompleteConversations, RoomNotFound
from models.events import ConversationSummary, GroupSummaryGenerated
from models.room import (
    AI_PERSONA, SUMMARY_SPEAKER, GroupSummary, Room, Turn, TurnOrigin, TurnRole,
)
from services.notifier import Notifier
from services.room_store import PlayerDirectory, RoomStore

logger = logging.getLogger(__name__)

SUMMARY_SYSTEM_PROMPT = """Summarize the conversation, show the topics mentioned and create a story in 200 words, about the story described by the participant.

Your task is to:
- Identify the main topics and themes discussed in the conversation
- Extract the key experiences, skills, or aspirations the person mentioned
- Create a compelling narrative story (exactly 200 words) that captures their journey and desires
- Write in an engaging, storytelling style that brings their vision to life
- Focus on their potential transformation and what "feeling truly alive" means to them

Format your response as:
**Topics Discussed:** [List main topics]

**Your Story:**
[Write exactly 200 words telling their story in an engaging narrative format]"""

GROUP_SUMMARY_SYSTEM_PROMPT = """Create a summary of the history analyzing the following elements:

- How many words wrote each participant
- What is the final result that you identify for each participant
- Compare what are the interests of each participant
- Integrate a common goal that include the interests of each participant

Format your response as:
# Group Analysis Summary

## Word Count Analysis
[Analyze how many words each participant contributed]

## Individual Results
[For each participant, identify their final result/outcome]

## Interest Comparison
[Compare and contrast the interests of all participants]

## Common Goal Integration
[Identify and articulate a unified goal that encompasses everyone's interests]

## Conclusion
[Provide insights about the group's collective journey]"""

FALLBACK_SUMMARY = (
    "**Topics Discussed:** Personal growth, life experiences, aspirations\n\n"
    "**Your Story:**\n"
    "Your conversation revealed a thoughtful exploration of what makes life meaningful. "
    "Through our dialogue, themes of personal reinvention and the search for experiences "
    "that bring vitality emerged. Your reflections touched on the importance of stepping "
    "outside comfort zones and embracing new challenges. The discussion highlighted your "
    "desire for growth and transformation, suggesting that feeling truly alive comes from "
    "pursuing authentic experiences that align with your values. Your journey represents "
    "the universal human quest for purpose and the courage to evolve. Whether through "
    "learning new skills, exploring different perspectives, or connecting more deeply with "
    "others, your path forward is illuminated by the insights shared. This conversation "
    "marks a moment of self-discovery, where possibilities become clearer and the vision of "
    "a more vibrant life takes shape. Your story is one of potential waiting to unfold, of "
    "dreams ready to be pursued, and of a spirit eager to embrace what lies ahead."
)

NO_SUMMARY = "No summary available"


def fallback_group_text(names: List[str]) -> str:
    """Group analysis built only from participant names."""
    return f"""# Group Analysis Summary

## Word Count Analysis
This session included {len(names)} participants: {', '.join(names)}. Each participant contributed thoughtfully to exploring what would make them feel truly alive again.

## Individual Results
Each participant engaged in meaningful self-reflection about personal growth and transformation. Through guided conversation, they explored their desires for new experiences and skills that could bring vitality to their lives.

## Interest Comparison
Common themes emerged around personal growth, stepping outside comfort zones, and pursuing authentic experiences. While each participant's specific interests were unique, all shared a desire for meaningful change and personal development.

## Common Goal Integration
The unified goal for this group centers on **embracing transformative experiences that align with personal values and bring genuine fulfillment**. This encompasses everyone's interest in growth, authenticity, and living more vibrantly.

## Conclusion
This group represents a collective journey toward personal reinvention, with each member supporting the others' quest for a more alive and meaningful existence."""


def word_count(log: List[Turn]) -> int:
    """Words the participant wrote (user turns only)."""
    return sum(len(t.text.split()) for t in log if t.role == TurnRole.USER)


def latest_summary(log: List[Turn]) -> Optional[str]:
    for turn in reversed(log):
        if turn.role == TurnRole.SUMMARY:
            return turn.text
    return None


def conversation_text(log: List[Turn]) -> str:
    lines = []
    for t in log:
        if t.role == TurnRole.USER:
            lines.append(f"Participant: {t.text}")
        elif t.role == TurnRole.ASSISTANT:
            lines.append(f"{AI_PERSONA}: {t.text}")
    return "\n\n".join(lines)


class SummaryPipeline:
    def __init__(
        self,
        rooms: RoomStore,
        directory: PlayerDirectory,
        notifier: Notifier,
        llm: CompletionClient,
        archive: Optional[Any] = None,
        summary_max_tokens: int = 400,
        group_max_tokens: int = 800,
    ):
        self._rooms = rooms
        self._directory = directory
        self._notifier = notifier
        self._llm = llm
        self._archive = archive
        self.summary_max_tokens = summary_max_tokens
        self.group_max_tokens = group_max_tokens
        self._group_locks: Dict[str, asyncio.Lock] = {}
        # Set once every individual summary of the current game has been written
        self._stage_one: Dict[str, asyncio.Event] = {}

    def all_finished(self, room: Room) -> bool:
        names = {
            self._directory.get(pid).name
            for pid in room.members
            if pid in self._directory
        }
        return bool(names) and names.issubset(room.finished)

    # ── Fan-in entry point ────────────────────────────────────────────────────

    async def generate_summaries_for_all_players(self, room_id: str) -> None:
        room = self._rooms.get(room_id)
        if not room:
            logger.warning("[%s] Room not found for summary generation", room_id)
            return

        names = [name for name, log in room.conversation_logs.items() if log]
        logger.info("[%s] Generating summaries for %d player(s)", room_id, len(names))

        try:
            for name in names:
                try:
                    await self.generate_player_summary(room, name)
                except Exception:
                    logger.exception("[%s] Summary for %s failed", room_id, name)
        finally:
            self._stage_one_done(room_id).set()

        if self._rooms.get(room_id) is not room:
            return
        try:
            summary = await self.generate_group_summary(room_id)
        except (IncompleteConversations, RoomNotFound) as exc:
            logger.info("[%s] Skipping group summary: %s", room_id, exc.message)
            return
        await self._notifier.to_room(room, GroupSummaryGenerated(summary=summary.to_public()))

    # ── Stage 1 ───────────────────────────────────────────────────────────────

    async def generate_player_summary(self, room: Room, player_name: str) -> Optional[Turn]:
        log = room.conversation_logs.get(player_name) or []
        if not log:
            logger.info("[%s] No conversation for %s, skipping summary", room.id, player_name)
            return None

        try:
            text = await self._llm.complete(
                SUMMARY_SYSTEM_PROMPT,
                [{
                    "role": "user",
                    "content": f"Please summarize this conversation:\n\n{conversation_text(log)}",
                }],
                max_tokens=self.summary_max_tokens,
            )
            origin = TurnOrigin.AI
        except CompletionError as exc:
            logger.warning("[%s] Summary for %s fell back: %s", room.id, player_name, exc)
            text, origin = FALLBACK_SUMMARY, TurnOrigin.SYSTEM_FALLBACK

        if self._rooms.get(room.id) is not room:
            return None

        turn = Turn(text=text, speaker=SUMMARY_SPEAKER, role=TurnRole.SUMMARY, origin=origin)
        room.log_for(player_name).append(turn)
        await self._notifier.to_player(
            room,
            player_name,
            ConversationSummary(room_id=room.id, player_name=player_name, turn=turn.to_public(room.id)),
        )
        await self._archive_analysis(room, "individual_summary", {
            "player_name": player_name,
            "text": text,
            "fallback": origin == TurnOrigin.SYSTEM_FALLBACK,
        })
        return turn

    # ── Stage 2 ───────────────────────────────────────────────────────────────

    async def generate_group_summary(self, room_id: str) -> GroupSummary:
        """
        Build (or return the cached) group summary for a room.
        Raises RoomNotFound, or IncompleteConversations unless every member finished.
        """
        room = self._rooms.get(room_id)
        if not room:
            raise RoomNotFound("Room not found")
        if not self.all_finished(room):
            raise IncompleteConversations("Not all players have finished their conversations")
        if room.summaries_started:
            # A request racing the fan-in waits for the individual summaries
            await self._stage_one_done(room_id).wait()
            if self._rooms.get(room_id) is not room:
                raise RoomNotFound("Room not found")

        lock = self._group_locks.setdefault(room_id, asyncio.Lock())
        async with lock:
            if room.group_summary is not None:
                return room.group_summary

            participants = self._participants(room)
            names = [p["name"] for p in participants]
            prompt = f"Here are the individual summaries from {len(participants)} participants:\n\n" + "\n\n".join(
                f"**{p['name']}** ({p['word_count']} words):\n{p['summary']}" for p in participants
            )
            try:
                text = await self._llm.complete(
                    GROUP_SUMMARY_SYSTEM_PROMPT,
                    [{"role": "user", "content": prompt}],
                    max_tokens=self.group_max_tokens,
                )
                is_fallback = False
            except CompletionError as exc:
                logger.warning("[%s] Group summary fell back: %s", room_id, exc)
                text, is_fallback = fallback_group_text(names), True

            summary = GroupSummary(
                room_id=room_id,
                participant_count=len(participants),
                text=text,
                is_fallback=is_fallback,
            )
            room.group_summary = summary
            logger.info("[%s] Group summary ready (%d participants)", room_id, len(participants))

        await self._archive_analysis(room, "group_summary", {
            "participants": participants,
            "text": summary.text,
            "fallback": summary.is_fallback,
        })
        if self._archive and room.session_id:
            try:
                await self._archive.end_game_session(room.session_id, "completed")
            except Exception:
                logger.warning("[%s] Could not close archive session", room_id, exc_info=True)
        return summary

    def _participants(self, room: Room) -> List[Dict[str, Any]]:
        """Everyone with a log, in log-creation order; members without a log follow."""
        names = list(room.conversation_logs.keys())
        for pid in room.members:
            player = self._directory.get(pid)
            if player and player.name not in names:
                names.append(player.name)
        participants = []
        for name in names:
            log = room.conversation_logs.get(name) or []
            participants.append({
                "name": name,
                "word_count": word_count(log),
                "summary": latest_summary(log) or NO_SUMMARY,
            })
        return participants

    async def _archive_analysis(self, room: Room, analysis_type: str, result: Dict[str, Any]) -> None:
        if not self._archive or not room.session_id:
            return
        try:
            await self._archive.save_analysis(room.session_id, analysis_type, result)
        except Exception:
            logger.warning("[%s] Could not archive %s", room.id, analysis_type, exc_info=True)

    def _stage_one_done(self, room_id: str) -> asyncio.Event:
        return self._stage_one.setdefault(room_id, asyncio.Event())

    def forget(self, room_id: str) -> None:
        self._group_locks.pop(room_id, None)
        stage_one = self._stage_one.pop(room_id, None)
        if stage_one is not None:
            # Release anyone still waiting on a room that is gone
            stage_one.set()
