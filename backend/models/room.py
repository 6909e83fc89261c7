from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from enum import Enum
from datetime import datetime, timezone
import uuid


def _utcnow() -> datetime:
    """Timezone-aware UTC datetime (replaces deprecated datetime.utcnow)."""
    return datetime.now(timezone.utc)


MIN_CAPACITY = 2
MAX_CAPACITY = 8

AI_PERSONA = "Life Coach"
SUMMARY_SPEAKER = "Summary"


class RoomStatus(str, Enum):
    WAITING = "waiting"   # open for joins, bots can be added
    PLAYING = "playing"   # conversations running; no new members


class TurnRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SUMMARY = "summary"


class TurnOrigin(str, Enum):
    HUMAN = "human"
    BOT = "bot"
    AI = "ai"
    SYSTEM_FALLBACK = "system-fallback"


class Turn(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    text: str
    speaker: str            # player name, AI_PERSONA or SUMMARY_SPEAKER
    role: TurnRole
    origin: TurnOrigin
    timestamp: datetime = Field(default_factory=_utcnow)

    def to_public(self, room_id: Optional[str] = None) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "text": self.text,
            "speaker": self.speaker,
            "role": self.role.value,
            "origin": self.origin.value,
            "timestamp": self.timestamp.isoformat(),
        }
        if room_id is not None:
            data["roomId"] = room_id
        return data


class Player(BaseModel):
    id: str                          # live connection id, changes on reconnect
    window_identity: str             # stable across reconnects
    name: str = ""                   # empty until the player joins the lobby
    room_id: Optional[str] = None
    is_bot: bool = False
    durable_id: Optional[str] = None  # id from the durable session store, if any
    joined_at: datetime = Field(default_factory=_utcnow)

    @property
    def in_lobby(self) -> bool:
        return bool(self.name)

    def to_public(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "room": self.room_id,
            "isBot": self.is_bot,
        }


class GroupSummary(BaseModel):
    room_id: str
    participant_count: int
    text: str
    is_fallback: bool = False
    timestamp: datetime = Field(default_factory=_utcnow)

    def to_public(self) -> Dict[str, Any]:
        return {
            "roomId": self.room_id,
            "participantCount": self.participant_count,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
        }


class Room(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    name: str
    capacity: int
    host_id: str
    members: List[str] = []          # player ids in join order
    status: RoomStatus = RoomStatus.WAITING
    conversation_logs: Dict[str, List[Turn]] = {}   # player name → turns
    finished: List[str] = []         # player names, insertion ordered, no duplicates
    summaries_started: bool = False
    group_summary: Optional[GroupSummary] = None
    session_id: Optional[str] = None  # archive session, set on start
    voice_room_name: Optional[str] = None
    voice_room_url: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_full(self) -> bool:
        return len(self.members) >= self.capacity

    @property
    def is_empty(self) -> bool:
        return not self.members

    def log_for(self, player_name: str) -> List[Turn]:
        """Return the conversation log for a player, creating it on first use."""
        return self.conversation_logs.setdefault(player_name, [])

    def to_summary(self) -> Dict[str, Any]:
        """Lobby-list representation (no conversation content)."""
        return {
            "id": self.id,
            "name": self.name,
            "players": list(self.members),
            "maxPlayers": self.capacity,
            "status": self.status.value,
            "hostId": self.host_id,
            "createdAt": self.created_at.isoformat(),
            "voiceRoomUrl": self.voice_room_url,
        }

    def to_public(self, players: Dict[str, Player]) -> Dict[str, Any]:
        """Room state with resolved player names, as sent to room members."""
        data = self.to_summary()
        data["playerNames"] = [
            {
                "id": pid,
                "name": players[pid].name if pid in players else "Unknown",
                "isBot": players[pid].is_bot if pid in players else False,
            }
            for pid in self.members
        ]
        data["finishedPlayers"] = list(self.finished)
        return data
