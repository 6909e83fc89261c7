"""
Wire shapes for the realtime channel.

Inbound commands and outbound events are closed unions discriminated on
``type``. Field names are snake_case in Python and camelCase on the wire.

Client frames look like ``{"type": "join-room", "data": {"roomId": "..."}}``;
``parse_command`` flattens ``data`` into the command before validation.
"""
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class _Wire(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ── Inbound commands (client → server) ────────────────────────────────────────

class PingCommand(_Wire):
    type: Literal["ping"]


class JoinLobbyCommand(_Wire):
    type: Literal["join-lobby"]
    name: str


class CreateRoomCommand(_Wire):
    type: Literal["create-room"]
    name: str
    max_players: int = 4


class JoinRoomCommand(_Wire):
    type: Literal["join-room"]
    room_id: str


class LeaveRoomCommand(_Wire):
    type: Literal["leave-room"]
    room_id: Optional[str] = None


class StartGameCommand(_Wire):
    type: Literal["start-game"]
    room_id: str


class AddBotCommand(_Wire):
    type: Literal["add-bot"]
    room_id: str


class RemoveBotCommand(_Wire):
    type: Literal["remove-bot"]
    room_id: str
    bot_id: str


class StartConversationCommand(_Wire):
    type: Literal["start-conversation"]
    room_id: str


class ConversationMessageCommand(_Wire):
    type: Literal["conversation-message"]
    room_id: str
    text: str


class FinishConversationCommand(_Wire):
    type: Literal["finish-conversation"]
    room_id: str


class GenerateGroupSummaryCommand(_Wire):
    type: Literal["generate-group-summary"]
    room_id: str


class GetRoomStateCommand(_Wire):
    type: Literal["get-room-state"]
    room_id: str


InboundCommand = Annotated[
    Union[
        PingCommand,
        JoinLobbyCommand,
        CreateRoomCommand,
        JoinRoomCommand,
        LeaveRoomCommand,
        StartGameCommand,
        AddBotCommand,
        RemoveBotCommand,
        StartConversationCommand,
        ConversationMessageCommand,
        FinishConversationCommand,
        GenerateGroupSummaryCommand,
        GetRoomStateCommand,
    ],
    Field(discriminator="type"),
]

_command_adapter: TypeAdapter = TypeAdapter(InboundCommand)


def parse_command(frame: Dict[str, Any]) -> InboundCommand:
    """Validate a raw client frame. Raises pydantic.ValidationError on bad input."""
    inner = frame.get("data") if isinstance(frame.get("data"), dict) else {}
    return _command_adapter.validate_python({**inner, "type": frame.get("type")})


# ── Outbound events (server → client) ─────────────────────────────────────────

class _Event(_Wire):
    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ServerSession(_Event):
    type: Literal["server-session"] = "server-session"
    session_id: str
    bots_available: bool


class ServerReset(_Event):
    type: Literal["server-reset"] = "server-reset"
    message: str


class Pong(_Event):
    type: Literal["pong"] = "pong"


class LobbyJoined(_Event):
    type: Literal["lobby-joined"] = "lobby-joined"
    player_id: str
    name: str
    rooms: List[Dict[str, Any]]


class PlayerListUpdated(_Event):
    type: Literal["player-list-updated"] = "player-list-updated"
    players: List[Dict[str, Any]]


class RoomListUpdated(_Event):
    type: Literal["room-list-updated"] = "room-list-updated"
    rooms: List[Dict[str, Any]]


class RoomCreated(_Event):
    type: Literal["room-created"] = "room-created"
    room: Dict[str, Any]


class RoomJoined(_Event):
    type: Literal["room-joined"] = "room-joined"
    room: Dict[str, Any]


class RoomLeft(_Event):
    type: Literal["room-left"] = "room-left"
    room_id: str
    message: str


class PlayerJoinedRoom(_Event):
    type: Literal["player-joined-room"] = "player-joined-room"
    player_id: str
    room: Dict[str, Any]


class PlayerLeftRoom(_Event):
    type: Literal["player-left-room"] = "player-left-room"
    player_id: str
    player_name: str
    room: Dict[str, Any]
    reason: Optional[str] = None   # "disconnected" | "reconnected" | "removed" | None


class GameStarted(_Event):
    type: Literal["game-started"] = "game-started"
    room: Dict[str, Any]


class ConversationMessage(_Event):
    type: Literal["conversation-message"] = "conversation-message"
    room_id: str
    player_name: str
    turn: Dict[str, Any]


class PlayerFinishedConversation(_Event):
    type: Literal["player-finished-conversation"] = "player-finished-conversation"
    room_id: str
    player_name: str
    finished_count: int
    total_players: int


class ConversationSummary(_Event):
    type: Literal["conversation-summary"] = "conversation-summary"
    room_id: str
    player_name: str
    turn: Dict[str, Any]


class GroupSummaryGenerated(_Event):
    type: Literal["group-summary-generated"] = "group-summary-generated"
    summary: Dict[str, Any]


class RoomStateUpdate(_Event):
    type: Literal["room-state-update"] = "room-state-update"
    room_id: str
    status: str
    finished_players: List[str]


class BotAdded(_Event):
    type: Literal["bot-added"] = "bot-added"
    bot: Dict[str, Any]


class BotRemoved(_Event):
    type: Literal["bot-removed"] = "bot-removed"
    bot_id: str


ErrorType = Literal[
    "join-lobby-error",
    "create-room-error",
    "join-room-error",
    "leave-room-error",
    "start-game-error",
    "bot-add-error",
    "bot-remove-error",
    "conversation-error",
    "finish-conversation-error",
    "group-summary-error",
    "room-state-error",
    "command-error",
]


class ErrorEvent(_Event):
    type: ErrorType
    code: str
    message: str


OutboundEvent = Union[
    ServerSession,
    ServerReset,
    Pong,
    LobbyJoined,
    PlayerListUpdated,
    RoomListUpdated,
    RoomCreated,
    RoomJoined,
    RoomLeft,
    PlayerJoinedRoom,
    PlayerLeftRoom,
    GameStarted,
    ConversationMessage,
    PlayerFinishedConversation,
    ConversationSummary,
    GroupSummaryGenerated,
    RoomStateUpdate,
    BotAdded,
    BotRemoved,
    ErrorEvent,
]

# Rejection event type per command, used by the engine's dispatcher.
ERROR_TYPE_FOR_COMMAND: Dict[str, str] = {
    "join-lobby": "join-lobby-error",
    "create-room": "create-room-error",
    "join-room": "join-room-error",
    "leave-room": "leave-room-error",
    "start-game": "start-game-error",
    "add-bot": "bot-add-error",
    "remove-bot": "bot-remove-error",
    "start-conversation": "conversation-error",
    "conversation-message": "conversation-error",
    "finish-conversation": "finish-conversation-error",
    "generate-group-summary": "group-summary-error",
    "get-room-state": "room-state-error",
}
