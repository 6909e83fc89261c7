"""
Named rejections raised by the admission controller and summary pipeline.

Every rejection is reported to the requesting connection only, as a
``<command>-error`` event carrying ``code`` and a readable ``message``.
No state is changed when one of these is raised.
"""


class AdmissionError(Exception):
    """Base class for rejections. ``code`` is the stable machine-readable name."""

    code = "REJECTED"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# ── Validation ────────────────────────────────────────────────────────────────

class InvalidName(AdmissionError):
    code = "INVALID_NAME"


class InvalidCapacity(AdmissionError):
    code = "INVALID_CAPACITY"


# ── Conflict ──────────────────────────────────────────────────────────────────

class NameTaken(AdmissionError):
    code = "NAME_TAKEN"


class RoomFull(AdmissionError):
    code = "ROOM_FULL"


class GameInProgress(AdmissionError):
    code = "GAME_IN_PROGRESS"


class GameNotStarted(AdmissionError):
    code = "GAME_NOT_STARTED"


class IncompleteConversations(AdmissionError):
    code = "INCOMPLETE_CONVERSATIONS"


class BotsDisabled(AdmissionError):
    code = "BOTS_DISABLED"


# ── Not found ─────────────────────────────────────────────────────────────────

class NotInLobby(AdmissionError):
    code = "NOT_IN_LOBBY"


class NotInRoom(AdmissionError):
    code = "NOT_IN_ROOM"


class RoomNotFound(AdmissionError):
    code = "ROOM_NOT_FOUND"


class BotNotFound(AdmissionError):
    code = "BOT_NOT_FOUND"
