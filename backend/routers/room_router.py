"""
Lobby HTTP endpoints (thin shims over the RoomEngine and collaborators).

Routes:
  GET    /api/server-config                      — Session id and feature flags
  POST   /api/check-name                         — Is a player name free?
  POST   /api/check-room-name                    — Is a room name free?
  GET    /api/questions                          — Question list (?refresh=true to bypass cache)
  GET    /api/questions/cache                    — Question cache status
  DELETE /api/questions/cache                    — Drop the question cache
  POST   /api/voice/rooms                        — Open a voice room for a game room
  DELETE /api/voice/rooms/{name}                 — Delete a voice room
  POST   /api/voice/rooms/{name}/token           — Meeting token for one participant
  GET    /api/voice/rooms/{name}/transcripts     — Fetch (and archive) transcripts
  POST   /api/voice/rooms/{name}/recording       — Start a cloud recording
  GET    /debug/rooms                            — Full room state
  GET    /admin/stats                            — Counters
  POST   /admin/reset                            — Notify clients, then clear all state
"""
import logging

from fastapi import APIRouter, HTTPException, Request

from models.errors import RoomNotFound
from models.requests import (
    CheckNameRequest, CreateVoiceRoomRequest, VoiceRoomResponse, VoiceTokenRequest,
)
from services.question_source import QuestionSourceError
from services.voice_rooms import VoiceRoomError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["lobby"])
admin_router = APIRouter(tags=["admin"])


def _engine(request: Request):
    return request.app.state.engine


# ── Lobby helpers ─────────────────────────────────────────────────────────────

@router.get("/server-config")
async def server_config(request: Request):
    engine = _engine(request)
    config = engine.server_config()
    config["questionsAvailable"] = request.app.state.questions.configured
    return config


@router.post("/check-name")
async def check_name(body: CheckNameRequest, request: Request):
    return _engine(request).check_name(body.name)


@router.post("/check-room-name")
async def check_room_name(body: CheckNameRequest, request: Request):
    return _engine(request).check_room_name(body.name)


# ── Questions ─────────────────────────────────────────────────────────────────

@router.get("/questions")
async def get_questions(request: Request, refresh: bool = False):
    questions = request.app.state.questions
    try:
        records = await questions.get(force_refresh=refresh)
    except QuestionSourceError as exc:
        logger.warning("[Sheets] %s", exc)
        raise HTTPException(status_code=503, detail=str(exc))
    return {"questions": records, "count": len(records), "cache": questions.cache_status()}


@router.get("/questions/cache")
async def question_cache_status(request: Request):
    return request.app.state.questions.cache_status()


@router.delete("/questions/cache")
async def clear_question_cache(request: Request):
    request.app.state.questions.clear_cache()
    return {"cleared": True}


# ── Voice rooms ───────────────────────────────────────────────────────────────

@router.post("/voice/rooms", response_model=VoiceRoomResponse, status_code=201)
async def create_voice_room(body: CreateVoiceRoomRequest, request: Request):
    try:
        room = await _engine(request).open_voice_room(body.room_id)
    except RoomNotFound as exc:
        raise HTTPException(status_code=404, detail=exc.message)
    except VoiceRoomError as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    return VoiceRoomResponse(name=room.name, url=room.url)


@router.delete("/voice/rooms/{name}")
async def delete_voice_room(name: str, request: Request):
    deleted = await _engine(request).close_voice_room(name)
    return {"deleted": deleted}


@router.post("/voice/rooms/{name}/token")
async def create_voice_token(name: str, body: VoiceTokenRequest, request: Request):
    try:
        token = await _engine(request).voice.create_token(
            name, body.participant_name, body.participant_id
        )
    except VoiceRoomError as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    return {"token": token}


@router.get("/voice/rooms/{name}/transcripts")
async def voice_transcripts(name: str, request: Request):
    try:
        return await _engine(request).archive_voice_transcripts(name)
    except VoiceRoomError as exc:
        raise HTTPException(status_code=502, detail=str(exc))


@router.post("/voice/rooms/{name}/recording")
async def start_voice_recording(name: str, request: Request):
    try:
        await _engine(request).voice.start_recording(name)
    except VoiceRoomError as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    return {"recording": True}


# ── Debug / admin ─────────────────────────────────────────────────────────────

@admin_router.get("/debug/rooms")
async def debug_rooms(request: Request):
    rooms = _engine(request).debug_rooms()
    return {"count": len(rooms), "rooms": rooms}


@admin_router.get("/admin/stats")
async def admin_stats(request: Request):
    return _engine(request).stats()


@admin_router.post("/admin/reset")
async def admin_reset(request: Request):
    await _engine(request).reset()
    logger.warning("Admin reset requested")
    return {"status": "resetting"}
