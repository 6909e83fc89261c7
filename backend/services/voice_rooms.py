"""
Voice rooms — Daily.co REST client.

A game room can get one Daily room for voice chat. Daily rooms expire after
two hours and have cloud recording plus transcription switched on, so the
transcript can be fetched (and archived) once the session is over.
"""
import logging
import time
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel

from config import settings

logger = logging.getLogger(__name__)

DAILY_API_BASE_URL = "https://api.daily.co/v1"
ROOM_LIFETIME_SECONDS = 2 * 60 * 60


class VoiceRoomError(Exception):
    """Daily is not configured or rejected a request."""


class VoiceRoom(BaseModel):
    name: str
    url: str
    config: Dict[str, Any] = {}


class Transcript(BaseModel):
    participant_name: Optional[str] = None
    participant_id: Optional[str] = None
    text: str
    timestamp: Optional[str] = None
    duration: Optional[float] = None
    confidence: Optional[float] = None

    @classmethod
    def from_daily(cls, entry: Dict[str, Any]) -> "Transcript":
        return cls(
            participant_name=entry.get("user_name") or entry.get("participant_name"),
            participant_id=entry.get("user_id") or entry.get("participant_id"),
            text=entry.get("text") or "",
            timestamp=str(entry["timestamp"]) if entry.get("timestamp") is not None else None,
            duration=entry.get("duration"),
            confidence=entry.get("confidence"),
        )


def _error_detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.reason_phrase
    if not isinstance(body, dict):
        return resp.reason_phrase
    return body.get("error") or body.get("info") or resp.reason_phrase


class VoiceRoomClient:
    def __init__(
        self,
        api_key: str = "",
        domain: str = "",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key or settings.daily_api_key
        self.domain = domain or settings.daily_domain
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _client(self) -> httpx.AsyncClient:
        if not self.api_key:
            raise VoiceRoomError("DAILY_API_KEY is not configured")
        return httpx.AsyncClient(
            base_url=DAILY_API_BASE_URL,
            headers={"Authorization": f"Bearer {self.api_key}"},
            transport=self._transport,
            timeout=15.0,
        )

    async def create(self, room_id: str, participant_count: int) -> VoiceRoom:
        if not self.domain:
            raise VoiceRoomError("DAILY_DOMAIN is not configured")
        name = f"bol-game-{room_id}-{int(time.time() * 1000)}"
        async with self._client() as client:
            try:
                resp = await client.post("/rooms", json={
                    "name": name,
                    "properties": {
                        "exp": int(time.time()) + ROOM_LIFETIME_SECONDS,
                        "max_participants": participant_count,
                        "enable_recording": "cloud",
                        "enable_transcription": True,
                    },
                })
            except httpx.HTTPError as exc:
                raise VoiceRoomError(f"Failed to create Daily room: {exc}") from exc
        if resp.is_error:
            logger.error("[Daily] Create room failed (%d): %s", resp.status_code, resp.text)
            raise VoiceRoomError(f"Failed to create Daily room: {_error_detail(resp)}")
        data = resp.json()
        logger.info("[Daily] Created room %s for game room %s", data["name"], room_id)
        return VoiceRoom(name=data["name"], url=data["url"], config=data.get("config") or {})

    async def delete(self, name: str) -> bool:
        if not self.api_key:
            logger.warning("[Daily] DAILY_API_KEY not configured; cannot delete %s", name)
            return False
        async with self._client() as client:
            try:
                resp = await client.delete(f"/rooms/{name}")
            except httpx.HTTPError as exc:
                logger.warning("[Daily] Error deleting room %s: %s", name, exc)
                return False
        if resp.is_error:
            logger.warning("[Daily] Failed to delete room %s: %s", name, _error_detail(resp))
            return False
        logger.info("[Daily] Deleted room %s", name)
        return True

    async def fetch_transcripts(self, name: str) -> List[Transcript]:
        """Transcript of the most recent recording of a Daily room; empty if not ready."""
        async with self._client() as client:
            try:
                resp = await client.get("/recordings", params={"room_name": name})
                if resp.is_error:
                    raise VoiceRoomError(f"Failed to fetch recordings: {_error_detail(resp)}")
                recordings = resp.json().get("data") or []
                if not recordings:
                    logger.info("[Daily] No recordings found for room %s", name)
                    return []
                transcription = recordings[0].get("transcription") or {}
                url = transcription.get("url")
                if not url:
                    logger.info("[Daily] Transcription not ready for room %s", name)
                    return []
                # Pre-signed download URL, sent without the API key
                async with httpx.AsyncClient(transport=self._transport, timeout=15.0) as raw:
                    data_resp = await raw.get(url)
            except httpx.HTTPError as exc:
                raise VoiceRoomError(f"Failed to fetch transcripts: {exc}") from exc
        if data_resp.is_error:
            raise VoiceRoomError("Failed to fetch transcript data")
        data = data_resp.json()
        entries = data.get("data", []) if isinstance(data, dict) else data
        logger.info("[Daily] Retrieved %d transcript entries for room %s", len(entries), name)
        return [Transcript.from_daily(e) for e in entries if isinstance(e, dict)]

    async def create_token(self, name: str, participant_name: str, participant_id: str) -> str:
        async with self._client() as client:
            try:
                resp = await client.post("/meeting-tokens", json={
                    "properties": {
                        "room_name": name,
                        "user_name": participant_name,
                        "user_id": participant_id,
                        "enable_recording": "cloud",
                        "start_audio_off": False,
                        "start_video_off": True,
                    },
                })
            except httpx.HTTPError as exc:
                raise VoiceRoomError(f"Failed to create meeting token: {exc}") from exc
        if resp.is_error:
            raise VoiceRoomError(f"Failed to create meeting token: {_error_detail(resp)}")
        return resp.json()["token"]

    async def start_recording(self, name: str) -> bool:
        async with self._client() as client:
            try:
                resp = await client.post("/recordings/start", json={"room_name": name})
            except httpx.HTTPError as exc:
                raise VoiceRoomError(f"Failed to start recording: {exc}") from exc
        if resp.is_error:
            raise VoiceRoomError(f"Failed to start recording: {_error_detail(resp)}")
        logger.info("[Daily] Started recording for room %s", name)
        return True
