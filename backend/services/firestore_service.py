import asyncio
import os
import uuid
from typing import Optional, List, Dict, Any
from datetime import datetime, timezone

from config import settings
from models.room import Room
from services.voice_rooms import Transcript


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ArchiveService:
    """
    Archive of finished sessions: game sessions, voice transcripts and
    transcript analyses (individual and group summaries).

    Async-friendly Firestore wrapper using run_in_executor to avoid
    blocking the event loop.
    """

    def __init__(self, db=None):
        if db is None:
            if settings.firestore_emulator_host:
                os.environ["FIRESTORE_EMULATOR_HOST"] = settings.firestore_emulator_host
            # Lazy import so the service can be instantiated before GCP creds exist
            from google.cloud import firestore
            db = firestore.Client(project=settings.google_cloud_project or None)
        self.db = db

    def _run(self, fn):
        """Run a sync Firestore call in the default thread pool."""
        loop = asyncio.get_running_loop()
        return loop.run_in_executor(None, fn)

    # ── Collection helpers ────────────────────────────────────────────────────

    def _session_ref(self, session_id: str):
        return self.db.collection("game_sessions").document(session_id)

    def _transcripts_ref(self, session_id: str):
        return self._session_ref(session_id).collection("voice_transcripts")

    def _analysis_ref(self, session_id: str):
        return self._session_ref(session_id).collection("transcript_analysis")

    # ── Game sessions ─────────────────────────────────────────────────────────

    async def create_game_session(self, room: Room) -> str:
        session_id = str(uuid.uuid4())
        data = {
            "id": session_id,
            "room_id": room.id,
            "room_name": room.name,
            "daily_room_name": room.voice_room_name,
            "daily_room_url": room.voice_room_url,
            "started_at": _now(),
            "ended_at": None,
            "player_count": len(room.members),
            "status": "active",
            "created_at": _now(),
        }
        await self._run(lambda: self._session_ref(session_id).set(data))
        return session_id

    async def end_game_session(self, session_id: str, status: str = "completed"):
        await self._run(
            lambda: self._session_ref(session_id).update({"ended_at": _now(), "status": status})
        )

    # ── Voice transcripts ─────────────────────────────────────────────────────

    async def save_transcripts(self, session_id: str, transcripts: List[Transcript]) -> int:
        ref = self._transcripts_ref(session_id)

        def write():
            batch = self.db.batch()
            for t in transcripts:
                batch.set(ref.document(), {
                    "session_id": session_id,
                    "player_id": t.participant_id,
                    "player_name": t.participant_name,
                    "transcript_text": t.text,
                    "timestamp": t.timestamp or _now(),
                    "duration_seconds": t.duration,
                    "confidence": t.confidence,
                    "created_at": _now(),
                })
            batch.commit()

        if transcripts:
            await self._run(write)
        return len(transcripts)

    # ── Analysis ──────────────────────────────────────────────────────────────

    async def save_analysis(self, session_id: str, analysis_type: str, result: Dict[str, Any]):
        data = {
            "session_id": session_id,
            "analysis_type": analysis_type,
            "analysis_result": result,
            "created_at": _now(),
        }
        await self._run(lambda: self._analysis_ref(session_id).document().set(data))


_archive_service: Optional["ArchiveService"] = None


def get_archive_service() -> Optional["ArchiveService"]:
    """Lazy singleton, initialised on first call, not at import time.
    Returns None when no Firestore project or emulator is configured, which
    disables archiving without failing startup.
    """
    global _archive_service
    if _archive_service is None:
        if not (settings.google_cloud_project or settings.firestore_emulator_host):
            return None
        _archive_service = ArchiveService()
    return _archive_service
