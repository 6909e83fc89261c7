from unittest.mock import AsyncMock, MagicMock

import pytest

import services.firestore_service as firestore_service
from models.room import Room
from services.firestore_service import ArchiveService, get_archive_service
from services.voice_rooms import Transcript


@pytest.fixture
def db():
    return MagicMock()


class TestArchiveService:
    @pytest.mark.asyncio
    async def test_game_session_document(self, db):
        archive = ArchiveService(db=db)
        room = Room(name="Trivia", capacity=2, host_id="c1", members=["c1", "c2"])

        session_id = await archive.create_game_session(room)

        db.collection.assert_called_with("game_sessions")
        db.collection.return_value.document.assert_called_with(session_id)
        data = db.collection.return_value.document.return_value.set.call_args.args[0]
        assert data["room_id"] == room.id
        assert data["player_count"] == 2
        assert data["status"] == "active"

    @pytest.mark.asyncio
    async def test_end_game_session(self, db):
        archive = ArchiveService(db=db)
        await archive.end_game_session("s1", "abandoned")
        update = db.collection.return_value.document.return_value.update.call_args.args[0]
        assert update["status"] == "abandoned"
        assert update["ended_at"]

    @pytest.mark.asyncio
    async def test_transcripts_are_written_in_one_batch(self, db):
        archive = ArchiveService(db=db)
        saved = await archive.save_transcripts("s1", [
            Transcript(participant_name="Alex", text="hello"),
            Transcript(participant_name="Sam", text="hi"),
        ])
        assert saved == 2
        batch = db.batch.return_value
        assert batch.set.call_count == 2
        batch.commit.assert_called_once()

    @pytest.mark.asyncio
    async def test_no_transcripts_no_write(self, db):
        archive = ArchiveService(db=db)
        assert await archive.save_transcripts("s1", []) == 0
        db.batch.assert_not_called()

    def test_disabled_without_project_or_emulator(self, monkeypatch):
        monkeypatch.setattr(firestore_service, "_archive_service", None)
        monkeypatch.setattr(firestore_service.settings, "google_cloud_project", "")
        monkeypatch.setattr(firestore_service.settings, "firestore_emulator_host", "")
        assert get_archive_service() is None


class TestEngineArchiveHooks:
    @pytest.mark.asyncio
    async def test_session_opened_on_start_and_closed_after_group_summary(self, make_engine, join, scheduler):
        archive = AsyncMock()
        archive.create_game_session.return_value = "session-1"
        engine = make_engine(archive=archive)
        alex = await join("Alex", eng=engine)
        await engine.handle(alex, {"type": "create-room", "data": {"name": "Trivia"}})
        room = engine.rooms.find_by_name("Trivia")

        await engine.handle(alex, {"type": "start-game", "data": {"roomId": room.id}})
        assert room.session_id == "session-1"

        await engine.handle(alex, {"type": "finish-conversation", "data": {"roomId": room.id}})
        await scheduler.drain()

        archive.end_game_session.assert_awaited_once_with("session-1", "completed")

    @pytest.mark.asyncio
    async def test_abandoned_room_closes_its_session(self, make_engine, join):
        archive = AsyncMock()
        archive.create_game_session.return_value = "session-1"
        engine = make_engine(archive=archive)
        alex = await join("Alex", eng=engine)
        await engine.handle(alex, {"type": "create-room", "data": {"name": "Trivia"}})
        room = engine.rooms.find_by_name("Trivia")
        await engine.handle(alex, {"type": "start-game", "data": {"roomId": room.id}})

        await engine.disconnect(alex)

        archive.end_game_session.assert_awaited_once_with("session-1", "abandoned")

    @pytest.mark.asyncio
    async def test_archive_outage_does_not_block_the_game(self, make_engine, sink, join):
        archive = AsyncMock()
        archive.create_game_session.side_effect = RuntimeError("firestore down")
        engine = make_engine(archive=archive)
        alex = await join("Alex", eng=engine)
        await engine.handle(alex, {"type": "create-room", "data": {"name": "Trivia"}})
        room = engine.rooms.find_by_name("Trivia")

        await engine.handle(alex, {"type": "start-game", "data": {"roomId": room.id}})

        assert sink.to(alex, "game-started")
        assert room.session_id is None
