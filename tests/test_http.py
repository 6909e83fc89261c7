import httpx
import pytest
from fastapi.testclient import TestClient

import main
from services.voice_rooms import VoiceRoomClient


@pytest.fixture
def client():
    with TestClient(main.app) as c:
        yield c


class TestHttpShim:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["service"] == "life-coach-rooms"

    def test_server_config(self, client):
        data = client.get("/api/server-config").json()
        assert data["sessionId"] == main.app.state.engine.session_id
        assert data["minPlayers"] == 2
        assert {"botsAvailable", "voiceAvailable", "questionsAvailable"} <= set(data)

    def test_check_names(self, client):
        assert client.post("/api/check-name", json={"name": "Alex"}).json()["available"] is True
        assert client.post("/api/check-name", json={"name": "A"}).json()["available"] is False
        assert client.post("/api/check-room-name", json={"name": "Trivia"}).json()["available"] is True

    def test_stats_and_debug_start_empty(self, client):
        stats = client.get("/admin/stats").json()
        assert stats["rooms"] == 0
        assert stats["players"] == 0
        assert client.get("/debug/rooms").json() == {"count": 0, "rooms": []}

    def test_voice_room_for_unknown_room(self, client):
        resp = client.post("/api/voice/rooms", json={"roomId": "missing"})
        assert resp.status_code == 404

    def test_start_voice_recording(self, client, monkeypatch):
        def handler(request):
            assert request.url.path == "/v1/recordings/start"
            return httpx.Response(200, json={"id": "rec-1"})

        voice = VoiceRoomClient(
            api_key="daily-key", domain="example.daily.co", transport=httpx.MockTransport(handler)
        )
        monkeypatch.setattr(main.app.state.engine, "voice", voice)

        resp = client.post("/api/voice/rooms/bol-game-1/recording")
        assert resp.status_code == 200
        assert resp.json() == {"recording": True}

    def test_start_voice_recording_failure_is_bad_gateway(self, client, monkeypatch):
        def handler(request):
            return httpx.Response(500, json={"error": "server-error"})

        voice = VoiceRoomClient(
            api_key="daily-key", domain="example.daily.co", transport=httpx.MockTransport(handler)
        )
        monkeypatch.setattr(main.app.state.engine, "voice", voice)

        resp = client.post("/api/voice/rooms/bol-game-1/recording")
        assert resp.status_code == 502
        assert "server-error" in resp.json()["detail"]

    def test_question_cache_endpoints(self, client):
        assert client.get("/api/questions/cache").json()["isCached"] is False
        assert client.delete("/api/questions/cache").json() == {"cleared": True}


class TestWebSocket:
    def test_lobby_round_trip(self, client):
        with client.websocket_connect("/ws?windowIdentity=w1") as ws:
            session = ws.receive_json()
            assert session["type"] == "server-session"
            assert session["sessionId"] == main.app.state.engine.session_id

            ws.send_json({"type": "join-lobby", "data": {"name": "Alex"}})
            joined = ws.receive_json()
            assert joined["type"] == "lobby-joined"
            assert joined["name"] == "Alex"
            players = ws.receive_json()
            assert players["type"] == "player-list-updated"
            assert [p["name"] for p in players["players"]] == ["Alex"]

            taken = client.post("/api/check-name", json={"name": "alex"}).json()
            assert taken["available"] is False

            ws.send_json({"type": "create-room", "data": {"name": "Trivia", "maxPlayers": 2}})
            created = ws.receive_json()
            assert created["type"] == "room-created"
            assert created["room"]["maxPlayers"] == 2

    def test_bad_frames_are_reported(self, client):
        with client.websocket_connect("/ws?windowIdentity=w2") as ws:
            ws.receive_json()
            ws.send_text("not json")
            assert ws.receive_json()["code"] == "PARSE_ERROR"
            ws.send_json({"type": "fly"})
            error = ws.receive_json()
            assert error["type"] == "command-error"
            assert error["code"] == "INVALID_COMMAND"


class TestReset:
    @pytest.mark.asyncio
    async def test_reset_notifies_then_clears(self, engine, sink, join, scheduler):
        alex = await join("Alex")
        await engine.handle(alex, {"type": "create-room", "data": {"name": "Trivia"}})

        await engine.reset()
        assert "server-reset" in sink.broadcast_types()
        assert len(engine.rooms) == 1

        await scheduler.drain()
        assert len(engine.rooms) == 0
        assert len(engine.directory) == 0
        assert sink.closed is True

    @pytest.mark.asyncio
    async def test_reset_drops_per_room_coordination_state(self, engine, join, scheduler):
        alex, sam = await join("Alex"), await join("Sam")
        await engine.handle(alex, {"type": "create-room", "data": {"name": "Trivia", "maxPlayers": 2}})
        room = engine.rooms.find_by_name("Trivia")
        await engine.handle(sam, {"type": "join-room", "data": {"roomId": room.id}})
        await engine.handle(alex, {"type": "start-game", "data": {"roomId": room.id}})
        for conn in (alex, sam):
            await engine.handle(conn, {"type": "finish-conversation", "data": {"roomId": room.id}})
        await scheduler.drain()
        assert room.id in engine.barrier._locks
        assert room.id in engine.pipeline._group_locks

        await engine.reset()
        await scheduler.drain()

        assert engine.barrier._locks == {}
        assert engine.pipeline._group_locks == {}
        assert engine.pipeline._stage_one == {}
