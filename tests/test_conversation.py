"""
End-to-end conversation flows through the engine: the two-player "Trivia"
room, provider outages, and the conversation-level rejections.
"""
import pytest

from agents.conversation import CONVERSATION_SYSTEM_PROMPT, FALLBACK_GREETING, FALLBACK_REPLY
from agents.summary_pipeline import FALLBACK_SUMMARY, SUMMARY_SYSTEM_PROMPT
from models.room import RoomStatus, TurnOrigin, TurnRole


async def _playing_room(engine, join, max_players=2):
    alex, sam = await join("Alex"), await join("Sam")
    await engine.handle(alex, {"type": "create-room", "data": {"name": "Trivia", "maxPlayers": max_players}})
    room = engine.rooms.find_by_name("Trivia")
    await engine.handle(sam, {"type": "join-room", "data": {"roomId": room.id}})
    await engine.handle(alex, {"type": "start-game", "data": {"roomId": room.id}})
    return room, alex, sam


async def _say(engine, connection_id, room, text):
    await engine.handle(
        connection_id, {"type": "conversation-message", "data": {"roomId": room.id, "text": text}}
    )
    await engine.scheduler.drain()


async def _finish(engine, connection_id, room):
    await engine.handle(connection_id, {"type": "finish-conversation", "data": {"roomId": room.id}})
    await engine.scheduler.drain()


class TestTriviaScenario:
    @pytest.mark.asyncio
    async def test_two_player_room_from_create_to_summaries(self, engine, sink, join, llm):
        alex, sam = await join("Alex"), await join("Sam")

        await engine.handle(alex, {"type": "create-room", "data": {"name": "Trivia", "maxPlayers": 2}})
        room = engine.rooms.find_by_name("Trivia")
        assert len(room.members) == 1

        await engine.handle(sam, {"type": "join-room", "data": {"roomId": room.id}})
        assert len(room.members) == 2
        assert sink.to(alex, "player-joined-room")

        await engine.handle(alex, {"type": "start-game", "data": {"roomId": room.id}})
        assert room.status == RoomStatus.PLAYING

        await _say(engine, alex, room, "I want to learn to paint")
        alex_log = room.conversation_logs["Alex"]
        assert [t.role for t in alex_log] == [TurnRole.USER, TurnRole.ASSISTANT]
        assert alex_log[1].origin == TurnOrigin.AI
        assert "Sam" not in room.conversation_logs
        assert len(sink.to(alex, "conversation-message")) == 2
        assert sink.to(sam, "conversation-message") == []

        await _say(engine, sam, room, "Sailing, maybe")

        await _finish(engine, alex, room)
        first = sink.to(alex, "player-finished-conversation")[-1]
        assert (first["finishedCount"], first["totalPlayers"]) == (1, 2)
        assert sink.to(alex, "conversation-summary") == []

        await _finish(engine, sam, room)
        second = sink.to(sam, "player-finished-conversation")[-1]
        assert (second["finishedCount"], second["totalPlayers"]) == (2, 2)

        alex_summaries = sink.to(alex, "conversation-summary")
        sam_summaries = sink.to(sam, "conversation-summary")
        assert [m["playerName"] for m in alex_summaries] == ["Alex"]
        assert [m["playerName"] for m in sam_summaries] == ["Sam"]
        assert room.conversation_logs["Alex"][-1].role == TurnRole.SUMMARY
        assert room.conversation_logs["Sam"][-1].role == TurnRole.SUMMARY

        group = sink.to(alex, "group-summary-generated")
        assert len(group) == 1
        assert group[0]["summary"]["participantCount"] == 2
        assert len(sink.to(sam, "group-summary-generated")) == 1

    @pytest.mark.asyncio
    async def test_reply_request_carries_full_transcript(self, engine, join, llm):
        room, alex, _ = await _playing_room(engine, join)
        await _say(engine, alex, room, "first")
        await _say(engine, alex, room, "second")

        system_prompt, messages, _ = llm.calls_for(CONVERSATION_SYSTEM_PROMPT)[-1]
        assert [m["role"] for m in messages] == ["user", "assistant", "user"]
        assert messages[-1]["content"] == "second"

    @pytest.mark.asyncio
    async def test_replies_are_paced(self, engine, join, scheduler):
        room, alex, _ = await _playing_room(engine, join)
        await _say(engine, alex, room, "hello")
        assert 1.0 in scheduler.slept


class TestProviderFailure:
    @pytest.mark.asyncio
    async def test_outage_yields_fallback_turn_and_fallback_summary(self, make_engine, failing_llm, sink, join):
        engine = make_engine(llm=failing_llm)
        room, alex, sam = await _playing_room(engine, lambda n: join(n, eng=engine))

        await _say(engine, alex, room, "I want to learn to paint")
        log = room.conversation_logs["Alex"]
        assistant = [t for t in log if t.role == TurnRole.ASSISTANT]
        assert len(assistant) == 1
        assert assistant[0].text == FALLBACK_REPLY
        assert assistant[0].origin == TurnOrigin.SYSTEM_FALLBACK
        assert sink.to(alex, "conversation-error") == []

        await _finish(engine, alex, room)
        await _finish(engine, sam, room)

        assert log[-1].role == TurnRole.SUMMARY
        assert log[-1].text == FALLBACK_SUMMARY
        assert room.group_summary.is_fallback is True
        assert "Alex" in room.group_summary.text and "Sam" in room.group_summary.text

    @pytest.mark.asyncio
    async def test_greeting_falls_back_too(self, make_engine, failing_llm, sink, join):
        engine = make_engine(llm=failing_llm)
        room, alex, _ = await _playing_room(engine, lambda n: join(n, eng=engine))

        await engine.handle(alex, {"type": "start-conversation", "data": {"roomId": room.id}})
        await engine.scheduler.drain()

        message = sink.to(alex, "conversation-message")[-1]
        assert message["turn"]["text"] == FALLBACK_GREETING
        assert message["turn"]["origin"] == "system-fallback"


class TestStartConversation:
    @pytest.mark.asyncio
    async def test_greeting_is_delivered_once(self, engine, sink, join, scheduler):
        room, alex, _ = await _playing_room(engine, join)
        await engine.handle(alex, {"type": "start-conversation", "data": {"roomId": room.id}})
        await scheduler.drain()

        assert [t.role for t in room.conversation_logs["Alex"]] == [TurnRole.ASSISTANT]
        assert 1.5 in scheduler.slept
        assert len(sink.to(alex, "conversation-message")) == 1

    @pytest.mark.asyncio
    async def test_restart_replays_existing_log(self, engine, sink, join, scheduler, llm):
        room, alex, _ = await _playing_room(engine, join)
        await _say(engine, alex, room, "hello")
        calls = len(llm.calls)

        await engine.handle(alex, {"type": "start-conversation", "data": {"roomId": room.id}})
        await scheduler.drain()

        assert len(llm.calls) == calls
        assert len(sink.to(alex, "conversation-message")) == 4


class TestRejections:
    @pytest.mark.asyncio
    async def test_message_before_start(self, engine, sink, join):
        alex = await join("Alex")
        await engine.handle(alex, {"type": "create-room", "data": {"name": "Trivia"}})
        room = engine.rooms.find_by_name("Trivia")
        await _say(engine, alex, room, "hello")
        assert sink.to(alex, "conversation-error")[-1]["code"] == "GAME_NOT_STARTED"

    @pytest.mark.asyncio
    async def test_finish_from_outside_the_room(self, engine, sink, join):
        room, _, _ = await _playing_room(engine, join)
        kim = await join("Kim")
        await _finish(engine, kim, room)
        assert sink.to(kim, "finish-conversation-error")[-1]["code"] == "NOT_IN_ROOM"
        assert room.finished == []

    @pytest.mark.asyncio
    async def test_group_summary_before_everyone_finished(self, engine, sink, join):
        room, alex, _ = await _playing_room(engine, join)
        await _finish(engine, alex, room)
        await engine.handle(alex, {"type": "generate-group-summary", "data": {"roomId": room.id}})
        await engine.scheduler.drain()
        assert sink.to(alex, "group-summary-error")[-1]["code"] == "INCOMPLETE_CONVERSATIONS"

    @pytest.mark.asyncio
    async def test_blank_message_is_dropped(self, engine, sink, join):
        room, alex, _ = await _playing_room(engine, join)
        await _say(engine, alex, room, "   ")
        assert room.conversation_logs.get("Alex", []) == []

    @pytest.mark.asyncio
    async def test_room_state(self, engine, sink, join):
        room, alex, _ = await _playing_room(engine, join)
        await _finish(engine, alex, room)
        await engine.handle(alex, {"type": "get-room-state", "data": {"roomId": room.id}})
        state = sink.to(alex, "room-state-update")[-1]
        assert state["status"] == "playing"
        assert state["finishedPlayers"] == ["Alex"]


class TestMidGameDeparture:
    @pytest.mark.asyncio
    async def test_unfinished_player_leaving_lets_the_rest_complete(self, engine, sink, join, llm):
        room, alex, sam = await _playing_room(engine, join)
        await _say(engine, alex, room, "painting")
        await _finish(engine, alex, room)

        await engine.disconnect(sam)
        await engine.scheduler.drain()

        assert room.summaries_started is True
        assert len(llm.calls_for(SUMMARY_SYSTEM_PROMPT)) == 1
        assert sink.to(alex, "conversation-summary")[-1]["playerName"] == "Alex"
