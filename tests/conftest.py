"""
Shared fixtures: a recording event sink, an instant scheduler, a scripted
completion client and a fully wired RoomEngine built from them.
"""
import asyncio
import random
from typing import Any, Dict, List, Optional, Tuple

import pytest

from agents.llm import CompletionError
from agents.summary_pipeline import GROUP_SUMMARY_SYSTEM_PROMPT, SUMMARY_SYSTEM_PROMPT
from services.engine import RoomEngine
from services.scheduler import Scheduler
from services.session_store import SessionStore
from services.voice_rooms import VoiceRoomClient


class RecordingSink:
    """EventSink that keeps every message instead of writing to sockets."""

    def __init__(self):
        self.sent: List[Tuple[str, Dict[str, Any]]] = []
        self.broadcasts: List[Dict[str, Any]] = []
        self.closed = False

    async def send_to(self, connection_id: str, message: Dict[str, Any]) -> None:
        self.sent.append((connection_id, message))

    async def broadcast(self, message: Dict[str, Any], exclude: Optional[str] = None) -> None:
        self.broadcasts.append(message)

    async def close_all(self) -> None:
        self.closed = True

    def to(self, connection_id: str, msg_type: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            m for cid, m in self.sent
            if cid == connection_id and (msg_type is None or m["type"] == msg_type)
        ]

    def of_type(self, msg_type: str) -> List[Tuple[str, Dict[str, Any]]]:
        return [(cid, m) for cid, m in self.sent if m["type"] == msg_type]

    def broadcast_types(self) -> List[str]:
        return [m["type"] for m in self.broadcasts]


class InstantScheduler(Scheduler):
    """Scheduler whose sleeps only yield to the loop; records requested delays."""

    def __init__(self):
        super().__init__(rng=random.Random(7))
        self.slept: List[float] = []

    async def sleep(self, seconds: float) -> None:
        self.slept.append(seconds)
        await asyncio.sleep(0)


class FakeLLM:
    """Completion client double; set ``fail`` to simulate a provider outage."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: List[Tuple[str, List[Dict[str, str]], Optional[int]]] = []

    async def complete(self, system_prompt, messages, max_tokens=None) -> str:
        self.calls.append((system_prompt, list(messages), max_tokens))
        await asyncio.sleep(0)
        if self.fail:
            raise CompletionError("provider down")
        if system_prompt == SUMMARY_SYSTEM_PROMPT:
            return "individual summary"
        if system_prompt == GROUP_SUMMARY_SYSTEM_PROMPT:
            return "group summary"
        return f"coach reply to {len(messages)} message(s)"

    def calls_for(self, system_prompt: str):
        return [c for c in self.calls if c[0] == system_prompt]


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def scheduler():
    return InstantScheduler()


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def failing_llm():
    return FakeLLM(fail=True)


@pytest.fixture
def make_engine(sink, scheduler):
    def _make(llm=None, bots_enabled=True, archive=None):
        return RoomEngine(
            sink,
            llm=llm or FakeLLM(),
            scheduler=scheduler,
            session_store=SessionStore(url="redis://unused"),
            archive=archive,
            voice=VoiceRoomClient(api_key="", domain=""),
            bots_enabled=bots_enabled,
            reply_delay=1.0,
            greeting_delay=1.5,
        )
    return _make


@pytest.fixture
def engine(make_engine, llm):
    return make_engine(llm=llm)


@pytest.fixture
def join(engine):
    """Connect a window and join the lobby; returns the connection id."""
    async def _join(name: str, window: Optional[str] = None, eng: Optional[RoomEngine] = None) -> str:
        eng = eng or engine
        connection_id = f"conn-{name}"
        await eng.connect(connection_id, window or f"window-{name}")
        await eng.handle(connection_id, {"type": "join-lobby", "data": {"name": name}})
        return connection_id
    return _join
