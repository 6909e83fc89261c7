from unittest.mock import AsyncMock

import httpx
import pytest

from services.question_source import QuestionSource, QuestionSourceError, rows_to_records

RECORDS = [
    {"id": "q1", "Question": "What makes you feel alive?"},
    {"id": "", "ID": "q2", "Question": "What would you learn?"},
    {"Question": "Where would you travel?"},
]


def test_rows_to_records_keys_by_header_and_drops_blank_rows():
    rows = [
        ["id", "Question", "Answer"],
        ["q1", "What makes you feel alive?"],
        ["", "  ", ""],
        ["q2", "What would you learn?", "Painting"],
    ]
    assert rows_to_records(rows) == [
        {"id": "q1", "Question": "What makes you feel alive?", "Answer": ""},
        {"id": "q2", "Question": "What would you learn?", "Answer": "Painting"},
    ]
    assert rows_to_records([]) == []


@pytest.fixture
def source():
    src = QuestionSource(spreadsheet_id="sheet-1", client_email="svc@example.com", private_key="key")
    src.fetch = AsyncMock(return_value=list(RECORDS))
    return src


class TestCache:
    @pytest.mark.asyncio
    async def test_second_read_is_served_from_cache(self, source):
        await source.get()
        await source.get()
        source.fetch.assert_awaited_once_with("Sheet1", "A:Z")

    @pytest.mark.asyncio
    async def test_force_refresh_bypasses_cache(self, source):
        await source.get()
        await source.get(force_refresh=True)
        assert source.fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_expired_cache_is_refetched(self, source):
        source.cache_seconds = 0
        await source.get()
        await source.get()
        assert source.fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_clear_and_status(self, source):
        assert source.cache_status()["isCached"] is False
        await source.get()

        status = source.cache_status()
        assert status["isCached"] is True
        assert status["questionCount"] == 3
        assert status["cacheAgeMinutes"] == 0

        source.clear_cache()
        assert source.cache_status() == {
            "isCached": False, "questionCount": 0,
            "lastUpdate": None, "cacheAge": None, "cacheAgeMinutes": None,
        }


class TestForGame:
    @pytest.mark.asyncio
    async def test_used_questions_are_filtered_by_id_then_index(self, source):
        available = await source.for_game("session-1", used_ids=["q1", "q2"])
        assert available == [RECORDS[2]]

        available = await source.for_game("session-1", used_ids=[2])
        assert available == RECORDS[:2]

    @pytest.mark.asyncio
    async def test_count_limits_the_result(self, source):
        assert await source.for_game("session-1", count=1) == [RECORDS[0]]


class TestFetch:
    @pytest.mark.asyncio
    async def test_unconfigured_source_raises(self):
        src = QuestionSource(spreadsheet_id="sheet-1", client_email="", private_key="")
        src.client_email = ""
        src.private_key = ""
        with pytest.raises(QuestionSourceError):
            await src.fetch()

    @pytest.mark.asyncio
    async def test_fetch_reads_values_with_bearer_token(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(200, json={"values": [["id", "Question"], ["q1", "Why?"]]})

        src = QuestionSource(
            spreadsheet_id="sheet-1", client_email="svc@example.com", private_key="key",
            transport=httpx.MockTransport(handler),
        )
        src._access_token = AsyncMock(return_value="token-123")

        records = await src.fetch("Questions", "A:C")

        assert records == [{"id": "q1", "Question": "Why?"}]
        assert "/sheet-1/values/Questions!A:C" in seen["url"]
        assert seen["auth"] == "Bearer token-123"

    @pytest.mark.asyncio
    async def test_http_failure_is_wrapped(self):
        src = QuestionSource(
            spreadsheet_id="sheet-1", client_email="svc@example.com", private_key="key",
            transport=httpx.MockTransport(lambda request: httpx.Response(403, json={})),
        )
        src._access_token = AsyncMock(return_value="token-123")
        with pytest.raises(QuestionSourceError):
            await src.fetch()
