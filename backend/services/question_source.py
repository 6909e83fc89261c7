"""
Question source — Q&A records read from a Google Sheet.

The sheet's first row is the header row; every later row becomes a dict keyed
by header, and rows whose cells are all blank are dropped. Results are cached
in-process for five minutes, with explicit force-refresh and clear.
"""
import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Sequence

import httpx
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from config import settings

logger = logging.getLogger(__name__)

SHEETS_API = "https://sheets.googleapis.com/v4/spreadsheets"
SHEETS_SCOPES = ["https://www.googleapis.com/auth/spreadsheets.readonly"]
TOKEN_URI = "https://oauth2.googleapis.com/token"
CACHE_SECONDS = 5 * 60


class QuestionSourceError(Exception):
    """Sheet not configured or the Sheets API call failed."""


def rows_to_records(rows: List[List[str]]) -> List[Dict[str, str]]:
    if not rows:
        return []
    headers = rows[0]
    records = []
    for row in rows[1:]:
        record = {
            header: (row[i] if i < len(row) and row[i] is not None else "")
            for i, header in enumerate(headers)
        }
        if any(str(v).strip() for v in record.values()):
            records.append(record)
    return records


class QuestionSource:
    def __init__(
        self,
        spreadsheet_id: str = "",
        client_email: str = "",
        private_key: str = "",
        cache_seconds: int = CACHE_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.spreadsheet_id = spreadsheet_id or settings.google_sheets_spreadsheet_id
        self.client_email = client_email or settings.google_service_account_email
        self.private_key = private_key or settings.google_service_account_private_key
        self.cache_seconds = cache_seconds
        self._transport = transport
        self._credentials: Optional[service_account.Credentials] = None
        self._cache: Optional[List[Dict[str, str]]] = None
        self._cached_at: Optional[float] = None

    @property
    def configured(self) -> bool:
        return bool(self.spreadsheet_id and self.client_email and self.private_key)

    def _get_credentials(self) -> service_account.Credentials:
        if not self.configured:
            raise QuestionSourceError(
                "Google Sheets credentials or GOOGLE_SHEETS_SPREADSHEET_ID are not configured"
            )
        if self._credentials is None:
            self._credentials = service_account.Credentials.from_service_account_info(
                {
                    "client_email": self.client_email,
                    # Env files usually carry the key with escaped newlines
                    "private_key": self.private_key.replace("\\n", "\n"),
                    "token_uri": TOKEN_URI,
                },
                scopes=SHEETS_SCOPES,
            )
        return self._credentials

    async def _access_token(self) -> str:
        creds = self._get_credentials()
        if not creds.valid:
            # google-auth refresh is a blocking HTTP call
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, creds.refresh, Request())
        return creds.token

    async def fetch(self, sheet_name: str = "Sheet1", range_: str = "A:Z") -> List[Dict[str, str]]:
        full_range = f"{sheet_name}!{range_}"
        logger.info("[Sheets] Fetching questions from range %s", full_range)
        try:
            token = await self._access_token()
            async with httpx.AsyncClient(transport=self._transport, timeout=15.0) as client:
                resp = await client.get(
                    f"{SHEETS_API}/{self.spreadsheet_id}/values/{full_range}",
                    headers={"Authorization": f"Bearer {token}"},
                )
                resp.raise_for_status()
                rows = resp.json().get("values") or []
        except QuestionSourceError:
            raise
        except Exception as exc:
            raise QuestionSourceError(f"Sheets fetch failed: {exc}") from exc

        records = rows_to_records(rows)
        logger.info("[Sheets] Fetched %d questions", len(records))
        return records

    def _fresh(self) -> bool:
        return (
            self._cache is not None
            and self._cached_at is not None
            and time.time() - self._cached_at < self.cache_seconds
        )

    async def get(
        self, sheet_name: str = "Sheet1", range_: str = "A:Z", force_refresh: bool = False
    ) -> List[Dict[str, str]]:
        if self._fresh() and not force_refresh:
            return self._cache
        self._cache = await self.fetch(sheet_name, range_)
        self._cached_at = time.time()
        return self._cache

    async def for_game(
        self, session_id: str, used_ids: Sequence[Any] = (), count: Optional[int] = None
    ) -> List[Dict[str, str]]:
        """Questions not yet used in a game; a record's id is its id/ID column, else its index."""
        questions = await self.get()
        used = {str(u) for u in used_ids}
        available = [
            q for i, q in enumerate(questions)
            if str(q.get("id") or q.get("ID") or i) not in used
        ]
        logger.info(
            "[Sheets] Game %s: %d questions available (%d used)",
            session_id, len(available), len(used),
        )
        if count and count > 0:
            return available[:count]
        return available

    def clear_cache(self) -> None:
        self._cache = None
        self._cached_at = None
        logger.info("[Sheets] Cache cleared")

    def cache_status(self) -> Dict[str, Any]:
        age = time.time() - self._cached_at if self._cached_at is not None else None
        return {
            "isCached": self._cache is not None,
            "questionCount": len(self._cache) if self._cache else 0,
            "lastUpdate": int(self._cached_at * 1000) if self._cached_at is not None else None,
            "cacheAge": int(age * 1000) if age is not None else None,
            "cacheAgeMinutes": int(age // 60) if age is not None else None,
        }
