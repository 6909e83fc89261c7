from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List


class Settings(BaseSettings):
    gemini_api_key: str = ""
    conversation_model: str = "gemini-2.5-flash"
    conversation_temperature: float = 0.7
    conversation_max_tokens: int = 150
    summary_max_tokens: int = 400
    group_summary_max_tokens: int = 800

    # Bot players; BOTS_AVAILABLE=false hides the add/remove bot commands
    bots_available: bool = True
    # Pause before an AI reply is delivered, so replies don't feel instant
    reply_delay_seconds: float = 1.0
    greeting_delay_seconds: float = 1.5

    # Durable session store (Redis). Empty URL = in-memory only.
    redis_url: str = ""
    redis_room_ttl: int = 3600
    redis_session_ttl: int = 300

    # Voice rooms (Daily.co)
    daily_api_key: str = ""
    daily_domain: str = ""

    # Question source (Google Sheets)
    google_sheets_spreadsheet_id: str = ""
    google_service_account_email: str = ""
    google_service_account_private_key: str = ""

    # Transcript / analysis archive (Firestore). Empty project = archive disabled.
    google_cloud_project: str = ""
    firestore_emulator_host: Optional[str] = None

    # CORS origins: set ALLOWED_ORIGINS env var for production (comma-separated)
    allowed_origins: List[str] = [
        "http://localhost:3000",
        "http://localhost:3001",
    ]
    # Extra production origin (e.g. Railway URL); appended to allowed_origins
    extra_origin: str = ""
    debug: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
    )


settings = Settings()
