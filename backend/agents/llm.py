"""
Text completion client.

Callers pass a system prompt plus an ordered transcript of
{"role": "user" | "assistant", "content": str} messages and get text back.
Any provider problem (missing key, network, empty answer) surfaces as
CompletionError; callers substitute their own fallback text.
"""
import logging
from typing import Dict, List, Optional, Protocol

from google import genai
from google.genai import types

from config import settings

logger = logging.getLogger(__name__)

# Gemini rejects an empty contents list; used when the transcript is empty
# (e.g. the coach's opening greeting).
_OPENING_CUE = "Please begin the conversation."


class CompletionError(Exception):
    """The completion provider failed or returned nothing usable."""


class CompletionClient(Protocol):
    async def complete(
        self,
        system_prompt: str,
        messages: List[Dict[str, str]],
        max_tokens: Optional[int] = None,
    ) -> str:
        ...


def to_contents(messages: List[Dict[str, str]]) -> List[types.Content]:
    """Map chat roles onto Gemini roles (assistant → model)."""
    contents = []
    for msg in messages:
        role = "model" if msg["role"] == "assistant" else "user"
        contents.append(types.Content(role=role, parts=[types.Part(text=msg["content"])]))
    if not contents:
        contents.append(types.Content(role="user", parts=[types.Part(text=_OPENING_CUE)]))
    return contents


class GeminiCompletionClient:
    """Async text generation via Gemini (generate_content, not Live API)."""

    def __init__(
        self,
        api_key: str = "",
        model: str = "",
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ):
        self.api_key = api_key or settings.gemini_api_key
        self.model = model or settings.conversation_model
        self.temperature = (
            temperature if temperature is not None else settings.conversation_temperature
        )
        self.max_tokens = max_tokens or settings.conversation_max_tokens
        # Created once on first use
        self._client: Optional[genai.Client] = None

    def _get_client(self) -> genai.Client:
        if not self.api_key:
            raise CompletionError("GEMINI_API_KEY not set")
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def complete(
        self,
        system_prompt: str,
        messages: List[Dict[str, str]],
        max_tokens: Optional[int] = None,
    ) -> str:
        client = self._get_client()
        try:
            response = await client.aio.models.generate_content(
                model=self.model,
                contents=to_contents(messages),
                config=types.GenerateContentConfig(
                    system_instruction=system_prompt,
                    temperature=self.temperature,
                    max_output_tokens=max_tokens or self.max_tokens,
                ),
            )
        except Exception as exc:
            raise CompletionError(f"Gemini call failed: {exc}") from exc

        text = response.text
        if not text or not text.strip():
            raise CompletionError("Gemini returned an empty response")
        return text.strip()
