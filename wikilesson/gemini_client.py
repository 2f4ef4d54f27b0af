from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Protocol, Sequence

from google import genai
from google.genai import types

from wikilesson.config import Settings
from wikilesson.schemas import ChatMessage

logger = logging.getLogger(__name__)


class StructuredGenerator(Protocol):
    async def generate_json(self, *, system: str, user: str, schema: dict[str, Any]) -> str: ...


class ChatStreamer(Protocol):
    async def open_chat_stream(self, *, system: str, history: Sequence[ChatMessage]) -> AsyncIterator[str]: ...


def _to_content(message: ChatMessage) -> types.Content:
    role = "model" if message.role == "assistant" else "user"
    return types.Content(role=role, parts=[types.Part(text=message.content)])


class GeminiClient:
    """
    Supports two modes:
    - Vertex AI mode (recommended on Cloud Run): GOOGLE_CLOUD_PROJECT + GOOGLE_CLOUD_LOCATION
    - API key mode (local/dev): GOOGLE_API_KEY

    Lessons use the fast model; the tutor uses the stronger one.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or Settings.from_env()
        self.lesson_model = settings.lesson_model
        self.tutor_model = settings.tutor_model

        if settings.google_api_key:
            self._mode = "api_key"
            self.client = genai.Client(api_key=settings.google_api_key)
        elif settings.google_cloud_project:
            self._mode = "vertex"
            # Uses ADC (service account) on Cloud Run
            self.client = genai.Client(
                vertexai=True,
                project=settings.google_cloud_project,
                location=settings.google_cloud_location,
            )
        else:
            raise RuntimeError(
                "Missing config: set GOOGLE_API_KEY (local) or GOOGLE_CLOUD_PROJECT (+ optional GOOGLE_CLOUD_LOCATION) (Vertex/Cloud Run)."
            )

    async def generate_json(self, *, system: str, user: str, schema: dict[str, Any]) -> str:
        """
        Uses response_schema so the model is constrained to the lesson shape.
        Returns the raw JSON text; the caller owns parsing and validation.
        """
        resp = await self.client.aio.models.generate_content(
            model=self.lesson_model,
            contents=[
                types.Content(role="user", parts=[types.Part(text=user)]),
            ],
            config=types.GenerateContentConfig(
                system_instruction=system,
                response_mime_type="application/json",
                response_schema=schema,
                temperature=0.4,
            ),
        )
        return (resp.text or "").strip()

    async def open_chat_stream(self, *, system: str, history: Sequence[ChatMessage]) -> AsyncIterator[str]:
        """
        Opens a streamed reply to the last message of `history`.

        Earlier turns are replayed as chat history so the model keeps the
        conversation's context. Awaiting this opens the stream; iterating the
        result yields text fragments in arrival order.
        """
        if not history or history[-1].role != "user":
            raise ValueError("history must end with a user message")

        chat = self.client.aio.chats.create(
            model=self.tutor_model,
            config=types.GenerateContentConfig(system_instruction=system),
            history=[_to_content(m) for m in history[:-1]],
        )
        stream = await chat.send_message_stream(history[-1].content)
        logger.debug("Opened tutor stream (%d prior turns)", len(history) - 1)

        async def fragments() -> AsyncIterator[str]:
            async for chunk in stream:
                if chunk.text:
                    yield chunk.text

        return fragments()
