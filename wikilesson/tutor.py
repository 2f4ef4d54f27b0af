from __future__ import annotations

import logging
from typing import AsyncIterator

from wikilesson.errors import TutorError
from wikilesson.gemini_client import ChatStreamer
from wikilesson.prompts import TUTOR_SYSTEM_TEMPLATE
from wikilesson.schemas import ChatMessage

logger = logging.getLogger(__name__)

APOLOGY = "Sorry, I encountered an error."


class TutorSession:
    """
    A multi-turn tutor conversation grounded in one lesson's source text.

    The transcript is append-only, except for the assistant placeholder of the
    turn being streamed, which grows through `replace_last`. Sessions are never
    reused across lessons.
    """

    def __init__(self, topic: str, context: str, *, context_chars: int = 2000) -> None:
        self.topic = topic
        self.context = context
        self.context_chars = context_chars
        self.error: str | None = None
        self._messages: list[ChatMessage] = []
        self._streaming = False
        self._placeholder_open = False

    @property
    def transcript(self) -> tuple[ChatMessage, ...]:
        return tuple(self._messages)

    @property
    def is_streaming(self) -> bool:
        return self._streaming

    def system_instruction(self) -> str:
        return TUTOR_SYSTEM_TEMPLATE.format(topic=self.topic, context=self.context[: self.context_chars])

    def append(self, message: ChatMessage) -> None:
        if self._placeholder_open:
            raise ValueError("cannot append while an assistant reply is streaming")
        self._messages.append(message)

    def replace_last(self, content: str) -> None:
        if not self._placeholder_open:
            raise ValueError("replace_last needs an in-progress assistant message")
        current = self._messages[-1].content
        if not content.startswith(current):
            raise ValueError("streamed content may only grow")
        self._messages[-1] = ChatMessage(role="assistant", content=content)

    async def ask(self, query: str, backend: ChatStreamer) -> AsyncIterator[str]:
        """
        Run one turn. Yields each text fragment as it is applied to the
        transcript; on failure the final fragment is the apology that closes
        the turn. Blank queries and queries sent mid-turn yield nothing.
        """
        if not query.strip() or self._streaming:
            return

        self._streaming = True
        self.error = None
        try:
            self.append(ChatMessage(role="user", content=query))
            try:
                stream = await backend.open_chat_stream(
                    system=self.system_instruction(), history=self.transcript
                )
            except Exception as e:
                yield self._fail(e)
                return

            self.append(ChatMessage(role="assistant", content=""))
            self._placeholder_open = True
            accumulated = ""
            try:
                async for text in stream:
                    accumulated += text
                    self.replace_last(accumulated)
                    yield text
            except Exception as e:
                yield self._fail(e)
        finally:
            self._placeholder_open = False
            self._streaming = False

    def _fail(self, exc: Exception) -> str:
        err = exc if isinstance(exc, TutorError) else TutorError(str(exc) or type(exc).__name__)
        self.error = f"AI tutor error: {err}"
        logger.warning("Tutor turn failed for %r: %s", self.topic, err)

        apology = f"{APOLOGY} {self.error}"
        if self._placeholder_open:
            # Keep the partial reply and close the turn with the apology.
            partial = self._messages[-1].content
            suffix = f"\n\n{apology}" if partial else apology
            self.replace_last(partial + suffix)
            return suffix
        self.append(ChatMessage(role="assistant", content=apology))
        return apology
