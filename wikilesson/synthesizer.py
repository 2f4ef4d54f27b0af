from __future__ import annotations

import json
import logging
from typing import Sequence

from pydantic import ValidationError

from wikilesson.errors import GenerationError
from wikilesson.gemini_client import StructuredGenerator
from wikilesson.prompts import LESSON_SYSTEM, LESSON_USER_TEMPLATE
from wikilesson.schemas import Lesson, Snippet

logger = logging.getLogger(__name__)

LESSON_SCHEMA = Lesson.model_json_schema()


def build_lesson_prompt(topic: str, snippets: Sequence[Snippet], *, snippet_chars: int = 1500) -> str:
    # Only a prefix of each snippet is sent; the tail is dropped on purpose.
    blocks = "\n\n".join(f"### {s.title}\n{s.content[:snippet_chars]}" for s in snippets)
    return LESSON_USER_TEMPLATE.format(topic=topic, snippets=blocks)


def parse_lesson(raw: str, topic: str) -> Lesson:
    """Parse the backend's JSON into a Lesson titled `topic`. No repair is attempted."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise GenerationError(f"Model returned malformed JSON: {e}") from e
    if not isinstance(data, dict):
        raise GenerationError(f"Model returned {type(data).__name__}, expected a JSON object")

    # The model's own title is discarded.
    data["title"] = topic
    try:
        return Lesson.model_validate(data)
    except ValidationError as e:
        raise GenerationError(
            f"Failed to parse lesson from AI response. The model may have generated an invalid structure. {e}"
        ) from e


class LessonSynthesizer:
    def __init__(self, generator: StructuredGenerator, *, snippet_chars: int = 1500) -> None:
        self.generator = generator
        self.snippet_chars = snippet_chars

    async def synthesize(self, topic: str, snippets: Sequence[Snippet]) -> Lesson:
        user = build_lesson_prompt(topic, snippets, snippet_chars=self.snippet_chars)
        try:
            raw = await self.generator.generate_json(system=LESSON_SYSTEM, user=user, schema=LESSON_SCHEMA)
        except Exception as e:
            raise GenerationError(f"Lesson generation request failed: {e}") from e

        lesson = parse_lesson(raw, topic)
        logger.info(
            "Synthesized lesson %r: %d concepts, %d formulas, %d prompts",
            topic,
            len(lesson.coreConcepts),
            len(lesson.keyFormulas),
            len(lesson.activeRecallPrompts),
        )
        return lesson
