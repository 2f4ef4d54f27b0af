from __future__ import annotations

from typing import Callable

from cachetools import TTLCache

from wikilesson.orchestrator import LessonStudio


class SessionStore:
    """In-memory studios keyed by session id; idle sessions expire."""

    def __init__(
        self,
        factory: Callable[[], LessonStudio],
        *,
        maxsize: int = 10_000,
        ttl_seconds: int = 60 * 60,
    ) -> None:
        self.factory = factory
        self._cache: TTLCache[str, LessonStudio] = TTLCache(maxsize=maxsize, ttl=ttl_seconds)

    def get_or_create(self, session_id: str) -> LessonStudio:
        studio = self._cache.get(session_id)
        if studio is None:
            studio = self.factory()
        # Re-set on every access so the TTL counts from the last use.
        self._cache[session_id] = studio
        return studio

    def get(self, session_id: str) -> LessonStudio | None:
        return self._cache.get(session_id)

    def __len__(self) -> int:
        return len(self._cache)
