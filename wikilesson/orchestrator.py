from __future__ import annotations

import logging
import re
from typing import AsyncIterator, Callable, Protocol

from wikilesson.config import Settings
from wikilesson.content import SectionSource, build_grounding_context, fetch_snippets
from wikilesson.errors import ContentFetchError, GenerationError, SearchError, SectionLoadError
from wikilesson.gemini_client import ChatStreamer, StructuredGenerator
from wikilesson.schemas import (
    ChatMessage,
    Lesson,
    Page,
    SearchResult,
    Section,
    Source,
    Stage,
    StudioState,
)
from wikilesson.synthesizer import LessonSynthesizer
from wikilesson.tutor import TutorSession
from wikilesson.wiki_client import make_page

logger = logging.getLogger(__name__)

UpdateHook = Callable[[str], None]

_DIGITS_RE = re.compile(r"\d+")


class WikiSource(SectionSource, Protocol):
    async def search_pages(self, source: Source, query: str) -> list[SearchResult]: ...

    async def fetch_sections(self, source: Source, pageid: int) -> list[Section]: ...


def section_order_key(section: Section) -> tuple[int, int]:
    # Transcluded sections have indices like "T-1"; they sort after numeric ones.
    if section.index.isdigit():
        return (0, int(section.index))
    m = _DIGITS_RE.search(section.index)
    return (1, int(m.group()) if m else 0)


class LessonStudio:
    """
    Owns every piece of session state and sequences
    search -> select page -> select sections -> generate lesson -> tutor.

    Each stage keeps its own error slot; a failure in one stage never clears
    state that belongs to an earlier stage. Work that is superseded while in
    flight (a new search, a new page, a new lesson) is not cancelled, so every
    async step captures a token when it starts and commits only if that token
    is still current.
    """

    def __init__(
        self,
        wiki: WikiSource,
        generator: StructuredGenerator,
        chat: ChatStreamer,
        *,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.wiki = wiki
        self.chat = chat
        self.synthesizer = LessonSynthesizer(generator, snippet_chars=self.settings.snippet_chars)
        self._hooks: list[UpdateHook] = []

        self._search_token = 0
        self._page_token = 0
        self._lesson_token = 0

        self.source = Source.wikipedia
        self.query = ""
        self._reset_search()

    # --- resets (each one cascades downstream) ---

    def _reset_lesson(self) -> None:
        self._lesson_token += 1
        self.lesson: Lesson | None = None
        self.lesson_error: str | None = None
        self.is_generating = False
        self.tutor: TutorSession | None = None

    def _reset_page(self) -> None:
        self._page_token += 1
        self.page: Page | None = None
        self.sections: list[Section] = []
        self.is_loading_sections = False
        self.sections_error: str | None = None
        self.selected_sections: list[Section] = []
        self._reset_lesson()

    def _reset_search(self) -> None:
        self._search_token += 1
        self.search_results: list[SearchResult] = []
        self.is_searching = False
        self.search_error: str | None = None
        self._reset_page()

    # --- hooks ---

    def add_update_hook(self, hook: UpdateHook) -> None:
        """Register a callback run after lesson or transcript changes are committed."""
        self._hooks.append(hook)

    def _notify(self, event: str) -> None:
        for hook in list(self._hooks):
            try:
                hook(event)
            except Exception:
                logger.exception("Update hook failed for %s", event)

    # --- derived state ---

    @property
    def tutor_ready(self) -> bool:
        return self.lesson is not None and self.lesson_error is None and self.tutor is not None

    @property
    def chat_history(self) -> list[ChatMessage]:
        return list(self.tutor.transcript) if self.tutor else []

    @property
    def is_tutor_loading(self) -> bool:
        return bool(self.tutor and self.tutor.is_streaming)

    @property
    def tutor_error(self) -> str | None:
        return self.tutor.error if self.tutor else None

    @property
    def stage(self) -> Stage:
        if self.is_generating:
            return Stage.generating
        if self.lesson is not None:
            return Stage.tutor_active if self.chat_history else Stage.lesson_ready
        if self.is_loading_sections:
            return Stage.sections_loading
        if self.page is not None:
            return Stage.sections_ready
        if self.is_searching:
            return Stage.searching
        if self.search_results:
            return Stage.results
        return Stage.idle

    # --- transitions ---

    def set_source(self, source: Source | str) -> None:
        source = Source(source)
        if source == self.source:
            return
        self.source = source
        self._reset_search()

    def clear_search(self) -> None:
        self.query = ""
        self._reset_search()

    async def search(self, query: str) -> None:
        self.query = query
        if not query.strip():
            self.search_error = "Please enter a topic to search."
            return

        self._reset_search()
        token = self._search_token
        self.is_searching = True
        try:
            results = await self.wiki.search_pages(self.source, query)
        except SearchError as e:
            if token == self._search_token:
                self.search_error = f"Search failed. Please try again. Error: {e}"
                logger.warning("Search for %r failed: %s", query, e)
            return
        finally:
            if token == self._search_token:
                self.is_searching = False

        if token != self._search_token:
            logger.debug("Dropping stale search results for %r", query)
            return
        self.search_results = results
        if not results:
            self.search_error = "No results found. Try another topic."

    async def select_page(self, pageid: int) -> None:
        result = next((r for r in self.search_results if r.pageid == pageid), None)
        if result is None:
            raise ValueError(f"Page {pageid} is not among the current search results")

        self._reset_page()
        page = self.page = make_page(self.source, result)
        token = self._page_token
        self.is_loading_sections = True
        try:
            sections = await self.wiki.fetch_sections(page.src, page.pageid)
        except SectionLoadError as e:
            if token == self._page_token:
                self.sections_error = f"Failed to load sections. Error: {e}"
                logger.warning("Loading sections of %r failed: %s", page.title, e)
            return
        finally:
            if token == self._page_token:
                self.is_loading_sections = False

        if token != self._page_token:
            logger.debug("Dropping stale sections for %r", page.title)
            return
        self.sections = sections

    def toggle_section(self, index: str) -> None:
        section = next((s for s in self.sections if s.index == index), None)
        if section is None:
            raise ValueError(f"Section {index!r} does not belong to the selected page")

        if any(s.index == index for s in self.selected_sections):
            self.selected_sections = [s for s in self.selected_sections if s.index != index]
        else:
            self.selected_sections = sorted([*self.selected_sections, section], key=section_order_key)

    async def generate_lesson(self) -> None:
        if self.page is None or not self.selected_sections or self.is_generating:
            return

        self._reset_lesson()
        token = self._lesson_token
        page = self.page
        selected = list(self.selected_sections)
        self.is_generating = True
        try:
            snippets = await fetch_snippets(self.wiki, page, selected)
            lesson = await self.synthesizer.synthesize(page.title, snippets)
        except (ContentFetchError, GenerationError) as e:
            if token == self._lesson_token:
                self.lesson_error = f"Failed to generate lesson. Please try again. Error: {e}"
                logger.warning("Lesson generation for %r failed: %s", page.title, e)
            return
        finally:
            if token == self._lesson_token:
                self.is_generating = False

        if token != self._lesson_token:
            logger.debug("Dropping stale lesson for %r", page.title)
            return
        self.lesson = lesson
        self.tutor = TutorSession(
            page.title,
            build_grounding_context(snippets),
            context_chars=self.settings.context_chars,
        )
        self._notify("lesson")

    async def ask_tutor(self, query: str) -> AsyncIterator[str]:
        """Stream one tutor turn; yields the text fragments applied to the transcript."""
        session = self.tutor
        if session is None or not self.tutor_ready:
            return

        async for fragment in session.ask(query, self.chat):
            # A new lesson detaches the old session; its late output is not ours to announce.
            if session is self.tutor:
                self._notify("transcript")
            yield fragment

    def snapshot(self) -> StudioState:
        return StudioState(
            stage=self.stage,
            source=self.source,
            query=self.query,
            searchResults=list(self.search_results),
            isSearching=self.is_searching,
            searchError=self.search_error,
            page=self.page,
            sections=list(self.sections),
            isLoadingSections=self.is_loading_sections,
            sectionsError=self.sections_error,
            selectedSections=list(self.selected_sections),
            lesson=self.lesson,
            isGenerating=self.is_generating,
            lessonError=self.lesson_error,
            chatHistory=self.chat_history,
            isTutorLoading=self.is_tutor_loading,
            tutorError=self.tutor_error,
        )
