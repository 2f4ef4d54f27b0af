from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class Source(str, Enum):
    wikipedia = "wikipedia"
    wikibooks = "wikibooks"


class Stage(str, Enum):
    idle = "IDLE"
    searching = "SEARCHING"
    results = "RESULTS"
    sections_loading = "SECTIONS_LOADING"
    sections_ready = "SECTIONS_READY"
    generating = "GENERATING"
    lesson_ready = "LESSON_READY"
    tutor_active = "TUTOR_ACTIVE"


class SearchResult(BaseModel):
    pageid: int
    title: str
    snippet: str = ""


class Section(BaseModel):
    index: str = Field(..., description="Position of the section within its page; the ordering key")
    line: str = Field(..., description="Display title")
    toclevel: int = Field(1, description="Hierarchy level in the table of contents")
    number: str = ""
    anchor: str = ""


class Page(BaseModel):
    src: Source
    pageid: int
    title: str
    url: str


class Snippet(BaseModel):
    title: str
    content: str


class CoreConcept(BaseModel):
    concept: str
    explanation: str


class KeyFormula(BaseModel):
    formula: str = Field(..., description="LaTeX")
    description: str


class WorkedExample(BaseModel):
    problem: str
    solution: str


class Lesson(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    introduction: str
    coreConcepts: list[CoreConcept]
    keyFormulas: list[KeyFormula] = Field(default_factory=list)
    workedExample: WorkedExample
    activeRecallPrompts: list[str]


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"]
    content: str


class StudioState(BaseModel):
    stage: Stage
    source: Source
    query: str
    searchResults: list[SearchResult]
    isSearching: bool
    searchError: str | None = None
    page: Page | None = None
    sections: list[Section]
    isLoadingSections: bool
    sectionsError: str | None = None
    selectedSections: list[Section]
    lesson: Lesson | None = None
    isGenerating: bool
    lessonError: str | None = None
    chatHistory: list[ChatMessage]
    isTutorLoading: bool
    tutorError: str | None = None


class SessionRequest(BaseModel):
    sessionId: str = Field(..., min_length=1)


class SourceRequest(SessionRequest):
    source: Source


class SearchRequest(SessionRequest):
    query: str = Field("", description="Topic to search for")
    source: Source | None = None


class SelectPageRequest(SessionRequest):
    pageid: int


class ToggleSectionRequest(SessionRequest):
    index: str = Field(..., min_length=1)


class TutorTurnRequest(SessionRequest):
    message: str = Field("", description="The learner's question")
