from __future__ import annotations

import logging
from urllib.parse import quote

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response, StreamingResponse

from wikilesson.config import Settings
from wikilesson.gemini_client import GeminiClient
from wikilesson.ics_export import generate_ics
from wikilesson.lesson_export import download_filename, lesson_to_docx, lesson_to_text
from wikilesson.orchestrator import LessonStudio
from wikilesson.schemas import (
    SearchRequest,
    SelectPageRequest,
    SessionRequest,
    SourceRequest,
    StudioState,
    ToggleSectionRequest,
    TutorTurnRequest,
)
from wikilesson.sessions import SessionStore
from wikilesson.wiki_client import WikiClient

logger = logging.getLogger(__name__)

settings = Settings.from_env()

app = FastAPI(title="WikiLesson API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Shared by every session; created on first use.
_wiki: WikiClient | None = None
_gemini: GeminiClient | None = None


def _make_studio() -> LessonStudio:
    global _wiki, _gemini
    if _wiki is None:
        _wiki = WikiClient(timeout=settings.wiki_timeout, search_limit=settings.wiki_search_limit)
    if _gemini is None:
        _gemini = GeminiClient(settings)
    logger.debug("Creating lesson studio")
    return LessonStudio(_wiki, _gemini, _gemini, settings=settings)


store = SessionStore(_make_studio, maxsize=settings.session_max, ttl_seconds=settings.session_ttl_seconds)


@app.on_event("shutdown")
async def _shutdown() -> None:
    global _wiki
    if _wiki is not None:
        wiki, _wiki = _wiki, None
        await wiki.aclose()


def _attachment(filename: str) -> dict[str, str]:
    return {"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"}


def _studio(session_id: str) -> LessonStudio:
    return store.get_or_create(session_id)


def _lesson_studio(session_id: str) -> LessonStudio:
    studio = store.get(session_id)
    if studio is None or studio.lesson is None:
        raise HTTPException(status_code=404, detail="No lesson has been generated for this session.")
    return studio


@app.get("/health")
def health() -> dict:
    return {"ok": True}


@app.get("/session", response_model=StudioState)
def session_state(sessionId: str) -> StudioState:
    return _studio(sessionId).snapshot()


@app.post("/source", response_model=StudioState)
def set_source(req: SourceRequest) -> StudioState:
    studio = _studio(req.sessionId)
    studio.set_source(req.source)
    return studio.snapshot()


@app.post("/search", response_model=StudioState)
async def search(req: SearchRequest) -> StudioState:
    studio = _studio(req.sessionId)
    if req.source is not None:
        studio.set_source(req.source)
    await studio.search(req.query)
    return studio.snapshot()


@app.post("/search/clear", response_model=StudioState)
def clear_search(req: SessionRequest) -> StudioState:
    studio = _studio(req.sessionId)
    studio.clear_search()
    return studio.snapshot()


@app.post("/page/select", response_model=StudioState)
async def select_page(req: SelectPageRequest) -> StudioState:
    studio = _studio(req.sessionId)
    try:
        await studio.select_page(req.pageid)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return studio.snapshot()


@app.post("/sections/toggle", response_model=StudioState)
def toggle_section(req: ToggleSectionRequest) -> StudioState:
    studio = _studio(req.sessionId)
    try:
        studio.toggle_section(req.index)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return studio.snapshot()


@app.post("/lesson/generate", response_model=StudioState)
async def generate_lesson(req: SessionRequest) -> StudioState:
    studio = _studio(req.sessionId)
    await studio.generate_lesson()
    return studio.snapshot()


@app.post("/tutor/turn")
async def tutor_turn(req: TutorTurnRequest) -> StreamingResponse:
    """
    Streams the tutor's reply as plain text. The concatenated body equals the
    assistant message recorded in the session transcript.
    """
    studio = _studio(req.sessionId)
    if not studio.tutor_ready:
        raise HTTPException(status_code=409, detail="Generate a lesson before asking the tutor.")
    return StreamingResponse(studio.ask_tutor(req.message), media_type="text/plain; charset=utf-8")


@app.get("/lesson/download.txt")
def download_text(sessionId: str) -> Response:
    studio = _lesson_studio(sessionId)
    url = studio.page.url if studio.page else None
    filename = download_filename(studio.lesson.title, "txt")
    return Response(
        lesson_to_text(studio.lesson, url),
        media_type="text/plain; charset=utf-8",
        headers=_attachment(filename),
    )


@app.get("/lesson/download.docx")
def download_docx(sessionId: str) -> Response:
    studio = _lesson_studio(sessionId)
    url = studio.page.url if studio.page else None
    filename = download_filename(studio.lesson.title, "docx")
    return Response(
        lesson_to_docx(studio.lesson, url),
        media_type="application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        headers=_attachment(filename),
    )


@app.get("/lesson/calendar.ics")
def calendar(sessionId: str) -> Response:
    studio = _lesson_studio(sessionId)
    return Response(
        generate_ics(studio.lesson.title),
        media_type="text/calendar",
        headers={"Content-Disposition": 'attachment; filename="spaced-repetition-reviews.ics"'},
    )
