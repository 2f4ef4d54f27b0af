from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx
from bs4 import BeautifulSoup

from wikilesson.errors import ContentFetchError, SearchError, SectionLoadError
from wikilesson.schemas import Page, SearchResult, Section, Source

logger = logging.getLogger(__name__)

API_ENDPOINTS: dict[Source, str] = {
    Source.wikipedia: "https://en.wikipedia.org/w/api.php",
    Source.wikibooks: "https://en.wikibooks.org/w/api.php",
}

USER_AGENT = "WikiLesson/1.0 (lesson generator; +https://example.com)"

# Raised while mapping a well-formed JSON body that lacks the expected fields.
_PAYLOAD_ERRORS = (KeyError, TypeError, ValueError, AttributeError)


def page_url(source: Source, title: str) -> str:
    return f"https://en.{source.value}.org/wiki/{quote(title.replace(' ', '_'))}"


def make_page(source: Source, result: SearchResult) -> Page:
    return Page(src=source, pageid=result.pageid, title=result.title, url=page_url(source, result.title))


def _plain(html: str) -> str:
    # Search snippets carry <span class="searchmatch"> highlighting.
    return BeautifulSoup(html or "", "html.parser").get_text()


class WikiClient:
    """
    Thin async client for the MediaWiki Action API of Wikipedia and Wikibooks.

    Each call raises the typed error of the pipeline stage it serves:
    SearchError, SectionLoadError or ContentFetchError.
    """

    def __init__(
        self,
        http: httpx.AsyncClient | None = None,
        *,
        timeout: float = 20.0,
        search_limit: int = 10,
    ) -> None:
        self._http = http or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )
        self.search_limit = search_limit

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _get_json(self, source: Source, params: dict[str, Any]) -> dict[str, Any]:
        try:
            endpoint = API_ENDPOINTS[Source(source)]
        except (KeyError, ValueError):
            raise ValueError(f"Unsupported source: {source!r}")

        r = await self._http.get(endpoint, params={**params, "format": "json", "origin": "*"})
        r.raise_for_status()
        try:
            data = r.json()
        except ValueError as e:
            raise httpx.DecodingError(f"Invalid JSON from MediaWiki API: {e}") from e
        if not isinstance(data, dict):
            raise httpx.DecodingError(f"Unexpected MediaWiki payload: {type(data).__name__}")
        if "error" in data:
            err = data["error"] or {}
            raise httpx.HTTPError(f"{err.get('code', 'error')}: {err.get('info', 'MediaWiki API error')}")
        return data

    async def search_pages(self, source: Source, query: str) -> list[SearchResult]:
        params = {
            "action": "query",
            "list": "search",
            "srsearch": query,
            "srlimit": self.search_limit,
            "srprop": "snippet",
        }
        try:
            data = await self._get_json(source, params)
        except httpx.HTTPError as e:
            raise SearchError(str(e) or type(e).__name__) from e

        try:
            hits = (data.get("query") or {}).get("search") or []
            return [
                SearchResult(pageid=h["pageid"], title=h["title"], snippet=_plain(h.get("snippet", "")))
                for h in hits
            ]
        except _PAYLOAD_ERRORS as e:
            raise SearchError(f"Malformed search response: {e!r}") from e

    async def fetch_sections(self, source: Source, pageid: int) -> list[Section]:
        params = {"action": "parse", "pageid": pageid, "prop": "sections", "formatversion": 2}
        try:
            data = await self._get_json(source, params)
        except httpx.HTTPError as e:
            raise SectionLoadError(str(e) or type(e).__name__) from e

        try:
            sections = (data.get("parse") or {}).get("sections") or []
            return [
                Section(
                    index=str(s["index"]),
                    line=_plain(s.get("line", "")),
                    toclevel=int(s.get("toclevel") or 1),
                    number=str(s.get("number", "")),
                    anchor=s.get("anchor", ""),
                )
                for s in sections
            ]
        except _PAYLOAD_ERRORS as e:
            raise SectionLoadError(f"Malformed sections response: {e!r}") from e

    async def fetch_section_html(self, source: Source, pageid: int, index: str) -> str:
        params = {
            "action": "parse",
            "pageid": pageid,
            "prop": "text",
            "section": index,
            "formatversion": 2,
        }
        try:
            data = await self._get_json(source, params)
        except httpx.HTTPError as e:
            raise ContentFetchError(f"section {index}: {str(e) or type(e).__name__}") from e

        try:
            text = (data.get("parse") or {}).get("text") or ""
        except AttributeError as e:
            raise ContentFetchError(f"section {index}: malformed parse response") from e
        if not isinstance(text, str):
            raise ContentFetchError(f"section {index}: malformed parse response")
        return text
