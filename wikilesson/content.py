from __future__ import annotations

import asyncio
import logging
import re
from typing import Protocol, Sequence

from bs4 import BeautifulSoup

from wikilesson.errors import ContentFetchError
from wikilesson.schemas import Page, Section, Snippet, Source

logger = logging.getLogger(__name__)

# Non-prose parts of a rendered MediaWiki section.
_DROP_SELECTORS = ",".join(
    [
        "sup.reference",
        ".mw-editsection",
        ".infobox",
        ".navbox",
        "style",
        "script",
        ".thumb",
        ".gallery",
        "table",
    ]
)

_WS_RE = re.compile(r"\s+")


class SectionSource(Protocol):
    async def fetch_section_html(self, source: Source, pageid: int, index: str) -> str: ...


def sanitize_section_html(html: str) -> str:
    soup = BeautifulSoup(html or "", "html.parser")
    for tag in soup.select(_DROP_SELECTORS):
        tag.decompose()
    text = soup.get_text()
    return _WS_RE.sub(" ", text).strip()


async def fetch_snippets(wiki: SectionSource, page: Page, sections: Sequence[Section]) -> list[Snippet]:
    """
    Fetch and sanitize every section concurrently.

    Results come back in the order of `sections`, whatever order the requests
    finish in. Any failure aborts the batch with ContentFetchError.
    """

    async def one(section: Section) -> Snippet:
        html = await wiki.fetch_section_html(page.src, page.pageid, section.index)
        return Snippet(title=section.line, content=sanitize_section_html(html))

    try:
        snippets = list(await asyncio.gather(*(one(s) for s in sections)))
    except ContentFetchError:
        raise
    except Exception as e:
        raise ContentFetchError(str(e) or type(e).__name__) from e

    logger.debug("Fetched %d sections of page %s", len(snippets), page.pageid)
    return snippets


def build_grounding_context(snippets: Sequence[Snippet]) -> str:
    return "\n\n".join(f"{s.title}\n{s.content}" for s in snippets)
