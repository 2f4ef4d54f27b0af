from __future__ import annotations

import asyncio
import itertools
import random

import httpx
import pytest

from fakes import SECTIONS, FakeChat, FakeGenerator, FakeWiki
from wikilesson.config import Settings
from wikilesson.errors import SearchError
from wikilesson.orchestrator import LessonStudio, section_order_key
from wikilesson.schemas import Section, Source, Stage
from wikilesson.wiki_client import WikiClient


def _studio(wiki=None, gen=None, chat=None) -> LessonStudio:
    return LessonStudio(wiki or FakeWiki(), gen or FakeGenerator(), chat or FakeChat(), settings=Settings())


async def _studio_with_lesson(**kwargs) -> LessonStudio:
    studio = _studio(**kwargs)
    await studio.search("binomial")
    await studio.select_page(101)
    studio.toggle_section("3")
    studio.toggle_section("1")
    await studio.generate_lesson()
    assert studio.lesson is not None
    return studio


async def _drain(studio: LessonStudio, query: str) -> list[str]:
    return [f async for f in studio.ask_tutor(query)]


@pytest.mark.asyncio
async def test_selection_is_unique_and_sorted_for_every_toggle_order():
    studio = _studio()
    await studio.search("binomial")
    await studio.select_page(101)
    indices = [s.index for s in SECTIONS]

    for order in itertools.permutations(indices):
        studio.selected_sections = []
        for idx in order:
            studio.toggle_section(idx)
        assert [s.index for s in studio.selected_sections] == ["1", "2", "3", "10"]

    rng = random.Random(7)
    studio.selected_sections = []
    expected: set[str] = set()
    for _ in range(200):
        idx = rng.choice(indices)
        studio.toggle_section(idx)
        expected ^= {idx}
        got = [s.index for s in studio.selected_sections]
        assert len(got) == len(set(got))
        assert got == sorted(expected, key=int)


def test_transcluded_indices_sort_after_numeric_ones():
    keys = sorted(
        [Section(index="T-2", line="b"), Section(index="12", line="c"), Section(index="T-1", line="a"), Section(index="3", line="d")],
        key=section_order_key,
    )
    assert [s.index for s in keys] == ["3", "12", "T-1", "T-2"]


@pytest.mark.asyncio
async def test_toggling_unknown_section_is_rejected():
    studio = _studio()
    await studio.search("binomial")
    await studio.select_page(101)

    with pytest.raises(ValueError):
        studio.toggle_section("99")


@pytest.mark.asyncio
async def test_selecting_a_new_page_clears_selection_and_lesson():
    studio = await _studio_with_lesson()
    async for _ in studio.ask_tutor("hi"):
        pass

    await studio.select_page(202)

    assert studio.selected_sections == []
    assert studio.lesson is None
    assert studio.chat_history == []
    assert studio.page is not None and studio.page.pageid == 202
    assert studio.stage is Stage.sections_ready


@pytest.mark.asyncio
async def test_selecting_a_page_outside_results_is_rejected():
    studio = _studio()
    await studio.search("binomial")

    with pytest.raises(ValueError):
        await studio.select_page(999)


@pytest.mark.asyncio
async def test_lesson_generation_happy_path():
    gen = FakeGenerator()
    studio = await _studio_with_lesson(gen=gen)

    assert studio.lesson.title == "Binomial distribution"
    assert studio.lesson_error is None
    assert studio.stage is Stage.lesson_ready
    assert studio.tutor_ready
    # Snippets reach the synthesizer in document order.
    user = gen.calls[0]["user"]
    assert user.index("### Definitions") < user.index("### Properties")
    assert studio.tutor.context == "Definitions\nText of section 1.\n\nProperties\nText of section 3."


@pytest.mark.asyncio
async def test_generate_requires_page_and_selection():
    gen = FakeGenerator()
    studio = _studio(gen=gen)

    await studio.generate_lesson()
    await studio.search("binomial")
    await studio.select_page(101)
    await studio.generate_lesson()

    assert gen.calls == []
    assert studio.lesson is None
    assert studio.lesson_error is None


@pytest.mark.asyncio
async def test_one_failed_section_fetch_leaves_no_lesson():
    gen = FakeGenerator()
    studio = _studio(wiki=FakeWiki(failing_sections={"2"}), gen=gen)
    await studio.search("binomial")
    await studio.select_page(101)
    for idx in ("1", "2", "3"):
        studio.toggle_section(idx)

    await studio.generate_lesson()

    assert studio.lesson is None
    assert studio.lesson_error.startswith("Failed to generate lesson. Please try again. Error:")
    assert "section 2" in studio.lesson_error
    assert gen.calls == []
    # Earlier stages are untouched.
    assert [s.index for s in studio.selected_sections] == ["1", "2", "3"]
    assert len(studio.sections) == len(SECTIONS)
    assert studio.search_results
    assert not studio.tutor_ready


@pytest.mark.asyncio
async def test_malformed_model_output_leaves_lesson_unset():
    studio = _studio(gen=FakeGenerator("not json"))
    await studio.search("binomial")
    await studio.select_page(101)
    studio.toggle_section("1")

    await studio.generate_lesson()

    assert studio.lesson is None
    assert "malformed JSON" in studio.lesson_error
    assert [s.index for s in studio.selected_sections] == ["1"]


@pytest.mark.asyncio
async def test_new_lesson_resets_chat():
    studio = await _studio_with_lesson()
    await _drain(studio, "question one")
    old_session = studio.tutor
    assert len(studio.chat_history) == 2
    assert studio.stage is Stage.tutor_active

    await studio.generate_lesson()

    assert studio.tutor is not old_session
    assert studio.chat_history == []
    assert studio.tutor_error is None


@pytest.mark.asyncio
async def test_tutor_is_unreachable_without_lesson():
    chat = FakeChat()
    studio = _studio(chat=chat)

    assert await _drain(studio, "hello") == []
    assert chat.calls == []


@pytest.mark.asyncio
async def test_blank_tutor_query_changes_nothing():
    chat = FakeChat()
    studio = await _studio_with_lesson(chat=chat)
    events: list[str] = []
    studio.add_update_hook(events.append)

    assert await _drain(studio, "   ") == []
    assert studio.chat_history == []
    assert chat.calls == []
    assert events == []


@pytest.mark.asyncio
async def test_tutor_failure_sets_error_slot_and_keeps_lesson():
    studio = await _studio_with_lesson(chat=FakeChat(fail_open=True))

    await _drain(studio, "why?")

    assert studio.tutor_error == "AI tutor error: 429 RESOURCE_EXHAUSTED"
    assert studio.lesson is not None
    assert [m.role for m in studio.chat_history] == ["user", "assistant"]


@pytest.mark.asyncio
async def test_update_hooks_fire_after_commits_and_never_raise():
    studio = _studio()
    events: list[str] = []

    def broken(event):
        raise RuntimeError("renderer gone")

    studio.add_update_hook(broken)
    studio.add_update_hook(events.append)
    await studio.search("binomial")
    await studio.select_page(101)
    studio.toggle_section("1")
    await studio.generate_lesson()
    await _drain(studio, "more please")

    assert events[0] == "lesson"
    assert events[1:] == ["transcript"] * len(FakeChat().chunks)


@pytest.mark.asyncio
async def test_search_error_and_empty_results():
    studio = _studio(wiki=FakeWiki(search_error="Network response was not ok"))
    await studio.search("binomial")
    assert studio.search_error == "Search failed. Please try again. Error: Network response was not ok"
    assert not studio.is_searching
    assert studio.stage is Stage.idle

    studio = _studio(wiki=FakeWiki(results=[]))
    await studio.search("zzzxqj")
    assert studio.search_error == "No results found. Try another topic."


@pytest.mark.asyncio
async def test_blank_search_does_not_hit_network_or_reset():
    wiki = FakeWiki()
    studio = _studio(wiki=wiki)
    await studio.search("binomial")

    await studio.search("  ")

    assert wiki.search_calls == [("wikipedia", "binomial")]
    assert studio.search_error == "Please enter a topic to search."
    assert studio.search_results


@pytest.mark.asyncio
async def test_sections_error_keeps_page_and_results():
    studio = _studio(wiki=FakeWiki(sections_error="timeout"))
    await studio.search("binomial")
    await studio.select_page(101)

    assert studio.sections_error == "Failed to load sections. Error: timeout"
    assert studio.page is not None
    assert studio.search_results
    assert studio.stage is Stage.sections_ready


@pytest.mark.asyncio
async def test_malformed_search_payload_lands_in_error_slot():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"query": {"search": [{"title": "no pageid"}]}})

    wiki = WikiClient(httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    studio = _studio(wiki=wiki)

    await studio.search("binomial")

    assert studio.search_error.startswith("Search failed. Please try again.")
    assert studio.search_results == []
    assert not studio.is_searching


@pytest.mark.asyncio
async def test_changing_source_cascades_reset():
    studio = await _studio_with_lesson()

    studio.set_source("wikibooks")

    assert studio.source is Source.wikibooks
    assert studio.search_results == []
    assert studio.page is None
    assert studio.sections == []
    assert studio.selected_sections == []
    assert studio.lesson is None
    assert studio.chat_history == []
    assert studio.stage is Stage.idle


@pytest.mark.asyncio
async def test_same_source_keeps_state():
    studio = await _studio_with_lesson()

    studio.set_source(Source.wikipedia)

    assert studio.lesson is not None


@pytest.mark.asyncio
async def test_clear_search_resets_everything():
    studio = await _studio_with_lesson()

    studio.clear_search()

    assert studio.query == ""
    assert studio.snapshot().model_dump(exclude={"source"}) == _studio().snapshot().model_dump(exclude={"source"})


@pytest.mark.asyncio
async def test_new_search_uses_current_source():
    wiki = FakeWiki()
    studio = _studio(wiki=wiki)
    studio.set_source(Source.wikibooks)

    await studio.search("statistics")

    assert wiki.search_calls == [("wikibooks", "statistics")]
    assert studio.stage is Stage.results


@pytest.mark.asyncio
async def test_stale_search_results_are_dropped():
    release = asyncio.Event()

    class SlowWiki(FakeWiki):
        async def search_pages(self, source, query):
            if query == "slow":
                await release.wait()
                raise SearchError("late failure")
            return await super().search_pages(source, query)

    studio = _studio(wiki=SlowWiki())
    slow = asyncio.create_task(studio.search("slow"))
    await asyncio.sleep(0)
    assert studio.stage is Stage.searching

    await studio.search("binomial")
    release.set()
    await slow

    assert studio.search_error is None
    assert [r.pageid for r in studio.search_results] == [101, 202]
    assert not studio.is_searching


@pytest.mark.asyncio
async def test_stale_sections_are_dropped_after_page_change():
    release = asyncio.Event()

    class SlowWiki(FakeWiki):
        async def fetch_sections(self, source, pageid):
            if pageid == 101:
                await release.wait()
                return [Section(index="1", line="Stale")]
            return await super().fetch_sections(source, pageid)

    studio = _studio(wiki=SlowWiki())
    await studio.search("binomial")
    first = asyncio.create_task(studio.select_page(101))
    await asyncio.sleep(0)
    assert studio.stage is Stage.sections_loading

    await studio.select_page(202)
    release.set()
    await first

    assert studio.page.pageid == 202
    assert [s.line for s in studio.sections] == [s.line for s in SECTIONS]


@pytest.mark.asyncio
async def test_lesson_from_superseded_page_is_dropped():
    release = asyncio.Event()

    class SlowGenerator(FakeGenerator):
        async def generate_json(self, *, system, user, schema):
            await release.wait()
            return await super().generate_json(system=system, user=user, schema=schema)

    studio = _studio(gen=SlowGenerator())
    await studio.search("binomial")
    await studio.select_page(101)
    studio.toggle_section("1")
    pending = asyncio.create_task(studio.generate_lesson())
    await asyncio.sleep(0.01)
    assert studio.stage is Stage.generating

    await studio.select_page(202)
    release.set()
    await pending

    assert studio.lesson is None
    assert studio.lesson_error is None
    assert not studio.is_generating
    assert studio.page.pageid == 202


@pytest.mark.asyncio
async def test_concurrent_generate_is_ignored_while_pending():
    release = asyncio.Event()

    class SlowGenerator(FakeGenerator):
        async def generate_json(self, *, system, user, schema):
            await release.wait()
            return await super().generate_json(system=system, user=user, schema=schema)

    gen = SlowGenerator()
    studio = _studio(gen=gen)
    await studio.search("binomial")
    await studio.select_page(101)
    studio.toggle_section("1")
    pending = asyncio.create_task(studio.generate_lesson())
    await asyncio.sleep(0.01)

    await studio.generate_lesson()
    release.set()
    await pending

    assert len(gen.calls) == 1
    assert studio.lesson is not None


@pytest.mark.asyncio
async def test_snapshot_serializes_full_state():
    studio = await _studio_with_lesson()
    await _drain(studio, "hello")

    state = studio.snapshot().model_dump(mode="json")

    assert state["stage"] == "TUTOR_ACTIVE"
    assert state["page"]["url"] == "https://en.wikipedia.org/wiki/Binomial_distribution"
    assert [s["index"] for s in state["selectedSections"]] == ["1", "3"]
    assert state["lesson"]["title"] == "Binomial distribution"
    assert state["chatHistory"][1]["content"] == "".join(FakeChat().chunks)
    assert state["isTutorLoading"] is False
