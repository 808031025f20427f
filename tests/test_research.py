"""Tests for the research session, the single search step and synthesis."""

import json

import pytest

from config.config_loader import PlannerConfig, ResearchParams
from kresearch.models import (
    Citation,
    GenerationResult,
    Persona,
    ResearchMode,
    ResearchResult,
    ResearchUpdate,
    SearchOutcome,
    SearchSummary,
    SessionCancelled,
    UpdateType,
)
from kresearch.planner import DebatePlanner
from kresearch.providers.base import AllKeysExhaustedError
from kresearch.research import ResearchSession
from kresearch.searcher import Searcher
from kresearch.synthesis import format_sources, synthesize_report
from tests.conftest import MockRouter, RecordingSleep, StaticAggregator, fixed_model, search_result


class StubSearcher:
    def __init__(self, fail_on: set[str] | None = None) -> None:
        self.queries: list[str] = []
        self._fail_on = fail_on or set()

    async def execute_single_search(self, query: str, mode: ResearchMode) -> SearchSummary:
        self.queries.append(query)
        if query in self._fail_on:
            raise AllKeysExhaustedError("gemini", RuntimeError("quota"))
        return SearchSummary(
            text=f'Summary for "{query}": facts',
            citations=[Citation("Wikipedia", query, f"https://wiki.example/{query.replace(' ', '_')}")],
        )


def _decision(thought: str, action: str, **extra) -> str:
    return json.dumps({"thought": thought, "action": action, **extra})


def _session(router, prompts, params, searcher) -> ResearchSession:
    planner = DebatePlanner(
        router, fixed_model, prompts, params,
        settings=PlannerConfig(turn_delay_sec=0, web_signals=False), sleep=RecordingSleep(),
    )
    return ResearchSession(planner, searcher, params, mode=ResearchMode.FAST)


# --- ResearchSession ---

async def test_session_runs_search_cycle_then_finishes(sample_prompts_config):
    params = ResearchParams(min_cycles=1, max_cycles=5, max_debate_rounds=5)
    router = MockRouter([
        _decision("Look up prices", "search", queries=["gold price", "gold demand"]),
        _decision("Enough evidence", "finish", finish_reason="Question answered"),
    ])
    searcher = StubSearcher()
    seen: list[ResearchUpdate] = []

    outcome = await _session(router, sample_prompts_config, params, searcher).run("gold outlook", on_update=seen.append)

    assert isinstance(outcome, ResearchResult)
    assert outcome.search_cycles == 1
    assert outcome.finish_reason == "Question answered"
    assert searcher.queries == ["gold price", "gold demand"]
    assert [u.type for u in outcome.updates] == [
        UpdateType.THOUGHT, UpdateType.SEARCH, UpdateType.READ, UpdateType.READ, UpdateType.THOUGHT,
    ]
    assert outcome.updates[1].content == ["gold price", "gold demand"]
    assert seen == outcome.updates
    assert [c.url for c in outcome.citations] == [
        "https://wiki.example/gold_price", "https://wiki.example/gold_demand",
    ]
    # the second debate starts fresh after the search results
    assert outcome.updates[-1].persona is Persona.ALPHA
    second_prompt = router.requests[1].contents.parts[0].text
    assert "Searched: gold price, gold demand" in second_prompt
    assert 'Summary for "gold price": facts' in second_prompt


async def test_session_stops_at_max_cycles(sample_prompts_config):
    params = ResearchParams(min_cycles=0, max_cycles=2, max_debate_rounds=5)
    router = MockRouter(default=_decision("again", "search", queries=["gold"]))
    searcher = StubSearcher()

    outcome = await _session(router, sample_prompts_config, params, searcher).run("gold")

    assert outcome.search_cycles == 2
    assert router.generate.await_count == 2
    assert outcome.finish_reason == "Reached the maximum of 2 search cycles."
    assert len(outcome.citations) == 1


async def test_session_records_failed_search_and_continues(sample_prompts_config):
    params = ResearchParams(min_cycles=0, max_cycles=5, max_debate_rounds=5)
    router = MockRouter([
        _decision("search", "search", queries=["broken", "fine"]),
        _decision("done", "finish"),
    ])
    outcome = await _session(router, sample_prompts_config, params, StubSearcher(fail_on={"broken"})).run("q")

    reads = [u.content for u in outcome.updates if u.type is UpdateType.READ]
    assert reads[0].startswith('Search for "broken" failed:')
    assert reads[1] == 'Summary for "fine": facts'
    assert outcome.finish_reason == "Alpha decided to finish."


async def test_session_cancellation_propagates(sample_prompts_config):
    params = ResearchParams(min_cycles=0, max_cycles=5, max_debate_rounds=5)
    router = MockRouter([_decision("search", "search", queries=["a", "b"])])
    searcher = StubSearcher()
    cancelled = {"now": False}

    def on_update(update):
        if update.type is UpdateType.READ:
            cancelled["now"] = True

    def check_signal():
        if cancelled["now"]:
            raise SessionCancelled()

    with pytest.raises(SessionCancelled):
        await _session(router, sample_prompts_config, params, searcher).run(
            "q", on_update=on_update, check_signal=check_signal,
        )
    assert searcher.queries == ["a"]


async def test_planner_timeout_ends_session(sample_prompts_config):
    params = ResearchParams(min_cycles=0, max_cycles=5, max_debate_rounds=2)
    router = MockRouter(default=_decision("hmm", "continue_debate"))
    outcome = await _session(router, sample_prompts_config, params, StubSearcher()).run("q")
    assert outcome.finish_reason == "Planning debate timed out."
    assert outcome.search_cycles == 0


# --- Searcher ---

async def test_execute_single_search_inlines_results_and_merges_citations(sample_prompts_config):
    web = SearchOutcome(
        results=[search_result("Gold hits record", "https://news.example/gold", "up 2%", "News")],
        citations=[Citation("News", "Gold hits record", "https://news.example/gold")],
    )
    router = MockRouter()
    router.generate.side_effect = None
    router.generate.return_value = GenerationResult(
        text="Gold is at a record.",
        citations=[
            Citation("Google Search", "dup", "https://news.example/gold"),
            Citation("Google Search", "Reuters", "https://reuters.example/gold"),
        ],
    )
    searcher = Searcher(router, StaticAggregator(web), fixed_model, sample_prompts_config.single_search)

    summary = await searcher.execute_single_search("gold price", ResearchMode.BALANCED)

    assert summary.text == 'Summary for "gold price": Gold is at a record.'
    assert [c.url for c in summary.citations] == ["https://news.example/gold", "https://reuters.example/gold"]
    assert summary.citations[0].source == "News"
    request = router.requests[0]
    assert request.google_search is True
    assert request.contents.startswith('Research query: "gold price"')
    assert "Web Search Results (multi-engine):" in request.contents
    assert "https://news.example/gold" in request.contents


async def test_execute_single_search_survives_aggregator_failure(sample_prompts_config):
    router = MockRouter(["model-only answer"])
    searcher = Searcher(
        router, StaticAggregator(error=RuntimeError("down")), fixed_model, sample_prompts_config.single_search,
    )
    summary = await searcher.execute_single_search("gold", ResearchMode.FAST)
    assert summary.text == 'Summary for "gold": model-only answer'
    assert summary.citations == []
    assert router.requests[0].contents == 'Research query: "gold"'


# --- synthesis ---

def _research_result() -> ResearchResult:
    return ResearchResult(
        query="gold outlook",
        updates=[
            ResearchUpdate(UpdateType.THOUGHT, "plan", Persona.ALPHA),
            ResearchUpdate(UpdateType.READ, "Gold rose 2%."),
        ],
        citations=[Citation("News", "Gold hits record", "https://news.example/gold")],
        finish_reason="Question answered",
        search_cycles=1,
    )


def test_format_sources_numbers_citations():
    assert format_sources(_research_result().citations) == "[1] Gold hits record (News) - https://news.example/gold"


async def test_synthesize_report_uses_findings_and_sources(sample_prompts_config):
    router = MockRouter(["# Report\nGold is up [1]."])
    report = await synthesize_report(_research_result(), router, fixed_model, sample_prompts_config)

    assert report.startswith("# Report")
    prompt = router.requests[0].contents
    assert "Q: gold outlook" in prompt
    assert "Gold rose 2%." in prompt
    assert "plan" not in prompt
    assert "[1] Gold hits record" in prompt


async def test_synthesize_report_rejects_empty_output(sample_prompts_config):
    router = MockRouter(["   "])
    with pytest.raises(RuntimeError, match="empty content"):
        await synthesize_report(_research_result(), router, fixed_model, sample_prompts_config)
