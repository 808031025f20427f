"""Shared pytest fixtures and test doubles."""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from config.config_loader import (
    AppConfig,
    PlannerConfig,
    PromptsConfig,
    ProviderConfig,
    ResearchParams,
    SearchConfig,
)
from kresearch.keys import KeyRotator, ProviderContext
from kresearch.models import (
    GenerationRequest,
    GenerationResult,
    ProviderEndpoint,
    SearchOutcome,
    SearchResult,
)
from kresearch.providers.base import RequestExecutor
from kresearch.search.engines import SearchEngine


def gemini_context(keys: list[str] | None = None) -> ProviderContext:
    return ProviderContext(
        endpoint=ProviderEndpoint.from_base_url("https://generativelanguage.googleapis.com"),
        rotator=KeyRotator(keys if keys is not None else ["key-aaaa", "key-bbbb"]),
    )


def openrouter_context(keys: list[str] | None = None) -> ProviderContext:
    return ProviderContext(
        endpoint=ProviderEndpoint.from_base_url("https://openrouter.ai/api/v1"),
        rotator=KeyRotator(keys if keys is not None else ["sk-or-1111", "sk-or-2222"]),
    )


def search_result(title: str, url: str, snippet: str = "", source: str = "Test") -> SearchResult:
    return SearchResult(title=title, url=url, snippet=snippet, source=source)


class RecordingSleep:
    """Injectable replacement for asyncio.sleep that only records delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class ScriptedExecutor(RequestExecutor):
    """RequestExecutor whose upstream attempts follow a script of results or exceptions."""

    provider_name = "scripted"

    def __init__(self, context: ProviderContext, outcomes: list, sleep=None) -> None:
        super().__init__(context, sleep=sleep or RecordingSleep())
        self._outcomes = list(outcomes)
        self.keys_used: list[str] = []

    async def _attempt(self, request: GenerationRequest, key: str) -> GenerationResult:
        self.keys_used.append(key)
        outcome = self._outcomes.pop(0) if len(self._outcomes) > 1 else self._outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class MockRouter:
    """Test double ModelRouter; ``generate`` is an AsyncMock fed from ``texts``."""

    def __init__(self, texts: list[str] | None = None, default: str = "") -> None:
        self._texts = list(texts or [])
        self._default = default
        self.generate = AsyncMock(side_effect=self._next)

    async def _next(self, request: GenerationRequest, provider=None) -> GenerationResult:
        text = self._texts.pop(0) if self._texts else self._default
        return GenerationResult(text=text)

    @property
    def requests(self) -> list[GenerationRequest]:
        return [call.args[0] for call in self.generate.call_args_list]


class StaticEngine(SearchEngine):
    """Engine returning the same canned results for every term."""

    def __init__(self, name: str, results: list[SearchResult] | None = None) -> None:
        self.name = name
        self._results = list(results or [])
        self.terms: list[str] = []

    async def _fetch(self, term: str) -> list[SearchResult]:
        self.terms.append(term)
        return list(self._results)


class HangingEngine(SearchEngine):
    """Engine that never answers within any reasonable timeout."""

    def __init__(self, name: str = "Hanging") -> None:
        self.name = name

    async def _fetch(self, term: str) -> list[SearchResult]:
        await asyncio.sleep(3600)
        return []


class StaticAggregator:
    """Stands in for SearchAggregator; returns one outcome for every query."""

    def __init__(self, outcome: SearchOutcome | None = None, error: Exception | None = None) -> None:
        self._outcome = outcome or SearchOutcome()
        self._error = error
        self.queries: list[str] = []

    async def search(self, raw_query: str) -> SearchOutcome:
        self.queries.append(raw_query)
        if self._error is not None:
            raise self._error
        return self._outcome


def fixed_model(role, mode) -> str:
    return "gemini-2.5-flash"


@pytest.fixture
def sample_prompts_config() -> PromptsConfig:
    return PromptsConfig(
        planner=(
            "{persona_description}\nOther: {other_persona}\n{turn_guidance}\nQuery: {query}\n"
            "Context: {clarified_context}\nFiles: {attachments}\n"
            "Cycles: {search_cycles} (min {min_cycles}, max {max_cycles})\n"
            "Searched: {search_history}\nRead: {read_history}\nSignals: {web_signals}\n{conversation}"
        ),
        query_processor='Return JSON {"searchTerms": [...], "primaryTerm": "...", "context": "..."}',
        single_search='Research query: "{query}"{search_context}',
        synthesis=(
            "Q: {query}\nContext: {clarified_context}\nStopped: {finish_reason}\n"
            "Cycles: {search_cycles}\n{read_history}\nSources:\n{sources}"
        ),
        personas={"Alpha": "You are Agent Alpha.", "Beta": "You are Agent Beta."},
    )


@pytest.fixture
def research_params() -> ResearchParams:
    return ResearchParams(min_cycles=7, max_cycles=20, max_debate_rounds=20)


@pytest.fixture
def sample_app_config(tmp_path: Path, sample_prompts_config: PromptsConfig) -> AppConfig:
    return AppConfig(
        research=ResearchParams(min_cycles=1, max_cycles=3, max_debate_rounds=4),
        providers=ProviderConfig(),
        search=SearchConfig(engines=["Wikipedia", "DuckDuckGo"]),
        planner=PlannerConfig(turn_delay_sec=0, web_signals=False),
        prompts=sample_prompts_config,
        output_dir=tmp_path / "output",
        model_overrides={"planner": None, "searcher": None},
    )
