"""Fan a query out across every search engine, then merge, dedupe and rank."""

import asyncio
import logging

from kresearch.models import Citation, EngineResult, ProcessedQuery, SearchOutcome, SearchResult
from kresearch.search.engines import FallbackEngine, SearchEngine
from kresearch.search.query import QueryProcessor

logger = logging.getLogger(__name__)

DEFAULT_ENGINE_TIMEOUT_SEC = 15.0
DEFAULT_MAX_TERMS = 3


def dedupe_results(results: list[SearchResult]) -> list[SearchResult]:
    """Drop results whose url, or (lower-cased title, source), matches any earlier result. First wins.

    Keys of dropped duplicates still count as seen.
    """
    seen_urls: set[str] = set()
    seen_titles: set[tuple[str, str]] = set()
    unique: list[SearchResult] = []
    for result in results:
        title_key = (result.title.lower(), result.source)
        duplicate = result.url in seen_urls or title_key in seen_titles
        seen_urls.add(result.url)
        seen_titles.add(title_key)
        if not duplicate:
            unique.append(result)
    return unique


def dedupe_citations(citations: list[Citation]) -> list[Citation]:
    unique: dict[str, Citation] = {}
    for citation in citations:
        unique.setdefault(citation.url, citation)
    return list(unique.values())


def relevance(result: SearchResult, terms: tuple[str, ...]) -> int:
    """2 points per term in the title, 1 per term in the snippet."""
    title = result.title.lower()
    snippet = result.snippet.lower()
    score = 0
    for term in terms:
        needle = term.lower()
        if needle in title:
            score += 2
        if needle in snippet:
            score += 1
    return score


def rank_results(results: list[SearchResult], terms: tuple[str, ...]) -> list[SearchResult]:
    # sorted() is stable, so ties keep collection order
    return sorted(results, key=lambda r: relevance(r, terms), reverse=True)


def format_search_results(results: list[SearchResult]) -> str:
    return "\n".join(f"- {r.title} ({r.source})\n  {r.url}\n  {r.snippet}" for r in results)


class SearchAggregator:
    """Multi-engine web search that degrades to synthetic links instead of failing."""

    def __init__(
        self,
        processor: QueryProcessor,
        engines: list[SearchEngine],
        fallback: FallbackEngine | None = None,
        engine_timeout_sec: float = DEFAULT_ENGINE_TIMEOUT_SEC,
        max_terms: int = DEFAULT_MAX_TERMS,
    ) -> None:
        self._processor = processor
        self._engines = engines
        self._fallback = fallback or FallbackEngine()
        self._engine_timeout_sec = engine_timeout_sec
        self._max_terms = max_terms

    async def _run_engine(self, engine: SearchEngine, term: str) -> EngineResult:
        try:
            results = await asyncio.wait_for(engine.fetch(term), timeout=self._engine_timeout_sec)
        except asyncio.TimeoutError:
            logger.warning("[%s] timed out after %.0fs for %r", engine.name, self._engine_timeout_sec, term)
            return EngineResult(engine=engine.name, error="timeout")
        except Exception as exc:
            logger.warning("[%s] failed for %r: %s", engine.name, term, exc)
            return EngineResult(engine=engine.name, error=str(exc))
        return EngineResult(engine=engine.name, results=tuple(results))

    async def _search_term(self, term: str) -> list[SearchResult]:
        outcomes = await asyncio.gather(*(self._run_engine(e, term) for e in self._engines))
        merged: list[SearchResult] = []
        for outcome in outcomes:  # declaration order
            logger.debug("[%s] %r: %d results", outcome.engine, term, len(outcome.results))
            merged.extend(outcome.results)
        return merged

    async def search(self, raw_query: str) -> SearchOutcome:
        """Ranked, de-duplicated results plus url-unique citations. Never raises."""
        if not raw_query or not raw_query.strip():
            logger.warning("Empty query provided to web search")
            return SearchOutcome()

        try:
            return await self._search(raw_query)
        except Exception as exc:
            logger.error("Web search failed for %r: %s", raw_query, exc)
            return SearchOutcome()

    async def _search(self, raw_query: str) -> SearchOutcome:
        logger.info("Web search for %r", raw_query)
        try:
            processed = await self._processor.process(raw_query)
        except Exception as exc:
            logger.warning("Query processing raised, searching the raw query: %s", exc)
            query = raw_query.strip()
            processed = ProcessedQuery(query, (query,), query.split(" ")[0], "")
        logger.info("Processed into %d search terms: %s", len(processed.search_terms), processed.search_terms)

        results: list[SearchResult] = []
        citations: list[Citation] = []
        for term in processed.search_terms[: self._max_terms]:
            term_results = await self._search_term(term)
            results.extend(term_results)
            citations.extend(Citation.from_result(r) for r in term_results)

        if not results:
            logger.info("No results from any engine, using fallback links")
            results = self._fallback.suggest(processed.original_query)

        ranked = rank_results(dedupe_results(results), processed.search_terms)
        unique_citations = dedupe_citations(citations)
        logger.info("Web search done: %d results, %d citations", len(ranked), len(unique_citations))
        return SearchOutcome(results=ranked, citations=unique_citations)
