"""Research session: planner debate, then the requested searches, until done."""

import logging
from collections.abc import Callable, Sequence

from config.config_loader import ResearchParams
from kresearch.models import (
    Attachment,
    Citation,
    ResearchMode,
    ResearchResult,
    ResearchUpdate,
    UpdateType,
)
from kresearch.planner import DebatePlanner
from kresearch.providers.base import ProviderError
from kresearch.search.aggregator import dedupe_citations
from kresearch.searcher import Searcher

logger = logging.getLogger(__name__)


def _no_signal() -> None:
    return None


class ResearchSession:
    """One research run over a single provider context."""

    def __init__(
        self,
        planner: DebatePlanner,
        searcher: Searcher,
        params: ResearchParams,
        mode: ResearchMode = ResearchMode.BALANCED,
    ) -> None:
        self._planner = planner
        self._searcher = searcher
        self._params = params
        self._mode = mode

    async def run(
        self,
        query: str,
        on_update: Callable[[ResearchUpdate], None] | None = None,
        check_signal: Callable[[], None] | None = None,
        clarified_context: str = "",
        attachments: Sequence[Attachment] = (),
    ) -> ResearchResult:
        """Alternate planning and searching.

        Args:
            query: The user's research question.
            on_update: Called with every update as it is appended to the log.
            check_signal: Cancellation check-point; may raise SessionCancelled.
            clarified_context: Extra context gathered before research started.
            attachments: Files passed to the planner as inline data.

        Returns:
            ResearchResult with the full update log and de-duplicated citations.

        Raises:
            SessionCancelled: If ``check_signal`` raises it.
            ProviderError: If a planner call fails.
        """
        check = check_signal or _no_signal
        updates: list[ResearchUpdate] = []
        citations: list[Citation] = []

        def emit(update: ResearchUpdate) -> None:
            updates.append(update)
            if on_update:
                on_update(update)

        search_cycles = 0
        finish_reason: str | None = None

        while True:
            check()
            if search_cycles >= self._params.max_cycles:
                finish_reason = f"Reached the maximum of {self._params.max_cycles} search cycles."
                logger.info(finish_reason)
                break

            outcome = await self._planner.run(
                query,
                list(updates),
                emit,
                check,
                search_cycles=search_cycles,
                mode=self._mode,
                clarified_context=clarified_context,
                attachments=attachments,
            )
            if outcome.should_finish:
                finish_reason = outcome.finish_reason
                break

            emit(ResearchUpdate(type=UpdateType.SEARCH, content=list(outcome.search_queries)))
            search_cycles += 1
            logger.info("Search cycle %d: %s", search_cycles, outcome.search_queries)

            for search_query in outcome.search_queries:
                check()
                try:
                    summary = await self._searcher.execute_single_search(search_query, self._mode)
                except ProviderError as exc:
                    logger.warning("Search for %r failed: %s", search_query, exc)
                    emit(ResearchUpdate(type=UpdateType.READ, content=f'Search for "{search_query}" failed: {exc}'))
                    continue
                emit(ResearchUpdate(type=UpdateType.READ, content=summary.text))
                citations.extend(summary.citations)

        return ResearchResult(
            query=query,
            updates=updates,
            citations=dedupe_citations(citations),
            finish_reason=finish_reason,
            search_cycles=search_cycles,
        )
