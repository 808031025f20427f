"""One search step: multi-engine web results summarized by the searcher model."""

import logging
from collections.abc import Callable

from kresearch.models import AgentRole, GenerationRequest, ResearchMode, SearchOutcome, SearchSummary
from kresearch.routing import ModelRouter
from kresearch.search.aggregator import SearchAggregator, dedupe_citations, format_search_results

logger = logging.getLogger(__name__)


class Searcher:
    """Runs one search query: aggregated web results summarized by the searcher model."""

    def __init__(
        self,
        router: ModelRouter,
        aggregator: SearchAggregator,
        select_model: Callable[[AgentRole, ResearchMode], str],
        prompt_template: str,
    ) -> None:
        self._router = router
        self._aggregator = aggregator
        self._select_model = select_model
        self._prompt_template = prompt_template

    async def execute_single_search(self, query: str, mode: ResearchMode) -> SearchSummary:
        """Summarize current information for ``query``.

        Web results are inlined into the prompt and the search tool is
        enabled as well; citations from both are merged by url.

        Raises:
            ProviderError: If the summarizing model call fails.
        """
        try:
            web = await self._aggregator.search(query)
        except Exception as exc:
            logger.warning("Web search failed, relying on model-only summarization: %s", exc)
            web = SearchOutcome()

        search_context = ""
        if web.results:
            search_context = f"\n\nWeb Search Results (multi-engine):\n{format_search_results(web.results)}"

        response = await self._router.generate(
            GenerationRequest(
                model=self._select_model(AgentRole.SEARCHER, mode),
                contents=self._prompt_template.format(query=query, search_context=search_context),
                google_search=True,
            )
        )
        citations = dedupe_citations(web.citations + response.citations)
        return SearchSummary(text=f'Summary for "{query}": {response.text}', citations=citations)
