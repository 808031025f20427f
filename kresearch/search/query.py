"""Turn a free-form research query into a few focused search terms."""

import asyncio
import logging
import re
from collections.abc import Callable

from kresearch.models import AgentRole, GenerationRequest, ProcessedQuery, ResearchMode
from kresearch.parsing import extract_json_object
from kresearch.routing import ModelRouter

logger = logging.getLogger(__name__)

SHORT_QUERY_MAX_CHARS = 30
SHORT_QUERY_MAX_WORDS = 3
MAX_SEARCH_TERMS = 4

STOP_WORDS = frozenset({
    "please", "write", "prepare", "create", "make", "give", "provide", "show", "tell", "explain",
    "full", "complete", "comprehensive", "detailed", "report", "analysis",
    "how", "what", "when", "where", "why", "the", "and", "for", "with",
})


def keyword_tokens(text: str) -> list[str]:
    """Lower-cased tokens longer than two chars, minus instruction and filler words."""
    words = re.sub(r"[^\w\s]", " ", text.lower()).split()
    return [w for w in words if len(w) > 2 and w not in STOP_WORDS]


def passthrough(query: str) -> ProcessedQuery:
    words = query.split(" ")
    return ProcessedQuery(
        original_query=query,
        search_terms=(query,),
        primary_term=words[0],
        context=" ".join(words[1:]),
    )


def manual_terms(query: str) -> ProcessedQuery:
    """Deterministic fallback: first word, first+second, first+third."""
    words = keyword_tokens(query)
    terms: list[str] = []
    if words:
        terms.append(words[0])
        if len(words) > 1:
            terms.append(f"{words[0]} {words[1]}")
        if len(words) > 2:
            terms.append(f"{words[0]} {words[2]}")
    if not terms:
        terms.append(query[:50])
    return ProcessedQuery(
        original_query=query,
        search_terms=tuple(terms),
        primary_term=words[0] if words else query.split(" ")[0],
        context=" ".join(words[1:3]),
    )


def _clean_terms(raw_terms: object) -> list[str]:
    if not isinstance(raw_terms, list):
        return []
    terms = [t.strip() for t in raw_terms if isinstance(t, str)]
    return [t for t in terms if t]


class QueryProcessor:
    """Short queries pass through; longer ones go through one LLM call with a manual fallback."""

    def __init__(
        self,
        router: ModelRouter,
        select_model: Callable[[AgentRole, ResearchMode], str],
        system_prompt: str,
        timeout_sec: float = 20.0,
    ) -> None:
        self._router = router
        self._select_model = select_model
        self._system_prompt = system_prompt
        self._timeout_sec = timeout_sec

    async def process(self, raw_query: str) -> ProcessedQuery:
        query = raw_query.strip()
        if len(query) <= SHORT_QUERY_MAX_CHARS and len(query.split(" ")) <= SHORT_QUERY_MAX_WORDS:
            return passthrough(query)

        try:
            processed = await asyncio.wait_for(self._ask_model(query), timeout=self._timeout_sec)
        except Exception as exc:
            logger.warning("Query processing failed, using manual fallback: %s", exc)
            return manual_terms(query)
        if processed is None:
            logger.warning("Query processing returned no usable terms, using manual fallback")
            return manual_terms(query)
        return processed

    async def _ask_model(self, query: str) -> ProcessedQuery | None:
        result = await self._router.generate(
            GenerationRequest(
                model=self._select_model(AgentRole.SEARCHER, ResearchMode.FAST),
                contents=f'User query: "{query}"',
                system_instruction=self._system_prompt,
                temperature=0.3,
                max_output_tokens=200,
            )
        )
        logger.debug("Query processing response: %s", result.text)
        parsed = extract_json_object(result.text)
        if parsed is None:
            return None
        terms = _clean_terms(parsed.get("searchTerms"))
        if not terms:
            return None
        primary = parsed.get("primaryTerm")
        context = parsed.get("context")
        return ProcessedQuery(
            original_query=query,
            search_terms=tuple(terms[:MAX_SEARCH_TERMS]),
            primary_term=primary.strip() if isinstance(primary, str) and primary.strip() else terms[0],
            context=context if isinstance(context, str) else "",
        )
