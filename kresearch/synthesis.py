"""Final synthesis: turn the research log into a markdown report."""

import logging
from collections.abc import Callable

from config.config_loader import PromptsConfig
from kresearch.models import (
    AgentRole,
    Citation,
    GenerationRequest,
    ResearchMode,
    ResearchResult,
    UpdateType,
)
from kresearch.routing import ModelRouter

logger = logging.getLogger(__name__)


def format_sources(citations: list[Citation]) -> str:
    """Numbered source list used for [n] references."""
    return "\n".join(f"[{i}] {c.title} ({c.source}) - {c.url}" for i, c in enumerate(citations, 1))


def format_findings(result: ResearchResult) -> str:
    return "\n\n".join(str(u.content) for u in result.updates if u.type is UpdateType.READ)


async def synthesize_report(
    result: ResearchResult,
    router: ModelRouter,
    select_model: Callable[[AgentRole, ResearchMode], str],
    prompts: PromptsConfig,
    mode: ResearchMode = ResearchMode.BALANCED,
    clarified_context: str = "",
) -> str:
    """Ask the synthesizer model for the final report.

    Raises:
        ProviderError: If the synthesizer call fails.
        RuntimeError: If the synthesizer returns empty content.
    """
    prompt = prompts.synthesis.format(
        query=result.query,
        clarified_context=clarified_context or "None",
        finish_reason=result.finish_reason or "Not given",
        search_cycles=result.search_cycles,
        read_history=format_findings(result) or "No findings were gathered.",
        sources=format_sources(result.citations) or "None",
    )

    model = select_model(AgentRole.SYNTHESIZER, mode)
    logger.info("Running synthesis via %s", model)
    response = await router.generate(GenerationRequest(model=model, contents=prompt))

    if not response.text.strip():
        raise RuntimeError(f"Synthesizer {model} returned empty content")
    return response.text
