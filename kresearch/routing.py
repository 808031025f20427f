"""Route a generation request to the Gemini or OpenRouter executor."""

import logging

from kresearch.models import GenerationRequest, GenerationResult, ProviderKind
from kresearch.providers.base import RequestExecutor

logger = logging.getLogger(__name__)

GEMINI_MODEL_MARKER = "gemini"


def select_provider(model: str) -> ProviderKind:
    """Naming convention only: any model containing "gemini" goes to Gemini."""
    if GEMINI_MODEL_MARKER in model:
        return ProviderKind.GEMINI
    return ProviderKind.OPENROUTER


class ModelRouter:
    """Single ``generate`` entry point used by every caller in the pipeline."""

    def __init__(self, executors: dict[ProviderKind, RequestExecutor]) -> None:
        self._executors = executors

    async def generate(
        self,
        request: GenerationRequest,
        provider: ProviderKind | None = None,
    ) -> GenerationResult:
        kind = provider or select_provider(request.model)
        logger.debug("Routing %s to %s", request.model, kind.value)
        return await self._executors[kind].generate(request)
