"""Default models per role and mode, plus model-override compatibility checks."""

import logging

from kresearch.keys import ProviderContext
from kresearch.models import AgentRole, ProviderKind, ResearchMode
from kresearch.routing import select_provider

logger = logging.getLogger(__name__)

_PRO = "gemini-2.5-pro"
_FLASH = "gemini-2.5-flash"
_LITE = "gemini-2.5-flash-lite"


def _modes(balanced: str, deep_dive: str, fast: str, ultra_fast: str) -> dict[ResearchMode, str]:
    return {
        ResearchMode.BALANCED: balanced,
        ResearchMode.DEEP_DIVE: deep_dive,
        ResearchMode.FAST: fast,
        ResearchMode.ULTRA_FAST: ultra_fast,
    }


GEMINI_MODELS: dict[AgentRole, dict[ResearchMode, str]] = {
    AgentRole.PLANNER: _modes(_PRO, _PRO, _FLASH, _LITE),
    AgentRole.SEARCHER: _modes(_LITE, _PRO, _FLASH, _LITE),
    AgentRole.OUTLINE: _modes(_FLASH, _PRO, _FLASH, _LITE),
    AgentRole.SYNTHESIZER: _modes(_FLASH, _PRO, _FLASH, _LITE),
    AgentRole.CLARIFICATION: _modes(_FLASH, _PRO, _FLASH, _LITE),
    AgentRole.VISUALIZER: _modes(_FLASH, _PRO, _FLASH, _LITE),
    AgentRole.ROLE_AI: _modes(_FLASH, _FLASH, _FLASH, _FLASH),
}

OPENROUTER_AUTO = "openrouter/auto"

OPENROUTER_MODELS: dict[AgentRole, dict[ResearchMode, str]] = {
    role: {mode: OPENROUTER_AUTO for mode in ResearchMode} for role in AgentRole
}


def default_model(role: AgentRole, mode: ResearchMode, kind: ProviderKind) -> str:
    table = OPENROUTER_MODELS if kind is ProviderKind.OPENROUTER else GEMINI_MODELS
    return table[role][mode]


def get_model(
    role: AgentRole,
    mode: ResearchMode,
    overrides: dict[str, str | None],
    kind: ProviderKind,
) -> str:
    """User override for ``role`` if set, else the active provider's default."""
    override = overrides.get(role.value)
    if override:
        return override
    return default_model(role, mode, kind)


def _is_incompatible(model: str, kind: ProviderKind) -> bool:
    return select_provider(model) is not kind


def incompatible_overrides(overrides: dict[str, str | None], kind: ProviderKind) -> dict[str, str]:
    """Overrides whose model name belongs to the other provider family."""
    return {role: model for role, model in overrides.items() if model and _is_incompatible(model, kind)}


def clear_incompatible_overrides(overrides: dict[str, str | None], kind: ProviderKind) -> list[str]:
    """Reset mismatched overrides in place. Returns the roles that were cleared."""
    cleared = list(incompatible_overrides(overrides, kind))
    for role in cleared:
        logger.info("Cleared incompatible model override for %s: %s", role, overrides[role])
        overrides[role] = None
    return cleared


def override_advisory(overrides: dict[str, str | None], kind: ProviderKind) -> str | None:
    """User-facing note about mismatched overrides, or None when all is well."""
    mismatched = incompatible_overrides(overrides, kind)
    if not mismatched:
        return None
    listing = ", ".join(f"{role}={model}" for role, model in sorted(mismatched.items()))
    return (
        f"Some model overrides do not match the active {kind.value} provider ({listing}). "
        "Reset them to use the provider defaults."
    )


class ModelSelector:
    """Resolves the model for a role against the provider the context currently points at."""

    def __init__(self, context: ProviderContext, overrides: dict[str, str | None] | None = None) -> None:
        self._context = context
        self.overrides: dict[str, str | None] = dict(overrides or {})

    def __call__(self, role: AgentRole, mode: ResearchMode) -> str:
        return get_model(role, mode, self.overrides, self._context.kind)

    def advisory(self) -> str | None:
        return override_advisory(self.overrides, self._context.kind)

    def reset_incompatible(self) -> list[str]:
        return clear_incompatible_overrides(self.overrides, self._context.kind)

    def switch_base_url(self, base_url: str) -> list[str]:
        """Repoint the context; a provider-family change clears mismatched overrides."""
        if self._context.switch_base_url(base_url):
            return self.reset_incompatible()
        return []
