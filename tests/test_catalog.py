"""Tests for kresearch/catalog.py and kresearch/routing.py."""

from unittest.mock import AsyncMock

import pytest

from kresearch.catalog import (
    GEMINI_MODELS,
    OPENROUTER_AUTO,
    ModelSelector,
    clear_incompatible_overrides,
    get_model,
    incompatible_overrides,
    override_advisory,
)
from kresearch.models import AgentRole, GenerationRequest, GenerationResult, ProviderKind, ResearchMode
from kresearch.routing import ModelRouter, select_provider
from tests.conftest import gemini_context


def test_select_provider_by_model_name():
    assert select_provider("gemini-2.5-flash") is ProviderKind.GEMINI
    assert select_provider("models/gemini-2.5-pro") is ProviderKind.GEMINI
    assert select_provider("openrouter/auto") is ProviderKind.OPENROUTER
    assert select_provider("anthropic/claude-3.5-sonnet") is ProviderKind.OPENROUTER


def test_every_role_and_mode_has_a_gemini_default():
    for role in AgentRole:
        for mode in ResearchMode:
            assert "gemini" in GEMINI_MODELS[role][mode]


def test_get_model_prefers_override():
    overrides = {"planner": "gemini-2.5-flash-lite"}
    assert get_model(AgentRole.PLANNER, ResearchMode.DEEP_DIVE, overrides, ProviderKind.GEMINI) == "gemini-2.5-flash-lite"
    assert get_model(AgentRole.PLANNER, ResearchMode.DEEP_DIVE, {}, ProviderKind.GEMINI) == "gemini-2.5-pro"


def test_get_model_uses_openrouter_defaults():
    assert get_model(AgentRole.SEARCHER, ResearchMode.FAST, {}, ProviderKind.OPENROUTER) == OPENROUTER_AUTO


def test_incompatible_overrides_detects_other_family():
    overrides = {"planner": "gemini-2.5-pro", "searcher": "meta-llama/llama-3-70b", "outline": None}
    assert incompatible_overrides(overrides, ProviderKind.GEMINI) == {"searcher": "meta-llama/llama-3-70b"}
    assert incompatible_overrides(overrides, ProviderKind.OPENROUTER) == {"planner": "gemini-2.5-pro"}


def test_override_advisory_is_text_not_error():
    overrides = {"planner": "openai/gpt-4o"}
    advisory = override_advisory(overrides, ProviderKind.GEMINI)
    assert "planner=openai/gpt-4o" in advisory
    assert override_advisory({"planner": None}, ProviderKind.GEMINI) is None


def test_clear_incompatible_overrides_in_place():
    overrides = {"planner": "openai/gpt-4o", "searcher": "gemini-2.5-flash"}
    cleared = clear_incompatible_overrides(overrides, ProviderKind.GEMINI)
    assert cleared == ["planner"]
    assert overrides == {"planner": None, "searcher": "gemini-2.5-flash"}


def test_model_selector_follows_context_switch():
    context = gemini_context()
    selector = ModelSelector(context, {"planner": "gemini-2.5-pro"})
    assert selector(AgentRole.PLANNER, ResearchMode.FAST) == "gemini-2.5-pro"

    cleared = selector.switch_base_url("https://openrouter.ai/api/v1")

    assert cleared == ["planner"]
    assert selector(AgentRole.PLANNER, ResearchMode.FAST) == OPENROUTER_AUTO
    assert selector.advisory() is None


def test_model_selector_same_family_switch_keeps_overrides():
    selector = ModelSelector(gemini_context(), {"planner": "gemini-2.5-pro"})
    assert selector.switch_base_url("https://proxy.example/gemini") == []
    assert selector.overrides["planner"] == "gemini-2.5-pro"


async def test_router_dispatches_by_model_name():
    gemini = AsyncMock()
    gemini.generate = AsyncMock(return_value=GenerationResult(text="from gemini"))
    openrouter = AsyncMock()
    openrouter.generate = AsyncMock(return_value=GenerationResult(text="from openrouter"))
    router = ModelRouter({ProviderKind.GEMINI: gemini, ProviderKind.OPENROUTER: openrouter})

    assert (await router.generate(GenerationRequest(model="gemini-2.5-flash", contents="x"))).text == "from gemini"
    assert (await router.generate(GenerationRequest(model="openrouter/auto", contents="x"))).text == "from openrouter"
    forced = await router.generate(GenerationRequest(model="gemini-2.5-flash", contents="x"), ProviderKind.OPENROUTER)
    assert forced.text == "from openrouter"


@pytest.mark.parametrize("mode", list(ResearchMode))
def test_role_ai_is_always_flash(mode):
    assert GEMINI_MODELS[AgentRole.ROLE_AI][mode] == "gemini-2.5-flash"
