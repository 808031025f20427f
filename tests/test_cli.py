"""Tests for pipeline wiring and the click entry point in kresearch/cli.py."""

import httpx
import pytest
from click.testing import CliRunner

from kresearch.cli import _show_override_advisory, build_pipeline, main
from kresearch.models import AgentRole, ProviderKind, ResearchMode
from kresearch.providers.gemini import GeminiExecutor
from kresearch.providers.openrouter import OpenRouterExecutor
from tests.conftest import RecordingSleep


@pytest.fixture
def gemini_env(monkeypatch):
    monkeypatch.setenv("API_KEY", "key-aaaa, key-bbbb")
    monkeypatch.delenv("API_BASE_URL", raising=False)


async def test_build_pipeline_wires_gemini_context(sample_app_config, gemini_env):
    async with httpx.AsyncClient() as http:
        pipeline = build_pipeline(sample_app_config, http, ResearchMode.FAST, sleep=RecordingSleep())

    assert pipeline.context.kind is ProviderKind.GEMINI
    assert pipeline.context.rotator.keys() == ["key-aaaa", "key-bbbb"]
    executors = pipeline.router._executors
    assert isinstance(executors[ProviderKind.GEMINI], GeminiExecutor)
    assert isinstance(executors[ProviderKind.OPENROUTER], OpenRouterExecutor)
    assert [e.name for e in pipeline.aggregator._engines] == ["Wikipedia", "DuckDuckGo"]
    assert pipeline.selector(AgentRole.PLANNER, ResearchMode.FAST) == "gemini-2.5-flash"


async def test_build_pipeline_base_url_switch_clears_overrides(sample_app_config, gemini_env):
    sample_app_config.model_overrides["planner"] = "gemini-2.5-pro"
    async with httpx.AsyncClient() as http:
        pipeline = build_pipeline(
            sample_app_config, http, ResearchMode.FAST, base_url="https://openrouter.ai/api/v1",
        )

    assert pipeline.context.kind is ProviderKind.OPENROUTER
    assert pipeline.selector.overrides["planner"] is None
    assert pipeline.selector(AgentRole.PLANNER, ResearchMode.FAST) == "openrouter/auto"


async def test_override_advisory_printed_without_reset(sample_app_config, gemini_env, capsys):
    sample_app_config.model_overrides["searcher"] = "openai/gpt-4o"
    async with httpx.AsyncClient() as http:
        pipeline = build_pipeline(sample_app_config, http, ResearchMode.FAST)

    _show_override_advisory(pipeline.selector, reset_overrides=False)

    assert "searcher=openai/gpt-4o" in capsys.readouterr().out
    assert pipeline.selector.overrides["searcher"] == "openai/gpt-4o"


async def test_override_advisory_reset_clears(sample_app_config, gemini_env):
    sample_app_config.model_overrides["searcher"] = "openai/gpt-4o"
    async with httpx.AsyncClient() as http:
        pipeline = build_pipeline(sample_app_config, http, ResearchMode.FAST)

    _show_override_advisory(pipeline.selector, reset_overrides=True)

    assert pipeline.selector.overrides["searcher"] is None
    assert pipeline.selector.advisory() is None


def test_cli_rejects_min_above_max():
    result = CliRunner().invoke(main, ["gold price", "--min-cycles", "5", "--max-cycles", "2"])
    assert result.exit_code == 1
    assert "min_cycles" in result.output


def test_cli_config_error_exits(tmp_path):
    bad = tmp_path / "settings.yaml"
    bad.write_text("research:\n  min_cycles: 1\n", encoding="utf-8")
    result = CliRunner().invoke(main, ["gold price", "--settings", str(bad)])
    assert result.exit_code == 1
    assert "Config error" in result.output


def test_cli_rejects_unknown_mode():
    result = CliRunner().invoke(main, ["gold price", "--mode", "Turbo"])
    assert result.exit_code == 2
