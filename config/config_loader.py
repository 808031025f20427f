"""Load settings.yaml into typed dataclasses. Validates research bounds at startup."""

import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"

AGENT_ROLES = ("planner", "searcher", "outline", "synthesizer", "clarification", "visualizer", "roleAI")

_PROMPT_KEYS = ("planner", "query_processor", "single_search", "synthesis")


@dataclass
class ResearchParams:
    min_cycles: int = 7
    max_cycles: int = 20
    max_debate_rounds: int = 20


@dataclass
class ProviderConfig:
    api_key_env: str = "API_KEY"
    base_url_env: str = "API_BASE_URL"
    default_base_url: str = "https://generativelanguage.googleapis.com"  # used when base_url_env is unset
    timeout_sec: int = 120


@dataclass
class SearchConfig:
    engines: list[str] = field(default_factory=list)
    max_terms: int = 3
    engine_timeout_sec: float = 15.0
    proxy_timeout_sec: float = 8.0
    query_timeout_sec: float = 20.0
    relay_url: str | None = None      # template with "{url}"; None -> synthetic results


@dataclass
class PlannerConfig:
    turn_delay_sec: float = 0.4
    temperature: float = 0.7
    web_signals: bool = True
    web_signals_limit: int = 5


@dataclass
class PromptsConfig:
    planner: str
    query_processor: str
    single_search: str
    synthesis: str
    personas: dict[str, str] = field(default_factory=dict)


@dataclass
class AppConfig:
    research: ResearchParams
    providers: ProviderConfig
    search: SearchConfig
    planner: PlannerConfig
    prompts: PromptsConfig
    mode: str = "Balanced"
    output_dir: Path = Path("./output")
    model_overrides: dict[str, str | None] = field(default_factory=dict)


def validate_research_params(params: ResearchParams) -> None:
    """Raises ValueError when the cycle bounds are inconsistent."""
    for name in ("min_cycles", "max_cycles", "max_debate_rounds"):
        if getattr(params, name) < 0:
            raise ValueError(f"{name} must be >= 0, got {getattr(params, name)}")
    if params.min_cycles > params.max_cycles:
        raise ValueError(f"min_cycles ({params.min_cycles}) must not exceed max_cycles ({params.max_cycles})")


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing, ValueError if the
    research bounds are inconsistent. API keys are not read here; they come
    from the environment when the provider context is built.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    research_raw = raw.get("research", {})
    research = ResearchParams(
        min_cycles=int(research_raw.get("min_cycles", 7)),
        max_cycles=int(research_raw.get("max_cycles", 20)),
        max_debate_rounds=int(research_raw.get("max_debate_rounds", 20)),
    )
    validate_research_params(research)

    providers_raw = raw.get("providers", {})
    providers = ProviderConfig(
        api_key_env=str(providers_raw.get("api_key_env", "API_KEY")),
        base_url_env=str(providers_raw.get("base_url_env", "API_BASE_URL")),
        default_base_url=str(providers_raw.get("default_base_url", ProviderConfig.default_base_url)),
        timeout_sec=int(providers_raw.get("timeout_sec", 120)),
    )

    search_raw = raw.get("search", {})
    search = SearchConfig(
        engines=list(search_raw.get("engines", [])),
        max_terms=int(search_raw.get("max_terms", 3)),
        engine_timeout_sec=float(search_raw.get("engine_timeout_sec", 15)),
        proxy_timeout_sec=float(search_raw.get("proxy_timeout_sec", 8)),
        query_timeout_sec=float(search_raw.get("query_timeout_sec", 20)),
        relay_url=search_raw.get("relay_url") or None,
    )

    planner_raw = raw.get("planner", {})
    planner = PlannerConfig(
        turn_delay_sec=float(planner_raw.get("turn_delay_sec", 0.4)),
        temperature=float(planner_raw.get("temperature", 0.7)),
        web_signals=bool(planner_raw.get("web_signals", True)),
        web_signals_limit=int(planner_raw.get("web_signals_limit", 5)),
    )

    prompts_raw = raw.get("prompts") or {}
    missing = [name for name in _PROMPT_KEYS if not prompts_raw.get(name)]
    if missing:
        raise ValueError(f"Missing prompt templates in {settings_path.name}: {', '.join(missing)}")
    personas_raw = raw.get("personas", {})
    prompts = PromptsConfig(
        planner=prompts_raw["planner"],
        query_processor=prompts_raw["query_processor"],
        single_search=prompts_raw["single_search"],
        synthesis=prompts_raw["synthesis"],
        personas={k: str(v) for k, v in personas_raw.items()},
    )

    overrides_raw = raw.get("model_overrides") or {}
    model_overrides: dict[str, str | None] = {role: None for role in AGENT_ROLES}
    for role, model in overrides_raw.items():
        if role not in AGENT_ROLES:
            logger.warning("Ignoring override for unknown role '%s'", role)
            continue
        model_overrides[role] = str(model) if model else None

    defaults_raw = raw.get("defaults", {})

    return AppConfig(
        research=research,
        providers=providers,
        search=search,
        planner=planner,
        prompts=prompts,
        mode=str(defaults_raw.get("mode", "Balanced")),
        output_dir=Path(defaults_raw.get("output_dir", "./output")),
        model_overrides=model_overrides,
    )
