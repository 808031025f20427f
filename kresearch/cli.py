"""Click CLI: config loading, pipeline wiring, research run, report and output."""

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

import click
import httpx
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from config.config_loader import AppConfig, ResearchParams, load_config, validate_research_params
from kresearch.catalog import ModelSelector
from kresearch.keys import ProviderContext
from kresearch.models import ProviderKind, ResearchMode, ResearchResult
from kresearch.output import print_report, print_update, save_to_file
from kresearch.planner import DebatePlanner
from kresearch.providers.base import ProviderError, RequestExecutor
from kresearch.providers.gemini import GeminiExecutor
from kresearch.providers.openrouter import OpenRouterExecutor
from kresearch.research import ResearchSession
from kresearch.routing import ModelRouter
from kresearch.search.aggregator import SearchAggregator
from kresearch.search.engines import build_engines
from kresearch.search.query import QueryProcessor
from kresearch.searcher import Searcher
from kresearch.synthesis import synthesize_report

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

USER_AGENT = "Mozilla/5.0 (compatible; kresearch/0.1)"


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


@dataclass
class Pipeline:
    context: ProviderContext
    selector: ModelSelector
    router: ModelRouter
    aggregator: SearchAggregator
    session: ResearchSession


def build_pipeline(
    config: AppConfig,
    http: httpx.AsyncClient,
    mode: ResearchMode,
    base_url: str | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Pipeline:
    """Wire one research session around a single provider context."""
    providers = config.providers
    context = ProviderContext.from_env(providers.api_key_env, providers.base_url_env, providers.default_base_url)
    selector = ModelSelector(context, config.model_overrides)
    if base_url:
        cleared = selector.switch_base_url(base_url)
        if cleared:
            logger.info("Provider change cleared overrides for: %s", ", ".join(cleared))

    # Filled after the aggregator exists: OpenRouter searches through it, and it routes through this router.
    executors: dict[ProviderKind, RequestExecutor] = {}
    router = ModelRouter(executors)

    search = config.search
    engines = build_engines(http, search.engines or None, search.relay_url, search.proxy_timeout_sec)
    processor = QueryProcessor(router, selector, config.prompts.query_processor, search.query_timeout_sec)
    aggregator = SearchAggregator(
        processor, engines, engine_timeout_sec=search.engine_timeout_sec, max_terms=search.max_terms,
    )

    executors[ProviderKind.GEMINI] = GeminiExecutor(context, timeout_sec=providers.timeout_sec, sleep=sleep)
    executors[ProviderKind.OPENROUTER] = OpenRouterExecutor(
        context, web_search=aggregator.search, timeout_sec=providers.timeout_sec, sleep=sleep,
    )

    planner = DebatePlanner(
        router,
        selector,
        config.prompts,
        config.research,
        settings=config.planner,
        aggregator=aggregator,
        sleep=sleep,
    )
    searcher = Searcher(router, aggregator, selector, config.prompts.single_search)
    session = ResearchSession(planner, searcher, config.research, mode=mode)
    return Pipeline(context=context, selector=selector, router=router, aggregator=aggregator, session=session)


def _show_override_advisory(selector: ModelSelector, reset_overrides: bool) -> None:
    advisory = selector.advisory()
    if not advisory:
        return
    if reset_overrides:
        cleared = selector.reset_incompatible()
        console.print(f"[yellow]Reset model overrides for: {escape(', '.join(cleared))}[/yellow]")
    else:
        console.print(f"[yellow]{escape(advisory)}[/yellow]")
        console.print("[yellow]Run with --reset-overrides to use the provider defaults for this run.[/yellow]")


async def _run_research(
    query: str,
    config: AppConfig,
    mode: ResearchMode,
    base_url: str | None,
    reset_overrides: bool,
    write_report: bool,
) -> ResearchResult:
    async with httpx.AsyncClient(follow_redirects=True, headers={"User-Agent": USER_AGENT}) as http:
        pipeline = build_pipeline(config, http, mode, base_url=base_url)
        _show_override_advisory(pipeline.selector, reset_overrides)

        params = config.research
        console.print(
            f"\n[bold cyan]KResearch[/bold cyan] ({mode.value}) via {pipeline.context.kind.value}, "
            f"{len(pipeline.context.rotator)} key(s), cycles {params.min_cycles}-{params.max_cycles}"
        )
        console.print(f"Query: [italic]{escape(query[:80])}{'...' if len(query) > 80 else ''}[/italic]\n")

        result = await pipeline.session.run(query, on_update=print_update)

        if write_report:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                TimeElapsedColumn(),
                console=console,
                transient=True,
            ) as progress:
                progress.add_task("Writing report...", total=None)
                try:
                    result.report = await synthesize_report(
                        result, pipeline.router, pipeline.selector, config.prompts, mode,
                    )
                except (ProviderError, RuntimeError) as exc:
                    logger.error("Report synthesis failed: %s", exc)
    return result


@click.command()
@click.argument("query")
@click.option("--mode", type=click.Choice([m.value for m in ResearchMode]), default=None,
              help="Research mode (default: from config)")
@click.option("--min-cycles", type=int, default=None, help="Search cycles required before finishing")
@click.option("--max-cycles", type=int, default=None, help="Hard cap on search cycles")
@click.option("--max-debate-rounds", type=int, default=None, help="Planner turns before the debate times out")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--no-report", is_flag=True, help="Skip the final synthesized report")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.option("--base-url", default=None, help="API base URL; the provider is inferred from it")
@click.option("--settings", "settings_path", type=click.Path(exists=True, dir_okay=False), default=None,
              help="Path to an alternative settings.yaml")
@click.option("--reset-overrides", is_flag=True,
              help="Clear model overrides that belong to the other provider")
def main(
    query: str,
    mode: str | None,
    min_cycles: int | None,
    max_cycles: int | None,
    max_debate_rounds: int | None,
    output_path: str | None,
    no_report: bool,
    verbose: bool,
    base_url: str | None,
    settings_path: str | None,
    reset_overrides: bool,
) -> None:
    """KResearch -- two-agent planning debate over multi-engine web search.

    \b
    Examples:
      kresearch "How do solid-state batteries compare to Li-ion?"
      kresearch "gold price today" --mode Fast --min-cycles 1
      kresearch "EU AI Act obligations" --base-url https://openrouter.ai/api/v1
    """
    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config(Path(settings_path)) if settings_path else load_config()
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {escape(str(exc))}")
        sys.exit(1)

    params = ResearchParams(
        min_cycles=min_cycles if min_cycles is not None else config.research.min_cycles,
        max_cycles=max_cycles if max_cycles is not None else config.research.max_cycles,
        max_debate_rounds=(
            max_debate_rounds if max_debate_rounds is not None else config.research.max_debate_rounds
        ),
    )
    try:
        validate_research_params(params)
        effective_mode = ResearchMode(mode or config.mode)
    except ValueError as exc:
        console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
        sys.exit(1)
    config.research = params

    effective_output = Path(output_path) if output_path else config.output_dir

    try:
        result = asyncio.run(
            _run_research(query, config, effective_mode, base_url, reset_overrides, write_report=not no_report)
        )
    except ProviderError as exc:
        console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
        sys.exit(1)

    print_report(result)
    saved_path = save_to_file(result, effective_output)
    console.print(f"\n[dim]Saved to: {escape(str(saved_path))}[/dim]")


if __name__ == "__main__":
    main()
