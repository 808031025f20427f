"""Rich console output and markdown file save for research results."""

import logging
import re
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.text import Text

from kresearch.models import Citation, Persona, ResearchResult, ResearchUpdate, UpdateType

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

_PERSONA_STYLES = {Persona.ALPHA: "cyan", Persona.BETA: "magenta"}


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def _preview(text: str, words: int = 60) -> str:
    all_words = text.split()
    preview = " ".join(all_words[:words])
    if len(all_words) > words:
        preview += "..."
    return preview


def _update_line(update: ResearchUpdate) -> str:
    if update.type is UpdateType.SEARCH:
        return "Searching: " + "; ".join(str(q) for q in update.content)
    if update.persona is not None:
        return f"{update.persona.value}: {update.content}"
    return str(update.content)


def print_update(update: ResearchUpdate) -> None:
    """Print one research log entry as it arrives."""
    if update.type is UpdateType.THOUGHT:
        if update.persona is None:
            console.print(Text(str(update.content), style="yellow"))
            return
        style = _PERSONA_STYLES[update.persona]
        console.print(Text.assemble((f"{update.persona.value}: ", f"bold {style}"), str(update.content)))
    elif update.type is UpdateType.SEARCH:
        console.print(Text(_update_line(update), style="bold blue"))
    else:
        console.print(Panel(Text(_preview(str(update.content))), title="[bold]Read[/bold]", border_style="dim"))


def print_citations(citations: list[Citation]) -> None:
    if not citations:
        return
    console.print(Rule("[bold]Sources[/bold]"))
    for i, citation in enumerate(citations, 1):
        console.print(f"[dim][{i}][/dim] {escape(citation.title)} [dim]({escape(citation.source)})[/dim] {escape(citation.url)}")


def print_report(result: ResearchResult) -> None:
    """Print the summary line, the report (when present) and the sources."""
    console.print(Rule("[bold green]Research Complete[/bold green]"))
    console.print(
        Text(
            f"Search cycles: {result.search_cycles} | "
            f"Sources: {len(result.citations)} | "
            f"Finished: {result.finish_reason or 'unknown'}",
            style="dim",
        )
    )
    if result.report:
        console.print(Markdown(result.report))
    print_citations(result.citations)


def save_to_file(result: ResearchResult, output_dir: Path, slug_override: str | None = None) -> Path:
    """Save the report, sources and research log as a markdown file.

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    slug = slug_override if slug_override is not None else _slug(result.query)
    filepath = output_dir / f"{timestamp}_{slug}.md"

    lines: list[str] = [
        f"# Research: {result.query[:80]}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Search cycles:** {result.search_cycles}",
        f"**Finish reason:** {result.finish_reason or 'unknown'}",
        "",
        "---",
        "",
    ]

    if result.report:
        lines += ["## Report", "", result.report, ""]

    if result.citations:
        lines += ["## Sources", ""]
        lines += [f"{i}. [{c.title}]({c.url}) ({c.source})" for i, c in enumerate(result.citations, 1)]
        lines.append("")

    lines += ["## Research Log", ""]
    for update in result.updates:
        lines.append(f"- **{update.type.value}** {_update_line(update)}")
    lines.append("")

    filepath.write_text("\n".join(lines), encoding="utf-8")
    logger.info("Research saved to: %s", filepath)
    return filepath
