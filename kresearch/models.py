"""Pure dataclasses for the research pipeline. No I/O, no deps."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SessionCancelled(Exception):
    """Raised by a check-point callback to abort the whole research session."""


class ProviderKind(str, Enum):
    GEMINI = "gemini"
    OPENROUTER = "openrouter"


@dataclass(frozen=True)
class ProviderEndpoint:
    base_url: str
    kind: ProviderKind

    @classmethod
    def from_base_url(cls, base_url: str) -> "ProviderEndpoint":
        kind = ProviderKind.OPENROUTER if "openrouter.ai" in base_url else ProviderKind.GEMINI
        return cls(base_url=base_url.rstrip("/"), kind=kind)


class ResearchMode(str, Enum):
    BALANCED = "Balanced"
    DEEP_DIVE = "DeepDive"
    FAST = "Fast"
    ULTRA_FAST = "UltraFast"


class AgentRole(str, Enum):
    PLANNER = "planner"
    SEARCHER = "searcher"
    OUTLINE = "outline"
    SYNTHESIZER = "synthesizer"
    CLARIFICATION = "clarification"
    VISUALIZER = "visualizer"
    ROLE_AI = "roleAI"


# --- Generation ---

@dataclass(frozen=True)
class InlineData:
    mime_type: str
    data: bytes


@dataclass(frozen=True)
class Part:
    text: str | None = None
    inline_data: InlineData | None = None


@dataclass(frozen=True)
class Turn:
    role: str              # "user" or "model"
    parts: tuple[Part, ...]

    @classmethod
    def user(cls, text: str) -> "Turn":
        return cls(role="user", parts=(Part(text=text),))

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.parts if p.text)


@dataclass(frozen=True)
class GenerationRequest:
    model: str
    contents: Any          # str, Turn, dict with "parts", or a list of those
    system_instruction: str | None = None
    response_mime_type: str | None = None
    response_schema: dict[str, Any] | None = None
    temperature: float | None = None
    max_output_tokens: int | None = None
    google_search: bool = False
    grounding: tuple["Citation", ...] = ()   # pre-fetched citations echoed into the result

    @property
    def wants_json(self) -> bool:
        return self.response_mime_type == "application/json" or self.response_schema is not None


@dataclass
class GenerationResult:
    text: str
    candidates: list[Any] = field(default_factory=list)
    citations: list["Citation"] = field(default_factory=list)
    usage: dict[str, Any] | None = None


# --- Search ---

@dataclass(frozen=True)
class SearchResult:
    title: str
    url: str
    snippet: str
    source: str            # engine name


@dataclass(frozen=True)
class Citation:
    source: str
    title: str
    url: str

    @classmethod
    def from_result(cls, result: SearchResult) -> "Citation":
        return cls(source=result.source, title=result.title, url=result.url)


@dataclass(frozen=True)
class ProcessedQuery:
    original_query: str
    search_terms: tuple[str, ...]   # most specific first, at most 4
    primary_term: str
    context: str


@dataclass(frozen=True)
class EngineResult:
    """Result-or-empty value returned for one engine call; never an exception."""

    engine: str
    results: tuple[SearchResult, ...] = ()
    error: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.results


@dataclass
class SearchOutcome:
    results: list[SearchResult] = field(default_factory=list)
    citations: list[Citation] = field(default_factory=list)


@dataclass
class SearchSummary:
    text: str
    citations: list[Citation] = field(default_factory=list)


# --- Debate ---

class Persona(str, Enum):
    ALPHA = "Alpha"
    BETA = "Beta"

    @property
    def other(self) -> "Persona":
        return Persona.BETA if self is Persona.ALPHA else Persona.ALPHA


@dataclass(frozen=True)
class DebateTurn:
    persona: Persona
    thought: str


class PlannerAction(str, Enum):
    SEARCH = "search"
    CONTINUE_DEBATE = "continue_debate"
    FINISH = "finish"


@dataclass(frozen=True)
class PlannerDecision:
    thought: str
    action: PlannerAction
    queries: tuple[str, ...] | None = None
    finish_reason: str | None = None


class PlannerState(str, Enum):
    DEBATING = "debating"
    SEARCHING = "searching"
    FINISHED = "finished"
    TIMED_OUT = "timed_out"


@dataclass
class PlannerOutcome:
    state: PlannerState
    search_queries: list[str] = field(default_factory=list)
    finish_reason: str | None = None
    turns: int = 0

    @property
    def should_finish(self) -> bool:
        return self.state in (PlannerState.FINISHED, PlannerState.TIMED_OUT)


class UpdateType(str, Enum):
    THOUGHT = "thought"
    SEARCH = "search"
    READ = "read"


@dataclass(frozen=True)
class ResearchUpdate:
    type: UpdateType
    content: Any           # str for thought/read, list[str] for search
    persona: Persona | None = None


@dataclass(frozen=True)
class Attachment:
    name: str
    mime_type: str
    data: bytes


@dataclass
class ResearchResult:
    query: str
    updates: list[ResearchUpdate]
    citations: list[Citation]
    finish_reason: str | None
    search_cycles: int
    report: str | None = None
