"""Planner debate: two personas alternate until one asks to search or both agree to finish."""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from config.config_loader import PlannerConfig, PromptsConfig, ResearchParams
from kresearch.models import (
    AgentRole,
    Attachment,
    DebateTurn,
    GenerationRequest,
    InlineData,
    Part,
    Persona,
    PlannerAction,
    PlannerDecision,
    PlannerOutcome,
    PlannerState,
    ResearchMode,
    ResearchUpdate,
    Turn,
    UpdateType,
)
from kresearch.parsing import extract_json_object
from kresearch.routing import ModelRouter
from kresearch.search.aggregator import SearchAggregator

logger = logging.getLogger(__name__)

MAX_QUERIES = 4
TIMED_OUT_REASON = "Planning debate timed out."

PLANNER_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "thought": {"type": "STRING"},
        "action": {"type": "STRING", "enum": [a.value for a in PlannerAction]},
        "queries": {"type": "ARRAY", "items": {"type": "STRING"}},
        "finish_reason": {"type": "STRING"},
    },
    "required": ["thought", "action"],
}

OnUpdate = Callable[[ResearchUpdate], None]
CheckSignal = Callable[[], None]


def _stringify(value: Any) -> str:
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)


def sanitize_decision(raw: Any) -> PlannerDecision | None:
    """Validate arbitrary model output into a decision.

    Total over any input: returns None only when there is no object or no
    thought; otherwise the action is always one of the three known values.
    """
    if not isinstance(raw, dict):
        return None

    raw_thought = raw.get("thought")
    if raw_thought is None:
        return None
    thought = raw_thought if isinstance(raw_thought, str) else _stringify(raw_thought)

    raw_action = raw.get("action")
    action_name = raw_action.strip().lower() if isinstance(raw_action, str) else ""
    try:
        action = PlannerAction(action_name)
    except ValueError:
        action = PlannerAction.CONTINUE_DEBATE

    queries: tuple[str, ...] | None = None
    raw_queries = raw.get("queries")
    if isinstance(raw_queries, list):
        cleaned = [(q if isinstance(q, str) else _stringify(q)).strip() for q in raw_queries]
        queries = tuple(q for q in cleaned if q)[:MAX_QUERIES] or None

    finish_reason: str | None = None
    raw_reason = raw.get("finish_reason")
    if raw_reason is not None:
        finish_reason = raw_reason if isinstance(raw_reason, str) else _stringify(raw_reason)

    return PlannerDecision(thought=thought, action=action, queries=queries, finish_reason=finish_reason)


def reconstruct_debate(history: Sequence[ResearchUpdate]) -> list[DebateTurn]:
    """Persona turns at the tail of the log, oldest first. Stops at the first non-turn entry."""
    turns: list[DebateTurn] = []
    for update in reversed(history):
        if update.type is not UpdateType.THOUGHT or update.persona is None:
            break
        turns.insert(0, DebateTurn(persona=update.persona, thought=str(update.content)))
    return turns


def _search_history(history: Sequence[ResearchUpdate]) -> str:
    entries = []
    for update in history:
        if update.type is UpdateType.SEARCH:
            content = update.content if isinstance(update.content, list) else [update.content]
            entries.append(", ".join(str(c) for c in content))
    return "; ".join(entries)


def _read_history(history: Sequence[ResearchUpdate]) -> str:
    return "\n---\n".join(str(u.content) for u in history if u.type is UpdateType.READ)


class DebatePlanner:
    """Alternates Alpha and Beta turns and enforces the cycle and round limits."""

    def __init__(
        self,
        router: ModelRouter,
        select_model: Callable[[AgentRole, ResearchMode], str],
        prompts: PromptsConfig,
        params: ResearchParams,
        settings: PlannerConfig | None = None,
        aggregator: SearchAggregator | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._router = router
        self._select_model = select_model
        self._prompts = prompts
        self._params = params
        self._settings = settings or PlannerConfig()
        self._aggregator = aggregator
        self._sleep = sleep

    async def _web_signals(self, query: str) -> str:
        if not self._settings.web_signals or self._aggregator is None:
            return ""
        try:
            outcome = await self._aggregator.search(query)
        except Exception as exc:
            logger.debug("Web signals unavailable: %s", exc)
            return ""
        sample = outcome.citations[: self._settings.web_signals_limit]
        return "\n".join(f"- {c.title}\n  {c.url}" for c in sample)

    def _build_prompt(
        self,
        persona: Persona,
        query: str,
        clarified_context: str,
        attachments: Sequence[Attachment],
        search_cycles: int,
        search_history: str,
        read_history: str,
        conversation: list[DebateTurn],
        web_signals: str,
    ) -> str:
        other = persona.other.value
        if conversation:
            guidance = f"Respond to the latest point from Agent {other}."
        else:
            guidance = "You open the debate: propose an initial research plan."
        return self._prompts.planner.format(
            persona_description=self._prompts.personas.get(persona.value, f"You are Agent {persona.value}."),
            other_persona=other,
            turn_guidance=guidance,
            query=query,
            clarified_context=clarified_context or "None",
            attachments=", ".join(a.name for a in attachments) or "None",
            search_cycles=search_cycles,
            min_cycles=self._params.min_cycles,
            max_cycles=self._params.max_cycles,
            search_history=search_history or "None yet",
            read_history=read_history or "None yet",
            web_signals=web_signals or "None available",
            conversation="\n".join(f"{t.persona.value}: {t.thought}" for t in conversation) or "(no turns yet)",
        )

    async def _record(
        self,
        on_update: OnUpdate,
        conversation: list[DebateTurn],
        persona: Persona,
        thought: str,
    ) -> None:
        on_update(ResearchUpdate(type=UpdateType.THOUGHT, content=thought, persona=persona))
        conversation.append(DebateTurn(persona=persona, thought=thought))
        if self._settings.turn_delay_sec > 0:
            await self._sleep(self._settings.turn_delay_sec)

    async def run(
        self,
        query: str,
        history: Sequence[ResearchUpdate],
        on_update: OnUpdate,
        check_signal: CheckSignal,
        *,
        search_cycles: int,
        mode: ResearchMode = ResearchMode.BALANCED,
        clarified_context: str = "",
        attachments: Sequence[Attachment] = (),
    ) -> PlannerOutcome:
        """Debate until a search or finish decision, or until the round limit.

        ``history`` is only read; new turns go out through ``on_update``.
        ``check_signal`` may raise SessionCancelled, which propagates.
        """
        search_history = _search_history(history)
        read_history = _read_history(history)
        conversation = reconstruct_debate(history)

        last_persona = conversation[-1].persona if conversation else None
        persona = Persona.BETA if last_persona is Persona.ALPHA else Persona.ALPHA
        turns = len(conversation)
        consecutive_finish = 0
        max_rounds = self._params.max_debate_rounds

        while turns < max_rounds:
            check_signal()
            turns += 1

            web_signals = await self._web_signals(query)
            prompt = self._build_prompt(
                persona, query, clarified_context, attachments, search_cycles,
                search_history, read_history, conversation, web_signals,
            )
            parts = [Part(text=prompt)]
            parts.extend(Part(inline_data=InlineData(a.mime_type, a.data)) for a in attachments)

            response = await self._router.generate(
                GenerationRequest(
                    model=self._select_model(AgentRole.PLANNER, mode),
                    contents=Turn(role="user", parts=tuple(parts)),
                    response_mime_type="application/json",
                    response_schema=PLANNER_SCHEMA,
                    temperature=self._settings.temperature,
                )
            )
            check_signal()

            raw_text = response.text or ""
            decision = sanitize_decision(extract_json_object(raw_text))

            if decision is None or not decision.thought:
                logger.warning("Agent %s produced unusable output, keeping it as a thought", persona.value)
                thought = raw_text.strip() or f"Agent {persona.value} produced non-JSON output. Proceeding with debate."
                await self._record(on_update, conversation, persona, thought)
                check_signal()
                persona = persona.other
                continue

            await self._record(on_update, conversation, persona, decision.thought)
            check_signal()

            action = decision.action
            consecutive_finish = consecutive_finish + 1 if action is PlannerAction.FINISH else 0

            if action is PlannerAction.FINISH and search_cycles < self._params.min_cycles:
                if consecutive_finish >= 2:
                    logger.info("Consecutive finish requests, waiving the %d-cycle minimum", self._params.min_cycles)
                    on_update(ResearchUpdate(
                        type=UpdateType.THOUGHT,
                        content="Agent consensus to finish has been detected. "
                                "Overriding the minimum cycle rule to conclude research.",
                    ))
                else:
                    # System note, not a persona turn: persona stays None so reconstruct_debate stops here.
                    on_update(ResearchUpdate(
                        type=UpdateType.THOUGHT,
                        content=f"Rule violation: Cannot finish before {self._params.min_cycles} search cycles. "
                                "Forcing debate to continue.",
                    ))
                    action = PlannerAction.CONTINUE_DEBATE

            if action is PlannerAction.FINISH:
                reason = decision.finish_reason or f"{persona.value} decided to finish."
                logger.info("Planner finished after %d turns: %s", turns, reason)
                return PlannerOutcome(state=PlannerState.FINISHED, finish_reason=reason, turns=turns)

            if action is PlannerAction.SEARCH and decision.queries:
                logger.info("Planner requested %d searches after %d turns", len(decision.queries), turns)
                return PlannerOutcome(state=PlannerState.SEARCHING, search_queries=list(decision.queries), turns=turns)

            persona = persona.other

        logger.warning("Planner debate hit the %d-turn limit", max_rounds)
        on_update(ResearchUpdate(
            type=UpdateType.THOUGHT,
            content="Debate reached maximum turns without a decision. Forcing research to conclude.",
        ))
        return PlannerOutcome(state=PlannerState.TIMED_OUT, finish_reason=TIMED_OUT_REASON, turns=turns)
