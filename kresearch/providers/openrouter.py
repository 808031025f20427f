"""OpenRouter executor using the openai SDK (OpenAI-compatible API) with native async."""

import asyncio
import dataclasses
import json
import logging
import re
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from openai import APIStatusError, AsyncOpenAI

from kresearch.keys import OPENROUTER_DEFAULT_BASE_URL, ProviderContext
from kresearch.models import Citation, GenerationRequest, GenerationResult, SearchOutcome, Turn
from kresearch.providers.base import RateLimitedError, RequestExecutor, UpstreamHTTPError, clean_error_message
from kresearch.providers.contents import contents_text, format_contents
from kresearch.search.aggregator import format_search_results

logger = logging.getLogger(__name__)

SCHEMA_HINT_CHARS = 2000

WebSearch = Callable[[str], Awaitable[SearchOutcome]]

_QUERY_PATTERN = re.compile(r"(?:query|search):\s*[\"']([^\"']+)[\"']", re.IGNORECASE)


def json_rules(schema: dict[str, Any] | None) -> str:
    hint = ""
    if schema is not None:
        try:
            hint = json.dumps(schema)[:SCHEMA_HINT_CHARS]
        except (TypeError, ValueError):
            hint = ""
    rules = (
        "You MUST respond with a single valid JSON object only. "
        "Do not include markdown fences, prefixes, or prose."
    )
    if hint:
        rules += f" It MUST conform to this JSON Schema (approximate): {hint}"
    return rules


def to_chat_messages(request: GenerationRequest) -> list[dict[str, str]]:
    """Gemini-style request -> chat message list (system first, then turns)."""
    messages: list[dict[str, str]] = []
    if request.system_instruction:
        messages.append({"role": "system", "content": request.system_instruction})
    if request.wants_json:
        messages.append({"role": "system", "content": json_rules(request.response_schema)})

    for turn in format_contents(request.contents):
        if isinstance(turn, Turn):
            role = "assistant" if turn.role == "model" else "user"
            messages.append({"role": role, "content": turn.text})
        else:
            logger.warning("Skipping non-text content for chat API: %r", turn)

    # No native search grounding here; ask for a knowledge-based answer instead.
    if request.google_search:
        for message in reversed(messages):
            if message["role"] == "user":
                message["content"] = (
                    f"Please provide a comprehensive response based on your knowledge for: {message['content']}. "
                    "Include relevant facts, statistics, and information as if you were summarizing "
                    "from multiple reliable sources."
                )
                break
    return messages


def prompt_from_messages(messages: list[dict[str, str]]) -> str:
    return "\n".join(f"{m['role'].upper()}: {m['content']}" for m in messages)


def extract_search_query(text: str) -> str:
    """Pull the quoted query out of prompts like ``... for the query: "gold price"``."""
    match = _QUERY_PATTERN.search(text)
    return match.group(1) if match else text


def format_search_context(outcome: SearchOutcome) -> str:
    return "Web Search Results:\n" + format_search_results(outcome.results)


def _sampling_params(request: GenerationRequest) -> dict[str, Any]:
    params: dict[str, Any] = {"model": request.model}
    if request.temperature is not None:
        params["temperature"] = request.temperature
    if request.max_output_tokens is not None:
        params["max_tokens"] = request.max_output_tokens
    return params


def _retry_after(exc: APIStatusError) -> float | None:
    value = exc.response.headers.get("retry-after") if exc.response is not None else None
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


def openrouter_client(api_key: str, base_url: str, http_client: httpx.AsyncClient | None = None) -> AsyncOpenAI:
    """SDK retries are off; RequestExecutor.generate owns retry and backoff."""
    return AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=0, http_client=http_client)


class OpenRouterExecutor(RequestExecutor):
    """OpenRouter chat completions with a /completions fallback per attempt."""

    provider_name = "openrouter"

    def __init__(
        self,
        context: ProviderContext,
        web_search: WebSearch | None = None,
        timeout_sec: float = 120.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        client_factory: Callable[[str, str], Any] | None = None,
    ) -> None:
        super().__init__(context, sleep=sleep)
        self._web_search = web_search
        self._timeout_sec = timeout_sec
        self._client_factory = client_factory or openrouter_client

    @property
    def _base_url(self) -> str:
        return self._context.endpoint.base_url or OPENROUTER_DEFAULT_BASE_URL

    async def _prepare(self, request: GenerationRequest) -> GenerationRequest:
        """Run the web search aggregator first for search requests and inline its results."""
        if not request.google_search or self._web_search is None:
            return request

        prompt = contents_text(request.contents)
        query = extract_search_query(prompt)
        logger.info("[openrouter] Performing web search for: %r", query)
        try:
            outcome = await self._web_search(query)
        except Exception as exc:
            logger.warning("[openrouter] Web search failed, proceeding without results: %s", exc)
            return request

        return dataclasses.replace(
            request,
            contents=(
                f"{format_search_context(outcome)}\n\n{prompt}\n\n"
                "Please provide a comprehensive response based on the above search results and your knowledge."
            ),
            grounding=tuple(outcome.citations),
        )

    async def _attempt(self, request: GenerationRequest, key: str) -> GenerationResult:
        client = self._client_factory(key, self._base_url)
        messages = to_chat_messages(request)
        citations = list(request.grounding)

        try:
            response = await asyncio.wait_for(
                client.chat.completions.create(messages=messages, **_sampling_params(request)),
                timeout=self._timeout_sec,
            )
            choice = response.choices[0] if response.choices else None
            text = (choice.message.content if choice else None) or ""
            return self._result(text, citations, response.usage)
        except Exception as exc:
            chat_error = exc
            logger.warning("[openrouter] Chat completion failed: %s", clean_error_message(exc))

        try:
            completion = await asyncio.wait_for(
                client.completions.create(prompt=prompt_from_messages(messages), **_sampling_params(request)),
                timeout=self._timeout_sec,
            )
            choice = completion.choices[0] if completion.choices else None
            logger.info("[openrouter] Succeeded via /completions fallback")
            return self._result((choice.text if choice else None) or "", citations, completion.usage)
        except Exception as fallback_exc:
            logger.warning("[openrouter] /completions fallback failed: %s", clean_error_message(fallback_exc))

        raise self._map_error(chat_error)

    def _map_error(self, exc: Exception) -> Exception:
        if isinstance(exc, APIStatusError):
            if exc.status_code == 429:
                error: UpstreamHTTPError = RateLimitedError(
                    self.provider_name, 429, exc.body, _retry_after(exc), message=exc.message,
                )
            else:
                error = UpstreamHTTPError(self.provider_name, exc.status_code, exc.body, message=exc.message)
            error.__cause__ = exc
            return error
        return exc

    @staticmethod
    def _result(text: str, citations: list[Citation], usage: Any) -> GenerationResult:
        if usage is not None and hasattr(usage, "model_dump"):
            usage = usage.model_dump(exclude_none=True)
        candidate = {"content": {"parts": [{"text": text}], "role": "model"}}
        if citations:
            candidate["groundingMetadata"] = {
                "groundingChunks": [{"web": {"uri": c.url, "title": c.title}} for c in citations]
            }
        return GenerationResult(text=text, candidates=[candidate], citations=list(citations), usage=usage)
