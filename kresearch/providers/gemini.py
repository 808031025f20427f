"""Gemini executor using the google-genai SDK with native async."""

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from typing import Any

from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from kresearch.keys import ProviderContext
from kresearch.models import Citation, GenerationRequest, GenerationResult, Part, Turn
from kresearch.providers.base import RateLimitedError, RequestExecutor, UpstreamHTTPError
from kresearch.providers.contents import format_contents

logger = logging.getLogger(__name__)

_RETRY_INFO_TYPE = "type.googleapis.com/google.rpc.RetryInfo"


def _to_genai_part(part: Part) -> genai_types.Part:
    if part.inline_data is not None:
        return genai_types.Part.from_bytes(data=part.inline_data.data, mime_type=part.inline_data.mime_type)
    return genai_types.Part(text=part.text or "")


def to_genai_contents(contents: Any) -> list[Any]:
    """Strict ``Content`` list for the SDK; unknown shapes are left as they are."""
    formatted: list[Any] = []
    for turn in format_contents(contents):
        if isinstance(turn, Turn):
            formatted.append(
                genai_types.Content(role=turn.role, parts=[_to_genai_part(p) for p in turn.parts])
            )
        else:
            formatted.append(turn)
    return formatted


def build_config(request: GenerationRequest) -> genai_types.GenerateContentConfig | None:
    """Split system instruction, generation fields and tools into the request config."""
    fields: dict[str, Any] = {}
    if request.system_instruction:
        fields["system_instruction"] = request.system_instruction
    if request.temperature is not None:
        fields["temperature"] = request.temperature
    if request.max_output_tokens is not None:
        fields["max_output_tokens"] = request.max_output_tokens
    if request.response_mime_type:
        fields["response_mime_type"] = request.response_mime_type
    if request.response_schema is not None:
        fields["response_schema"] = request.response_schema
    if request.google_search:
        fields["tools"] = [genai_types.Tool(google_search=genai_types.GoogleSearch())]
    if not fields:
        return None
    return genai_types.GenerateContentConfig(**fields)


def parse_retry_delay(body: Any) -> float | None:
    """Seconds from a ``google.rpc.RetryInfo`` detail in an error payload, if any."""
    if not isinstance(body, dict):
        return None
    error = body.get("error", body)
    details = error.get("details") if isinstance(error, dict) else None
    if not isinstance(details, list):
        return None
    for detail in details:
        if isinstance(detail, dict) and detail.get("@type") == _RETRY_INFO_TYPE:
            match = re.search(r"(\d+(?:\.\d+)?)", str(detail.get("retryDelay", "")))
            if match:
                return float(match.group(1))
    return None


def grounding_citations(response: Any) -> list[Citation]:
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return []
    metadata = getattr(candidates[0], "grounding_metadata", None)
    chunks = getattr(metadata, "grounding_chunks", None) or []
    citations: list[Citation] = []
    for chunk in chunks:
        web = getattr(chunk, "web", None)
        uri = getattr(web, "uri", None)
        if uri:
            citations.append(Citation(source="Google Search", title=getattr(web, "title", None) or uri, url=uri))
    return citations


class GeminiExecutor(RequestExecutor):
    """Google Gemini via google-genai, one client per key attempt."""

    provider_name = "gemini"

    def __init__(
        self,
        context: ProviderContext,
        timeout_sec: float = 120.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        client_factory: Callable[[str, str], Any] | None = None,
    ) -> None:
        super().__init__(context, sleep=sleep)
        self._timeout_sec = timeout_sec
        self._client_factory = client_factory or self._default_client

    @staticmethod
    def _default_client(api_key: str, base_url: str) -> genai.Client:
        return genai.Client(api_key=api_key, http_options=genai_types.HttpOptions(base_url=base_url))

    async def _attempt(self, request: GenerationRequest, key: str) -> GenerationResult:
        client = self._client_factory(key, self._context.endpoint.base_url)
        try:
            response = await asyncio.wait_for(
                client.aio.models.generate_content(
                    model=request.model,
                    contents=to_genai_contents(request.contents),
                    config=build_config(request),
                ),
                timeout=self._timeout_sec,
            )
        except genai_errors.APIError as exc:
            if exc.code == 429:
                raise RateLimitedError(
                    self.provider_name, 429, exc.details, parse_retry_delay(exc.details), message=exc.message,
                ) from exc
            raise UpstreamHTTPError(self.provider_name, exc.code, exc.details, message=exc.message) from exc

        usage = None
        if getattr(response, "usage_metadata", None) is not None:
            usage = response.usage_metadata.model_dump(exclude_none=True)

        return GenerationResult(
            text=response.text or "",
            candidates=list(response.candidates or []),
            citations=grounding_citations(response),
            usage=usage,
        )
