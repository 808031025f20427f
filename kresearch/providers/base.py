"""Provider error taxonomy and the shared key-rotating retry loop."""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from kresearch.keys import ProviderContext, mask_key
from kresearch.models import GenerationRequest, GenerationResult

logger = logging.getLogger(__name__)

MAX_RETRIES_PER_KEY_CYCLE = 3
BASE_BACKOFF_SEC = 2.0
RETRY_AFTER_MARGIN_SEC = 0.5


class ProviderError(Exception):
    """Raised when a provider call fails."""

    def __init__(self, provider_name: str, message: str) -> None:
        self.provider_name = provider_name
        super().__init__(f"[{provider_name}] {message}")


class NoCredentialsError(ProviderError):
    """The credential pool is empty."""


class InvalidRequestError(ProviderError):
    """Missing model or unsupported operation."""


class AllKeysExhaustedError(ProviderError):
    """Every attempt in the retry budget failed."""

    def __init__(self, provider_name: str, last_error: Exception | None) -> None:
        self.last_error = last_error
        super().__init__(provider_name, f"All API keys failed. Last error: {clean_error_message(last_error)}")


class UpstreamHTTPError(ProviderError):
    """Non-2xx answer from the upstream API. Only inspected by the retry loop."""

    def __init__(
        self,
        provider_name: str,
        status: int | None,
        body: Any = None,
        retry_after_sec: float | None = None,
        message: str | None = None,
    ) -> None:
        self.status = status
        self.body = body
        self.retry_after_sec = retry_after_sec
        super().__init__(provider_name, message or f"API Error: {status}")


class RateLimitedError(UpstreamHTTPError):
    """HTTP 429. Triggers backoff, never surfaced past the executor."""


def clean_error_message(error: object) -> str:
    """Readable one-line message for any error shape the SDKs throw at us."""
    if error is None:
        return "An unknown error occurred."
    if isinstance(error, str):
        return error
    message = str(error)
    try:
        parsed = json.loads(message)
    except (TypeError, ValueError):
        return message
    if isinstance(parsed, dict):
        inner = parsed.get("error")
        if isinstance(inner, dict) and inner.get("message"):
            return str(inner["message"])
    return message


def truncate_for_log(obj: Any, limit: int = 500) -> Any:
    """Copy of ``obj`` with long strings and bytes shortened for logging."""
    if isinstance(obj, str):
        return obj[:limit] + "...[TRUNCATED]" if len(obj) > limit else obj
    if isinstance(obj, bytes):
        return f"<{len(obj)} bytes>"
    if isinstance(obj, dict):
        return {k: truncate_for_log(v, limit) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [truncate_for_log(v, limit) for v in obj]
    return obj


def backoff_delay(attempt: int, key_count: int, retry_after_sec: float | None = None) -> float:
    """Seconds to wait after a 429 on ``attempt`` (1-indexed).

    Linear in the key cycle, so the delay only grows once every key has
    been tried. An upstream retry-after wins, plus a fixed margin.
    """
    if retry_after_sec is not None:
        return retry_after_sec + RETRY_AFTER_MARGIN_SEC
    cycle = (attempt - 1) // key_count + 1
    return BASE_BACKOFF_SEC * cycle


class RequestExecutor(ABC):
    """Turns a provider-agnostic request into a reliable upstream call."""

    provider_name = "provider"

    def __init__(
        self,
        context: ProviderContext,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._context = context
        self._sleep = sleep

    @abstractmethod
    async def _attempt(self, request: GenerationRequest, key: str) -> GenerationResult:
        """Single upstream call with one key.

        Raises:
            UpstreamHTTPError: On a non-2xx answer (RateLimitedError for 429).
            Exception: Any other failure; counted as a failed attempt.
        """
        ...

    async def _prepare(self, request: GenerationRequest) -> GenerationRequest:
        """Hook run once per ``generate`` call before the retry loop."""
        return request

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """Run ``request`` across the key pool.

        Raises:
            InvalidRequestError: If the request names no model.
            NoCredentialsError: If the pool is empty.
            AllKeysExhaustedError: If no attempt in ``keys * 3`` succeeded.
        """
        if not request.model:
            raise InvalidRequestError(self.provider_name, "Invalid model for API call: missing model name")

        rotator = self._context.rotator
        key_count = len(rotator)
        if key_count == 0:
            raise NoCredentialsError(
                self.provider_name,
                "No API keys provided. Please add at least one key in the application settings.",
            )

        request = await self._prepare(request)
        max_attempts = key_count * MAX_RETRIES_PER_KEY_CYCLE
        last_error: Exception | None = None

        for attempt in range(1, max_attempts + 1):
            key = rotator.next()
            if key is None:
                continue

            logger.info(
                "[%s] %s attempt %d/%d with key %s",
                self.provider_name, request.model, attempt, max_attempts, mask_key(key),
            )
            logger.debug("[%s] request: %s", self.provider_name, truncate_for_log(request.__dict__, 4000))

            try:
                result = await self._attempt(request, key)
            except RateLimitedError as exc:
                last_error = exc
                delay = backoff_delay(attempt, key_count, exc.retry_after_sec)
                logger.warning(
                    "[%s] Rate limit hit on attempt %d/%d with key %s. Waiting %.1fs",
                    self.provider_name, attempt, max_attempts, mask_key(key), delay,
                )
                await self._sleep(delay)
                continue
            except Exception as exc:
                last_error = exc
                logger.warning(
                    "[%s] Call failed on attempt %d/%d with key %s: %s",
                    self.provider_name, attempt, max_attempts, mask_key(key), clean_error_message(exc),
                )
                continue

            logger.info("[%s] %s succeeded on attempt %d", self.provider_name, request.model, attempt)
            logger.debug("[%s] response: %s", self.provider_name, truncate_for_log(result.text))
            rotator.reset()
            return result

        logger.error(
            "[%s] All keys failed for %s. Last error: %s",
            self.provider_name, request.model, clean_error_message(last_error),
        )
        raise AllKeysExhaustedError(self.provider_name, last_error)
