"""API key rotation and the per-session provider context."""

import logging
import os
import re
import threading
from dataclasses import dataclass

from kresearch.models import ProviderEndpoint, ProviderKind

logger = logging.getLogger(__name__)

GEMINI_DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"
OPENROUTER_DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"


def parse_keys(text: str | None) -> list[str]:
    """Split a comma/newline separated key list, dropping blanks."""
    if not text:
        return []
    return [k.strip() for k in re.split(r"[\n,]+", text) if k.strip()]


def mask_key(key: str) -> str:
    return f"...{key[-4:]}"


class KeyRotator:
    """Round-robin over an ordered pool of credentials.

    The cursor starts at -1 so the first ``next()`` serves index 0.
    ``reset()`` rewinds to that state after a fully successful call.
    """

    def __init__(self, keys: list[str] | None = None) -> None:
        self._keys: list[str] = list(keys or [])
        self._cursor = -1
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._keys)

    def keys(self) -> list[str]:
        return list(self._keys)

    def next(self) -> str | None:
        with self._lock:
            if not self._keys:
                return None
            self._cursor = (self._cursor + 1) % len(self._keys)
            return self._keys[self._cursor]

    def reset(self) -> None:
        with self._lock:
            self._cursor = -1

    def replace(self, keys: list[str]) -> None:
        """Swap the whole pool (user edited keys)."""
        with self._lock:
            self._keys = list(keys)
            self._cursor = -1


@dataclass
class ProviderContext:
    """Active endpoint + credential pool, passed explicitly to every executor."""

    endpoint: ProviderEndpoint
    rotator: KeyRotator

    @property
    def kind(self) -> ProviderKind:
        return self.endpoint.kind

    @classmethod
    def from_env(
        cls,
        api_key_env: str = "API_KEY",
        base_url_env: str = "API_BASE_URL",
        default_base_url: str = GEMINI_DEFAULT_BASE_URL,
    ) -> "ProviderContext":
        keys = parse_keys(os.environ.get(api_key_env, ""))
        base_url = os.environ.get(base_url_env, "").strip() or default_base_url
        if not keys:
            logger.warning("No API keys found in %s", api_key_env)
        return cls(endpoint=ProviderEndpoint.from_base_url(base_url), rotator=KeyRotator(keys))

    def switch_base_url(self, base_url: str) -> bool:
        """Point the context at a new base URL. Returns True if the provider family changed."""
        new_endpoint = ProviderEndpoint.from_base_url(base_url.strip() or GEMINI_DEFAULT_BASE_URL)
        changed = new_endpoint.kind != self.endpoint.kind
        self.endpoint = new_endpoint
        if changed:
            logger.info("Provider switched to %s (%s)", new_endpoint.kind.value, new_endpoint.base_url)
        return changed
