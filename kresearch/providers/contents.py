"""Normalize the flexible ``contents`` shape callers use into strict turns."""

import base64
import logging
from typing import Any

from kresearch.models import InlineData, Part, Turn

logger = logging.getLogger(__name__)


def _coerce_part(raw: Any) -> Part | None:
    if isinstance(raw, Part):
        return raw
    if isinstance(raw, str):
        return Part(text=raw)
    if isinstance(raw, dict):
        if raw.get("text") is not None:
            return Part(text=str(raw["text"]))
        inline = raw.get("inline_data") or raw.get("inlineData")
        if isinstance(inline, dict):
            data = inline.get("data", b"")
            if isinstance(data, str):
                data = base64.b64decode(data)
            mime_type = inline.get("mime_type") or inline.get("mimeType") or "application/octet-stream"
            return Part(inline_data=InlineData(mime_type=mime_type, data=data))
    logger.warning("Dropping unsupported content part: %r", raw)
    return None


def _coerce_turn(raw: Any) -> Turn | Any:
    if isinstance(raw, Turn):
        return raw
    if isinstance(raw, str):
        return Turn.user(raw)
    if isinstance(raw, dict) and "parts" in raw:
        parts = tuple(p for p in (_coerce_part(r) for r in raw["parts"] or []) if p is not None)
        return Turn(role=raw.get("role") or "user", parts=parts)
    logger.warning("Unknown contents format, passing through: %r", raw)
    return raw


def format_contents(contents: Any) -> list[Turn | Any]:
    """Map a string, a single turn, or a list of turns to a turn list.

    Shapes we do not understand are passed through unchanged (with a
    warning) so the upstream API gets to decide.
    """
    if isinstance(contents, (list, tuple)):
        return [_coerce_turn(c) for c in contents]
    return [_coerce_turn(contents)]


def contents_text(contents: Any) -> str:
    """Plain text of every turn, space separated."""
    texts: list[str] = []
    for turn in format_contents(contents):
        if isinstance(turn, Turn):
            texts.append(turn.text)
    return " ".join(t for t in texts if t)
