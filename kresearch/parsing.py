"""Defensive JSON extraction from free-form model output."""

import json
from typing import Any


def _balanced_end(text: str, start: int) -> int | None:
    """Index just past the object opened at ``start``, honoring string literals."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
    return None


def extract_json_object(text: str) -> dict[str, Any] | None:
    """First balanced JSON object found anywhere in ``text``.

    Tolerates prose and markdown fences around the object. Returns None
    when nothing parses.
    """
    if not text:
        return None
    start = text.find("{")
    while start != -1:
        end = _balanced_end(text, start)
        parsed = None
        if end is not None:
            try:
                parsed = json.loads(text[start:end])
            except ValueError:
                parsed = None
        if isinstance(parsed, dict):
            return parsed
        start = text.find("{", start + 1)
    return None
