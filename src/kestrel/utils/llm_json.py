"""Tolerant JSON-object parsing for structured model replies."""

from __future__ import annotations

import json
import re

_CODE_FENCE_RE = re.compile(r"```json\n?|```\n?", re.IGNORECASE)


def strip_code_fence(output: str) -> str:
    trimmed = output.strip()
    if not trimmed.startswith("```"):
        return trimmed
    return _CODE_FENCE_RE.sub("", trimmed).strip()


def extract_json_object(output: str) -> str:
    first, last = output.find("{"), output.rfind("}")
    if first == -1 or last == -1 or first > last:
        raise ValueError("No valid JSON object found in output")
    return output[first:last + 1]


def parse_json_object(output: str) -> dict:
    """Parse a reply that should be a JSON object.

    Code fences are stripped; if the remainder still is not valid JSON
    the outermost ``{...}`` span is parsed instead. Raises ``ValueError``
    when no object can be recovered.
    """
    cleaned = strip_code_fence(output or "")
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        parsed = json.loads(extract_json_object(cleaned))
    if not isinstance(parsed, dict):
        raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed
