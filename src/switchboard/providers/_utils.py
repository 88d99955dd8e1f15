"""Shared utilities for backend adapters."""

from __future__ import annotations

from copy import deepcopy
import json
import math
from typing import TYPE_CHECKING, Any
import uuid

if TYPE_CHECKING:
    from collections.abc import Iterable

    from switchboard.providers.models import Turn

# Request-level model hints naming these families belong to another backend.
FOREIGN_MODEL_MARKERS: tuple[str, ...] = ("gemini",)

CHARS_PER_TOKEN = 4


def new_call_id() -> str:
    """Return a fresh identifier for a tool call or response."""
    return str(uuid.uuid4())


def safe_json_parse(value: str | None) -> dict[str, Any] | None:
    """Parse *value* as a JSON object, returning None on any failure."""
    if not value:
        return None
    trimmed = value.strip()
    if not trimmed:
        return None
    try:
        parsed = json.loads(trimmed)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def clone_schema(schema: Any) -> dict[str, Any] | None:
    """Deep-copy a JSON schema so request payloads never alias caller data."""
    if not isinstance(schema, dict):
        return None
    return deepcopy(schema)


def stringify(value: Any) -> str:
    """Render a tool payload as text for backends that only accept strings."""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value if value is not None else {}, indent=2)
    except (TypeError, ValueError):
        return str(value)


def resolve_model(pinned: str | None, requested: str | None, default: str) -> str:
    """Pick the model name for a request.

    A pinned model always wins. A request hint is honoured unless it names a
    model family that belongs to a different backend.
    """
    if pinned:
        return pinned
    if requested and not any(m in requested.lower() for m in FOREIGN_MODEL_MARKERS):
        return requested
    return default


def conversation_chars(turns: Iterable[Turn]) -> int:
    """Count the characters a backend would see for *turns*."""
    from switchboard.providers.models import Text, ToolCall, ToolResult

    total = 0
    for turn in turns:
        for block in turn.blocks:
            if isinstance(block, Text):
                total += len(block.text)
            elif isinstance(block, ToolCall):
                total += len(json.dumps({"name": block.name, "arguments": block.args}))
            elif isinstance(block, ToolResult):
                total += len(stringify(block.response))
    return total


def estimate_tokens(char_count: int) -> int:
    """Order-of-magnitude token estimate; never below 1."""
    return max(1, math.ceil(char_count / CHARS_PER_TOKEN))
