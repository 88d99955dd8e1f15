"""Pure mapping helpers from wire vocabulary to the unified model."""

from __future__ import annotations

from typing import Any

from switchboard.providers.models import FinishReason, Text, Usage

_FINISH_REASONS: dict[str, FinishReason] = {
    "stop": FinishReason.STOP,
    "length": FinishReason.MAX_OUTPUT_REACHED,
    "content_filter": FinishReason.SAFETY_BLOCKED,
}

# Tool calls are signalled by their presence, not by a finish reason.
_IMPLICIT_REASONS = frozenset({"tool_calls"})


def map_finish_reason(reason: str | None) -> FinishReason | None:
    """Map a wire finish reason; ``None`` means the candidate is still open."""
    if not reason:
        return None
    if reason in _IMPLICIT_REASONS:
        return None
    return _FINISH_REASONS.get(reason, FinishReason.OTHER)


def _count(value: Any) -> int | None:
    # bool is an int subclass; a boolean counter is a malformed payload.
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def make_usage(
    input_tokens: Any, output_tokens: Any, total_tokens: Any = None
) -> Usage | None:
    """Build Usage from raw counters, or None when the backend sent none."""
    inp = _count(input_tokens)
    out = _count(output_tokens)
    total = _count(total_tokens)
    if inp is None and out is None and total is None:
        return None
    if total is None and inp is not None and out is not None:
        total = inp + out
    return Usage(input_tokens=inp, output_tokens=out, total_tokens=total)


def openai_usage(usage: Any) -> Usage | None:
    """Map an OpenAI ``usage`` object."""
    if not isinstance(usage, dict):
        return None
    return make_usage(
        usage.get("prompt_tokens"),
        usage.get("completion_tokens"),
        usage.get("total_tokens"),
    )


def ollama_usage(payload: dict[str, Any]) -> Usage | None:
    """Map Ollama's ``prompt_eval_count`` / ``eval_count`` counters."""
    return make_usage(payload.get("prompt_eval_count"), payload.get("eval_count"))


def openai_content_to_blocks(content: Any) -> list[Text]:
    """Convert OpenAI message content (string or part list) to Text blocks.

    Image parts have no unified output form and are surfaced as a textual
    marker carrying the URL.
    """
    if not content:
        return []
    if isinstance(content, str):
        return [Text(content)]
    if not isinstance(content, list):
        return []

    blocks: list[Text] = []
    for item in content:
        if not isinstance(item, dict):
            continue
        kind = item.get("type")
        if kind in {"text", "input_text", "output_text"}:
            text = item.get("text")
            if isinstance(text, str) and text:
                blocks.append(Text(text))
        elif kind == "image_url":
            image = item.get("image_url")
            url = image.get("url") if isinstance(image, dict) else None
            if isinstance(url, str) and url:
                blocks.append(Text(f"[Image content: {url}]"))
    return blocks
