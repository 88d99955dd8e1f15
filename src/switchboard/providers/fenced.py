"""Fenced-block tool protocol for backends without native tool calling.

The model is told (via a system-prompt addendum) to request a tool with a
fenced block::

    ```tool_call
    {"name": "run_shell", "arguments": {"command": "ls"}}
    ```

and receives results back, in a user turn, as::

    ```tool_result
    {"call_id": "...", "name": "run_shell", "output": {...}}
    ```

Models also produce a ``<tool_call>...</tool_call>`` bracket-tag variant,
which is accepted on input. A block whose payload does not parse is left in
the visible text untouched: it is literal model output, not a call.
"""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING, Any

from switchboard.providers.models import ToolCall, ToolResult

if TYPE_CHECKING:
    from collections.abc import Iterable

    from switchboard.providers.models import ToolDeclaration

TOOL_CALL_TAG = "tool_call"
TOOL_RESULT_TAG = "tool_result"

_NAME_KEYS = ("name", "tool", "command")
_ARGUMENT_KEYS = ("arguments", "args", "parameters", "params")

_FENCE_OPENER = "```tool_call"
_TAG_OPENER = "<tool_call"
_OPENERS = (_FENCE_OPENER, _TAG_OPENER)

# Attributes on the bracket tag are name=value pairs on a single line.
_TAG_HEAD = (
    r"<tool_call(?:[ \t]+[A-Za-z_][\w:.-]*[ \t]*=[ \t]*"
    r"(?:\"[^\"\n]*\"|'[^'\n]*'|[^\s\"'>]+))*[ \t]*>"
)
# Appending one of these completes any unfinished but still valid tag head.
_TAG_HEAD_COMPLETIONS = (">", "=x>", "x>", '">', "'>")

_OPENER_RE = re.compile(r"```tool_call|<tool_call", re.IGNORECASE)
_FENCED_CALL_RE = re.compile(r"```tool_call\s*([\s\S]*?)```", re.IGNORECASE)
_TAG_HEAD_RE = re.compile(_TAG_HEAD, re.IGNORECASE)
_TAGGED_CALL_RE = re.compile(_TAG_HEAD + r"([\s\S]*?)</tool_call>", re.IGNORECASE)
_FENCED_RESULT_RE = re.compile(r"```tool_result\s*([\s\S]*?)```", re.IGNORECASE)

#: Longest unclosed block the streaming scanner holds back before giving up.
MAX_HELD_BLOCK_CHARS = 32_768


# --- Encoding ---


def _fence(tag: str, payload: dict[str, Any]) -> str:
    return "\n".join([f"```{tag}", json.dumps(payload), "```"])


def encode_tool_call(call: ToolCall) -> str:
    """Render a tool call the way the model is asked to write one."""
    return _fence(TOOL_CALL_TAG, {"name": call.name, "arguments": call.args})


def encode_tool_result(result: ToolResult, call_id: str) -> str:
    """Render a tool result for a user turn."""
    return _fence(
        TOOL_RESULT_TAG,
        {"call_id": call_id, "name": result.name or "tool", "output": result.response},
    )


# --- Decoding ---


def _coerce_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, str):
        try:
            decoded = json.loads(raw)
        except ValueError:
            return {"value": raw}
        raw = decoded
    if isinstance(raw, dict):
        return raw
    return {"value": raw}


def parse_tool_call_payload(payload: str | None) -> ToolCall | None:
    """Parse the JSON inside a tool_call block; None if it is not a call."""
    if not payload or not payload.strip():
        return None
    try:
        data = json.loads(payload.strip())
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None

    name = next(
        (data[k] for k in _NAME_KEYS if isinstance(data.get(k), str) and data[k]),
        None,
    )
    if name is None:
        return None
    raw_args = next((data[k] for k in _ARGUMENT_KEYS if data.get(k) is not None), {})
    return ToolCall(name=name, args=_coerce_arguments(raw_args))


def parse_tool_result_payload(payload: str | None) -> ToolResult | None:
    """Parse the JSON inside a tool_result block."""
    if not payload or not payload.strip():
        return None
    try:
        data = json.loads(payload.strip())
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    output = data.get("output", {})
    call_id = data.get("call_id")
    return ToolResult(
        id=call_id if isinstance(call_id, str) else None,
        name=str(data.get("name") or "tool"),
        response=output if isinstance(output, dict) else {"value": output},
    )


def extract_tool_results(text: str) -> list[ToolResult]:
    """Find every well-formed tool_result block in *text*."""
    results = []
    for match in _FENCED_RESULT_RE.finditer(text):
        result = parse_tool_result_payload(match.group(1))
        if result is not None:
            results.append(result)
    return results


def _partial_opener_length(text: str) -> int:
    """Length of the longest suffix of *text* that could start an opener."""
    lowered = text[-len(max(_OPENERS, key=len)) :].lower()
    for size in range(len(lowered), 0, -1):
        tail = lowered[-size:]
        if any(opener.startswith(tail) for opener in _OPENERS):
            return size
    return 0


def _can_still_close(pending: str, *, fenced: bool) -> bool:
    """Whether *pending*, which starts at an opener, may still become a call block.

    A call block carries a JSON object, so anything but ``{`` after the
    opener settles it. A bracket tag must also keep a well-formed head.
    """
    if len(pending) > MAX_HELD_BLOCK_CHARS:
        return False
    if fenced:
        body = pending[len(_FENCE_OPENER) :]
    else:
        head = _TAG_HEAD_RE.match(pending)
        if head is None:
            return any(
                _TAG_HEAD_RE.fullmatch(pending + completion)
                for completion in _TAG_HEAD_COMPLETIONS
            )
        body = pending[head.end() :]
    body = body.lstrip()
    return not body or body.startswith("{")


class ToolCallScanner:
    """Incremental extractor for tool-call blocks in streamed text.

    Text that might be the start of a block is held back until the block
    closes (or the stream ends), so a block split across frames is still
    recognised. An opener that can no longer become a call is released as
    plain text at once, and scanning resumes right after it. Everything else
    is released immediately, in order.
    """

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, text: str) -> tuple[str, list[ToolCall]]:
        """Consume a text fragment; return releasable text and finished calls."""
        self._buffer += text
        return self._drain(final=False)

    def finish(self) -> tuple[str, list[ToolCall]]:
        """Release whatever is held back; unclosed blocks become plain text."""
        return self._drain(final=True)

    def _drain(self, *, final: bool) -> tuple[str, list[ToolCall]]:
        visible: list[str] = []
        calls: list[ToolCall] = []
        buf = self._buffer
        while True:
            opener = _OPENER_RE.search(buf)
            if opener is None:
                keep = 0 if final else _partial_opener_length(buf)
                visible.append(buf[: len(buf) - keep])
                buf = buf[len(buf) - keep :]
                break

            start = opener.start()
            fenced = opener.group().startswith("`")
            block = (_FENCED_CALL_RE if fenced else _TAGGED_CALL_RE).match(buf, start)
            visible.append(buf[:start])
            call = parse_tool_call_payload(block.group(1)) if block is not None else None
            if call is not None:
                calls.append(call)
                buf = buf[block.end() :]
                continue
            if block is None and not final and _can_still_close(buf[start:], fenced=fenced):
                buf = buf[start:]
                break
            # Not a call: the opener is literal text; keep scanning after it.
            visible.append(opener.group())
            buf = buf[opener.end() :]

        self._buffer = buf
        return "".join(visible), calls


def extract_tool_calls(content: str) -> tuple[str, list[ToolCall]]:
    """Strip tool-call blocks from a complete reply.

    Returns the remaining visible text (trimmed) and the calls, in the order
    they appeared.
    """
    scanner = ToolCallScanner()
    head, calls = scanner.feed(content)
    tail, more = scanner.finish()
    return (head + tail).strip(), calls + more


# --- System prompt ---


def build_tool_prompt(tools: Iterable[ToolDeclaration]) -> str | None:
    """Describe the available tools and the fenced protocol to the model."""
    lines = []
    for tool in tools:
        summary = (tool.description or "").strip()
        lines.append(f"- {tool.name or 'tool'}{': ' + summary if summary else ''}")
    if not lines:
        return None
    return "\n".join(
        [
            "Available tools:",
            *lines,
            "",
            "When you want to call a tool, respond with a fenced code block exactly "
            "like this (no extra commentary):",
            "```tool_call",
            '{"name":"tool_name","arguments":{"param":"value"}}',
            "```",
            "Respond with multiple tool_call blocks if you must call more than one "
            "tool. When you are giving a normal reply, do not include any tool_call "
            "block.",
            "",
            "Tool results will be provided back to you in this format:",
            "```tool_result",
            '{"call_id":"id of the call","name":"tool_name","output":{...}}',
            "```",
            "Always wait for the matching tool_result before continuing the "
            "conversation.",
        ]
    )
