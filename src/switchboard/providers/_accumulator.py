"""Reassembly of tool calls streamed as positional deltas.

OpenAI-compatible servers stream a tool call as a sequence of deltas that
share an ``index``: the first usually carries ``id`` and ``function.name``,
later ones append slices of ``function.arguments``. The arguments are only
valid JSON once the last slice has arrived, so every append re-tries a full
parse and remembers the last success.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any

from switchboard.providers._utils import new_call_id, safe_json_parse
from switchboard.providers.models import ToolCall

log = logging.getLogger(__name__)

FALLBACK_TOOL_NAME = "tool_call"
RAW_ARGUMENTS_KEY = "raw"


@dataclass
class ToolCallBuilder:
    """In-progress state of a single tool-call slot."""

    id: str | None = None
    name: str | None = None
    raw_arguments: str = ""
    parsed_arguments: dict[str, Any] | None = None
    emitted: bool = False

    def append(self, delta: dict[str, Any]) -> None:
        call_id = delta.get("id")
        if isinstance(call_id, str) and call_id:
            self.id = call_id
        function = delta.get("function")
        if not isinstance(function, dict):
            return
        name = function.get("name")
        if isinstance(name, str) and name and not self.name:
            self.name = name
        fragment = function.get("arguments")
        if isinstance(fragment, str):
            self.raw_arguments += fragment
            parsed = safe_json_parse(self.raw_arguments)
            if parsed is not None:
                self.parsed_arguments = parsed

    def try_build(self) -> ToolCall | None:
        """Emit the call once id, name and parsed arguments are all known.

        Servers may send the id after the first argument slice; a slot that
        never gets one is completed by :meth:`finalize` instead.
        """
        if self.emitted or not self.id or not self.name or self.parsed_arguments is None:
            return None
        self.emitted = True
        return ToolCall(
            id=self.id,
            name=self.name,
            args=self.parsed_arguments,
        )

    def finalize(self) -> ToolCall | None:
        """Force-complete the slot with the best data available."""
        if self.emitted:
            return None
        self.emitted = True
        args = safe_json_parse(self.raw_arguments)
        if args is None:
            args = self.parsed_arguments
        if args is None:
            args = {RAW_ARGUMENTS_KEY: self.raw_arguments} if self.raw_arguments else {}
        return ToolCall(
            id=self.id or new_call_id(),
            name=self.name or FALLBACK_TOOL_NAME,
            args=args,
        )


class ToolCallAccumulator:
    """Per-response map from slot index to :class:`ToolCallBuilder`.

    A slot that has been emitted is closed for good: later deltas naming the
    same index are ignored rather than starting a second call.
    """

    def __init__(self) -> None:
        self._slots: dict[int, ToolCallBuilder] = {}
        self._closed: set[int] = set()

    def add(self, deltas: list[dict[str, Any]] | None) -> list[ToolCall]:
        """Apply one frame's tool-call deltas; return calls completed by them."""
        completed: list[ToolCall] = []
        for delta in deltas or []:
            if not isinstance(delta, dict):
                continue
            index = delta.get("index")
            if not isinstance(index, int):
                index = 0
            if index in self._closed:
                log.debug("Ignoring delta for already-emitted tool call slot %d", index)
                continue
            builder = self._slots.setdefault(index, ToolCallBuilder())
            builder.append(delta)
            call = builder.try_build()
            if call is not None:
                completed.append(call)
                del self._slots[index]
                self._closed.add(index)
        return completed

    def finalize(self) -> list[ToolCall]:
        """Force-complete every pending slot, in slot order."""
        calls: list[ToolCall] = []
        for index in sorted(self._slots):
            call = self._slots[index].finalize()
            if call is not None:
                calls.append(call)
            self._closed.add(index)
        self._slots.clear()
        return calls
