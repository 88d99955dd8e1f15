"""Unified message model shared by every backend adapter.

Callers build a conversation out of :class:`Turn` objects and receive
:class:`GenerateResponse` increments back, whichever backend is in use.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Union

from switchboard.providers._utils import new_call_id

Role = Literal["system", "user", "assistant", "tool"]


# --- Content blocks ---


@dataclass(frozen=True)
class Text:
    """Plain text content."""

    text: str


@dataclass(frozen=True)
class InlineData:
    """Inline binary payload, base64 encoded."""

    mime_type: str
    data: str


@dataclass(frozen=True)
class FileReference:
    """A reference to a file the backend cannot fetch by itself."""

    uri: str
    display_name: str | None = None
    mime_type: str | None = None


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by the model."""

    name: str
    args: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_call_id)


@dataclass(frozen=True)
class ToolResult:
    """The outcome of a tool invocation, sent back on the next turn.

    ``id`` references the :class:`ToolCall` it answers. It may be ``None``
    when the orchestrator lost track of the id; adapters then fall back to
    matching by ``name``.
    """

    name: str
    response: dict[str, Any] = field(default_factory=dict)
    id: str | None = None


Block = Union[Text, InlineData, FileReference, ToolCall, ToolResult]


@dataclass(frozen=True)
class Turn:
    """One role-tagged entry in a conversation."""

    role: Role
    blocks: tuple[Block, ...] = ()

    @classmethod
    def of(cls, role: Role, *blocks: Block | str) -> Turn:
        """Build a turn, promoting bare strings to :class:`Text` blocks."""
        return cls(role, tuple(Text(b) if isinstance(b, str) else b for b in blocks))

    @property
    def text(self) -> str:
        """Concatenated text of every Text block."""
        return "".join(b.text for b in self.blocks if isinstance(b, Text))


# --- Request side ---


@dataclass(frozen=True)
class ToolDeclaration:
    """A tool the model may call."""

    name: str
    description: str | None = None
    #: JSON schema for the arguments object.
    parameters: dict[str, Any] | None = None


class ToolChoiceMode(str, Enum):
    """How strongly the model is steered towards calling tools."""

    AUTO = "auto"
    ANY = "any"
    NONE = "none"
    VALIDATED = "validated"


@dataclass(frozen=True)
class ToolChoice:
    """Forced-tool directive; ``allowed`` narrows ANY to specific tools."""

    mode: ToolChoiceMode = ToolChoiceMode.AUTO
    allowed: tuple[str, ...] = ()


@dataclass(frozen=True)
class GenerationConfig:
    """Sampling and output options for a single call."""

    temperature: float | None = None
    top_p: float | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None
    max_output_tokens: int | None = None
    stop_sequences: tuple[str, ...] | None = None
    candidate_count: int | None = None
    response_mime_type: str | None = None
    response_schema: dict[str, Any] | None = None
    tool_choice: ToolChoice | None = None


@dataclass(frozen=True)
class GenerateRequest:
    """A unified generation request."""

    contents: tuple[Turn, ...]
    #: Model hint; a pinned Config.model always wins over it.
    model: str | None = None
    system_instruction: str | None = None
    tools: tuple[ToolDeclaration, ...] = ()
    config: GenerationConfig = field(default_factory=GenerationConfig)
    #: Setting this event tears down the in-flight HTTP exchange.
    cancel_event: asyncio.Event | None = field(default=None, compare=False)


# --- Response side ---


class FinishReason(str, Enum):
    """Why a candidate stopped producing output."""

    STOP = "stop"
    MAX_OUTPUT_REACHED = "max_output_reached"
    SAFETY_BLOCKED = "safety_blocked"
    OTHER = "other"


@dataclass(frozen=True)
class Usage:
    """Token accounting reported by the backend."""

    input_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None


@dataclass
class Candidate:
    """One alternative completion (the assistant content it produced)."""

    content: Turn
    finish_reason: FinishReason | None = None
    index: int = 0


@dataclass
class GenerateResponse:
    """One response increment.

    A non-streaming call yields exactly one; a streaming call yields many,
    which concatenate into the full response.
    """

    response_id: str
    model: str
    candidates: list[Candidate] = field(default_factory=list)
    function_calls: list[ToolCall] = field(default_factory=list)
    usage: Usage | None = None
    create_time: str | None = None

    @property
    def text(self) -> str:
        """Text of the first candidate."""
        if not self.candidates:
            return ""
        return self.candidates[0].content.text

    @property
    def finish_reason(self) -> FinishReason | None:
        """Finish reason of the first candidate."""
        if not self.candidates:
            return None
        return self.candidates[0].finish_reason


@dataclass(frozen=True)
class TokenCount:
    """Estimated size of a conversation."""

    total_tokens: int
    total_billable_characters: int
