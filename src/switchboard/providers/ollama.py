"""Ollama ``/api/chat`` adapter.

Ollama models are driven through the fenced-block tool protocol in
:mod:`switchboard.providers.fenced`: tools are described in the system
prompt, calls are parsed out of the reply text, and results go back as
user turns. History is reconciled before every request because unpaired
tool blocks derail small local models.
"""

from __future__ import annotations

from contextlib import aclosing
import logging
from typing import TYPE_CHECKING, Any

import httpx

from switchboard._http import ensure_path
from switchboard.errors import (
    CapabilityUnsupportedError,
    InvalidRequestError,
    ProtocolError,
    TransportError,
)
from switchboard.providers._framing import NDJSONFramer
from switchboard.providers._mapping import map_finish_reason, ollama_usage
from switchboard.providers._transport import iter_body, open_stream, post_json
from switchboard.providers._utils import (
    conversation_chars,
    estimate_tokens,
    new_call_id,
    resolve_model,
)
from switchboard.providers.base import ProviderCapabilities
from switchboard.providers.fenced import (
    ToolCallScanner,
    build_tool_prompt,
    encode_tool_call,
    encode_tool_result,
    extract_tool_calls,
)
from switchboard.providers.history import reconcile_history
from switchboard.providers.models import (
    Candidate,
    FileReference,
    FinishReason,
    GenerateResponse,
    InlineData,
    Text,
    TokenCount,
    ToolCall,
    ToolResult,
    Turn,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from switchboard.config import Config
    from switchboard.providers.models import Block, GenerateRequest, Usage

log = logging.getLogger(__name__)

PROVIDER = "ollama"


class OllamaProvider:
    """Ollama chat over raw HTTP, streamed as NDJSON."""

    def __init__(
        self, config: Config, *, http_client: httpx.AsyncClient | None = None
    ) -> None:
        """Initialize from a resolved Config."""
        self.config = config
        self.chat_endpoint = ensure_path(config.endpoint or "", "api/chat")
        self.headers = {"Content-Type": "application/json"}
        if config.api_key:
            self.headers["Authorization"] = f"Bearer {config.api_key}"
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=None)
        log.debug(
            "Ollama adapter ready (endpoint=%s, default_model=%s)",
            self.chat_endpoint,
            config.default_model,
        )

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(
            native_tools=False, images=True, reconciles_history=True
        )

    async def generate_content(
        self, request: GenerateRequest, prompt_id: str
    ) -> GenerateResponse:
        """Generate one complete response; tool calls are parsed from the text."""
        _ = prompt_id
        body = self._build_body(request, stream=False)
        data = await post_json(
            self._client,
            self.chat_endpoint,
            body,
            headers=self.headers,
            provider=PROVIDER,
            cancel_event=request.cancel_event,
        )
        if not isinstance(data, dict):
            raise ProtocolError("ollama returned a chat response that is not an object")
        _raise_for_error_payload(data, phase="generate")

        message = data.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        text, calls = extract_tool_calls(content if isinstance(content, str) else "")
        finish_reason = None
        if data.get("done"):
            finish_reason = _done_reason(data)

        model = data.get("model")
        created_at = data.get("created_at")
        return GenerateResponse(
            response_id=new_call_id(),
            model=model if isinstance(model, str) and model else body["model"],
            candidates=[
                Candidate(
                    content=Turn("assistant", _reply_blocks(text, calls)),
                    finish_reason=finish_reason,
                )
            ],
            function_calls=calls,
            usage=ollama_usage(data),
            create_time=created_at if isinstance(created_at, str) else None,
        )

    async def generate_content_stream(
        self, request: GenerateRequest, prompt_id: str
    ) -> AsyncIterator[GenerateResponse]:
        """Stream increments as NDJSON lines arrive."""
        _ = prompt_id
        body = self._build_body(request, stream=True)
        framer = NDJSONFramer()
        parser = OllamaStreamParser(fallback_model=body["model"])

        async with open_stream(
            self._client,
            self.chat_endpoint,
            body,
            headers=self.headers,
            provider=PROVIDER,
            cancel_event=request.cancel_event,
        ) as response, aclosing(
            iter_body(response, provider=PROVIDER, cancel_event=request.cancel_event)
        ) as chunks:
            async for data in chunks:
                for frame in framer.feed(data):
                    for increment in parser.process(frame):
                        yield increment
                if parser.done:
                    break
            else:
                for frame in framer.close():
                    for increment in parser.process(frame):
                        yield increment

        for increment in parser.flush():
            yield increment

    async def count_tokens(self, turns: Sequence[Turn]) -> TokenCount:
        """Estimate tokens as one per four characters."""
        chars = conversation_chars(turns)
        return TokenCount(total_tokens=estimate_tokens(chars), total_billable_characters=chars)

    async def embed_content(self, texts: Sequence[str]) -> list[list[float]]:
        """Raise because embeddings are not implemented for this backend."""
        _ = texts
        raise CapabilityUnsupportedError(
            "Embeddings are not supported for Ollama backends",
            hint="Use Ollama's /api/embed endpoint directly.",
        )

    async def aclose(self) -> None:
        """Close the HTTP client if this adapter created it."""
        if self._owns_client:
            await self._client.aclose()

    # --- Request building ---

    def _build_body(self, request: GenerateRequest, *, stream: bool) -> dict[str, Any]:
        messages = _build_messages(request.contents)
        system_prompt = _system_prompt(request)
        if system_prompt:
            messages.insert(0, {"role": "system", "content": system_prompt})
        if not messages:
            raise InvalidRequestError(
                "Unable to build Ollama request: no messages provided",
                hint="Pass at least one Turn with text, media, or tool content.",
            )

        body: dict[str, Any] = {
            "model": resolve_model(
                self.config.model, request.model, self.config.default_model
            ),
            "messages": messages,
            "stream": stream,
        }
        if request.config.temperature is not None:
            body["options"] = {"temperature": request.config.temperature}
        return body


def _system_prompt(request: GenerateRequest) -> str | None:
    sections = []
    if request.system_instruction and request.system_instruction.strip():
        sections.append(request.system_instruction.strip())
    tool_prompt = build_tool_prompt(request.tools)
    if tool_prompt:
        sections.append(tool_prompt)
    return "\n\n".join(sections) or None


def _build_messages(turns: Sequence[Turn]) -> list[dict[str, Any]]:
    """Flatten reconciled turns into Ollama's text-only message list."""
    messages: list[dict[str, Any]] = []
    for turn in reconcile_history(turns):
        role = turn.role if turn.role in ("system", "assistant") else "user"
        fragments: list[str] = []
        images: list[str] = []

        def flush() -> None:
            content = "\n".join(fragments).strip()
            if content or images:
                message: dict[str, Any] = {"role": role, "content": content}
                if images:
                    message["images"] = list(images)
                messages.append(message)
            fragments.clear()
            images.clear()

        for block in turn.blocks:
            if isinstance(block, ToolResult):
                flush()
                messages.append(
                    {
                        "role": "user",
                        "content": encode_tool_result(block, block.id or new_call_id()),
                    }
                )
            elif isinstance(block, ToolCall):
                fragments.append(encode_tool_call(block))
            elif isinstance(block, Text):
                if block.text:
                    fragments.append(block.text)
            elif isinstance(block, InlineData):
                if block.mime_type.startswith("image/"):
                    images.append(block.data)
                else:
                    mime_type = block.mime_type or "application/octet-stream"
                    fragments.append(f"[Binary data: {mime_type}]")
            elif isinstance(block, FileReference):
                fragments.append(f"[File reference: {block.display_name or block.uri}]")
        flush()
    return messages


# --- Response mapping ---


def _raise_for_error_payload(data: dict[str, Any], *, phase: str) -> None:
    error = data.get("error")
    if isinstance(error, str) and error:
        raise TransportError(
            f"ollama {phase} failed: {error}",
            retryable=False,
            provider=PROVIDER,
            phase=phase,
        )


def _done_reason(data: dict[str, Any]) -> FinishReason:
    reason = data.get("done_reason")
    return map_finish_reason(reason if isinstance(reason, str) else "stop") or FinishReason.STOP


def _reply_blocks(text: str, calls: list[ToolCall]) -> tuple[Block, ...]:
    blocks: list[Block] = [Text(text)] if text else []
    blocks.extend(calls)
    return tuple(blocks)


class OllamaStreamParser:
    """Turns decoded NDJSON lines into response increments.

    Reply text is routed through a :class:`ToolCallScanner`, so a tool-call
    block split over several lines is still recognised. The ``done`` line
    yields a final increment carrying the finish reason and usage.
    """

    def __init__(self, fallback_model: str) -> None:
        self.model = fallback_model
        self.response_id = new_call_id()
        self.done = False
        self._scanner = ToolCallScanner()

    def process(self, frame: dict[str, Any]) -> list[GenerateResponse]:
        """Map one NDJSON object."""
        if self.done:
            return []
        _raise_for_error_payload(frame, phase="stream")
        model = frame.get("model")
        if isinstance(model, str) and model:
            self.model = model

        message = frame.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        text, calls = self._scanner.feed(content if isinstance(content, str) else "")

        if not frame.get("done"):
            if not text and not calls:
                return []
            return [self._increment(text, calls)]

        self.done = True
        tail, more = self._scanner.finish()
        return [
            self._increment(
                text + tail,
                calls + more,
                finish_reason=_done_reason(frame),
                usage=ollama_usage(frame),
            )
        ]

    def flush(self) -> list[GenerateResponse]:
        """Release text held back by the scanner when no done line arrived."""
        if self.done:
            return []
        self.done = True
        text, calls = self._scanner.finish()
        if not text and not calls:
            return []
        return [self._increment(text, calls)]

    def _increment(
        self,
        text: str,
        calls: list[ToolCall],
        *,
        finish_reason: FinishReason | None = None,
        usage: Usage | None = None,
    ) -> GenerateResponse:
        return GenerateResponse(
            response_id=self.response_id,
            model=self.model,
            candidates=[
                Candidate(
                    content=Turn("assistant", _reply_blocks(text, calls)),
                    finish_reason=finish_reason,
                )
            ],
            function_calls=calls,
            usage=usage,
        )
