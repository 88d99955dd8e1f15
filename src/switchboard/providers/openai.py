"""OpenAI-compatible chat completions adapter (OpenAI, OpenRouter, vLLM, LM Studio)."""

from __future__ import annotations

from collections import deque
from contextlib import aclosing
from datetime import datetime, timezone
import json
import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

import httpx

from switchboard._http import build_user_agent, ensure_path
from switchboard.errors import CapabilityUnsupportedError, InvalidRequestError
from switchboard.providers._accumulator import (
    FALLBACK_TOOL_NAME,
    RAW_ARGUMENTS_KEY,
    ToolCallAccumulator,
)
from switchboard.providers._framing import SSEFramer
from switchboard.providers._mapping import (
    map_finish_reason,
    openai_content_to_blocks,
    openai_usage,
)
from switchboard.providers._transport import iter_body, open_stream, post_json
from switchboard.providers._utils import (
    clone_schema,
    conversation_chars,
    estimate_tokens,
    new_call_id,
    resolve_model,
    safe_json_parse,
    stringify,
)
from switchboard.providers.base import ProviderCapabilities
from switchboard.providers.models import (
    Candidate,
    FileReference,
    GenerateResponse,
    InlineData,
    Text,
    TokenCount,
    ToolCall,
    ToolChoiceMode,
    ToolResult,
    Turn,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from switchboard.config import Config
    from switchboard.providers.models import (
        Block,
        GenerateRequest,
        GenerationConfig,
        ToolChoice,
        ToolDeclaration,
        Usage,
    )

log = logging.getLogger(__name__)

PROVIDER = "openai-compatible"
OPENROUTER_HOST = "openrouter.ai"
DEFAULT_APP_NAME = "Switchboard"
USER_FIELD_LIMIT = 64
STRUCTURED_OUTPUT_NAME = "switchboard_response"
_EMPTY_PARAMETERS: dict[str, Any] = {"type": "object", "properties": {}}


class OpenAICompatibleProvider:
    """Chat completions over raw HTTP, streamed as SSE."""

    def __init__(
        self, config: Config, *, http_client: httpx.AsyncClient | None = None
    ) -> None:
        """Initialize from a resolved Config; headers are built once here."""
        self.config = config
        endpoint = config.endpoint or ""
        self.chat_endpoint = ensure_path(endpoint, "chat/completions")
        self.is_openrouter = (urlparse(endpoint).hostname or "").endswith(OPENROUTER_HOST)
        self.headers = self._build_headers()
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=None)
        log.debug(
            "OpenAI-compatible adapter ready (endpoint=%s, default_model=%s)",
            self.chat_endpoint,
            config.default_model,
        )

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(native_tools=True, images=True)

    # --- ContentGenerator ---

    async def generate_content(
        self, request: GenerateRequest, prompt_id: str
    ) -> GenerateResponse:
        """Generate one complete response via ``/chat/completions``."""
        payload = self._build_payload(request, prompt_id, stream=False)
        body = await post_json(
            self._client,
            self.chat_endpoint,
            payload,
            headers=self.headers,
            provider=PROVIDER,
            cancel_event=request.cancel_event,
        )
        if not isinstance(body, dict):
            body = {}
        return _from_chat_completion(body, fallback_model=payload["model"])

    async def generate_content_stream(
        self, request: GenerateRequest, prompt_id: str
    ) -> AsyncIterator[GenerateResponse]:
        """Stream response increments as SSE frames arrive."""
        payload = self._build_payload(request, prompt_id, stream=True)
        framer = SSEFramer()
        parser = ChatStreamParser(fallback_model=payload["model"])

        async with open_stream(
            self._client,
            self.chat_endpoint,
            payload,
            headers=self.headers,
            provider=PROVIDER,
            cancel_event=request.cancel_event,
        ) as response, aclosing(
            iter_body(response, provider=PROVIDER, cancel_event=request.cancel_event)
        ) as body:
            async for data in body:
                for frame in framer.feed(data):
                    for increment in parser.process(frame):
                        yield increment
                if framer.done:
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
            "Embeddings are not supported for OpenAI-compatible backends",
            hint="Call the embeddings endpoint of your provider directly.",
        )

    async def aclose(self) -> None:
        """Close the HTTP client if this adapter created it."""
        if self._owns_client:
            await self._client.aclose()

    # --- Request building ---

    def _build_headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": build_user_agent(self.config.client_version or "dev"),
        }
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        if self.is_openrouter:
            if self.config.openrouter_site_url:
                headers["HTTP-Referer"] = self.config.openrouter_site_url
            headers["X-Title"] = self.config.openrouter_app_name or DEFAULT_APP_NAME
        return headers

    def _build_payload(
        self, request: GenerateRequest, prompt_id: str, *, stream: bool
    ) -> dict[str, Any]:
        messages = _build_messages(request)
        if not messages:
            raise InvalidRequestError(
                "Unable to build chat request: no messages provided",
                hint="Pass at least one Turn with text, media, or tool content.",
            )

        config = request.config
        model = resolve_model(self.config.model, request.model, self.config.default_model)
        payload: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "user": prompt_id[:USER_FIELD_LIMIT],
            "stream": stream,
        }
        optional = {
            "temperature": config.temperature,
            "top_p": config.top_p,
            "presence_penalty": config.presence_penalty,
            "frequency_penalty": config.frequency_penalty,
            "max_tokens": config.max_output_tokens,
            "stop": list(config.stop_sequences) if config.stop_sequences else None,
        }
        payload.update({k: v for k, v in optional.items() if v is not None})
        if not stream:
            payload["n"] = config.candidate_count or 1

        if request.tools:
            payload["tools"] = [_tool_definition(tool) for tool in request.tools]
            payload["tool_choice"] = resolve_tool_choice(config.tool_choice)

        response_format = _response_format(config)
        if response_format is not None:
            payload["response_format"] = response_format
        if stream:
            payload["stream_options"] = {"include_usage": True}
        return payload


def _tool_definition(tool: ToolDeclaration) -> dict[str, Any]:
    function: dict[str, Any] = {"name": tool.name or FALLBACK_TOOL_NAME}
    if tool.description:
        function["description"] = tool.description
    function["parameters"] = clone_schema(tool.parameters) or clone_schema(_EMPTY_PARAMETERS)
    return {"type": "function", "function": function}


def resolve_tool_choice(choice: ToolChoice | None) -> str | dict[str, Any]:
    """Map a unified tool choice onto the chat completions vocabulary."""
    if choice is None:
        return "auto"
    if choice.mode is ToolChoiceMode.NONE:
        return "none"
    if choice.mode is ToolChoiceMode.ANY:
        if len(choice.allowed) == 1:
            return {"type": "function", "function": {"name": choice.allowed[0]}}
        return "required"
    return "auto"


def _response_format(config: GenerationConfig) -> dict[str, Any] | None:
    if config.response_mime_type != "application/json":
        return None
    schema = clone_schema(config.response_schema)
    if schema is None:
        return {"type": "json_object"}
    return {
        "type": "json_schema",
        "json_schema": {"name": STRUCTURED_OUTPUT_NAME, "schema": schema},
    }


def _block_to_parts(block: Block) -> list[dict[str, Any]]:
    if isinstance(block, Text):
        return [{"type": "text", "text": block.text}] if block.text else []
    if isinstance(block, InlineData):
        if block.mime_type.startswith("image/"):
            return [
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{block.mime_type};base64,{block.data}"},
                }
            ]
        mime_type = block.mime_type or "application/octet-stream"
        return [{"type": "text", "text": f"[Binary data: {mime_type}]"}]
    if isinstance(block, FileReference):
        label = block.display_name or block.uri
        return [{"type": "text", "text": f"[File reference: {label}]"}]
    return []


def _build_messages(request: GenerateRequest) -> list[dict[str, Any]]:
    """Translate the conversation into chat messages.

    Tool results become dedicated ``tool`` messages. A result without an id
    borrows the oldest unanswered call id recorded for the same tool name.
    """
    messages: list[dict[str, Any]] = []
    if request.system_instruction:
        messages.append({"role": "system", "content": request.system_instruction})

    pending_ids: dict[str, deque[str]] = {}

    for turn in request.contents:
        parts: list[dict[str, Any]] = []
        tool_calls: list[dict[str, Any]] = []
        for block in turn.blocks:
            if isinstance(block, ToolResult):
                messages.append(_tool_message(block, pending_ids))
            elif isinstance(block, ToolCall):
                pending_ids.setdefault(block.name, deque()).append(block.id)
                tool_calls.append(
                    {
                        "id": block.id,
                        "type": "function",
                        "function": {
                            "name": block.name or FALLBACK_TOOL_NAME,
                            "arguments": json.dumps(block.args or {}),
                        },
                    }
                )
            else:
                parts.extend(_block_to_parts(block))

        if not parts and not tool_calls:
            continue
        role = turn.role if turn.role in ("system", "assistant") else "user"
        message: dict[str, Any] = {"role": role, "content": parts or ""}
        if tool_calls:
            message["tool_calls"] = tool_calls
        messages.append(message)

    return messages


def _tool_message(result: ToolResult, pending_ids: dict[str, deque[str]]) -> dict[str, Any]:
    call_id = result.id
    if not call_id:
        queue = pending_ids.get(result.name)
        if queue:
            call_id = queue.popleft()
    return {
        "role": "tool",
        "tool_call_id": call_id or new_call_id(),
        "name": result.name,
        "content": stringify(result.response),
    }


# --- Response mapping ---


def _create_time(created: Any) -> str | None:
    if isinstance(created, (int, float)) and not isinstance(created, bool) and created > 0:
        return datetime.fromtimestamp(created, tz=timezone.utc).isoformat()
    return None


def _to_tool_call(call: Any) -> ToolCall | None:
    if not isinstance(call, dict):
        return None
    function = call.get("function")
    if not isinstance(function, dict):
        function = {}
    call_id = call.get("id")
    name = function.get("name")
    raw = function.get("arguments")
    if isinstance(raw, dict):
        args = raw
    else:
        parsed = safe_json_parse(raw) if isinstance(raw, str) else None
        if parsed is not None:
            args = parsed
        elif isinstance(raw, str) and raw:
            args = {RAW_ARGUMENTS_KEY: raw}
        else:
            args = {}
    return ToolCall(
        id=call_id if isinstance(call_id, str) and call_id else new_call_id(),
        name=name if isinstance(name, str) and name else FALLBACK_TOOL_NAME,
        args=args,
    )


def _from_chat_completion(body: dict[str, Any], *, fallback_model: str) -> GenerateResponse:
    """Map a non-streaming chat completion body."""
    candidates: list[Candidate] = []
    function_calls: list[ToolCall] = []
    choices = body.get("choices")
    for position, choice in enumerate(choices if isinstance(choices, list) else []):
        if not isinstance(choice, dict):
            continue
        message = choice.get("message")
        if not isinstance(message, dict):
            message = {}
        blocks: list[Block] = list(openai_content_to_blocks(message.get("content")))
        raw_calls = message.get("tool_calls")
        calls = [
            c
            for c in (_to_tool_call(raw) for raw in (raw_calls if isinstance(raw_calls, list) else []))
            if c is not None
        ]
        blocks.extend(calls)
        function_calls.extend(calls)
        index = choice.get("index")
        candidates.append(
            Candidate(
                content=Turn("assistant", tuple(blocks)),
                finish_reason=map_finish_reason(choice.get("finish_reason")),
                index=index if isinstance(index, int) else position,
            )
        )

    response_id = body.get("id")
    model = body.get("model")
    return GenerateResponse(
        response_id=response_id if isinstance(response_id, str) and response_id else new_call_id(),
        model=model if isinstance(model, str) and model else fallback_model,
        candidates=candidates,
        function_calls=function_calls,
        usage=openai_usage(body.get("usage")),
        create_time=_create_time(body.get("created")),
    )


class ChatStreamParser:
    """Turns decoded SSE frames into response increments.

    Tool-call deltas are accumulated per choice index; everything else is
    forwarded as soon as it arrives. Call :meth:`flush` once the stream is
    over to force-complete tool calls whose arguments never parsed.
    """

    def __init__(self, fallback_model: str) -> None:
        self.fallback_model = fallback_model
        self._accumulators: dict[int, ToolCallAccumulator] = {}
        self._response_id: str | None = None
        self._model: str | None = None

    @property
    def response_id(self) -> str:
        if self._response_id is None:
            self._response_id = new_call_id()
        return self._response_id

    @property
    def model(self) -> str:
        return self._model or self.fallback_model

    def process(self, chunk: dict[str, Any]) -> list[GenerateResponse]:
        """Map one frame; usage rides on the first increment it produces."""
        chunk_id = chunk.get("id")
        if isinstance(chunk_id, str) and chunk_id:
            self._response_id = chunk_id
        chunk_model = chunk.get("model")
        if isinstance(chunk_model, str) and chunk_model:
            self._model = chunk_model
        create_time = _create_time(chunk.get("created"))

        usage = openai_usage(chunk.get("usage"))
        increments: list[GenerateResponse] = []
        choices = chunk.get("choices")
        for choice in choices if isinstance(choices, list) else []:
            if not isinstance(choice, dict):
                continue
            increment = self._process_choice(choice, usage, create_time)
            if increment is not None:
                increments.append(increment)
                usage = None

        if usage is not None:
            increments.append(
                GenerateResponse(
                    response_id=self.response_id,
                    model=self.model,
                    usage=usage,
                    create_time=create_time,
                )
            )
        return increments

    def _process_choice(
        self, choice: dict[str, Any], usage: Usage | None, create_time: str | None
    ) -> GenerateResponse | None:
        index = choice.get("index")
        if not isinstance(index, int):
            index = 0
        delta = choice.get("delta")
        if not isinstance(delta, dict):
            delta = {}

        blocks: list[Block] = list(openai_content_to_blocks(delta.get("content")))
        deltas = delta.get("tool_calls")
        calls: list[ToolCall] = []
        if isinstance(deltas, list) and deltas:
            accumulator = self._accumulators.setdefault(index, ToolCallAccumulator())
            calls = accumulator.add(deltas)
        blocks.extend(calls)
        finish_reason = map_finish_reason(choice.get("finish_reason"))

        if not blocks and finish_reason is None and usage is None:
            return None
        return GenerateResponse(
            response_id=self.response_id,
            model=self.model,
            candidates=[
                Candidate(
                    content=Turn("assistant", tuple(blocks)),
                    finish_reason=finish_reason,
                    index=index,
                )
            ],
            function_calls=calls,
            usage=usage,
            create_time=create_time,
        )

    def flush(self) -> list[GenerateResponse]:
        """Force-complete pending tool calls, one increment per choice."""
        increments: list[GenerateResponse] = []
        for index in sorted(self._accumulators):
            calls = self._accumulators[index].finalize()
            if not calls:
                continue
            log.debug("Finalized %d incomplete tool call(s) at stream end", len(calls))
            increments.append(
                GenerateResponse(
                    response_id=self.response_id,
                    model=self.model,
                    candidates=[
                        Candidate(content=Turn("assistant", tuple(calls)), index=index)
                    ],
                    function_calls=calls,
                )
            )
        self._accumulators.clear()
        return increments
