"""Switchboard: one streaming interface over OpenAI-compatible and Ollama backends.

Public API:
    - create_content_generator(): Build the adapter for a Config
    - Config / BackendKind: Backend selection and credentials
    - Turn and the content blocks: The unified message model
    - reconcile_history(): Pair up tool calls and results in a conversation
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from switchboard.config import BackendKind, Config
from switchboard.errors import (
    CapabilityUnsupportedError,
    ConfigurationError,
    InvalidRequestError,
    MalformedFrameError,
    ProtocolError,
    SwitchboardError,
    TransportError,
)
from switchboard.providers.base import ContentGenerator, ProviderCapabilities
from switchboard.providers.fenced import (
    build_tool_prompt,
    encode_tool_call,
    encode_tool_result,
    extract_tool_calls,
    extract_tool_results,
)
from switchboard.providers.history import reconcile_history
from switchboard.providers.models import (
    Candidate,
    FileReference,
    FinishReason,
    GenerateRequest,
    GenerateResponse,
    GenerationConfig,
    InlineData,
    Text,
    TokenCount,
    ToolCall,
    ToolChoice,
    ToolChoiceMode,
    ToolDeclaration,
    ToolResult,
    Turn,
    Usage,
)

if TYPE_CHECKING:
    import httpx

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("switchboard-llm")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("switchboard").addHandler(logging.NullHandler())

logger = logging.getLogger(__name__)


def create_content_generator(
    config: Config | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> ContentGenerator:
    """Build the adapter for the configured backend.

    The backend is chosen once, here. Pass ``http_client`` to share a
    connection pool; the adapter then leaves closing it to the caller.
    """
    if config is None:
        config = Config.from_env()

    if config.backend is BackendKind.OLLAMA:
        from switchboard.providers.ollama import OllamaProvider

        logger.debug("Selected Ollama backend at %s", config.endpoint)
        return OllamaProvider(config, http_client=http_client)

    if config.backend is BackendKind.OPENAI_COMPATIBLE:
        from switchboard.providers.openai import OpenAICompatibleProvider

        logger.debug("Selected OpenAI-compatible backend at %s", config.endpoint)
        return OpenAICompatibleProvider(config, http_client=http_client)

    raise ConfigurationError(
        f"Unsupported backend: {config.backend!r}",
        hint="Supported backends: 'openai-compatible', 'ollama'",
    )


__all__ = [
    "BackendKind",
    "Candidate",
    "CapabilityUnsupportedError",
    "Config",
    "ConfigurationError",
    "ContentGenerator",
    "FileReference",
    "FinishReason",
    "GenerateRequest",
    "GenerateResponse",
    "GenerationConfig",
    "InlineData",
    "InvalidRequestError",
    "MalformedFrameError",
    "ProtocolError",
    "ProviderCapabilities",
    "SwitchboardError",
    "Text",
    "TokenCount",
    "ToolCall",
    "ToolChoice",
    "ToolChoiceMode",
    "ToolDeclaration",
    "ToolResult",
    "TransportError",
    "Turn",
    "Usage",
    "build_tool_prompt",
    "create_content_generator",
    "encode_tool_call",
    "encode_tool_result",
    "extract_tool_calls",
    "extract_tool_results",
    "reconcile_history",
]
