"""Content generator protocol: the interface every backend adapter implements."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from switchboard.providers.models import (
        GenerateRequest,
        GenerateResponse,
        TokenCount,
        Turn,
    )


@dataclass(frozen=True)
class ProviderCapabilities:
    """Feature flags exposed by backend adapters."""

    native_tools: bool
    streaming: bool = True
    embeddings: bool = False
    images: bool = False
    reconciles_history: bool = False


@runtime_checkable
class ContentGenerator(Protocol):
    """Minimal backend protocol: generate, stream, count, close."""

    async def generate_content(
        self, request: GenerateRequest, prompt_id: str
    ) -> GenerateResponse:
        """Generate one complete response."""
        ...

    def generate_content_stream(
        self, request: GenerateRequest, prompt_id: str
    ) -> AsyncIterator[GenerateResponse]:
        """Stream response increments in arrival order."""
        ...

    async def count_tokens(self, turns: Sequence[Turn]) -> TokenCount:
        """Estimate the token size of a conversation."""
        ...

    async def embed_content(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed texts; adapters without embeddings raise."""
        ...

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Feature capabilities of this backend."""
        ...

    async def aclose(self) -> None:
        """Release the underlying HTTP client, if owned."""
        ...
