"""Small HTTP helpers shared by the backend adapters.

This module stays tiny to avoid circular imports between config and providers.
"""

from __future__ import annotations

import asyncio
import platform
import sys
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable

T = TypeVar("T")

# Retryable status codes surfaced on TransportError.retryable.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504})

_END = object()


def normalize_base_url(url: str) -> str:
    """Strip trailing slashes so path joining stays predictable."""
    return url.strip().rstrip("/")


def ensure_path(base_url: str, suffix: str) -> str:
    """Append *suffix* unless the base URL already ends with it."""
    if base_url.endswith(suffix):
        return base_url
    return f"{base_url}/{suffix}"


def build_user_agent(version: str) -> str:
    """Return the User-Agent sent to OpenAI-compatible endpoints."""
    return f"Switchboard/{version} ({sys.platform}; {platform.machine() or 'unknown'})"


async def race_cancel(awaitable: Awaitable[T], cancel_event: asyncio.Event | None) -> T:
    """Await *awaitable*, tearing it down if *cancel_event* fires first.

    Raises ``asyncio.CancelledError`` when the event wins. Without an event
    this is a plain await, so task cancellation still propagates normally.
    """
    if cancel_event is None:
        return await awaitable
    if cancel_event.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise asyncio.CancelledError("request cancelled by caller")

    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not work.done():
            work.cancel()
            # Let the cancelled await unwind (closes sockets) before we raise.
            await asyncio.gather(work, return_exceptions=True)
    if work.cancelled():
        raise asyncio.CancelledError("request cancelled by caller")
    return work.result()


async def next_chunk(
    chunks: AsyncIterator[bytes], cancel_event: asyncio.Event | None
) -> bytes | None:
    """Pull the next body chunk, or ``None`` once the transport is exhausted."""
    item: Any = await race_cancel(anext(chunks, _END), cancel_event)
    if item is _END:
        return None
    return item
