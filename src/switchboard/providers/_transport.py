"""HTTP exchange helpers shared by the backend adapters.

Every network await goes through :func:`switchboard._http.race_cancel`, so a
caller-supplied cancel event tears the exchange down at the next suspension
point. Streaming responses are always closed on the way out.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import httpx

from switchboard._http import next_chunk, race_cancel
from switchboard.errors import ProtocolError
from switchboard.providers._errors import status_error, wrap_transport_error

if TYPE_CHECKING:
    import asyncio
    from collections.abc import AsyncIterator


async def post_json(
    client: httpx.AsyncClient,
    url: str,
    payload: dict[str, Any],
    *,
    headers: dict[str, str],
    provider: str,
    cancel_event: asyncio.Event | None = None,
) -> Any:
    """POST *payload* and return the decoded JSON body."""
    try:
        response = await race_cancel(
            client.post(url, json=payload, headers=headers), cancel_event
        )
    except httpx.HTTPError as e:
        raise wrap_transport_error(e, provider=provider, phase="generate") from e

    if response.is_error:
        raise status_error(response, response.content, provider=provider, phase="generate")
    try:
        return response.json()
    except ValueError as e:
        raise ProtocolError(
            f"{provider} returned a response body that is not JSON",
            hint="Check that the endpoint points at the chat API, not a web UI.",
        ) from e


@asynccontextmanager
async def open_stream(
    client: httpx.AsyncClient,
    url: str,
    payload: dict[str, Any],
    *,
    headers: dict[str, str],
    provider: str,
    cancel_event: asyncio.Event | None = None,
) -> AsyncIterator[httpx.Response]:
    """Send a streaming POST; yield the response once headers are in."""
    request = client.build_request("POST", url, json=payload, headers=headers)
    try:
        response = await race_cancel(client.send(request, stream=True), cancel_event)
    except httpx.HTTPError as e:
        raise wrap_transport_error(e, provider=provider, phase="stream") from e

    try:
        if response.is_error:
            try:
                body = await race_cancel(response.aread(), cancel_event)
            except httpx.HTTPError:
                body = b""
            raise status_error(response, body, provider=provider, phase="stream")
        yield response
    finally:
        await response.aclose()


async def iter_body(
    response: httpx.Response,
    *,
    provider: str,
    cancel_event: asyncio.Event | None = None,
) -> AsyncIterator[bytes]:
    """Yield raw body chunks as they arrive."""
    chunks = response.aiter_bytes()
    received = False
    try:
        while True:
            try:
                chunk = await next_chunk(chunks, cancel_event)
            except httpx.HTTPError as e:
                raise wrap_transport_error(e, provider=provider, phase="stream") from e
            if chunk is None:
                break
            if chunk:
                received = True
                yield chunk
    finally:
        await chunks.aclose()

    if not received:
        raise ProtocolError(f"{provider} streaming response had no body")
