"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: wire bodies and a recording mock
transport are all the adapter suites need.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
import json
from typing import Any

import httpx

Responder = Callable[[httpx.Request], httpx.Response]


def sse(*frames: dict[str, Any] | str) -> bytes:
    """Encode frames as an SSE body; strings (e.g. ``[DONE]``) pass verbatim."""
    lines = []
    for frame in frames:
        payload = frame if isinstance(frame, str) else json.dumps(frame, ensure_ascii=False)
        lines.append(f"data: {payload}\n\n")
    return "".join(lines).encode("utf-8")


def ndjson(*objects: dict[str, Any]) -> bytes:
    """Encode objects as newline-delimited JSON."""
    return "".join(f"{json.dumps(obj, ensure_ascii=False)}\n" for obj in objects).encode("utf-8")


def split_every(body: bytes, size: int) -> list[bytes]:
    """Cut *body* into fixed-size chunks (the last one may be shorter)."""
    return [body[i : i + size] for i in range(0, len(body), size)]


async def _aiter(chunks: list[bytes]) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk


def json_response(payload: Any, status_code: int = 200) -> Responder:
    """Respond with a JSON body."""

    def respond(request: httpx.Request) -> httpx.Response:
        _ = request
        return httpx.Response(status_code, json=payload)

    return respond


def stream_response(
    chunks: list[bytes],
    *,
    status_code: int = 200,
    content_type: str = "text/event-stream",
) -> Responder:
    """Respond with a body delivered chunk by chunk."""

    def respond(request: httpx.Request) -> httpx.Response:
        _ = request
        return httpx.Response(
            status_code,
            headers={"Content-Type": content_type},
            content=_aiter(list(chunks)),
        )

    return respond


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, responder: Responder) -> None:
        self.requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return responder(request)

        super().__init__(handler)

    @property
    def last_request(self) -> httpx.Request:
        return self.requests[-1]

    @property
    def last_json(self) -> dict[str, Any]:
        return json.loads(self.requests[-1].content)
