"""Shared adapter-side error helpers.

Adapters convert httpx failures into TransportError with stable metadata so
callers can decide on retries without brittle substring matching.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx

from switchboard._http import RETRYABLE_STATUS_CODES
from switchboard.errors import TransportError, _walk_exception_chain


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code."""
    for e in _walk_exception_chain(exc):
        for attr in ("status_code", "status"):
            value = getattr(e, attr, None)
            if isinstance(value, int) and 100 <= value <= 599:
                return value
        response = getattr(e, "response", None)
        value = getattr(response, "status_code", None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    return None


def extract_error_message(body: bytes, fallback: str) -> str:
    """Best-effort extraction of a backend's error message from a JSON body.

    Understands ``{"error": {"message": ...}}`` (OpenAI style),
    ``{"error": "..."}`` (Ollama style) and ``{"message": ...}``.
    """
    try:
        data: Any = json.loads(body)
    except ValueError:
        return fallback
    if not isinstance(data, dict):
        return fallback
    error = data.get("error")
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, str) and message:
            return message
    if isinstance(error, str) and error:
        return error
    message = data.get("message")
    if isinstance(message, str) and message:
        return message
    return fallback


def _auth_hint(provider: str, status_code: int | None) -> str | None:
    """Generate a hint for auth errors where naming the env var is useful."""
    if status_code in {401, 403}:
        if provider == "openai-compatible":
            return "Check credentials (try setting OPENAI_API_KEY or Config.api_key)."
        return "Check that the endpoint accepts unauthenticated requests."
    return None


def status_error(
    response: httpx.Response,
    body: bytes,
    *,
    provider: str,
    phase: str,
) -> TransportError:
    """Build the TransportError for a non-2xx response."""
    status_code = response.status_code
    fallback = f"{status_code} {response.reason_phrase}".strip()
    message = extract_error_message(body, fallback)
    return TransportError(
        f"{provider} {phase} failed (status={status_code}): {message}",
        hint=_auth_hint(provider, status_code),
        retryable=status_code in RETRYABLE_STATUS_CODES,
        status_code=status_code,
        provider=provider,
        phase=phase,
    )


def wrap_transport_error(
    exc: BaseException,
    *,
    provider: str,
    phase: str,
) -> TransportError:
    """Map network-level failures into TransportError, keeping the cause."""
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    status_code = extract_status_code(exc)
    retryable = isinstance(status_code, int) and status_code in RETRYABLE_STATUS_CODES
    if not retryable:
        for e in _walk_exception_chain(exc):
            if isinstance(e, (httpx.TimeoutException, httpx.TransportError)):
                retryable = True
                break

    cause = str(exc) or type(exc).__name__
    return TransportError(
        f"{provider} {phase} failed: {cause}",
        hint=_auth_hint(provider, status_code),
        retryable=retryable,
        status_code=status_code,
        provider=provider,
        phase=phase,
    )
