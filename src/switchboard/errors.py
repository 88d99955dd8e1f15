"""Exception hierarchy for Switchboard."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class SwitchboardError(Exception):
    """Base exception for all Switchboard errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(SwitchboardError):
    """Backend configuration is missing or cannot be resolved."""


class InvalidRequestError(SwitchboardError):
    """A generation request yields nothing the backend can accept."""


class CapabilityUnsupportedError(SwitchboardError):
    """The selected backend does not implement the requested operation."""


class ProtocolError(SwitchboardError):
    """The backend answered in a shape the adapter cannot consume.

    Raised for a streaming response without a body or an unparseable
    terminal payload; the stream is aborted.
    """


class MalformedFrameError(ProtocolError):
    """A single streaming frame failed to decode.

    Framers catch this and skip the frame; it never reaches callers.
    """


class TransportError(SwitchboardError):
    """The HTTP exchange with the backend failed.

    Carries the status code (``None`` for network-level failures) and a
    ``retryable`` hint. Retrying is the caller's decision; the adapter never
    retries internally.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        provider: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
        self.status_code = status_code
        self.provider = provider
        self.phase = phase


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
