"""Incremental wire framers.

Both framers are small state machines fed raw body chunks one at a time.
They hold only a decoder and a partial-line buffer, so they can be exercised
without any network and discarded with the response that owns them.
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import Any

from switchboard.errors import MalformedFrameError

log = logging.getLogger(__name__)

DATA_PREFIX = "data:"
SSE_TERMINATOR = "[DONE]"


def decode_frame(payload: str) -> dict[str, Any]:
    """Decode one frame payload into a JSON object."""
    try:
        data = json.loads(payload)
    except ValueError as e:
        raise MalformedFrameError(f"Frame is not valid JSON: {payload[:80]!r}") from e
    if not isinstance(data, dict):
        raise MalformedFrameError(f"Frame is not a JSON object: {payload[:80]!r}")
    return data


class _LineBuffer:
    """UTF-8 decoding line splitter tolerant of arbitrary chunk boundaries."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, data: bytes) -> list[str]:
        self._buffer += self._decoder.decode(data)
        *lines, self._buffer = self._buffer.split("\n")
        return lines

    def close(self) -> str:
        """Flush the decoder and return the unterminated residue, if any."""
        self._buffer += self._decoder.decode(b"", final=True)
        residue, self._buffer = self._buffer, ""
        return residue


class SSEFramer:
    """Split a ``text/event-stream`` body into decoded ``data:`` frames.

    Non-data lines (comments, event names, keep-alives) are ignored, and a
    frame that fails to decode is dropped: OpenAI-compatible servers emit
    non-JSON heartbeats. ``done`` flips once ``data: [DONE]`` is seen; any
    bytes after that are ignored.
    """

    def __init__(self) -> None:
        self._lines = _LineBuffer()
        self.done = False

    def feed(self, data: bytes) -> list[dict[str, Any]]:
        """Consume one body chunk and return the complete frames it finished."""
        if self.done:
            return []
        frames: list[dict[str, Any]] = []
        for line in self._lines.feed(data):
            frame = self._handle_line(line)
            if frame is not None:
                frames.append(frame)
            if self.done:
                break
        return frames

    def close(self) -> list[dict[str, Any]]:
        """Best-effort decode of a final line left without a newline."""
        residue = self._lines.close()
        if self.done or not residue.strip():
            return []
        line = residue.strip()
        if not line.startswith(DATA_PREFIX):
            # Some proxies drop the prefix on the last, unterminated line.
            line = f"{DATA_PREFIX}{line}"
        frame = self._handle_line(line)
        self.done = True
        return [frame] if frame is not None else []

    def _handle_line(self, raw_line: str) -> dict[str, Any] | None:
        line = raw_line.strip()
        if not line.startswith(DATA_PREFIX):
            return None
        payload = line[len(DATA_PREFIX) :].strip()
        if not payload:
            return None
        if payload == SSE_TERMINATOR:
            self.done = True
            return None
        try:
            return decode_frame(payload)
        except MalformedFrameError as e:
            log.debug("Dropping malformed SSE frame: %s", e)
            return None


class NDJSONFramer:
    """Split a newline-delimited JSON body into decoded objects."""

    def __init__(self) -> None:
        self._lines = _LineBuffer()

    def feed(self, data: bytes) -> list[dict[str, Any]]:
        """Consume one body chunk and return the complete objects it finished."""
        frames: list[dict[str, Any]] = []
        for line in self._lines.feed(data):
            frame = self._handle_line(line)
            if frame is not None:
                frames.append(frame)
        return frames

    def close(self) -> list[dict[str, Any]]:
        """Parse the unterminated trailing line once, dropping it if invalid."""
        frame = self._handle_line(self._lines.close())
        return [frame] if frame is not None else []

    @staticmethod
    def _handle_line(raw_line: str) -> dict[str, Any] | None:
        line = raw_line.strip()
        if not line:
            return None
        try:
            return decode_frame(line)
        except MalformedFrameError as e:
            log.debug("Dropping malformed NDJSON line: %s", e)
            return None
