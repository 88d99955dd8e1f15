"""History reconciliation for backends that reject unpaired tool references.

A conversation is valid when every tool result answers a tool call seen
earlier. Rather than failing the request, :func:`reconcile_history` filters
out the offending blocks and returns a new conversation; the caller's turns
are never modified.
"""

from __future__ import annotations

from dataclasses import replace
import logging
from typing import TYPE_CHECKING

from switchboard.providers.models import ToolCall, ToolResult

if TYPE_CHECKING:
    from collections.abc import Iterable

    from switchboard.providers.models import Block, Turn

log = logging.getLogger(__name__)


def _rebuild(turn: Turn, blocks: list[Block]) -> Turn | None:
    if not blocks:
        return None
    if len(blocks) == len(turn.blocks):
        return turn
    return replace(turn, blocks=tuple(blocks))


def reconcile_history(turns: Iterable[Turn]) -> list[Turn]:
    """Return a copy of *turns* in which every tool reference is paired.

    - Tool results whose id references no earlier tool call are dropped.
      Results without an id are kept; they are matched by name downstream.
    - When some tool call never received a result, that call is dropped.
    - Turns left without blocks are dropped.

    The pass is idempotent: reconciling its own output changes nothing.
    """
    seen_calls: list[str] = []
    seen_set: set[str] = set()
    resolved: set[str] = set()
    dropped_results = 0
    first_pass: list[Turn] = []

    for turn in turns:
        kept: list[Block] = []
        for block in turn.blocks:
            if isinstance(block, ToolCall):
                if block.id not in seen_set:
                    seen_set.add(block.id)
                    seen_calls.append(block.id)
                kept.append(block)
            elif isinstance(block, ToolResult):
                if block.id is None:
                    kept.append(block)
                elif block.id in seen_set:
                    resolved.add(block.id)
                    kept.append(block)
                else:
                    dropped_results += 1
            else:
                kept.append(block)
        rebuilt = _rebuild(turn, kept)
        if rebuilt is not None:
            first_pass.append(rebuilt)

    unresolved = {call_id for call_id in seen_calls if call_id not in resolved}
    if not unresolved:
        if dropped_results:
            log.debug("Dropped %d orphaned tool result(s) from history", dropped_results)
        return first_pass

    log.debug(
        "Dropped %d orphaned tool result(s) and %d unanswered tool call(s) from history",
        dropped_results,
        len(unresolved),
    )
    second_pass: list[Turn] = []
    for turn in first_pass:
        kept = [
            block
            for block in turn.blocks
            if not (isinstance(block, ToolCall) and block.id in unresolved)
        ]
        rebuilt = _rebuild(turn, kept)
        if rebuilt is not None:
            second_pass.append(rebuilt)
    return second_pass
