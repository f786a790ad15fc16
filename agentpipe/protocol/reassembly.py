"""Merge streamed tool-call argument fragments into logical tool calls.

Workers send tool-call arguments in chunks. A chunk may carry an explicit
call id, a positional index, both or neither, and its argument text may be
cumulative (everything so far) or incremental (only the delta). Nothing on
the wire says which, so merging is a heuristic:

* text that extends the accumulated text replaces it (cumulative);
* text identical to the previous chunk of the same call, or already
  contained at the start of the accumulated text, is a re-send and is
  ignored;
* anything else is appended (incremental).

Every chunk is surfaced right away as an incomplete :class:`ToolCallEvent`
so consumers can render progress. :meth:`ToolCallReassembler.finalize`
emits the completed calls with parsed input once no more chunks can arrive.
"""

from __future__ import annotations

import json
from typing import Any

import structlog

from agentpipe.models import ToolCallEvent
from agentpipe.protocol.classifier import ToolFragment

logger = structlog.get_logger(__name__)


def parse_arguments(text: str) -> dict[str, Any]:
    """Parse final argument text; unparseable text is kept under ``raw``."""
    if not text:
        return {}
    try:
        value = json.loads(text)
    except ValueError:
        return {"raw": text}
    if isinstance(value, dict):
        return value
    return {"raw": text}


def _peek_arguments(text: str) -> dict[str, Any]:
    # Partial JSON is expected mid-stream; only report input once it parses.
    if not text:
        return {}
    try:
        value = json.loads(text)
    except ValueError:
        return {}
    return value if isinstance(value, dict) else {}


class _PendingCall:
    __slots__ = ("tool_call_id", "position", "name", "text", "last_fragment", "needs_approval", "uuid")

    def __init__(self, tool_call_id: str | None, position: int) -> None:
        self.tool_call_id = tool_call_id
        self.position = position
        self.name: str | None = None
        self.text = ""
        self.last_fragment: str | None = None
        self.needs_approval = False
        self.uuid = ""

    def merge(self, fragment: ToolFragment) -> None:
        if fragment.name and not self.name:
            self.name = fragment.name
        if fragment.needs_approval:
            self.needs_approval = True
        if fragment.uuid:
            self.uuid = fragment.uuid

        text = fragment.arguments
        if not text:
            return
        if text == self.last_fragment:
            return
        if self.text and text.startswith(self.text):
            self.text = text
        elif self.text.startswith(text):
            # Stale cumulative snapshot.
            return
        else:
            self.text += text
        self.last_fragment = text

    def to_event(self, complete: bool) -> ToolCallEvent:
        return ToolCallEvent(
            tool_call_id=self.tool_call_id or "",
            tool_name=self.name or "",
            tool_input=parse_arguments(self.text) if complete else _peek_arguments(self.text),
            raw_arguments=self.text,
            complete=complete,
            needs_approval=self.needs_approval,
            uuid=self.uuid,
        )


class ToolCallReassembler:
    """Tracks in-flight tool calls for one session's pump."""

    def __init__(self) -> None:
        self._calls: list[_PendingCall] = []
        self._by_id: dict[str, _PendingCall] = {}
        self._by_position: dict[int, _PendingCall] = {}

    def __len__(self) -> int:
        return len(self._calls)

    def ingest(self, fragment: ToolFragment) -> list[ToolCallEvent]:
        """Merge one fragment.

        Returns the events to publish: completed calls displaced by a new id
        at their position, followed by the running state of this call.
        """
        emitted: list[ToolCallEvent] = []
        call = self._resolve(fragment, emitted)
        call.merge(fragment)
        emitted.append(call.to_event(complete=False))
        return emitted

    def finalize(self) -> list[ToolCallEvent]:
        """Complete every pending call, in first-seen order."""
        calls, self._calls = self._calls, []
        self._by_id.clear()
        self._by_position.clear()
        return [call.to_event(complete=True) for call in calls]

    def _resolve(self, fragment: ToolFragment, emitted: list[ToolCallEvent]) -> _PendingCall:
        position = fragment.index if fragment.index is not None else 0
        call_id = fragment.tool_call_id

        if call_id is not None:
            call = self._by_id.get(call_id)
            if call is not None:
                return call

            occupant = self._by_position.get(position)
            if occupant is not None and occupant.tool_call_id is None:
                # Position-only chunks arrived first; this names them.
                occupant.tool_call_id = call_id
                self._by_id[call_id] = occupant
                return occupant
            if occupant is not None and fragment.index is not None:
                emitted.append(self._complete(occupant))

            call = _PendingCall(call_id, position)
            self._calls.append(call)
            self._by_id[call_id] = call
            self._by_position[position] = call
            return call

        call = self._by_position.get(position)
        if call is not None:
            return call

        logger.debug("Tool call fragment without id at new position", position=position)
        call = _PendingCall(None, position)
        self._calls.append(call)
        self._by_position[position] = call
        return call

    def _complete(self, call: _PendingCall) -> ToolCallEvent:
        self._calls.remove(call)
        if call.tool_call_id is not None:
            self._by_id.pop(call.tool_call_id, None)
        if self._by_position.get(call.position) is call:
            del self._by_position[call.position]
        return call.to_event(complete=True)
