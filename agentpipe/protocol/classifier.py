"""Map raw wire envelopes to typed internal events.

:func:`classify` is pure: it never raises on bad input and never touches
session state. Anything it does not understand comes back as
``Kind.IGNORED`` with a reason, for the pump to log and drop. Results are
the exception: a turn must end, so an unreadable result still comes back
as a failed ``Kind.RESULT``. Mistyped optional fields fall back to their
defaults.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import ValidationError

from agentpipe.models import (
    AssistantEvent,
    ErrorEvent,
    InitEvent,
    ReasoningEvent,
    ResultEvent,
    RetryEvent,
    SleeptimeConfig,
    StreamEvent,
    ToolResultEvent,
)
from agentpipe.protocol import wire
from agentpipe.protocol.stream_text import text_from_content

INVALID_RESULT = "invalid_result"


class Kind(str, Enum):
    INIT = "init"
    CONTENT = "content"
    TOOL_CALL = "tool_call"
    CONTROL_REQUEST = "control_request"
    CONTROL_RESPONSE = "control_response"
    STREAM_DELTA = "stream_delta"
    RESULT = "result"
    ERROR = "error"
    RETRY = "retry"
    IGNORED = "ignored"


@dataclass(frozen=True)
class ToolFragment:
    """One tool-call argument chunk as it appeared on the wire."""
    tool_call_id: str | None
    index: int | None
    name: str | None
    arguments: str
    needs_approval: bool = False
    uuid: str = ""


@dataclass(frozen=True)
class Classified:
    kind: Kind
    envelope: dict
    event: Any = None
    fragments: tuple[ToolFragment, ...] = ()
    reason: str = ""


def _ignored(envelope: Any, reason: str) -> Classified:
    return Classified(Kind.IGNORED, envelope if isinstance(envelope, dict) else {}, reason=reason)


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _as_index(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def _as_number(value: Any, default: float | None = 0) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return value


def _as_count(value: Any) -> int:
    number = _as_number(value)
    if number is None or not math.isfinite(number):
        return 0
    return int(number)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value)


def _init_event(envelope: dict) -> InitEvent:
    sleeptime = None
    trigger = envelope.get("reflection_trigger")
    behavior = envelope.get("reflection_behavior")
    step_count = envelope.get("reflection_step_count")
    if isinstance(trigger, str) and isinstance(behavior, str) and _as_index(step_count) is not None:
        sleeptime = SleeptimeConfig(trigger=trigger, behavior=behavior, step_count=step_count)

    tools = envelope.get("tools")
    skill_sources = envelope.get("skill_sources")
    reminder = envelope.get("system_info_reminder_enabled")
    return InitEvent(
        agent_id=_as_text(envelope.get("agent_id")),
        session_id=_as_text(envelope.get("session_id")),
        conversation_id=_as_text(envelope.get("conversation_id")),
        model=_str_or_none(envelope.get("model")),
        tools=[str(t) for t in tools] if isinstance(tools, list) else [],
        memfs_enabled=bool(envelope.get("memfs_enabled", False)),
        skill_sources=[str(s) for s in skill_sources] if isinstance(skill_sources, list) else None,
        system_info_reminder_enabled=reminder if isinstance(reminder, bool) else None,
        sleeptime=sleeptime,
    )


def _tool_fragments(envelope: dict, needs_approval: bool) -> tuple[ToolFragment, ...]:
    calls = envelope.get("tool_calls")
    if not isinstance(calls, list) or not calls:
        single = envelope.get("tool_call")
        calls = [single] if isinstance(single, dict) else []

    uuid = _as_text(envelope.get("uuid"))
    fragments = []
    for call in calls:
        if not isinstance(call, dict):
            continue
        # OpenAI-style chunks nest name/arguments under "function".
        function = call.get("function")
        if not isinstance(function, dict):
            function = {}
        arguments = call.get("arguments")
        if arguments is None:
            arguments = function.get("arguments")
        fragments.append(
            ToolFragment(
                tool_call_id=_str_or_none(call.get("tool_call_id")) or _str_or_none(call.get("id")),
                index=_as_index(call.get("index")),
                name=_str_or_none(call.get("name")) or _str_or_none(function.get("name")),
                arguments=_as_text(arguments),
                needs_approval=needs_approval,
                uuid=uuid,
            )
        )
    return tuple(fragments)


def _classify_message(envelope: dict) -> Classified:
    message_type = envelope.get("message_type")
    uuid = _as_text(envelope.get("uuid"))

    if message_type == "assistant_message":
        text = text_from_content(envelope.get("content"))
        if not text:
            return _ignored(envelope, "empty assistant message")
        return Classified(Kind.CONTENT, envelope, event=AssistantEvent(content=text, uuid=uuid))

    if message_type == "reasoning_message":
        text = envelope.get("reasoning")
        if not isinstance(text, str):
            text = text_from_content(envelope.get("content"))
        if not text:
            return _ignored(envelope, "empty reasoning message")
        return Classified(Kind.CONTENT, envelope, event=ReasoningEvent(content=text, uuid=uuid))

    if message_type in ("tool_call_message", "approval_request_message"):
        fragments = _tool_fragments(envelope, message_type == "approval_request_message")
        if not fragments:
            return _ignored(envelope, "tool call message without tool calls")
        return Classified(Kind.TOOL_CALL, envelope, fragments=fragments)

    if message_type == "tool_return_message":
        tool_call_id = _str_or_none(envelope.get("tool_call_id"))
        if tool_call_id is None:
            return _ignored(envelope, "tool return without tool_call_id")
        return Classified(
            Kind.CONTENT,
            envelope,
            event=ToolResultEvent(
                tool_call_id=tool_call_id,
                content=_as_text(envelope.get("tool_return")),
                is_error=envelope.get("status") == "error",
                uuid=uuid,
            ),
        )

    return _ignored(envelope, f"unhandled message_type {message_type!r}")


def _result_event(envelope: dict) -> ResultEvent:
    subtype = envelope.get("subtype")
    success = subtype == "success"
    return ResultEvent(
        success=success,
        result=_str_or_none(envelope.get("result")),
        error=None if success else (_as_text(subtype) or "error"),
        stop_reason=_str_or_none(envelope.get("stop_reason")),
        duration_ms=_as_number(envelope.get("duration_ms")),
        total_cost_usd=_as_number(envelope.get("total_cost_usd"), None),
        conversation_id=_str_or_none(envelope.get("conversation_id")),
    )


def classify(envelope: Any) -> Classified:
    """Classify one decoded envelope."""
    if not isinstance(envelope, dict):
        return _ignored(envelope, "envelope is not an object")
    try:
        return _classify(envelope)
    except ValidationError as exc:
        if envelope.get("type") == wire.RESULT:
            return Classified(
                Kind.RESULT,
                envelope,
                event=ResultEvent(success=False, error=INVALID_RESULT, stop_reason="error"),
            )
        return _ignored(envelope, f"invalid {envelope.get('type')!r} envelope: {exc.error_count()} errors")


def _classify(envelope: dict) -> Classified:
    kind = envelope.get("type")

    if kind == wire.SYSTEM:
        if envelope.get("subtype") == "init":
            return Classified(Kind.INIT, envelope, event=_init_event(envelope))
        return _ignored(envelope, f"unhandled system subtype {envelope.get('subtype')!r}")

    if kind == wire.MESSAGE:
        return _classify_message(envelope)

    if kind == wire.STREAM_EVENT:
        event = envelope.get("event")
        if not isinstance(event, dict):
            return _ignored(envelope, "stream event without payload")
        return Classified(
            Kind.STREAM_DELTA,
            envelope,
            event=StreamEvent(event=event, uuid=_as_text(envelope.get("uuid"))),
        )

    if kind == wire.CONTROL_REQUEST:
        if not isinstance(envelope.get("request"), dict):
            return _ignored(envelope, "control request without request body")
        return Classified(Kind.CONTROL_REQUEST, envelope)

    if kind == wire.CONTROL_RESPONSE:
        return Classified(Kind.CONTROL_RESPONSE, envelope)

    if kind == wire.RESULT:
        return Classified(Kind.RESULT, envelope, event=_result_event(envelope))

    if kind == wire.ERROR:
        api_error = envelope.get("api_error")
        return Classified(
            Kind.ERROR,
            envelope,
            event=ErrorEvent(
                message=_as_text(envelope.get("message")) or "unknown error",
                stop_reason=_str_or_none(envelope.get("stop_reason")) or "error",
                run_id=_str_or_none(envelope.get("run_id")),
                api_error=api_error if isinstance(api_error, dict) else None,
            ),
        )

    if kind == wire.RETRY:
        return Classified(
            Kind.RETRY,
            envelope,
            event=RetryEvent(
                reason=_as_text(envelope.get("reason")),
                attempt=_as_count(envelope.get("attempt")),
                max_attempts=_as_count(envelope.get("max_attempts")),
                delay_ms=_as_number(envelope.get("delay_ms")),
                run_id=_str_or_none(envelope.get("run_id")),
            ),
        )

    return _ignored(envelope, f"unhandled type {kind!r}")
