"""Pydantic models for session identity, output events and control payloads."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union, get_args

from pydantic import BaseModel, ConfigDict, Field

PermissionMode = Literal["default", "acceptEdits", "plan", "bypassPermissions"]
HistoryOrder = Literal["asc", "desc"]

PERMISSION_MODES: tuple[str, ...] = get_args(PermissionMode)


class SessionState(str, Enum):
    """Lifecycle states for a session; transitions only move forward."""
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    CLOSED = "closed"


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


class SessionIdentity(BaseModel):
    """Who the worker says this session is. Set once at init."""
    model_config = ConfigDict(frozen=True)

    agent_id: str
    session_id: str
    conversation_id: str
    model: str | None = None
    tools: list[str] = []


class SleeptimeConfig(BaseModel):
    """Background reflection settings negotiated at init."""
    model_config = ConfigDict(frozen=True)

    trigger: str
    behavior: str
    step_count: int


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True)


class InitEvent(_Event):
    """Init envelope: identity plus the feature flags the worker enabled."""
    type: Literal["init"] = "init"
    agent_id: str
    session_id: str
    conversation_id: str
    model: str | None = None
    tools: list[str] = []
    memfs_enabled: bool = False
    skill_sources: list[str] | None = None
    system_info_reminder_enabled: bool | None = None
    sleeptime: SleeptimeConfig | None = None

    @property
    def identity(self) -> SessionIdentity:
        return SessionIdentity(
            agent_id=self.agent_id,
            session_id=self.session_id,
            conversation_id=self.conversation_id,
            model=self.model,
            tools=list(self.tools),
        )


# ---------------------------------------------------------------------------
# Output events
# ---------------------------------------------------------------------------


class AssistantEvent(_Event):
    type: Literal["assistant"] = "assistant"
    content: str
    uuid: str = ""


class ReasoningEvent(_Event):
    type: Literal["reasoning"] = "reasoning"
    content: str
    uuid: str = ""


class ToolCallEvent(_Event):
    """A tool invocation as seen so far.

    Emitted once per argument fragment with ``complete=False`` and once more
    with ``complete=True`` when no further fragments can arrive.
    """
    type: Literal["tool_call"] = "tool_call"
    tool_call_id: str
    tool_name: str
    tool_input: dict[str, Any] = {}
    raw_arguments: str = ""
    complete: bool = False
    needs_approval: bool = False
    uuid: str = ""


class ToolResultEvent(_Event):
    type: Literal["tool_result"] = "tool_result"
    tool_call_id: str
    content: str
    is_error: bool = False
    uuid: str = ""


class StreamEvent(_Event):
    """Partial content update, only sent when partial messages are enabled."""
    type: Literal["stream_event"] = "stream_event"
    event: dict[str, Any]
    uuid: str = ""


class ResultEvent(_Event):
    """Terminal outcome of a turn."""
    type: Literal["result"] = "result"
    success: bool
    result: str | None = None
    error: str | None = None
    stop_reason: str | None = None
    duration_ms: float = 0
    total_cost_usd: float | None = None
    conversation_id: str | None = None


class ErrorEvent(_Event):
    """Out-of-band error detail, richer than a result's error code."""
    type: Literal["error"] = "error"
    message: str
    stop_reason: str = "error"
    run_id: str | None = None
    api_error: dict[str, Any] | None = None


class RetryEvent(_Event):
    type: Literal["retry"] = "retry"
    reason: str
    attempt: int
    max_attempts: int
    delay_ms: float
    run_id: str | None = None


OutputEvent = Annotated[
    Union[
        InitEvent,
        AssistantEvent,
        ReasoningEvent,
        ToolCallEvent,
        ToolResultEvent,
        StreamEvent,
        ResultEvent,
        ErrorEvent,
        RetryEvent,
    ],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Permission decisions
# ---------------------------------------------------------------------------


class PermissionAllow(BaseModel):
    model_config = ConfigDict(frozen=True)

    behavior: Literal["allow"] = "allow"
    updated_input: dict[str, Any] | None = None
    updated_permissions: list[Any] = []

    def to_wire(self) -> dict:
        return {
            "behavior": "allow",
            "updatedInput": self.updated_input,
            "updatedPermissions": list(self.updated_permissions),
        }


class PermissionDeny(BaseModel):
    model_config = ConfigDict(frozen=True)

    behavior: Literal["deny"] = "deny"
    message: str = ""
    interrupt: bool = False

    def to_wire(self) -> dict:
        return {
            "behavior": "deny",
            "message": self.message,
            "interrupt": self.interrupt,
        }


PermissionDecision = Union[PermissionAllow, PermissionDeny]


# ---------------------------------------------------------------------------
# User content
# ---------------------------------------------------------------------------


class TextContent(BaseModel):
    type: Literal["text"] = "text"
    text: str

    def to_wire(self) -> dict:
        return {"type": "text", "text": self.text}


class ImageContent(BaseModel):
    """Base64 encoded image attached to a user turn."""
    type: Literal["image"] = "image"
    media_type: str
    data: str

    def to_wire(self) -> dict:
        return {
            "type": "image",
            "source": {"type": "base64", "media_type": self.media_type, "data": self.data},
        }


ContentItem = Annotated[Union[TextContent, ImageContent], Field(discriminator="type")]


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


class HistoryOptions(BaseModel):
    """Pagination options for list_history()."""
    conversation_id: str | None = None
    before: str | None = None
    after: str | None = None
    order: HistoryOrder = "desc"
    limit: int = Field(default=50, ge=1)


class HistoryPage(BaseModel):
    """One page of raw history items."""
    messages: list[Any] = []
    next_before: str | None = None
    has_more: bool = False


class BootstrapTimings(BaseModel):
    resolve_ms: float
    list_messages_ms: float
    total_ms: float


class BootstrapState(BaseModel):
    """Everything needed to render a conversation without extra round-trips."""
    agent_id: str
    conversation_id: str
    model: str | None = None
    tools: list[str] = []
    memfs_enabled: bool = False
    messages: list[Any] = []
    next_before: str | None = None
    has_more: bool = False
    has_pending_approval: bool = False
    timings: BootstrapTimings | None = None
