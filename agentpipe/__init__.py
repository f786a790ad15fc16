"""agentpipe: duplex stream-json sessions with a subprocess agent worker."""

from agentpipe.buffer import OutputBuffer
from agentpipe.control import ControlChannel
from agentpipe.errors import (
    AgentPipeError,
    ControlProtocolError,
    ControlRequestError,
    SessionClosedError,
    SessionError,
    SessionInitError,
    SessionStateError,
    TransportClosedError,
    TransportError,
    WorkerNotFoundError,
)
from agentpipe.models import (
    AssistantEvent,
    BootstrapState,
    ErrorEvent,
    HistoryOptions,
    HistoryPage,
    ImageContent,
    InitEvent,
    OutputEvent,
    PermissionAllow,
    PermissionDecision,
    PermissionDeny,
    PermissionMode,
    ReasoningEvent,
    ResultEvent,
    RetryEvent,
    SessionIdentity,
    SessionState,
    StreamEvent,
    TextContent,
    ToolCallEvent,
    ToolResultEvent,
)
from agentpipe.permissions import PermissionEngine, evaluate_permission
from agentpipe.protocol import extract_stream_text_delta
from agentpipe.session import Session, SessionOptions, create_session, resume_session
from agentpipe.tools import ExternalTool

__version__ = "0.3.0"

__all__ = [
    "AgentPipeError",
    "AssistantEvent",
    "BootstrapState",
    "ControlChannel",
    "ControlProtocolError",
    "ControlRequestError",
    "ErrorEvent",
    "ExternalTool",
    "HistoryOptions",
    "HistoryPage",
    "ImageContent",
    "InitEvent",
    "OutputBuffer",
    "OutputEvent",
    "PermissionAllow",
    "PermissionDecision",
    "PermissionDeny",
    "PermissionEngine",
    "PermissionMode",
    "ReasoningEvent",
    "ResultEvent",
    "RetryEvent",
    "Session",
    "SessionClosedError",
    "SessionError",
    "SessionIdentity",
    "SessionInitError",
    "SessionOptions",
    "SessionState",
    "SessionStateError",
    "StreamEvent",
    "TextContent",
    "ToolCallEvent",
    "ToolResultEvent",
    "TransportClosedError",
    "TransportError",
    "WorkerNotFoundError",
    "create_session",
    "evaluate_permission",
    "extract_stream_text_delta",
    "resume_session",
]
