"""Exception hierarchy for agentpipe.

Protocol noise (malformed lines, unknown envelopes, unmatched control
responses) never surfaces as an exception; it is logged inside the pump.
Everything here is raised to a caller of a public operation.
"""

from __future__ import annotations


class AgentPipeError(Exception):
    """Base class for every error raised by agentpipe."""


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


class TransportError(AgentPipeError):
    """The worker process or its pipes failed."""


class TransportClosedError(TransportError):
    """Raised when writing to a transport whose worker has gone away."""


class WorkerNotFoundError(TransportError):
    """Raised when no worker executable can be located."""


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class SessionError(AgentPipeError):
    """Base class for session lifecycle errors."""


class SessionStateError(SessionError):
    """An operation was called from a state that does not allow it."""

    def __init__(self, operation: str, state: str) -> None:
        self.operation = operation
        self.state = state
        super().__init__(f"{operation}() is not valid while session is {state}")


class SessionInitError(SessionError):
    """The worker ended or failed before sending its init envelope."""


class SessionClosedError(SessionError):
    """The session was closed while the operation was in flight."""


# ---------------------------------------------------------------------------
# Control channel
# ---------------------------------------------------------------------------


class ControlProtocolError(AgentPipeError):
    """Misuse of the control channel, e.g. registering a request id twice."""


class ControlRequestError(AgentPipeError):
    """The worker answered a control request with an error."""

    def __init__(self, message: str, *, request_id: str | None = None, subtype: str | None = None) -> None:
        self.request_id = request_id
        self.subtype = subtype
        super().__init__(message)
