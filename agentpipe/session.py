"""Session façade: one worker process, one conversation.

A :class:`Session` owns its transport and a single background pump task.
The pump is the only reader of the transport, the only producer into the
output buffer and the only resolver of control waiters. Host callbacks
(permission decisions, external tools) are awaited inline by the pump, so
no further wire input is processed until they return.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Sequence

import structlog

from agentpipe.buffer import OutputBuffer
from agentpipe.control import ControlChannel, unwrap_response
from agentpipe.errors import (
    SessionClosedError,
    SessionInitError,
    SessionStateError,
    TransportClosedError,
    WorkerNotFoundError,
)
from agentpipe.models import (
    BootstrapState,
    HistoryOptions,
    HistoryPage,
    ImageContent,
    InitEvent,
    PERMISSION_MODES,
    OutputEvent,
    PermissionMode,
    ResultEvent,
    SessionIdentity,
    SessionState,
    TextContent,
)
from agentpipe.permissions import CanUseTool, PermissionEngine
from agentpipe.protocol import Kind, ToolCallReassembler, classify, wire
from agentpipe.tools import ExternalTool, ExternalToolExecutor
from agentpipe.transport import StdioTransport, Transport, build_worker_args, find_worker_binary

logger = structlog.get_logger(__name__)

WORKER_EXITED = "worker_exited"


@dataclass
class SessionOptions:
    """How to start the worker and how to answer it."""

    worker: str | None = None
    agent_id: str | None = None
    conversation_id: str | None = None
    new_conversation: bool = False
    model: str | None = None
    permission_mode: PermissionMode = "default"
    can_use_tool: CanUseTool | None = None
    tools: list[ExternalTool] = field(default_factory=list)
    include_partial_messages: bool = False
    buffer_capacity: int | None = None
    cwd: str | None = None
    env: dict[str, str] | None = None
    extra_args: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.permission_mode not in PERMISSION_MODES:
            raise ValueError(f"invalid permission_mode: {self.permission_mode!r}")
        if self.buffer_capacity is not None and self.buffer_capacity < 1:
            raise ValueError("buffer_capacity must be positive")


class Session:
    """Duplex conversation with a worker process.

    Usage::

        async with Session(agent_id="agent-123") as session:
            await session.send("hello")
            async for event in session.stream():
                ...
    """

    def __init__(
        self,
        options: SessionOptions | None = None,
        *,
        transport: Transport | None = None,
        **kwargs: Any,
    ) -> None:
        if options is None:
            options = SessionOptions(**kwargs)
        elif kwargs:
            raise TypeError("pass either SessionOptions or keyword options, not both")
        self._options = options
        self._transport = transport
        self._state = SessionState.UNINITIALIZED
        self._init_event: InitEvent | None = None

        self._buffer: OutputBuffer[OutputEvent] = OutputBuffer(options.buffer_capacity)
        self._control = ControlChannel()
        self._reassembler = ToolCallReassembler()
        self._permissions = PermissionEngine(options.permission_mode, options.can_use_tool)
        self._tools = ExternalToolExecutor(options.tools)

        self._pump_task: asyncio.Task | None = None
        self._turn_open = False
        self._log = logger

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def identity(self) -> SessionIdentity | None:
        return self._init_event.identity if self._init_event else None

    @property
    def init_event(self) -> InitEvent | None:
        return self._init_event

    @property
    def agent_id(self) -> str | None:
        return self._init_event.agent_id if self._init_event else None

    @property
    def session_id(self) -> str | None:
        return self._init_event.session_id if self._init_event else None

    @property
    def conversation_id(self) -> str | None:
        return self._init_event.conversation_id if self._init_event else None

    @property
    def dropped_count(self) -> int:
        """Output events evicted because nobody consumed them in time."""
        return self._buffer.dropped_count

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> InitEvent:
        """Start the worker and wait for its init envelope.

        Control requests that arrive before init (tool approvals, external
        tool calls) are answered inline.

        Raises:
            SessionStateError: The session was already initialized.
            SessionInitError: The worker went away before sending init.
        """
        if self._state != SessionState.UNINITIALIZED:
            raise SessionStateError("initialize", self._state.value)
        self._state = SessionState.INITIALIZING

        try:
            if self._transport is None:
                self._transport = self._build_transport()
            await self._transport.connect()
            await self._transport.write(
                wire.control_request(self._control.next_request_id("init"), wire.INITIALIZE)
            )
            init = await self._await_init()
        except BaseException:
            await self.close()
            raise

        if self._state == SessionState.CLOSED:
            raise SessionClosedError("session closed during initialize")

        self._init_event = init
        self._log = logger.bind(agent_id=init.agent_id, conversation_id=init.conversation_id)
        self._state = SessionState.READY
        self._pump_task = asyncio.create_task(self._pump())
        self._log.info("Session ready", session_id=init.session_id, model=init.model)

        if len(self._tools):
            try:
                await self._request(wire.REGISTER_EXTERNAL_TOOLS, tools=self._tools.definitions())
            except BaseException:
                await self.close()
                raise
        return init

    async def close(self) -> None:
        """Stop the worker and release every waiter. Safe to call repeatedly."""
        if self._state == SessionState.CLOSED:
            return
        self._state = SessionState.CLOSED
        self._log.info("Closing session")

        pump = self._pump_task
        current = asyncio.current_task()
        if pump is not None and pump is not current and not pump.done():
            pump.cancel()
        if self._transport is not None:
            await self._transport.close()
        if pump is not None and pump is not current:
            await asyncio.gather(pump, return_exceptions=True)

        # Covers sessions whose pump never started.
        self._buffer.close()
        self._control.fail_all()

    async def __aenter__(self) -> Session:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Conversation
    # ------------------------------------------------------------------

    async def send(self, message: str | Sequence[TextContent | ImageContent | dict]) -> None:
        """Start a turn. Initializes the session on first use.

        Does not wait for a reply; consume it with :meth:`stream`.
        """
        if self._state == SessionState.UNINITIALIZED:
            await self.initialize()
        self._require_ready("send")

        content = self._encode_content(message)
        self._turn_open = True
        try:
            await self._transport.write(wire.user_message(content))
        except TransportClosedError as exc:
            self._turn_open = False
            raise SessionClosedError("worker is not running") from exc
        self._log.debug(
            "Sent user message",
            parts=1 if isinstance(content, str) else len(content),
        )

    async def stream(self) -> AsyncIterator[OutputEvent]:
        """Yield output events until the current turn's result.

        Iteration also ends when the session closes or the worker exits.
        Breaking out early leaves the session open and unconsumed events
        buffered for the next call.
        """
        if self._state in (SessionState.UNINITIALIZED, SessionState.INITIALIZING):
            raise SessionStateError("stream", self._state.value)

        while True:
            event = await self._buffer.pop()
            if event is None:
                return
            yield event
            if event.type == "result":
                return

    async def abort(self) -> None:
        """Ask the worker to interrupt the current turn."""
        self._require_ready("abort")
        try:
            await self._transport.write(
                wire.control_request(self._control.next_request_id("interrupt"), wire.INTERRUPT)
            )
        except TransportClosedError as exc:
            raise SessionClosedError("worker is not running") from exc
        self._log.info("Interrupt requested")

    async def list_history(self, options: HistoryOptions | None = None, **kwargs: Any) -> HistoryPage:
        """Fetch one page of stored conversation history.

        Raises:
            SessionStateError: The session is not ready.
            ControlRequestError: The worker rejected the request.
            SessionClosedError: The session closed before the reply arrived.
        """
        if self._state != SessionState.READY:
            raise SessionStateError("list_history", self._state.value)
        if options is None:
            options = HistoryOptions(**kwargs)

        payload = await self._request(
            wire.LIST_MESSAGES,
            conversation_id=options.conversation_id,
            before=options.before,
            after=options.after,
            order=options.order,
            limit=options.limit,
        )
        messages = payload.get("messages")
        return HistoryPage(
            messages=messages if isinstance(messages, list) else [],
            next_before=payload.get("next_before"),
            has_more=bool(payload.get("has_more", False)),
        )

    list_messages = list_history

    async def bootstrap_state(self, *, limit: int = 50, order: str = "desc") -> BootstrapState:
        """Fetch identity, first history page and pending-approval flag in one request."""
        init = self._init_event
        if self._state != SessionState.READY or init is None:
            raise SessionStateError("bootstrap_state", self._state.value)

        payload = await self._request(wire.BOOTSTRAP_SESSION_STATE, limit=limit, order=order)
        tools = payload.get("tools")
        messages = payload.get("messages")
        return BootstrapState(
            agent_id=payload.get("agent_id") or init.agent_id,
            conversation_id=payload.get("conversation_id") or init.conversation_id,
            model=payload.get("model", init.model),
            tools=tools if isinstance(tools, list) else list(init.tools),
            memfs_enabled=bool(payload.get("memfs_enabled", init.memfs_enabled)),
            messages=messages if isinstance(messages, list) else [],
            next_before=payload.get("next_before"),
            has_more=bool(payload.get("has_more", False)),
            has_pending_approval=bool(payload.get("has_pending_approval", False)),
            timings=payload.get("timings"),
        )

    # ------------------------------------------------------------------
    # Internal: requests
    # ------------------------------------------------------------------

    def _require_ready(self, operation: str) -> None:
        if self._state == SessionState.CLOSED:
            raise SessionClosedError(f"{operation}() called on a closed session")
        if self._state != SessionState.READY:
            raise SessionStateError(operation, self._state.value)

    def _build_transport(self) -> Transport:
        options = self._options
        worker = options.worker or find_worker_binary()
        if not worker:
            raise WorkerNotFoundError(
                "worker binary not found. Install with: npm install -g @letta-ai/letta-code"
            )
        args = build_worker_args(
            agent_id=options.agent_id,
            conversation_id=options.conversation_id,
            new_conversation=options.new_conversation,
            model=options.model,
            include_partial_messages=options.include_partial_messages,
            permission_mode=options.permission_mode,
            extra_args=options.extra_args,
        )
        return StdioTransport([worker, *args], cwd=options.cwd, env=options.env)

    async def _request(self, subtype: str, **fields: Any) -> dict:
        """Send a control request and wait for its matching response."""
        request_id = self._control.next_request_id(subtype)
        waiter = self._control.register(request_id)
        try:
            await self._transport.write(wire.control_request(request_id, subtype, **fields))
        except TransportClosedError as exc:
            self._control.discard(request_id)
            raise SessionClosedError("worker is not running") from exc

        try:
            response = await waiter
        except asyncio.CancelledError:
            self._control.discard(request_id)
            raise
        if response.get("synthetic"):
            raise SessionClosedError(f"{subtype} interrupted: {response.get('error')}")
        return unwrap_response(response, request_id)

    @staticmethod
    def _encode_content(message: str | Sequence[Any]) -> str | list[dict]:
        if isinstance(message, str):
            return message
        parts = []
        for item in message:
            if isinstance(item, (TextContent, ImageContent)):
                parts.append(item.to_wire())
            elif isinstance(item, dict) and "type" in item:
                parts.append(item)
            else:
                raise TypeError(f"unsupported message part: {item!r}")
        return parts

    async def _reply(self, envelope: dict) -> None:
        try:
            await self._transport.write(envelope)
        except TransportClosedError:
            self._log.debug("Dropping control reply, worker is gone")

    # ------------------------------------------------------------------
    # Internal: init and pump
    # ------------------------------------------------------------------

    async def _await_init(self) -> InitEvent:
        while True:
            envelope = await self._transport.read()
            if envelope is None:
                raise SessionInitError("worker exited before sending init")
            classified = classify(envelope)
            if classified.kind == Kind.INIT:
                return classified.event
            if classified.kind == Kind.CONTROL_REQUEST:
                await self._handle_control_request(envelope)
            elif classified.kind == Kind.CONTROL_RESPONSE:
                self._control.resolve(envelope)
            else:
                logger.debug("Skipping envelope before init", kind=classified.kind.value)

    async def _pump(self) -> None:
        transport = self._transport
        try:
            while True:
                envelope = await transport.read()
                if envelope is None:
                    break
                await self._dispatch(envelope)
        except asyncio.CancelledError:
            self._log.debug("Session pump cancelled")
        except Exception:
            self._log.exception("Session pump failed")
        finally:
            self._finish_pump()

    async def _dispatch(self, envelope: dict) -> None:
        classified = classify(envelope)
        kind = classified.kind

        if kind == Kind.IGNORED:
            self._log.debug("Ignoring envelope", reason=classified.reason)
            return
        if kind == Kind.TOOL_CALL:
            for fragment in classified.fragments:
                for event in self._reassembler.ingest(fragment):
                    self._buffer.push(event)
            return
        if kind == Kind.CONTROL_RESPONSE:
            self._control.resolve(envelope)
            return
        if kind == Kind.STREAM_DELTA:
            self._buffer.push(classified.event)
            return

        # Anything else means in-flight tool calls are done.
        self._flush_tool_calls()

        if kind == Kind.CONTROL_REQUEST:
            await self._handle_control_request(envelope)
        elif kind == Kind.INIT:
            self._log.debug("Ignoring repeated init envelope")
        elif kind == Kind.RESULT:
            self._turn_open = False
            self._buffer.push(classified.event)
        else:
            self._buffer.push(classified.event)

    def _flush_tool_calls(self) -> None:
        for event in self._reassembler.finalize():
            self._buffer.push(event)

    def _finish_pump(self) -> None:
        self._flush_tool_calls()
        if self._state != SessionState.CLOSED:
            self._log.warning("Worker exited", turn_open=self._turn_open)
            if self._turn_open:
                self._buffer.push(
                    ResultEvent(
                        success=False,
                        error=WORKER_EXITED,
                        stop_reason="error",
                        conversation_id=self.conversation_id,
                    )
                )
        self._turn_open = False
        self._buffer.close()
        self._control.fail_all()

    async def _handle_control_request(self, envelope: dict) -> None:
        request_id = envelope.get("request_id")
        request = envelope.get("request") or {}
        subtype = request.get("subtype")
        if not isinstance(request_id, str) or not request_id:
            self._log.warning("Control request without request_id", subtype=subtype)
            return

        tool_input = request.get("input")
        if not isinstance(tool_input, dict):
            tool_input = {}

        if subtype == wire.CAN_USE_TOOL:
            tool_name = str(request.get("tool_name") or "")
            decision = await self._permissions.decide(tool_name, tool_input)
            self._log.info(
                "Tool permission decided",
                tool_name=tool_name,
                behavior=decision.behavior,
                request_id=request_id,
            )
            await self._reply(wire.control_success(request_id, decision.to_wire()))
        elif subtype == wire.EXECUTE_EXTERNAL_TOOL:
            tool_name = str(request.get("tool_name") or "")
            payload = await self._tools.execute(
                str(request.get("tool_call_id") or ""), tool_name, tool_input
            )
            self._log.info(
                "External tool executed",
                tool_name=tool_name,
                is_error=payload["is_error"],
                request_id=request_id,
            )
            await self._reply(wire.control_success(request_id, payload))
        else:
            self._log.warning("Unsupported control request", subtype=subtype, request_id=request_id)
            await self._reply(
                wire.control_error(request_id, f"Unsupported control request subtype: {subtype}")
            )


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def create_session(agent_id: str | None = None, **kwargs: Any) -> Session:
    """Session on a new conversation, for an existing agent or a default one."""
    return Session(SessionOptions(agent_id=agent_id, new_conversation=agent_id is not None, **kwargs))


def resume_session(agent_id: str | None = None, *, conversation_id: str | None = None, **kwargs: Any) -> Session:
    """Session continuing an agent's default conversation or a specific one."""
    if agent_id is None and conversation_id is None:
        raise ValueError("resume_session() needs an agent_id or a conversation_id")
    return Session(SessionOptions(agent_id=agent_id, conversation_id=conversation_id, **kwargs))
