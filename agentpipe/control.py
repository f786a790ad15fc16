"""Correlation of outbound control requests with their control responses."""

from __future__ import annotations

import asyncio
import itertools
import uuid

import structlog

from agentpipe.errors import ControlProtocolError, ControlRequestError

logger = structlog.get_logger(__name__)

SESSION_CLOSED = "session closed"


def _error_response(request_id: str, message: str) -> dict:
    return {"subtype": "error", "request_id": request_id, "error": message, "synthetic": True}


class ControlChannel:
    """One-shot waiters keyed by request id.

    Every registered waiter is resolved exactly once: by the matching
    ``control_response`` or, at shutdown, by :meth:`fail_all` with a
    synthetic error. Waiters receive the inner ``response`` object of the
    envelope (``{"subtype": ..., "request_id": ..., ...}``).
    """

    def __init__(self) -> None:
        self._waiters: dict[str, asyncio.Future] = {}
        self._issued: set[str] = set()
        self._counter = itertools.count(1)
        self._closed = False
        self._close_reason = SESSION_CLOSED

    @property
    def pending_count(self) -> int:
        return len(self._waiters)

    @property
    def closed(self) -> bool:
        return self._closed

    def next_request_id(self, prefix: str) -> str:
        """Generate a request id unique for the lifetime of this channel."""
        return f"{prefix}_{next(self._counter)}_{uuid.uuid4().hex[:8]}"

    def register(self, request_id: str) -> asyncio.Future:
        """Store a waiter for ``request_id`` and return it.

        After :meth:`fail_all` the returned waiter is already resolved with
        the close error, so callers never block on a dead session.
        """
        waiter = asyncio.get_running_loop().create_future()
        if self._closed:
            waiter.set_result(_error_response(request_id, self._close_reason))
            return waiter
        if request_id in self._issued:
            raise ControlProtocolError(f"control request id already used: {request_id}")
        self._issued.add(request_id)
        self._waiters[request_id] = waiter
        return waiter

    def discard(self, request_id: str) -> None:
        """Forget a waiter whose request never made it onto the wire."""
        waiter = self._waiters.pop(request_id, None)
        if waiter is not None and not waiter.done():
            waiter.cancel()

    def resolve(self, envelope: dict) -> bool:
        """Resolve the waiter matching a ``control_response`` envelope.

        Returns False when nothing was waiting for it.
        """
        response = envelope.get("response")
        if not isinstance(response, dict):
            logger.warning("Control response without payload", envelope=envelope)
            return False

        request_id = response.get("request_id")
        waiter = self._waiters.pop(request_id, None) if isinstance(request_id, str) else None
        if waiter is None:
            logger.debug("Dropping unmatched control response", request_id=request_id)
            return False
        if waiter.done():
            # Caller gave up (cancelled); nothing left to deliver.
            return False
        waiter.set_result(response)
        return True

    def fail_all(self, reason: str = SESSION_CLOSED) -> int:
        """Resolve every outstanding waiter with an error. Returns how many."""
        self._closed = True
        self._close_reason = reason
        waiters, self._waiters = self._waiters, {}
        count = 0
        for request_id, waiter in waiters.items():
            if not waiter.done():
                waiter.set_result(_error_response(request_id, reason))
                count += 1
        if count:
            logger.info("Failed outstanding control requests", count=count, reason=reason)
        return count


def unwrap_response(response: dict, request_id: str | None = None) -> dict:
    """Return the success payload of a control response or raise.

    Raises:
        ControlRequestError: The worker (or session shutdown) reported an error.
    """
    if response.get("subtype") == "success":
        payload = response.get("response")
        return payload if isinstance(payload, dict) else {}
    message = response.get("error") or "control request failed"
    raise ControlRequestError(
        str(message),
        request_id=request_id or response.get("request_id"),
        subtype=response.get("subtype"),
    )
