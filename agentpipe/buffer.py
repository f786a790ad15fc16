"""Bounded FIFO between the session pump and stream consumers.

The pump is the only producer. When the buffer is full the oldest event is
evicted and counted, so a slow consumer always sees the most recent events
in their original order.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Generic, TypeVar

import structlog

from agentpipe.settings import settings

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class OutputBuffer(Generic[T]):
    """Drop-oldest queue with direct hand-off to suspended consumers."""

    def __init__(self, capacity: int | None = None) -> None:
        if capacity is None:
            capacity = settings.buffer_capacity()
        if capacity < 1:
            raise ValueError(f"buffer capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._items: deque[T] = deque()
        self._waiters: deque[asyncio.Future] = deque()
        self._closed = False
        self._dropped = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def dropped_count(self) -> int:
        """Total events evicted on overflow. Never decreases."""
        return self._dropped

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._items)

    def push(self, item: T) -> None:
        """Deliver ``item`` to a waiting consumer or enqueue it."""
        if self._closed:
            logger.debug("Discarding event pushed after buffer close")
            return

        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(item)
                return

        if len(self._items) >= self._capacity:
            self._items.popleft()
            self._dropped += 1
            if self._dropped == 1 or self._dropped % 100 == 0:
                logger.warning(
                    "Output buffer full, dropping oldest event",
                    capacity=self._capacity,
                    dropped=self._dropped,
                )
        self._items.append(item)

    async def pop(self) -> T | None:
        """Return the next event, or ``None`` once closed and drained."""
        if self._items:
            return self._items.popleft()
        if self._closed:
            return None

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            return await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Handed off just before cancellation; keep it for the next pop.
                result = waiter.result()
                if result is not None:
                    self._items.appendleft(result)
            else:
                try:
                    self._waiters.remove(waiter)
                except ValueError:
                    pass
            raise

    def close(self) -> None:
        """Mark the producer side finished and release every waiting consumer."""
        if self._closed:
            return
        self._closed = True
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
