"""Protocol definition for line transports."""

from __future__ import annotations

from typing import Protocol


class Transport(Protocol):
    """Duplex stream of JSON envelopes shared with one worker.

    ``read()`` returns ``None`` once the worker is gone; it must never block
    forever after the worker exits or after ``close()``.
    """

    @property
    def is_closed(self) -> bool: ...

    async def connect(self) -> None: ...

    async def read(self) -> dict | None: ...

    async def write(self, envelope: dict) -> None: ...

    async def close(self) -> None: ...
