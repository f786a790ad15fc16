"""Line transport over a worker subprocess's stdin/stdout.

Spawns the worker CLI with stream-json framing and turns its stdout into a
queue of decoded envelopes. Stderr is drained into the log so a chatty
worker never blocks on a full pipe.
"""

from __future__ import annotations

import asyncio
import glob
import json
import os
import shutil
from collections import deque
from typing import Iterable

import structlog

from agentpipe.errors import TransportClosedError, TransportError, WorkerNotFoundError
from agentpipe.protocol.wire import encode_line
from agentpipe.settings import settings

logger = structlog.get_logger(__name__)

# Worker stderr lines that are noise rather than diagnostics.
_IGNORED_WORKER_STDERR_SUBSTRINGS = (
    "ExperimentalWarning",
    "--trace-warnings",
)


def find_worker_binary() -> str | None:
    """Locate the worker executable from settings, PATH or common locations."""
    explicit = settings.worker_path()
    if explicit:
        return explicit

    name = settings.worker_name()
    found = shutil.which(name)
    if found:
        return found

    # PATH is often incomplete when launched from an IDE or a service manager.
    candidates = [
        os.path.expanduser(f"~/.nvm/versions/node/*/bin/{name}"),
        os.path.expanduser(f"~/.bun/bin/{name}"),
        os.path.expanduser(f"~/.npm-global/bin/{name}"),
        os.path.expanduser(f"~/.local/bin/{name}"),
        f"/usr/local/bin/{name}",
        f"/usr/bin/{name}",
    ]
    for pattern in candidates:
        matches = glob.glob(pattern)
        if matches:
            # Pick the latest version if multiple nvm versions exist
            matches.sort(reverse=True)
            return matches[0]

    return None


def build_worker_args(
    *,
    agent_id: str | None = None,
    conversation_id: str | None = None,
    new_conversation: bool = False,
    model: str | None = None,
    include_partial_messages: bool = False,
    permission_mode: str = "default",
    extra_args: Iterable[str] = (),
) -> list[str]:
    """Build worker CLI flags the engine itself depends on.

    Anything else is passed through ``extra_args`` untouched.
    """
    args = ["--output-format", "stream-json", "--input-format", "stream-json"]

    if conversation_id:
        args.extend(["--conversation", conversation_id])
    elif agent_id:
        args.extend(["--agent", agent_id])
        if new_conversation:
            args.append("--new")
    elif new_conversation:
        args.append("--new")

    if model:
        args.extend(["-m", model])
    if include_partial_messages:
        args.append("--include-partial-messages")

    if permission_mode == "bypassPermissions":
        args.append("--yolo")
    elif permission_mode and permission_mode != "default":
        args.extend(["--permission-mode", permission_mode])

    args.extend(extra_args)
    return args


class StdioTransport:
    """Transport backed by ``asyncio.create_subprocess_exec``."""

    def __init__(
        self,
        command: list[str],
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        line_limit: int | None = None,
        close_timeout: float | None = None,
    ) -> None:
        if not command:
            raise ValueError("worker command must not be empty")
        self._command = list(command)
        self._cwd = cwd
        self._env = env
        self._line_limit = line_limit or settings.stream_line_limit()
        self._close_timeout = close_timeout or settings.close_timeout_seconds()
        self._debug_wire = settings.debug_wire()

        self._proc: asyncio.subprocess.Process | None = None
        self._reader_task: asyncio.Task | None = None
        self._stderr_task: asyncio.Task | None = None
        self._write_lock = asyncio.Lock()
        self._queue: deque[dict] = deque()
        self._readers: deque[asyncio.Future] = deque()
        self._eof = False
        self._closed = False

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc else None

    @property
    def returncode(self) -> int | None:
        return self._proc.returncode if self._proc else None

    @property
    def is_closed(self) -> bool:
        return self._closed or self._eof

    # ------------------------------------------------------------------
    # Transport protocol
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Spawn the worker and start draining its output."""
        if self._closed:
            raise TransportClosedError("transport is closed")
        if self._proc is not None:
            raise TransportError("transport already connected")

        logger.info("Spawning worker process", args=self._command, cwd=self._cwd)
        try:
            proc = await asyncio.create_subprocess_exec(
                *self._command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._cwd,
                env=self._env,
                limit=self._line_limit,
            )
        except FileNotFoundError as exc:
            raise WorkerNotFoundError(f"worker executable not found: {self._command[0]}") from exc

        self._proc = proc
        self._reader_task = asyncio.create_task(self._read_stdout(proc))
        self._stderr_task = asyncio.create_task(self._drain_stderr(proc))
        logger.debug("Worker process started", pid=proc.pid)

    async def write(self, envelope: dict) -> None:
        """Write one envelope as a line. Concurrent writers are serialized."""
        async with self._write_lock:
            proc = self._proc
            if self._closed or proc is None or proc.stdin is None:
                raise TransportClosedError("transport is not connected")
            if self._debug_wire:
                logger.debug("Wire out", envelope=envelope)
            try:
                proc.stdin.write(encode_line(envelope))
                await proc.stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as exc:
                raise TransportClosedError("worker stdin closed") from exc

    async def read(self) -> dict | None:
        """Next envelope from the worker, or ``None`` once it has gone away."""
        if self._queue:
            return self._queue.popleft()
        if self._eof or self._closed:
            return None

        waiter = asyncio.get_running_loop().create_future()
        self._readers.append(waiter)
        try:
            return await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled() and waiter.result() is not None:
                self._queue.appendleft(waiter.result())
            elif waiter in self._readers:
                self._readers.remove(waiter)
            raise

    async def close(self) -> None:
        """Stop the worker and release blocked readers. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        self._queue.clear()

        proc = self._proc
        if proc is not None:
            if proc.stdin is not None and not proc.stdin.is_closing():
                proc.stdin.close()
            if proc.returncode is None:
                try:
                    await asyncio.wait_for(proc.wait(), timeout=self._close_timeout)
                except asyncio.TimeoutError:
                    logger.warning("Worker did not exit in time, killing", pid=proc.pid)
                    try:
                        proc.kill()
                    except ProcessLookupError:
                        pass
                    try:
                        await asyncio.wait_for(proc.wait(), timeout=2.0)
                    except asyncio.TimeoutError:
                        pass

        for task in (self._reader_task, self._stderr_task):
            if task is not None and not task.done():
                task.cancel()
        tasks = [t for t in (self._reader_task, self._stderr_task) if t is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self._mark_eof()
        logger.info("Worker transport closed", returncode=self.returncode)

    # ------------------------------------------------------------------
    # Internal: stream readers
    # ------------------------------------------------------------------

    def _deliver(self, envelope: dict) -> None:
        while self._readers:
            waiter = self._readers.popleft()
            if not waiter.done():
                waiter.set_result(envelope)
                return
        self._queue.append(envelope)

    def _mark_eof(self) -> None:
        self._eof = True
        while self._readers:
            waiter = self._readers.popleft()
            if not waiter.done():
                waiter.set_result(None)

    async def _read_stdout(self, proc: asyncio.subprocess.Process) -> None:
        """Decode JSON lines from the worker until EOF."""
        assert proc.stdout is not None
        try:
            while True:
                try:
                    raw = await proc.stdout.readline()
                except ValueError:
                    logger.warning("Skipping oversized line from worker", limit=self._line_limit)
                    continue
                if not raw:
                    logger.info("Worker stdout EOF", pid=proc.pid)
                    break
                line = raw.strip()
                if not line:
                    continue
                try:
                    envelope = json.loads(line)
                except (ValueError, RecursionError) as exc:
                    # ValueError covers JSONDecodeError and UnicodeDecodeError.
                    logger.warning(
                        "Skipping malformed line from worker",
                        raw=line[:200],
                        error=type(exc).__name__,
                    )
                    continue
                if not isinstance(envelope, dict):
                    logger.warning("Skipping non-object line from worker", raw=line[:200])
                    continue
                if self._debug_wire:
                    logger.debug("Wire in", envelope=envelope)
                self._deliver(envelope)
        except asyncio.CancelledError:
            logger.debug("Worker reader task cancelled", pid=proc.pid)
        except Exception:
            logger.exception("Worker reader task failed", pid=proc.pid)
        finally:
            self._mark_eof()

    async def _drain_stderr(self, proc: asyncio.subprocess.Process) -> None:
        if proc.stderr is None:
            return
        try:
            while True:
                raw = await proc.stderr.readline()
                if not raw:
                    break
                line = raw.decode(errors="replace").rstrip()
                if not line:
                    continue
                if any(s in line for s in _IGNORED_WORKER_STDERR_SUBSTRINGS):
                    continue
                logger.debug("Worker stderr", pid=proc.pid, line=line)
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.debug("Worker stderr drain stopped", pid=proc.pid, exc_info=True)
