"""Transports carrying JSON envelopes between a session and its worker."""

from agentpipe.transport.base import Transport
from agentpipe.transport.stdio import StdioTransport, build_worker_args, find_worker_binary

__all__ = ["StdioTransport", "Transport", "build_worker_args", "find_worker_binary"]
