"""Shared pytest fixtures for agentpipe tests."""

import os

import pytest

# Host configuration must not leak into test results.
for k in list(os.environ):
    if k.startswith("AGENTPIPE_"):
        os.environ.pop(k, None)


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Force the AnyIO pytest plugin to run tests under asyncio.

    The engine is asyncio-native and the tests use asyncio primitives
    directly (e.g. asyncio.create_task), which trio does not provide.
    """
    return "asyncio"
