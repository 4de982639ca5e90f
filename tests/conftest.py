"""Shared fixtures: a fresh event loop and a connected endpoint pair per test."""
import asyncio

import pytest

from attharness.engine.transport import create_pair


@pytest.fixture
def loop():
    loop = asyncio.new_event_loop()
    yield loop
    loop.close()


@pytest.fixture
def endpoints():
    """(client, harness) sockets of one SEQPACKET pair."""
    pair = create_pair()
    client = pair.detach_client()
    yield client, pair.harness
    client.close()
    pair.close()
