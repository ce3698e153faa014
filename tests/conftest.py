"""Shared fixtures: a scriptable stub driver, shared state, channel and worker."""

import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.commands import CommandChannel
from core.state import SharedState
from core.worker import DatabaseWorker
from helpers import StubDriver


@pytest.fixture
def shared_state() -> SharedState:
    return SharedState(connection_input="db://good", query_input="SELECT 1")


@pytest.fixture
def channel() -> CommandChannel:
    channel = CommandChannel(poll_interval=0.01)
    yield channel
    channel.close()


@pytest.fixture
def driver() -> StubDriver:
    return StubDriver()


@pytest.fixture
def worker(shared_state, channel, driver) -> DatabaseWorker:
    """A worker that is not started; drive it with asyncio.run(worker.handle(...))."""
    worker = DatabaseWorker(shared_state, channel, driver_for=lambda uri: driver)
    yield worker
    worker.close()


@pytest.fixture
def running_worker(shared_state, channel, driver) -> DatabaseWorker:
    worker = DatabaseWorker(shared_state, channel, driver_for=lambda uri: driver)
    worker.start()
    yield worker
    worker.stop(timeout=2.0)

