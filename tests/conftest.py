"""
Pytest configuration for consumable_body tests.

This file contains shared fixtures and configuration
for all tests in the project.
"""

import asyncio
from typing import Any, Callable, List
from unittest.mock import MagicMock

import h11
import pytest

from consumable_body import ConsumableStream


class MockWritable:
    """Mock writable destination for pipe tests."""

    def __init__(self) -> None:
        self.chunks: List[bytes] = []
        self.ended = False

    def write(self, chunk: bytes) -> bool:
        self.chunks.append(chunk)
        return True

    def end(self) -> None:
        self.ended = True


@pytest.fixture
def flush():
    """Let callbacks scheduled on the event loop run."""
    async def _flush(turns: int = 5) -> None:
        for _ in range(turns):
            await asyncio.sleep(0)
    return _flush


@pytest.fixture
def producer():
    """Mock producer callbacks for a body."""
    return MagicMock(on_read=MagicMock(), on_destroy=MagicMock())


@pytest.fixture
def make_body(producer):
    """Create a ConsumableStream wired to the mock producer."""
    def _create(**options: Any) -> ConsumableStream:
        return ConsumableStream(
            on_read=producer.on_read,
            on_destroy=producer.on_destroy,
            **options,
        )
    return _create


@pytest.fixture
def mock_writable():
    """Create a mock writable destination."""
    return MockWritable()


@pytest.fixture
def sample_stream_data():
    """Sample stream data for testing."""
    return [
        b"Hello",
        b", ",
        b"World",
        b"!",
    ]


@pytest.fixture
def h11_client() -> Callable[[], h11.Connection]:
    """Create client connections that already sent a GET request."""
    def _create() -> h11.Connection:
        connection = h11.Connection(h11.CLIENT)
        connection.send(
            h11.Request(
                method="GET",
                target="/data",
                headers=[("Host", "example.com")],
            )
        )
        connection.send(h11.EndOfMessage())
        return connection
    return _create
