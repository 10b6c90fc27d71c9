"""
Unit tests for the pull-based ReadableByteStream.

Tests the source/controller handshake, queue backpressure,
closing, erroring and cancellation.
"""

import asyncio
from typing import Any, List, Optional

import pytest

from consumable_body.exceptions import StreamError
from consumable_body.web_stream import (
    ReadableByteStream,
    ReadableStreamController,
    StreamState,
    read_stream_to_bytes,
    stream_to_list,
)


class ListSource:
    """Source that enqueues all of its chunks on start."""

    def __init__(self, chunks: List[bytes]) -> None:
        self.chunks = chunks

    def start(self, controller: ReadableStreamController) -> None:
        for chunk in self.chunks:
            controller.enqueue(chunk)
        controller.close()


class CountingSource:
    """Source that enqueues a fixed chunk on every pull."""

    def __init__(self, chunk: bytes) -> None:
        self.chunk = chunk
        self.pulls = 0
        self.cancelled: List[Any] = []
        self.controller: Optional[ReadableStreamController] = None

    def start(self, controller: ReadableStreamController) -> None:
        self.controller = controller

    def pull(self, controller: ReadableStreamController) -> None:
        self.pulls += 1
        controller.enqueue(self.chunk)

    def cancel(self, reason: Any) -> None:
        self.cancelled.append(reason)


class TestReadableByteStream:
    """Test ReadableByteStream consumption."""

    @pytest.mark.asyncio
    async def test_read_chunks(self, sample_stream_data) -> None:
        """Test reading chunks until the stream closes."""
        stream = ReadableByteStream(ListSource(sample_stream_data))

        assert await stream.read() == b"Hello"
        assert await stream.read() == b", "
        assert await stream.read() == b"World"
        assert await stream.read() == b"!"
        assert await stream.read() is None
        assert stream.closed is True
        assert stream.disturbed is True

    @pytest.mark.asyncio
    async def test_aread(self, sample_stream_data) -> None:
        """Test reading entire stream."""
        stream = ReadableByteStream(ListSource(sample_stream_data))
        assert await stream.aread() == b"Hello, World!"

    @pytest.mark.asyncio
    async def test_async_iteration(self, sample_stream_data) -> None:
        """Test iterating over the stream."""
        stream = ReadableByteStream(ListSource(sample_stream_data))

        chunks = []
        async for chunk in stream:
            chunks.append(chunk)

        assert chunks == sample_stream_data

    @pytest.mark.asyncio
    async def test_pending_read_receives_chunk(self, flush) -> None:
        """Test that a waiting reader gets the next enqueued chunk."""
        source = CountingSource(b"x")
        stream = ReadableByteStream(source, high_water_mark=0)
        reader = asyncio.ensure_future(stream.read())
        await flush()

        assert await reader == b"x"

    @pytest.mark.asyncio
    async def test_pending_read_receives_close(self, flush) -> None:
        """Test that closing wakes waiting readers with None."""
        stream = ReadableByteStream()
        reader = asyncio.ensure_future(stream.read())
        await flush()

        stream._controller.close()
        assert await reader is None

    @pytest.mark.asyncio
    async def test_start_failure(self) -> None:
        """Test that an exception in start propagates."""
        class FailingSource:
            def start(self, controller: ReadableStreamController) -> None:
                raise RuntimeError("cannot start")

        with pytest.raises(RuntimeError, match="cannot start"):
            ReadableByteStream(FailingSource())

    @pytest.mark.asyncio
    async def test_negative_high_water_mark(self) -> None:
        """Test that negative capacities are rejected."""
        with pytest.raises(ValueError, match="high_water_mark must be non-negative"):
            ReadableByteStream(high_water_mark=-1)


class TestBackpressure:
    """Test pull scheduling against the high-water mark."""

    @pytest.mark.asyncio
    async def test_pulls_until_full(self, flush) -> None:
        """Test that pull stops once the queue reaches the high-water mark."""
        source = CountingSource(b"abcd")
        stream = ReadableByteStream(source, high_water_mark=8)

        assert source.pulls == 0
        await flush()

        assert source.pulls == 2
        assert source.controller is not None
        assert source.controller.desired_size == 0

        assert await stream.read() == b"abcd"
        assert source.pulls == 3

    @pytest.mark.asyncio
    async def test_desired_size(self) -> None:
        """Test desired_size through the stream's lifetime."""
        source = CountingSource(b"")
        stream = ReadableByteStream(source, high_water_mark=10)
        controller = source.controller
        assert controller is not None

        controller.enqueue(b"abc")
        assert controller.desired_size == 7

        controller.close()
        assert stream.state is StreamState.READABLE
        assert await stream.read() == b"abc"
        assert controller.desired_size == 0
        assert stream.closed is True


class TestClosingAndErrors:
    """Test terminal states of the stream."""

    @pytest.mark.asyncio
    async def test_error(self) -> None:
        """Test that erroring discards the queue and fails reads."""
        source = CountingSource(b"")
        stream = ReadableByteStream(source)
        assert source.controller is not None
        source.controller.enqueue(b"lost")

        error = ValueError("upstream failed")
        source.controller.error(error)

        assert stream.errored is error
        assert source.controller.desired_size is None
        with pytest.raises(ValueError, match="upstream failed"):
            await stream.read()

    @pytest.mark.asyncio
    async def test_error_after_close_is_ignored(self) -> None:
        """Test that a closed stream stays closed."""
        stream = ReadableByteStream(ListSource([]))
        stream._controller.error(ValueError("too late"))

        assert stream.closed is True
        assert await stream.read() is None

    @pytest.mark.asyncio
    async def test_enqueue_after_close(self) -> None:
        """Test that enqueueing into a closed stream fails."""
        stream = ReadableByteStream(ListSource([b"a"]))

        with pytest.raises(StreamError, match="Cannot enqueue into a closed stream"):
            stream._controller.enqueue(b"b")

    @pytest.mark.asyncio
    async def test_cancel(self) -> None:
        """Test that cancel discards data and notifies the source."""
        source = CountingSource(b"")
        stream = ReadableByteStream(source)
        assert source.controller is not None
        source.controller.enqueue(b"discarded")

        await stream.cancel("not interested")

        assert source.cancelled == ["not interested"]
        assert stream.closed is True
        assert await stream.read() is None

    @pytest.mark.asyncio
    async def test_cancel_errored_stream(self) -> None:
        """Test that cancelling an errored stream raises its error."""
        stream = ReadableByteStream()
        stream._controller.error(ValueError("failed"))

        with pytest.raises(ValueError, match="failed"):
            await stream.cancel()


class TestUtilityFunctions:
    """Test utility functions."""

    @pytest.mark.asyncio
    async def test_read_stream_to_bytes(self, sample_stream_data) -> None:
        """Test reading a pull stream to bytes."""
        stream = ReadableByteStream(ListSource(sample_stream_data))
        assert await read_stream_to_bytes(stream) == b"Hello, World!"

    @pytest.mark.asyncio
    async def test_stream_to_list_with_generator(self) -> None:
        """Test converting an async generator to a list."""
        async def data_generator():
            yield b"chunk1"
            yield b"chunk2"

        assert await stream_to_list(data_generator()) == [b"chunk1", b"chunk2"]
