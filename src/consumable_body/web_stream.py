"""
Pull-based byte streams for consumable_body.

This module provides ReadableByteStream, a backpressure-aware stream that
pulls chunks from an underlying source on demand. The source talks to the
stream through a ReadableStreamController, whose ``desired_size`` tells
the producer how much more data the queue will accept.
"""

import asyncio
import logging
from collections import deque
from enum import Enum
from typing import (
    Any,
    AsyncIterable,
    AsyncIterator,
    Deque,
    List,
    Optional,
)

from .exceptions import StreamError

logger = logging.getLogger(__name__)


class StreamState(Enum):
    """States of a ReadableByteStream."""
    READABLE = "readable"  # Chunks may still be enqueued or read
    CLOSED = "closed"      # All chunks delivered, reads return None
    ERRORED = "errored"    # Reads raise the stored error


class ReadableStreamController:
    """
    Producer-side handle of a ReadableByteStream.

    Passed to the underlying source's ``start`` and ``pull`` methods.
    """

    def __init__(self, stream: "ReadableByteStream") -> None:
        self._stream = stream

    @property
    def desired_size(self) -> Optional[int]:
        """Get the remaining queue capacity in bytes (None once errored)."""
        return self._stream._desired_size()

    def enqueue(self, chunk: bytes) -> None:
        """Add a chunk to the stream's queue."""
        self._stream._enqueue(chunk)

    def close(self) -> None:
        """Signal that no more chunks will be enqueued."""
        self._stream._close()

    def error(self, err: BaseException) -> None:
        """Put the stream into the errored state."""
        self._stream._error(err)


class ReadableByteStream:
    """
    Backpressure-aware pull stream of bytes.

    The underlying source may define ``start(controller)``,
    ``pull(controller)`` and ``cancel(reason)``. ``start`` runs during
    construction. ``pull`` is called on a later loop turn whenever the
    queue holds less than the high-water mark or a reader is waiting,
    and never while a previous ``pull`` is still running.
    """

    DEFAULT_HIGH_WATER_MARK = 16 * 1024  # 16 KiB

    def __init__(
        self,
        source: Any = None,
        *,
        high_water_mark: Optional[int] = None,
    ) -> None:
        """
        Initialize ReadableByteStream.

        Args:
            source: The underlying source object
            high_water_mark: Queue capacity in bytes
        """
        if high_water_mark is not None and high_water_mark < 0:
            raise ValueError("high_water_mark must be non-negative")

        self._source = source
        self._high_water_mark = (
            self.DEFAULT_HIGH_WATER_MARK if high_water_mark is None else high_water_mark
        )
        self._queue: Deque[bytes] = deque()
        self._queue_size = 0
        self._state = StreamState.READABLE
        self._stored_error: Optional[BaseException] = None
        self._close_requested = False
        self._started = False
        self._pulling = False
        self._pull_again = False
        self._disturbed = False
        self._waiters: Deque["asyncio.Future[Optional[bytes]]"] = deque()
        self._controller = ReadableStreamController(self)

        start = getattr(source, "start", None)
        if start is not None:
            try:
                start(self._controller)
            except Exception as exc:
                self._error(exc)
                raise

        self._started = True
        asyncio.get_running_loop().call_soon(self._call_pull_if_needed)

    # Controller operations

    def _desired_size(self) -> Optional[int]:
        if self._state is StreamState.ERRORED:
            return None
        if self._state is StreamState.CLOSED:
            return 0
        return self._high_water_mark - self._queue_size

    def _enqueue(self, chunk: bytes) -> None:
        if self._close_requested or self._state is not StreamState.READABLE:
            raise StreamError("Cannot enqueue into a closed stream")

        chunk = bytes(chunk)
        while self._waiters and self._waiters[0].done():
            self._waiters.popleft()

        if self._waiters and not self._queue:
            self._waiters.popleft().set_result(chunk)
        else:
            self._queue.append(chunk)
            self._queue_size += len(chunk)

        self._call_pull_if_needed()

    def _close(self) -> None:
        if self._close_requested or self._state is not StreamState.READABLE:
            return
        self._close_requested = True
        if not self._queue:
            self._finish_close()

    def _error(self, err: BaseException) -> None:
        if self._state is not StreamState.READABLE:
            return
        self._state = StreamState.ERRORED
        self._stored_error = err
        self._queue.clear()
        self._queue_size = 0
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_exception(err)
        logger.debug("Pull stream errored: %r", err)

    def _finish_close(self) -> None:
        self._state = StreamState.CLOSED
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)

    def _call_pull_if_needed(self) -> None:
        if (
            not self._started
            or self._state is not StreamState.READABLE
            or self._close_requested
        ):
            return

        desired = self._desired_size()
        if not self._waiters and (desired is None or desired <= 0):
            return

        if self._pulling:
            self._pull_again = True
            return

        pull = getattr(self._source, "pull", None)
        if pull is None:
            return

        self._pulling = True
        try:
            pull(self._controller)
        except Exception as exc:
            self._error(exc)
            return
        finally:
            self._pulling = False

        if self._pull_again:
            self._pull_again = False
            asyncio.get_running_loop().call_soon(self._call_pull_if_needed)

    # Consumer operations

    async def read(self) -> Optional[bytes]:
        """
        Read the next chunk.

        Returns:
            The next chunk, or None once the stream is closed

        Raises:
            The stored error if the stream errored
        """
        self._disturbed = True

        if self._state is StreamState.ERRORED:
            raise self._stored_error  # type: ignore[misc]

        if self._queue:
            chunk = self._queue.popleft()
            self._queue_size -= len(chunk)
            if self._close_requested and not self._queue:
                self._finish_close()
            else:
                self._call_pull_if_needed()
            return chunk

        if self._state is StreamState.CLOSED:
            return None

        waiter: "asyncio.Future[Optional[bytes]]" = (
            asyncio.get_running_loop().create_future()
        )
        self._waiters.append(waiter)
        self._call_pull_if_needed()
        return await waiter

    async def __aiter__(self) -> AsyncIterator[bytes]:
        """Iterate over chunks until the stream closes."""
        finished = False
        try:
            while True:
                try:
                    chunk = await self.read()
                except BaseException:
                    finished = True
                    raise
                if chunk is None:
                    finished = True
                    return
                yield chunk
        finally:
            if not finished and self._state is StreamState.READABLE:
                await self.cancel()

    async def aread(self) -> bytes:
        """Read entire stream and return as bytes."""
        chunks = []
        async for chunk in self:
            chunks.append(chunk)
        return b"".join(chunks)

    async def cancel(self, reason: Any = None) -> None:
        """
        Cancel the stream, discarding queued chunks.

        Args:
            reason: Passed to the underlying source's ``cancel``
        """
        self._disturbed = True

        if self._state is StreamState.CLOSED:
            return
        if self._state is StreamState.ERRORED:
            raise self._stored_error  # type: ignore[misc]

        self._queue.clear()
        self._queue_size = 0
        self._finish_close()

        cancel = getattr(self._source, "cancel", None)
        if cancel is not None:
            cancel(reason)

    @property
    def closed(self) -> bool:
        """Get whether the stream is closed."""
        return self._state is StreamState.CLOSED

    @property
    def errored(self) -> Optional[BaseException]:
        """Get the error the stream failed with, if any."""
        return self._stored_error

    @property
    def disturbed(self) -> bool:
        """Get whether the stream was read from or cancelled."""
        return self._disturbed

    @property
    def state(self) -> StreamState:
        return self._state


# Utility functions for working with streams
async def read_stream_to_bytes(stream: AsyncIterable[bytes]) -> bytes:
    """
    Read entire stream and return as bytes.

    Args:
        stream: Async iterable of bytes

    Returns:
        All bytes from the stream concatenated
    """
    chunks = []
    async for chunk in stream:
        chunks.append(chunk)
    return b"".join(chunks)


async def stream_to_list(stream: AsyncIterable[bytes]) -> List[bytes]:
    """
    Convert stream to list of chunks.

    Args:
        stream: Async iterable of bytes

    Returns:
        List of byte chunks
    """
    chunks = []
    async for chunk in stream:
        chunks.append(chunk)
    return chunks
