"""
Push-source readable stream for consumable_body.

This module provides the base byte-stream machinery the consumption
layer builds on: an ordered backlog of received-but-unread chunks, an
ended flag, event listeners and the read/resume/pipe primitives used by
event-driven consumers.

Events (``end``, ``error``, ``close``, ``readable``) are delivered on a
later turn of the running asyncio event loop, never from inside the
``push`` or ``destroy`` call that caused them.
"""

import asyncio
import logging
from collections import deque
from typing import (
    Any,
    AsyncIterator,
    Callable,
    Deque,
    Dict,
    List,
    Optional,
    Union,
)

from .exceptions import StreamError

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]
ReadCallback = Callable[[], None]
DestroyCallback = Callable[[Optional[BaseException]], None]
Chunk = Union[bytes, bytearray, memoryview, str]


def to_bytes(chunk: Chunk) -> bytes:
    """Normalize a pushed chunk to bytes; strings are UTF-8 encoded."""
    if isinstance(chunk, str):
        return chunk.encode("utf-8")
    if not isinstance(chunk, (bytes, bytearray, memoryview)):
        raise TypeError(f"Unsupported chunk type: {type(chunk).__name__}")
    return bytes(chunk)


class Readable:
    """
    Base push-source stream.

    The producer feeds chunks with ``push(chunk)`` and signals the end of
    data with ``push(None)``. Consumers either pull with ``read()`` or
    switch the stream into flowing mode by listening for ``data``.
    """

    DEFAULT_HIGH_WATER_MARK = 16 * 1024  # 16 KiB

    def __init__(
        self,
        *,
        high_water_mark: Optional[int] = None,
        on_read: Optional[ReadCallback] = None,
        on_destroy: Optional[DestroyCallback] = None,
    ) -> None:
        """
        Initialize Readable.

        Args:
            high_water_mark: Backlog size in bytes above which ``push``
                reports that the producer should pause
            on_read: Called when the stream wants the producer to push more
            on_destroy: Called once with the terminal error (or None) when
                the stream is destroyed
        """
        if high_water_mark is not None and high_water_mark < 0:
            raise ValueError("high_water_mark must be non-negative")

        self._high_water_mark = (
            self.DEFAULT_HIGH_WATER_MARK if high_water_mark is None else high_water_mark
        )
        self._on_read = on_read
        self._on_destroy = on_destroy

        self._buffer: Deque[bytes] = deque()
        self._length = 0
        self._ended = False
        self._end_emitted = False
        self._end_scheduled = False
        self._destroyed = False
        self._errored: Optional[BaseException] = None
        self._error_emitted = False
        self._close_emitted = False
        self._flowing: Optional[bool] = None
        self._flow_scheduled = False
        self._readable_scheduled = False
        self._consuming = False
        self._did_read = False
        self._listeners: Dict[str, List[Listener]] = {}

    # Producer side

    def push(self, chunk: Optional[Chunk]) -> bool:
        """
        Feed one chunk into the stream, or None to signal the end.

        Returns:
            True if the producer may keep pushing without waiting
        """
        if self._destroyed:
            return False

        if chunk is None:
            if not self._ended:
                self._ended = True
                self._schedule_readable()
            self._maybe_end()
            return False

        if self._ended:
            self.destroy(StreamError("push after end of stream"))
            return False

        chunk = to_bytes(chunk)
        if not chunk:
            pass
        elif self._flowing and not self._buffer and self.listener_count("data"):
            self._did_read = True
            self._emit("data", chunk)
        else:
            self._buffer.append(chunk)
            self._length += len(chunk)
            if self._flowing:
                self._schedule_flow()
            else:
                self._schedule_readable()

        return self._length < self._high_water_mark

    def _read(self) -> None:
        """Ask the producer for more data."""
        if self._on_read is not None and not self._destroyed and not self._ended:
            self._on_read()

    # Consumer side

    def read(self, size: Optional[int] = None) -> Optional[bytes]:
        """
        Pull buffered data out of the stream.

        Args:
            size: Number of bytes to read. If None, everything buffered
                is returned.

        Returns:
            The data, or None if not enough is buffered yet
        """
        if size is not None and size < 0:
            raise ValueError("size must be non-negative")

        self._consuming = True

        if self._destroyed:
            return None

        if not self._buffer or size == 0:
            if self._ended:
                self._maybe_end()
            else:
                self._read()
            return None

        if size is not None and size > self._length and not self._ended:
            self._read()
            return None

        data = self._take(size)
        self._did_read = True

        if self._ended:
            self._maybe_end()
        elif self._length < self._high_water_mark:
            self._read()

        return data

    def resume(self) -> "Readable":
        """Switch the stream into flowing mode."""
        self._consuming = True
        self._flowing = True
        self._schedule_flow()
        return self

    def pause(self) -> "Readable":
        """Stop emitting ``data`` events until ``resume`` is called."""
        self._flowing = False
        return self

    def pipe(self, dest: Any, end: bool = True) -> Any:
        """
        Forward all data to ``dest``.

        ``dest`` must have a ``write(chunk)`` method. If ``write`` returns
        False and ``dest`` has ``once``, the stream pauses until ``dest``
        emits ``drain``. With ``end`` set, ``dest.end()`` is called once
        the stream ends.
        """
        def on_data(chunk: bytes) -> None:
            if dest.write(chunk) is False and hasattr(dest, "once"):
                self.pause()
                dest.once("drain", self.resume)

        if end and hasattr(dest, "end"):
            self.once("end", dest.end)
        self.on("data", on_data)
        return dest

    async def __aiter__(self) -> AsyncIterator[bytes]:
        """Iterate over chunks until the stream ends."""
        loop = asyncio.get_running_loop()
        waiter: Optional["asyncio.Future[None]"] = None

        def wake(*args: Any) -> None:
            if waiter is not None and not waiter.done():
                waiter.set_result(None)

        events = ("readable", "end", "error", "close")
        for event in events:
            self.on(event, wake)

        finished = False
        try:
            while True:
                chunk = self.read()
                if chunk is not None:
                    yield chunk
                    continue
                if self._errored is not None:
                    finished = True
                    raise self._errored
                if self._destroyed or (self._ended and not self._buffer):
                    finished = True
                    return
                waiter = loop.create_future()
                await waiter
                waiter = None
        finally:
            for event in events:
                self.off(event, wake)
            if not finished:
                self.destroy()

    # Events

    def on(self, event: str, listener: Listener) -> "Readable":
        """Register a listener for ``event``."""
        self._listeners.setdefault(event, []).append(listener)

        if event == "data" and self._flowing is not False:
            self.resume()
        elif event == "readable":
            self._consuming = True
            self._flowing = False
            if self._buffer or self._ended:
                self._schedule_readable()
        return self

    def add_listener(self, event: str, listener: Listener) -> "Readable":
        return self.on(event, listener)

    def once(self, event: str, listener: Listener) -> "Readable":
        """Register a listener that is removed after its first call."""
        def wrapper(*args: Any) -> Any:
            self.off(event, wrapper)
            return listener(*args)

        wrapper.listener = listener  # type: ignore[attr-defined]
        return self.on(event, wrapper)

    def off(self, event: str, listener: Listener) -> "Readable":
        """Remove a listener previously registered for ``event``."""
        listeners = self._listeners.get(event, [])
        for registered in listeners:
            if registered is listener or getattr(registered, "listener", None) is listener:
                listeners.remove(registered)
                break
        return self

    def remove_listener(self, event: str, listener: Listener) -> "Readable":
        return self.off(event, listener)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def on_error(self, handler: Callable[[BaseException], None]) -> None:
        """
        Register a one-shot error handler.

        If the error was already emitted, the handler is called on the
        next loop turn with the stored error.
        """
        if self._error_emitted and self._errored is not None:
            self._schedule(handler, self._errored)
        else:
            self.once("error", handler)

    def on_end(self, handler: Callable[[], None]) -> None:
        """
        Register a one-shot end handler.

        If ``end`` was already emitted, the handler is called on the
        next loop turn.
        """
        if self._end_emitted:
            self._schedule(handler)
        else:
            self.once("end", handler)

    def _emit(self, event: str, *args: Any) -> bool:
        listeners = list(self._listeners.get(event, []))
        for listener in listeners:
            listener(*args)
        return bool(listeners)

    # Teardown

    def destroy(self, err: Optional[BaseException] = None) -> "Readable":
        """
        Tear the stream down.

        Calling destroy more than once has no further effect.

        Args:
            err: Optional error to report to ``error`` listeners
        """
        if self._destroyed:
            return self

        self._destroyed = True
        self._errored = err
        logger.debug("Stream destroyed (error=%r)", err)

        if self._on_destroy is not None:
            self._on_destroy(err)

        self._schedule(self._emit_destroyed)
        return self

    def _emit_destroyed(self) -> None:
        if self._errored is not None:
            self._error_emitted = True
            if not self._emit("error", self._errored):
                logger.warning("Unhandled stream error: %r", self._errored)
        self._close_emitted = True
        self._emit("close")

    # Internals

    def _schedule(self, callback: Callable[..., Any], *args: Any) -> None:
        asyncio.get_running_loop().call_soon(callback, *args)

    def _take(self, size: Optional[int] = None) -> bytes:
        if size is None or size >= self._length:
            data = b"".join(self._buffer)
            self._buffer.clear()
            self._length = 0
            return data

        parts = []
        remaining = size
        while remaining:
            chunk = self._buffer.popleft()
            if len(chunk) > remaining:
                self._buffer.appendleft(chunk[remaining:])
                chunk = chunk[:remaining]
            parts.append(chunk)
            remaining -= len(chunk)
        self._length -= size
        return b"".join(parts)

    def _take_backlog(self) -> List[bytes]:
        """Hand the whole backlog over to a new owner, in order."""
        self._consuming = True
        chunks = list(self._buffer)
        self._buffer.clear()
        self._length = 0
        return chunks

    def _schedule_flow(self) -> None:
        if not self._flow_scheduled:
            self._flow_scheduled = True
            self._schedule(self._flow)

    def _flow(self) -> None:
        self._flow_scheduled = False
        while self._flowing and self._buffer and not self._destroyed:
            chunk = self._buffer.popleft()
            self._length -= len(chunk)
            self._did_read = True
            self._emit("data", chunk)

        if self._ended:
            self._maybe_end()
        elif self._flowing and self._length < self._high_water_mark:
            self._read()

    def _schedule_readable(self) -> None:
        if self.listener_count("readable") and not self._readable_scheduled:
            self._readable_scheduled = True
            self._schedule(self._emit_readable)

    def _emit_readable(self) -> None:
        self._readable_scheduled = False
        if not self._destroyed and (self._buffer or self._ended):
            self._emit("readable")

    def _maybe_end(self) -> None:
        if (
            self._ended
            and not self._buffer
            and self._consuming
            and not self._end_emitted
            and not self._end_scheduled
        ):
            self._end_scheduled = True
            self._schedule(self._emit_end)

    def _emit_end(self) -> None:
        self._end_scheduled = False
        if (
            self._end_emitted
            or self._errored is not None
            or self._close_emitted
            or self._buffer
        ):
            return
        self._end_emitted = True
        logger.debug("Stream ended")
        self._emit("end")

    # Status

    @property
    def destroyed(self) -> bool:
        """Get whether the stream was destroyed."""
        return self._destroyed

    @property
    def errored(self) -> Optional[BaseException]:
        """Get the error the stream was destroyed with, if any."""
        return self._errored

    @property
    def ended(self) -> bool:
        """Get whether the producer signalled the end of data."""
        return self._ended

    @property
    def end_emitted(self) -> bool:
        """Get whether ``end`` was delivered to listeners."""
        return self._end_emitted

    @property
    def did_read(self) -> bool:
        """Get whether any data was read out of the backlog."""
        return self._did_read

    @property
    def readable_length(self) -> int:
        """Get the number of buffered bytes."""
        return self._length

    @property
    def flowing(self) -> Optional[bool]:
        """Get the flowing state (None until a consumer chooses)."""
        return self._flowing

    @property
    def high_water_mark(self) -> int:
        return self._high_water_mark
