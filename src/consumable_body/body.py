"""
Single-use body streams for consumable_body.

This module implements ConsumableStream, a Readable whose data can be
consumed exactly once, in a shape chosen by the first consumer: as the
raw event-driven stream, as a backpressure-aware pull stream, or
accumulated into text, parsed JSON, a Blob or a contiguous buffer.

The first consumption attempt installs a ConsumptionLock. The lock drains
whatever the producer already pushed and then receives every later push
directly, so no chunk is lost between "data was waiting" and "consumer
arrived". The lock is never replaced.
"""

import asyncio
import codecs
import json
import logging
from enum import Enum
from typing import (
    Any,
    List,
    Optional,
    Union,
)

from typing_extensions import assert_never

from .blob import Blob
from .exceptions import (
    DISTURBED,
    LOCKED,
    AbortError,
    BodyError,
    ParseError,
    StreamError,
    UsageError,
)
from .readable import Chunk, DestroyCallback, Readable, ReadCallback, to_bytes
from .web_stream import ReadableByteStream, ReadableStreamController

logger = logging.getLogger(__name__)


class ConsumeMode(Enum):
    """Shapes a body can be consumed in."""
    STREAM = "stream"              # Backpressure-aware pull stream
    TEXT = "text"                  # Decoded string
    JSON = "json"                  # Parsed JSON value
    BLOB = "blob"                  # Blob of all chunks
    ARRAY_BUFFER = "array_buffer"  # One contiguous bytes object


class BodyState(Enum):
    """States of a ConsumableStream."""
    IDLE = "idle"            # No consumer yet
    LOCKED = "locked"        # A consumption mode is installed
    DESTROYED = "destroyed"  # Torn down, no further data is delivered


class ConsumptionLock:
    """
    Binding between a ConsumableStream and its single consumer.

    Every push made after the lock is installed goes through ``push``,
    which is a no-op once the stream is destroyed.
    """

    mode: Optional[ConsumeMode] = None

    def __init__(self, stream: "ConsumableStream") -> None:
        self._stream = stream
        self._used = False

    @property
    def used(self) -> bool:
        """Get whether a chunk or the end was delivered through the lock."""
        return self._used

    def push(self, chunk: Optional[bytes]) -> bool:
        if self._stream.destroyed:
            return False
        self._used = True
        return self._accept(chunk)

    def _accept(self, chunk: Optional[bytes]) -> bool:
        raise NotImplementedError

    def fail(self, err: BaseException) -> None:
        """Report a terminal error to the consumer."""


class RawGate(ConsumptionLock):
    """Lock for event-driven consumers: chunks stay in the stream's backlog."""

    @property
    def used(self) -> bool:
        return self._stream.did_read

    def push(self, chunk: Optional[bytes]) -> bool:
        return self._stream._push_backlog(chunk)


class StreamLock(ConsumptionLock):
    """Forwards chunks into a pull stream's controller."""

    mode = ConsumeMode.STREAM

    def __init__(
        self,
        stream: "ConsumableStream",
        controller: ReadableStreamController,
    ) -> None:
        super().__init__(stream)
        self.controller = controller

    def _accept(self, chunk: Optional[bytes]) -> bool:
        if chunk is None:
            self.controller.close()
            # Give the controller a loop turn to hand queued chunks to its
            # reader before the stream itself ends. Best effort only.
            self._stream._schedule(self._stream._push_backlog, None)
        else:
            self.controller.enqueue(bytes(chunk))

        desired = self.controller.desired_size
        return desired is not None and desired > 0

    def fail(self, err: BaseException) -> None:
        self.controller.error(err)


class AccumulatorLock(ConsumptionLock):
    """
    Base class for locks that collect the whole body into one value.

    The value is delivered through ``future`` when the end sentinel
    arrives. Errors raised while accumulating destroy the stream, which
    rejects the future through the stream's error path.
    """

    def __init__(self, stream: "ConsumableStream") -> None:
        super().__init__(stream)
        self.future: "asyncio.Future[Any]" = asyncio.get_running_loop().create_future()
        self._finished = False

    def _accept(self, chunk: Optional[bytes]) -> bool:
        if self._finished:
            if chunk is None:
                return False
            self._stream.destroy(StreamError("push after end of stream"))
            return False

        try:
            if chunk is not None:
                self._append(chunk)
            else:
                value = self._finish()
                if not self.future.done():
                    self.future.set_result(value)
        except Exception as exc:
            self._stream.destroy(exc)
            return False

        if chunk is None:
            self._finished = True
            self._clear()
            self._stream._push_backlog(None)

        return True

    def fail(self, err: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(err)

    def _append(self, chunk: bytes) -> None:
        raise NotImplementedError

    def _finish(self) -> Any:
        raise NotImplementedError

    def _clear(self) -> None:
        raise NotImplementedError


class TextLock(AccumulatorLock):
    """Accumulates decoded text."""

    mode = ConsumeMode.TEXT

    def __init__(self, stream: "ConsumableStream", encoding: str) -> None:
        super().__init__(stream)
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._parts: List[str] = []

    def _append(self, chunk: bytes) -> None:
        self._parts.append(self._decoder.decode(chunk))

    def _finish(self) -> Any:
        self._parts.append(self._decoder.decode(b"", final=True))
        return "".join(self._parts)

    def _clear(self) -> None:
        self._parts = []


class JsonLock(TextLock):
    """Accumulates decoded text and parses it as JSON at the end."""

    mode = ConsumeMode.JSON

    def _finish(self) -> Any:
        text = super()._finish()
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise ParseError(str(exc), cause=exc) from exc


class ChunkLock(AccumulatorLock):
    """Accumulates raw chunks."""

    def __init__(self, stream: "ConsumableStream") -> None:
        super().__init__(stream)
        self._chunks: List[bytes] = []

    def _append(self, chunk: bytes) -> None:
        self._chunks.append(bytes(chunk))

    def _clear(self) -> None:
        self._chunks = []


class ArrayBufferLock(ChunkLock):
    """Concatenates all chunks into one bytes object."""

    mode = ConsumeMode.ARRAY_BUFFER

    def _finish(self) -> Any:
        return b"".join(self._chunks)


class BlobLock(ChunkLock):
    """Wraps all chunks into a Blob."""

    mode = ConsumeMode.BLOB

    def _finish(self) -> Any:
        return Blob(self._chunks)


class _BodySource:
    """Underlying source connecting a ConsumableStream to a pull stream."""

    def __init__(self, stream: "ConsumableStream") -> None:
        self._stream = stream

    def start(self, controller: ReadableStreamController) -> None:
        self._stream._install(StreamLock(self._stream, controller))

    def pull(self, controller: ReadableStreamController) -> None:
        self._stream._read()

    def cancel(self, reason: Any = None) -> None:
        if isinstance(reason, BaseException):
            err = reason
        elif isinstance(reason, str):
            err = BodyError(reason)
        else:
            err = AbortError()
        self._stream.destroy(err)


class ConsumableStream(Readable):
    """
    Readable body that may be consumed at most once.

    The first of ``consume()``, ``body``, ``text()``, ``json()``,
    ``blob()``, ``array_buffer()`` or an event-driven read (``read``,
    ``resume``, ``pipe``, a ``data``/``readable`` listener) fixes the
    consumption mode for the lifetime of the object. Any later attempt
    raises UsageError.
    """

    DEFAULT_STREAM_HIGH_WATER_MARK = 16 * 1024  # 16 KiB
    DEFAULT_ENCODING = "utf-8"

    def __init__(
        self,
        *,
        high_water_mark: Optional[int] = None,
        stream_high_water_mark: Optional[int] = None,
        encoding: Optional[str] = None,
        on_read: Optional[ReadCallback] = None,
        on_destroy: Optional[DestroyCallback] = None,
    ) -> None:
        """
        Initialize ConsumableStream.

        Args:
            high_water_mark: Backlog size in bytes for event-driven reads
            stream_high_water_mark: Queue capacity of the pull stream
            encoding: Text encoding used by ``text()`` and ``json()``
            on_read: Called when the consumer wants more data
            on_destroy: Called once with the terminal error (or None)
        """
        super().__init__(
            high_water_mark=high_water_mark,
            on_read=on_read,
            on_destroy=on_destroy,
        )
        if stream_high_water_mark is not None and stream_high_water_mark < 0:
            raise ValueError("stream_high_water_mark must be non-negative")

        self._stream_high_water_mark = (
            self.DEFAULT_STREAM_HIGH_WATER_MARK
            if stream_high_water_mark is None
            else stream_high_water_mark
        )
        self._encoding = encoding or self.DEFAULT_ENCODING
        codecs.lookup(self._encoding)
        self._lock: Optional[ConsumptionLock] = None
        self._body_destroyed = False

    # Consumption

    def consume(
        self, mode: Union[ConsumeMode, str, None] = None
    ) -> Union["ConsumableStream", ReadableByteStream, "asyncio.Future[Any]"]:
        """
        Claim the body for a single consumer.

        Args:
            mode: How to consume the body, as a ConsumeMode or its value.
                None gates the stream for event-driven reads and returns
                the stream itself.

        Returns:
            The stream itself, a ReadableByteStream for STREAM mode, or
            a future resolving to the accumulated value

        Raises:
            UsageError: If the body was already read ("disturbed") or
                already claimed ("locked")
        """
        if mode is not None:
            mode = ConsumeMode(mode)

        if self.body_used:
            raise UsageError(DISTURBED)

        if self._lock is not None:
            raise UsageError(LOCKED)

        if mode is None:
            self._install(RawGate(self))
            return self

        if mode is ConsumeMode.STREAM:
            return ReadableByteStream(
                _BodySource(self),
                high_water_mark=self._stream_high_water_mark,
            )

        lock: AccumulatorLock
        if mode is ConsumeMode.TEXT:
            lock = TextLock(self, self._encoding)
        elif mode is ConsumeMode.JSON:
            lock = JsonLock(self, self._encoding)
        elif mode is ConsumeMode.BLOB:
            lock = BlobLock(self)
        elif mode is ConsumeMode.ARRAY_BUFFER:
            lock = ArrayBufferLock(self)
        else:
            assert_never(mode)

        self._install(lock)
        return lock.future

    def _install(self, lock: ConsumptionLock) -> None:
        """Install the lock and drain the backlog into it."""
        if self._lock is not None:
            raise UsageError(LOCKED)

        self._lock = lock
        logger.debug("Body locked (mode=%s)", lock.mode.value if lock.mode else "raw")

        if isinstance(lock, RawGate):
            return

        self.on_error(lock.fail)
        self.on_end(self._finalize)

        if self.destroyed and self.errored is None and not self.end_emitted:
            lock.fail(AbortError())
            return

        for chunk in self._take_backlog():
            lock.push(chunk)
        if self.ended:
            lock.push(None)

        self._read()

    def _finalize(self) -> None:
        # Terminal cleanup once the stream ended on its own; no abort.
        Readable.destroy(self, None)

    @property
    def body(self) -> ReadableByteStream:
        """Consume the body as a backpressure-aware pull stream."""
        return self.consume(ConsumeMode.STREAM)  # type: ignore[return-value]

    def text(self) -> "asyncio.Future[str]":
        """Consume the body and resolve to the decoded text."""
        return self.consume(ConsumeMode.TEXT)  # type: ignore[return-value]

    def json(self) -> "asyncio.Future[Any]":
        """Consume the body and resolve to the parsed JSON value."""
        return self.consume(ConsumeMode.JSON)  # type: ignore[return-value]

    def blob(self) -> "asyncio.Future[Blob]":
        """Consume the body and resolve to a Blob."""
        return self.consume(ConsumeMode.BLOB)  # type: ignore[return-value]

    def array_buffer(self) -> "asyncio.Future[bytes]":
        """Consume the body and resolve to one contiguous bytes object."""
        return self.consume(ConsumeMode.ARRAY_BUFFER)  # type: ignore[return-value]

    # Producer side

    def push(self, chunk: Optional[Chunk]) -> bool:
        """
        Feed one chunk, or None to signal the end.

        Once a consumer claimed the body, chunks go straight to it.

        Returns:
            True if the consumer has spare capacity
        """
        if self._lock is not None:
            return self._lock.push(None if chunk is None else to_bytes(chunk))
        return super().push(chunk)

    def _push_backlog(self, chunk: Optional[Chunk]) -> bool:
        return super().push(chunk)

    # Event-driven consumers claim the body implicitly

    def read(self, size: Optional[int] = None) -> Optional[bytes]:
        if self._lock is None:
            self.consume()
        return super().read(size)

    def resume(self) -> "ConsumableStream":
        if self._lock is None:
            self.consume()
        super().resume()
        return self

    def pipe(self, dest: Any, end: bool = True) -> Any:
        if self._lock is None:
            self.consume()
        return super().pipe(dest, end)

    def on(self, event: str, listener: Any) -> "ConsumableStream":
        if self._lock is None and event in ("data", "readable"):
            self.consume()
        super().on(event, listener)
        return self

    # Teardown

    def destroy(self, err: Optional[BaseException] = None) -> "ConsumableStream":
        """
        Tear the body down.

        Destroying a claimed body before it ended, without an error,
        reports an AbortError to the consumer. Calling destroy more than
        once has no further effect.
        """
        if self._body_destroyed:
            return self

        if self._lock is not None and err is None and not self.end_emitted:
            logger.debug("Body destroyed before end, aborting consumer")
            err = AbortError()

        self._body_destroyed = True
        super().destroy(err)
        return self

    # Status

    @property
    def body_used(self) -> bool:
        """Get whether any consumer has observed data or the end."""
        if self._lock is not None:
            return self._lock.used
        return self.did_read

    @property
    def state(self) -> BodyState:
        if self._body_destroyed or self.destroyed:
            return BodyState.DESTROYED
        if self._lock is not None:
            return BodyState.LOCKED
        return BodyState.IDLE

    @property
    def mode(self) -> Optional[ConsumeMode]:
        """Get the installed consumption mode (None for raw or unclaimed)."""
        return self._lock.mode if self._lock is not None else None

    @property
    def locked(self) -> bool:
        """Get whether a consumer has claimed the body."""
        return self._lock is not None

    @property
    def encoding(self) -> str:
        return self._encoding


def create_consumable_stream(
    data: Union[bytes, str, List[bytes], None] = None,
    **options: Any,
) -> ConsumableStream:
    """
    Factory function to create an already-ended ConsumableStream.

    Args:
        data: The body. Can be bytes, string, list of bytes or None
        **options: Passed to ConsumableStream

    Returns:
        ConsumableStream holding the data and the end sentinel
    """
    # Convert string to bytes if needed
    if isinstance(data, str):
        data = data.encode("utf-8")

    stream = ConsumableStream(**options)
    if isinstance(data, bytes):
        stream.push(data)
    elif isinstance(data, list):
        for chunk in data:
            stream.push(chunk)
    elif data is not None:
        raise ValueError("data must be bytes, str, list of bytes or None")
    stream.push(None)
    return stream
