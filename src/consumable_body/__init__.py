"""
consumable_body - Single-use byte-stream bodies

A push-fed byte stream that can be consumed exactly once, as a raw
event-driven stream, a backpressure-aware pull stream, text, parsed
JSON, a Blob or a contiguous buffer.
"""

__version__ = "0.1.0"
__author__ = "Developer"
__email__ = "dev@example.com"

# Import main components for easy access
from .body import (
    BodyState,
    ConsumableStream,
    ConsumeMode,
    ConsumptionLock,
    create_consumable_stream,
)
from .blob import Blob
from .exceptions import (
    AbortError,
    BodyError,
    ParseError,
    ProtocolError,
    StreamError,
    UsageError,
)
from .h11_source import H11BodySource
from .readable import Readable
from .web_stream import (
    ReadableByteStream,
    ReadableStreamController,
    read_stream_to_bytes,
    stream_to_list,
)

__all__ = [
    "BodyState",
    "ConsumableStream",
    "ConsumeMode",
    "ConsumptionLock",
    "create_consumable_stream",
    "Blob",
    "AbortError",
    "BodyError",
    "ParseError",
    "ProtocolError",
    "StreamError",
    "UsageError",
    "H11BodySource",
    "Readable",
    "ReadableByteStream",
    "ReadableStreamController",
    "read_stream_to_bytes",
    "stream_to_list",
]
