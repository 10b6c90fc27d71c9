"""
Binary blob for consumable_body.

A Blob is an immutable, in-memory sequence of bytes with an optional
content type, assembled from the chunks of a consumed body.
"""

from typing import Iterable, Optional, Union

from .web_stream import ReadableByteStream, ReadableStreamController

BlobPart = Union[bytes, bytearray, memoryview, "Blob"]


class Blob:
    """Immutable binary data with a content type."""

    def __init__(self, parts: Iterable[BlobPart] = (), content_type: str = "") -> None:
        """
        Initialize Blob.

        Args:
            parts: Byte chunks or other blobs, concatenated in order
            content_type: Optional MIME type of the data
        """
        chunks = []
        for part in parts:
            if isinstance(part, Blob):
                chunks.append(part._data)
            elif isinstance(part, (bytes, bytearray, memoryview)):
                chunks.append(bytes(part))
            else:
                raise TypeError(f"Unsupported blob part: {type(part).__name__}")

        self._data = b"".join(chunks)
        self._content_type = content_type.lower()

    @property
    def size(self) -> int:
        """Get the size of the blob in bytes."""
        return len(self._data)

    @property
    def content_type(self) -> str:
        return self._content_type

    def to_bytes(self) -> bytes:
        return self._data

    def array_buffer(self) -> bytes:
        return self._data

    def text(self, encoding: str = "utf-8") -> str:
        """Decode the blob, replacing malformed sequences."""
        return self._data.decode(encoding, errors="replace")

    def slice(
        self,
        start: int = 0,
        end: Optional[int] = None,
        content_type: str = "",
    ) -> "Blob":
        """
        Return a new Blob with a byte range of this one.

        Negative offsets count from the end of the blob.
        """
        return Blob([self._data[start:end]], content_type=content_type)

    def stream(self) -> ReadableByteStream:
        """Return a pull stream over the blob's content."""
        data = self._data

        class _BlobSource:
            def start(self, controller: ReadableStreamController) -> None:
                if data:
                    controller.enqueue(data)
                controller.close()

        return ReadableByteStream(_BlobSource(), high_water_mark=max(len(data), 1))

    def __len__(self) -> int:
        return len(self._data)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Blob):
            return NotImplemented
        return self._data == other._data and self._content_type == other._content_type

    def __hash__(self) -> int:
        return hash((self._data, self._content_type))

    def __repr__(self) -> str:
        return f"Blob(size={self.size}, content_type={self._content_type!r})"
