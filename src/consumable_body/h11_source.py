"""
HTTP/1.1 body producer for consumable_body.

This module wires an h11 client connection to a ConsumableStream: raw
bytes received by the caller are handed to h11, and the response body
events it parses are pushed into the stream. No I/O happens here.
"""

import logging
from typing import Any, Optional

import h11

from .body import ConsumableStream
from .exceptions import ProtocolError

logger = logging.getLogger(__name__)


class H11BodySource:
    """
    Push producer for an HTTP/1.1 response body.

    Pumping stops when the body reports that its consumer has no spare
    capacity, leaving unparsed data inside h11, and resumes when the
    body asks for more.
    """

    def __init__(
        self,
        connection: Optional[h11.Connection] = None,
        **options: Any,
    ) -> None:
        """
        Initialize H11BodySource.

        Args:
            connection: Client-side h11 connection whose request was
                already sent. A fresh one is created if omitted.
            **options: Passed to the ConsumableStream
        """
        self._connection = connection or h11.Connection(h11.CLIENT)
        self._response: Optional[h11.Response] = None
        self._pumping = False
        self._paused = False
        self._done = False
        self._bytes_received = 0
        self.body = ConsumableStream(
            on_read=self._on_read,
            on_destroy=self._on_destroy,
            **options,
        )

    def receive_data(self, data: bytes) -> None:
        """
        Hand raw bytes from the connection to the parser.

        Args:
            data: Bytes read from the network; b"" signals EOF
        """
        if self._done:
            return
        self._bytes_received += len(data)
        self._connection.receive_data(data)
        if not self._paused:
            self._pump()

    def _on_read(self) -> None:
        self._paused = False
        self._pump()

    def _on_destroy(self, err: Optional[BaseException]) -> None:
        self._done = True
        logger.debug("HTTP/1.1 body source stopped (error=%r)", err)

    def _pump(self) -> None:
        if self._pumping:
            return

        self._pumping = True
        try:
            while not self._done and not self._paused:
                try:
                    event = self._connection.next_event()
                except h11.RemoteProtocolError as exc:
                    self.body.destroy(ProtocolError(str(exc), cause=exc))
                    return

                if event is h11.NEED_DATA or event is h11.PAUSED:
                    return

                if isinstance(event, h11.InformationalResponse):
                    continue

                if isinstance(event, h11.Response):
                    self._response = event
                    continue

                if isinstance(event, h11.Data):
                    if not self.body.push(bytes(event.data)):
                        self._paused = True
                    continue

                if isinstance(event, h11.EndOfMessage):
                    self._done = True
                    self.body.push(None)
                    return

                if isinstance(event, h11.ConnectionClosed):
                    self.body.destroy(
                        ProtocolError("Connection closed before end of body")
                    )
                    return
        finally:
            self._pumping = False

    @property
    def connection(self) -> h11.Connection:
        return self._connection

    @property
    def response(self) -> Optional[h11.Response]:
        """Get the parsed response head, once received."""
        return self._response

    @property
    def bytes_received(self) -> int:
        return self._bytes_received

    @property
    def done(self) -> bool:
        """Get whether the body is complete or the source was stopped."""
        return self._done
