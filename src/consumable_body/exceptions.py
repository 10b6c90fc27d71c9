"""
Custom exceptions for consumable_body.

This module defines the exception hierarchy used throughout
the library for error handling and debugging.
"""

from typing import Optional


DISTURBED = "disturbed"
LOCKED = "locked"


class BodyError(Exception):
    """Base exception for all consumable_body errors."""
    
    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause


class UsageError(BodyError, TypeError):
    """
    Raised when a body is consumed in violation of the single-use rules.
    
    The reason is ``"disturbed"`` when data was already read from the
    body, or ``"locked"`` when a consumption mode is already installed.
    """
    
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class AbortError(BodyError):
    """Raised when a body is torn down before it was fully read."""
    
    code = "ABORT_ERR"
    
    def __init__(self, message: str = "The operation was aborted") -> None:
        super().__init__(message)


class StreamError(BodyError):
    """Raised when there's an error with stream operations."""
    
    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(f"Stream error: {message}", cause)


class ParseError(BodyError, ValueError):
    """Raised when a body cannot be parsed as JSON."""
    
    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(f"Parse error: {message}", cause)


class ProtocolError(BodyError):
    """Raised when the HTTP/1.1 producer reports a protocol violation."""
    
    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(f"Protocol error: {message}", cause)
