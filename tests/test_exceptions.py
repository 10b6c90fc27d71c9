"""
Unit tests for custom exceptions.

Tests the exception hierarchy to ensure proper error handling
and cause tracking.
"""

import json

import pytest

from consumable_body.exceptions import (
    AbortError,
    BodyError,
    ParseError,
    ProtocolError,
    StreamError,
    UsageError,
)


class TestBodyError:
    """Test base BodyError class."""

    def test_basic_creation(self) -> None:
        """Test creating basic BodyError."""
        error = BodyError("Test error message")
        assert str(error) == "Test error message"
        assert error.message == "Test error message"
        assert error.cause is None

    def test_with_cause(self) -> None:
        """Test creating BodyError with cause."""
        original_error = ValueError("Original error")
        error = BodyError("Test error message", cause=original_error)
        assert str(error) == "Test error message"
        assert error.cause == original_error


class TestUsageError:
    """Test UsageError class."""

    @pytest.mark.parametrize("reason", ["disturbed", "locked"])
    def test_reason(self, reason: str) -> None:
        """Test that the reason is the message."""
        error = UsageError(reason)
        assert str(error) == reason
        assert error.reason == reason

    def test_is_type_error(self) -> None:
        """Test that usage errors can be caught as TypeError."""
        with pytest.raises(TypeError):
            raise UsageError("locked")


class TestAbortError:
    """Test AbortError class."""

    def test_default_message(self) -> None:
        """Test the default abort message and code."""
        error = AbortError()
        assert str(error) == "The operation was aborted"
        assert error.code == "ABORT_ERR"
        assert isinstance(error, BodyError)


class TestPrefixedErrors:
    """Test errors that prefix their message."""

    def test_stream_error(self) -> None:
        """Test creating StreamError."""
        error = StreamError("Read failed")
        assert "Stream error: Read failed" in str(error)
        assert error.cause is None

    def test_protocol_error_with_cause(self) -> None:
        """Test creating ProtocolError with cause."""
        original_error = ValueError("bad framing")
        error = ProtocolError("Invalid response", cause=original_error)
        assert str(error) == "Protocol error: Invalid response"
        assert error.cause is original_error

    def test_parse_error(self) -> None:
        """Test that ParseError is a ValueError keeping the decode error."""
        try:
            json.loads("not json")
        except json.JSONDecodeError as exc:
            error = ParseError(str(exc), cause=exc)

        assert isinstance(error, ValueError)
        assert str(error).startswith("Parse error: ")
        assert isinstance(error.cause, json.JSONDecodeError)


class TestExceptionHierarchy:
    """Test exception hierarchy relationships."""

    @pytest.mark.parametrize(
        "error",
        [
            UsageError("locked"),
            AbortError(),
            StreamError("x"),
            ParseError("x"),
            ProtocolError("x"),
        ],
    )
    def test_inherits_from_body_error(self, error: BodyError) -> None:
        """Test that all errors inherit from BodyError."""
        assert isinstance(error, BodyError)
        assert isinstance(error, Exception)
