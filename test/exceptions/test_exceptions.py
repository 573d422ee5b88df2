"""Tests for custom exception hierarchy.

These tests verify:
1. Exception structure (code, message, details)
2. Inheritance hierarchy
3. String representation
4. Default codes of the fixed-code errors
"""

import httpx
import pytest

from remotetask.exceptions import (
    AuthError,
    ConfigurationError,
    RemoteTaskError,
    TransportError,
    ValidationError,
)


class TestRemoteTaskError:
    """Tests for base RemoteTaskError class."""

    def test_basic_construction(self):
        """Test basic exception construction."""
        error = RemoteTaskError("TEST_CODE", "Test message")

        assert error.code == "TEST_CODE"
        assert error.message == "Test message"
        assert error.details == {}

    def test_construction_with_details(self):
        """Test exception with details dict."""
        details = {"key1": "value1", "key2": 42}
        error = RemoteTaskError("TEST_CODE", "Test message", details=details)

        assert error.details == details
        assert error.details is not details

    def test_str_without_details(self):
        """Test string representation without details."""
        assert str(RemoteTaskError("TEST_CODE", "Test message")) == "TEST_CODE: Test message"

    def test_str_with_details(self):
        """Test string representation with details."""
        error = RemoteTaskError("TEST_CODE", "Test message", details={"foo": "bar"})

        assert str(error) == "TEST_CODE: Test message (foo=bar)"

    def test_can_be_raised(self):
        """Test that exception can be raised and caught."""
        with pytest.raises(RemoteTaskError) as exc_info:
            raise RemoteTaskError("RAISED", "This was raised")

        assert exc_info.value.code == "RAISED"


class TestValidationError:
    """Tests for ValidationError class."""

    def test_has_all_attributes(self):
        """Test ValidationError has code, message, details."""
        error = ValidationError("MISSING_BODY", "POST request requires a body", {"url": "http://h"})

        assert isinstance(error, RemoteTaskError)
        assert error.code == "MISSING_BODY"
        assert error.message == "POST request requires a body"
        assert error.details["url"] == "http://h"


class TestFixedCodeErrors:
    """ConfigurationError, TransportError and AuthError carry their own code."""

    def test_configuration_error_code(self):
        error = ConfigurationError("bad key", details={"key": "max_requests"})

        assert error.code == "CONFIGURATION"
        assert error.details == {"key": "max_requests"}

    def test_transport_error_keeps_cause(self):
        cause = httpx.ConnectError("refused")
        error = TransportError("GET http://h failed", cause=cause)

        assert error.code == "TRANSPORT"
        assert error.cause is cause

    def test_auth_error_code(self):
        assert AuthError("rejected").code == "AUTH"

    def test_not_caught_as_each_other(self):
        """Test AuthError is not caught as TransportError."""
        with pytest.raises(AuthError):
            try:
                raise AuthError("rejected")
            except TransportError:
                pytest.fail("Should not catch as TransportError")


class TestExceptionHierarchy:
    """Tests for overall exception hierarchy relationships."""

    def test_all_errors_are_remote_task_errors(self):
        errors = [
            ValidationError("CODE", "message"),
            ConfigurationError("message"),
            TransportError("message"),
            AuthError("message"),
        ]

        for error in errors:
            assert isinstance(error, RemoteTaskError)
            assert isinstance(error, Exception)
