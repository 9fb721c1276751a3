"""Tests for the cfbackup exception hierarchy.

These tests verify:
1. Exception structure (code, message, details)
2. Inheritance hierarchy
3. String representation
4. Dictionary conversion for JSON serialization
"""

import pytest

from cfbackup.exceptions import (
    BackupError,
    BusyError,
    ConfigurationError,
    ExecutionError,
    JobCancelledError,
    JobTimeoutError,
    NotFoundError,
    StorageError,
    UnsupportedError,
    ValidationError,
)


class TestBackupError:
    """Tests for base BackupError class."""

    def test_basic_construction(self):
        """Test basic exception construction."""
        error = BackupError("Test message")

        assert error.code == "BACKUP_ERROR"
        assert error.message == "Test message"
        assert error.details == {}

    def test_explicit_code(self):
        """Test that an explicit code overrides the class default."""
        error = BackupError("Test message", code="CUSTOM")

        assert error.code == "CUSTOM"

    def test_construction_with_details(self):
        """Test exception with details dict."""
        error = BackupError("Test message", details={"key1": "value1", "key2": 42})

        assert error.details["key1"] == "value1"
        assert error.details["key2"] == 42

    def test_str_without_details(self):
        error = BackupError("Test message")

        assert str(error) == "BACKUP_ERROR: Test message"

    def test_str_with_details(self):
        error = BackupError("Test message", details={"foo": "bar"})

        result = str(error)
        assert "BACKUP_ERROR" in result
        assert "Test message" in result
        assert "foo" in result

    def test_to_dict(self):
        """Test dictionary conversion for JSON error bodies."""
        error = NotFoundError("missing", details={"key": "postgres/db/x.gz"})

        assert error.to_dict() == {
            "code": "NOT_FOUND",
            "message": "missing",
            "details": {"key": "postgres/db/x.gz"},
        }

    def test_can_be_raised_and_caught(self):
        with pytest.raises(BackupError) as exc_info:
            raise BusyError("busy")

        assert exc_info.value.code == "SERVICE_BUSY"


class TestErrorCodes:
    """Each error class carries its own machine-readable code."""

    @pytest.mark.parametrize(
        "error_class,code",
        [
            (ValidationError, "INVALID_REQUEST"),
            (NotFoundError, "NOT_FOUND"),
            (BusyError, "SERVICE_BUSY"),
            (UnsupportedError, "UNSUPPORTED_OPERATION"),
            (ExecutionError, "EXECUTION_FAILED"),
            (JobTimeoutError, "JOB_TIMEOUT"),
            (JobCancelledError, "JOB_CANCELLED"),
            (StorageError, "STORAGE_ERROR"),
            (ConfigurationError, "CONFIGURATION_ERROR"),
        ],
    )
    def test_default_code(self, error_class, code):
        error = error_class("message")

        assert error.code == code
        assert isinstance(error, BackupError)

    def test_timeout_and_cancel_are_execution_errors(self):
        """Timeouts and cancellations are failures of the job itself."""
        assert issubclass(JobTimeoutError, ExecutionError)
        assert issubclass(JobCancelledError, ExecutionError)

    def test_unsupported_is_not_validation(self):
        """Unsupported operations keep a code distinct from malformed requests."""
        assert not issubclass(UnsupportedError, ValidationError)
        assert UnsupportedError("x").code != ValidationError("x").code
