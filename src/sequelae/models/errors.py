"""Custom exceptions and error codes for sequelae.

This module defines a hierarchy of exceptions for different error scenarios
and error codes for structured error reporting.
"""

from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    """Standardized error codes for the application."""

    # Client errors
    INVALID_REQUEST = "invalid_request"
    VALIDATION_FAILED = "validation_failed"
    FILE_NOT_FOUND = "file_not_found"
    CONFIGURATION_ERROR = "configuration_error"

    # Database errors
    QUERY_ERROR = "query_error"
    DATABASE_CONNECTION_ERROR = "database_connection_error"
    POOL_EXHAUSTED = "pool_exhausted"

    # Backup errors
    BACKUP_FAILED = "backup_failed"
    TOOL_NOT_INSTALLED = "tool_not_installed"

    INTERNAL_ERROR = "internal_error"


class ErrorDetail:
    """Structured error detail information."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize error detail.

        Args:
            code: Error code identifier.
            message: Human-readable error message.
            details: Optional additional context.
        """
        self.code = code
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation.

        Returns:
            dict: Dictionary containing error information.
        """
        result: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __repr__(self) -> str:
        return f"ErrorDetail(code={self.code}, message={self.message!r})"


class SequelaeError(Exception):
    """Base exception for all sequelae errors.

    All custom exceptions in this application should inherit from this class.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize base error.

        Args:
            message: Human-readable error message.
            code: Error code identifier.
            details: Optional additional context.
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_error_detail(self) -> ErrorDetail:
        """Convert exception to ErrorDetail.

        Returns:
            ErrorDetail: Structured error detail.
        """
        return ErrorDetail(code=self.code, message=self.message, details=self.details)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code}, message={self.message!r})"


class ValidationError(SequelaeError):
    """Exception raised for invalid input rejected before any I/O."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code=ErrorCode.VALIDATION_FAILED, details=details)


class SQLFileNotFoundError(ValidationError):
    """Exception raised when an SQL file to execute does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(message=f"File not found: {path}", details={"path": path})
        self.code = ErrorCode.FILE_NOT_FOUND
        self.path = path


class ConfigurationError(SequelaeError):
    """Exception raised when the server is missing required configuration."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code=ErrorCode.CONFIGURATION_ERROR, details=details)


class QueryError(SequelaeError):
    """Exception raised when PostgreSQL rejects or fails a statement.

    The message is the server's own error message. ``position`` is the
    1-based character offset of the error in the statement when the server
    reports one (syntax errors mostly).
    """

    def __init__(
        self,
        message: str,
        position: int | None = None,
        sqlstate: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize query error.

        Args:
            message: Error message reported by the server.
            position: Optional error position within the statement.
            sqlstate: Optional five-character SQLSTATE code.
            details: Optional extra context.
        """
        details = dict(details or {})
        if position is not None:
            details["position"] = position
        if sqlstate is not None:
            details["sqlstate"] = sqlstate
        super().__init__(message=message, code=ErrorCode.QUERY_ERROR, details=details)
        self.position = position
        self.sqlstate = sqlstate


class DatabaseConnectionError(SequelaeError):
    """Exception raised when a database connection cannot be obtained or is lost."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        code: ErrorCode = ErrorCode.DATABASE_CONNECTION_ERROR,
    ) -> None:
        super().__init__(message=message, code=code, details=details)


class PoolExhaustedError(DatabaseConnectionError):
    """Exception raised when no pooled connection became free in time."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message=message, details=details, code=ErrorCode.POOL_EXHAUSTED)


class BackupError(SequelaeError):
    """Exception raised when pg_dump cannot run or exits unsuccessfully.

    Never escapes ``BackupOrchestrator.backup``; it is captured into
    ``BackupResult.error``.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.BACKUP_FAILED,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message=message, code=code, details=details)
