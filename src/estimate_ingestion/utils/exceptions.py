"""Centralized exception classes for estimate ingestion.

This module provides a hierarchy of custom exceptions with error codes,
HTTP status code mapping, and structured error details for consistent
error handling throughout the pipeline and the API.

Exception Hierarchy:
    EstimateIngestionError (base)
    ├── FileError
    │   ├── UnreadableFileError
    │   │   └── EncodingError
    │   └── TooLargeError
    ├── WorksheetError
    │   ├── NoHeaderFoundError
    │   └── SheetNotFoundError
    ├── ConversionBlockedError
    └── ConfigurationError

Row-level problems are never raised: they are collected as ParseDiagnostic
values on the parse result.

Error Codes:
    All errors have a unique error code (e.g., "E1001") that can be used
    for programmatic error handling and documentation.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Enumeration of all error codes used in the application.

    Error codes are grouped by category:
    - E1xxx: File/container errors
    - E2xxx: Worksheet structure errors
    - E3xxx: Conversion errors
    - E9xxx: Internal/unexpected errors
    """

    # File errors (E1xxx)
    UNREADABLE_FILE = "E1001"
    FILE_TOO_LARGE = "E1002"
    ENCODING_ERROR = "E1003"

    # Worksheet errors (E2xxx)
    NO_HEADER_FOUND = "E2001"
    SHEET_NOT_FOUND = "E2002"

    # Conversion errors (E3xxx)
    CONVERSION_BLOCKED = "E3001"

    # Internal errors (E9xxx)
    INTERNAL_ERROR = "E9001"
    CONFIGURATION_ERROR = "E9002"
    UNEXPECTED_ERROR = "E9999"


class HTTPStatusMixin:
    """Mixin that provides HTTP status code for exceptions.

    Subclasses should set the `http_status` class attribute.
    """

    http_status: int = 500

    def get_http_status(self) -> int:
        """Get the HTTP status code for this exception.

        Returns:
            HTTP status code appropriate for this error.
        """
        return self.http_status


class EstimateIngestionError(Exception, HTTPStatusMixin):
    """Base exception for all estimate ingestion errors.

    Attributes:
        message: Human-readable error message.
        error_code: Unique error code from ErrorCode enum.
        details: Optional dictionary with additional error details.
        http_status: HTTP status code for API responses (default 500).
    """

    http_status: int = 500

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            error_code: Error code from ErrorCode enum.
            details: Optional additional details about the error.
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert the exception to a dictionary for API responses.

        Returns:
            Dictionary with error information.
        """
        result: dict[str, Any] = {
            "error_code": self.error_code.value,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        """Return string representation with error code."""
        return f"[{self.error_code.value}] {self.message}"


# =============================================================================
# File Errors (E1xxx)
# =============================================================================


class FileError(EstimateIngestionError):
    """Base class for errors about the uploaded file itself."""

    http_status: int = 400

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.UNREADABLE_FILE,
        file_name: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with file name information.

        Args:
            message: Error message.
            error_code: Error code.
            file_name: Name of the problematic upload.
            details: Additional details.
        """
        details = details or {}
        if file_name:
            details["file_name"] = file_name
        super().__init__(message, error_code, details)
        self.file_name = file_name


class UnreadableFileError(FileError):
    """Raised when the upload is not a recognized spreadsheet container.

    Covers empty uploads, plain text that is not tabular, corrupt containers
    and workbooks without any sheet.
    """

    http_status: int = 400

    def __init__(
        self,
        message: str,
        detected_mime: str | None = None,
        file_name: str | None = None,
        details: dict[str, Any] | None = None,
        error_code: ErrorCode = ErrorCode.UNREADABLE_FILE,
    ) -> None:
        """Initialize with format information.

        Args:
            message: Error message.
            detected_mime: MIME type that was detected, if any.
            file_name: Optional file name.
            details: Additional details.
            error_code: Error code, overridden by subclasses.
        """
        details = details or {}
        if detected_mime:
            details["detected_mime_type"] = detected_mime
        super().__init__(
            message=message,
            error_code=error_code,
            file_name=file_name,
            details=details,
        )
        self.detected_mime = detected_mime


class EncodingError(UnreadableFileError):
    """Raised when a text-tabular upload cannot be decoded."""

    def __init__(
        self,
        message: str,
        encoding: str | None = None,
        file_name: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with encoding information.

        Args:
            message: Error message.
            encoding: The encoding that was attempted.
            file_name: Optional file name.
            details: Additional details.
        """
        details = details or {}
        if encoding:
            details["encoding"] = encoding
        super().__init__(
            message=message,
            file_name=file_name,
            details=details,
            error_code=ErrorCode.ENCODING_ERROR,
        )
        self.encoding = encoding


class TooLargeError(FileError):
    """Raised when an upload exceeds the byte or cell-count guard.

    The user remedy is to split the estimate into smaller files.
    """

    http_status: int = 413

    def __init__(
        self,
        size: int,
        limit: int,
        unit: str = "bytes",
        file_name: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with size information.

        Args:
            size: Measured size (bytes or cells).
            limit: Maximum allowed size in the same unit.
            unit: Unit of measurement, "bytes" or "cells".
            file_name: Optional file name.
            details: Additional details.
        """
        details = details or {}
        details["size"] = size
        details["limit"] = limit
        details["unit"] = unit
        message = (
            f"File size ({size} {unit}) exceeds maximum allowed size "
            f"({limit} {unit}). Split the estimate into smaller files."
        )
        super().__init__(
            message=message,
            error_code=ErrorCode.FILE_TOO_LARGE,
            file_name=file_name,
            details=details,
        )
        self.size = size
        self.limit = limit
        self.unit = unit


# =============================================================================
# Worksheet Errors (E2xxx)
# =============================================================================


class WorksheetError(EstimateIngestionError):
    """Base class for errors about worksheet structure."""

    http_status: int = 422

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.NO_HEADER_FOUND,
        sheet_name: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with sheet information.

        Args:
            message: Error message.
            error_code: Error code.
            sheet_name: Name of the worksheet involved.
            details: Additional details.
        """
        details = details or {}
        if sheet_name is not None:
            details["sheet_name"] = sheet_name
        super().__init__(message, error_code, details)
        self.sheet_name = sheet_name


class NoHeaderFoundError(WorksheetError):
    """Raised when no header row with the required columns can be located."""

    http_status: int = 422

    TEMPLATE_HINT = "Download the estimate template and copy your line items into it."

    def __init__(
        self,
        message: str,
        sheet_name: str | None = None,
        missing_roles: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with the roles that could not be resolved.

        Args:
            message: Error message.
            sheet_name: Worksheet that was scanned.
            missing_roles: Column roles that were required but not found.
            details: Additional details.
        """
        details = details or {}
        details["hint"] = self.TEMPLATE_HINT
        if missing_roles:
            details["missing_roles"] = missing_roles
        super().__init__(
            message=message,
            error_code=ErrorCode.NO_HEADER_FOUND,
            sheet_name=sheet_name,
            details=details,
        )
        self.missing_roles = missing_roles or []


class SheetNotFoundError(WorksheetError):
    """Raised when an explicitly requested worksheet does not exist."""

    http_status: int = 404

    def __init__(
        self,
        sheet_name: str,
        available: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with the requested and available sheet names.

        Args:
            sheet_name: The requested sheet.
            available: Sheet names present in the workbook.
            details: Additional details.
        """
        details = details or {}
        if available is not None:
            details["available_sheets"] = available
        super().__init__(
            message=f"Sheet '{sheet_name}' not found in workbook",
            error_code=ErrorCode.SHEET_NOT_FOUND,
            sheet_name=sheet_name,
            details=details,
        )


# =============================================================================
# Conversion Errors (E3xxx)
# =============================================================================


class ConversionBlockedError(EstimateIngestionError):
    """Raised when a parse result with ERROR diagnostics is converted.

    The user must fix the source file and re-upload, or drop the offending
    rows from the preview before retrying.
    """

    http_status: int = 409

    def __init__(
        self,
        blocking: list[Any],
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with the blocking diagnostics.

        Args:
            blocking: ERROR-severity diagnostics that prevent conversion.
            details: Additional details.
        """
        details = details or {}
        details["blocking_rows"] = [
            getattr(diag, "row_index", None) for diag in blocking
        ]
        details["blocking_diagnostics"] = [
            diag.model_dump(mode="json") if hasattr(diag, "model_dump") else diag
            for diag in blocking
        ]
        count = len(blocking)
        super().__init__(
            message=(
                f"Import blocked by {count} error diagnostic"
                f"{'' if count == 1 else 's'}"
            ),
            error_code=ErrorCode.CONVERSION_BLOCKED,
            details=details,
        )
        self.blocking = list(blocking)


# =============================================================================
# Internal Errors (E9xxx)
# =============================================================================


class ConfigurationError(EstimateIngestionError):
    """Raised when the runtime configuration is invalid."""

    http_status: int = 500

    def __init__(
        self,
        message: str,
        setting: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with the offending setting name.

        Args:
            message: Error message.
            setting: Name of the invalid setting.
            details: Additional details.
        """
        details = details or {}
        if setting:
            details["setting"] = setting
        super().__init__(message, ErrorCode.CONFIGURATION_ERROR, details)
        self.setting = setting
