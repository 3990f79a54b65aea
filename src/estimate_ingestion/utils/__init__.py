"""Utilities package for estimate ingestion.

This package provides:
- Centralized exception classes (exceptions.py)
- Structured logging utilities (logging.py)
"""

from estimate_ingestion.utils.exceptions import (
    ConfigurationError,
    ConversionBlockedError,
    EncodingError,
    ErrorCode,
    EstimateIngestionError,
    FileError,
    HTTPStatusMixin,
    NoHeaderFoundError,
    SheetNotFoundError,
    TooLargeError,
    UnreadableFileError,
    WorksheetError,
)
from estimate_ingestion.utils.logging import (
    LogContext,
    StructuredLogger,
    get_logger,
    get_request_id,
    set_request_id,
)

__all__ = [
    # Exceptions
    "ConfigurationError",
    "ConversionBlockedError",
    "EncodingError",
    "ErrorCode",
    "EstimateIngestionError",
    "FileError",
    "HTTPStatusMixin",
    "NoHeaderFoundError",
    "SheetNotFoundError",
    "TooLargeError",
    "UnreadableFileError",
    "WorksheetError",
    # Logging
    "LogContext",
    "StructuredLogger",
    "get_logger",
    "get_request_id",
    "set_request_id",
]
