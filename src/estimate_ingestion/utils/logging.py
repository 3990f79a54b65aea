"""Structured logging for estimate ingestion.

Every log line emitted while an upload is parsed carries the request and
upload IDs, plus whatever the caller put in a LogContext (file name, sheet),
so a single upload can be followed from the HTTP request to the reconciled
summary.

Usage:
    from estimate_ingestion.utils.logging import get_logger, LogContext

    logger = get_logger(__name__)

    with LogContext(upload_id="upl-456", sheet="Estimate"):
        logger.info("Header resolved", header_row=2)
        # [upload_id=upl-456 sheet=Estimate] Header resolved | header_row=2

    with timed_operation(logger, "parse_estimate") as metrics:
        metrics.rows_processed = 120
"""

import logging
from collections.abc import Generator
from contextlib import contextmanager
from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

_request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
_upload_id_var: ContextVar[str | None] = ContextVar("upload_id", default=None)
_extra_context_var: ContextVar[dict[str, Any] | None] = ContextVar(
    "extra_context", default=None
)


def get_request_id() -> str | None:
    """Return the ID of the HTTP request being served, if any."""
    return _request_id_var.get()


def set_request_id(request_id: str | None) -> None:
    _request_id_var.set(request_id)


def get_upload_id() -> str | None:
    """Return the ID of the upload being parsed, if any."""
    return _upload_id_var.get()


def set_upload_id(upload_id: str | None) -> None:
    _upload_id_var.set(upload_id)


def get_extra_context() -> dict[str, Any]:
    return _extra_context_var.get() or {}


def set_extra_context(context: dict[str, Any]) -> None:
    _extra_context_var.set(context)


def clear_context() -> None:
    """Reset request, upload and extra context (end of an HTTP request)."""
    _request_id_var.set(None)
    _upload_id_var.set(None)
    _extra_context_var.set(None)


def context_prefix() -> str:
    """Render the current correlation context as ``[k=v ...] ``.

    Returns an empty string when no context is set.
    """
    pairs: list[tuple[str, Any]] = [
        ("request_id", get_request_id()),
        ("upload_id", get_upload_id()),
        *get_extra_context().items(),
    ]
    rendered = " ".join(
        f"{key}={value}" for key, value in pairs if value not in (None, "")
    )
    return f"[{rendered}] " if rendered else ""


@dataclass
class PerformanceMetrics:
    """Container for performance metrics during a parse.

    Attributes:
        operation: Name of the operation being measured.
        start_time: When the operation started.
        end_time: When the operation ended.
        duration_seconds: Duration in seconds.
        cells_read: Number of workbook cells materialized.
        rows_processed: Number of data rows walked.
        line_items: Number of line items produced.
        diagnostics: Number of diagnostics recorded.
        custom_metrics: Additional custom metrics.
    """

    operation: str
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    duration_seconds: float = 0.0
    cells_read: int = 0
    rows_processed: int = 0
    line_items: int = 0
    diagnostics: int = 0
    custom_metrics: dict[str, Any] = field(default_factory=dict)

    def finish(self) -> None:
        """Mark the operation as complete and calculate duration."""
        self.end_time = datetime.now(UTC)
        self.duration_seconds = (self.end_time - self.start_time).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Key-value pairs for the performance log line; zero counters omitted."""
        result: dict[str, Any] = {
            "operation": self.operation,
            "duration_seconds": self.duration_seconds,
        }
        for name in ("cells_read", "rows_processed", "line_items", "diagnostics"):
            count = getattr(self, name)
            if count:
                result[name] = count
        if self.custom_metrics:
            result["custom_metrics"] = self.custom_metrics
        return result


class StructuredLogFormatter(logging.Formatter):
    """Formatter that prefixes every message with the correlation context."""

    def format(self, record: logging.LogRecord) -> str:
        prefix = context_prefix()
        if not prefix:
            return super().format(record)

        original_msg = record.msg
        record.msg = f"{prefix}{original_msg}"
        try:
            return super().format(record)
        finally:
            record.msg = original_msg


class StructuredLogger:
    """Logger wrapper that appends key=value pairs to messages.

    Wraps a standard Python logger with additional methods for performance
    metrics and parse-result summaries.
    """

    def __init__(self, name: str) -> None:
        """Initialize the structured logger.

        Args:
            name: Logger name (typically __name__ of the module).
        """
        self._logger = logging.getLogger(name)
        self._name = name

    @property
    def logger(self) -> logging.Logger:
        """Access the underlying Python logger."""
        return self._logger

    def _build_message(
        self,
        message: str,
        **kwargs: Any,
    ) -> str:
        """Build a message with structured key-value pairs.

        Args:
            message: Base message.
            **kwargs: Additional key-value pairs to include.

        Returns:
            Formatted message string.
        """
        if not kwargs:
            return message

        parts = [f"{k}={v}" for k, v in kwargs.items()]
        return f"{message} | {', '.join(parts)}"

    def debug(self, message: str, **kwargs: Any) -> None:
        """Log a debug message."""
        self._logger.debug(self._build_message(message, **kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        """Log an info message."""
        self._logger.info(self._build_message(message, **kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        """Log a warning message."""
        self._logger.warning(self._build_message(message, **kwargs))

    def error(self, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        """Log an error message.

        Args:
            message: Log message.
            exc_info: Whether to include exception info.
            **kwargs: Additional structured data.
        """
        self._logger.error(self._build_message(message, **kwargs), exc_info=exc_info)

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log an exception with traceback."""
        self._logger.exception(self._build_message(message, **kwargs))

    def log_performance(self, metrics: PerformanceMetrics) -> None:
        """Log performance metrics.

        Args:
            metrics: Performance metrics to log.
        """
        self.info(
            f"Performance: {metrics.operation}",
            **metrics.to_dict(),
        )

    def log_parse_result(
        self,
        sheet_name: str,
        line_items: int,
        errors: int,
        warnings: int,
        discrepancy: Any | None = None,
    ) -> None:
        """Log the outcome of one estimate parse.

        Logged at WARNING level when the result carries ERROR diagnostics,
        since such a result cannot be imported.

        Args:
            sheet_name: Worksheet that was parsed.
            line_items: Number of extracted line items.
            errors: Number of ERROR diagnostics.
            warnings: Number of WARNING diagnostics.
            discrepancy: Computed minus declared grand total, if known.
        """
        kwargs: dict[str, Any] = {
            "sheet": sheet_name,
            "line_items": line_items,
            "errors": errors,
            "warnings": warnings,
        }
        if discrepancy is not None:
            kwargs["discrepancy"] = discrepancy

        level = logging.WARNING if errors else logging.INFO
        self._logger.log(level, self._build_message("Estimate parsed", **kwargs))


class LogContext:
    """Temporarily add correlation context to every log line.

    ``upload_id`` and ``request_id`` set the dedicated context variables;
    any other keyword is merged into the extra context. All three are reset
    to their previous values on exit, so contexts nest.

    Usage:
        with LogContext(upload_id="upl-123", sheet="Estimate"):
            logger.info("Parsing...")
    """

    def __init__(self, **kwargs: Any) -> None:
        self._upload_id: str | None = kwargs.pop("upload_id", None)
        self._request_id: str | None = kwargs.pop("request_id", None)
        self._extra = kwargs
        self._tokens: list[tuple[ContextVar[Any], Token[Any]]] = []

    def __enter__(self) -> "LogContext":
        if self._upload_id is not None:
            self._tokens.append((_upload_id_var, _upload_id_var.set(self._upload_id)))
        if self._request_id is not None:
            self._tokens.append(
                (_request_id_var, _request_id_var.set(self._request_id))
            )
        merged = {**get_extra_context(), **self._extra}
        self._tokens.append((_extra_context_var, _extra_context_var.set(merged)))
        return self

    def __exit__(self, *args: Any) -> None:
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)


@contextmanager
def timed_operation(
    logger: StructuredLogger,
    operation: str,
) -> Generator[PerformanceMetrics, None, None]:
    """Context manager for timing operations.

    Usage:
        with timed_operation(logger, "parse") as metrics:
            metrics.rows_processed = 100

        # Automatically logs: "Performance: parse | duration_seconds=..."

    Args:
        logger: Logger to use for output.
        operation: Name of the operation.

    Yields:
        PerformanceMetrics instance for tracking.
    """
    metrics = PerformanceMetrics(operation=operation)
    try:
        yield metrics
    finally:
        metrics.finish()
        logger.log_performance(metrics)


DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(
    level: int | str = logging.INFO,
    format_string: str | None = None,
    use_structured_formatter: bool = True,
) -> None:
    """Install a single stream handler on the root logger.

    Existing root handlers are replaced so repeated app startups (tests,
    reloads) do not duplicate output.

    Args:
        level: Log level, as an int or a name such as "INFO".
        format_string: Format string; DEFAULT_FORMAT when None.
        use_structured_formatter: Prefix messages with the correlation context.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    formatter_class = (
        StructuredLogFormatter if use_structured_formatter else logging.Formatter
    )
    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(formatter_class(format_string or DEFAULT_FORMAT))

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger for a module.

    Example:
        logger = get_logger(__name__)
        logger.info("Header resolved", sheet="Estimate", header_row=2)
    """
    return StructuredLogger(name)
