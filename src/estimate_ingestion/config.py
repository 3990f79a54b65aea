"""Configuration management for estimate ingestion.

This module provides centralized configuration using pydantic-settings.
All configuration options can be set via environment variables with the
EST_ prefix, or via a .env file in the project root.

Environment Variables:
    EST_MAX_FILE_SIZE_MB: Maximum upload size in MB (default: 10)
    EST_MAX_CELL_COUNT: Maximum cells across all sheets (default: 500000)
    EST_HEADER_SCAN_ROWS: Rows scanned when looking for the header (default: 10)
    EST_HEADER_MIN_MATCHES: Minimum recognized labels in a header row (default: 2)
    EST_STOP_AT_FIRST_TOTAL: Stop extraction at the first total row (default: true)
    EST_DECLARED_TOTAL_POLICY: last, first or largest total row (default: last)
    EST_RECONCILIATION_TOLERANCE_PER_HUNDRED_ITEMS: Drift per 100 items (default: 0.01)
    EST_CATEGORY_FUZZY_THRESHOLD: rapidfuzz score for fuzzy matches (default: 88)
    EST_DEFAULT_CATEGORY: Category for rows without one (default: General)
    EST_LOG_LEVEL: Logging level (default: INFO)
    EST_DEBUG: Enable debug mode (default: false)
    EST_CORS_ORIGINS: Comma-separated CORS origins (default: *)
    EST_SERVER_HOST: Server bind host (default: 0.0.0.0)
    EST_SERVER_PORT: Server bind port (default: 8000)
"""

import logging
from decimal import Decimal
from typing import Any, Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DeclaredTotalPolicy = Literal["last", "first", "largest"]


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Example .env file:
        EST_MAX_FILE_SIZE_MB=25
        EST_DECLARED_TOTAL_POLICY=largest
        EST_LOG_LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_prefix="EST_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # =========================================================================
    # Upload Guards
    # =========================================================================

    max_file_size_mb: int = 10
    """Maximum upload size in megabytes."""

    max_cell_count: int = 500_000
    """Maximum number of cells across all sheets of one workbook."""

    # =========================================================================
    # Header Resolution
    # =========================================================================

    header_scan_rows: int = 10
    """Number of leading rows scanned for the header row."""

    header_min_matches: int = 2
    """Minimum number of recognized column labels for a header row."""

    # =========================================================================
    # Extraction & Reconciliation
    # =========================================================================

    stop_at_first_total: bool = True
    """Stop line-item extraction at the first total/subtotal row."""

    declared_total_policy: DeclaredTotalPolicy = "last"
    """Which total row is treated as the declared grand total."""

    reconciliation_tolerance_per_hundred_items: Decimal = Decimal("0.01")
    """Allowed difference between computed and declared totals per 100 items."""

    # =========================================================================
    # Category Normalization
    # =========================================================================

    category_fuzzy_threshold: float = 88.0
    """Minimum rapidfuzz ratio (0-100) for a fuzzy category match."""

    default_category: str = "General"
    """Canonical category for rows without any category text."""

    # =========================================================================
    # Logging Settings
    # =========================================================================

    log_level: str = "INFO"
    """Logging level: DEBUG, INFO, WARNING, ERROR, or CRITICAL."""

    debug: bool = False
    """Enable debug mode with additional error details."""

    # =========================================================================
    # Server Settings
    # =========================================================================

    cors_origins: str = "*"
    """Comma-separated list of allowed CORS origins, or * for all."""

    server_host: str = "0.0.0.0"
    """Host address for the server to bind to."""

    server_port: int = 8000
    """Port for the server to listen on."""

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid Python logging level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(valid_levels)}"
            )
        return upper_v

    @field_validator("max_file_size_mb")
    @classmethod
    def validate_file_size(cls, v: int) -> int:
        """Validate file size is positive and reasonable."""
        if not 1 <= v <= 500:
            raise ValueError(f"max_file_size_mb must be between 1 and 500, got {v}")
        return v

    @field_validator("max_cell_count")
    @classmethod
    def validate_cell_count(cls, v: int) -> int:
        """Validate the cell guard is positive."""
        if v < 1:
            raise ValueError(f"max_cell_count must be at least 1, got {v}")
        return v

    @field_validator("header_scan_rows", "header_min_matches")
    @classmethod
    def validate_header_bounds(cls, v: int) -> int:
        """Validate header scan settings are at least 1."""
        if v < 1:
            raise ValueError(f"header settings must be at least 1, got {v}")
        return v

    @field_validator("reconciliation_tolerance_per_hundred_items")
    @classmethod
    def validate_tolerance(cls, v: Decimal) -> Decimal:
        """Validate the reconciliation tolerance is not negative."""
        if v < 0:
            raise ValueError(f"tolerance must not be negative, got {v}")
        return v

    @field_validator("category_fuzzy_threshold")
    @classmethod
    def validate_fuzzy_threshold(cls, v: float) -> float:
        """Validate the fuzzy threshold is a rapidfuzz score."""
        if not 0.0 <= v <= 100.0:
            raise ValueError(
                f"category_fuzzy_threshold must be between 0 and 100, got {v}"
            )
        return v

    @field_validator("default_category")
    @classmethod
    def validate_default_category(cls, v: str) -> str:
        """Validate the default category is non-empty."""
        if not v.strip():
            raise ValueError("default_category must be a non-empty string")
        return v.strip()

    @field_validator("server_port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError(f"server_port must be between 1 and 65535, got {v}")
        return v

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def max_file_size_bytes(self) -> int:
        """Get max file size in bytes."""
        return self.max_file_size_mb * 1024 * 1024

    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def log_level_int(self) -> int:
        """Get log level as integer for logging module."""
        level: int = getattr(logging, self.log_level)
        return level

    def to_safe_dict(self) -> dict[str, Any]:
        """Convert settings to a dictionary suitable for logging.

        Returns:
            Dictionary representation of the settings.
        """
        return {
            "max_file_size_mb": self.max_file_size_mb,
            "max_cell_count": self.max_cell_count,
            "header_scan_rows": self.header_scan_rows,
            "header_min_matches": self.header_min_matches,
            "stop_at_first_total": self.stop_at_first_total,
            "declared_total_policy": self.declared_total_policy,
            "reconciliation_tolerance_per_hundred_items": str(
                self.reconciliation_tolerance_per_hundred_items
            ),
            "category_fuzzy_threshold": self.category_fuzzy_threshold,
            "default_category": self.default_category,
            "log_level": self.log_level,
            "debug": self.debug,
            "cors_origins": self.cors_origins,
            "server_host": self.server_host,
            "server_port": self.server_port,
        }


def validate_settings_on_startup(s: Settings) -> None:
    """Validate settings on application startup.

    Emits warnings for configurations that are valid but risky in production.

    Args:
        s: Settings instance to validate.
    """
    logger = logging.getLogger(__name__)

    if s.cors_origins == "*" and not s.debug:
        logger.warning(
            "CORS is configured to allow all origins (*). "
            "Consider restricting this in production."
        )

    if not s.stop_at_first_total and s.declared_total_policy == "first":
        logger.warning(
            "declared_total_policy=first with stop_at_first_total disabled picks "
            "the first subtotal row as the declared grand total."
        )

    logger.info(
        f"Configuration loaded: log_level={s.log_level}, debug={s.debug}, "
        f"max_file_size_mb={s.max_file_size_mb}, "
        f"declared_total_policy={s.declared_total_policy}"
    )


# Create the global settings instance
settings = Settings()
