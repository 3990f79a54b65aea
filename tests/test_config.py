"""Tests for configuration management module."""

import logging
import os
from decimal import Decimal
from unittest.mock import patch

import pytest

from estimate_ingestion.config import Settings, validate_settings_on_startup


class TestSettings:
    """Tests for the Settings class."""

    def test_default_values(self) -> None:
        """Test default configuration values."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

        # Upload guards
        assert settings.max_file_size_mb == 10
        assert settings.max_cell_count == 500_000

        # Header resolution
        assert settings.header_scan_rows == 10
        assert settings.header_min_matches == 2

        # Extraction & reconciliation
        assert settings.stop_at_first_total is True
        assert settings.declared_total_policy == "last"
        assert settings.reconciliation_tolerance_per_hundred_items == Decimal("0.01")

        # Category normalization
        assert settings.category_fuzzy_threshold == 88.0
        assert settings.default_category == "General"

        # Logging and server
        assert settings.log_level == "INFO"
        assert settings.debug is False
        assert settings.cors_origins == "*"
        assert settings.server_host == "0.0.0.0"
        assert settings.server_port == 8000

    def test_environment_variable_prefix(self) -> None:
        """Test that environment variables use EST_ prefix."""
        env_vars = {
            "EST_MAX_FILE_SIZE_MB": "25",
            "EST_DECLARED_TOTAL_POLICY": "largest",
            "EST_STOP_AT_FIRST_TOTAL": "false",
            "EST_RECONCILIATION_TOLERANCE_PER_HUNDRED_ITEMS": "0.05",
            "EST_LOG_LEVEL": "DEBUG",
        }
        with patch.dict(os.environ, env_vars, clear=True):
            settings = Settings(_env_file=None)

        assert settings.max_file_size_mb == 25
        assert settings.declared_total_policy == "largest"
        assert settings.stop_at_first_total is False
        assert settings.reconciliation_tolerance_per_hundred_items == Decimal("0.05")
        assert settings.log_level == "DEBUG"

    def test_unprefixed_variables_ignored(self) -> None:
        """Test that variables without the prefix do not apply."""
        with patch.dict(os.environ, {"MAX_CELL_COUNT": "5"}, clear=True):
            settings = Settings(_env_file=None)

        assert settings.max_cell_count == 500_000

    def test_max_file_size_bytes_property(self) -> None:
        """Test max_file_size_bytes computed property."""
        env_vars = {"EST_MAX_FILE_SIZE_MB": "10"}
        with patch.dict(os.environ, env_vars, clear=True):
            settings = Settings(_env_file=None)

        assert settings.max_file_size_bytes == 10 * 1024 * 1024

    def test_cors_origins_list_multiple(self) -> None:
        """Test CORS origins list with several origins."""
        env_vars = {"EST_CORS_ORIGINS": "https://a.example.com, https://b.example.com"}
        with patch.dict(os.environ, env_vars, clear=True):
            settings = Settings(_env_file=None)

        assert settings.cors_origins_list == [
            "https://a.example.com",
            "https://b.example.com",
        ]

    def test_cors_origins_list_wildcard(self) -> None:
        """Test CORS origins list with wildcard."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

        assert settings.cors_origins_list == ["*"]

    def test_log_level_int_property(self) -> None:
        """Test log_level_int maps to logging constants."""
        env_vars = {"EST_LOG_LEVEL": "WARNING"}
        with patch.dict(os.environ, env_vars, clear=True):
            settings = Settings(_env_file=None)

        assert settings.log_level_int == logging.WARNING

    def test_to_safe_dict(self) -> None:
        """Test to_safe_dict is JSON friendly."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

        safe = settings.to_safe_dict()

        assert safe["reconciliation_tolerance_per_hundred_items"] == "0.01"
        assert safe["declared_total_policy"] == "last"
        assert set(safe) >= {"max_cell_count", "default_category", "server_port"}


class TestSettingsValidation:
    """Tests for settings validation."""

    def test_lowercase_log_level_normalized(self) -> None:
        """Test lowercase log levels are normalized to uppercase."""
        env_vars = {"EST_LOG_LEVEL": "debug"}
        with patch.dict(os.environ, env_vars, clear=True):
            settings = Settings(_env_file=None)
            assert settings.log_level == "DEBUG"

    def test_invalid_log_level_raises_error(self) -> None:
        """Test invalid log level raises validation error."""
        env_vars = {"EST_LOG_LEVEL": "INVALID"}
        with (
            patch.dict(os.environ, env_vars, clear=True),
            pytest.raises(ValueError, match="Invalid log level"),
        ):
            Settings(_env_file=None)

    def test_unknown_total_policy_rejected(self) -> None:
        """Test the declared total policy is restricted to known values."""
        env_vars = {"EST_DECLARED_TOTAL_POLICY": "median"}
        with (
            patch.dict(os.environ, env_vars, clear=True),
            pytest.raises(ValueError),
        ):
            Settings(_env_file=None)

    def test_file_size_must_be_between_1_and_500(self) -> None:
        """Test file size must be within range."""
        for value in ("0", "501"):
            with (
                patch.dict(os.environ, {"EST_MAX_FILE_SIZE_MB": value}, clear=True),
                pytest.raises(ValueError, match="between 1 and 500"),
            ):
                Settings(_env_file=None)

    def test_cell_count_must_be_positive(self) -> None:
        """Test the cell guard must be at least one."""
        with (
            patch.dict(os.environ, {"EST_MAX_CELL_COUNT": "0"}, clear=True),
            pytest.raises(ValueError, match="at least 1"),
        ):
            Settings(_env_file=None)

    def test_header_settings_must_be_positive(self) -> None:
        """Test header scan settings must be at least one."""
        for name in ("EST_HEADER_SCAN_ROWS", "EST_HEADER_MIN_MATCHES"):
            with (
                patch.dict(os.environ, {name: "0"}, clear=True),
                pytest.raises(ValueError, match="at least 1"),
            ):
                Settings(_env_file=None)

    def test_tolerance_must_not_be_negative(self) -> None:
        """Test the reconciliation tolerance cannot be negative."""
        env_vars = {"EST_RECONCILIATION_TOLERANCE_PER_HUNDRED_ITEMS": "-0.01"}
        with (
            patch.dict(os.environ, env_vars, clear=True),
            pytest.raises(ValueError, match="must not be negative"),
        ):
            Settings(_env_file=None)

    def test_fuzzy_threshold_range(self) -> None:
        """Test the fuzzy threshold is a 0-100 score."""
        with (
            patch.dict(os.environ, {"EST_CATEGORY_FUZZY_THRESHOLD": "101"}, clear=True),
            pytest.raises(ValueError, match="between 0 and 100"),
        ):
            Settings(_env_file=None)

    def test_default_category_trimmed(self) -> None:
        """Test the default category is stripped and must be non-empty."""
        with patch.dict(os.environ, {"EST_DEFAULT_CATEGORY": " Misc "}, clear=True):
            assert Settings(_env_file=None).default_category == "Misc"

        with (
            patch.dict(os.environ, {"EST_DEFAULT_CATEGORY": "  "}, clear=True),
            pytest.raises(ValueError, match="non-empty"),
        ):
            Settings(_env_file=None)

    def test_port_must_be_valid(self) -> None:
        """Test port must be within valid range."""
        with (
            patch.dict(os.environ, {"EST_SERVER_PORT": "70000"}, clear=True),
            pytest.raises(ValueError, match="between 1 and 65535"),
        ):
            Settings(_env_file=None)


class TestValidateSettingsOnStartup:
    """Tests for the validate_settings_on_startup function."""

    def test_warns_about_permissive_cors_in_production(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test warning for permissive CORS when not in debug mode."""
        env_vars = {"EST_CORS_ORIGINS": "*", "EST_DEBUG": "false"}
        with patch.dict(os.environ, env_vars, clear=True):
            settings = Settings(_env_file=None)

        with caplog.at_level(logging.WARNING):
            validate_settings_on_startup(settings)

        assert "CORS is configured to allow all origins" in caplog.text

    def test_no_cors_warning_with_specific_origins(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test no CORS warning when specific origins are configured."""
        env_vars = {"EST_CORS_ORIGINS": "https://example.com"}
        with patch.dict(os.environ, env_vars, clear=True):
            settings = Settings(_env_file=None)

        with caplog.at_level(logging.WARNING):
            validate_settings_on_startup(settings)

        assert "CORS is configured to allow all origins" not in caplog.text

    def test_warns_about_first_subtotal_policy(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test warning when the first total row may be a subtotal."""
        env_vars = {
            "EST_DECLARED_TOTAL_POLICY": "first",
            "EST_STOP_AT_FIRST_TOTAL": "false",
        }
        with patch.dict(os.environ, env_vars, clear=True):
            settings = Settings(_env_file=None)

        with caplog.at_level(logging.WARNING):
            validate_settings_on_startup(settings)

        assert "declared_total_policy=first" in caplog.text

    def test_logs_configuration_summary(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test configuration summary is logged on startup."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

        with caplog.at_level(logging.INFO):
            validate_settings_on_startup(settings)

        assert "Configuration loaded" in caplog.text
        assert "declared_total_policy=last" in caplog.text
