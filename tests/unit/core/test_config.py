"""Tests for configuration management."""

import json
import logging
import os

import pytest
from pydantic import ValidationError

from campaign_attribution.attribution.engine import AttributionEngine
from campaign_attribution.core.config import (
    DEFAULT_CONVERSION_VALUE,
    DEFAULT_LOOKBACK_WINDOW_DAYS,
    AttributionConfig,
    Environment,
    JsonFormatter,
    LogFormat,
    LoggingConfig,
    Settings,
    get_settings,
    setup_logging,
)
from campaign_attribution.core.exceptions import ConfigurationError


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Isolate settings from the host environment and any local .env file."""
    for key in list(os.environ):
        if key.startswith("ATTRIBUTION_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


@pytest.fixture
def restore_root_logger():
    """Remove handlers added by setup_logging."""
    root_logger = logging.getLogger()
    handlers = list(root_logger.handlers)
    level = root_logger.level
    yield root_logger
    for handler in root_logger.handlers[:]:
        if handler not in handlers:
            handler.close()
            root_logger.removeHandler(handler)
    root_logger.setLevel(level)


class TestAttributionConfig:
    """Test AttributionConfig validation."""

    def test_defaults(self):
        """Test default model parameters."""
        config = AttributionConfig()

        assert config.default_conversion_value == DEFAULT_CONVERSION_VALUE == 100.0
        assert config.time_decay_half_life_days == 7.0
        assert config.position_based_first_weight == 0.4
        assert config.position_based_last_weight == 0.4
        assert config.custom_high_value_multiplier == 2.0
        assert config.custom_high_value_touchpoint_types == ["conversion"]
        assert config.comparison_spread_threshold == 25.0
        assert config.algorithm_version == "1.0"
        assert config.lookback_window_days == DEFAULT_LOOKBACK_WINDOW_DAYS == 30.0

    @pytest.mark.parametrize(
        "overrides",
        [
            {"time_decay_half_life_days": 0},
            {"default_conversion_value": -1},
            {"position_based_first_weight": 0.6, "position_based_last_weight": 0.6},
            {"custom_high_value_multiplier": 1.0},
            {"custom_touchpoint_type_weights": {"click": -1.0}},
            {
                "data_driven_position_weight": 0,
                "data_driven_recency_weight": 0,
                "data_driven_channel_weight": 0,
            },
            {"multi_touch_time_weight": 0, "multi_touch_position_weight": 0},
            {"comparison_spread_threshold": 0},
            {"lookback_window_days": 0},
        ],
    )
    def test_invalid_values(self, overrides):
        """Test invalid parameter combinations are rejected."""
        with pytest.raises(ValidationError):
            AttributionConfig(**overrides)

    def test_boundary_weights_may_fill_path(self):
        """Test first and last weights may take all position credit."""
        config = AttributionConfig(
            position_based_first_weight=0.5, position_based_last_weight=0.5
        )

        assert config.position_based_first_weight == 0.5

    def test_lookback_window_may_be_disabled(self):
        """Test a missing lookback window credits whole paths."""
        assert AttributionConfig(lookback_window_days=None).lookback_window_days is None


class TestLoggingConfig:
    """Test LoggingConfig validation."""

    def test_level_is_normalised(self):
        """Test log level is upper-cased."""
        assert LoggingConfig(level="debug").level == "DEBUG"

    def test_unknown_level(self):
        """Test unknown log levels are rejected."""
        with pytest.raises(ValidationError):
            LoggingConfig(level="LOUD")


class TestSettings:
    """Test settings loading from the environment."""

    def test_default_settings(self, clean_env):
        """Test settings without overrides."""
        settings = Settings.from_env()

        assert settings.environment == Environment.DEVELOPMENT
        assert settings.debug is False
        assert settings.logging.format == LogFormat.JSON
        assert settings.attribution.default_conversion_value == 100.0

    def test_env_overrides(self, clean_env):
        """Test nested attribution settings from environment variables."""
        clean_env.setenv("ATTRIBUTION_ENVIRONMENT", "production")
        clean_env.setenv("ATTRIBUTION_ATTRIBUTION__DEFAULT_CONVERSION_VALUE", "250")
        clean_env.setenv("ATTRIBUTION_ATTRIBUTION__TIME_DECAY_HALF_LIFE_DAYS", "14")
        clean_env.setenv("ATTRIBUTION_LOGGING__LEVEL", "warning")

        settings = Settings.from_env()

        assert settings.environment == Environment.PRODUCTION
        assert settings.attribution.default_conversion_value == 250.0
        assert settings.attribution.time_decay_half_life_days == 14.0
        assert settings.logging.level == "WARNING"

    def test_env_file(self, clean_env, tmp_path):
        """Test values are read from a .env file."""
        env_file = tmp_path / "attribution.env"
        env_file.write_text("ATTRIBUTION_ATTRIBUTION__COMPARISON_SPREAD_THRESHOLD=40\n")
        # load_dotenv writes into os.environ; register it for cleanup
        clean_env.setenv("ATTRIBUTION_ATTRIBUTION__COMPARISON_SPREAD_THRESHOLD", "")
        clean_env.delenv("ATTRIBUTION_ATTRIBUTION__COMPARISON_SPREAD_THRESHOLD")

        settings = Settings.from_env(env_file)

        assert settings.attribution.comparison_spread_threshold == 40.0

    def test_invalid_env_raises_configuration_error(self, clean_env):
        """Test invalid environment values surface as ConfigurationError."""
        clean_env.setenv("ATTRIBUTION_ATTRIBUTION__TIME_DECAY_HALF_LIFE_DAYS", "-3")

        with pytest.raises(ConfigurationError):
            Settings.from_env()

    def test_get_settings_is_cached(self, clean_env):
        """Test settings are loaded once per process."""
        assert get_settings() is get_settings()

    def test_get_settings_logs_errors(self, clean_env, caplog):
        """Test configuration errors are logged and re-raised."""
        clean_env.setenv("ATTRIBUTION_LOGGING__LEVEL", "LOUD")

        with caplog.at_level("ERROR"), pytest.raises(ConfigurationError):
            get_settings()

        assert "Configuration error" in caplog.text

    def test_engine_reads_settings(self, clean_env):
        """Test the engine falls back to configured settings."""
        clean_env.setenv("ATTRIBUTION_ATTRIBUTION__DEFAULT_CONVERSION_VALUE", "75")

        engine = AttributionEngine()

        assert engine.config.default_conversion_value == 75.0


class TestSetupLogging:
    """Test logging setup."""

    def test_json_logging(self, clean_env, restore_root_logger):
        """Test JSON formatter is installed on the console handler."""
        settings = Settings.from_env()

        setup_logging(settings)

        handler = restore_root_logger.handlers[-1]
        assert isinstance(handler.formatter, JsonFormatter)
        assert restore_root_logger.level == logging.INFO

    def test_text_logging_with_file(self, clean_env, restore_root_logger, tmp_path):
        """Test text format and file logging."""
        clean_env.setenv("ATTRIBUTION_LOGGING__FORMAT", "text")
        clean_env.setenv("ATTRIBUTION_LOGGING__LOG_DIRECTORY", str(tmp_path / "logs"))

        setup_logging(Settings.from_env())

        assert (tmp_path / "logs").is_dir()
        file_handlers = [
            h for h in restore_root_logger.handlers if isinstance(h, logging.FileHandler)
        ]
        assert file_handlers
        assert not isinstance(file_handlers[-1].formatter, JsonFormatter)

    def test_json_formatter_output(self):
        """Test JSON log records carry level, logger and message."""
        record = logging.LogRecord(
            name="campaign_attribution.attribution.engine",
            level=logging.WARNING,
            pathname=__file__,
            lineno=10,
            msg="Journey %s skipped",
            args=("journey_123",),
            exc_info=None,
        )

        data = json.loads(JsonFormatter().format(record))

        assert data["level"] == "WARNING"
        assert data["logger"] == "campaign_attribution.attribution.engine"
        assert data["message"] == "Journey journey_123 skipped"
