"""Configuration management for the attribution engine."""

import json
import logging
from enum import Enum
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from campaign_attribution.core.exceptions import ConfigurationError

# Credit assumed for a conversion whose metadata carries no usable value.
DEFAULT_CONVERSION_VALUE = 100.0
ALGORITHM_VERSION = "1.0"
DEFAULT_LOOKBACK_WINDOW_DAYS = 30.0


class Environment(str, Enum):
    """Application environments."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class LogFormat(str, Enum):
    """Log format options."""

    JSON = "json"
    TEXT = "text"


class AttributionConfig(BaseModel):
    """Tunable parameters for the attribution models.

    Hosts override these per deployment, e.g.::

        ATTRIBUTION_ATTRIBUTION__DEFAULT_CONVERSION_VALUE=250
        ATTRIBUTION_ATTRIBUTION__TIME_DECAY_HALF_LIFE_DAYS=14
    """

    default_conversion_value: float = Field(
        default=DEFAULT_CONVERSION_VALUE,
        ge=0.0,
        description="Conversion value used when a conversion touchpoint has none",
    )
    algorithm_version: str = Field(default=ALGORITHM_VERSION)

    # Conversion windows
    lookback_window_days: float | None = Field(
        default=DEFAULT_LOOKBACK_WINDOW_DAYS,
        gt=0.0,
        description="Only touchpoints this many days before a conversion are credited; "
        "None credits the whole path",
    )

    # Time decay
    time_decay_half_life_days: float = Field(
        default=7.0, gt=0.0, description="Half-life for time decay model in days"
    )

    # Position based (40/20/40)
    position_based_first_weight: float = Field(default=0.4, gt=0.0, lt=1.0)
    position_based_last_weight: float = Field(default=0.4, gt=0.0, lt=1.0)

    # Custom model
    custom_high_value_multiplier: float = Field(
        default=2.0,
        gt=1.0,
        description="Multiplier applied to high-value touchpoints in the custom model",
    )
    custom_high_value_touchpoint_types: list[str] = Field(
        default_factory=lambda: ["conversion"]
    )
    custom_touchpoint_type_weights: dict[str, float] = Field(
        default_factory=dict,
        description="Optional base weights by touchpoint type for the custom model",
    )

    # Data driven composite
    data_driven_position_weight: float = Field(default=1.0, ge=0.0)
    data_driven_recency_weight: float = Field(default=1.0, ge=0.0)
    data_driven_channel_weight: float = Field(default=1.0, ge=0.0)

    # Multi-touch blend
    multi_touch_time_weight: float = Field(default=0.5, ge=0.0)
    multi_touch_position_weight: float = Field(default=0.5, ge=0.0)

    # Model comparison
    comparison_spread_threshold: float = Field(
        default=25.0,
        gt=0.0,
        le=100.0,
        description="Share spread (percentage points) that flags a channel as model-sensitive",
    )

    @field_validator("custom_touchpoint_type_weights")
    @classmethod
    def validate_type_weights(cls, v: dict[str, float]) -> dict[str, float]:
        """Custom touchpoint weights must be non-negative."""
        negative = [key for key, weight in v.items() if weight < 0]
        if negative:
            raise ValueError(
                f"Custom touchpoint type weights must be non-negative: {', '.join(negative)}"
            )
        return v

    @model_validator(mode="after")
    def validate_weight_combinations(self) -> "AttributionConfig":
        """Validate that weight groups describe a usable distribution."""
        boundary = self.position_based_first_weight + self.position_based_last_weight
        if boundary > 1.0 + 1e-9:
            raise ValueError(
                "Position-based first and last weights must not exceed 1.0 combined, "
                f"got {boundary:.3f}"
            )

        if (
            self.data_driven_position_weight
            + self.data_driven_recency_weight
            + self.data_driven_channel_weight
            <= 0
        ):
            raise ValueError("At least one data-driven weight must be positive")

        if self.multi_touch_time_weight + self.multi_touch_position_weight <= 0:
            raise ValueError("At least one multi-touch blend weight must be positive")

        return self


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: LogFormat = LogFormat.JSON
    log_directory: str | None = Field(
        default=None, description="Directory for log files; console only when unset"
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {v}")
        return level


class Settings(BaseSettings):
    """Application settings.

    Environment Variables:
        ATTRIBUTION_ENVIRONMENT=development
        ATTRIBUTION_LOGGING__LEVEL=INFO
        ATTRIBUTION_LOGGING__FORMAT=json
        ATTRIBUTION_ATTRIBUTION__DEFAULT_CONVERSION_VALUE=100
    """

    model_config = SettingsConfigDict(
        env_prefix="ATTRIBUTION_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    environment: Environment = Environment.DEVELOPMENT
    debug: bool = False

    attribution: AttributionConfig = Field(default_factory=AttributionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls, env_file: Path | None = None) -> "Settings":
        """Load settings from environment, reading a .env file first if present."""
        if env_file:
            load_dotenv(env_file)
        else:
            env_path = Path.cwd() / ".env"
            if env_path.exists():
                load_dotenv(env_path)

        try:
            return cls()
        except ValidationError as e:
            raise ConfigurationError(f"Configuration errors: {e}") from e


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    try:
        return Settings.from_env()
    except ConfigurationError as e:
        logging.error(f"Configuration error: {e}")
        raise


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data)


def setup_logging(settings: Settings) -> None:
    """Configure logging based on settings."""
    log_level = getattr(logging, settings.logging.level.upper())

    if settings.logging.format == LogFormat.JSON:
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if settings.logging.log_directory:
        log_dir = Path(settings.logging.log_directory)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / "campaign_attribution.log")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
