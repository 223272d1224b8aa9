"""Attribution data models for multi-touch customer journey analysis."""

import logging
import math
from collections.abc import Mapping
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)

from campaign_attribution.core.exceptions import UnsupportedModelError

logger = logging.getLogger(__name__)

CONVERSION_TOUCHPOINT_TYPE = "conversion"
CONVERSION_VALUE_KEYS = ("conversionValue", "conversion_value")


class ModelType(str, Enum):
    """Attribution model types for customer journey analysis."""

    FIRST_TOUCH = "first_touch"
    LAST_TOUCH = "last_touch"
    LINEAR = "linear"
    TIME_DECAY = "time_decay"
    POSITION_BASED = "position_based"  # 40/20/40
    DATA_DRIVEN = "data_driven"
    CUSTOM = "custom"

    @classmethod
    def parse(cls, value: "ModelType | str") -> "ModelType":
        """Resolve a model type from an enum member or an external string.

        Raises:
            UnsupportedModelError: If the value names no known model
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower()
            key = MODEL_TYPE_ALIASES.get(key, key)
            try:
                return cls(key)
            except ValueError:
                pass
        raise UnsupportedModelError(value, [member.value for member in cls])


# Click-based names used by ad platforms for the same single-touch models.
MODEL_TYPE_ALIASES = {
    "first_click": ModelType.FIRST_TOUCH.value,
    "last_click": ModelType.LAST_TOUCH.value,
}


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


class AttributionBaseModel(BaseModel):
    """Base model for all attribution models."""

    model_config = {
        # Allow population by field name as well as camelCase alias
        "populate_by_name": True,
        # Field names such as model_type are part of the domain
        "protected_namespaces": (),
    }


class Touchpoint(AttributionBaseModel):
    """Single observed customer interaction within a journey."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    journey_id: str = Field(..., alias="journeyId", description="Owning journey")
    channel: str = Field(..., description="Channel label, e.g. email or website")
    touchpoint_type: str = Field(
        ..., alias="touchpointType", description="Interaction label, e.g. click"
    )
    occurred_at: datetime = Field(..., alias="occurredAt")
    metadata: Mapping[str, Any] = Field(default_factory=dict)

    @field_validator("occurred_at", mode="after")
    @classmethod
    def normalise_occurred_at(cls, v: datetime) -> datetime:
        """Store every timestamp as UTC; naive values are taken to be UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @field_validator("metadata", mode="after")
    @classmethod
    def freeze_metadata(cls, v: Mapping[str, Any]) -> Mapping[str, Any]:
        return MappingProxyType(dict(v))

    @field_serializer("metadata")
    def serialize_metadata(self, v: Mapping[str, Any]) -> dict[str, Any]:
        return dict(v)

    @property
    def is_conversion(self) -> bool:
        return self.touchpoint_type == CONVERSION_TOUCHPOINT_TYPE

    def resolve_conversion_value(self, default: float) -> float:
        """Return the numeric conversion value carried in metadata.

        Missing, non-numeric, non-finite or negative values resolve to
        ``default`` so a single malformed touchpoint never aborts attribution.
        """
        raw = None
        for key in CONVERSION_VALUE_KEYS:
            if key in self.metadata:
                raw = self.metadata[key]
                break

        if raw is None:
            return default

        if isinstance(raw, bool):
            value = None
        elif isinstance(raw, (int, float)):
            value = float(raw)
        elif isinstance(raw, str):
            try:
                value = float(raw.strip())
            except ValueError:
                value = None
        else:
            value = None

        if value is None or not math.isfinite(value) or value < 0:
            logger.warning(
                f"Touchpoint {self.id} has unusable conversion value {raw!r}, "
                f"using default {default}"
            )
            return default

        return value


class Journey(AttributionBaseModel):
    """Immutable snapshot of one subject's ordered touchpoints."""

    model_config = ConfigDict(frozen=True)

    journey_id: str = Field(..., alias="journeyId")
    touchpoints: tuple[Touchpoint, ...] = Field(default_factory=tuple)

    @field_validator("touchpoints", mode="after")
    @classmethod
    def order_touchpoints(
        cls, v: tuple[Touchpoint, ...]
    ) -> tuple[Touchpoint, ...]:
        """Order by occurrence; ``sorted`` is stable so ties keep insertion order."""
        return tuple(sorted(v, key=lambda touch: touch.occurred_at))

    @model_validator(mode="after")
    def validate_membership(self) -> "Journey":
        """Touchpoints must belong to this journey and carry unique ids."""
        foreign = [
            touch.id for touch in self.touchpoints if touch.journey_id != self.journey_id
        ]
        if foreign:
            raise ValueError(
                f"Touchpoints {', '.join(foreign)} do not belong to journey "
                f"{self.journey_id}"
            )

        seen: set[str] = set()
        duplicates = []
        for touch in self.touchpoints:
            if touch.id in seen:
                duplicates.append(touch.id)
            seen.add(touch.id)
        if duplicates:
            raise ValueError(f"Duplicate touchpoint ids: {', '.join(duplicates)}")

        return self

    @property
    def conversions(self) -> list[Touchpoint]:
        return [touch for touch in self.touchpoints if touch.is_conversion]

    @property
    def has_conversions(self) -> bool:
        return any(touch.is_conversion for touch in self.touchpoints)

    @property
    def channels(self) -> list[str]:
        """Distinct channels in order of first appearance."""
        return list(dict.fromkeys(touch.channel for touch in self.touchpoints))

    def excluding(self, *touchpoint_ids: str) -> "Journey":
        """Return a new snapshot without the given touchpoints."""
        removed = set(touchpoint_ids)
        return Journey(
            journey_id=self.journey_id,
            touchpoints=tuple(
                touch for touch in self.touchpoints if touch.id not in removed
            ),
        )


class CalculationMetadata(AttributionBaseModel):
    """How an attribution row was produced."""

    model_type: ModelType
    touchpoint_position: int = Field(..., ge=1)
    total_touchpoints: int = Field(..., ge=1)
    conversion_count: int = Field(..., ge=0)
    journey_id: str
    conversion_touchpoint_id: str
    algorithm_version: str
    calculated_at: datetime = Field(default_factory=utc_now)


class AttributionModel(AttributionBaseModel):
    """Credit assigned to one touchpoint for one conversion under one model."""

    touchpoint_id: str
    model_type: ModelType
    attribution_percentage: float = Field(..., ge=0.0, le=100.0)
    conversion_value: float = Field(default=0.0, ge=0.0)
    calculation_metadata: CalculationMetadata


class ChannelEffectivenessStats(AttributionBaseModel):
    """Per-channel effectiveness within a journey."""

    touchpoint_count: int = Field(default=0, ge=0)
    conversion_count: int = Field(default=0, ge=0)
    conversion_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    total_attribution_value: float = Field(default=0.0, ge=0.0)
    roi_score: float = Field(
        default=0.0, ge=0.0, description="Attributed value per touchpoint"
    )


class ModelSummary(AttributionBaseModel):
    """Aggregate view of one model's attribution for a journey."""

    model_type: ModelType
    total_conversion_value: float = Field(default=0.0, ge=0.0)
    channel_breakdown: dict[str, float] = Field(default_factory=dict)
    model_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    credited_touchpoints: int = Field(default=0, ge=0)


class ChannelModelCredit(AttributionBaseModel):
    """Credit a channel receives under one model."""

    attribution_credit: float = Field(default=0.0, ge=0.0)
    percentage: float = Field(default=0.0, ge=0.0, le=100.0)


class ModelRecommendation(AttributionBaseModel):
    """Channel whose credit depends strongly on the chosen model."""

    channel: str
    lowest_model: ModelType
    highest_model: ModelType
    spread: float = Field(..., ge=0.0, description="Share spread in percentage points")
    message: str


class ModelComparison(AttributionBaseModel):
    """Side-by-side comparison of attribution models for one journey."""

    channel_comparison: dict[str, dict[ModelType, ChannelModelCredit]] = Field(
        default_factory=dict
    )
    model_summary: dict[ModelType, ModelSummary] = Field(default_factory=dict)
    recommendations: list[ModelRecommendation] = Field(default_factory=list)


class MultiTouchCredit(AttributionBaseModel):
    """Blended time-decay and position-based credit for one touchpoint."""

    touchpoint: Touchpoint
    attribution_percentage: float = Field(..., ge=0.0, le=100.0)
    time_weight: float = Field(..., ge=0.0, le=100.0)
    position_weight: float = Field(..., ge=0.0, le=100.0)


class CrossChannelMetrics(AttributionBaseModel):
    """How attribution credit spreads across channels."""

    model_type: ModelType
    channel_diversity: int = Field(default=0, ge=0)
    dominant_channel: str | None = None
    attribution_concentration: float = Field(
        default=0.0, ge=0.0, le=1.0, description="Herfindahl index of channel shares"
    )


class ConversionPath(AttributionBaseModel):
    """Channel sequence that led to conversions across journeys."""

    sequence: tuple[str, ...]
    occurrences: int = Field(default=0, ge=0)
    total_conversion_value: float = Field(default=0.0, ge=0.0)
    avg_conversion_value: float = Field(default=0.0, ge=0.0)

    @property
    def label(self) -> str:
        return " > ".join(self.sequence)


class JourneyMetrics(AttributionBaseModel):
    """Path length, conversion speed and drop-off points across journeys."""

    total_journeys: int = Field(default=0, ge=0)
    converting_journeys: int = Field(default=0, ge=0)
    avg_touchpoints_per_journey: float = Field(default=0.0, ge=0.0)
    avg_touchpoints_to_conversion: float = Field(
        default=0.0, ge=0.0, description="Mean length of credited conversion paths"
    )
    avg_conversion_velocity_hours: float | None = Field(
        default=None,
        ge=0.0,
        description="Mean hours from a path's first touchpoint to its conversion",
    )
    drop_off_channels: dict[str, int] = Field(
        default_factory=dict,
        description="Last channel of unconverted trailing paths, most frequent first",
    )


class ChannelCombination(AttributionBaseModel):
    """Set of channels seen together in journeys and how often they convert."""

    channels: tuple[str, ...]
    journeys: int = Field(default=0, ge=0)
    converting_journeys: int = Field(default=0, ge=0)
    conversion_rate: float = Field(default=0.0, ge=0.0, le=1.0)

    @property
    def label(self) -> str:
        return " + ".join(self.channels)
