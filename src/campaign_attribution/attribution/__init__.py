"""Multi-touch attribution engine.

This package scores customer journeys under first-touch, last-touch, linear,
time-decay, position-based, data-driven and custom attribution models.
"""

from campaign_attribution.attribution.engine import AttributionEngine
from campaign_attribution.attribution.journey_builder import (
    JourneyBuilder,
    classify_channel,
)
from campaign_attribution.attribution.models import (
    AttributionModel,
    ChannelCombination,
    ChannelEffectivenessStats,
    Journey,
    JourneyMetrics,
    ModelComparison,
    ModelSummary,
    ModelType,
    MultiTouchCredit,
    Touchpoint,
)

__all__ = [
    "AttributionEngine",
    "JourneyBuilder",
    "classify_channel",
    "AttributionModel",
    "ChannelCombination",
    "ChannelEffectivenessStats",
    "Journey",
    "JourneyMetrics",
    "ModelComparison",
    "ModelSummary",
    "ModelType",
    "MultiTouchCredit",
    "Touchpoint",
]
