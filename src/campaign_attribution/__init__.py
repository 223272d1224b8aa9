"""Campaign attribution engine.

Multi-touch attribution over customer journey snapshots.
"""

__version__ = "1.0.0"

from campaign_attribution.attribution import AttributionEngine, JourneyBuilder

__all__ = ["AttributionEngine", "JourneyBuilder"]
