"""Test helper functions for creating Touchpoint instances."""

from datetime import datetime, timedelta

from campaign_attribution.attribution.models import Touchpoint

BASE_TIME = datetime(2025, 1, 10, 12, 0, 0)


def make_touch(
    touch_id: str,
    channel: str,
    touchpoint_type: str,
    days_before: float,
    journey_id: str = "journey_123",
    **metadata,
) -> Touchpoint:
    """
    Create a test Touchpoint ``days_before`` the shared reference time.

    Args:
        touch_id: Touchpoint identifier
        channel: Channel label
        touchpoint_type: Interaction label ("conversion" marks a conversion)
        days_before: Days before BASE_TIME the touch occurred
        journey_id: Owning journey
        **metadata: Touchpoint metadata, e.g. conversionValue=150.0

    Example:
        >>> touch = make_touch("tp_1", "email", "click", 3)
    """
    return Touchpoint(
        id=touch_id,
        journey_id=journey_id,
        channel=channel,
        touchpoint_type=touchpoint_type,
        occurred_at=BASE_TIME - timedelta(days=days_before),
        metadata=metadata,
    )
