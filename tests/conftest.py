"""Pytest configuration and shared fixtures for attribution tests."""

import pytest

from campaign_attribution.attribution.engine import AttributionEngine
from campaign_attribution.attribution.models import Journey
from campaign_attribution.core.config import AttributionConfig, get_settings
from tests.helpers.journey_helpers import make_touch


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Settings are cached per process; tests that patch env need a fresh read."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def attribution_config():
    """Default attribution configuration."""
    return AttributionConfig()


@pytest.fixture
def engine(attribution_config):
    """Create attribution engine instance."""
    return AttributionEngine(config=attribution_config)


@pytest.fixture
def three_touch_journey():
    """Email (day -5), social (day -3), website conversion (day -1)."""
    return Journey(
        journey_id="journey_123",
        touchpoints=[
            make_touch("tp_email", "email", "click", 5),
            make_touch("tp_social", "social_media", "engagement", 3),
            make_touch("tp_website", "website", "conversion", 1, conversionValue=150.0),
        ],
    )


@pytest.fixture
def multi_conversion_journey():
    """Two conversions followed by a trailing, unconverted touchpoint."""
    return Journey(
        journey_id="journey_multi",
        touchpoints=[
            make_touch("m1", "email", "click", 6, journey_id="journey_multi"),
            make_touch(
                "m2",
                "website",
                "conversion",
                5,
                journey_id="journey_multi",
                conversionValue=80,
            ),
            make_touch("m3", "social_media", "click", 3, journey_id="journey_multi"),
            make_touch("m4", "email", "click", 2, journey_id="journey_multi"),
            make_touch(
                "m5",
                "website",
                "conversion",
                1,
                journey_id="journey_multi",
                conversionValue="not-a-number",
            ),
            make_touch("m6", "social_media", "click", 0, journey_id="journey_multi"),
        ],
    )
