"""Tests for core exceptions module."""

import pickle

import pytest

from campaign_attribution.core.exceptions import (
    AttributionError,
    ConfigurationError,
    InvalidTouchpointError,
    TouchpointNotFoundError,
    UnsupportedModelError,
)


class TestAttributionError:
    """Test base AttributionError exception."""

    def test_inheritance(self) -> None:
        """Test that AttributionError inherits from Exception."""
        assert issubclass(AttributionError, Exception)

    def test_instantiation(self) -> None:
        """Test basic instantiation."""
        error = AttributionError("Test error")
        assert str(error) == "Test error"

    @pytest.mark.parametrize(
        "exc_class",
        [
            ConfigurationError,
            InvalidTouchpointError,
            TouchpointNotFoundError,
            UnsupportedModelError,
        ],
    )
    def test_subclasses(self, exc_class) -> None:
        """Test all engine errors share the base class."""
        assert issubclass(exc_class, AttributionError)


class TestUnsupportedModelError:
    """Test UnsupportedModelError."""

    def test_message_lists_supported_models(self) -> None:
        """Test the message names the rejected value and the alternatives."""
        error = UnsupportedModelError("u_shaped", ["linear", "custom"])

        assert error.model_type == "u_shaped"
        assert error.supported == ["linear", "custom"]
        assert str(error) == (
            "Unsupported attribution model: 'u_shaped'. Use: linear, custom"
        )

    def test_without_supported_list(self) -> None:
        """Test message without alternatives."""
        error = UnsupportedModelError("u_shaped")

        assert error.supported == []
        assert str(error) == "Unsupported attribution model: 'u_shaped'"

    def test_is_value_error(self) -> None:
        """Test callers catching ValueError also catch unknown models."""
        with pytest.raises(ValueError):
            raise UnsupportedModelError("u_shaped")


class TestTouchpointNotFoundError:
    """Test TouchpointNotFoundError."""

    def test_attributes(self) -> None:
        """Test ids are kept on the exception."""
        error = TouchpointNotFoundError("tp_1", "journey_123")

        assert error.touchpoint_id == "tp_1"
        assert error.journey_id == "journey_123"
        assert "tp_1" in str(error)
        assert isinstance(error, LookupError)


class TestInvalidTouchpointError:
    """Test InvalidTouchpointError."""

    def test_record(self) -> None:
        """Test the offending record is attached."""
        error = InvalidTouchpointError("bad record", record={"id": "tp_1"})

        assert error.record == {"id": "tp_1"}
        assert str(error) == "bad record"

    def test_record_defaults_to_empty(self) -> None:
        """Test record defaults to an empty dict."""
        assert InvalidTouchpointError("bad record").record == {}


def test_configuration_error_is_picklable() -> None:
    """Test simple errors survive pickling for worker pools."""
    error = pickle.loads(pickle.dumps(ConfigurationError("bad config")))

    assert isinstance(error, ConfigurationError)
    assert str(error) == "bad config"
