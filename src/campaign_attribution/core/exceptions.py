"""Custom exceptions for the attribution engine."""


class AttributionError(Exception):
    """Base exception for all attribution engine errors."""

    pass


class UnsupportedModelError(AttributionError, ValueError):
    """Raised when an attribution model type is outside the supported set."""

    def __init__(self, model_type: object, supported: list[str] | None = None):
        """Initialize unsupported model error.

        Args:
            model_type: The model type value that could not be resolved
            supported: Names of the model types that are accepted
        """
        self.model_type = model_type
        self.supported = supported or []
        message = f"Unsupported attribution model: {model_type!r}"
        if self.supported:
            message += f". Use: {', '.join(self.supported)}"
        super().__init__(message)


class TouchpointNotFoundError(AttributionError, LookupError):
    """Raised when a touchpoint does not belong to the journey it is scored in."""

    def __init__(self, touchpoint_id: str, journey_id: str):
        self.touchpoint_id = touchpoint_id
        self.journey_id = journey_id
        super().__init__(
            f"Touchpoint {touchpoint_id} is not part of journey {journey_id}"
        )


class InvalidTouchpointError(AttributionError):
    """Raised when a touchpoint record from the store cannot be used."""

    def __init__(self, message: str, record: dict | None = None):
        super().__init__(message)
        self.record = record or {}


class ConfigurationError(AttributionError):
    """Raised when configuration is invalid."""

    pass
