"""
Custom exceptions for the TTN MQTT data client.
"""


class TTNDataError(Exception):
    """Base exception for all TTN data client errors."""
    pass


class ConfigError(TTNDataError):
    """Exception raised for configuration errors."""
    pass


class TopicError(TTNDataError):
    """Exception raised when a topic string cannot be decoded."""

    def __init__(self, topic: str, message: str):
        super().__init__(f"{message}: '{topic}'")
        self.topic = topic


class MalformedTopicError(TopicError):
    """Topic does not follow the expected segment layout."""
    pass


class UnknownEventKindError(TopicError):
    """Topic layout is valid but the suffix maps to no known event kind."""
    pass


class PayloadError(TTNDataError):
    """Exception raised when a received payload cannot be deserialized."""

    def __init__(self, message: str, topic: str | None = None, payload: bytes | None = None):
        super().__init__(message)
        self.topic = topic
        self.payload = payload


class PublishError(TTNDataError):
    """Exception raised when a downlink cannot be serialized or published."""
    pass


class ConnectionError(TTNDataError):
    """Exception raised for MQTT connection errors."""
    pass


class SubscriptionError(TTNDataError):
    """Exception raised when a subscribe or unsubscribe call fails."""

    def __init__(self, message: str, topic: str | None = None):
        super().__init__(message)
        self.topic = topic


class InvalidOperationError(TTNDataError, RuntimeError):
    """Exception raised for calls that are not valid on this object."""
    pass
