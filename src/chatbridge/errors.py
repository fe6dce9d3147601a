"""Exception hierarchy for the chat bridge."""


class ChatBridgeError(Exception):
    """Base class for all chat bridge errors."""


class ConfigurationError(ChatBridgeError):
    """Required configuration (e.g. the model credential) is missing. Never retried."""


class ModelAPIError(ChatBridgeError):
    """The model endpoint answered with a non-success status."""

    def __init__(self, status_code: int, body: str = "") -> None:
        super().__init__(f"Model API error: {status_code} {body}".rstrip())
        self.status_code = status_code
        self.body = body


class RateLimitExceededError(ModelAPIError):
    """Still rate limited (429) after every retry was spent."""


class ModelProtocolError(ChatBridgeError):
    """The model response could not be understood (bad JSON, unknown block type)."""


class ModelTransportError(ChatBridgeError):
    """The model endpoint could not be reached (connection failure, timeout). Not retried."""
