"""Custom exception hierarchy for the Scaleway service discovery daemon."""


class DiscoveryError(Exception):
    """Base exception for all daemon errors."""


class ConfigError(DiscoveryError):
    """Invalid or missing configuration."""


class InventoryError(DiscoveryError):
    """The inventory API call failed. Always retried on the next tick."""

    def __init__(self, message: str, status_code: int | None = None, response_body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class MalformedRecordError(DiscoveryError):
    """A single inventory record cannot be turned into a target."""

    def __init__(self, message: str, identifier: str = ""):
        super().__init__(message)
        self.identifier = identifier


class SinkError(DiscoveryError):
    """The output sink refused a batch."""
