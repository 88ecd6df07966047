"""Exception hierarchy for the Loggly shipper."""


class ShipperError(Exception):
    """Base class for every error raised or reported by the shipper."""


class ConfigurationError(ShipperError):
    """Invalid configuration, or Loggly rejected the request (4xx)."""


class EncodingError(ShipperError):
    """A record could not be serialized to UTF-8 JSON."""


class NetworkError(ShipperError):
    """Delivery failed after all retries (connect error, timeout or 5xx)."""


class ClosedError(ShipperError):
    """A record was submitted after the shipper was closed."""


class BufferOverflowError(ShipperError):
    """A record was dropped because the pending buffer is at its bound."""
