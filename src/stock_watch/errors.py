from __future__ import annotations


class MonitorError(Exception):
    """Base class for failures surfaced by the monitoring engine."""

    kind = "error"

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class NetworkError(MonitorError):
    """Timeout, connectivity loss or another transport failure."""

    kind = "network_error"


class AntiBotBlocked(MonitorError):
    """The storefront answered with a challenge/deny page instead of the listing."""

    kind = "anti_bot"


class ParseError(MonitorError):
    """Fetched content could not be decoded or yielded no usable product info."""

    kind = "parse_error"


class InvalidConfiguration(MonitorError):
    """Operator-supplied input (URL, interval, retries) is malformed."""

    kind = "invalid_configuration"


class StoreBusy(MonitorError):
    """Another process holds the data directory lock."""

    kind = "store_busy"
