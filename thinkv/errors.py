"""
Error taxonomy shared by the telemetry client, the store adapter and the
reconciler. Routes translate these into HTTP responses.
"""


class ThinkVError(Exception):
    """Base class for all ThinkV errors."""


class AuthorizationError(ThinkVError):
    """Bad or missing API key. Blocking; never retried."""


class ChannelNotFoundError(ThinkVError):
    """The channel is unknown to one of the two systems."""

    def __init__(self, channel_id: str, message: str = None):
        self.channel_id = channel_id
        super().__init__(
            message
            or f"Channel '{channel_id}' not found. It may not be synchronized yet; refresh in a moment."
        )


class TransientError(ThinkVError):
    """Network failure or timeout. Callers degrade to cached data."""


class StoreWriteError(ThinkVError):
    """A write to the persisted store failed."""


class TelemetryRequestError(ThinkVError):
    """The telemetry API rejected a request for a reason other than auth or not-found."""

    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"Telemetry API error ({status_code}): {detail}")


class InvalidPayloadError(ThinkVError):
    """A device write carried no usable field values."""
