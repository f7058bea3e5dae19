class CountdownError(Exception):
    """Base class for every error raised by the notification subsystem."""


class StorageError(CountdownError):
    """The subscription or broadcast store could not be read or written."""


class ConfigError(CountdownError):
    """A required credential or setting is missing or inconsistent."""


class TransportGone(CountdownError):
    """The push service reported the endpoint as permanently invalid (404/410)."""

    def __init__(self, endpoint: str, status_code: int):
        super().__init__(f"endpoint gone ({status_code})")
        self.endpoint = endpoint
        self.status_code = status_code


class TransportTransient(CountdownError):
    """Delivery failed for any reason other than an invalid endpoint."""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class TimeSyncError(CountdownError):
    """The trusted time source could not be reached or returned garbage."""
