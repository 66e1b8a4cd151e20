from __future__ import annotations


class AltSourceError(Exception):
    """Base class for errors raised by altsource-browse."""


class SourceError(AltSourceError):
    def __init__(self, message: str, *, endpoint: str | None = None) -> None:
        super().__init__(message)
        self.endpoint = endpoint

    def __str__(self) -> str:
        message = super().__str__()
        if self.endpoint is None:
            return message
        return f"{self.endpoint}: {message}"


class FetchError(SourceError):
    """The manifest could not be retrieved (transport, timeout or HTTP status)."""


class DecodeError(SourceError):
    """The retrieved bytes are not a valid source manifest."""


class ConfigError(AltSourceError):
    pass
