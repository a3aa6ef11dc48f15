"""Digitransit-specific exception definitions."""

from __future__ import annotations


class ConfigError(Exception):
    """Raised when required configuration (the subscription key) is missing."""


class NotFoundError(Exception):
    """Raised when the geocoder returns no candidate for an address."""


class UpstreamError(Exception):
    """Non-success response (or transport failure) from the geocoder or the routing API."""

    def __init__(self, service: str, status_code: int | None, body: str = ""):
        self.service = service
        self.status_code = status_code
        self.body = body
        if status_code is None:
            message = f"{service} request failed: {body}"
        else:
            message = f"{service} {status_code}: {body}"
        super().__init__(message)


class MalformedResponseError(Exception):
    """Successful upstream response whose shape breaks a required invariant."""


__all__ = [
    "ConfigError",
    "NotFoundError",
    "UpstreamError",
    "MalformedResponseError",
]
