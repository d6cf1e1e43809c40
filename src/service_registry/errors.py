"""
Exception types raised by the service registry.

Every error derives from `RegistryError` so that callers can catch the whole
family at once. Transient store failures (`StoreUnavailableError`) are
absorbed by the retry policy and only surface once the attempt budget is
exhausted; deserialization failures (`MalformedRecordError`) are never retried.
"""
from __future__ import annotations


class RegistryError(Exception):
    """Base class for all registry errors."""


class ServiceNotFoundError(RegistryError, LookupError):
    """No live records (or no options) exist for the requested service name."""

    def __init__(self, name: str, what: str = "service") -> None:
        super().__init__(f"{what} not found: {name}")
        self.name = name


class StoreUnavailableError(RegistryError):
    """The backing store could not be reached or answered with an error."""


class MalformedRecordError(RegistryError, ValueError):
    """A stored value could not be deserialized into a service record."""

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"malformed value at {key}: {reason}")
        self.key = key


class WatchStoppedError(RegistryError):
    """The change watcher exhausted its reconnect budget and stopped."""


__all__ = [
    "RegistryError",
    "ServiceNotFoundError",
    "StoreUnavailableError",
    "MalformedRecordError",
    "WatchStoppedError",
]
