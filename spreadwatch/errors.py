"""Exception types shared by the adapters, reconciler, and server."""

from __future__ import annotations

from typing import Optional


class SpreadwatchError(Exception):
    """Base class for all errors raised by spreadwatch."""


class VenueConnectionError(SpreadwatchError, ConnectionError):
    """A venue could not be reached or did not confirm the connection in time."""

    def __init__(self, venue: str, message: str) -> None:
        super().__init__(f"{venue}: {message}")
        self.venue = venue


class DecodeError(SpreadwatchError, ValueError):
    """A venue payload did not have the expected shape."""

    def __init__(self, venue: str, message: str, payload: Optional[object] = None) -> None:
        super().__init__(f"{venue}: {message}")
        self.venue = venue
        self.payload = payload


class ConfigurationError(SpreadwatchError):
    """Invalid configuration, including ambiguous symbol normalization."""


class SubscriptionError(SpreadwatchError, LookupError):
    """A price stream was requested for a symbol the venue does not list."""

    def __init__(self, venue: str, symbol: str, reason: str = "unknown symbol") -> None:
        super().__init__(f"{venue}: {reason}: {symbol}")
        self.venue = venue
        self.symbol = symbol


__all__ = [
    "SpreadwatchError",
    "VenueConnectionError",
    "DecodeError",
    "ConfigurationError",
    "SubscriptionError",
]
