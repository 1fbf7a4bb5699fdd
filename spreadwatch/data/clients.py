"""Interfaces between the adapters, the venue APIs, and their consumers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from .models import Instrument, LocalId
from .streams import PriceStream


@dataclass(frozen=True)
class VenueEndpoint:
    """Connection details for a venue.

    Attributes:
        name: Venue identifier, also used as the ``source`` of its updates.
        rest_url: Base REST endpoint for metadata and snapshot requests.
        websocket_url: Streaming endpoint, empty for polling venues.
    """

    name: str
    rest_url: str
    websocket_url: str = ""


class VenueAdapter(Protocol):
    """Capability every venue adapter exposes, whatever its I/O model."""

    venue: str

    @property
    def connected(self) -> bool:
        """True once :meth:`connect` succeeded and until :meth:`disconnect`."""

    async def connect(self) -> None:
        """Establish connectivity; idempotent while connected."""

    async def disconnect(self) -> None:
        """Release timers, sockets, and every outstanding stream."""

    async def get_available_symbols(self) -> List[str]:
        """Return the venue-native symbols of all active instruments."""

    def get_price_stream(self, symbol: str) -> PriceStream:
        """Return a live stream of updates for one venue-native symbol."""


class PollingVenueApi(Protocol):
    """Venue-specific requests for the polling adapter.

    Both methods block and are run off the event loop by the adapter.
    """

    endpoint: VenueEndpoint

    def fetch_instruments(self) -> List[Instrument]:
        """Return the venue's instrument metadata."""

    def fetch_prices(self, local_ids: Sequence[LocalId]) -> Mapping[LocalId, float]:
        """Return one batch of prices keyed by venue-local id."""


class PushVenueApi(Protocol):
    """Venue-specific envelope handling for the push adapter."""

    endpoint: VenueEndpoint

    def fetch_instruments(self) -> List[Instrument]:
        """Return the venue's market metadata (blocking)."""

    def subscribe_message(self, local_id: LocalId) -> Dict[str, Any]:
        """Build the subscribe request for one channel."""

    def unsubscribe_message(self, local_id: LocalId) -> Optional[Dict[str, Any]]:
        """Build the unsubscribe request, or None if the venue has none."""

    def parse_message(self, message: Dict[str, Any]) -> Optional[Tuple[LocalId, float]]:
        """Extract ``(channel id, price)`` or None for non-price messages.

        Raises :class:`~spreadwatch.errors.DecodeError` for a price message
        that cannot be decoded.
        """


__all__ = ["VenueEndpoint", "VenueAdapter", "PollingVenueApi", "PushVenueApi"]
