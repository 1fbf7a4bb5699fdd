"""Data access layer for venue integrations and price ingestion."""

from .clients import PollingVenueApi, PushVenueApi, VenueAdapter, VenueEndpoint
from .models import Instrument, PriceUpdate
from .polling import PollingAdapter
from .streams import PriceStream
from .websocket import PushAdapter

__all__ = [
    "VenueEndpoint",
    "VenueAdapter",
    "PollingVenueApi",
    "PushVenueApi",
    "Instrument",
    "PriceUpdate",
    "PriceStream",
    "PollingAdapter",
    "PushAdapter",
]
