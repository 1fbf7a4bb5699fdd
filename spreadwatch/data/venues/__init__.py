"""Venue-specific request and payload handling."""

from .hyperliquid import HyperliquidApi
from .reya import MARKET_ID_MAPPING, ReyaApi
from .vertex import VertexApi

__all__ = [
    "HyperliquidApi",
    "ReyaApi",
    "VertexApi",
    "MARKET_ID_MAPPING",
]
