"""Consumer-side access to a running feed server."""

from .feed import PriceFeedClient, StoreFeed, fetch_symbols

__all__ = ["PriceFeedClient", "StoreFeed", "fetch_symbols"]
