"""HTTP and websocket surface republishing merged venue prices."""

from .app import FeedState, create_api_app

__all__ = ["FeedState", "create_api_app"]
