"""Hyperliquid perp universe and mark prices from the ``/info`` endpoint."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

import requests

from spreadwatch.data.clients import VenueEndpoint
from spreadwatch.data.models import Instrument, LocalId
from spreadwatch.data.rest import RestClient, safe_float
from spreadwatch.errors import DecodeError

DEFAULT_ENDPOINT = VenueEndpoint(name="hyperliquid", rest_url="https://api.hyperliquid.xyz/info")


class HyperliquidApi:
    """Polling-venue API for Hyperliquid.

    Hyperliquid identifies assets by their position in the perp universe, and
    ``metaAndAssetCtxs`` returns asset contexts in that same order. Prices are
    therefore keyed by universe index and resolved to names by the adapter's
    cached metadata.
    """

    def __init__(
        self,
        endpoint: Optional[VenueEndpoint] = None,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.endpoint = endpoint or DEFAULT_ENDPOINT
        self.logger = logger or logging.getLogger(__name__)
        self.rest = RestClient(self.endpoint.name, self.endpoint.rest_url, session=session, logger=self.logger)

    def fetch_instruments(self) -> List[Instrument]:
        payload = self.rest.post(json={"type": "meta"})
        return self._universe(payload)

    def fetch_prices(self, local_ids: Sequence[LocalId]) -> Mapping[LocalId, float]:
        """Return the mark price of every asset in the snapshot.

        The whole universe comes back in one response; the adapter filters it
        down to the active symbols.
        """

        payload = self.rest.post(json={"type": "metaAndAssetCtxs"})
        if not isinstance(payload, list) or len(payload) != 2:
            raise DecodeError(self.endpoint.name, "expected [meta, assetCtxs]", payload)
        _, contexts = payload
        if not isinstance(contexts, list):
            raise DecodeError(self.endpoint.name, "assetCtxs is not a list", contexts)

        prices: Dict[LocalId, float] = {}
        for index, context in enumerate(contexts):
            if not isinstance(context, dict):
                continue
            price = safe_float(context.get("markPx"))
            if price is not None:
                prices[index] = price
        return prices

    def _universe(self, payload: Any) -> List[Instrument]:
        universe = payload.get("universe") if isinstance(payload, dict) else None
        if not isinstance(universe, list):
            raise DecodeError(self.endpoint.name, "meta response has no universe", payload)
        instruments: List[Instrument] = []
        for index, asset in enumerate(universe):
            if not isinstance(asset, dict) or not asset.get("name"):
                continue
            instruments.append(
                Instrument(local_id=index, symbol=str(asset["name"]), active=not asset.get("isDelisted", False))
            )
        return instruments


__all__ = ["HyperliquidApi", "DEFAULT_ENDPOINT"]
