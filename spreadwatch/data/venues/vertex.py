"""Vertex product listing and batched perp mark prices over REST."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import requests

from spreadwatch.data.clients import VenueEndpoint
from spreadwatch.data.models import Instrument, LocalId
from spreadwatch.data.rest import RestClient, safe_float
from spreadwatch.errors import DecodeError

X18 = 10**18
DEFAULT_INDEXER_URL = "https://archive.prod.vertexprotocol.com/v1"
DEFAULT_ENDPOINT = VenueEndpoint(name="vertex", rest_url="https://gateway.prod.vertexprotocol.com/v1")


class VertexApi:
    """Polling-venue API for Vertex perpetuals.

    Symbols come from the gateway's ``/symbols`` listing; prices come from the
    indexer's ``perp_prices`` query, keyed by product id with 18-decimal fixed
    point mark prices.
    """

    def __init__(
        self,
        endpoint: Optional[VenueEndpoint] = None,
        indexer_url: str = DEFAULT_INDEXER_URL,
        perp_suffix: str = "-PERP",
        session: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.endpoint = endpoint or DEFAULT_ENDPOINT
        self.perp_suffix = perp_suffix
        self.logger = logger or logging.getLogger(__name__)
        self.gateway = RestClient(self.endpoint.name, self.endpoint.rest_url, session=session, logger=self.logger)
        self.indexer = RestClient(
            self.endpoint.name,
            indexer_url or self.endpoint.rest_url,
            session=self.gateway.session,
            logger=self.logger,
        )

    def fetch_instruments(self) -> List[Instrument]:
        """Return the perp products listed by the gateway."""

        payload = self.gateway.get("/symbols")
        instruments: List[Instrument] = []
        for row in self._symbol_rows(payload):
            product_id = row.get("product_id")
            symbol = row.get("symbol")
            if not isinstance(symbol, str) or product_id is None:
                continue
            if not symbol.endswith(self.perp_suffix):
                continue
            try:
                instruments.append(Instrument(local_id=int(product_id), symbol=symbol))
            except (TypeError, ValueError):
                self.logger.warning("Skipping Vertex symbol %s with product id %r", symbol, product_id)
        return instruments

    def fetch_prices(self, local_ids: Sequence[LocalId]) -> Mapping[LocalId, float]:
        """Return mark prices for the requested product ids."""

        payload = self.indexer.post(json={"perp_prices": {"product_ids": [int(pid) for pid in local_ids]}})
        rows = payload.get("prices", payload) if isinstance(payload, dict) else None
        if not isinstance(rows, dict):
            raise DecodeError(self.endpoint.name, "perp_prices response is not an object", payload)

        prices: Dict[LocalId, float] = {}
        for key, info in rows.items():
            if not isinstance(info, dict):
                continue
            price = self._mark_price(info)
            if price is None:
                continue
            try:
                prices[int(info.get("product_id", key))] = price
            except (TypeError, ValueError) as exc:
                raise DecodeError(self.endpoint.name, f"bad product id {key!r}", info) from exc
        return prices

    def _mark_price(self, info: Dict[str, Any]) -> Optional[float]:
        raw = info.get("mark_price_x18")
        if raw is not None:
            try:
                return int(raw) / X18
            except (TypeError, ValueError):
                return None
        return safe_float(info.get("markPrice") or info.get("mark_price"))

    def _symbol_rows(self, payload: Any) -> Iterable[Dict[str, Any]]:
        if isinstance(payload, dict):
            payload = payload.get("symbols", payload)
            if isinstance(payload, dict):
                payload = list(payload.values())
        if not isinstance(payload, list):
            raise DecodeError(self.endpoint.name, "symbol listing is not a list", payload)
        return [row for row in payload if isinstance(row, dict)]


__all__ = ["VertexApi", "DEFAULT_INDEXER_URL", "DEFAULT_ENDPOINT"]
