"""Reya market metadata and websocket price envelopes."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import requests

from spreadwatch.data.clients import VenueEndpoint
from spreadwatch.data.models import Instrument, LocalId
from spreadwatch.data.rest import RestClient, safe_float
from spreadwatch.errors import DecodeError

# Ticker -> price channel id. Reya prices are published per asset pair, and
# the 1000x-denominated markets use a different base in the channel name.
MARKET_ID_MAPPING: Dict[str, str] = {
    "ETH-rUSD": "ETHUSDMARK",
    "BTC-rUSD": "BTCUSDMARK",
    "SOL-rUSD": "SOLUSDMARK",
    "ARB-rUSD": "ARBUSDMARK",
    "OP-rUSD": "OPUSDMARK",
    "AVAX-rUSD": "AVAXUSDMARK",
    "MKR-rUSD": "MKRUSDMARK",
    "LINK-rUSD": "LINKUSDMARK",
    "AAVE-rUSD": "AAVEUSDMARK",
    "CRV-rUSD": "CRVUSDMARK",
    "UNI-rUSD": "UNIUSDMARK",
    "SUI-rUSD": "SUIUSDMARK",
    "TIA-rUSD": "TIAUSDMARK",
    "SEI-rUSD": "SEIUSDMARK",
    "ZRO-rUSD": "ZROUSDMARK",
    "XRP-rUSD": "XRPUSDMARK",
    "WIF-rUSD": "WIFUSDMARK",
    "kPEPE-rUSD": "1000PEPEUSDMARK",
    "POPCAT-rUSD": "POPCATUSDMARK",
    "DOGE-rUSD": "DOGEUSDMARK",
    "kSHIB-rUSD": "1000SHIBUSDMARK",
    "kBONK-rUSD": "1000BONKUSDMARK",
    "APT-rUSD": "APTUSDMARK",
    "BNB-rUSD": "BNBUSDMARK",
    "JTO-rUSD": "JTOUSDMARK",
}

PRICE_CHANNEL = "prices"
DEFAULT_ENDPOINT = VenueEndpoint(
    name="reya",
    rest_url="https://api.reya.xyz/api",
    websocket_url="wss://ws.reya.xyz",
)


class ReyaApi:
    """Push-venue API for Reya: market listing plus price channel envelopes."""

    def __init__(
        self,
        endpoint: Optional[VenueEndpoint] = None,
        market_ids: Optional[Mapping[str, str]] = None,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.endpoint = endpoint or DEFAULT_ENDPOINT
        self.market_ids = dict(market_ids or MARKET_ID_MAPPING)
        self.logger = logger or logging.getLogger(__name__)
        self.rest = RestClient(self.endpoint.name, self.endpoint.rest_url, session=session, logger=self.logger)

    def fetch_instruments(self) -> List[Instrument]:
        """List markets that have a known price channel."""

        payload = self.rest.get("/markets")
        markets: Sequence[Any] = payload if isinstance(payload, list) else (payload or {}).get("markets")
        if not isinstance(markets, list):
            raise DecodeError(self.endpoint.name, "market listing is not a list", payload)

        instruments: List[Instrument] = []
        for market in markets:
            if not isinstance(market, dict):
                continue
            ticker = market.get("ticker")
            channel = self.market_ids.get(ticker) if isinstance(ticker, str) else None
            if channel is None:
                continue
            active = market.get("isActive", True) is not False
            instruments.append(Instrument(local_id=channel, symbol=ticker, active=active))
        return instruments

    def subscribe_message(self, local_id: LocalId) -> Dict[str, Any]:
        return {"type": "subscribe", "channel": PRICE_CHANNEL, "id": local_id}

    def unsubscribe_message(self, local_id: LocalId) -> Optional[Dict[str, Any]]:
        return {"type": "unsubscribe", "channel": PRICE_CHANNEL, "id": local_id}

    def parse_message(self, message: Dict[str, Any]) -> Optional[Tuple[LocalId, float]]:
        """Return ``(asset pair id, price)`` for ``channel_data`` price messages.

        The pool price is preferred; the spot price is used when a message
        carries no pool price.
        """

        if message.get("type") != "channel_data":
            return None
        channel = message.get("channel")
        if channel is not None and PRICE_CHANNEL not in str(channel):
            return None
        contents = message.get("contents")
        if not isinstance(contents, dict) or "assetPairId" not in contents:
            return None

        asset_pair_id = str(contents["assetPairId"])
        price = safe_float(contents.get("poolPrice"))
        if price is None:
            price = safe_float(contents.get("spotPrice"))
        if price is None or price <= 0:
            raise DecodeError(self.endpoint.name, f"no usable price for {asset_pair_id}", contents)
        return asset_pair_id, price


__all__ = ["ReyaApi", "MARKET_ID_MAPPING", "DEFAULT_ENDPOINT"]
