"""Canonical records produced by venue adapters."""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from typing import Any, Dict, Union

LocalId = Union[str, int]


def now_ms() -> int:
    """Wall-clock time in milliseconds."""

    return int(time.time() * 1000)


@dataclass(frozen=True)
class PriceUpdate:
    """One observed price for a symbol on a venue.

    ``timestamp`` is the moment the adapter observed the value, not the time
    reported by the venue, since venues disagree on clock formats.
    """

    symbol: str
    price: float
    timestamp: int
    source: str

    def with_symbol(self, symbol: str, source: str | None = None) -> "PriceUpdate":
        """Return a copy tagged with another symbol (and optionally venue)."""

        return replace(self, symbol=symbol, source=source or self.source)

    def to_dict(self) -> Dict[str, Any]:
        """Return the wire shape ``{symbol, price, timestamp, source}``."""

        return {
            "symbol": self.symbol,
            "price": self.price,
            "timestamp": self.timestamp,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "PriceUpdate":
        return cls(
            symbol=str(payload["symbol"]),
            price=float(payload["price"]),
            timestamp=int(payload["timestamp"]),
            source=str(payload["source"]),
        )


@dataclass(frozen=True)
class Instrument:
    """A tradable instrument as listed by a venue.

    Attributes:
        local_id: Identifier the venue uses on the wire (market id, product id,
            or universe index).
        symbol: Venue-native symbol, e.g. ``ETH-PERP``.
        active: False for delisted or otherwise untradable instruments.
    """

    local_id: LocalId
    symbol: str
    active: bool = True


__all__ = ["PriceUpdate", "Instrument", "LocalId", "now_ms"]
