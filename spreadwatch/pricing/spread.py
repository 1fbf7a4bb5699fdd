"""Cross-venue spread as a percentage of the lower price."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional, Sequence, Tuple

EQUAL = "equal"
SEVERITY_THRESHOLDS: Tuple[float, float] = (1.0, 2.0)


@dataclass(frozen=True)
class SpreadInfo:
    """Spread value in percent and the venue quoting the higher price."""

    value: float
    direction: str

    def severity(self, thresholds: Sequence[float] = SEVERITY_THRESHOLDS) -> str:
        return spread_severity(self.value, thresholds)

    def to_dict(self) -> dict:
        return {"value": self.value, "direction": self.direction}


def calculate_spread(
    price_a: Optional[float],
    price_b: Optional[float],
    venue_a: str = "a",
    venue_b: str = "b",
) -> Optional[SpreadInfo]:
    """Return ``|a - b| / min(a, b) * 100`` or None if a price is missing.

    >>> calculate_spread(100, 102, "reya", "vertex")
    SpreadInfo(value=2.0, direction='vertex')
    """

    if not price_a or not price_b or price_a <= 0 or price_b <= 0:
        return None
    value = abs(price_a - price_b) / min(price_a, price_b) * 100
    if price_a > price_b:
        direction = venue_a
    elif price_b > price_a:
        direction = venue_b
    else:
        direction = EQUAL
    return SpreadInfo(value=value, direction=direction)


def spread_for(prices: Mapping[str, float]) -> Optional[SpreadInfo]:
    """Spread between the highest and lowest of any number of venue prices.

    Ties at the top go to the venue listed first in ``prices``.
    """

    valid = [(venue, price) for venue, price in prices.items() if price and price > 0]
    if len(valid) < 2:
        return None
    high_venue, high = max(valid, key=lambda item: item[1])
    low_venue, low = min(valid, key=lambda item: item[1])
    if high == low:
        return SpreadInfo(value=0.0, direction=EQUAL)
    return calculate_spread(high, low, high_venue, low_venue)


def spread_severity(value: float, thresholds: Sequence[float] = SEVERITY_THRESHOLDS) -> str:
    """Presentation band for a spread value: low, medium, or high."""

    low, high = thresholds
    if value < low:
        return "low"
    if value < high:
        return "medium"
    return "high"


__all__ = [
    "SpreadInfo",
    "calculate_spread",
    "spread_for",
    "spread_severity",
    "EQUAL",
    "SEVERITY_THRESHOLDS",
]
