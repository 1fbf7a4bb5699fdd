"""Consumer-side store folding merged venue updates into spreads and history.

For every tracked canonical symbol the store keeps the last update per venue,
the spread across venues, and a FIFO history capped at ``history_limit``
points. Each entry moves through ``NO_DATA -> PARTIAL_DATA -> FULL_DATA`` as
venues report; the spread exists only in ``FULL_DATA``.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Deque, Dict, Iterable, List, Mapping, Optional, Sequence

from spreadwatch.data.models import PriceUpdate

from .spread import SpreadInfo, spread_for

DEFAULT_HISTORY_LIMIT = 100


class EntryState(str, Enum):
    NO_DATA = "no_data"
    PARTIAL_DATA = "partial_data"
    FULL_DATA = "full_data"


@dataclass(frozen=True)
class HistoryPoint:
    """Per-venue prices and spread right after one accepted update."""

    timestamp: int
    prices: Mapping[str, float]
    spread: Optional[SpreadInfo]


@dataclass
class AggregateEntry:
    """Aggregated view of one canonical symbol across venues."""

    symbol: str
    latest: Dict[str, PriceUpdate] = field(default_factory=dict)
    spread: Optional[SpreadInfo] = None
    history: Deque[HistoryPoint] = field(default_factory=deque)

    @property
    def state(self) -> EntryState:
        if not self.latest:
            return EntryState.NO_DATA
        if len(self.latest) == 1:
            return EntryState.PARTIAL_DATA
        return EntryState.FULL_DATA

    def prices(self) -> Dict[str, float]:
        return {venue: update.price for venue, update in self.latest.items()}

    def copy(self) -> "AggregateEntry":
        return AggregateEntry(
            symbol=self.symbol,
            latest=dict(self.latest),
            spread=self.spread,
            history=deque(self.history, maxlen=self.history.maxlen),
        )


class AggregateStore:
    """Tracks selected symbols and folds price updates into entries.

    Updates for symbols that are not tracked are dropped, as are updates from
    venues outside ``venues`` when that list is given. Un-tracking a symbol
    keeps its history; tracking it again starts from fresh prices, so no
    spread shows until the venues report again. History is only cleared by
    :meth:`clear_history`.

    All mutation goes through one lock, so updates arriving from several
    threads are applied one at a time.
    """

    def __init__(
        self,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        venues: Optional[Sequence[str]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if history_limit < 1:
            raise ValueError(f"history_limit must be positive, got {history_limit}")
        self.history_limit = history_limit
        self.venues = list(venues) if venues is not None else None
        self.logger = logger or logging.getLogger(__name__)

        self.available_symbols: List[str] = []
        self.loading = False
        self.error: Optional[str] = None
        self._entries: Dict[str, AggregateEntry] = {}
        self._selected: List[str] = []
        self._lock = threading.RLock()

    @property
    def selected_symbols(self) -> List[str]:
        with self._lock:
            return list(self._selected)

    def add_symbol(self, symbol: str) -> None:
        with self._lock:
            if symbol in self._selected:
                return
            self._selected.append(symbol)
            entry = self._entries.get(symbol)
            if entry is None:
                self._entries[symbol] = AggregateEntry(symbol, history=deque(maxlen=self.history_limit))
                return
            entry.latest.clear()
            entry.spread = None

    def remove_symbol(self, symbol: str) -> None:
        with self._lock:
            if symbol in self._selected:
                self._selected.remove(symbol)

    def update_price(self, update: PriceUpdate) -> bool:
        """Apply one update; return False when it was dropped."""

        with self._lock:
            if update.symbol not in self._selected:
                return False
            if self.venues is not None and update.source not in self.venues:
                return False

            entry = self._entries[update.symbol]
            entry.latest[update.source] = update
            entry.spread = spread_for(self._ordered_prices(entry))
            entry.history.append(HistoryPoint(update.timestamp, entry.prices(), entry.spread))
            return True

    def clear_history(self, symbol: Optional[str] = None) -> None:
        """Drop history for one symbol, or for all symbols when None."""

        with self._lock:
            targets = [symbol] if symbol is not None else list(self._entries)
            for target in targets:
                entry = self._entries.get(target)
                if entry is not None:
                    entry.history.clear()

    def get_entry(self, symbol: str) -> Optional[AggregateEntry]:
        with self._lock:
            entry = self._entries.get(symbol)
            return entry.copy() if entry is not None else None

    def get_filtered_prices(self) -> Dict[str, AggregateEntry]:
        """Snapshot of the entries of tracked symbols, in selection order."""

        with self._lock:
            return {symbol: self._entries[symbol].copy() for symbol in self._selected}

    def set_available_symbols(self, symbols: Iterable[str]) -> None:
        with self._lock:
            self.available_symbols = list(symbols)

    def load_symbols(self, fetch: Callable[[], Iterable[str]]) -> bool:
        """Populate ``available_symbols`` from ``fetch``, recording failures.

        On failure the previous list is kept and ``error`` holds the message.
        """

        with self._lock:
            self.loading = True
            self.error = None
        try:
            symbols = list(fetch())
        except Exception as exc:
            self.logger.warning("Failed to fetch symbols: %s", exc, extra={"event": "symbols_fetch_failed"})
            with self._lock:
                self.error = str(exc) or "Failed to fetch symbols"
                self.loading = False
            return False
        with self._lock:
            self.available_symbols = symbols
            self.loading = False
        return True

    def _ordered_prices(self, entry: AggregateEntry) -> Dict[str, float]:
        prices = entry.prices()
        if self.venues is None:
            return prices
        return {venue: prices[venue] for venue in self.venues if venue in prices}


__all__ = [
    "AggregateStore",
    "AggregateEntry",
    "HistoryPoint",
    "EntryState",
    "DEFAULT_HISTORY_LIMIT",
]
