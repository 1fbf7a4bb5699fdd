"""Merge per-venue price streams into one canonical stream per symbol."""

from __future__ import annotations

import logging
from functools import partial
from typing import AsyncIterator, Dict, Iterable, List, Mapping, Optional, Set

from spreadwatch.errors import SubscriptionError
from spreadwatch.pricing.symbols import SymbolTable

from .clients import VenueAdapter
from .models import PriceUpdate
from .streams import PriceStream

MERGED_SOURCE = "merged"


class MergeSession:
    """The merged subscriptions of one consumer, closed together.

    Each call to :meth:`merge` subscribes to the symbol on every venue that
    lists it and forwards venue updates, rewritten to the canonical symbol,
    synchronously and in arrival order. A venue without an adapter, or one
    that refuses the subscription, contributes nothing. Iterating the session
    yields the updates of every symbol added with :meth:`subscribe_all`.
    """

    def __init__(self, merger: "StreamMerger", buffer: int = 1000) -> None:
        self._merger = merger
        self._buffer = buffer
        self._sources: Dict[int, List[PriceStream]] = {}
        self._merged: List[PriceStream] = []
        self._output = PriceStream("*", MERGED_SOURCE, maxsize=buffer)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def symbols(self) -> List[str]:
        return [stream.symbol for stream in self._merged]

    def merge(self, canonical: str) -> PriceStream:
        """Return a stream of every venue's updates for one canonical symbol."""

        if self._closed:
            raise SubscriptionError(MERGED_SOURCE, canonical, "session closed")
        table = self._merger.table
        if canonical not in table:
            raise SubscriptionError(MERGED_SOURCE, canonical)

        merged = PriceStream(canonical, MERGED_SOURCE, on_close=self._release, maxsize=self._buffer)
        sources: List[PriceStream] = []
        for venue, native in table.venues_for(canonical).items():
            adapter = self._merger.adapters.get(venue)
            if adapter is None:
                continue
            try:
                source = adapter.get_price_stream(native)
            except SubscriptionError as exc:
                self._merger.logger.warning(
                    "Skipping %s for %s: %s", venue, canonical, exc,
                    extra={"event": "merge_partial", "venue": venue, "symbol": canonical},
                )
                continue
            source.listen(partial(self._forward, merged, venue))
            sources.append(source)

        if not sources:
            self._merger.logger.warning(
                "No venue is streaming %s", canonical,
                extra={"event": "merge_empty", "symbol": canonical},
            )
        self._sources[id(merged)] = sources
        self._merged.append(merged)
        return merged

    def subscribe_all(self, symbols: Optional[Iterable[str]] = None) -> None:
        """Merge ``symbols`` (default: the whole table) into the session output."""

        for canonical in symbols if symbols is not None else self._merger.table.symbols:
            if canonical not in self._merger.table:
                continue
            self.merge(canonical).listen(self._output.emit)

    def close(self) -> None:
        """Unsubscribe every per-venue stream opened by this session."""

        if self._closed:
            return
        self._closed = True
        for merged in list(self._merged):
            merged.close()
        self._output.close()
        self._merger._discard(self)

    def _forward(self, merged: PriceStream, venue: str, update: PriceUpdate) -> None:
        merged.emit(update.with_symbol(merged.symbol, venue))

    def _release(self, merged: PriceStream) -> None:
        for source in self._sources.pop(id(merged), []):
            source.close()
        if merged in self._merged:
            self._merged.remove(merged)

    def __aiter__(self) -> AsyncIterator[PriceUpdate]:
        return self._output.__aiter__()


class StreamMerger:
    """Hands out merge sessions over a fixed set of adapters and symbols."""

    def __init__(
        self,
        adapters: Mapping[str, VenueAdapter],
        table: SymbolTable,
        stream_buffer: int = 1000,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.adapters = dict(adapters)
        self.table = table
        self.stream_buffer = stream_buffer
        self.logger = logger or logging.getLogger(__name__)
        self._sessions: Set[MergeSession] = set()

    @property
    def symbols(self) -> List[str]:
        return self.table.symbols

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def open_session(self) -> MergeSession:
        session = MergeSession(self, buffer=self.stream_buffer)
        self._sessions.add(session)
        return session

    def close_all(self) -> None:
        for session in list(self._sessions):
            session.close()

    def _discard(self, session: MergeSession) -> None:
        self._sessions.discard(session)


__all__ = ["StreamMerger", "MergeSession", "MERGED_SOURCE"]
