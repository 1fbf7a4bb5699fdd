"""Live price sequences handed out by adapters and the stream merger."""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Callable, Optional

from .models import PriceUpdate

PriceListener = Callable[[PriceUpdate], None]

_CLOSED = object()


class PriceStream:
    """A live, closable sequence of :class:`PriceUpdate` for one symbol.

    A stream is consumed either with ``async for`` or by attaching a
    synchronous listener via :meth:`listen`, which is how the merger forwards
    updates without an extra task. Closing the stream stops delivery
    immediately and notifies the owner so it can release the venue-side
    subscription. When ``dedupe`` is set, an update carrying the same price as
    the previously delivered one is dropped.

    The buffer is bounded; when a slow consumer lets it fill up the oldest
    update is discarded, keeping the most recent values.
    """

    def __init__(
        self,
        symbol: str,
        source: str,
        on_close: Optional[Callable[["PriceStream"], None]] = None,
        dedupe: bool = False,
        maxsize: int = 1000,
    ) -> None:
        self.symbol = symbol
        self.source = source
        self.dedupe = dedupe
        self.dropped = 0
        self._on_close = on_close
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._listener: Optional[PriceListener] = None
        self._last_price: Optional[float] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, update: PriceUpdate) -> bool:
        """Deliver an update; return False when it was suppressed."""

        if self._closed:
            return False
        if self.dedupe and self._last_price is not None and update.price == self._last_price:
            return False
        self._last_price = update.price
        if self._listener is not None:
            self._listener(update)
        else:
            self._enqueue(update)
        return True

    def listen(self, listener: PriceListener) -> None:
        """Switch to push delivery, flushing anything already buffered."""

        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is not _CLOSED:
                listener(item)
        self._listener = listener

    def close(self) -> None:
        """Stop delivery and release the subscription. Safe to call twice."""

        if self._closed:
            return
        self._closed = True
        self._listener = None
        self._enqueue(_CLOSED)
        if self._on_close is not None:
            on_close, self._on_close = self._on_close, None
            on_close(self)

    def _enqueue(self, item: object) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(item)

    def __aiter__(self) -> AsyncIterator[PriceUpdate]:
        return self

    async def __anext__(self) -> PriceUpdate:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"PriceStream({self.source}:{self.symbol}, {state})"


__all__ = ["PriceStream", "PriceListener"]
