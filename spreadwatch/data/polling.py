"""Polling adapter: turns a REST snapshot endpoint into live price streams."""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Callable, Dict, List, Mapping, Optional, Set

from spreadwatch.errors import DecodeError, SubscriptionError

from .clients import PollingVenueApi
from .models import Instrument, LocalId, PriceUpdate, now_ms
from .streams import PriceStream

MetricsCallback = Callable[[str, Dict[str, float]], None]


class PollingAdapter:
    """Fixed-interval batch poller that fans prices out to per-symbol streams.

    On every tick, when at least one symbol is subscribed, a single batch
    request covering all active symbols is issued. Ticks never overlap: the
    next one is scheduled only after the current fetch returns, and ticks
    missed while a slow fetch was in flight are skipped rather than queued.
    A failing tick is logged and skipped without stopping the poller.
    """

    def __init__(
        self,
        api: PollingVenueApi,
        poll_interval: float = 0.5,
        metrics_callback: Optional[MetricsCallback] = None,
        logger: Optional[logging.Logger] = None,
        stream_buffer: int = 1000,
    ) -> None:
        self.api = api
        self.venue = api.endpoint.name
        self.poll_interval = poll_interval
        self.metrics_callback = metrics_callback
        self.logger = logger or logging.getLogger(__name__)
        self.stream_buffer = stream_buffer

        self.ticks = 0
        self.skipped_ticks = 0
        self._instruments: Dict[LocalId, Instrument] = {}
        self._ids_by_symbol: Dict[str, LocalId] = {}
        self._streams: Dict[str, List[PriceStream]] = {}
        self._poll_task: Optional[asyncio.Task] = None
        self._initialized = False

    @property
    def connected(self) -> bool:
        return self._initialized and self._poll_task is not None and not self._poll_task.done()

    @property
    def active_symbols(self) -> Set[str]:
        return set(self._streams)

    async def connect(self) -> None:
        """Warm the instrument cache once and start the poll task."""

        if not self._initialized:
            await self._refresh_instruments()
            self._initialized = True
            self.logger.info(
                "%s polling adapter initialized", self.venue,
                extra={"event": "adapter_connected", "venue": self.venue, "instruments": len(self._instruments)},
            )
        self._start_polling()

    async def disconnect(self) -> None:
        """Stop polling and close every outstanding stream."""

        task, self._poll_task = self._poll_task, None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        streams = [stream for group in self._streams.values() for stream in group]
        self._streams.clear()
        for stream in streams:
            stream.close()

        self._instruments.clear()
        self._ids_by_symbol.clear()
        if self._initialized:
            self.logger.info(
                "%s polling adapter disconnected", self.venue,
                extra={"event": "adapter_disconnected", "venue": self.venue},
            )
        self._initialized = False

    async def get_available_symbols(self) -> List[str]:
        """Return symbols of active instruments, fetching metadata if needed."""

        if not self._instruments:
            await self._refresh_instruments()
        return [instrument.symbol for instrument in self._instruments.values() if instrument.active]

    def get_price_stream(self, symbol: str) -> PriceStream:
        """Subscribe to a symbol; it joins the batch from the next tick on."""

        if not self._initialized:
            raise SubscriptionError(self.venue, symbol, "adapter not connected")
        local_id = self._ids_by_symbol.get(symbol)
        if local_id is None or not self._instruments[local_id].active:
            raise SubscriptionError(self.venue, symbol)

        stream = PriceStream(
            symbol, self.venue, on_close=self._release, dedupe=True, maxsize=self.stream_buffer
        )
        if symbol not in self._streams:
            self.logger.info(
                "Polling %s on %s", symbol, self.venue,
                extra={"event": "subscription", "venue": self.venue, "symbol": symbol},
            )
        self._streams.setdefault(symbol, []).append(stream)
        self._start_polling()
        return stream

    # --- Polling ----------------------------------------------------------
    def _start_polling(self) -> None:
        if self._poll_task is not None and not self._poll_task.done():
            return
        self._poll_task = asyncio.create_task(self._poll_loop(), name=f"{self.venue}-poll")

    async def _poll_loop(self) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + self.poll_interval
        while True:
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
            await self._tick()

            next_tick += self.poll_interval
            now = loop.time()
            if next_tick <= now:
                missed = int((now - next_tick) // self.poll_interval) + 1
                next_tick += missed * self.poll_interval
                self.skipped_ticks += missed
                self._emit_metrics("poll_ticks_skipped", {"skipped": float(missed)})

    async def _tick(self) -> None:
        if not self._streams:
            return
        local_ids = [self._ids_by_symbol[symbol] for symbol in self._streams if symbol in self._ids_by_symbol]
        if not local_ids:
            return

        self.ticks += 1
        try:
            prices = await asyncio.to_thread(self.api.fetch_prices, local_ids)
            updates = await self._decode(prices)
        except Exception as exc:
            self.logger.warning(
                "Poll tick failed for %s: %s", self.venue, exc,
                extra={"event": "poll_tick_failed", "venue": self.venue},
            )
            self._emit_metrics("poll_tick_failed", {"symbols": float(len(local_ids))})
            return

        self._fan_out(updates)
        self._emit_metrics("poll_tick", {"symbols": float(len(local_ids)), "updates": float(len(updates))})

    async def _decode(self, prices: Mapping[LocalId, float]) -> List[PriceUpdate]:
        if any(local_id not in self._instruments for local_id in prices):
            await self._refresh_instruments()

        timestamp = now_ms()
        updates: List[PriceUpdate] = []
        for local_id, price in prices.items():
            instrument = self._instruments.get(local_id)
            if instrument is None:
                error = DecodeError(self.venue, f"unresolvable instrument id {local_id!r}")
                self.logger.warning(str(error), extra={"event": "decode_error", "venue": self.venue})
                continue
            if instrument.symbol not in self._streams:
                continue
            if price is None or not math.isfinite(price) or price <= 0:
                self.logger.warning(
                    "Dropping invalid %s price for %s: %r", self.venue, instrument.symbol, price,
                    extra={"event": "decode_error", "venue": self.venue, "symbol": instrument.symbol},
                )
                continue
            updates.append(PriceUpdate(instrument.symbol, float(price), timestamp, self.venue))
        return updates

    def _fan_out(self, updates: List[PriceUpdate]) -> None:
        for update in updates:
            for stream in list(self._streams.get(update.symbol, ())):
                try:
                    stream.emit(update)
                except Exception:
                    self.logger.exception(
                        "Listener failed for %s on %s", update.symbol, self.venue,
                        extra={"event": "listener_error", "venue": self.venue, "symbol": update.symbol},
                    )

    def _release(self, stream: PriceStream) -> None:
        group = self._streams.get(stream.symbol)
        if not group:
            return
        if stream in group:
            group.remove(stream)
        if not group:
            del self._streams[stream.symbol]
            self.logger.info(
                "Stopped polling %s on %s", stream.symbol, self.venue,
                extra={"event": "unsubscription", "venue": self.venue, "symbol": stream.symbol},
            )

    async def _refresh_instruments(self) -> None:
        instruments = await asyncio.to_thread(self.api.fetch_instruments)
        self._instruments = {instrument.local_id: instrument for instrument in instruments}
        self._ids_by_symbol = {instrument.symbol: instrument.local_id for instrument in instruments}
        self.logger.debug("Loaded %d %s instruments", len(instruments), self.venue)

    def _emit_metrics(self, name: str, values: Dict[str, float]) -> None:
        if not self.metrics_callback:
            return
        try:
            self.metrics_callback(f"{self.venue}_{name}", values)
        except Exception as exc:  # pragma: no cover - external callback safety
            self.logger.debug("Metric callback failed for %s: %s", name, exc)


__all__ = ["PollingAdapter", "MetricsCallback"]
