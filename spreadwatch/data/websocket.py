"""Push adapter: a persistent websocket feed exposed as per-symbol streams."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

import websockets
import websockets.exceptions

from spreadwatch.errors import SubscriptionError, VenueConnectionError
from spreadwatch.infra.backoff import Backoff, BackoffConfig

from .clients import PushVenueApi
from .models import Instrument, LocalId, PriceUpdate, now_ms
from .polling import MetricsCallback
from .streams import PriceStream

Connector = Callable[[str], Awaitable[Any]]


def default_connector(url: str) -> Awaitable[Any]:
    """Open a websocket with keepalive pings."""

    return websockets.connect(url, ping_interval=20, ping_timeout=20)


class PushAdapter:
    """Websocket client that routes venue price messages to subscribed streams.

    :meth:`connect` returns only once the handshake completed, or raises
    :class:`VenueConnectionError` after ``connect_timeout`` seconds. Every time
    the socket opens, including after a mid-session drop, all channels in the
    active set are subscribed again. Messages for channels nobody subscribed
    to are dropped, and a malformed message is logged and skipped.
    """

    def __init__(
        self,
        api: PushVenueApi,
        connect_timeout: float = 10.0,
        backoff: Optional[BackoffConfig] = None,
        reconnect: bool = True,
        connector: Optional[Connector] = None,
        metrics_callback: Optional[MetricsCallback] = None,
        logger: Optional[logging.Logger] = None,
        stream_buffer: int = 1000,
    ) -> None:
        self.api = api
        self.venue = api.endpoint.name
        self.connect_timeout = connect_timeout
        self.backoff = backoff or BackoffConfig()
        self.reconnect = reconnect
        self.metrics_callback = metrics_callback
        self.logger = logger or logging.getLogger(__name__)
        self.stream_buffer = stream_buffer
        self._connector = connector or default_connector

        self._ws: Any = None
        self._reader_task: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()
        self._instruments: Dict[LocalId, Instrument] = {}
        self._ids_by_symbol: Dict[str, LocalId] = {}
        self._streams: Dict[LocalId, List[PriceStream]] = {}
        self._connect_lock = asyncio.Lock()
        self._started = False
        self._closing = False

    @property
    def connected(self) -> bool:
        return self._ws is not None

    @property
    def active_channels(self) -> Set[LocalId]:
        return set(self._streams)

    async def connect(self) -> None:
        """Load market metadata and open the socket; no-op when connected.

        While the reader is backing off after a drop it owns the reconnect,
        so this returns without opening a second socket.
        """

        async with self._connect_lock:
            if self._ws is not None or self._reading():
                return
            self._closing = False
            if not self._instruments:
                await self._refresh_instruments()
            ws = await self._open()
            self._ws = ws
            try:
                await self._on_open()
            except (websockets.exceptions.ConnectionClosed, OSError) as exc:
                self._ws = None
                await self._close_socket(ws)
                raise VenueConnectionError(self.venue, f"socket dropped while subscribing: {exc}") from exc
            self._started = True
            self._reader_task = asyncio.create_task(self._read_loop(), name=f"{self.venue}-reader")

    async def disconnect(self) -> None:
        """Close the socket, cancel background work, and end every stream."""

        self._closing = True
        self._started = False
        reader, self._reader_task = self._reader_task, None
        pending, self._pending = list(self._pending), set()
        for task in ([reader] if reader else []) + pending:
            task.cancel()
        await asyncio.gather(*([reader] if reader else []), *pending, return_exceptions=True)

        ws, self._ws = self._ws, None
        if ws is not None:
            await self._close_socket(ws)
            self.logger.info(
                "%s websocket closed", self.venue,
                extra={"event": "adapter_disconnected", "venue": self.venue},
            )

        streams = [stream for group in self._streams.values() for stream in group]
        self._streams.clear()
        for stream in streams:
            stream.close()

    async def get_available_symbols(self) -> List[str]:
        """Return the symbols of listed, active markets."""

        if not self._instruments:
            await self._refresh_instruments()
        return [instrument.symbol for instrument in self._instruments.values() if instrument.active]

    def get_price_stream(self, symbol: str) -> PriceStream:
        """Subscribe to the symbol's price channel and return its stream."""

        if not self._started:
            raise SubscriptionError(self.venue, symbol, "adapter not connected")
        local_id = self._ids_by_symbol.get(symbol)
        if local_id is None or not self._instruments[local_id].active:
            raise SubscriptionError(self.venue, symbol)

        stream = PriceStream(symbol, self.venue, on_close=self._release, maxsize=self.stream_buffer)
        is_new_channel = local_id not in self._streams
        self._streams.setdefault(local_id, []).append(stream)
        if is_new_channel and self._ws is not None:
            self._schedule(self._send(self.api.subscribe_message(local_id)))
            self.logger.info(
                "Subscribed to %s on %s", symbol, self.venue,
                extra={"event": "subscription", "venue": self.venue, "symbol": symbol, "channel": local_id},
            )
        return stream

    # --- Socket lifecycle -------------------------------------------------
    def _reading(self) -> bool:
        return self._reader_task is not None and not self._reader_task.done()

    async def _open(self) -> Any:
        url = self.api.endpoint.websocket_url
        try:
            return await asyncio.wait_for(self._connector(url), timeout=self.connect_timeout)
        except asyncio.TimeoutError as exc:
            raise VenueConnectionError(
                self.venue, f"no handshake from {url} within {self.connect_timeout:g}s"
            ) from exc
        except (OSError, websockets.exceptions.WebSocketException) as exc:
            raise VenueConnectionError(self.venue, f"cannot connect to {url}: {exc}") from exc

    async def _close_socket(self, ws: Any) -> None:
        try:
            await ws.close()
        except Exception as exc:  # pragma: no cover - already torn down
            self.logger.debug("Closing %s socket failed: %s", self.venue, exc)

    async def _on_open(self) -> None:
        for local_id in list(self._streams):
            await self._send(self.api.subscribe_message(local_id))
        self.logger.info(
            "%s websocket connected", self.venue,
            extra={"event": "adapter_connected", "venue": self.venue, "channels": len(self._streams)},
        )

    def _on_close(self, reason: object) -> None:
        self.logger.warning(
            "%s websocket dropped: %s", self.venue, reason,
            extra={"event": "connection_lost", "venue": self.venue},
        )
        self._emit_metrics("connection_lost", {"channels": float(len(self._streams))})

    async def _read_loop(self) -> None:
        backoff = Backoff(self.backoff)
        while not self._closing:
            ws = self._ws
            reason: object = "closed by venue"
            try:
                async for raw in ws:
                    self._on_message(raw)
            except (websockets.exceptions.ConnectionClosed, OSError) as exc:
                reason = exc
            if self._closing:
                return
            self._ws = None
            self._on_close(reason)
            if not self.reconnect:
                return
            await self._reconnect(backoff)

    async def _reconnect(self, backoff: Backoff) -> None:
        while not self._closing:
            delay = backoff.next_delay()
            self.logger.info(
                "Reconnecting to %s in %.1fs", self.venue, delay,
                extra={"event": "reconnect", "venue": self.venue, "sleep_seconds": delay, "attempt": backoff.failures},
            )
            await asyncio.sleep(delay)
            try:
                self._ws = await self._open()
                await self._on_open()
            except (VenueConnectionError, websockets.exceptions.ConnectionClosed, OSError) as exc:
                self._ws = None
                self.logger.warning("Reconnect to %s failed: %s", self.venue, exc)
                continue
            backoff.reset()
            return

    # --- Messages ---------------------------------------------------------
    def _on_message(self, raw: Any) -> None:
        try:
            message = json.loads(raw)
            if not isinstance(message, dict):
                return
            parsed = self.api.parse_message(message)
        except ValueError as exc:
            self.logger.warning(
                "Dropping malformed %s message: %s", self.venue, exc,
                extra={"event": "decode_error", "venue": self.venue},
            )
            self._emit_metrics("decode_error", {"count": 1.0})
            return
        if parsed is None:
            return

        local_id, price = parsed
        streams = self._streams.get(local_id)
        if not streams:
            return
        instrument = self._instruments.get(local_id)
        symbol = instrument.symbol if instrument else str(local_id)
        update = PriceUpdate(symbol, price, now_ms(), self.venue)
        for stream in list(streams):
            try:
                stream.emit(update)
            except Exception:
                self.logger.exception(
                    "Listener failed for %s on %s", symbol, self.venue,
                    extra={"event": "listener_error", "venue": self.venue, "symbol": symbol},
                )

    def _release(self, stream: PriceStream) -> None:
        local_id = self._ids_by_symbol.get(stream.symbol)
        group = self._streams.get(local_id) if local_id is not None else None
        if not group:
            return
        if stream in group:
            group.remove(stream)
        if group:
            return
        del self._streams[local_id]
        message = self.api.unsubscribe_message(local_id)
        if message is not None and self._ws is not None:
            self._schedule(self._send(message))
        self.logger.info(
            "Unsubscribed from %s on %s", stream.symbol, self.venue,
            extra={"event": "unsubscription", "venue": self.venue, "symbol": stream.symbol},
        )

    async def _send(self, payload: Dict[str, Any]) -> None:
        ws = self._ws
        if ws is None:
            return
        await ws.send(json.dumps(payload))

    def _schedule(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.warning("%s send failed: %s", self.venue, exc)

    async def _refresh_instruments(self) -> None:
        instruments = await asyncio.to_thread(self.api.fetch_instruments)
        self._instruments = {instrument.local_id: instrument for instrument in instruments}
        self._ids_by_symbol = {instrument.symbol: instrument.local_id for instrument in instruments}

    def _emit_metrics(self, name: str, values: Dict[str, float]) -> None:
        if not self.metrics_callback:
            return
        try:
            self.metrics_callback(f"{self.venue}_{name}", values)
        except Exception as exc:  # pragma: no cover - external callback safety
            self.logger.debug("Metric callback failed for %s: %s", name, exc)


__all__ = ["PushAdapter", "Connector", "default_connector"]
