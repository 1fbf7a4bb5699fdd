"""Consumer side of the feed server: symbol fetch and the merged price channel."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, AsyncIterator, Callable, Iterable, List, Optional
from urllib.parse import urlencode, urlsplit, urlunsplit

import requests
import websockets
import websockets.exceptions

from spreadwatch.data.models import PriceUpdate
from spreadwatch.data.rest import RestClient
from spreadwatch.errors import DecodeError
from spreadwatch.infra.backoff import Backoff, BackoffConfig
from spreadwatch.pricing.aggregate import AggregateStore

FEED_SOURCE = "feed"


def default_connector(url: str) -> Any:
    return websockets.connect(url, ping_interval=20, ping_timeout=20)


def fetch_symbols(base_url: str, session: Optional[requests.Session] = None, timeout: float = 10.0) -> List[str]:
    """Return the canonical symbols served by the feed server at ``base_url``."""

    payload = RestClient(FEED_SOURCE, base_url, session=session, timeout=timeout).get("/symbols")
    if not isinstance(payload, list):
        raise DecodeError(FEED_SOURCE, "expected a list of symbols", payload)
    return [str(symbol) for symbol in payload]


def channel_url(base_url: str, symbols: Optional[Iterable[str]] = None) -> str:
    """Map ``http(s)://host`` to the ``ws(s)://host/ws`` price channel."""

    parts = urlsplit(base_url)
    scheme = {"http": "ws", "https": "wss"}.get(parts.scheme, parts.scheme)
    path = parts.path.rstrip("/") + "/ws"
    query = urlencode({"symbols": ",".join(symbols)}) if symbols else ""
    return urlunsplit((scheme, parts.netloc, path, query, ""))


class PriceFeedClient:
    """Reconnecting reader of the merged price channel.

    The delay between attempts doubles from ``backoff.initial`` up to
    ``backoff.maximum`` and resets once a connection opens.
    """

    def __init__(
        self,
        base_url: str,
        symbols: Optional[Iterable[str]] = None,
        backoff: Optional[BackoffConfig] = None,
        connector: Optional[Callable[[str], Any]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.base_url = base_url
        self.url = channel_url(base_url, list(symbols) if symbols else None)
        self.backoff = backoff or BackoffConfig()
        self.logger = logger or logging.getLogger(__name__)
        self._connector = connector or default_connector
        self._running = False
        self.connections = 0

    @property
    def running(self) -> bool:
        return self._running

    async def stream(self) -> AsyncIterator[PriceUpdate]:
        """Yield price updates until :meth:`stop` is called."""

        self._running = True
        backoff = Backoff(self.backoff)
        while self._running:
            start_time = time.monotonic()
            try:
                async for update in self._consume_once(backoff):
                    yield update
            except asyncio.CancelledError:
                self._running = False
                raise
            except (OSError, websockets.exceptions.WebSocketException) as exc:
                self.logger.warning("Price feed connection failed: %s", exc, extra={"event": "feed_disconnected"})
            if not self._running:
                break
            sleep_for = backoff.next_delay()
            self.logger.info(
                "Reconnecting to price feed",
                extra={
                    "event": "reconnect",
                    "sleep_seconds": sleep_for,
                    "elapsed_seconds": time.monotonic() - start_time,
                    "attempt": backoff.failures,
                },
            )
            await asyncio.sleep(sleep_for)

    def stop(self) -> None:
        self._running = False

    async def _consume_once(self, backoff: Backoff) -> AsyncIterator[PriceUpdate]:
        async with self._connector(self.url) as ws:
            self.connections += 1
            backoff.reset()
            self.logger.info("Connected to price feed %s", self.url, extra={"event": "feed_connected"})
            async for raw in ws:
                if not self._running:
                    return
                update = self._decode(raw)
                if update is not None:
                    yield update

    def _decode(self, raw: Any) -> Optional[PriceUpdate]:
        try:
            return PriceUpdate.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as exc:
            self.logger.warning("Dropping malformed feed message: %s", exc, extra={"event": "decode_error"})
            return None


class StoreFeed:
    """Owns the subscription that feeds one :class:`AggregateStore`."""

    def __init__(
        self,
        client: PriceFeedClient,
        store: AggregateStore,
        fetch: Optional[Callable[[], Iterable[str]]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.client = client
        self.store = store
        self.fetch = fetch or (lambda: fetch_symbols(client.base_url))
        self.logger = logger or logging.getLogger(__name__)
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Load the symbol list, then start applying updates to the store."""

        if self.running:
            return
        await asyncio.to_thread(self.store.load_symbols, self.fetch)
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        self.client.stop()
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def _run(self) -> None:
        async for update in self.client.stream():
            self.store.update_price(update)


__all__ = ["PriceFeedClient", "StoreFeed", "fetch_symbols", "channel_url"]
