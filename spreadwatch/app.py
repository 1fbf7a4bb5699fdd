"""Entry points: the feed server (``serve``) and a logging consumer (``watch``)."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import uvicorn

from spreadwatch.client.feed import PriceFeedClient, StoreFeed
from spreadwatch.data.clients import VenueAdapter, VenueEndpoint
from spreadwatch.data.merger import StreamMerger
from spreadwatch.data.polling import MetricsCallback, PollingAdapter
from spreadwatch.data.venues import hyperliquid, reya, vertex
from spreadwatch.data.websocket import PushAdapter
from spreadwatch.errors import ConfigurationError
from spreadwatch.infra.backoff import BackoffConfig
from spreadwatch.infra.config import AppConfig, VenueConfig, env_or_default, load_config
from spreadwatch.infra.logging import configure_logging
from spreadwatch.infra.metrics import MetricsSink
from spreadwatch.pricing.aggregate import AggregateStore
from spreadwatch.pricing.symbols import SymbolRule, normalize_universe, reconcile
from spreadwatch.server.app import FeedState, create_api_app

DEFAULT_ENDPOINTS: Dict[str, VenueEndpoint] = {
    "reya": reya.DEFAULT_ENDPOINT,
    "vertex": vertex.DEFAULT_ENDPOINT,
    "hyperliquid": hyperliquid.DEFAULT_ENDPOINT,
}


def build_venue_api(venue: VenueConfig):
    default = DEFAULT_ENDPOINTS[venue.api]
    endpoint = VenueEndpoint(
        name=venue.name,
        rest_url=venue.rest_url or default.rest_url,
        websocket_url=venue.websocket_url or default.websocket_url,
    )
    logger = logging.getLogger(f"spreadwatch.venues.{venue.name}")
    if venue.api == "reya":
        return reya.ReyaApi(endpoint=endpoint, logger=logger)
    if venue.api == "vertex":
        return vertex.VertexApi(
            endpoint=endpoint, indexer_url=venue.indexer_url or vertex.DEFAULT_INDEXER_URL, logger=logger
        )
    return hyperliquid.HyperliquidApi(endpoint=endpoint, logger=logger)


def build_adapter(
    venue: VenueConfig,
    backoff: Optional[BackoffConfig] = None,
    metrics_callback: Optional[MetricsCallback] = None,
) -> VenueAdapter:
    """Pick the adapter for ``venue.kind`` and inject the venue API into it."""

    api = build_venue_api(venue)
    logger = logging.getLogger(f"spreadwatch.adapters.{venue.name}")
    if venue.kind == "push":
        if not hasattr(api, "parse_message"):
            raise ConfigurationError(f"{venue.name}: {venue.api} has no push feed")
        return PushAdapter(
            api,
            connect_timeout=venue.connect_timeout_seconds,
            backoff=backoff,
            metrics_callback=metrics_callback,
            logger=logger,
        )
    if not hasattr(api, "fetch_prices"):
        raise ConfigurationError(f"{venue.name}: {venue.api} has no price snapshot endpoint")
    return PollingAdapter(
        api,
        poll_interval=venue.poll_interval_ms / 1000,
        metrics_callback=metrics_callback,
        logger=logger,
    )


async def start_adapters(
    adapters: Mapping[str, VenueAdapter], logger: logging.Logger
) -> Tuple[Dict[str, List[str]], Dict[str, str]]:
    """Connect every adapter concurrently; a failing venue is left out.

    Returns the symbol universe of each live venue and the error of each
    failed one.
    """

    async def start(adapter: VenueAdapter) -> List[str]:
        await adapter.connect()
        return await adapter.get_available_symbols()

    results = await asyncio.gather(*(start(adapter) for adapter in adapters.values()), return_exceptions=True)
    universes: Dict[str, List[str]] = {}
    failed: Dict[str, str] = {}
    for name, result in zip(adapters, results):
        if isinstance(result, BaseException):
            failed[name] = str(result) or type(result).__name__
            logger.error(
                "Venue %s failed to start: %s", name, result,
                extra={"event": "venue_failed", "venue": name},
            )
            await adapters[name].disconnect()
            continue
        universes[name] = result
        logger.info(
            "Venue %s lists %d symbols", name, len(result),
            extra={"event": "venue_ready", "venue": name, "symbols": len(result)},
        )
    return universes, failed


def _install_stop_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows/limited environments
            pass


def drop_ambiguous_venues(
    universes: Dict[str, List[str]], rules: Mapping[str, SymbolRule], logger: logging.Logger
) -> Dict[str, str]:
    """Remove venues whose symbols do not normalize unambiguously.

    Returns the error of each removed venue; the others stay in ``universes``.
    """

    failed: Dict[str, str] = {}
    for name in list(universes):
        try:
            normalize_universe(name, universes[name], rules.get(name) or SymbolRule())
        except ConfigurationError as exc:
            failed[name] = str(exc)
            del universes[name]
            logger.error(
                "Venue %s has ambiguous symbols: %s", name, exc,
                extra={"event": "venue_failed", "venue": name},
            )
    return failed


async def run_server(cfg: AppConfig, stop_event: Optional[asyncio.Event] = None) -> int:
    """Run adapters and the feed server until a stop signal; return the exit code."""

    logger = logging.getLogger("spreadwatch.server")
    metrics = MetricsSink()

    adapters: Dict[str, VenueAdapter] = {
        venue.name: build_adapter(venue, backoff=cfg.backoff, metrics_callback=metrics.observe)
        for venue in cfg.enabled_venues
    }
    if not adapters:
        logger.error("No venues enabled", extra={"event": "startup_failed"})
        return 1

    universes, failed = await start_adapters(adapters, logger)
    live: Dict[str, VenueAdapter] = {name: adapters[name] for name in universes}
    state: Optional[FeedState] = None
    server: Optional[uvicorn.Server] = None
    server_task: Optional[asyncio.Task] = None
    try:
        rules = {venue.name: venue.normalization for venue in cfg.enabled_venues}
        ambiguous = drop_ambiguous_venues(universes, rules, logger)
        for name in ambiguous:
            await live.pop(name).disconnect()
        failed.update(ambiguous)
        if not universes:
            logger.error("Every venue failed to start", extra={"event": "startup_failed", "failed": sorted(failed)})
            return 1

        table = reconcile(
            {name: universes.get(name) for name in adapters}, rules, mode=cfg.reconciliation.mode
        )
        logger.info(
            "Serving %d canonical symbols from %d venues", len(table), len(live),
            extra={"event": "symbols_reconciled", "symbols": len(table), "venues": sorted(live)},
        )

        merger = StreamMerger(live, table)
        state = FeedState(merger, adapters=live, metrics=metrics, failed_venues=failed)
        app = create_api_app(state)
        server = uvicorn.Server(
            uvicorn.Config(app, host=cfg.server.host, port=cfg.server.port, log_level="info")
        )

        stop_event = stop_event or asyncio.Event()
        _install_stop_handlers(stop_event)
        server_task = asyncio.create_task(server.serve())
        stop_task = asyncio.create_task(stop_event.wait())
        try:
            await asyncio.wait({server_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop_task.cancel()
            await asyncio.gather(stop_task, return_exceptions=True)
    finally:
        logger.info("Shutting down", extra={"event": "shutdown"})
        if state is not None:
            state.stop_accepting()
        if server is not None and server_task is not None:
            server.should_exit = True
            await asyncio.gather(server_task, return_exceptions=True)
        await asyncio.gather(*(adapter.disconnect() for adapter in live.values()), return_exceptions=True)
    return 0


def log_spreads(store: AggregateStore, logger: logging.Logger) -> None:
    for symbol, entry in store.get_filtered_prices().items():
        spread = entry.spread
        logger.info(
            "%s %s", symbol,
            " ".join(f"{venue}={price:g}" for venue, price in entry.prices().items()) or "no data",
            extra={
                "event": "spread",
                "symbol": symbol,
                "state": entry.state.value,
                "prices": entry.prices(),
                "spread": spread.value if spread else None,
                "direction": spread.direction if spread else None,
                "severity": spread.severity() if spread else None,
            },
        )


async def run_watch(
    cfg: AppConfig,
    symbols: Sequence[str] = (),
    interval: float = 5.0,
    stop_event: Optional[asyncio.Event] = None,
) -> int:
    """Consume the feed into an aggregate store and log spreads every ``interval`` seconds."""

    logger = logging.getLogger("spreadwatch.watch")
    store = AggregateStore(history_limit=cfg.store.history_limit)
    client = PriceFeedClient(cfg.client.url, symbols=symbols or None, backoff=cfg.client.backoff)
    feed = StoreFeed(client, store)

    await feed.start()
    if store.error:
        logger.warning("Symbol list unavailable: %s", store.error, extra={"event": "symbols_unavailable"})
    for symbol in symbols or store.available_symbols:
        store.add_symbol(symbol)

    stop_event = stop_event or asyncio.Event()
    _install_stop_handlers(stop_event)
    try:
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                log_spreads(store, logger)
    finally:
        await feed.stop()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="spreadwatch", description="Cross-venue perpetual price spreads")
    parser.add_argument("--config", default=None, help="YAML config path (default: $CONFIG_PATH)")
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run venue adapters and the feed server")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)

    watch = commands.add_parser("watch", help="Log spreads from a running feed server")
    watch.add_argument("--url", default=None, help="Feed server base URL")
    watch.add_argument("--interval", type=float, default=5.0, help="Seconds between spread reports")
    watch.add_argument("symbols", nargs="*", help="Canonical symbols to track (default: all)")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    configure_logging(env_or_default("LOG_LEVEL", "INFO"))
    try:
        cfg = load_config(args.config)
    except ConfigurationError as exc:
        logging.getLogger("spreadwatch").error("Invalid configuration: %s", exc, extra={"event": "config_error"})
        sys.exit(2)

    if args.command == "serve":
        if args.host:
            cfg.server.host = args.host
        if args.port:
            cfg.server.port = args.port
        sys.exit(asyncio.run(run_server(cfg)))

    if args.url:
        cfg.client.url = args.url
    sys.exit(asyncio.run(run_watch(cfg, symbols=args.symbols, interval=args.interval)))


if __name__ == "__main__":
    main()
