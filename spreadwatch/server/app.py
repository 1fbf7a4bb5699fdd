"""FastAPI surface of the feed server: symbols, merged price channel, health."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse

from spreadwatch import __version__
from spreadwatch.data.clients import VenueAdapter
from spreadwatch.data.merger import MergeSession, StreamMerger
from spreadwatch.infra.metrics import MetricsSink

TRY_AGAIN_LATER = 1013
GOING_AWAY = 1001


class FeedState:
    """What the HTTP handlers need from the running server."""

    def __init__(
        self,
        merger: StreamMerger,
        adapters: Optional[Mapping[str, VenueAdapter]] = None,
        metrics: Optional[MetricsSink] = None,
        failed_venues: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.merger = merger
        self.adapters = dict(adapters if adapters is not None else merger.adapters)
        self.metrics = metrics or MetricsSink()
        self.failed_venues = dict(failed_venues or {})
        self.accepting = True

    def stop_accepting(self) -> None:
        """Refuse new price channels and end the open ones."""

        self.accepting = False
        self.merger.close_all()

    def health(self) -> Dict[str, Any]:
        venues: Dict[str, Dict[str, Any]] = {
            name: {"connected": bool(adapter.connected)} for name, adapter in self.adapters.items()
        }
        for name, error in self.failed_venues.items():
            venues[name] = {"connected": False, "error": error}
        live = [name for name, info in venues.items() if info["connected"]]
        if not self.accepting:
            status = "stopping"
        elif len(live) == len(venues):
            status = "ok"
        else:
            status = "degraded"
        return {
            "status": status,
            "venues": venues,
            "symbols": len(self.merger.symbols),
            "clients": self.merger.session_count,
        }


def _parse_symbols(raw: Optional[str]) -> Optional[List[str]]:
    if not raw:
        return None
    symbols = [symbol.strip() for symbol in raw.split(",") if symbol.strip()]
    return symbols or None


async def _pump(websocket: WebSocket, session: MergeSession) -> None:
    async for update in session:
        await websocket.send_json(update.to_dict())


async def _drain(websocket: WebSocket) -> None:
    while True:
        await websocket.receive_text()


def create_api_app(state: FeedState, logger: Optional[logging.Logger] = None) -> FastAPI:
    log = logger or logging.getLogger(__name__)
    app = FastAPI(title="Spreadwatch Feed", version=__version__)

    @app.get("/symbols")
    async def symbols() -> List[str]:
        return state.merger.symbols

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return state.health()

    @app.get("/metrics", response_class=PlainTextResponse)
    async def metrics() -> str:
        state.metrics.set_gauge("feed_clients", state.merger.session_count)
        return state.metrics.render_text()

    @app.websocket("/ws")
    async def prices(websocket: WebSocket) -> None:
        await websocket.accept()
        if not state.accepting:
            await websocket.close(code=TRY_AGAIN_LATER)
            return

        session = state.merger.open_session()
        session.subscribe_all(_parse_symbols(websocket.query_params.get("symbols")))
        state.metrics.incr("feed_connections_total")
        log.info(
            "Price channel opened for %d symbols", len(session.symbols),
            extra={"event": "client_connected", "symbols": len(session.symbols)},
        )

        pump = asyncio.create_task(_pump(websocket, session))
        drain = asyncio.create_task(_drain(websocket))
        try:
            done, _ = await asyncio.wait({pump, drain}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (pump, drain):
                task.cancel()
            await asyncio.gather(pump, drain, return_exceptions=True)
            session.close()
            log.info("Price channel closed", extra={"event": "client_disconnected"})

        if pump in done and not pump.cancelled() and pump.exception() is None:
            # session ended from our side (shutdown)
            try:
                await websocket.close(code=GOING_AWAY)
            except (RuntimeError, WebSocketDisconnect):
                pass

    return app


__all__ = ["create_api_app", "FeedState", "TRY_AGAIN_LATER"]
