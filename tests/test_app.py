import asyncio
import json
import logging
import unittest
from typing import List
from unittest import mock

from spreadwatch import app
from spreadwatch.data.polling import PollingAdapter
from spreadwatch.data.websocket import PushAdapter
from spreadwatch.errors import ConfigurationError, VenueConnectionError
from spreadwatch.infra.config import VenueConfig, config_from_mapping
from spreadwatch.infra.logging import JsonFormatter


class StubAdapter:
    def __init__(self, venue: str, symbols: List[str], fail: bool = False) -> None:
        self.venue = venue
        self.symbols = symbols
        self.fail = fail
        self.connected = False
        self.disconnects = 0

    async def connect(self) -> None:
        if self.fail:
            raise VenueConnectionError(self.venue, "handshake timed out")
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False
        self.disconnects += 1

    async def get_available_symbols(self) -> List[str]:
        return list(self.symbols)

    def get_price_stream(self, symbol: str):  # pragma: no cover - not reached
        raise NotImplementedError


class BuildAdapterTest(unittest.TestCase):
    def test_kind_selects_adapter(self) -> None:
        push = app.build_adapter(VenueConfig(name="reya", kind="push", api="reya"))
        self.assertIsInstance(push, PushAdapter)
        self.assertEqual("wss://ws.reya.xyz", push.api.endpoint.websocket_url)

        poll = app.build_adapter(VenueConfig(name="vx", kind="polling", api="vertex", poll_interval_ms=250))
        self.assertIsInstance(poll, PollingAdapter)
        self.assertEqual(0.25, poll.poll_interval)
        self.assertEqual("vx", poll.venue)

    def test_rest_url_override(self) -> None:
        adapter = app.build_adapter(
            VenueConfig(name="hl", kind="polling", api="hyperliquid", rest_url="http://localhost:9999/info")
        )
        self.assertEqual("http://localhost:9999/info", adapter.api.rest.base_url)

    def test_kind_must_match_api(self) -> None:
        with self.assertRaises(ConfigurationError):
            app.build_adapter(VenueConfig(name="vertex", kind="push", api="vertex"))
        with self.assertRaises(ConfigurationError):
            app.build_adapter(VenueConfig(name="reya", kind="polling", api="reya"))


class StartAdaptersTest(unittest.IsolatedAsyncioTestCase):
    async def test_failing_venue_is_excluded(self) -> None:
        adapters = {
            "reya": StubAdapter("reya", ["ETH-rUSD"], fail=True),
            "vertex": StubAdapter("vertex", ["ETH-PERP", "BTC-PERP"]),
        }
        universes, failed = await app.start_adapters(adapters, logging.getLogger("test"))
        self.assertEqual({"vertex": ["ETH-PERP", "BTC-PERP"]}, universes)
        self.assertEqual(["reya"], list(failed))
        self.assertIn("handshake timed out", failed["reya"])
        self.assertEqual(1, adapters["reya"].disconnects)


class RunServerTest(unittest.IsolatedAsyncioTestCase):
    async def serve_once(self, cfg, stubs):
        """Run the server against ``stubs`` and stop it as soon as it serves."""

        stop_event = asyncio.Event()
        served = asyncio.Event()

        class FakeServer:
            def __init__(self, config) -> None:
                self.config = config
                self.should_exit = False

            async def serve(self) -> None:
                served.set()
                while not self.should_exit:
                    await asyncio.sleep(0.005)

        async def stop_soon() -> None:
            await served.wait()
            stop_event.set()

        with mock.patch.object(app, "build_adapter", side_effect=lambda venue, **_: stubs[venue.name]), \
                mock.patch.object(app.uvicorn, "Server", FakeServer), \
                mock.patch.object(app, "create_api_app", wraps=app.create_api_app) as create_app, \
                mock.patch.object(app, "_install_stop_handlers"):
            stopper = asyncio.create_task(stop_soon())
            code = await asyncio.wait_for(app.run_server(cfg, stop_event=stop_event), timeout=5.0)
            stopper.cancel()
            await asyncio.gather(stopper, return_exceptions=True)
        state = create_app.call_args[0][0] if create_app.called else None
        return code, state

    async def test_exits_non_zero_when_every_venue_fails(self) -> None:
        cfg = config_from_mapping({})
        with mock.patch.object(
            app, "build_adapter", side_effect=lambda venue, **_: StubAdapter(venue.name, [], fail=True)
        ):
            self.assertEqual(1, await app.run_server(cfg))

    async def test_serves_in_degraded_mode_and_disconnects_on_stop(self) -> None:
        stubs = {
            "reya": StubAdapter("reya", ["ETH-rUSD"], fail=True),
            "vertex": StubAdapter("vertex", ["ETH-PERP"]),
        }
        code, _ = await self.serve_once(config_from_mapping({"server": {"port": 0}}), stubs)

        self.assertEqual(0, code)
        self.assertEqual(1, stubs["vertex"].disconnects)
        self.assertFalse(stubs["vertex"].connected)

    async def test_ambiguous_venue_is_dropped_and_others_keep_serving(self) -> None:
        stubs = {
            "reya": StubAdapter("reya", ["ETH-rUSD", "eth-rUSD"]),
            "vertex": StubAdapter("vertex", ["ETH-PERP", "BTC-PERP"]),
        }
        code, state = await self.serve_once(config_from_mapping({"server": {"port": 0}}), stubs)

        self.assertEqual(0, code)
        self.assertEqual(1, stubs["reya"].disconnects)
        self.assertFalse(stubs["reya"].connected)
        self.assertIn("both normalize to 'ETH'", state.failed_venues["reya"])
        self.assertEqual(["vertex"], list(state.adapters))
        self.assertEqual(["BTC", "ETH"], state.merger.symbols)
        self.assertEqual(1, stubs["vertex"].disconnects)

    async def test_every_venue_ambiguous_disconnects_and_exits_non_zero(self) -> None:
        stubs = {
            "reya": StubAdapter("reya", ["ETH-rUSD", "eth-rUSD"]),
            "vertex": StubAdapter("vertex", ["BTC-PERP", "btc-PERP"]),
        }
        code, state = await self.serve_once(config_from_mapping({}), stubs)

        self.assertEqual(1, code)
        self.assertIsNone(state)
        self.assertEqual({"reya": 1, "vertex": 1}, {name: stub.disconnects for name, stub in stubs.items()})


class JsonFormatterTest(unittest.TestCase):
    def test_includes_structured_extras(self) -> None:
        record = logging.LogRecord("spreadwatch.test", logging.INFO, __file__, 1, "tick %s", ("ok",), None)
        record.event = "poll_tick"
        record.venue = "vertex"
        payload = json.loads(JsonFormatter().format(record))
        self.assertEqual("tick ok", payload["message"])
        self.assertEqual("INFO", payload["level"])
        self.assertEqual("poll_tick", payload["event"])
        self.assertEqual("vertex", payload["venue"])


if __name__ == "__main__":
    unittest.main()
