import asyncio
import threading
import time
import unittest
from typing import Callable, Dict, List

from spreadwatch.data.clients import VenueEndpoint
from spreadwatch.data.models import Instrument, PriceUpdate
from spreadwatch.data.polling import PollingAdapter
from spreadwatch.errors import SubscriptionError, VenueConnectionError


class StubPollingApi:
    def __init__(self, instruments: List[Instrument], prices: Dict[int, float]) -> None:
        self.endpoint = VenueEndpoint(name="stub", rest_url="http://stub.invalid")
        self.instruments = list(instruments)
        self.prices = dict(prices)
        self.extra_prices: Dict[int, float] = {}
        self.fail_next = 0
        self.fetch_calls = 0
        self.instrument_calls = 0
        self.requested: List[List[int]] = []

    def fetch_instruments(self) -> List[Instrument]:
        self.instrument_calls += 1
        return list(self.instruments)

    def fetch_prices(self, local_ids):
        self.fetch_calls += 1
        self.requested.append(sorted(local_ids))
        if self.fail_next:
            self.fail_next -= 1
            raise VenueConnectionError("stub", "gateway timeout")
        prices = {pid: self.prices[pid] for pid in local_ids if pid in self.prices}
        prices.update(self.extra_prices)
        return prices


class SlowPollingApi(StubPollingApi):
    """Fetches take several poll intervals; tracks concurrent calls."""

    def __init__(self, *args, delay: float = 0.05, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def fetch_prices(self, local_ids):
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            time.sleep(self.delay)
            return super().fetch_prices(local_ids)
        finally:
            with self._lock:
                self.in_flight -= 1


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


class PollingAdapterTest(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.api = StubPollingApi(
            [
                Instrument(1, "BTC-PERP"),
                Instrument(2, "ETH-PERP"),
                Instrument(3, "LUNA-PERP", active=False),
            ],
            {1: 50_000.0, 2: 2_500.0},
        )
        self.metrics: List[str] = []
        self.adapter = PollingAdapter(
            self.api, poll_interval=0.01, metrics_callback=lambda name, values: self.metrics.append(name)
        )

    async def asyncTearDown(self) -> None:
        await self.adapter.disconnect()

    async def test_no_requests_without_subscribers(self) -> None:
        await self.adapter.connect()
        await asyncio.sleep(0.05)
        self.assertEqual(0, self.api.fetch_calls)
        self.assertTrue(self.adapter.connected)

    async def test_available_symbols_skip_inactive(self) -> None:
        await self.adapter.connect()
        self.assertEqual(["BTC-PERP", "ETH-PERP"], await self.adapter.get_available_symbols())

    async def test_subscription_errors(self) -> None:
        with self.assertRaises(SubscriptionError):
            self.adapter.get_price_stream("BTC-PERP")
        await self.adapter.connect()
        with self.assertRaises(SubscriptionError):
            self.adapter.get_price_stream("DOGE-PERP")
        with self.assertRaises(LookupError):
            self.adapter.get_price_stream("LUNA-PERP")

    async def test_unchanged_price_is_delivered_once(self) -> None:
        await self.adapter.connect()
        received: List[PriceUpdate] = []
        self.adapter.get_price_stream("BTC-PERP").listen(received.append)

        await wait_until(lambda: self.api.fetch_calls >= 4)
        self.assertEqual(1, len(received))
        self.assertEqual(PriceUpdate("BTC-PERP", 50_000.0, received[0].timestamp, "stub"), received[0])

        self.api.prices[1] = 50_100.0
        await wait_until(lambda: len(received) == 2)
        self.assertEqual(50_100.0, received[1].price)

    async def test_one_batch_request_per_tick(self) -> None:
        await self.adapter.connect()
        self.adapter.get_price_stream("BTC-PERP")
        self.adapter.get_price_stream("ETH-PERP")
        await wait_until(lambda: self.api.fetch_calls >= 3)
        self.assertIn([1, 2], self.api.requested)
        self.assertTrue(all(len(ids) <= 2 for ids in self.api.requested))

    async def test_failed_tick_does_not_stop_polling(self) -> None:
        self.api.fail_next = 2
        await self.adapter.connect()
        stream = self.adapter.get_price_stream("ETH-PERP")

        update = await asyncio.wait_for(stream.__anext__(), timeout=2.0)
        self.assertEqual(2_500.0, update.price)
        self.assertGreaterEqual(self.api.fetch_calls, 3)
        self.assertIn("stub_poll_tick_failed", self.metrics)

    async def test_unknown_id_refreshes_metadata_once(self) -> None:
        await self.adapter.connect()
        self.assertEqual(1, self.api.instrument_calls)
        self.api.instruments.append(Instrument(4, "SOL-PERP"))
        self.api.extra_prices = {4: 150.0}

        received: List[PriceUpdate] = []
        self.adapter.get_price_stream("BTC-PERP").listen(received.append)
        await wait_until(lambda: len(received) == 1)
        self.assertEqual(2, self.api.instrument_calls)

        stream = self.adapter.get_price_stream("SOL-PERP")
        update = await asyncio.wait_for(stream.__anext__(), timeout=2.0)
        self.assertEqual(150.0, update.price)

    async def test_unresolvable_id_is_skipped(self) -> None:
        await self.adapter.connect()
        self.api.extra_prices = {99: 1.0}
        received: List[PriceUpdate] = []
        self.adapter.get_price_stream("BTC-PERP").listen(received.append)
        await wait_until(lambda: len(received) == 1)
        self.assertEqual("BTC-PERP", received[0].symbol)

    async def test_closing_last_stream_removes_symbol_from_batch(self) -> None:
        await self.adapter.connect()
        stream = self.adapter.get_price_stream("BTC-PERP")
        other = self.adapter.get_price_stream("BTC-PERP")
        stream.close()
        self.assertEqual({"BTC-PERP"}, self.adapter.active_symbols)
        other.close()
        self.assertEqual(set(), self.adapter.active_symbols)

        calls = self.api.fetch_calls
        await asyncio.sleep(0.05)
        self.assertEqual(calls, self.api.fetch_calls)

    async def test_disconnect_stops_polling_and_closes_streams(self) -> None:
        await self.adapter.connect()
        stream = self.adapter.get_price_stream("BTC-PERP")
        await wait_until(lambda: self.api.fetch_calls >= 1)

        await self.adapter.disconnect()
        await asyncio.sleep(0.02)
        calls = self.api.fetch_calls
        await asyncio.sleep(0.05)

        self.assertEqual(calls, self.api.fetch_calls)
        self.assertTrue(stream.closed)
        self.assertFalse(self.adapter.connected)
        with self.assertRaises(SubscriptionError):
            self.adapter.get_price_stream("BTC-PERP")


class SlowPollingAdapterTest(unittest.IsolatedAsyncioTestCase):
    async def test_slow_fetch_skips_ticks_instead_of_overlapping(self) -> None:
        api = SlowPollingApi([Instrument(1, "BTC-PERP")], {1: 50_000.0}, delay=0.05)
        metrics: List[str] = []
        adapter = PollingAdapter(api, poll_interval=0.01, metrics_callback=lambda name, values: metrics.append(name))
        await adapter.connect()
        adapter.get_price_stream("BTC-PERP")

        await wait_until(lambda: api.fetch_calls >= 3)
        await adapter.disconnect()

        self.assertEqual(1, api.max_in_flight)
        self.assertGreater(adapter.skipped_ticks, 0)
        self.assertIn("stub_poll_ticks_skipped", metrics)


if __name__ == "__main__":
    unittest.main()
