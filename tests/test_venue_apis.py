import unittest
from unittest import mock

import requests

from spreadwatch.data.models import Instrument
from spreadwatch.data.rest import RestClient
from spreadwatch.data.venues import HyperliquidApi, ReyaApi, VertexApi
from spreadwatch.data.venues.vertex import X18
from spreadwatch.errors import DecodeError, VenueConnectionError


def json_response(payload) -> mock.Mock:
    response = mock.Mock()
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


def session_returning(*payloads) -> mock.Mock:
    session = mock.Mock(spec=requests.Session)
    session.request.side_effect = [json_response(payload) for payload in payloads]
    return session


class RestClientTest(unittest.TestCase):
    def test_transport_failure(self) -> None:
        session = mock.Mock(spec=requests.Session)
        session.request.side_effect = requests.ConnectionError("down")
        client = RestClient("stub", "https://stub.invalid/", session=session)
        with self.assertRaises(VenueConnectionError):
            client.get("/x")

    def test_http_error(self) -> None:
        response = mock.Mock()
        response.raise_for_status.side_effect = requests.HTTPError("503")
        session = mock.Mock(spec=requests.Session)
        session.request.return_value = response
        with self.assertRaises(VenueConnectionError):
            RestClient("stub", "https://stub.invalid", session=session).post(json={})

    def test_non_json_body(self) -> None:
        response = mock.Mock()
        response.raise_for_status.return_value = None
        response.json.side_effect = ValueError("no json")
        session = mock.Mock(spec=requests.Session)
        session.request.return_value = response
        with self.assertRaises(DecodeError):
            RestClient("stub", "https://stub.invalid", session=session).get()

    def test_joins_base_url_and_path(self) -> None:
        session = session_returning({"ok": True})
        RestClient("stub", "https://stub.invalid/api/", session=session, timeout=3.0).get("/markets")
        args, kwargs = session.request.call_args
        self.assertEqual(("GET", "https://stub.invalid/api/markets"), args)
        self.assertEqual(3.0, kwargs["timeout"])


class ReyaApiTest(unittest.TestCase):
    def test_instruments_keep_mapped_tickers(self) -> None:
        session = session_returning(
            {
                "markets": [
                    {"ticker": "ETH-rUSD", "isActive": True},
                    {"ticker": "kPEPE-rUSD"},
                    {"ticker": "SOL-rUSD", "isActive": False},
                    {"ticker": "UNLISTED-rUSD"},
                    "garbage",
                ]
            }
        )
        instruments = ReyaApi(session=session).fetch_instruments()
        self.assertEqual(
            [
                Instrument("ETHUSDMARK", "ETH-rUSD"),
                Instrument("1000PEPEUSDMARK", "kPEPE-rUSD"),
                Instrument("SOLUSDMARK", "SOL-rUSD", active=False),
            ],
            instruments,
        )

    def test_instruments_reject_bad_listing(self) -> None:
        with self.assertRaises(DecodeError):
            ReyaApi(session=session_returning({"unexpected": 1})).fetch_instruments()

    def test_parse_message(self) -> None:
        api = ReyaApi()
        message = {
            "type": "channel_data",
            "channel": "/v2/prices",
            "contents": {"assetPairId": "BTCUSDMARK", "poolPrice": "65000.5", "spotPrice": "64990"},
        }
        self.assertEqual(("BTCUSDMARK", 65000.5), api.parse_message(message))

        message["contents"] = {"assetPairId": "BTCUSDMARK", "spotPrice": "64990"}
        self.assertEqual(("BTCUSDMARK", 64990.0), api.parse_message(message))

    def test_parse_message_ignores_other_envelopes(self) -> None:
        api = ReyaApi()
        self.assertIsNone(api.parse_message({"type": "subscribed", "channel": "prices"}))
        self.assertIsNone(api.parse_message({"type": "channel_data", "channel": "trades", "contents": {}}))
        self.assertIsNone(api.parse_message({"type": "channel_data", "contents": {"poolPrice": "1"}}))

    def test_parse_message_without_price(self) -> None:
        with self.assertRaises(DecodeError):
            ReyaApi().parse_message(
                {"type": "channel_data", "contents": {"assetPairId": "ETHUSDMARK", "poolPrice": "n/a"}}
            )

    def test_subscription_messages(self) -> None:
        api = ReyaApi()
        self.assertEqual({"type": "subscribe", "channel": "prices", "id": "ETHUSDMARK"}, api.subscribe_message("ETHUSDMARK"))
        self.assertEqual("unsubscribe", api.unsubscribe_message("ETHUSDMARK")["type"])


class VertexApiTest(unittest.TestCase):
    def test_instruments_keep_perps_only(self) -> None:
        session = session_returning(
            {
                "symbols": {
                    "BTC-PERP": {"product_id": 2, "symbol": "BTC-PERP"},
                    "BTC": {"product_id": 1, "symbol": "BTC"},
                    "ETH-PERP": {"product_id": "4", "symbol": "ETH-PERP"},
                }
            }
        )
        api = VertexApi(session=session)
        self.assertEqual([Instrument(2, "BTC-PERP"), Instrument(4, "ETH-PERP")], api.fetch_instruments())
        args, _ = session.request.call_args
        self.assertEqual(("GET", "https://gateway.prod.vertexprotocol.com/v1/symbols"), args)

    def test_prices_from_indexer(self) -> None:
        session = session_returning(
            {
                "prices": {
                    "2": {"product_id": 2, "mark_price_x18": str(65_000 * X18)},
                    "4": {"product_id": 4, "markPrice": "2500.25"},
                    "6": {"product_id": 6},
                }
            }
        )
        api = VertexApi(session=session, indexer_url="https://indexer.invalid/v1")
        self.assertEqual({2: 65_000.0, 4: 2500.25}, api.fetch_prices([2, 4, 6]))

        args, kwargs = session.request.call_args
        self.assertEqual(("POST", "https://indexer.invalid/v1"), args)
        self.assertEqual({"perp_prices": {"product_ids": [2, 4, 6]}}, kwargs["json"])

    def test_prices_reject_bad_shape(self) -> None:
        with self.assertRaises(DecodeError):
            VertexApi(session=session_returning(["not", "a", "dict"])).fetch_prices([2])


class HyperliquidApiTest(unittest.TestCase):
    def test_universe_indexes(self) -> None:
        session = session_returning(
            {"universe": [{"name": "BTC"}, {"name": "ETH"}, {"name": "LUNA", "isDelisted": True}]}
        )
        instruments = HyperliquidApi(session=session).fetch_instruments()
        self.assertEqual(
            [Instrument(0, "BTC"), Instrument(1, "ETH"), Instrument(2, "LUNA", active=False)], instruments
        )
        _, kwargs = session.request.call_args
        self.assertEqual({"type": "meta"}, kwargs["json"])

    def test_mark_prices_by_index(self) -> None:
        session = session_returning(
            [{"universe": []}, [{"markPx": "65000.0"}, {"markPx": "2500.5"}, {"funding": "0.01"}]]
        )
        self.assertEqual({0: 65000.0, 1: 2500.5}, HyperliquidApi(session=session).fetch_prices([0, 1]))

    def test_mark_prices_reject_bad_shape(self) -> None:
        with self.assertRaises(DecodeError):
            HyperliquidApi(session=session_returning({"universe": []})).fetch_prices([0])


if __name__ == "__main__":
    unittest.main()
