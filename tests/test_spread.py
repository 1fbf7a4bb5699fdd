import unittest

from spreadwatch.pricing.spread import EQUAL, SpreadInfo, calculate_spread, spread_for, spread_severity


class CalculateSpreadTest(unittest.TestCase):
    def test_higher_second_price(self) -> None:
        spread = calculate_spread(100.0, 102.0, "reya", "vertex")
        assert spread
        self.assertAlmostEqual(2.0, spread.value, places=9)
        self.assertEqual("vertex", spread.direction)

    def test_higher_first_price(self) -> None:
        spread = calculate_spread(105.0, 100.0, "reya", "vertex")
        assert spread
        self.assertAlmostEqual(5.0, spread.value, places=9)
        self.assertEqual("reya", spread.direction)

    def test_equal_prices(self) -> None:
        self.assertEqual(SpreadInfo(0.0, EQUAL), calculate_spread(100.0, 100.0))

    def test_missing_or_non_positive_price(self) -> None:
        self.assertIsNone(calculate_spread(None, 100.0))
        self.assertIsNone(calculate_spread(100.0, None))
        self.assertIsNone(calculate_spread(0.0, 100.0))
        self.assertIsNone(calculate_spread(-1.0, 100.0))

    def test_symmetric_in_value(self) -> None:
        forward = calculate_spread(2500.0, 2510.0)
        backward = calculate_spread(2510.0, 2500.0)
        assert forward and backward
        self.assertAlmostEqual(forward.value, backward.value)


class SpreadForTest(unittest.TestCase):
    def test_needs_two_prices(self) -> None:
        self.assertIsNone(spread_for({}))
        self.assertIsNone(spread_for({"reya": 100.0}))

    def test_uses_extremes_across_venues(self) -> None:
        spread = spread_for({"reya": 101.0, "vertex": 100.0, "hyperliquid": 104.0})
        assert spread
        self.assertAlmostEqual(4.0, spread.value, places=9)
        self.assertEqual("hyperliquid", spread.direction)

    def test_all_equal(self) -> None:
        self.assertEqual(SpreadInfo(0.0, EQUAL), spread_for({"reya": 3.0, "vertex": 3.0}))


class SeverityTest(unittest.TestCase):
    def test_bands(self) -> None:
        self.assertEqual("low", spread_severity(0.5))
        self.assertEqual("medium", spread_severity(1.0))
        self.assertEqual("medium", spread_severity(1.99))
        self.assertEqual("high", spread_severity(2.0))

    def test_custom_thresholds(self) -> None:
        self.assertEqual("high", SpreadInfo(0.6, "a").severity((0.1, 0.5)))


if __name__ == "__main__":
    unittest.main()
