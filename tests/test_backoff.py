import unittest

from spreadwatch.infra.backoff import Backoff, BackoffConfig


class BackoffTest(unittest.TestCase):
    def test_doubles_up_to_maximum(self) -> None:
        backoff = Backoff(BackoffConfig(initial=1.0, maximum=10.0, factor=2.0))
        delays = [backoff.next_delay() for _ in range(6)]
        self.assertEqual([1.0, 2.0, 4.0, 8.0, 10.0, 10.0], delays)
        self.assertEqual(6, backoff.failures)

    def test_reset_returns_to_initial(self) -> None:
        backoff = Backoff()
        backoff.next_delay()
        backoff.next_delay()
        backoff.reset()
        self.assertEqual(0, backoff.failures)
        self.assertEqual(1.0, backoff.next_delay())

    def test_jitter_is_bounded(self) -> None:
        backoff = Backoff(BackoffConfig(initial=1.0, jitter=0.5))
        delay = backoff.next_delay()
        self.assertGreaterEqual(delay, 1.0)
        self.assertLessEqual(delay, 1.5)

    def test_from_mapping_uses_defaults(self) -> None:
        config = BackoffConfig.from_mapping({"maximum": "30"})
        self.assertEqual(BackoffConfig(initial=1.0, maximum=30.0, factor=2.0, jitter=0.0), config)
        self.assertEqual(BackoffConfig(), BackoffConfig.from_mapping(None))


if __name__ == "__main__":
    unittest.main()
