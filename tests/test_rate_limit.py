"""Fixed-window limiter: counting, window reset and retry-after."""

import unittest

from studio.services.rate_limit import FixedWindowRateLimiter


class _Ticker:
    def __init__(self) -> None:
        self.t = 1000.0

    def __call__(self) -> float:
        return self.t


class TestFixedWindowRateLimiter(unittest.TestCase):
    def setUp(self) -> None:
        self.ticker = _Ticker()
        self.limiter = FixedWindowRateLimiter(60, 3, clock=self.ticker)

    def test_allows_up_to_max_then_blocks(self) -> None:
        for _ in range(3):
            self.assertEqual(self.limiter.hit("1.2.3.4"), (True, 0))
        allowed, retry_after = self.limiter.hit("1.2.3.4")
        self.assertFalse(allowed)
        self.assertEqual(retry_after, 60)

    def test_keys_are_independent(self) -> None:
        for _ in range(3):
            self.limiter.hit("a")
        self.assertFalse(self.limiter.hit("a")[0])
        self.assertTrue(self.limiter.hit("b")[0])

    def test_window_resets(self) -> None:
        for _ in range(3):
            self.limiter.hit("a")
        self.ticker.t += 45
        allowed, retry_after = self.limiter.hit("a")
        self.assertFalse(allowed)
        self.assertEqual(retry_after, 15)
        self.ticker.t += 15
        self.assertTrue(self.limiter.hit("a")[0])

    def test_reset_clears_counters(self) -> None:
        for _ in range(3):
            self.limiter.hit("a")
        self.limiter.reset()
        self.assertTrue(self.limiter.hit("a")[0])


if __name__ == "__main__":
    unittest.main()
