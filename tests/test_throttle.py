import unittest

from cratematch.config import ThrottleSettings
from cratematch.throttle import CircuitBreaker, CircuitState, NoThrottle, RequestBudget, ThrottleChain


class _Clock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestCircuitBreaker(unittest.TestCase):
    def _breaker(self, clock: _Clock, **kwargs) -> CircuitBreaker:
        params = dict(failure_threshold=2, success_threshold=2, reset_timeout=30.0, failure_window=60.0)
        params.update(kwargs)
        return CircuitBreaker("test", clock=clock, **params)

    def test_opens_after_threshold_and_recovers(self) -> None:
        clock = _Clock()
        breaker = self._breaker(clock)
        breaker.record_outcome(False)
        self.assertTrue(breaker.try_acquire())
        with self.assertLogs("cratematch.throttle", level="WARNING"):
            breaker.record_outcome(False)
        self.assertEqual(breaker.state, CircuitState.OPEN)
        self.assertFalse(breaker.try_acquire())

        clock.now = 30.0
        self.assertTrue(breaker.try_acquire())
        self.assertEqual(breaker.state, CircuitState.HALF_OPEN)
        breaker.record_outcome(True)
        self.assertEqual(breaker.state, CircuitState.HALF_OPEN)
        breaker.record_outcome(True)
        self.assertEqual(breaker.state, CircuitState.CLOSED)

    def test_failure_while_half_open_reopens(self) -> None:
        clock = _Clock()
        breaker = self._breaker(clock, failure_threshold=1)
        breaker.record_outcome(False)
        clock.now = 31.0
        self.assertEqual(breaker.state, CircuitState.HALF_OPEN)
        breaker.record_outcome(False)
        self.assertEqual(breaker.state, CircuitState.OPEN)
        clock.now = 40.0
        self.assertFalse(breaker.try_acquire())

    def test_failures_outside_window_are_forgotten(self) -> None:
        clock = _Clock()
        breaker = self._breaker(clock, failure_window=10.0)
        breaker.record_outcome(False)
        clock.now = 20.0
        breaker.record_outcome(False)
        self.assertEqual(breaker.state, CircuitState.CLOSED)

    def test_from_settings(self) -> None:
        breaker = CircuitBreaker.from_settings(ThrottleSettings(failure_threshold=3, reset_timeout_seconds=5))
        self.assertEqual(breaker.failure_threshold, 3)
        self.assertEqual(breaker.reset_timeout, 5)


class TestRequestBudget(unittest.TestCase):
    def test_unlimited_until_told_otherwise(self) -> None:
        budget = RequestBudget(clock=_Clock())
        for _ in range(10):
            self.assertTrue(budget.try_acquire())

    def test_remaining_requests_are_counted(self) -> None:
        budget = RequestBudget(clock=_Clock())
        budget.update(2, None)
        self.assertTrue(budget.try_acquire())
        self.assertTrue(budget.try_acquire())
        self.assertFalse(budget.try_acquire())

    def test_exhausted_budget_resets_after_retry_after(self) -> None:
        clock = _Clock(1000.0)
        budget = RequestBudget(clock=clock)
        with self.assertLogs("cratematch.throttle", level="WARNING"):
            budget.exhaust(30)
        self.assertFalse(budget.try_acquire())
        self.assertEqual(budget.seconds_until_reset(), 30.0)
        clock.now = 1031.0
        self.assertTrue(budget.try_acquire())
        self.assertEqual(budget.seconds_until_reset(), 0.0)


class TestThrottleChain(unittest.TestCase):
    def test_all_throttles_must_allow(self) -> None:
        clock = _Clock()
        breaker = CircuitBreaker("test", failure_threshold=1, clock=clock)
        chain = ThrottleChain([NoThrottle(), breaker])
        self.assertTrue(chain.try_acquire())
        chain.record_outcome(False)
        self.assertFalse(chain.try_acquire())


if __name__ == "__main__":
    unittest.main()
