"""Unit tests for rolling-window start admission."""
import threading

import pytest

from inbox_buckets.services.rate_limiter import StartRateLimiter


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def test_admits_up_to_limit_then_reports_wait():
    clock = FakeClock()
    limiter = StartRateLimiter(3, 1.0, clock=clock, sleep=clock.sleep)
    assert [limiter.try_acquire()[0] for _ in range(3)] == [True, True, True]
    assert limiter.try_acquire() == (False, 1.0)
    clock.now = 0.4
    admitted, wait_s = limiter.try_acquire()
    assert admitted is False
    assert wait_s == pytest.approx(0.6)


def test_window_rolls_over():
    clock = FakeClock()
    limiter = StartRateLimiter(2, 1.0, clock=clock, sleep=clock.sleep)
    assert limiter.try_acquire()[0]
    clock.now = 0.5
    assert limiter.try_acquire()[0]
    assert not limiter.try_acquire()[0]
    clock.now = 1.0
    # first start has left the window; second has not
    assert limiter.try_acquire()[0]
    assert not limiter.try_acquire()[0]


def test_acquire_spreads_starts_over_windows():
    clock = FakeClock()
    limiter = StartRateLimiter(3, 1.0, clock=clock, sleep=clock.sleep)
    starts = []
    for _ in range(7):
        assert limiter.acquire()
        starts.append(clock.now)
    assert starts == [0.0, 0.0, 0.0, 1.0, 1.0, 1.0, 2.0]


def test_never_more_than_limit_in_any_window():
    clock = FakeClock()
    limiter = StartRateLimiter(4, 0.5, clock=clock, sleep=clock.sleep)
    starts = []
    for _ in range(25):
        limiter.acquire()
        starts.append(clock.now)
    for t in starts:
        assert sum(1 for s in starts if t <= s < t + 0.5) <= 4


def test_acquire_returns_false_when_cancelled():
    limiter = StartRateLimiter(1, 60.0)
    event = threading.Event()
    assert limiter.acquire(event)
    event.set()
    assert limiter.acquire(event) is False


def test_cancel_interrupts_wait():
    limiter = StartRateLimiter(1, 60.0)
    event = threading.Event()
    assert limiter.acquire(event)
    timer = threading.Timer(0.05, event.set)
    timer.start()
    try:
        assert limiter.acquire(event) is False
    finally:
        timer.cancel()


@pytest.mark.parametrize("max_starts,window_s", [(0, 1.0), (1, 0), (2, -1.0)])
def test_rejects_invalid_settings(max_starts, window_s):
    with pytest.raises(ValueError):
        StartRateLimiter(max_starts, window_s)
