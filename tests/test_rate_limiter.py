from __future__ import annotations

from orbitagent.core.rate_limiter import RateLimiter


def test_check_allows_until_full_then_reports_wait(fake_clock):
    limiter = RateLimiter(2, 60_000, clock=fake_clock)
    assert limiter.check().allowed is True

    limiter.acquire()
    fake_clock.advance_ms(10_000)
    limiter.acquire()

    result = limiter.check()
    assert result.allowed is False
    assert result.wait_ms == 50_000


def test_check_does_not_consume(fake_clock):
    limiter = RateLimiter(1, 1_000, clock=fake_clock)
    for _ in range(5):
        assert limiter.check().allowed is True
    assert limiter.get_count() == 0


def test_acquire_sleeps_for_wait_when_window_full(fake_clock):
    slept: list[float] = []

    def fake_sleep(seconds: float) -> None:
        slept.append(seconds)
        # real sleeps overshoot slightly
        fake_clock.now += seconds + 0.001

    limiter = RateLimiter(2, 60_000, clock=fake_clock, sleep=fake_sleep)
    limiter.acquire()
    limiter.acquire()
    assert slept == []

    limiter.acquire()
    assert slept == [60.0]
    assert limiter.get_count() == 1


def test_entries_older_than_window_are_pruned(fake_clock):
    limiter = RateLimiter(3, 1_000, clock=fake_clock)
    limiter.acquire()
    limiter.acquire()
    assert limiter.get_count() == 2

    fake_clock.advance_ms(1_000)
    # exactly window_ms old is still inside the window
    assert limiter.get_count() == 2

    fake_clock.advance_ms(1)
    assert limiter.get_count() == 0


def test_reset_clears_window(fake_clock):
    limiter = RateLimiter(1, 60_000, clock=fake_clock)
    limiter.acquire()
    assert limiter.check().allowed is False
    limiter.reset()
    assert limiter.check().allowed is True
