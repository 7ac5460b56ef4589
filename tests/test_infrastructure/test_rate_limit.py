"""
Tests for the token bucket, driven by a fake clock.
"""

import pytest

from replyguard.infrastructure.rate_limit import TokenBucket


class FakeClock:
    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def test_burst_tokens_are_available_immediately():
    clock = FakeClock()
    bucket = TokenBucket(rate_per_second=1.0, burst=2, clock=clock, sleep=clock.sleep)

    assert bucket.acquire() == 0.0
    assert bucket.acquire() == 0.0
    assert clock.sleeps == []


def test_acquire_waits_for_refill():
    clock = FakeClock()
    bucket = TokenBucket(rate_per_second=0.5, burst=1, clock=clock, sleep=clock.sleep)

    bucket.acquire()
    waited = bucket.acquire()

    assert waited == pytest.approx(2.0)
    assert sum(clock.sleeps) == pytest.approx(2.0)


def test_try_acquire_does_not_wait():
    clock = FakeClock()
    bucket = TokenBucket(rate_per_second=1.0, burst=1, clock=clock, sleep=clock.sleep)

    assert bucket.try_acquire() is True
    assert bucket.try_acquire() is False
    clock.now += 1.0
    assert bucket.try_acquire() is True


def test_tokens_never_exceed_burst():
    clock = FakeClock()
    bucket = TokenBucket(rate_per_second=10.0, burst=2, clock=clock, sleep=clock.sleep)

    clock.now += 60.0
    assert bucket.try_acquire() is True
    assert bucket.try_acquire() is True
    assert bucket.try_acquire() is False


@pytest.mark.parametrize("rate,burst", [(0, 1), (-1, 1), (1, 0)])
def test_invalid_configuration(rate, burst):
    with pytest.raises(ValueError):
        TokenBucket(rate_per_second=rate, burst=burst)
