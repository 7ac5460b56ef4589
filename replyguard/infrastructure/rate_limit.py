"""
Token Bucket - Pacing for Publish API Calls
===========================================

Blocking token bucket used by the publication service before each call to
the publisher. The reconciliation loop never waits on it.

USAGE:
    bucket = TokenBucket(rate_per_second=0.5, burst=1)
    for review in approved:
        bucket.acquire()
        publisher.publish_reply(...)
"""

import logging
import threading
import time
from typing import Callable

logger = logging.getLogger(__name__)


class TokenBucket:
    """
    Refills `rate_per_second` tokens per second up to `burst` tokens.

    `clock` and `sleep` are injectable so tests can drive time by hand.
    """

    def __init__(
        self,
        rate_per_second: float,
        burst: int = 1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if rate_per_second <= 0:
            raise ValueError("rate_per_second must be positive")
        if burst < 1:
            raise ValueError("burst must be at least 1")

        self.rate = float(rate_per_second)
        self.capacity = float(burst)
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(burst)
        self._updated = clock()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
        self._updated = now

    def try_acquire(self) -> bool:
        """Take a token if one is available, without waiting."""
        with self._lock:
            self._refill()
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True
            return False

    def acquire(self) -> float:
        """
        Take a token, sleeping until one is available.

        Returns:
            Total seconds waited.
        """
        waited = 0.0
        while True:
            with self._lock:
                self._refill()
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return waited
                wait = (1.0 - self._tokens) / self.rate

            logger.debug(f"Rate limit: waiting {wait:.2f}s for a publish token")
            self._sleep(wait)
            waited += wait
