from __future__ import annotations
import time
from dataclasses import dataclass

from wagateway.domain.models import RateLimit

@dataclass
class TokenBucket:
    rate: float
    burst: int
    tokens: float
    last: float

    def allow(self, cost: float = 1.0) -> bool:
        now = time.monotonic()
        elapsed = now - self.last
        self.last = now
        self.tokens = min(self.burst, self.tokens + elapsed * self.rate)
        if self.tokens >= cost:
            self.tokens -= cost
            return True
        return False

class RateLimiter:
    """One token bucket per key; ``rate`` is tokens per second."""

    def __init__(self, rate: float, burst: int):
        self.rate = rate
        self.burst = burst
        self._buckets: dict[str, TokenBucket] = {}

    @classmethod
    def per_minute(cls, limit: RateLimit) -> "RateLimiter":
        return cls(rate=limit.messages_per_minute / 60.0, burst=limit.burst_limit)

    def allow(self, key: str, cost: float = 1.0) -> bool:
        b = self._buckets.get(key)
        if b is None:
            b = TokenBucket(rate=self.rate, burst=self.burst, tokens=float(self.burst), last=time.monotonic())
            self._buckets[key] = b
        return b.allow(cost=cost)

    def forget(self, key: str) -> None:
        self._buckets.pop(key, None)
