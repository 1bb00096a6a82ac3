"""
Authentication Attempt Rate Limiter

Throttles raw login attempts per device and, separately, per source network
address, independent of which identity is being tried. One device cycling
through staff identifiers and one address cycling through device
fingerprints both run out of tokens.

Token bucket algorithm:
- Each key gets a bucket with RATE_LIMIT_ATTEMPTS capacity
- Tokens refill continuously at RATE_LIMIT_ATTEMPTS per RATE_LIMIT_WINDOW_SECONDS
- An attempt consumes one token from the device bucket and the address bucket
- An attempt is rejected when either bucket is empty

CONSISTENCY: Buckets are plain in-memory state with no locking. Under heavy
concurrency a few attempts may be over- or under-counted; this limiter
throttles, the per-pair lockout is the hard boundary. State resets on
process restart.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from typing import Callable


@dataclass
class BucketState:
    """Tracks rate limit state for a single device or address."""

    tokens: float
    last_update: float = field(default_factory=time.monotonic)


class RateLimiter:
    """Token bucket limiter keyed separately on device and source address."""

    # Prune idle buckets every this many checks
    SWEEP_EVERY = 500

    def __init__(
        self,
        max_attempts: int = 10,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._clock = clock
        self._buckets: dict[str, BucketState] = {}
        self._checks = 0
        self.configure(max_attempts, window_seconds)

    def configure(self, max_attempts: int, window_seconds: float) -> None:
        self.max_tokens = float(max_attempts)
        self.refill_rate = float(max_attempts) / float(window_seconds)

    def init_app(self, app) -> None:
        """Read limits from app config and expose the limiter on the app."""
        self.configure(
            app.config["RATE_LIMIT_ATTEMPTS"],
            app.config["RATE_LIMIT_WINDOW_SECONDS"],
        )
        self.reset()
        app.extensions["pinauth_rate_limiter"] = self

    def reset(self) -> None:
        self._buckets = {}
        self._checks = 0

    def _bucket(self, key: str, now: float) -> BucketState:
        state = self._buckets.get(key)
        if state is None:
            state = BucketState(tokens=self.max_tokens, last_update=now)
            self._buckets[key] = state
        return state

    def _refill(self, state: BucketState, now: float) -> None:
        """Refill tokens based on elapsed time."""
        elapsed = max(0.0, now - state.last_update)
        state.tokens = min(self.max_tokens, state.tokens + elapsed * self.refill_rate)
        state.last_update = now

    def _wait_for_token(self, state: BucketState) -> float:
        if state.tokens >= 1:
            return 0.0
        return (1 - state.tokens) / self.refill_rate

    def check(self, device_id: str | None, source_address: str | None) -> tuple[bool, int]:
        """
        Consume one attempt for the device and the address.

        Returns (allowed, retry_after_seconds). retry_after is 0 when allowed.
        Nothing is consumed from either bucket when the attempt is rejected.
        """
        now = self._clock()
        self._checks += 1
        if self._checks % self.SWEEP_EVERY == 0:
            self.sweep(now)

        buckets = [
            self._bucket(f"device:{device_id or 'unknown'}", now),
            self._bucket(f"addr:{source_address or 'unknown'}", now),
        ]
        for state in buckets:
            self._refill(state, now)

        wait = max(self._wait_for_token(state) for state in buckets)
        if wait > 0:
            return False, max(1, int(math.ceil(wait)))

        for state in buckets:
            state.tokens -= 1
        return True, 0

    def allow(self, device_id: str | None, source_address: str | None) -> bool:
        allowed, _ = self.check(device_id, source_address)
        return allowed

    def sweep(self, now: float | None = None) -> int:
        """Drop buckets that have refilled completely. Returns count removed."""
        now = self._clock() if now is None else now
        idle = []
        for key, state in list(self._buckets.items()):
            elapsed = max(0.0, now - state.last_update)
            if state.tokens + elapsed * self.refill_rate >= self.max_tokens:
                idle.append(key)
        for key in idle:
            self._buckets.pop(key, None)
        return len(idle)
