"""Token bucket limiter with manual and automatic admission."""

import asyncio
import time
import uuid
from collections import deque
from collections.abc import Mapping
from enum import StrEnum
from typing import Self, override

import logfire_api as logfire
from pydantic import Field, PrivateAttr

from ..errors import RateLimitExceeded
from .base import BaseRateLimiter, RateLimitMode


class TimePeriod(StrEnum):
    SECOND = "second"
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"

    @property
    def seconds(self) -> float:
        return _PERIOD_SECONDS[self]

    @property
    def limit_header(self) -> str:
        """Response header advertising the server limit for this period."""
        return f"x-{self.value}-ratelimit-limit"


_PERIOD_SECONDS = {
    TimePeriod.SECOND: 1.0,
    TimePeriod.MINUTE: 60.0,
    TimePeriod.HOUR: 3600.0,
    TimePeriod.DAY: 86400.0,
}


class _TokenBucketState:
    """Mutable state shared by every request going through one bucket.

    A consumed token comes back exactly one period after it was taken, so the
    admission log never holds more than `capacity` entries younger than
    `period`.
    """

    capacity: int
    period: float
    admissions: deque[float]
    suspended_until: float
    lock: asyncio.Lock

    def __init__(self, capacity: int, period: float):
        self.capacity = capacity
        self.period = period
        self.admissions = deque()
        self.suspended_until = 0.0
        self.lock = asyncio.Lock()

    def reconcile(self, now: float) -> None:
        while self.admissions and now - self.admissions[0] >= self.period:
            self.admissions.popleft()

    @property
    def tokens(self) -> int:
        return max(0, self.capacity - len(self.admissions))

    def ready_at(self, now: float) -> float:
        ready = max(now, self.suspended_until)
        if self.tokens < 1:
            # The admission whose expiry frees the next token
            oldest_blocking = self.admissions[len(self.admissions) - self.capacity]
            ready = max(ready, oldest_blocking + self.period)
        return ready


@BaseRateLimiter.register("token_bucket")
class TokenBucketRateLimiter(BaseRateLimiter):
    """Admit at most `capacity` requests in any window of `period` seconds.

    In automatic mode callers wait in arrival order for the next token. In
    manual mode `acquire` raises `RateLimitExceeded` instead of waiting.

    Attributes
    ----------
    capacity : int
        Maximum number of requests per period.
    period : float
        Length of the period, in seconds.
    adaptive : bool
        Lower the capacity when the server advertises a stricter limit.
    """

    capacity: int = Field(default=1, ge=1)
    period: float = Field(default=1.0, gt=0)
    adaptive: bool = Field(default=False)

    _state: _TokenBucketState = PrivateAttr()

    @override
    async def acquire(self, mode: RateLimitMode = RateLimitMode.AUTOMATIC) -> float:
        if mode == RateLimitMode.MANUAL:
            self._acquire_now()
            return 0.0

        start_time = time.monotonic()
        async with self._state.lock:
            while True:
                now = time.monotonic()
                self._state.reconcile(now)
                ready_at = self._state.ready_at(now)
                if ready_at <= now:
                    self._state.admissions.append(now)
                    return now - start_time
                await asyncio.sleep(ready_at - now)

    def _acquire_now(self) -> None:
        now = time.monotonic()
        self._state.reconcile(now)
        ready_at = self._state.ready_at(now)

        # Queued automatic waiters own the next tokens
        if self._state.lock.locked() or ready_at > now:
            raise RateLimitExceeded(
                f"Rate limit of {self._state.capacity} requests per "
                f"{self._state.period:g}s exceeded",
                retry_after=max(0.0, ready_at - now),
            )

        self._state.admissions.append(now)

    @override
    def suspend(self, delay: float) -> None:
        until = time.monotonic() + max(0.0, delay)
        if until > self._state.suspended_until:
            self._state.suspended_until = until
            logfire.info("rate_limiter.suspended", limiter_id=self.id, delay=delay)

    @override
    def update_from_headers(self, headers: Mapping[str, str]) -> None:
        if not self.adaptive:
            return

        for period in TimePeriod:
            raw = headers.get(period.limit_header)
            if raw is None:
                continue
            try:
                limit = int(float(raw))
            except ValueError:
                return
            if limit < 1:
                return

            current_rate = self._state.capacity / self._state.period
            if limit / period.seconds < current_rate:
                self._state.capacity = limit
                self._state.period = period.seconds
                logfire.info(
                    "rate_limiter.adapted",
                    limiter_id=self.id,
                    capacity=limit,
                    period=period.seconds,
                )
            return

    @property
    def available_tokens(self) -> int:
        """Tokens that could be consumed right now, ignoring suspension."""
        self._state.reconcile(time.monotonic())
        return self._state.tokens

    @property
    def effective_capacity(self) -> int:
        return self._state.capacity

    @property
    def effective_period(self) -> float:
        return self._state.period

    @override
    def initialize_state(self, existing: Self | None = None) -> None:  # pyright: ignore[reportIncompatibleMethodOverride]
        if existing is None:
            self._state = _TokenBucketState(self.capacity, self.period)
        else:
            self._state = existing._state

    @classmethod
    def from_period(
        cls,
        limit: int,
        period: TimePeriod = TimePeriod.SECOND,
        *,
        adaptive: bool = False,
        id: str | None = None,
    ) -> "TokenBucketRateLimiter":
        """Create a limiter admitting `limit` requests per `period`.

        Raises
        ------
        ValueError
            If limit is less than or equal to 0.
        """
        if limit <= 0:
            raise ValueError("Limit must be greater than 0")

        return cls(
            capacity=limit,
            period=period.seconds,
            adaptive=adaptive,
            id=id or str(uuid.uuid4()),
        )

    @classmethod
    def from_rpm(cls, rpm: int, *, id: str | None = None) -> "TokenBucketRateLimiter":
        """Create a limiter from a requests-per-minute budget."""
        if rpm <= 0:
            raise ValueError("RPM must be greater than 0")

        return cls.from_period(rpm, TimePeriod.MINUTE, id=id)
