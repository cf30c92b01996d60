"""Retry policy for throttled requests."""

import email.utils
import time
from collections.abc import Awaitable, Callable
from datetime import timezone

import tenacity as t
from pydantic import BaseModel, Field

from .settings import REQT_SETTINGS
from .transport import HttpResponse


class RetryPolicy(BaseModel):
    """Configuration for retry behavior on throttled (429) responses.

    Attributes
    ----------
    max_attempts : int
        Maximum number of attempts, the first one included.
    base_delay : float
        Base delay in seconds for exponential backoff.
    max_delay : float | None
        Maximum delay in seconds between attempts, unless the server asks for
        a longer one with `Retry-After`.
    jitter : bool
        Add up to `base_delay` seconds of random jitter on top of the capped
        backoff.
    """

    max_attempts: int = Field(
        default_factory=lambda: REQT_SETTINGS.max_attempts, ge=1
    )
    base_delay: float = Field(
        default_factory=lambda: REQT_SETTINGS.backoff_base_delay, ge=0
    )
    max_delay: float | None = Field(
        default_factory=lambda: REQT_SETTINGS.backoff_max_delay
    )
    jitter: bool = Field(default=True)

    def backoff(self) -> t.wait.wait_base:
        """Exponential backoff used when the server gives no hint."""
        kwargs: dict[str, float] = {"multiplier": self.base_delay, "exp_base": 2}
        if self.max_delay is not None:
            kwargs["max"] = self.max_delay
        wait: t.wait.wait_base = t.wait_exponential(**kwargs)
        if self.jitter and self.base_delay > 0:
            wait = wait + t.wait_random(0, self.base_delay)
        return wait

    def retrying(
        self,
        *,
        before_sleep: Callable[[t.RetryCallState], None] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> t.AsyncRetrying:
        """Build the retrier for one request attempt loop.

        Parameters
        ----------
        before_sleep : Callable[[t.RetryCallState], None], optional
            Hook called with the computed delay before each backoff sleep.
        sleep : Callable[[float], Awaitable[None]], optional
            Replacement for `asyncio.sleep`.
        """
        kwargs = {}
        if sleep is not None:
            kwargs["sleep"] = sleep
        return t.AsyncRetrying(
            stop=t.stop_after_attempt(self.max_attempts),
            wait=wait_retry_after(self.backoff()),
            retry=t.retry_if_exception_type(Throttled),
            before_sleep=before_sleep,
            reraise=True,
            **kwargs,
        )


class Throttled(Exception):
    """Raised inside the retry loop when the server answered 429."""

    def __init__(self, response: HttpResponse):
        super().__init__(f"Throttled with status {response.status_code}")
        self.response = response


class wait_retry_after(t.wait.wait_base):
    """Wait for the server `Retry-After` hint, or fall back to `fallback`."""

    def __init__(self, fallback: t.wait.wait_base):
        self.fallback = fallback

    def __call__(self, retry_state: t.RetryCallState) -> float:
        if retry_state.outcome is not None and retry_state.outcome.failed:
            err = retry_state.outcome.exception()
            if isinstance(err, Throttled):
                delay = parse_retry_after(err.response.header("retry-after"))
                if delay is not None:
                    return delay
        return self.fallback(retry_state)


def parse_retry_after(value: str | None, now: float | None = None) -> float | None:
    """Seconds to wait according to a `Retry-After` header.

    Accepts both a number of seconds and an HTTP date. Returns None when the
    header is missing or unparsable.

    Examples
    --------
    >>> parse_retry_after("2")
    2.0
    >>> parse_retry_after(None) is None
    True
    """
    if value is None:
        return None
    value = value.strip()

    try:
        return max(0.0, float(value))
    except ValueError:
        pass

    try:
        when = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)

    now = time.time() if now is None else now
    return max(0.0, when.timestamp() - now)
