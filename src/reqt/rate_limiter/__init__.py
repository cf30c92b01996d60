"""Rate limiters deciding when a request may be sent.

Provides BaseRateLimiter (abstract base, shared-state registry) and
TokenBucketRateLimiter (capacity per period, manual and automatic modes).
"""

from .base import BaseRateLimiter, RateLimitMode
from .token_bucket import TimePeriod, TokenBucketRateLimiter

__all__ = [
    "BaseRateLimiter",
    "RateLimitMode",
    "TimePeriod",
    "TokenBucketRateLimiter",
]
