"""Rate limiter base classes and the shared-state registry.

Every request issued through one `Api` goes through the same limiter. Limiters
created with the same id and the same configuration (for instance after a
connector was dumped to JSON and validated back) share their internal state,
so admission stays consistent across copies.
"""

import operator
import os
import threading
import uuid
import warnings
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator, Mapping
from contextlib import asynccontextmanager
from enum import StrEnum
from typing import Any, ClassVar, Self, override
from weakref import WeakSet

from pydantic import ConfigDict, Field

from ..discriminated import Discriminated, discriminated_base

REQT_DISABLE_DUPLICATE_RATE_LIMITERS_WARNINGS = os.environ.get(
    "REQT_DISABLE_DUPLICATE_RATE_LIMITERS_WARNINGS", ""
).lower() in ("true", "1", "yes")


class RateLimitMode(StrEnum):
    """How a limiter reacts when no token is available."""

    AUTOMATIC = "automatic"
    MANUAL = "manual"


class RateLimiterRegistry:
    """Index of live limiters by id, used to hand out shared state."""

    _lock: threading.Lock
    _instances: dict[str, WeakSet["BaseRateLimiter"]]

    def __init__(self):
        self._lock = threading.Lock()
        self._instances = {}

    def register_instance(self, rate_limiter: "BaseRateLimiter") -> None:
        """Register a limiter and initialize its state.

        The state of an existing instance with the same id and configuration is
        reused; otherwise the limiter creates fresh state.

        Parameters
        ----------
        rate_limiter : BaseRateLimiter
            The limiter being constructed.
        """
        with self._lock:
            instances = self._instances.setdefault(
                rate_limiter.id, WeakSet["BaseRateLimiter"]()
            )
            alive = list(instances)
            match = next((other for other in alive if other == rate_limiter), None)
            rate_limiter.initialize_state(match)

            if (
                match is None
                and alive
                and not REQT_DISABLE_DUPLICATE_RATE_LIMITERS_WARNINGS
            ):
                warnings.warn(
                    (
                        f"Rate limiter with id '{rate_limiter.id}' already registered "
                        "with a different configuration, "
                        f"BaseRateLimiter.from_id('{rate_limiter.id}') is ambiguous. "
                        "Set REQT_DISABLE_DUPLICATE_RATE_LIMITERS_WARNINGS=1 to disable this warning"
                    ),
                    RuntimeWarning,
                )

            instances.add(rate_limiter)

    def get_instance(self, id: str) -> "BaseRateLimiter":
        """Return a live limiter registered under `id`.

        Raises
        ------
        ValueError
            If no limiter with this id is alive.
        """
        with self._lock:
            instances = self._instances.get(id)
            if not instances:
                raise ValueError(f"Rate limiter with id '{id}' not found")
            return next(iter(instances))


@discriminated_base
class BaseRateLimiter(Discriminated, ABC):
    """Admission control shared by all requests of a connector.

    Subclasses implement `acquire`, `suspend` and `initialize_state`.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)
    _registry: ClassVar[RateLimiterRegistry] = RateLimiterRegistry()

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))

    @override
    def model_post_init(self, context: Any, /) -> None:
        self._registry.register_instance(self)
        super().model_post_init(context)

    @abstractmethod
    async def acquire(self, mode: RateLimitMode = RateLimitMode.AUTOMATIC) -> float:
        """Take one send slot.

        Parameters
        ----------
        mode : RateLimitMode
            `AUTOMATIC` waits for the next slot, `MANUAL` fails immediately.

        Returns
        -------
        float
            Seconds spent waiting for the slot.

        Raises
        ------
        RateLimitExceeded
            In manual mode, when no slot is available right now.
        """

    @abstractmethod
    def suspend(self, delay: float) -> None:
        """Hold every admission for `delay` seconds (server throttling)."""

    def update_from_headers(self, headers: Mapping[str, str]) -> None:
        """React to rate-limit information advertised by the server."""

    @asynccontextmanager
    async def throttle(
        self, mode: RateLimitMode = RateLimitMode.AUTOMATIC
    ) -> AsyncGenerator[float, None]:
        """Async context manager form of `acquire`, yields the time waited."""
        yield await self.acquire(mode)

    def initialize_state(self, existing: Self | None = None) -> None:
        """Create internal state, or share the state of a matching instance."""

    @classmethod
    def from_id(cls, id: str) -> "BaseRateLimiter":
        """Retrieve a live limiter by id."""
        return cls._registry.get_instance(id)

    @override
    def __eq__(self, other: object) -> bool:
        # Configuration equality only; the registry compares instances before
        # the newcomer has any state.
        if not isinstance(other, type(self)):
            return False

        fields = type(self).model_fields
        getter = operator.itemgetter(*fields)
        try:
            return getter(self.__dict__) == getter(other.__dict__)
        except KeyError:
            return False

    def __hash__(self) -> int:
        return hash((type(self), self.id))

    def __deepcopy__(self, memo: dict[int, Any] | None = None) -> Self:
        return self
