"""Connector to a REST API, holding everything shared by its requests."""

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Self

from pydantic import BaseModel, Field, PrivateAttr, SecretStr

from .authorization import (
    ApiKeyAuthorization,
    AuthorizationProvider,
    BasicAuthorization,
    BearerAuthorization,
    NoAuthorization,
)
from .executor import RequestExecutor
from .pagination import PaginationRule
from .policies import FilterRule, Policies, RangeRule, SortOrder, SortRule
from .rate_limiter import (
    BaseRateLimiter,
    RateLimitMode,
    TimePeriod,
    TokenBucketRateLimiter,
)
from .retries import RetryPolicy
from .settings import REQT_SETTINGS
from .transport import HttpMethod, HttpxTransport, Transport

if TYPE_CHECKING:
    from .request import Request


class Api(BaseModel):
    """Long-lived connector to one REST API.

    Copies of a connector share its rate limiter and its authorization state,
    so every request issued through any copy counts against the same budget
    and uses the same token.

    Attributes
    ----------
    base_url : str
        Base URL that request routes are joined to.
    policies : Policies
        Default pagination, filter, sort and range rules.
    authorization : AuthorizationProvider
        Provider of the authorization headers.
    rate_limiter : BaseRateLimiter
        Admission control shared by all requests.
    retry_policy : RetryPolicy
        Retry configuration for throttled responses.
    rate_limit_mode : RateLimitMode
        Wait for a send slot (automatic) or fail immediately (manual).
    page_size : int
        Number of items requested per page.
    items_key : str, optional
        Key of the item list in object response bodies.
    headers : dict[str, str]
        Static headers added to every request.
    transport : Transport, optional
        Async callable sending requests. Defaults to an httpx transport.

    Examples
    --------
    >>> api = Api(base_url="https://api.example.com/v1").sort("created_at")
    >>> users = await api.get("users").with_pagination(Fixed(3)).send()
    """

    base_url: str
    policies: Policies = Field(default_factory=Policies.defaults)
    authorization: AuthorizationProvider = Field(default_factory=NoAuthorization)
    rate_limiter: BaseRateLimiter = Field(default_factory=TokenBucketRateLimiter)
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    rate_limit_mode: RateLimitMode = Field(default=RateLimitMode.AUTOMATIC)
    page_size: int = Field(
        default_factory=lambda: REQT_SETTINGS.default_page_size, gt=0
    )
    items_key: str | None = Field(default=None)
    headers: dict[str, str] = Field(default_factory=dict)
    transport: Transport | None = Field(default=None, exclude=True)

    _default_transport: HttpxTransport | None = PrivateAttr(default=None)

    def url_for(self, route: str) -> str:
        if route.startswith(("http://", "https://")):
            return route
        return f"{self.base_url.rstrip('/')}/{route.lstrip('/')}"

    def request(self, method: HttpMethod, route: str) -> "Request":
        from .request import Request

        return Request(api=self, method=method, route=route)

    def get(self, route: str) -> "Request":
        return self.request("GET", route)

    def post(self, route: str) -> "Request":
        return self.request("POST", route)

    def put(self, route: str) -> "Request":
        return self.request("PUT", route)

    def patch(self, route: str) -> "Request":
        return self.request("PATCH", route)

    def delete(self, route: str) -> "Request":
        return self.request("DELETE", route)

    def executor(
        self, *, sleep: Callable[[float], Awaitable[None]] | None = None
    ) -> RequestExecutor:
        """Build an executor sending requests with this connector's resources."""
        return RequestExecutor(
            transport=self._resolve_transport(),
            rate_limiter=self.rate_limiter,
            authorization=self.authorization,
            retry_policy=self.retry_policy,
            rate_limit_mode=self.rate_limit_mode,
            items_key=self.items_key,
            sleep=sleep,
        )

    def _resolve_transport(self) -> Transport:
        if self.transport is not None:
            return self.transport
        if self._default_transport is None:
            self._default_transport = HttpxTransport()
        return self._default_transport

    async def aclose(self) -> None:
        """Close the default transport, if it was ever opened."""
        if self._default_transport is not None:
            await self._default_transport.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def with_policies(self, **updates: Any) -> Self:
        """Return a copy with some default rules replaced."""
        policies = self.policies.model_copy(update=updates)
        return self.model_copy(update={"policies": policies})

    def with_pagination(self, pagination: PaginationRule) -> Self:
        return self.with_policies(pagination=pagination)

    def filter(self, property: str, values: Any) -> Self:
        """Add a default filter, replacing any filter on the same key."""
        rule = self.policies.filter or FilterRule()
        return self.with_policies(filter=rule.filter(property, values))

    def filter_with(self, property: str, operator: str, values: Any) -> Self:
        rule = self.policies.filter or FilterRule()
        return self.with_policies(filter=rule.filter_with(property, operator, values))

    def sort(self, property: str) -> Self:
        rule = self.policies.sort or SortRule()
        return self.with_policies(sort=rule.sort(property))

    def sort_with(self, property: str, order: SortOrder) -> Self:
        rule = self.policies.sort or SortRule()
        return self.with_policies(sort=rule.sort_with(property, order))

    def range(self, property: str, min: Any, max: Any) -> Self:
        rule = self.policies.range or RangeRule()
        return self.with_policies(range=rule.range(property, min, max))

    def with_authorization(self, authorization: AuthorizationProvider) -> Self:
        return self.model_copy(update={"authorization": authorization})

    def with_rate_limit(
        self,
        limit: int,
        period: TimePeriod = TimePeriod.SECOND,
        *,
        adaptive: bool = False,
    ) -> Self:
        """Return a copy using a new limiter of `limit` requests per `period`."""
        limiter = TokenBucketRateLimiter.from_period(limit, period, adaptive=adaptive)
        return self.model_copy(update={"rate_limiter": limiter})

    def with_rate_limit_mode(self, mode: RateLimitMode) -> Self:
        return self.model_copy(update={"rate_limit_mode": mode})

    def with_retries(
        self,
        max_attempts: int,
        *,
        base_delay: float | None = None,
        max_delay: float | None = None,
    ) -> Self:
        """Create a new connector with an updated retry policy.

        Parameters
        ----------
        max_attempts : int
            Maximum number of attempts on throttled responses.
        base_delay : float | None
            Base delay in seconds for exponential backoff. If None, preserves existing value.
        max_delay : float | None
            Maximum delay in seconds between attempts. If None, preserves existing value.
        """
        update: dict[str, Any] = {"max_attempts": max_attempts}
        if base_delay is not None:
            update["base_delay"] = base_delay
        if max_delay is not None:
            update["max_delay"] = max_delay

        policy = RetryPolicy.model_validate(
            {**self.retry_policy.model_dump(), **update}
        )
        return self.model_copy(update={"retry_policy": policy})

    def with_transport(self, transport: Transport) -> Self:
        return self.model_copy(update={"transport": transport})


class ApiBuilder:
    """Step-by-step configuration of an `Api`, validated on `build`.

    Examples
    --------
    >>> api = (
    ...     ApiBuilder("https://api.example.com/v1")
    ...     .bearer("s3cr3t")
    ...     .rate_limit(10, TimePeriod.SECOND)
    ...     .pagination(Exhaustive())
    ...     .build()
    ... )
    """

    def __init__(self, base_url: str):
        self._config: dict[str, Any] = {"base_url": base_url}
        self._policies: dict[str, Any] = {}

    def base_url(self, base_url: str) -> Self:
        self._config["base_url"] = base_url
        return self

    def authorization(self, authorization: AuthorizationProvider) -> Self:
        self._config["authorization"] = authorization
        return self

    def basic(self, username: str, password: str) -> Self:
        return self.authorization(
            BasicAuthorization(username=username, password=SecretStr(password))
        )

    def bearer(self, token: str) -> Self:
        return self.authorization(BearerAuthorization(token=SecretStr(token)))

    def api_key(self, key: str, *, header_name: str = "X-API-Key") -> Self:
        return self.authorization(
            ApiKeyAuthorization(key=SecretStr(key), header_name=header_name)
        )

    def rate_limit(
        self,
        limit: int,
        period: TimePeriod = TimePeriod.SECOND,
        *,
        adaptive: bool = False,
    ) -> Self:
        self._config["rate_limiter"] = {
            "kind": "token_bucket",
            "capacity": limit,
            "period": period.seconds,
            "adaptive": adaptive,
        }
        return self

    def rate_limiter(self, rate_limiter: BaseRateLimiter) -> Self:
        self._config["rate_limiter"] = rate_limiter
        return self

    def rate_limit_mode(self, mode: RateLimitMode) -> Self:
        self._config["rate_limit_mode"] = mode
        return self

    def retries(
        self,
        max_attempts: int,
        *,
        base_delay: float | None = None,
        max_delay: float | None = None,
        jitter: bool | None = None,
    ) -> Self:
        policy: dict[str, Any] = {"max_attempts": max_attempts}
        if base_delay is not None:
            policy["base_delay"] = base_delay
        if max_delay is not None:
            policy["max_delay"] = max_delay
        if jitter is not None:
            policy["jitter"] = jitter
        self._config["retry_policy"] = policy
        return self

    def pagination(self, pagination: PaginationRule) -> Self:
        self._policies["pagination"] = pagination
        return self

    def filter_rule(self, rule: FilterRule) -> Self:
        self._policies["filter"] = rule
        return self

    def sort_rule(self, rule: SortRule) -> Self:
        self._policies["sort"] = rule
        return self

    def range_rule(self, rule: RangeRule) -> Self:
        self._policies["range"] = rule
        return self

    def page_size(self, page_size: int) -> Self:
        self._config["page_size"] = page_size
        return self

    def items_key(self, items_key: str) -> Self:
        self._config["items_key"] = items_key
        return self

    def header(self, name: str, value: str) -> Self:
        self._config.setdefault("headers", {})[name] = value
        return self

    def transport(self, transport: Transport) -> Self:
        self._config["transport"] = transport
        return self

    def build(self) -> Api:
        """Validate the configuration and create the connector.

        Raises
        ------
        pydantic.ValidationError
            If any setting is invalid, e.g. a zero page size or rate limit.
        """
        policies = Policies.defaults().model_copy(update=self._policies)
        return Api.model_validate({**self._config, "policies": policies})
