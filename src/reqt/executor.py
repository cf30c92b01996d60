"""Execution of requests: admission, authorization, sending and retries.

One attempt goes through the states `BUILDING -> AWAITING_SLOT -> AUTH_READY
-> SENT` and ends in `SUCCESS`, `THROTTLED` or `TRANSPORT_FAILURE`. Throttled
attempts are retried by tenacity after a backoff during which the rate limiter
is suspended, so no other request of the connector goes out either.
"""

import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable
from enum import StrEnum

import logfire_api as logfire
import tenacity as t

from .authorization import AuthorizationProvider
from .errors import AuthExpired, HttpStatusError, RetriesExhausted
from .pagination import Page, PageCursor, PaginationEngine, PaginationRule
from .rate_limiter import BaseRateLimiter, RateLimitMode
from .retries import RetryPolicy, Throttled
from .transport import HttpRequest, HttpResponse, Transport

HTTP_UNAUTHORIZED = 401
HTTP_TOO_MANY_REQUESTS = 429


class AttemptState(StrEnum):
    BUILDING = "building"
    AWAITING_SLOT = "awaiting_slot"
    AUTH_READY = "auth_ready"
    SENT = "sent"
    SUCCESS = "success"
    THROTTLED = "throttled"
    TRANSPORT_FAILURE = "transport_failure"


class RequestExecutor:
    """Send requests on behalf of one connector.

    Parameters
    ----------
    transport : Transport
        Async callable sending one `HttpRequest`.
    rate_limiter : BaseRateLimiter
        Limiter shared by every request of the connector.
    authorization : AuthorizationProvider
        Provider of the authorization headers.
    retry_policy : RetryPolicy
        Retry configuration for throttled responses.
    rate_limit_mode : RateLimitMode
        Whether to wait for a send slot or fail immediately.
    items_key : str, optional
        Key of the item list in object response bodies.
    sleep : Callable[[float], Awaitable[None]], optional
        Replacement for `asyncio.sleep` during backoff.
    """

    def __init__(
        self,
        *,
        transport: Transport,
        rate_limiter: BaseRateLimiter,
        authorization: AuthorizationProvider,
        retry_policy: RetryPolicy,
        rate_limit_mode: RateLimitMode = RateLimitMode.AUTOMATIC,
        items_key: str | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        self.transport = transport
        self.rate_limiter = rate_limiter
        self.authorization = authorization
        self.retry_policy = retry_policy
        self.rate_limit_mode = rate_limit_mode
        self.items_key = items_key
        self._sleep = sleep or asyncio.sleep
        self.state = AttemptState.BUILDING

    @logfire.instrument("request_executor.execute")
    async def execute(self, request: HttpRequest) -> HttpResponse:
        """Send `request`, retrying while the server throttles it.

        Returns
        -------
        HttpResponse
            The first successful response.

        Raises
        ------
        RetriesExhausted
            If every allowed attempt was throttled.
        RateLimitExceeded
            In manual mode, when the limiter has no slot available.
        AuthExpired
            If the credentials could not be renewed, or were rejected again
            after a renewal.
        HttpStatusError
            For any other non-success status.
        """
        retrier = self.retry_policy.retrying(
            before_sleep=self._tenacity_before_sleep, sleep=self._sleep
        )
        try:
            return await retrier(self._attempt, request)
        except Throttled as err:
            attempts = self.retry_policy.max_attempts
            logfire.error(
                "request.retries_exhausted",
                method=request.method,
                url=request.url,
                attempts=attempts,
            )
            raise RetriesExhausted(
                f"{request.method} {request.url} still throttled after {attempts} attempts",
                attempts=attempts,
                last_response=err.response,
            ) from err

    def paginate(
        self,
        build: Callable[[PageCursor], HttpRequest],
        rule: PaginationRule,
        cursor: PageCursor,
    ) -> AsyncGenerator[Page, None]:
        """Lazy sequence of pages, each request built from the live cursor."""

        async def fetch(current: PageCursor) -> Page:
            response = await self.execute(build(current))
            return Page.from_response(
                response.body,
                response.headers,
                current,
                self.items_key,
                single_object=rule.single_object,
            )

        return PaginationEngine(rule, cursor, fetch).pages()

    async def _attempt(self, request: HttpRequest) -> HttpResponse:
        response, sent_auth = await self._send(request)

        if response.status_code == HTTP_UNAUTHORIZED and self.authorization.refreshable:
            logfire.warn(
                "request.unauthorized", method=request.method, url=request.url
            )
            self.authorization.invalidate(sent_auth)
            response, _ = await self._send(request)
            if response.status_code == HTTP_UNAUTHORIZED:
                raise AuthExpired(
                    f"{request.method} {request.url} rejected with renewed credentials"
                )

        self.rate_limiter.update_from_headers(response.headers)

        if response.status_code == HTTP_TOO_MANY_REQUESTS:
            self.state = AttemptState.THROTTLED
            logfire.warn(
                "request.throttled",
                method=request.method,
                url=request.url,
                retry_after=response.header("retry-after"),
            )
            raise Throttled(response)

        if not response.is_success:
            raise HttpStatusError(
                f"{request.method} {request.url} failed with status {response.status_code}",
                status_code=response.status_code,
                body=response.body,
            )

        self.state = AttemptState.SUCCESS
        return response

    async def _send(self, request: HttpRequest) -> tuple[HttpResponse, dict[str, str]]:
        self.state = AttemptState.AWAITING_SLOT
        async with self.rate_limiter.throttle(self.rate_limit_mode) as waited:
            auth_headers = await self.authorization.headers()
            self.state = AttemptState.AUTH_READY

            outgoing = request.model_copy(
                update={"headers": {**request.headers, **auth_headers}}
            )
            try:
                response = await self.transport(outgoing)
            except Exception:
                self.state = AttemptState.TRANSPORT_FAILURE
                raise
            self.state = AttemptState.SENT

        logfire.info(
            "request.sent",
            method=request.method,
            url=request.url,
            status_code=response.status_code,
            waited=waited,
        )
        return response, auth_headers

    def _tenacity_before_sleep(self, retry_state: t.RetryCallState) -> None:
        if retry_state.next_action is None:
            return

        delay = retry_state.next_action.sleep
        self.rate_limiter.suspend(delay)
        logfire.warn(
            "request.backoff",
            attempt=retry_state.attempt_number,
            delay=delay,
        )
