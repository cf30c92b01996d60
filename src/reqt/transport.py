"""Outbound and inbound HTTP shapes, and the httpx-backed transport."""

from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Literal, Self

import httpx
import logfire_api as logfire
from pydantic import BaseModel, Field, field_validator

from .errors import TransportError
from .settings import REQT_SETTINGS

HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]
BODY_METHODS: frozenset[str] = frozenset({"POST", "PUT", "PATCH"})


class HttpRequest(BaseModel):
    """A fully materialized request, ready to be sent.

    Attributes
    ----------
    method : HttpMethod
        HTTP method.
    url : str
        Absolute URL without query string.
    headers : dict[str, str]
        Request headers, authorization included.
    params : list[tuple[str, str]]
        Query parameters in emission order.
    json_body : Any, optional
        JSON payload, only set for POST, PUT and PATCH.
    """

    method: HttpMethod = "GET"
    url: str
    headers: dict[str, str] = Field(default_factory=dict)
    params: list[tuple[str, str]] = Field(default_factory=list)
    json_body: Any = None

    def param(self, name: str) -> str | None:
        """Last value of the query parameter `name`."""
        value = None
        for key, param_value in self.params:
            if key == name:
                value = param_value
        return value


class HttpResponse(BaseModel):
    """A received response. Header names are lowercased."""

    status_code: int
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = None

    @field_validator("headers", mode="before")
    @classmethod
    def _lowercase_headers(cls, value: Any) -> Any:
        if isinstance(value, Mapping):
            return {str(key).lower(): str(val) for key, val in value.items()}
        return value

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


Transport = Callable[[HttpRequest], Awaitable[HttpResponse]]
"""Sends one request and returns the response. May raise."""


class HttpxTransport:
    """Transport backed by an `httpx.AsyncClient`.

    The client is created on first use and reused until `aclose`. An existing
    client can be passed in, for instance one built on `httpx.MockTransport`.

    Examples
    --------
    >>> async with HttpxTransport() as transport:
    ...     response = await transport(HttpRequest(url="https://api.example.com/users"))
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        timeout: float | None = None,
    ):
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout if timeout is not None else REQT_SETTINGS.http_timeout

    @property
    def client(self) -> httpx.AsyncClient:
        """The underlying client.

        A client created by the transport is recreated after `aclose`. A client
        passed in by the caller is never replaced.

        Raises
        ------
        TransportError
            If the client passed in by the caller has been closed.
        """
        if self._client is not None and self._client.is_closed:
            if not self._owns_client:
                raise TransportError("The httpx client given to the transport is closed")
            self._client = None
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def __call__(self, request: HttpRequest) -> HttpResponse:
        try:
            response = await self.client.request(
                request.method,
                request.url,
                params=request.params,
                headers=request.headers,
                json=request.json_body if request.method in BODY_METHODS else None,
            )
        except httpx.HTTPError as err:
            logfire.warn(
                "transport.failed",
                method=request.method,
                url=request.url,
                error=str(err),
            )
            raise TransportError(
                f"{request.method} {request.url} failed: {err}"
            ) from err

        return HttpResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            body=_decode_body(response),
        )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


def _decode_body(response: httpx.Response) -> Any:
    if not response.content:
        return None

    content_type = response.headers.get("content-type", "")
    if "json" in content_type:
        try:
            return response.json()
        except ValueError as err:
            raise TransportError(
                f"Response declared {content_type} but is not valid JSON"
            ) from err
    return response.text
