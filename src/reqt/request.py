"""Per-call request built from an `Api`."""

from collections.abc import AsyncGenerator, AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, Self

import logfire_api as logfire
from pydantic import BaseModel, Field

from .connector import Api
from .pagination import OneShot, Page, PageCursor, PaginationRule
from .policies import (
    FilterRule,
    Policies,
    PolicyComposer,
    RangeRule,
    SortOrder,
    SortRule,
)
from .transport import BODY_METHODS, HttpMethod, HttpRequest

PageGenerator = AsyncGenerator[Page, None]


class Request(BaseModel):
    """A request to one route of an `Api`.

    Any of the pagination, filter, sort and range rule sets can be overridden.
    An override replaces the connector default for that dimension entirely:
    `filter()` on a request starts a new rule set instead of extending the
    connector's.

    Attributes
    ----------
    api : Api
        Connector the request is sent through.
    method : HttpMethod
        HTTP method.
    route : str
        Route joined to the connector base URL.
    overrides : Policies
        Rule sets replacing the connector defaults, `None` meaning default.
    body : Any
        JSON body, only kept for POST, PUT and PATCH.
    params : list[tuple[str, str]]
        Extra query parameters, emitted after the composed ones.
    headers : dict[str, str]
        Extra headers for this request.
    page_size : int, optional
        Page size overriding the connector's.
    """

    api: Api
    method: HttpMethod = "GET"
    route: str
    overrides: Policies = Field(default_factory=Policies)
    body: Any = None
    params: list[tuple[str, str]] = Field(default_factory=list)
    headers: dict[str, str] = Field(default_factory=dict)
    page_size: int | None = Field(default=None, gt=0)

    def _with_override(self, **updates: Any) -> Self:
        overrides = self.overrides.model_copy(update=updates)
        return self.model_copy(update={"overrides": overrides})

    def with_pagination(self, pagination: PaginationRule) -> Self:
        return self._with_override(pagination=pagination)

    def with_filter(self, rule: FilterRule) -> Self:
        """Replace the connector filters with `rule`, e.g. `FilterRule()` for none."""
        return self._with_override(filter=rule)

    def with_sort(self, rule: SortRule) -> Self:
        return self._with_override(sort=rule)

    def with_range(self, rule: RangeRule) -> Self:
        return self._with_override(range=rule)

    def _filter_override(self) -> FilterRule:
        if self.overrides.filter is not None:
            return self.overrides.filter
        default = self.api.policies.filter or FilterRule()
        return FilterRule(
            pattern=default.pattern, operator_pattern=default.operator_pattern
        )

    def _sort_override(self) -> SortRule:
        if self.overrides.sort is not None:
            return self.overrides.sort
        default = self.api.policies.sort or SortRule()
        return default.model_copy(update={"sorts": []})

    def _range_override(self) -> RangeRule:
        if self.overrides.range is not None:
            return self.overrides.range
        default = self.api.policies.range or RangeRule()
        return RangeRule(pattern=default.pattern)

    def filter(self, property: str, values: Any) -> Self:
        return self.with_filter(self._filter_override().filter(property, values))

    def filter_with(self, property: str, operator: str, values: Any) -> Self:
        rule = self._filter_override().filter_with(property, operator, values)
        return self.with_filter(rule)

    def sort(self, property: str) -> Self:
        return self.with_sort(self._sort_override().sort(property))

    def sort_with(self, property: str, order: SortOrder) -> Self:
        return self.with_sort(self._sort_override().sort_with(property, order))

    def range(self, property: str, min: Any, max: Any) -> Self:
        return self.with_range(self._range_override().range(property, min, max))

    def with_body(self, body: Any) -> Self:
        """Set the JSON body. Ignored for methods without a body."""
        if self.method not in BODY_METHODS:
            return self
        return self.model_copy(update={"body": body})

    def with_query(self, name: str, value: Any) -> Self:
        return self.model_copy(update={"params": [*self.params, (name, str(value))]})

    def with_header(self, name: str, value: str) -> Self:
        return self.model_copy(update={"headers": {**self.headers, name: value}})

    def with_page_size(self, page_size: int) -> Self:
        return self.model_copy(update={"page_size": page_size})

    @property
    def pagination(self) -> PaginationRule:
        """Effective pagination rule."""
        return self.overrides.pagination or self.api.policies.pagination or OneShot()

    def cursor(self) -> PageCursor:
        return PageCursor(page_size=self.page_size or self.api.page_size)

    def build(self, cursor: PageCursor) -> HttpRequest:
        """Materialize the request for the page `cursor` points to.

        Authorization headers are added by the executor when the request is
        actually sent.
        """
        headers = {**self.api.headers, **self.headers}
        json_body = None
        if self.method in BODY_METHODS and self.body is not None:
            headers.setdefault("Content-Type", "application/json")
            json_body = self.body

        params = PolicyComposer.compose(self.api.policies, self.overrides, cursor)
        return HttpRequest(
            method=self.method,
            url=self.api.url_for(self.route),
            headers=headers,
            params=[*params, *self.params],
            json_body=json_body,
        )

    @asynccontextmanager
    async def pages(
        self, *, sleep: Callable[[float], Awaitable[None]] | None = None
    ) -> AsyncIterator[PageGenerator]:
        """Create an async context for iterating result pages.

        Pages are fetched lazily, leaving the context early stops fetching.

        Yields
        ------
        PageGenerator
            An async generator producing `Page` instances.
        """
        executor = self.api.executor(sleep=sleep)
        agen = executor.paginate(self.build, self.pagination, self.cursor())
        try:
            yield agen
        finally:
            await agen.aclose()

    @logfire.instrument("request.send")
    async def send(self) -> list[Any]:
        """Fetch every page allowed by the pagination rule.

        Returns
        -------
        list[Any]
            Items of all pages, in page order. Empty for a response without
            body; with `OneShot`, a single resource body is the only item.

        Raises
        ------
        RetriesExhausted
            If the server kept throttling one of the pages.
        PaginationError
            If a response carried no item list or malformed metadata.
        """
        items: list[Any] = []
        async with self.pages() as pages:
            async for page in pages:
                items.extend(page.items)
        return items

    @logfire.instrument("request.send_once")
    async def send_once(self) -> Any:
        """Send one request for the first page and return the decoded body as is."""
        response = await self.api.executor().execute(self.build(self.cursor()))
        return response.body
