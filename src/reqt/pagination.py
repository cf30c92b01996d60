"""Pagination rules and the engine traversing pages.

A `PaginationRule` decides which query parameters select a page and when the
traversal stops. The `PaginationEngine` drives the page-by-page sequence
through a fetch callable supplied by the executor.
"""

import math
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator, Awaitable, Callable, Mapping
from enum import StrEnum
from typing import Any, ClassVar, override

import logfire_api as logfire
from pydantic import BaseModel, Field

from .discriminated import Discriminated, discriminated_base
from .errors import PaginationError
from .settings import REQT_SETTINGS

DEFAULT_ITEMS_KEYS: tuple[str, ...] = ("data", "items", "results")


class PageCursor(BaseModel):
    """Position of one pagination loop. Owned by that loop only."""

    current_page: int = Field(default=1, ge=1)
    page_size: int = Field(
        default_factory=lambda: REQT_SETTINGS.default_page_size, gt=0
    )

    def advance(self) -> None:
        self.current_page += 1


class Page(BaseModel):
    """One page of results.

    Attributes
    ----------
    items : list[Any]
        Items returned on this page.
    page_number : int
        1-based number of the page.
    page_size : int
        Page size requested.
    returned_count : int
        Number of items actually returned.
    total_count : int, optional
        Total number of items advertised by the server, if any.
    has_more : bool
        Whether a following page exists.
    body : Any
        Raw decoded body of the response.
    """

    items: list[Any] = Field(default_factory=list)
    page_number: int
    page_size: int
    returned_count: int
    total_count: int | None = None
    has_more: bool
    body: Any = Field(default=None, exclude=True)

    @classmethod
    def from_response(
        cls,
        body: Any,
        headers: Mapping[str, str],
        cursor: PageCursor,
        items_key: str | None = None,
        *,
        single_object: bool = False,
    ) -> "Page":
        """Build a page from a decoded body and lowercased response headers.

        A missing body (e.g. `204 No Content`) is an empty, final page. With
        `single_object`, a body holding no item list is returned as the only
        item of a final page instead of being rejected.

        Raises
        ------
        PaginationError
            If no item list can be found in the body, or the `X-Total` and
            `X-Per-Page` headers are malformed.
        """
        if single_object and _find_items(body, items_key) is None:
            return cls(
                items=[body],
                page_number=cursor.current_page,
                page_size=cursor.page_size,
                returned_count=1,
                has_more=False,
                body=body,
            )

        items = _extract_items(body, items_key, cursor.current_page)
        returned_count = len(items)

        total_count = _int_header(headers, "x-total", cursor.current_page)
        per_page = _int_header(headers, "x-per-page", cursor.current_page)

        if returned_count == 0:
            has_more = False
        elif total_count is not None:
            per_page = per_page or cursor.page_size
            if per_page <= 0:
                raise PaginationError(
                    f"Invalid X-Per-Page header: {per_page}",
                    page_number=cursor.current_page,
                )
            has_more = cursor.current_page < math.ceil(total_count / per_page)
        else:
            has_more = returned_count >= cursor.page_size

        return cls(
            items=items,
            page_number=cursor.current_page,
            page_size=cursor.page_size,
            returned_count=returned_count,
            total_count=total_count,
            has_more=has_more,
            body=body,
        )


def _find_items(body: Any, items_key: str | None) -> list[Any] | None:
    if body is None or body == "":
        return []
    if isinstance(body, list):
        return body

    if isinstance(body, dict):
        keys = (items_key,) if items_key else DEFAULT_ITEMS_KEYS
        for key in keys:
            value = body.get(key)
            if isinstance(value, list):
                return value
    return None


def _extract_items(body: Any, items_key: str | None, page_number: int) -> list[Any]:
    items = _find_items(body, items_key)
    if items is not None:
        return items

    expected = f"'{items_key}'" if items_key else ", ".join(DEFAULT_ITEMS_KEYS)
    raise PaginationError(
        f"Response body has no list of items (expected a list or one of: {expected})",
        page_number=page_number,
    )


def _int_header(headers: Mapping[str, str], name: str, page_number: int) -> int | None:
    raw = headers.get(name)
    if raw is None:
        return None
    try:
        value = int(raw.strip())
    except ValueError as err:
        raise PaginationError(
            f"Malformed {name} header: {raw!r}", page_number=page_number
        ) from err
    if value < 0:
        raise PaginationError(
            f"Negative {name} header: {raw!r}", page_number=page_number
        )
    return value


@discriminated_base
class PaginationRule(Discriminated, ABC):
    """How pages are selected and when traversal stops.

    Subclasses register a kind and implement `is_terminal`.

    Examples
    --------
    >>> @PaginationRule.register("first_two")
    ... class FirstTwo(PaginationRule):
    ...     def is_terminal(self, page, cursor):
    ...         return not page.has_more or page.page_number >= 2
    """

    # Whether a body without an item list is accepted as a single item
    single_object: ClassVar[bool] = False

    def query(self, cursor: PageCursor) -> list[tuple[str, str]]:
        """Query parameters selecting the page the cursor points to."""
        return [
            ("page[number]", str(cursor.current_page)),
            ("page[size]", str(cursor.page_size)),
        ]

    @abstractmethod
    def is_terminal(self, page: Page, cursor: PageCursor) -> bool:
        """Whether `page` is the last page to fetch."""

    def advance(self, cursor: PageCursor) -> None:
        cursor.advance()


@PaginationRule.register("one_shot")
class OneShot(PaginationRule):
    """Fetch exactly one page.

    A body carrying no item list, such as a single resource, becomes the only
    item of the page.
    """

    single_object: ClassVar[bool] = True

    @override
    def is_terminal(self, page: Page, cursor: PageCursor) -> bool:
        return True


@PaginationRule.register("fixed")
class Fixed(PaginationRule):
    """Fetch up to `pages` pages, stopping early on the last page."""

    pages: int = Field(ge=1)

    def __init__(self, pages: int | None = None, /, **data: Any):
        if pages is not None:
            data["pages"] = pages
        super().__init__(**data)

    @override
    def is_terminal(self, page: Page, cursor: PageCursor) -> bool:
        return not page.has_more or page.page_number >= self.pages


@PaginationRule.register("exhaustive")
class Exhaustive(PaginationRule):
    """Fetch every page until the server reports there is no more."""

    @override
    def is_terminal(self, page: Page, cursor: PageCursor) -> bool:
        return not page.has_more


class PaginationState(StrEnum):
    START = "start"
    FETCHING = "fetching"
    HAS_MORE = "has_more"
    EXHAUSTED = "exhausted"


PageFetcher = Callable[[PageCursor], Awaitable[Page]]


class PaginationEngine:
    """Drive the sequence of page fetches of one request.

    The sequence is lazy, forward-only and can only be consumed once. Closing
    it early prevents any further fetch.
    """

    def __init__(self, rule: PaginationRule, cursor: PageCursor, fetch: PageFetcher):
        self._rule = rule
        self._cursor = cursor
        self._fetch = fetch
        self._state = PaginationState.START

    @property
    def state(self) -> PaginationState:
        return self._state

    @property
    def cursor(self) -> PageCursor:
        return self._cursor

    def pages(self) -> AsyncGenerator[Page, None]:
        """Return the page sequence.

        Raises
        ------
        RuntimeError
            If the sequence was already started.
        """
        if self._state != PaginationState.START:
            raise RuntimeError("Pagination sequence cannot be restarted")
        self._state = PaginationState.FETCHING
        return self._run()

    async def _run(self) -> AsyncGenerator[Page, None]:
        while True:
            self._state = PaginationState.FETCHING
            page = await self._fetch(self._cursor)
            terminal = self._rule.is_terminal(page, self._cursor)
            self._state = (
                PaginationState.EXHAUSTED if terminal else PaginationState.HAS_MORE
            )
            logfire.info(
                "pagination.page_fetched",
                page_number=page.page_number,
                returned_count=page.returned_count,
                has_more=page.has_more,
                terminal=terminal,
            )

            yield page

            if terminal:
                return
            self._rule.advance(self._cursor)
