from typing import override

import pytest
from pydantic import ValidationError
from reqt import (
    Exhaustive,
    Fixed,
    OneShot,
    Page,
    PageCursor,
    PaginationEngine,
    PaginationError,
    PaginationRule,
    PaginationState,
)


@PaginationRule.register("first_two")
class FirstTwo(PaginationRule):
    @override
    def is_terminal(self, page: Page, cursor: PageCursor) -> bool:
        return not page.has_more or page.page_number >= 2


class PagedSource:
    """Serves pages of integers, recording the cursor of every fetch."""

    def __init__(self, page_lengths: list[int]):
        self.page_lengths = page_lengths
        self.fetched: list[int] = []

    async def __call__(self, cursor: PageCursor) -> Page:
        self.fetched.append(cursor.current_page)
        index = cursor.current_page - 1
        length = self.page_lengths[index] if index < len(self.page_lengths) else 0
        return Page.from_response(list(range(length)), {}, cursor)


class TestPage:
    def test_full_page_has_more(self):
        page = Page.from_response(list(range(10)), {}, PageCursor(page_size=10))
        assert page.has_more
        assert page.returned_count == 10
        assert page.page_number == 1

    def test_short_page_is_last(self):
        page = Page.from_response([1, 2], {}, PageCursor(page_size=10))
        assert not page.has_more

    def test_empty_page_is_last(self):
        page = Page.from_response([], {}, PageCursor(page_size=10))
        assert not page.has_more
        assert page.returned_count == 0

    @pytest.mark.parametrize("key", ["data", "items", "results"])
    def test_items_under_known_keys(self, key: str):
        page = Page.from_response({key: [1, 2, 3], "meta": {}}, {}, PageCursor())
        assert page.items == [1, 2, 3]

    def test_items_under_custom_key(self):
        page = Page.from_response(
            {"users": [{"id": 1}]}, {}, PageCursor(), items_key="users"
        )
        assert page.items == [{"id": 1}]

    def test_body_without_items_raises(self):
        with pytest.raises(PaginationError) as exc_info:
            Page.from_response({"id": 1}, {}, PageCursor(current_page=3))
        assert exc_info.value.page_number == 3

    def test_missing_body_is_an_empty_last_page(self):
        for body in (None, ""):
            page = Page.from_response(body, {}, PageCursor(page_size=10))
            assert page.items == []
            assert not page.has_more

    def test_single_object_body(self):
        page = Page.from_response(
            {"id": 1}, {}, PageCursor(page_size=10), single_object=True
        )
        assert page.items == [{"id": 1}]
        assert page.returned_count == 1
        assert not page.has_more

        # A body with an item list is still read as a list
        page = Page.from_response(
            {"data": [1, 2]}, {}, PageCursor(page_size=10), single_object=True
        )
        assert page.items == [1, 2]

    def test_total_headers_drive_has_more(self):
        headers = {"x-total": "25", "x-per-page": "10"}

        page = Page.from_response(
            list(range(10)), headers, PageCursor(current_page=2, page_size=10)
        )
        assert page.has_more
        assert page.total_count == 25

        page = Page.from_response(
            list(range(5)), headers, PageCursor(current_page=3, page_size=10)
        )
        assert not page.has_more

    def test_total_header_stops_on_exact_last_page(self):
        page = Page.from_response(
            list(range(10)), {"x-total": "20"}, PageCursor(current_page=2, page_size=10)
        )
        assert not page.has_more

    @pytest.mark.parametrize(
        "headers",
        [{"x-total": "many"}, {"x-total": "-1"}, {"x-total": "5", "x-per-page": "x"}],
    )
    def test_malformed_total_headers_raise(self, headers: dict[str, str]):
        with pytest.raises(PaginationError):
            Page.from_response([1], headers, PageCursor())


class TestPaginationRules:
    def test_fixed_requires_at_least_one_page(self):
        with pytest.raises(ValidationError):
            Fixed(0)

    def test_fixed_accepts_keyword(self):
        assert Fixed(pages=4) == Fixed(4)

    def test_cursor_requires_positive_page_size(self):
        with pytest.raises(ValidationError):
            PageCursor(page_size=0)

    def test_default_query(self):
        cursor = PageCursor(current_page=3, page_size=50)
        assert OneShot().query(cursor) == [("page[number]", "3"), ("page[size]", "50")]

    def test_custom_rule_round_trips(self):
        rule = PaginationRule.model_validate({"kind": "first_two"})
        assert isinstance(rule, FirstTwo)
        assert rule.model_dump() == {"kind": "first_two"}


class TestPaginationEngine:
    async def test_one_shot_fetches_exactly_one_page(self):
        source = PagedSource([10, 10, 10])
        engine = PaginationEngine(OneShot(), PageCursor(page_size=10), source)

        pages = [page async for page in engine.pages()]

        assert len(pages) == 1
        assert source.fetched == [1]
        assert engine.state == PaginationState.EXHAUSTED

    async def test_fixed_stops_early_on_short_page(self):
        source = PagedSource([10, 10, 4, 10, 10])
        engine = PaginationEngine(Fixed(5), PageCursor(page_size=10), source)

        pages = [page async for page in engine.pages()]

        assert source.fetched == [1, 2, 3]
        assert [page.returned_count for page in pages] == [10, 10, 4]

    async def test_fixed_stops_at_limit(self):
        source = PagedSource([10] * 10)
        engine = PaginationEngine(Fixed(2), PageCursor(page_size=10), source)

        _ = [page async for page in engine.pages()]

        assert source.fetched == [1, 2]

    async def test_exhaustive_fetches_until_empty_page(self):
        source = PagedSource([10, 10, 10])
        engine = PaginationEngine(Exhaustive(), PageCursor(page_size=10), source)

        pages = [page async for page in engine.pages()]

        assert source.fetched == [1, 2, 3, 4]
        assert pages[-1].returned_count == 0

    async def test_custom_rule(self):
        source = PagedSource([10] * 5)
        engine = PaginationEngine(FirstTwo(), PageCursor(page_size=10), source)

        _ = [page async for page in engine.pages()]

        assert source.fetched == [1, 2]

    async def test_closing_early_stops_fetching(self):
        source = PagedSource([10] * 5)
        engine = PaginationEngine(Exhaustive(), PageCursor(page_size=10), source)

        pages = engine.pages()
        first = await anext(pages)
        assert engine.state == PaginationState.HAS_MORE
        await pages.aclose()

        assert first.page_number == 1
        assert source.fetched == [1]
        assert engine.cursor.current_page == 1

    async def test_cannot_restart(self):
        engine = PaginationEngine(OneShot(), PageCursor(), PagedSource([1]))
        assert engine.state == PaginationState.START

        _ = [page async for page in engine.pages()]

        with pytest.raises(RuntimeError, match="cannot be restarted"):
            engine.pages()

    async def test_fetch_error_propagates(self):
        async def failing(cursor: PageCursor) -> Page:
            return Page.from_response({"error": "oops"}, {}, cursor)

        engine = PaginationEngine(Exhaustive(), PageCursor(), failing)

        with pytest.raises(PaginationError):
            _ = [page async for page in engine.pages()]
