import pytest
from reqt import (
    Fixed,
    FilterRule,
    OneShot,
    PageCursor,
    Policies,
    PolicyComposer,
    RangeRule,
    SortOrder,
    SortRule,
)


@pytest.fixture
def cursor() -> PageCursor:
    return PageCursor(current_page=2, page_size=25)


def test_composes_in_fixed_dimension_order(cursor: PageCursor):
    # Rules are added range first, filter last
    defaults = Policies(
        pagination=OneShot(),
        range=RangeRule().range("age", 18, 65),
        sort=SortRule().sort("name"),
        filter=FilterRule().filter("active", True),
    )

    assert PolicyComposer.compose(defaults, None, cursor) == [
        ("filter[active]", "true"),
        ("sort", "name"),
        ("range[age]", "18,65"),
        ("page[number]", "2"),
        ("page[size]", "25"),
    ]


def test_override_replaces_whole_dimension(cursor: PageCursor):
    defaults = Policies.defaults().model_copy(
        update={"filter": FilterRule().filter("active", True)}
    )

    # An empty override removes every default filter
    overrides = Policies(filter=FilterRule())
    assert PolicyComposer.compose(defaults, overrides, cursor) == [
        ("page[number]", "2"),
        ("page[size]", "25"),
    ]

    # A non-empty override is not merged with the default
    overrides = Policies(filter=FilterRule().filter("name", "alice"))
    assert PolicyComposer.compose(defaults, overrides, cursor) == [
        ("filter[name]", "alice"),
        ("page[number]", "2"),
        ("page[size]", "25"),
    ]


def test_missing_override_keeps_default(cursor: PageCursor):
    defaults = Policies.defaults().model_copy(
        update={"sort": SortRule().sort("name")}
    )

    query = PolicyComposer.compose(defaults, Policies(pagination=Fixed(2)), cursor)

    assert query == [("sort", "name"), ("page[number]", "2"), ("page[size]", "25")]


def test_composition_is_deterministic(cursor: PageCursor):
    defaults = Policies(
        filter=FilterRule().filter("b", 2).filter("a", 1),
        sort=SortRule().sort("b").sort("a"),
    )

    first = PolicyComposer.compose(defaults, None, cursor)
    second = PolicyComposer.compose(defaults, None, cursor)

    assert first == second
    assert first == [("filter[b]", "2"), ("filter[a]", "1"), ("sort", "b,a")]


class TestFilterRule:
    def test_values_are_comma_joined(self):
        rule = FilterRule().filter("campus", [1, 12, 21])
        assert rule.to_query() == [("filter[campus]", "1,12,21")]

    def test_readding_a_key_replaces_it_in_place(self):
        rule = FilterRule().filter("a", "x").filter("b", "y").filter("a", "z")
        assert rule.to_query() == [("filter[a]", "z"), ("filter[b]", "y")]

    def test_filter_with_operator(self):
        rule = FilterRule().filter_with("age", "gte", 18)
        assert rule.to_query() == [("filter[age][gte]", "18")]

    def test_custom_pattern(self):
        rule = FilterRule(pattern="property").filter("status", "open")
        assert rule.to_query() == [("status", "open")]

    def test_builders_return_copies(self):
        rule = FilterRule()
        rule.filter("a", "x")
        assert rule.to_query() == []


class TestSortRule:
    def test_sorts_are_emitted_in_priority_order(self):
        rule = SortRule().sort("name").sort_with("created_at", SortOrder.DESC)
        assert rule.to_query() == [("sort", "name,-created_at")]

    def test_resorting_a_property_keeps_its_priority(self):
        rule = (
            SortRule()
            .sort("name")
            .sort("id")
            .sort_with("name", SortOrder.DESC)
        )
        assert rule.to_query() == [("sort", "-name,id")]

    def test_order_in_pattern(self):
        rule = SortRule(pattern="property.order").sort_with("name", SortOrder.DESC)
        assert rule.to_query() == [("sort", "name.desc")]

    def test_empty_sort_emits_nothing(self):
        assert SortRule().to_query() == []


class TestRangeRule:
    def test_range(self):
        rule = RangeRule().range("created_at", "2024-01-01", "2024-12-31")
        assert rule.to_query() == [("range[created_at]", "2024-01-01,2024-12-31")]

    def test_readding_a_property_replaces_it(self):
        rule = RangeRule().range("age", 1, 2).range("age", 3, 4)
        assert rule.to_query() == [("range[age]", "3,4")]


def test_policies_round_trip_through_json():
    policies = Policies(
        pagination=Fixed(3),
        filter=FilterRule().filter("active", True),
        sort=SortRule().sort_with("name", SortOrder.DESC),
        range=RangeRule().range("age", 18, 65),
    )

    restored = Policies.model_validate_json(policies.model_dump_json())

    assert isinstance(restored.pagination, Fixed)
    assert restored.pagination.pages == 3
    assert restored == policies


class TestPatternRendering:
    def test_property_containing_operator_placeholder(self):
        rule = FilterRule().filter_with("operator_id", "eq", [5])
        assert rule.to_query() == [("filter[operator_id][eq]", "5")]

    def test_property_containing_order_placeholder(self):
        rule = SortRule(pattern="property.order").sort_with(
            "order_date", SortOrder.DESC
        )
        assert rule.to_query() == [("sort", "order_date.desc")]

    def test_property_named_like_a_placeholder(self):
        assert FilterRule().filter("property", 1).to_query() == [
            ("filter[property]", "1")
        ]
        assert RangeRule().range("property", 1, 2).to_query() == [
            ("range[property]", "1,2")
        ]
