"""Filter, sort and range rule sets, and their composition into a query.

Rules are configured on an `Api` as defaults and may be replaced per request.
An override replaces the whole rule set of its dimension, it is never merged
with the default.
"""

import re
from collections.abc import Iterable, Mapping
from enum import StrEnum
from typing import Any, Self

from pydantic import BaseModel, Field

from .pagination import OneShot, PageCursor, PaginationRule

Query = list[tuple[str, str]]


def render_pattern(pattern: str, values: Mapping[str, str]) -> str:
    """Substitute every placeholder of `pattern` in a single pass.

    Substituted text is never scanned again, so a property named `order_date`
    stays intact in a `property.order` pattern.

    Examples
    --------
    >>> render_pattern("[property][operator]", {"property": "operator", "operator": "eq"})
    '[operator][eq]'
    """
    placeholders = "|".join(re.escape(name) for name in values)
    return re.sub(placeholders, lambda match: values[match.group()], pattern)


def format_value(value: Any) -> str:
    """Render a scalar or an iterable of scalars as a query value."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, Iterable):
        return ",".join(format_value(item) for item in value)
    return str(value)


class FilterRule(BaseModel):
    """Filters rendered as `filter[<property>]=<v1>,<v2>`.

    Attributes
    ----------
    pattern : str
        Parameter name template, `property` is replaced by the filtered
        property.
    operator_pattern : str
        Template used by `filter_with`, `operator` is replaced as well.
    filters : list[tuple[str, str]]
        Rendered filters in insertion order.
    """

    pattern: str = "filter[property]"
    operator_pattern: str = "filter[property][operator]"
    filters: list[tuple[str, str]] = Field(default_factory=list)

    def filter(self, property: str, values: Any) -> Self:
        return self._with_entry(
            render_pattern(self.pattern, {"property": property}), values
        )

    def filter_with(self, property: str, operator: str, values: Any) -> Self:
        name = render_pattern(
            self.operator_pattern, {"property": property, "operator": operator}
        )
        return self._with_entry(name, values)

    def _with_entry(self, name: str, values: Any) -> Self:
        rendered = format_value(values)
        filters = [
            (key, rendered if key == name else value) for key, value in self.filters
        ]
        if all(key != name for key, _ in self.filters):
            filters.append((name, rendered))
        return self.model_copy(update={"filters": filters})

    def to_query(self) -> Query:
        return list(self.filters)


class SortOrder(StrEnum):
    ASC = "asc"
    DESC = "desc"


class SortRule(BaseModel):
    """Sorts rendered as one `sort=a,-b` parameter, in priority order.

    When `pattern` contains `order`, the order is written into each term
    instead of using `descending_prefix`.
    """

    key: str = "sort"
    pattern: str = "property"
    descending_prefix: str = "-"
    sorts: list[tuple[str, SortOrder]] = Field(default_factory=list)

    def sort(self, property: str) -> Self:
        return self.sort_with(property, SortOrder.ASC)

    def sort_with(self, property: str, order: SortOrder) -> Self:
        sorts = [(prop, order if prop == property else o) for prop, o in self.sorts]
        if all(prop != property for prop, _ in self.sorts):
            sorts.append((property, order))
        return self.model_copy(update={"sorts": sorts})

    def _term(self, property: str, order: SortOrder) -> str:
        if "order" in self.pattern:
            return render_pattern(
                self.pattern, {"property": property, "order": order.value}
            )
        term = render_pattern(self.pattern, {"property": property})
        if order == SortOrder.DESC:
            return f"{self.descending_prefix}{term}"
        return term

    def to_query(self) -> Query:
        if not self.sorts:
            return []
        return [(self.key, ",".join(self._term(prop, o) for prop, o in self.sorts))]


class RangeRule(BaseModel):
    """Ranges rendered as `range[<property>]=<min>,<max>`."""

    pattern: str = "range[property]"
    ranges: list[tuple[str, str]] = Field(default_factory=list)

    def range(self, property: str, min: Any, max: Any) -> Self:
        name = render_pattern(self.pattern, {"property": property})
        rendered = f"{format_value(min)},{format_value(max)}"
        ranges = [
            (key, rendered if key == name else value) for key, value in self.ranges
        ]
        if all(key != name for key, _ in self.ranges):
            ranges.append((name, rendered))
        return self.model_copy(update={"ranges": ranges})

    def to_query(self) -> Query:
        return list(self.ranges)


class Policies(BaseModel):
    """Rule sets of the four query dimensions.

    On an `Api`, every field holds the default. On a `Request`, a `None` field
    means the default applies and any other value replaces it entirely.
    """

    pagination: PaginationRule | None = None
    filter: FilterRule | None = None
    sort: SortRule | None = None
    range: RangeRule | None = None

    @classmethod
    def defaults(cls) -> "Policies":
        return cls(
            pagination=OneShot(),
            filter=FilterRule(),
            sort=SortRule(),
            range=RangeRule(),
        )

    def resolve(self, overrides: "Policies | None" = None) -> "Policies":
        """Effective policies, each dimension taken whole from one side."""
        if overrides is None:
            return self
        return Policies(
            pagination=overrides.pagination
            if overrides.pagination is not None
            else self.pagination,
            filter=overrides.filter if overrides.filter is not None else self.filter,
            sort=overrides.sort if overrides.sort is not None else self.sort,
            range=overrides.range if overrides.range is not None else self.range,
        )


class PolicyComposer:
    """Build the query of one page request.

    Parameters are emitted by dimension in a fixed order: filter, sort, range,
    then pagination.
    """

    @staticmethod
    def compose(
        defaults: Policies,
        overrides: Policies | None,
        cursor: PageCursor,
    ) -> Query:
        effective = defaults.resolve(overrides)

        query: Query = []
        if effective.filter is not None:
            query.extend(effective.filter.to_query())
        if effective.sort is not None:
            query.extend(effective.sort.to_query())
        if effective.range is not None:
            query.extend(effective.range.to_query())
        if effective.pagination is not None:
            query.extend(effective.pagination.query(cursor))
        return query
