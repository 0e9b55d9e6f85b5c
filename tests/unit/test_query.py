"""
Unit tests for the query builder.

Tests cover:
- Filter composition (single filter unwrapped, AND for several)
- Ancestor filters
- Orders, window, grouping and projection
- Key queries
"""

import pytest

from datastore_sdk.entity import Value
from datastore_sdk.errors import QueryError
from datastore_sdk.keys import build_key
from datastore_sdk.query import (
    KEY_PROPERTY,
    CompositeFilter,
    CompositeOperator,
    Direction,
    FilterOperator,
    PropertyFilter,
    PropertyOrder,
    QueryDescriptor,
    build_key_query,
    build_query,
    combine_filters,
)


class TestBuildQuery:
    """Tests for build_query."""

    def test_kind_only(self):
        """A bare kind query has no filter."""
        query = build_query("Task")
        assert query.kinds == ("Task",)
        assert query.filter is None
        assert query.projection is None

    def test_single_filter_unwrapped(self):
        """One equality filter is sent without a composite."""
        query = build_query("Task", {"status": "open"})
        assert query.filter == PropertyFilter("status", FilterOperator.EQUAL, Value.of("open"))

    def test_multiple_filters_and(self):
        """Several filters combine under AND."""
        query = build_query("Task", {"status": "open", "owner": "alice"})

        assert isinstance(query.filter, CompositeFilter)
        assert query.filter.operator == CompositeOperator.AND
        assert [f.property for f in query.filter.filters] == ["status", "owner"]

    def test_ancestor_path(self):
        """An ancestor path becomes a has-ancestor filter on __key__."""
        query = build_query("Task", ancestor=[("Account", "alice")], namespace="prod")

        assert query.filter.property == KEY_PROPERTY
        assert query.filter.operator == FilterOperator.HAS_ANCESTOR
        assert query.filter.value.data == build_key([("Account", "alice")], "prod")

    def test_orders(self):
        """Orders accept mappings of name to direction."""
        query = build_query("Task", orders={"priority": "desc", "title": True})
        assert query.orders == (
            PropertyOrder("priority", Direction.DESCENDING),
            PropertyOrder("title", Direction.ASCENDING),
        )

    def test_invalid_direction(self):
        """Unknown directions are rejected."""
        with pytest.raises(QueryError):
            build_query("Task", orders={"title": "sideways"})

    def test_window_and_grouping(self):
        """Offset, limit and group-by are carried; limit 0 means none."""
        query = build_query("Task", limit=10, offset=5, group_by="owner")
        assert (query.limit, query.offset, query.group_by) == (10, 5, ("owner",))
        assert build_query("Task", limit=0).limit is None

    def test_negative_window_rejected(self):
        """Negative offset or limit is invalid."""
        with pytest.raises(QueryError):
            build_query("Task", offset=-1)
        with pytest.raises(QueryError):
            QueryDescriptor(limit=-1)

    def test_projection(self):
        """Required properties become a projection; empty means keys only."""
        assert build_query("Task", required_properties=["title"]).projection == ("title",)
        keys_only = build_query("Task", required_properties=[])
        assert keys_only.is_keys_only
        assert not keys_only.is_projection


class TestKeyQuery:
    """Tests for build_key_query."""

    def test_or_of_key_filters(self):
        """Known keys become an OR of __key__ equality filters."""
        keys = [build_key([("Task", 1)]), build_key([("Task", 2)])]
        query = build_key_query("Task", keys, ["title"])

        assert query.filter.operator == CompositeOperator.OR
        assert [f.value.data for f in query.filter.filters] == keys
        assert all(f.property == KEY_PROPERTY for f in query.filter.filters)
        assert query.projection == ("title",)

    def test_single_key(self):
        """A single key gives an unwrapped filter."""
        key = build_key([("Task", 1)])
        query = build_key_query("Task", key)
        assert query.filter == PropertyFilter(KEY_PROPERTY, FilterOperator.EQUAL, Value.key(key))
        assert query.projection is None

    def test_no_keys(self):
        """At least one key is required."""
        with pytest.raises(QueryError):
            build_key_query("Task", [])


class TestCombineFilters:
    """Tests for combine_filters."""

    def test_empty(self):
        assert combine_filters([]) is None

    def test_or(self):
        a = PropertyFilter("a", FilterOperator.EQUAL, Value.of(1))
        b = PropertyFilter("b", FilterOperator.EQUAL, Value.of(2))
        combined = combine_filters([a, b], CompositeOperator.OR)
        assert combined == CompositeFilter(CompositeOperator.OR, (a, b))
