"""
Query descriptors and builders.

This module assembles structured queries from declarative inputs:
- PropertyFilter / CompositeFilter: Filter tree
- PropertyOrder: Sort clause
- QueryDescriptor: Complete query (kinds, filter, order, grouping,
  result window and projection)
- build_query: Query from kinds, equality filters, ancestor and options
- build_key_query: Projection query for entities with known keys

Invariants:
    - Multiple filters combine under AND; a single filter is left unwrapped
    - projection None means full entities, an empty projection means keys only
    - Builders perform no I/O

Example:
    >>> query = build_query("Invoice", {"status": "open"}, orders={"created": "desc"}, limit=10)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping, Sequence, Union

from .entity import Value
from .errors import QueryError
from .keys import Key, PathSpec, build_key

KEY_PROPERTY = "__key__"


class FilterOperator(Enum):
    """Property filter operators."""

    EQUAL = "EQUAL"
    LESS_THAN = "LESS_THAN"
    LESS_THAN_OR_EQUAL = "LESS_THAN_OR_EQUAL"
    GREATER_THAN = "GREATER_THAN"
    GREATER_THAN_OR_EQUAL = "GREATER_THAN_OR_EQUAL"
    HAS_ANCESTOR = "HAS_ANCESTOR"


class CompositeOperator(Enum):
    """Composite filter operators."""

    AND = "AND"
    OR = "OR"


class Direction(Enum):
    """Sort direction."""

    ASCENDING = "ASCENDING"
    DESCENDING = "DESCENDING"

    @classmethod
    def parse(cls, value: Direction | str | bool) -> Direction:
        """Accept a Direction, 'asc'/'desc' style strings, or True for ascending."""
        if isinstance(value, Direction):
            return value
        if isinstance(value, bool):
            return cls.ASCENDING if value else cls.DESCENDING
        normalized = str(value).strip().upper()
        if normalized in ("ASC", "ASCENDING"):
            return cls.ASCENDING
        if normalized in ("DESC", "DESCENDING"):
            return cls.DESCENDING
        raise QueryError(f"Invalid sort direction: {value!r}")


@dataclass(frozen=True)
class PropertyFilter:
    """Compare one property against a value."""

    property: str
    operator: FilterOperator
    value: Value


@dataclass(frozen=True)
class CompositeFilter:
    """Combine filters under one operator."""

    operator: CompositeOperator
    filters: tuple[Filter, ...]


Filter = Union[PropertyFilter, CompositeFilter]


@dataclass(frozen=True)
class PropertyOrder:
    """Sort clause."""

    property: str
    direction: Direction = Direction.ASCENDING


@dataclass(frozen=True)
class QueryDescriptor:
    """A structured query.

    Attributes:
        kinds: Kinds to query (empty for a kindless query)
        filter: Filter tree, if any
        orders: Sort clauses in priority order
        group_by: Properties to group by
        offset: Results to skip
        limit: Maximum results (None for no limit)
        projection: Properties to return; None for full entities,
            empty for keys only
    """

    kinds: tuple[str, ...] = ()
    filter: Filter | None = None
    orders: tuple[PropertyOrder, ...] = ()
    group_by: tuple[str, ...] = ()
    offset: int = 0
    limit: int | None = None
    projection: tuple[str, ...] | None = None

    def __post_init__(self) -> None:
        if self.offset < 0:
            raise QueryError(f"offset must be non-negative, got {self.offset}")
        if self.limit is not None and self.limit < 0:
            raise QueryError(f"limit must be non-negative, got {self.limit}")

    @property
    def is_keys_only(self) -> bool:
        return self.projection is not None and len(self.projection) == 0

    @property
    def is_projection(self) -> bool:
        return bool(self.projection)


def _as_tuple(value: str | Iterable[str] | None) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,) if value else ()
    return tuple(value)


def combine_filters(
    filters: Sequence[Filter],
    operator: CompositeOperator = CompositeOperator.AND,
) -> Filter | None:
    """Combine filters; a single filter is returned unwrapped."""
    if not filters:
        return None
    if len(filters) == 1:
        return filters[0]
    return CompositeFilter(operator, tuple(filters))


def ancestor_filter(ancestor: Key) -> PropertyFilter:
    """Restrict results to descendants of a key."""
    return PropertyFilter(KEY_PROPERTY, FilterOperator.HAS_ANCESTOR, Value.key(ancestor))


def _parse_orders(
    orders: Mapping[str, Any] | Iterable[PropertyOrder | tuple[str, Any] | str] | None,
) -> tuple[PropertyOrder, ...]:
    if not orders:
        return ()
    if isinstance(orders, Mapping):
        return tuple(PropertyOrder(name, Direction.parse(d)) for name, d in orders.items())
    result = []
    for order in orders:
        if isinstance(order, PropertyOrder):
            result.append(order)
        elif isinstance(order, str):
            result.append(PropertyOrder(order))
        else:
            name, direction = order
            result.append(PropertyOrder(name, Direction.parse(direction)))
    return tuple(result)


def build_query(
    kinds: str | Iterable[str] | None,
    properties: Mapping[str, Any] | None = None,
    ancestor: Key | Iterable[PathSpec] | None = None,
    orders: Mapping[str, Any] | Iterable[Any] | None = None,
    limit: int | None = None,
    offset: int = 0,
    group_by: str | Iterable[str] | None = None,
    required_properties: str | Iterable[str] | None = None,
    *,
    namespace: str | None = None,
) -> QueryDescriptor:
    """Build a query from declarative inputs.

    Args:
        kinds: Kind name or names to search
        properties: property -> value equality filters
        ancestor: Ancestor Key or path to restrict the search to
        orders: property -> direction mapping, or PropertyOrder/(name, direction) items
        limit: Maximum results; None or 0 for no limit
        offset: Results to skip
        group_by: Property or properties to group by
        required_properties: Properties to return. None returns full
            entities; an empty list returns keys only
        namespace: Namespace used when ancestor is given as a path

    Returns:
        QueryDescriptor
    """
    filters: list[Filter] = []
    for name, value in (properties or {}).items():
        filters.append(PropertyFilter(name, FilterOperator.EQUAL, Value.of(value)))

    if ancestor is not None:
        if not isinstance(ancestor, Key):
            ancestor = build_key(ancestor, namespace)
        filters.append(ancestor_filter(ancestor))

    projection: tuple[str, ...] | None = None
    if required_properties is not None:
        projection = _as_tuple(required_properties)

    return QueryDescriptor(
        kinds=_as_tuple(kinds),
        filter=combine_filters(filters),
        orders=_parse_orders(orders),
        group_by=_as_tuple(group_by),
        offset=offset,
        limit=limit or None,
        projection=projection,
    )


def build_key_query(
    kind: str,
    keys: Key | Iterable[Key],
    required_properties: Iterable[str] | None = None,
) -> QueryDescriptor:
    """Build a query fetching entities whose keys are already known.

    Used to load only some properties of known entities. Every requested
    property must be indexed for the store to serve the projection; callers
    are responsible for falling back to a full lookup otherwise.

    Raises:
        QueryError: If no keys are given
    """
    key_list = [keys] if isinstance(keys, Key) else list(keys)
    if not key_list:
        raise QueryError("No keys specified")

    filters: list[Filter] = [
        PropertyFilter(KEY_PROPERTY, FilterOperator.EQUAL, Value.key(k)) for k in key_list
    ]
    projection = tuple(required_properties) if required_properties else None
    return QueryDescriptor(
        kinds=(kind,),
        filter=combine_filters(filters, CompositeOperator.OR),
        projection=projection,
    )
