"""
Entity model for the Datastore SDK.

This module provides the document types stored under a Key:
- ValueType: Tag of a property value
- Value: Tagged union of one typed value
- Property: Named, typed, optionally multi-valued property
- Entity: Key plus a set of uniquely named properties

Invariants:
    - A Value's data always matches its tag
    - A non-multi property holds exactly one value
    - All values of a multi property share one type
    - Property names are unique per entity

Example:
    >>> entity = build_entity({"title": "Hello", "tags": ["a", "b"]}, index_properties=["title"])
    >>> entity_to_dict(entity)
    {'title': 'Hello', 'tags': ['a', 'b']}
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field as dataclass_field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Mapping

from .errors import ValidationError
from .keys import Key

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class ValueType(Enum):
    """Supported value types."""

    STRING = "string"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    DOUBLE = "double"
    TIMESTAMP_MICROSECONDS = "timestamp_microseconds"
    BLOB = "blob"
    BLOB_KEY = "blob_key"
    ENTITY = "entity"
    KEY = "key"

    @classmethod
    def from_str(cls, value: str) -> ValueType:
        """Convert string to ValueType."""
        for kind in cls:
            if kind.value == value:
                return kind
        raise ValueError(f"Invalid value type: {value}")


def _check_value(kind: ValueType, data: Any) -> str | None:
    """Return an error message if data does not match kind, None if valid."""
    if kind in (ValueType.STRING, ValueType.BLOB_KEY):
        if not isinstance(data, str):
            return f"{kind.value} value must be a string, got {type(data).__name__}"

    elif kind == ValueType.INTEGER:
        if not isinstance(data, int) or isinstance(data, bool):
            return f"integer value must be an int, got {type(data).__name__}"

    elif kind == ValueType.BOOLEAN:
        if not isinstance(data, bool):
            return f"boolean value must be a bool, got {type(data).__name__}"

    elif kind == ValueType.DOUBLE:
        if not isinstance(data, (int, float)) or isinstance(data, bool):
            return f"double value must be a number, got {type(data).__name__}"

    elif kind == ValueType.TIMESTAMP_MICROSECONDS:
        if not isinstance(data, int) or isinstance(data, bool):
            return "timestamp value must be an integer of microseconds"

    elif kind == ValueType.BLOB:
        if not isinstance(data, bytes):
            return f"blob value must be bytes, got {type(data).__name__}"

    elif kind == ValueType.ENTITY:
        if not isinstance(data, Entity):
            return f"entity value must be an Entity, got {type(data).__name__}"

    elif kind == ValueType.KEY:
        if not isinstance(data, Key):
            return f"key value must be a Key, got {type(data).__name__}"

    return None


@dataclass(frozen=True)
class Value:
    """A single typed value.

    Attributes:
        type: Value type tag
        data: Python payload matching the tag
    """

    type: ValueType
    data: Any

    def __post_init__(self) -> None:
        error = _check_value(self.type, self.data)
        if error:
            raise ValidationError(error, errors=[error])
        if self.type == ValueType.DOUBLE and isinstance(self.data, int):
            object.__setattr__(self, "data", float(self.data))

    @classmethod
    def string(cls, data: str) -> Value:
        return cls(ValueType.STRING, data)

    @classmethod
    def integer(cls, data: int) -> Value:
        return cls(ValueType.INTEGER, data)

    @classmethod
    def boolean(cls, data: bool) -> Value:
        return cls(ValueType.BOOLEAN, data)

    @classmethod
    def double(cls, data: float) -> Value:
        return cls(ValueType.DOUBLE, data)

    @classmethod
    def timestamp(cls, data: int | datetime) -> Value:
        """Timestamp value from microseconds since epoch or an aware datetime."""
        if isinstance(data, datetime):
            data = timestamp_to_micros(data)
        return cls(ValueType.TIMESTAMP_MICROSECONDS, data)

    @classmethod
    def blob(cls, data: bytes) -> Value:
        return cls(ValueType.BLOB, data)

    @classmethod
    def blob_key(cls, data: str) -> Value:
        return cls(ValueType.BLOB_KEY, data)

    @classmethod
    def entity(cls, data: Entity) -> Value:
        return cls(ValueType.ENTITY, data)

    @classmethod
    def key(cls, data: Key) -> Value:
        return cls(ValueType.KEY, data)

    @classmethod
    def of(cls, data: Any) -> Value:
        """Infer the value type from a Python value.

        Raises:
            ValidationError: If no value type fits
        """
        if isinstance(data, Value):
            return data
        if isinstance(data, bool):
            return cls.boolean(data)
        if isinstance(data, int):
            return cls.integer(data)
        if isinstance(data, float):
            return cls.double(data)
        if isinstance(data, str):
            return cls.string(data)
        if isinstance(data, (bytes, bytearray)):
            return cls.blob(bytes(data))
        if isinstance(data, datetime):
            return cls.timestamp(data)
        if isinstance(data, Key):
            return cls.key(data)
        if isinstance(data, Entity):
            return cls.entity(data)
        message = f"Cannot store value of type {type(data).__name__}"
        raise ValidationError(message, errors=[message])


def timestamp_to_micros(value: datetime) -> int:
    """Microseconds since the Unix epoch; naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    delta = value - _EPOCH
    return (delta.days * 86400 + delta.seconds) * 1_000_000 + delta.microseconds


@dataclass(frozen=True)
class Property:
    """A named property of an entity.

    Attributes:
        name: Property name
        values: Property values (exactly one unless multi)
        indexed: Whether the store should index this property
        multi: Whether the property holds 0..N values
    """

    name: str
    values: tuple[Value, ...]
    indexed: bool = False
    multi: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.values, tuple):
            object.__setattr__(self, "values", tuple(self.values))
        if not isinstance(self.name, str) or not self.name:
            raise ValidationError("Property name cannot be empty")
        for v in self.values:
            if not isinstance(v, Value):
                raise ValidationError(
                    f"Property '{self.name}' values must be Value instances",
                    field_name=self.name,
                )
        if not self.multi and len(self.values) != 1:
            raise ValidationError(
                f"Property '{self.name}' is not multi and must hold exactly one value, "
                f"got {len(self.values)}",
                field_name=self.name,
            )
        types = {v.type for v in self.values}
        if len(types) > 1:
            raise ValidationError(
                f"Multi property '{self.name}' mixes value types: "
                f"{sorted(t.value for t in types)}",
                field_name=self.name,
            )

    @property
    def value(self) -> Value | None:
        """The first value, or None for an empty multi property."""
        return self.values[0] if self.values else None

    @property
    def value_type(self) -> ValueType | None:
        return self.values[0].type if self.values else None

    def to_python(self) -> Any:
        """Plain value for single properties, list for multi properties."""
        if self.multi:
            return [v.data for v in self.values]
        return self.values[0].data

    @classmethod
    def of(cls, name: str, data: Any, *, indexed: bool = False) -> Property:
        """Create a property from a Python value; lists become multi properties."""
        if isinstance(data, (list, tuple)):
            return cls(name, tuple(Value.of(d) for d in data), indexed=indexed, multi=True)
        return cls(name, (Value.of(data),), indexed=indexed)


@dataclass(eq=True)
class Entity:
    """An entity: a key plus uniquely named properties.

    Attributes:
        key: Entity key (may be incomplete before an auto-id insert)
        properties: Properties by name
    """

    key: Key | None = None
    properties: dict[str, Property] = dataclass_field(default_factory=dict)

    def __post_init__(self) -> None:
        for name, prop in self.properties.items():
            if prop.name != name:
                raise ValidationError(
                    f"Property stored under '{name}' is named '{prop.name}'",
                    field_name=name,
                )

    @classmethod
    def from_properties(cls, key: Key | None, properties: Iterable[Property]) -> Entity:
        """Create an entity from a property list, rejecting duplicate names."""
        by_name: dict[str, Property] = {}
        for prop in properties:
            if prop.name in by_name:
                raise ValidationError(
                    f"Duplicate property '{prop.name}'",
                    field_name=prop.name,
                )
            by_name[prop.name] = prop
        return cls(key=key, properties=by_name)

    def set(self, name: str, data: Any, *, indexed: bool = False) -> Entity:
        """Set (or replace) a property from a Python value or Property."""
        if isinstance(data, Property):
            if data.name != name:
                raise ValidationError(
                    f"Property '{data.name}' cannot be stored as '{name}'",
                    field_name=name,
                )
            self.properties[name] = data
        else:
            self.properties[name] = Property.of(name, data, indexed=indexed)
        return self

    def get(self, name: str, default: Any = None) -> Any:
        """Get a property's Python value."""
        prop = self.properties.get(name)
        if prop is None:
            return default
        return prop.to_python()

    def remove(self, name: str) -> None:
        self.properties.pop(name, None)

    def __contains__(self, name: object) -> bool:
        return name in self.properties

    def to_dict(self) -> dict[str, Any]:
        return entity_to_dict(self)


def build_entity(
    properties: Mapping[str, Any],
    index_properties: Iterable[str] = (),
    key: Key | None = None,
) -> Entity:
    """Build an entity from a name -> value mapping.

    Args:
        properties: Property values; lists become multi properties
        index_properties: Names of properties to index
        key: Optional entity key

    Returns:
        Entity
    """
    indexed = set(index_properties)
    entity = Entity(key=key)
    for name, data in properties.items():
        entity.set(name, data, indexed=name in indexed)
    return entity


def entity_to_dict(entity: Entity) -> dict[str, Any]:
    """Get all properties of an entity as plain Python values.

    Single-valued properties map to their value, multi properties to a
    list. Empty multi properties are omitted.
    """
    data: dict[str, Any] = {}
    for name, prop in entity.properties.items():
        if not prop.values:
            continue
        data[name] = prop.to_python()
    return data
