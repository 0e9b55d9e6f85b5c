"""
Wire codec for the Datastore SDK.

Converts SDK types to and from the JSON payloads exchanged with the store.
It is internal to the SDK; transports carry the resulting dictionaries.

Invariants:
    - Every ValueType has exactly one wire tag, in both directions
    - Integers and timestamps travel as decimal strings, blobs as base64
    - Mutation operations keep their append order
"""

from __future__ import annotations

import base64
import binascii
from typing import Any, Iterable

from .entity import Entity, Property, Value, ValueType
from .errors import InvalidPathError, ValidationError, WireFormatError
from .keys import Key, PathElement
from .mutation import MutationOp, OperationKind
from .query import (
    CompositeFilter,
    Filter,
    QueryDescriptor,
    KEY_PROPERTY,
)

_VALUE_TAGS: dict[ValueType, str] = {
    ValueType.STRING: "stringValue",
    ValueType.INTEGER: "integerValue",
    ValueType.BOOLEAN: "booleanValue",
    ValueType.DOUBLE: "doubleValue",
    ValueType.TIMESTAMP_MICROSECONDS: "timestampMicrosecondsValue",
    ValueType.BLOB: "blobValue",
    ValueType.BLOB_KEY: "blobKeyValue",
    ValueType.ENTITY: "entityValue",
    ValueType.KEY: "keyValue",
}
_TAG_TYPES = {tag: kind for kind, tag in _VALUE_TAGS.items()}


# Keys


def partition_id(namespace: str | None) -> dict[str, Any]:
    return {"namespace": namespace} if namespace else {}


def key_to_wire(key: Key) -> dict[str, Any]:
    elements = []
    for element in key.path:
        wire: dict[str, Any] = {"kind": element.kind}
        if element.id is not None:
            wire["id"] = str(element.id)
        elif element.name is not None:
            wire["name"] = element.name
        elements.append(wire)
    result: dict[str, Any] = {"pathElement": elements}
    if key.namespace:
        result["partitionId"] = partition_id(key.namespace)
    return result


def key_from_wire(data: Any) -> Key:
    """Decode a wire key.

    Raises:
        WireFormatError: If the payload is not a valid key
    """
    if not isinstance(data, dict) or not isinstance(data.get("pathElement"), list):
        raise WireFormatError("Key payload has no pathElement list", payload=data)
    try:
        elements = []
        for wire in data["pathElement"]:
            ident = wire.get("id")
            elements.append(
                PathElement(
                    kind=wire.get("kind", ""),
                    id=int(ident) if ident is not None else None,
                    name=wire.get("name"),
                )
            )
        namespace = (data.get("partitionId") or {}).get("namespace")
        return Key(tuple(elements), namespace)
    except (InvalidPathError, AttributeError, TypeError, ValueError) as e:
        raise WireFormatError(f"Invalid key payload: {e}", payload=data) from e


# Values


def value_to_wire(value: Value, indexed: bool) -> dict[str, Any]:
    tag = _VALUE_TAGS[value.type]
    data = value.data
    if value.type in (ValueType.INTEGER, ValueType.TIMESTAMP_MICROSECONDS):
        data = str(data)
    elif value.type == ValueType.BLOB:
        data = base64.b64encode(data).decode("ascii")
    elif value.type == ValueType.ENTITY:
        data = entity_to_wire(data)
    elif value.type == ValueType.KEY:
        data = key_to_wire(data)
    return {tag: data, "indexed": indexed}


def value_from_wire(data: Any) -> tuple[Value, bool]:
    """Decode a wire value.

    Returns:
        Tuple of (value, indexed flag)

    Raises:
        WireFormatError: If no known value tag is present or the data is invalid
    """
    if not isinstance(data, dict):
        raise WireFormatError("Value payload must be an object", payload=data)
    tags = [tag for tag in data if tag in _TAG_TYPES]
    if len(tags) != 1:
        raise WireFormatError(
            f"Value payload must carry exactly one value tag, found {tags}", payload=data
        )
    tag = tags[0]
    kind = _TAG_TYPES[tag]
    raw = data[tag]
    try:
        if kind in (ValueType.INTEGER, ValueType.TIMESTAMP_MICROSECONDS):
            payload: Any = int(raw)
        elif kind == ValueType.DOUBLE:
            payload = float(raw)
        elif kind == ValueType.BLOB:
            payload = base64.b64decode(raw, validate=True)
        elif kind == ValueType.ENTITY:
            payload = entity_from_wire(raw)
        elif kind == ValueType.KEY:
            payload = key_from_wire(raw)
        else:
            payload = raw
        value = Value(kind, payload)
    except (ValidationError, binascii.Error, TypeError, ValueError) as e:
        raise WireFormatError(f"Invalid {tag} payload: {e}", payload=data) from e
    return value, bool(data.get("indexed", False))


# Entities


def property_to_wire(prop: Property) -> dict[str, Any]:
    return {
        "name": prop.name,
        "multi": prop.multi,
        "indexed": prop.indexed,
        "value": [value_to_wire(v, prop.indexed) for v in prop.values],
    }


def property_from_wire(data: Any) -> Property:
    if not isinstance(data, dict) or not data.get("name"):
        raise WireFormatError("Property payload has no name", payload=data)
    decoded = [value_from_wire(v) for v in data.get("value") or []]
    values = tuple(v for v, _ in decoded)
    indexed = bool(data.get("indexed", any(flag for _, flag in decoded)))
    multi = bool(data.get("multi", len(values) != 1))
    try:
        return Property(data["name"], values, indexed=indexed, multi=multi)
    except ValidationError as e:
        raise WireFormatError(f"Invalid property payload: {e.message}", payload=data) from e


def entity_to_wire(entity: Entity) -> dict[str, Any]:
    result: dict[str, Any] = {
        "property": [property_to_wire(p) for p in entity.properties.values()],
    }
    if entity.key is not None:
        result["key"] = key_to_wire(entity.key)
    return result


def entity_from_wire(data: Any) -> Entity:
    if not isinstance(data, dict):
        raise WireFormatError("Entity payload must be an object", payload=data)
    key = key_from_wire(data["key"]) if data.get("key") else None
    properties = [property_from_wire(p) for p in data.get("property") or []]
    try:
        return Entity.from_properties(key, properties)
    except ValidationError as e:
        raise WireFormatError(f"Invalid entity payload: {e.message}", payload=data) from e


# Mutations


def mutation_to_wire(operations: Iterable[MutationOp]) -> dict[str, Any]:
    mutations = []
    for op in operations:
        if op.kind == OperationKind.DELETE:
            mutations.append({op.kind.value: key_to_wire(op.key)})  # type: ignore[arg-type]
        else:
            mutations.append({op.kind.value: entity_to_wire(op.entity)})  # type: ignore[arg-type]
    return {"mutations": mutations}


def mutation_result_keys(response: dict[str, Any], expected: int | None = None) -> list[Key]:
    """Keys assigned to insert-auto-id operations by a commit or blind write.

    Args:
        response: Commit or blindWrite response
        expected: Number of insert-auto-id operations sent, checked when given

    Raises:
        WireFormatError: If a key is malformed or the count does not match
    """
    result = response.get("mutationResult") or {}
    keys = [key_from_wire(k) for k in result.get("insertAutoIdKeys") or []]
    if expected is not None and len(keys) != expected:
        raise WireFormatError(
            f"Expected {expected} generated keys, got {len(keys)}", payload=response
        )
    return keys


# Reads


def read_options(transaction: str | None) -> dict[str, Any]:
    return {"transaction": transaction} if transaction else {}


def filter_to_wire(filter_: Filter) -> dict[str, Any]:
    if isinstance(filter_, CompositeFilter):
        return {
            "compositeFilter": {
                "operator": filter_.operator.value,
                "filters": [filter_to_wire(f) for f in filter_.filters],
            }
        }
    return {
        "propertyFilter": {
            "property": {"name": filter_.property},
            "operator": filter_.operator.value,
            "value": value_to_wire(filter_.value, True),
        }
    }


def query_to_wire(query: QueryDescriptor) -> dict[str, Any]:
    result: dict[str, Any] = {}
    if query.kinds:
        result["kinds"] = [{"name": k} for k in query.kinds]
    if query.filter is not None:
        result["filter"] = filter_to_wire(query.filter)
    if query.orders:
        result["order"] = [
            {"property": {"name": o.property}, "direction": o.direction.value}
            for o in query.orders
        ]
    if query.group_by:
        result["groupBy"] = [{"name": g} for g in query.group_by]
    if query.offset:
        result["offset"] = query.offset
    if query.limit is not None:
        result["limit"] = query.limit
    if query.projection is not None:
        names = query.projection or (KEY_PROPERTY,)
        result["projection"] = [{"property": {"name": n}} for n in names]
    return result


def lookup_response(
    response: dict[str, Any],
) -> tuple[list[Entity], list[Key], list[Key]]:
    """Split a lookup response.

    Returns:
        Tuple of (found entities, missing keys, deferred keys)
    """
    found = [entity_from_wire(r.get("entity")) for r in response.get("found") or []]
    missing = [
        key_from_wire((r.get("entity") or {}).get("key")) for r in response.get("missing") or []
    ]
    deferred = [key_from_wire(k) for k in response.get("deferred") or []]
    for entity in found:
        if entity.key is None:
            raise WireFormatError("Found entity has no key", payload=response)
    return found, missing, deferred


def query_response_entities(response: dict[str, Any]) -> list[Entity]:
    batch = response.get("batch") or {}
    return [entity_from_wire(r.get("entity")) for r in batch.get("entityResult") or []]
