"""
Unit tests for the JSON wire codec.

Tests cover:
- Key payloads
- Value tags for every value type
- Entity and mutation payloads
- Lookup and query responses
- Malformed payloads
"""

import pytest

from datastore_sdk._wire import (
    entity_from_wire,
    entity_to_wire,
    key_from_wire,
    key_to_wire,
    lookup_response,
    mutation_result_keys,
    mutation_to_wire,
    query_response_entities,
    query_to_wire,
    read_options,
    value_from_wire,
    value_to_wire,
)
from datastore_sdk.entity import Property, Value, ValueType, build_entity
from datastore_sdk.errors import WireFormatError
from datastore_sdk.keys import build_key
from datastore_sdk.mutation import MutationBuffer
from datastore_sdk.query import build_key_query, build_query


class TestKeyWire:
    """Tests for key payloads."""

    def test_key_to_wire(self):
        """Ids travel as decimal strings, namespace as partitionId."""
        key = build_key([("Account", "alice"), ("Task", 42)], "prod")
        assert key_to_wire(key) == {
            "partitionId": {"namespace": "prod"},
            "pathElement": [
                {"kind": "Account", "name": "alice"},
                {"kind": "Task", "id": "42"},
            ],
        }

    def test_key_without_namespace(self):
        """No partitionId without a namespace."""
        assert "partitionId" not in key_to_wire(build_key([("A", 1)]))

    def test_key_from_wire(self):
        """Wire keys decode to Key."""
        data = {"pathElement": [{"kind": "A", "id": "7"}, {"kind": "B", "name": "x"}]}
        assert key_from_wire(data) == build_key([("A", 7), ("B", "x")])

    def test_incomplete_key(self):
        """Incomplete keys travel without id or name."""
        key = build_key([("Task", None)], allow_incomplete=True)
        assert key_to_wire(key) == {"pathElement": [{"kind": "Task"}]}
        assert key_from_wire(key_to_wire(key)) == key

    @pytest.mark.parametrize(
        "payload",
        [
            None,
            {},
            {"pathElement": "A"},
            {"pathElement": [{"kind": "A", "id": "x"}]},
            {"pathElement": [{"kind": "A", "id": "1", "name": "y"}]},
            {"pathElement": []},
        ],
    )
    def test_malformed_key(self, payload):
        """Bad key payloads raise WireFormatError."""
        with pytest.raises(WireFormatError):
            key_from_wire(payload)


class TestValueWire:
    """Tests for value payloads."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (Value.string("x"), {"stringValue": "x"}),
            (Value.integer(12), {"integerValue": "12"}),
            (Value.boolean(False), {"booleanValue": False}),
            (Value.double(1.5), {"doubleValue": 1.5}),
            (Value.timestamp(99), {"timestampMicrosecondsValue": "99"}),
            (Value.blob(b"hi"), {"blobValue": "aGk="}),
            (Value.blob_key("bk"), {"blobKeyValue": "bk"}),
        ],
    )
    def test_value_tags(self, value, expected):
        """Each type has its own tag and encoding."""
        wire = value_to_wire(value, indexed=True)
        assert wire == {**expected, "indexed": True}
        assert value_from_wire(wire) == (value, True)

    def test_key_value(self):
        """Key values nest a wire key."""
        key = build_key([("A", 1)])
        wire = value_to_wire(Value.key(key), indexed=False)
        assert wire["keyValue"] == key_to_wire(key)
        assert value_from_wire(wire)[0].data == key

    def test_entity_value(self):
        """Entity values nest a wire entity."""
        inner = build_entity({"x": 1})
        decoded, _ = value_from_wire(value_to_wire(Value.entity(inner), indexed=False))
        assert decoded.type == ValueType.ENTITY
        assert decoded.data == inner

    def test_unknown_tag(self):
        """A payload with no known tag is rejected."""
        with pytest.raises(WireFormatError):
            value_from_wire({"mysteryValue": 1})

    def test_two_tags(self):
        """A payload with two tags is rejected."""
        with pytest.raises(WireFormatError):
            value_from_wire({"stringValue": "a", "integerValue": "1"})

    def test_pre_epoch_timestamp(self):
        """Negative timestamps decode and encode unchanged."""
        wire = {"timestampMicrosecondsValue": "-4733856000000000", "indexed": False}
        value, _ = value_from_wire(wire)
        assert value == Value.timestamp(-4_733_856_000_000_000)
        assert value_to_wire(value, indexed=False) == wire

    def test_bad_integer(self):
        """Invalid integer strings are rejected."""
        with pytest.raises(WireFormatError):
            value_from_wire({"integerValue": "twelve"})


class TestEntityWire:
    """Tests for entity payloads."""

    def test_round_trip(self):
        """Entities keep key, values, indexing and multi flags."""
        key = build_key([("Task", 1)], "prod")
        entity = build_entity({"title": "x", "tags": ["a", "b"]}, ["title"], key)

        wire = entity_to_wire(entity)

        assert wire["key"] == key_to_wire(key)
        title = next(p for p in wire["property"] if p["name"] == "title")
        assert title == {
            "name": "title",
            "multi": False,
            "indexed": True,
            "value": [{"stringValue": "x", "indexed": True}],
        }
        assert entity_from_wire(wire) == entity

    def test_empty_multi(self):
        """Empty multi properties survive."""
        entity = build_entity({})
        entity.set("tags", Property("tags", (), multi=True))
        assert entity_from_wire(entity_to_wire(entity)) == entity

    def test_empty_multi_keeps_indexed(self):
        """The indexed flag of an empty multi property travels at property level."""
        entity = build_entity({})
        entity.set("tags", Property("tags", (), indexed=True, multi=True))

        wire = entity_to_wire(entity)

        assert wire["property"][0]["indexed"] is True
        decoded = entity_from_wire(wire)
        assert decoded.properties["tags"].indexed is True
        assert decoded == entity

    def test_duplicate_property(self):
        """Duplicate property names are rejected."""
        wire = {
            "property": [
                {"name": "a", "value": [{"stringValue": "x"}]},
                {"name": "a", "value": [{"stringValue": "y"}]},
            ]
        }
        with pytest.raises(WireFormatError):
            entity_from_wire(wire)


class TestMutationWire:
    """Tests for mutation payloads."""

    def test_order_preserved(self):
        """Mutations keep append order and kind tags."""
        entity = build_entity({"a": 1}, key=build_key([("T", 1)]))
        key = build_key([("T", 2)])
        ops = MutationBuffer().add_upsert(entity).add_delete(key).add_insert_auto_id(entity).drain()

        wire = mutation_to_wire(ops)

        assert [list(m) for m in wire["mutations"]] == [["upsert"], ["delete"], ["insertAutoId"]]
        assert wire["mutations"][1]["delete"] == key_to_wire(key)

    def test_result_keys(self):
        """Generated keys are read from mutationResult."""
        response = {"mutationResult": {"insertAutoIdKeys": [{"pathElement": [{"kind": "T", "id": "5"}]}]}}
        assert mutation_result_keys(response) == [build_key([("T", 5)])]
        assert mutation_result_keys({}) == []

    def test_result_key_count_checked(self):
        """A generated key count that differs from the inserts sent is rejected."""
        response = {"mutationResult": {"insertAutoIdKeys": [{"pathElement": [{"kind": "T", "id": "5"}]}]}}
        assert len(mutation_result_keys(response, expected=1)) == 1
        with pytest.raises(WireFormatError):
            mutation_result_keys(response, expected=2)
        with pytest.raises(WireFormatError):
            mutation_result_keys({}, expected=1)


class TestReadWire:
    """Tests for lookup and query payloads."""

    def test_read_options(self):
        assert read_options("txn-1") == {"transaction": "txn-1"}
        assert read_options(None) == {}

    def test_lookup_response(self):
        """Lookup responses split into found, missing and deferred."""
        found = build_entity({"a": 1}, key=build_key([("T", 1)]))
        missing = build_key([("T", 2)])
        deferred = build_key([("T", 3)])
        response = {
            "found": [{"entity": entity_to_wire(found)}],
            "missing": [{"entity": {"key": key_to_wire(missing)}}],
            "deferred": [key_to_wire(deferred)],
        }

        assert lookup_response(response) == ([found], [missing], [deferred])

    def test_found_entity_needs_key(self):
        """Found entities must carry keys."""
        with pytest.raises(WireFormatError):
            lookup_response({"found": [{"entity": {"property": []}}]})

    def test_query_to_wire(self):
        """Queries carry kinds, filter, order, window, grouping and projection."""
        query = build_query(
            "Task",
            {"status": "open"},
            orders={"priority": "desc"},
            limit=5,
            offset=2,
            group_by="owner",
            required_properties=["title"],
        )
        wire = query_to_wire(query)

        assert wire["kinds"] == [{"name": "Task"}]
        assert wire["filter"]["propertyFilter"]["operator"] == "EQUAL"
        assert wire["filter"]["propertyFilter"]["property"] == {"name": "status"}
        assert wire["order"] == [{"property": {"name": "priority"}, "direction": "DESCENDING"}]
        assert (wire["limit"], wire["offset"]) == (5, 2)
        assert wire["groupBy"] == [{"name": "owner"}]
        assert wire["projection"] == [{"property": {"name": "title"}}]

    def test_keys_only_projection(self):
        """Keys-only queries project __key__."""
        wire = query_to_wire(build_query("Task", required_properties=[]))
        assert wire["projection"] == [{"property": {"name": "__key__"}}]

    def test_key_query_composite(self):
        """Key queries send an OR composite filter."""
        keys = [build_key([("T", 1)]), build_key([("T", 2)])]
        wire = query_to_wire(build_key_query("T", keys))

        composite = wire["filter"]["compositeFilter"]
        assert composite["operator"] == "OR"
        assert len(composite["filters"]) == 2

    def test_query_response(self):
        """Result batches flatten to entities in order."""
        a = build_entity({"n": 1}, key=build_key([("T", 1)]))
        b = build_entity({"n": 2}, key=build_key([("T", 2)]))
        response = {"batch": {"entityResult": [{"entity": entity_to_wire(b)}, {"entity": entity_to_wire(a)}]}}

        assert query_response_entities(response) == [b, a]
        assert query_response_entities({}) == []
