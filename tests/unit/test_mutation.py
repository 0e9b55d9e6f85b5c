"""
Unit tests for MutationBuffer.

Tests cover:
- Append order and chaining
- Type checks
- Drain-once semantics
"""

import pytest

from datastore_sdk.entity import build_entity
from datastore_sdk.errors import MutationConsumedError
from datastore_sdk.keys import build_key
from datastore_sdk.mutation import MutationBuffer, OperationKind


class TestMutationBuffer:
    """Tests for MutationBuffer."""

    @pytest.fixture
    def entity(self):
        """A complete entity."""
        return build_entity({"title": "x"}, key=build_key([("Task", 1)]))

    def test_append_order_preserved(self, entity):
        """Operations drain in append order."""
        key = build_key([("Task", 2)])
        buffer = MutationBuffer()
        buffer.add_delete(key).add_upsert(entity).add_insert_auto_id(entity)

        ops = buffer.drain()

        assert [op.kind for op in ops] == [
            OperationKind.DELETE,
            OperationKind.UPSERT,
            OperationKind.INSERT_AUTO_ID,
        ]
        assert ops[0].key == key
        assert ops[1].entity is entity

    def test_insert_auto_id_allows_complete_key(self, entity):
        """A complete key may sit in an insert-auto-id slot."""
        buffer = MutationBuffer().add_insert_auto_id(entity)
        assert buffer.insert_auto_id_count == 1

    def test_type_checks(self, entity):
        """Appends check only the argument type."""
        buffer = MutationBuffer()
        with pytest.raises(TypeError):
            buffer.add_upsert(build_key([("Task", 1)]))
        with pytest.raises(TypeError):
            buffer.add_delete(entity)
        assert len(buffer) == 0

    def test_extend(self, entity):
        """extend adds a batch of one kind."""
        keys = [build_key([("Task", i)]) for i in range(1, 4)]
        buffer = MutationBuffer().extend(OperationKind.DELETE, keys)

        assert len(buffer) == 3
        assert [op.key for op in buffer.operations] == keys

    def test_drain_once(self, entity):
        """A second drain fails fast."""
        buffer = MutationBuffer().add_upsert(entity)
        buffer.drain()

        assert buffer.is_drained
        with pytest.raises(MutationConsumedError):
            buffer.drain()

    def test_append_after_drain(self, entity):
        """Appending to a drained buffer fails fast."""
        buffer = MutationBuffer()
        buffer.drain()

        with pytest.raises(MutationConsumedError):
            buffer.add_upsert(entity)

    def test_empty_drain(self):
        """An empty buffer drains to an empty tuple."""
        assert MutationBuffer().drain() == ()
