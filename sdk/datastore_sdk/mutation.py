"""
Mutation buffer for pending writes.

A MutationBuffer collects upsert, insert-with-generated-id and delete
operations until they are submitted, either by a transaction commit or by a
blind write.

Invariants:
    - Operations are kept in append order
    - Appending performs no I/O and no validation beyond type
    - A buffer is drained exactly once; any use after that fails fast

Example:
    >>> buffer = MutationBuffer()
    >>> buffer.add_upsert(entity).add_delete(old_key)
    >>> ops = buffer.drain()
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from .entity import Entity
from .errors import MutationConsumedError
from .keys import Key


class OperationKind(Enum):
    """Write operation kinds."""

    UPSERT = "upsert"
    INSERT_AUTO_ID = "insertAutoId"
    DELETE = "delete"


@dataclass(frozen=True)
class MutationOp:
    """A single buffered write.

    Attributes:
        kind: Operation kind
        entity: Entity for upsert / insert-auto-id
        key: Key for delete
    """

    kind: OperationKind
    entity: Entity | None = None
    key: Key | None = None


class MutationBuffer:
    """Ordered, write-once collection of pending write operations."""

    def __init__(self) -> None:
        self._operations: list[MutationOp] = []
        self._drained = False

    def _append(self, op: MutationOp) -> MutationBuffer:
        if self._drained:
            raise MutationConsumedError(len(self._operations))
        self._operations.append(op)
        return self

    def add_upsert(self, entity: Entity) -> MutationBuffer:
        """Add an upsert of a complete entity."""
        if not isinstance(entity, Entity):
            raise TypeError(f"add_upsert expects an Entity, got {type(entity).__name__}")
        return self._append(MutationOp(OperationKind.UPSERT, entity=entity))

    def add_insert_auto_id(self, entity: Entity) -> MutationBuffer:
        """Add an insert whose final key id is assigned by the store."""
        if not isinstance(entity, Entity):
            raise TypeError(
                f"add_insert_auto_id expects an Entity, got {type(entity).__name__}"
            )
        return self._append(MutationOp(OperationKind.INSERT_AUTO_ID, entity=entity))

    def add_delete(self, key: Key) -> MutationBuffer:
        """Add a delete by key."""
        if not isinstance(key, Key):
            raise TypeError(f"add_delete expects a Key, got {type(key).__name__}")
        return self._append(MutationOp(OperationKind.DELETE, key=key))

    def add(self, kind: OperationKind, item: Entity | Key) -> MutationBuffer:
        """Add one operation of the given kind."""
        if kind == OperationKind.UPSERT:
            return self.add_upsert(item)  # type: ignore[arg-type]
        if kind == OperationKind.INSERT_AUTO_ID:
            return self.add_insert_auto_id(item)  # type: ignore[arg-type]
        return self.add_delete(item)  # type: ignore[arg-type]

    def extend(self, kind: OperationKind, items: Iterable[Entity | Key]) -> MutationBuffer:
        for item in items:
            self.add(kind, item)
        return self

    def drain(self) -> tuple[MutationOp, ...]:
        """Hand the operations over for submission.

        Returns:
            Operations in append order

        Raises:
            MutationConsumedError: If the buffer was already drained
        """
        if self._drained:
            raise MutationConsumedError(len(self._operations))
        self._drained = True
        return tuple(self._operations)

    @property
    def operations(self) -> tuple[MutationOp, ...]:
        return tuple(self._operations)

    @property
    def is_drained(self) -> bool:
        return self._drained

    @property
    def insert_auto_id_count(self) -> int:
        return sum(1 for op in self._operations if op.kind == OperationKind.INSERT_AUTO_ID)

    def __len__(self) -> int:
        return len(self._operations)

    def __repr__(self) -> str:
        state = "drained" if self._drained else "open"
        return f"MutationBuffer({len(self._operations)} ops, {state})"
