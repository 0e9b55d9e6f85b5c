"""
Datastore client for the Python SDK.

This module provides the main client interface:
- DatastoreClient: Connection to the store plus reads, queries, writes and
  transactions

Example:
    >>> async with DatastoreClient(DatastoreSettings(dataset="my-dataset")) as db:
    ...     key = db.make_key([("Account", "alice")])
    ...     await db.write_entity(db.build_entity({"plan": "pro"}, key=key))
    ...     entity = await db.get_entity(key)

Write policy (write_entities, insert_auto_id_multi, delete_multi):
    1. A transaction is active: operations are buffered in it and nothing is
       sent until it commits
    2. use_transaction=True: an implicit transaction is opened, the batch is
       buffered and committed; it is rolled back only if the failure happens
       before the commit request was issued
    3. use_transaction=False: the batch is sent as one blind write and any
       generated keys are returned immediately

Invariants:
    - One client holds at most one active transaction
    - A commit is never retried or rolled back once issued
    - Every read is a fresh request; nothing is cached
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, Mapping

from ._wire import (
    key_to_wire,
    key_from_wire,
    mutation_result_keys,
    mutation_to_wire,
    partition_id,
    query_response_entities,
    query_to_wire,
    read_options,
)
from .config import DatastoreSettings
from .entity import Entity, build_entity, entity_to_dict
from .errors import RemoteMutationError, TransportError
from .keys import Key, PathSpec, build_key, decode_key, encode_key, keys_match, path_from_key
from .lookup import LookupRetrier
from .mutation import MutationBuffer, OperationKind
from .query import QueryDescriptor, build_key_query, build_query
from .transaction import Transaction, TransactionManager
from .transport import Transport, create_transport

logger = logging.getLogger(__name__)


class DatastoreClient:
    """Client for a Datastore dataset.

    Not safe for concurrent use by several tasks: use one client per logical
    unit of work.

    Example:
        >>> async with DatastoreClient() as db:
        ...     async with db.transaction():
        ...         await db.write_entities([e1, e2])
    """

    def __init__(
        self,
        settings: DatastoreSettings | None = None,
        *,
        transport: Transport | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        """Initialize client.

        Args:
            settings: Client settings (default: loaded from environment)
            transport: Transport to use instead of the one built from settings
            sleep: Awaitable sleep used between lookup retries
        """
        self.settings = settings or DatastoreSettings()
        self._transport = transport
        self._connected = False
        self.transactions = TransactionManager(self.call)
        self._lookup = LookupRetrier(
            self.call,
            retry_limit=self.settings.lookup_retry_limit,
            base_delay=self.settings.lookup_retry_delay,
            sleep=sleep or asyncio.sleep,
        )

    @property
    def namespace(self) -> str | None:
        return self.settings.namespace or None

    # Connection

    async def connect(self) -> None:
        """Validate configuration and connect the transport.

        Raises:
            ConfigurationError: If no dataset is configured
        """
        if self._connected:
            return

        dataset = self.settings.require_dataset()
        if self._transport is None:
            self._transport = create_transport(self.settings)
        await self._transport.connect()
        self._connected = True
        logger.debug(f"Connected to dataset {dataset} via {self.settings.transport}")

    async def close(self) -> None:
        """Close the connection."""
        if self._connected and self._transport is not None:
            await self._transport.close()
            self._connected = False

    async def __aenter__(self) -> DatastoreClient:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def call(self, method: str, request: dict[str, Any]) -> dict[str, Any]:
        """Perform one RPC, connecting first if needed."""
        if not self._connected:
            await self.connect()
        return await self._transport.call(method, request)  # type: ignore[union-attr]

    # Keys

    def make_key(self, path: Iterable[PathSpec], *, allow_incomplete: bool = False) -> Key:
        """Build a key in the client namespace."""
        return build_key(path, self.namespace, allow_incomplete=allow_incomplete)

    def make_path(self, key: Key) -> list[dict[str, Any]]:
        return path_from_key(key)

    def encode_key(self, key: Key) -> str:
        return encode_key(key)

    def decode_key(self, encoded: str) -> Key:
        return decode_key(encoded)

    def keys_match(self, a: Key, b: Key) -> bool:
        return keys_match(a, b)

    def _child_key(
        self,
        kind: str,
        element: dict[str, Any],
        ancestor_path: Iterable[PathSpec] | None,
    ) -> Key:
        return self.make_key([*(ancestor_path or ()), {"kind": kind, **element}])

    # Transactions

    async def begin_transaction(self) -> Transaction:
        """Begin a transaction.

        Raises:
            AlreadyInTransactionError: If a transaction is already active
        """
        return await self.transactions.begin()

    def in_transaction(self) -> bool:
        return self.transactions.in_transaction()

    async def commit(self, transaction: Transaction | None = None) -> list[Key]:
        """Commit the active (or given) transaction.

        Returns:
            Keys generated for insert-auto-id operations

        Raises:
            NotInTransactionError: If no transaction is active
            RemoteMutationError: If the store rejected the commit
        """
        return await self.transactions.commit(transaction)

    async def rollback(self, transaction: Transaction | None = None) -> None:
        """Roll back the active (or given) transaction.

        Raises:
            NotInTransactionError: If no transaction is active
        """
        await self.transactions.rollback(transaction)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Transaction]:
        """Run a block in a transaction.

        Commits when the block exits normally (unless the block already
        committed or rolled back) and rolls back when it raises.

        Example:
            >>> async with db.transaction() as txn:
            ...     await db.insert_auto_id(entity)
            >>> txn.inserted_keys
        """
        txn = await self.begin_transaction()
        try:
            yield txn
        except BaseException:
            await self._rollback_after_error(txn)
            raise
        if txn.is_active:
            await txn.commit()

    async def _rollback_after_error(self, txn: Transaction) -> None:
        """Roll back txn while another exception propagates.

        A rollback failure is logged so it does not replace that exception.
        """
        try:
            await txn.rollback()
        except Exception as e:
            logger.error(f"Rollback of transaction after error failed: {e}")

    def _read_token(self, transaction: Transaction | None) -> str | None:
        txn = self.transactions.active(transaction)
        return txn.token if txn is not None else None

    # Reads

    async def get_entities(
        self,
        keys: Iterable[Key],
        retry_limit: int | None = None,
        *,
        transaction: Transaction | None = None,
    ) -> dict[str, Entity | None]:
        """Look up entities by key.

        Args:
            keys: Keys to look up
            retry_limit: Override of the deferred-key retry budget
            transaction: Transaction whose snapshot to read (default: the
                active one)

        Returns:
            Mapping of encoded key -> Entity, or None for missing entities

        Raises:
            DeferredReadExhaustedError: If keys stay deferred past the budget
        """
        return await self._lookup.lookup(
            keys, transaction=self._read_token(transaction), retry_limit=retry_limit
        )

    async def get_entity(
        self, key: Key, *, transaction: Transaction | None = None
    ) -> Entity | None:
        """Get an entity by key, or None if it does not exist."""
        results = await self.get_entities([key], transaction=transaction)
        return results.get(encode_key(key))

    async def get_entity_by_path(
        self, path: Iterable[PathSpec], *, transaction: Transaction | None = None
    ) -> Entity | None:
        return await self.get_entity(self.make_key(path), transaction=transaction)

    async def get_entity_by_name(
        self,
        kind: str,
        name: str,
        ancestor_path: Iterable[PathSpec] | None = None,
        *,
        transaction: Transaction | None = None,
    ) -> Entity | None:
        key = self._child_key(kind, {"name": name}, ancestor_path)
        return await self.get_entity(key, transaction=transaction)

    async def get_entity_by_id(
        self,
        kind: str,
        id: int,
        ancestor_path: Iterable[PathSpec] | None = None,
        *,
        transaction: Transaction | None = None,
    ) -> Entity | None:
        key = self._child_key(kind, {"id": id}, ancestor_path)
        return await self.get_entity(key, transaction=transaction)

    async def get_entities_by_name(
        self,
        kind: str,
        names: Iterable[str],
        ancestor_path: Iterable[PathSpec] | None = None,
        *,
        transaction: Transaction | None = None,
    ) -> dict[str, Entity | None]:
        ancestors = list(ancestor_path or ())
        keys = [self._child_key(kind, {"name": n}, ancestors) for n in names]
        return await self.get_entities(keys, transaction=transaction)

    async def get_entities_by_id(
        self,
        kind: str,
        ids: Iterable[int],
        ancestor_path: Iterable[PathSpec] | None = None,
        *,
        transaction: Transaction | None = None,
    ) -> dict[str, Entity | None]:
        ancestors = list(ancestor_path or ())
        keys = [self._child_key(kind, {"id": i}, ancestors) for i in ids]
        return await self.get_entities(keys, transaction=transaction)

    async def get_entities_by_path(
        self,
        child_paths: Iterable[Iterable[PathSpec]],
        ancestor_path: Iterable[PathSpec] | None = None,
        *,
        transaction: Transaction | None = None,
    ) -> dict[str, Entity | None]:
        """Look up entities by path, each relative to an optional common ancestor."""
        ancestors = list(ancestor_path or ())
        keys = [self.make_key([*ancestors, *child]) for child in child_paths]
        return await self.get_entities(keys, transaction=transaction)

    async def get_entities_by_ancestor(
        self,
        ancestor: Key | Iterable[PathSpec],
        kind: str | None = None,
        limit: int = 0,
        order_by: str | None = None,
        ascending: bool = True,
        *,
        transaction: Transaction | None = None,
    ) -> list[Entity]:
        """Query the descendants of an entity.

        Args:
            ancestor: Ancestor key or path
            kind: Restrict results to one kind (default: all kinds)
            limit: Maximum results, 0 for no limit
            order_by: Property to order by
            ascending: Sort direction for order_by

        Returns:
            Matching entities in store order
        """
        query = self.build_query(
            kind,
            ancestor=ancestor,
            orders={order_by: ascending} if order_by else None,
            limit=limit,
        )
        return await self.run_query(query, transaction=transaction)

    async def get_properties(
        self,
        key: Key,
        properties: Iterable[str],
        indexed_properties: Iterable[str] = (),
        *,
        transaction: Transaction | None = None,
    ) -> dict[str, Any] | None:
        """Load only some properties of an entity.

        Uses a projection query when every requested property is indexed,
        otherwise fetches the full entity and keeps the requested properties.

        Returns:
            property -> value for the requested properties present on the
            entity, or None if the entity does not exist
        """
        names = list(properties)
        if names and set(names) <= set(indexed_properties):
            query = build_key_query(key.kind, key, names)
            entities = await self.run_query(query, transaction=transaction)
            entity = entities[0] if entities else None
        else:
            entity = await self.get_entity(key, transaction=transaction)

        if entity is None:
            return None
        return {name: entity.get(name) for name in names if name in entity}

    # Queries

    def build_query(
        self,
        kinds: str | Iterable[str] | None,
        properties: Mapping[str, Any] | None = None,
        ancestor: Key | Iterable[PathSpec] | None = None,
        orders: Mapping[str, Any] | Iterable[Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
        group_by: str | Iterable[str] | None = None,
        required_properties: str | Iterable[str] | None = None,
    ) -> QueryDescriptor:
        """Build a query; ancestor paths resolve in the client namespace."""
        return build_query(
            kinds,
            properties,
            ancestor,
            orders,
            limit,
            offset,
            group_by,
            required_properties,
            namespace=self.namespace,
        )

    def build_key_query(
        self,
        kind: str,
        keys: Key | Iterable[Key],
        required_properties: Iterable[str] | None = None,
    ) -> QueryDescriptor:
        return build_key_query(kind, keys, required_properties)

    async def run_query(
        self, query: QueryDescriptor, *, transaction: Transaction | None = None
    ) -> list[Entity]:
        """Run a query.

        Returns:
            Result entities in the order the store returned them
        """
        request: dict[str, Any] = {"query": query_to_wire(query)}
        partition = partition_id(self.namespace)
        if partition:
            request["partitionId"] = partition
        options = read_options(self._read_token(transaction))
        if options:
            request["readOptions"] = options

        response = await self.call("runQuery", request)
        return query_response_entities(response)

    # Writes

    async def _blind_write(self, buffer: MutationBuffer) -> list[Key]:
        """Submit a mutation without a transaction.

        Raises:
            RemoteMutationError: If the store rejected the write
            WireFormatError: If the write result is malformed
        """
        operations = buffer.drain()
        request = {"mutation": mutation_to_wire(operations)}
        try:
            response = await self.call("blindWrite", request)
        except TransportError as e:
            logger.error(f"Blind write of {len(operations)} operations failed: {e.message}")
            raise RemoteMutationError(
                f"Blind write failed: {e.message}",
                operation="blindWrite",
                status=e.status,
            ) from e

        keys = mutation_result_keys(response, buffer.insert_auto_id_count)
        logger.debug(
            f"Blind write applied ({len(operations)} operations, {len(keys)} generated keys)"
        )
        return keys

    async def _apply_writes(
        self,
        kind: OperationKind,
        items: Iterable[Entity | Key],
        use_transaction: bool,
        transaction: Transaction | None = None,
    ) -> list[Key] | None:
        """Apply a batch of one operation kind under the client write policy.

        Returns:
            Generated keys, or None when the batch joined an open transaction
        """
        batch = list(items)
        txn = self.transactions.active(transaction)
        if txn is not None:
            txn.extend(kind, batch)
            return None

        if not batch:
            return []

        if not use_transaction:
            return await self._blind_write(MutationBuffer().extend(kind, batch))

        txn = await self.transactions.begin()
        try:
            txn.extend(kind, batch)
            return await txn.commit()
        except Exception:
            # No-op once the commit request has been issued
            await self._rollback_after_error(txn)
            raise

    async def write_entity(
        self, entity: Entity, *, transaction: Transaction | None = None
    ) -> None:
        """Upsert one entity (blind write unless a transaction is active)."""
        await self._apply_writes(OperationKind.UPSERT, [entity], False, transaction)

    async def write_entities(
        self,
        entities: Iterable[Entity],
        use_transaction: bool = True,
        *,
        transaction: Transaction | None = None,
    ) -> None:
        """Upsert entities."""
        await self._apply_writes(OperationKind.UPSERT, entities, use_transaction, transaction)

    async def insert_auto_id(
        self, entity: Entity, *, transaction: Transaction | None = None
    ) -> Key | None:
        """Insert one entity with a store-generated id.

        Returns:
            The generated key, or None when buffered in a transaction
        """
        keys = await self._apply_writes(
            OperationKind.INSERT_AUTO_ID, [entity], False, transaction
        )
        return keys[0] if keys else None

    async def insert_auto_id_multi(
        self,
        entities: Iterable[Entity],
        use_transaction: bool = True,
        *,
        transaction: Transaction | None = None,
    ) -> list[Key] | None:
        """Insert entities with store-generated ids.

        Returns:
            Generated keys in insertion order, or None when buffered in an
            open transaction (the keys are returned by its commit)
        """
        return await self._apply_writes(
            OperationKind.INSERT_AUTO_ID, entities, use_transaction, transaction
        )

    async def delete(self, key: Key, *, transaction: Transaction | None = None) -> None:
        """Delete one entity (blind write unless a transaction is active)."""
        await self._apply_writes(OperationKind.DELETE, [key], False, transaction)

    async def delete_by_path(
        self, path: Iterable[PathSpec], *, transaction: Transaction | None = None
    ) -> None:
        await self.delete(self.make_key(path), transaction=transaction)

    async def delete_multi(
        self,
        keys: Iterable[Key],
        use_transaction: bool = True,
        *,
        transaction: Transaction | None = None,
    ) -> None:
        await self._apply_writes(OperationKind.DELETE, keys, use_transaction, transaction)

    async def allocate_ids(self, keys: Iterable[Key]) -> list[Key]:
        """Reserve ids for incomplete keys without writing entities.

        Returns:
            Complete keys, in the order of the given keys
        """
        key_list = list(keys)
        if not key_list:
            return []
        response = await self.call("allocateIds", {"key": [key_to_wire(k) for k in key_list]})
        return [key_from_wire(k) for k in response.get("key") or []]

    # Entities

    def build_entity(
        self,
        properties: Mapping[str, Any],
        index_properties: Iterable[str] = (),
        key: Key | None = None,
    ) -> Entity:
        return build_entity(properties, index_properties, key)

    def entity_to_dict(self, entity: Entity) -> dict[str, Any]:
        return entity_to_dict(entity)
