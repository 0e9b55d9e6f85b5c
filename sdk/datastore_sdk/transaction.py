"""
Transaction state machine.

This module provides:
- Transaction: Handle for one server-side transaction and its buffered writes
- TransactionManager: begin/commit/rollback discipline for one client

Lifecycle of a transaction:

    begin() -> ACTIVE -> commit()   -> COMMITTING -> COMMITTED | FAILED
                      -> rollback() -> ROLLED_BACK

Invariants:
    - A manager holds at most one active transaction
    - Writes to an active transaction are buffered, never sent individually
    - commit/rollback release the transaction before any I/O, so no partial
      state is visible to later calls
    - A failed commit is never rolled back or retried: its outcome is unknown
    - Once issued, a commit always ends in COMMITTED or FAILED
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable

from ._wire import mutation_result_keys, mutation_to_wire
from .entity import Entity
from .errors import (
    AlreadyInTransactionError,
    NotInTransactionError,
    RemoteMutationError,
    TransportError,
    WireFormatError,
)
from .keys import Key
from .mutation import MutationBuffer, OperationKind

logger = logging.getLogger(__name__)

RpcFn = Callable[[str, Dict[str, Any]], Awaitable[Dict[str, Any]]]


class TransactionState(Enum):
    """Transaction lifecycle states."""

    ACTIVE = "active"
    COMMITTING = "committing"
    COMMITTED = "committed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


class Transaction:
    """An open transaction and its mutation buffer.

    Obtained from TransactionManager.begin(); pass it to client operations
    or use the client's default active transaction.

    Example:
        >>> txn = await client.begin_transaction()
        >>> txn.add_upsert(entity)
        >>> keys = await txn.commit()
    """

    def __init__(self, manager: TransactionManager, token: str) -> None:
        self._manager = manager
        self.token = token
        self.mutation = MutationBuffer()
        self.state = TransactionState.ACTIVE
        self.inserted_keys: list[Key] = []

    @property
    def is_active(self) -> bool:
        return self.state == TransactionState.ACTIVE

    def _require_active(self) -> None:
        if not self.is_active:
            raise NotInTransactionError(
                f"Transaction is no longer active (state={self.state.value})"
            )

    def add_upsert(self, entity: Entity) -> Transaction:
        self._require_active()
        self.mutation.add_upsert(entity)
        return self

    def add_insert_auto_id(self, entity: Entity) -> Transaction:
        self._require_active()
        self.mutation.add_insert_auto_id(entity)
        return self

    def add_delete(self, key: Key) -> Transaction:
        self._require_active()
        self.mutation.add_delete(key)
        return self

    def extend(self, kind: OperationKind, items: Iterable[Entity | Key]) -> Transaction:
        """Buffer a batch of operations of one kind."""
        self._require_active()
        self.mutation.extend(kind, items)
        return self

    def read_options(self) -> dict[str, Any]:
        return {"transaction": self.token}

    async def commit(self) -> list[Key]:
        """Commit this transaction. See TransactionManager.commit."""
        return await self._manager.commit(self)

    async def rollback(self) -> None:
        """Roll back this transaction; a no-op once it has finished."""
        if not self.is_active:
            return
        await self._manager.rollback(self)

    def __repr__(self) -> str:
        return f"Transaction(state={self.state.value}, ops={len(self.mutation)})"


class TransactionManager:
    """Owns the begin/commit/rollback state machine for one client.

    Not safe for concurrent use: use one manager (one client) per logical
    unit of work.
    """

    def __init__(self, rpc: RpcFn) -> None:
        """Initialize the manager.

        Args:
            rpc: Coroutine function performing (method, request) -> response
        """
        self._rpc = rpc
        self._current: Transaction | None = None

    @property
    def current(self) -> Transaction | None:
        """The active transaction, if any."""
        if self._current is not None and not self._current.is_active:
            self._current = None
        return self._current

    def in_transaction(self) -> bool:
        return self.current is not None

    def active(self, transaction: Transaction | None = None) -> Transaction | None:
        """Resolve the transaction an operation should join.

        Args:
            transaction: Explicit transaction handle, or None for the
                manager's active transaction

        Returns:
            The transaction to use, or None when no transaction is open

        Raises:
            NotInTransactionError: If an explicit handle is no longer active
        """
        if transaction is None:
            return self.current
        transaction._require_active()
        return transaction

    def _resolve(self, transaction: Transaction | None) -> Transaction:
        txn = self.active(transaction)
        if txn is None:
            raise NotInTransactionError()
        return txn

    def _release(self, transaction: Transaction) -> None:
        if self._current is transaction:
            self._current = None

    async def begin(self) -> Transaction:
        """Begin a transaction.

        Returns:
            The new Transaction

        Raises:
            AlreadyInTransactionError: If a transaction is already active
            WireFormatError: If the store returned no transaction token
        """
        current = self.current
        if current is not None:
            raise AlreadyInTransactionError(current.token)

        response = await self._rpc("beginTransaction", {})
        token = response.get("transaction")
        if not token:
            raise WireFormatError("beginTransaction response has no transaction", payload=response)

        self._current = Transaction(self, token)
        logger.debug("Transaction started")
        return self._current

    async def commit(self, transaction: Transaction | None = None) -> list[Key]:
        """Commit the buffered mutation all-or-nothing.

        Args:
            transaction: Transaction to commit (default: the active one)

        Returns:
            Store-assigned keys of insert-auto-id operations, in order
            (empty if none)

        Raises:
            NotInTransactionError: If no transaction is active
            RemoteMutationError: If the store rejected the commit
            WireFormatError: If the commit result is malformed
        """
        txn = self._resolve(transaction)
        operations = txn.mutation.drain()
        request = {"transaction": txn.token, "mutation": mutation_to_wire(operations)}
        txn.state = TransactionState.COMMITTING
        self._release(txn)

        committed = False
        try:
            response = await self._rpc("commit", request)
            txn.inserted_keys = mutation_result_keys(response, txn.mutation.insert_auto_id_count)
            committed = True
        except TransportError as e:
            logger.error(f"Commit of {len(operations)} operations failed: {e.message}")
            raise RemoteMutationError(
                f"Commit failed: {e.message}",
                operation="commit",
                transaction=txn.token,
                status=e.status,
            ) from e
        finally:
            txn.state = TransactionState.COMMITTED if committed else TransactionState.FAILED

        logger.debug(
            f"Transaction committed ({len(operations)} operations, "
            f"{len(txn.inserted_keys)} generated keys)"
        )
        return list(txn.inserted_keys)

    async def rollback(self, transaction: Transaction | None = None) -> None:
        """Discard the buffered mutation and release the transaction.

        Raises:
            NotInTransactionError: If no transaction is active
        """
        txn = self._resolve(transaction)
        txn.state = TransactionState.ROLLED_BACK
        self._release(txn)
        await self._rpc("rollback", {"transaction": txn.token})
        logger.debug(f"Transaction rolled back ({len(txn.mutation)} operations discarded)")
