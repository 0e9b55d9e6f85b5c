"""
Error types for the Datastore SDK.

This module defines all exception types raised by the SDK:
- DatastoreError: Base exception
- ConfigurationError: Missing or invalid client configuration
- AlreadyInTransactionError / NotInTransactionError: Transaction misuse
- InvalidPathError / MalformedKeyError: Bad key input
- ValidationError: Invalid value, property or entity
- MutationConsumedError: Mutation buffer reused after submission
- TransportError / TransientTransportError: RPC failures
- WireFormatError: Undecodable response payload
- RetryLimitExceededError / DeferredReadExhaustedError: Read retries exhausted
- RemoteMutationError: Commit or blind write rejected by the store
- QueryError: Invalid query input

Invariants:
    - All errors inherit from DatastoreError
    - Errors include context for debugging
    - Secrets never appear in messages or details
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class DatastoreError(Exception):
    """Base exception for all Datastore SDK errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "DATASTORE_ERROR"
        self.details = details or {}


class ConfigurationError(DatastoreError):
    """Client configuration is missing or invalid.

    Raised when:
    - No dataset is configured
    - An unknown transport is requested

    Never retried.
    """

    def __init__(self, message: str, setting: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="CONFIGURATION_ERROR",
            details={"setting": setting},
        )
        self.setting = setting


class TransactionStateError(DatastoreError):
    """The transaction state machine was used out of order."""

    def __init__(self, message: str, code: str, transaction: Optional[str] = None) -> None:
        super().__init__(message, code=code, details={"transaction": transaction})
        self.transaction = transaction


class AlreadyInTransactionError(TransactionStateError):
    """begin() was called while a transaction is already active."""

    def __init__(self, transaction: Optional[str] = None) -> None:
        super().__init__(
            "Already in a transaction. Commit or rollback before starting a new one.",
            code="ALREADY_IN_TRANSACTION",
            transaction=transaction,
        )


class NotInTransactionError(TransactionStateError):
    """commit() or rollback() was called with no active transaction."""

    def __init__(self, message: str = "Not in a transaction") -> None:
        super().__init__(message, code="NOT_IN_TRANSACTION")


class InvalidPathError(DatastoreError):
    """A key path description is invalid.

    Raised when:
    - The path is empty
    - An element has no kind
    - An element has neither id nor name (or both)
    """

    def __init__(self, message: str, index: Optional[int] = None) -> None:
        super().__init__(
            message,
            code="INVALID_PATH",
            details={"index": index},
        )
        self.index = index


class MalformedKeyError(DatastoreError):
    """An encoded key string could not be decoded."""

    def __init__(self, message: str, encoded: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="MALFORMED_KEY",
            details={"encoded": encoded},
        )
        self.encoded = encoded


class ValidationError(DatastoreError):
    """A value, property or entity is invalid.

    Raised when:
    - A value does not match its declared type
    - A single-valued property does not hold exactly one value
    - A multi property mixes value types
    - Property names repeat within an entity
    """

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        errors: Optional[List[str]] = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"field": field_name, "errors": errors or []},
        )
        self.field_name = field_name
        self.errors = errors or []


class MutationConsumedError(DatastoreError):
    """A mutation buffer was used after it was submitted."""

    def __init__(self, operation_count: int = 0) -> None:
        super().__init__(
            "Mutation has already been submitted and cannot be reused",
            code="MUTATION_CONSUMED",
            details={"operation_count": operation_count},
        )
        self.operation_count = operation_count


class TransportError(DatastoreError):
    """An RPC to the store failed.

    Attributes:
        method: RPC method name
        status: HTTP status code or gRPC status name
        body: Response body (truncated)
    """

    def __init__(
        self,
        message: str,
        method: Optional[str] = None,
        status: Any = None,
        body: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="TRANSPORT_ERROR",
            details={"method": method, "status": status, "body": body},
        )
        self.method = method
        self.status = status
        self.body = body


class TransientTransportError(TransportError):
    """A retryable RPC failure (HTTP 503 / gRPC UNAVAILABLE).

    Handled inside the transport's own retry loop; surfaces to callers
    only through the final TransportError once the budget is spent.
    """


class WireFormatError(DatastoreError):
    """A response payload could not be decoded."""

    def __init__(self, message: str, payload: Any = None) -> None:
        super().__init__(message, code="WIRE_FORMAT_ERROR", details={"payload": payload})
        self.payload = payload


class RetryLimitExceededError(DatastoreError):
    """A bounded retry loop ran out of attempts.

    Attributes:
        attempts: Number of retries performed
        pending: Items still unresolved
    """

    def __init__(
        self,
        message: str,
        attempts: int = 0,
        pending: Optional[List[str]] = None,
    ) -> None:
        super().__init__(
            message,
            code="RETRY_LIMIT_EXCEEDED",
            details={"attempts": attempts, "pending": pending or []},
        )
        self.attempts = attempts
        self.pending = pending or []


class DeferredReadExhaustedError(RetryLimitExceededError):
    """Lookup keys were still deferred when the read retry budget ran out."""


class RemoteMutationError(DatastoreError):
    """The store rejected a commit or blind write.

    The outcome of the write is unknown to the client; it is never retried
    automatically.
    """

    def __init__(
        self,
        message: str,
        operation: str,
        transaction: Optional[str] = None,
        status: Any = None,
    ) -> None:
        super().__init__(
            message,
            code="REMOTE_MUTATION_ERROR",
            details={"operation": operation, "transaction": transaction, "status": status},
        )
        self.operation = operation
        self.transaction = transaction
        self.status = status


class QueryError(DatastoreError):
    """Invalid query input."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="QUERY_ERROR")
