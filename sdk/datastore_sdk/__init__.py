"""
Datastore Python SDK - Client library for a hierarchical entity store.

This SDK provides the client-side protocol discipline for the store:
- Keys addressed by ancestor-to-child paths, with a canonical string form
- Entities with typed, optionally indexed, optionally multi-valued properties
- Transactions with buffered, all-or-nothing mutations
- Lookups that retry deferred keys
- Queries with filters, ordering, grouping and projection

Example:
    >>> from datastore_sdk import DatastoreClient, DatastoreSettings
    >>>
    >>> settings = DatastoreSettings(dataset="my-dataset")
    >>> async with DatastoreClient(settings) as db:
    ...     async with db.transaction() as txn:
    ...         await db.insert_auto_id(db.build_entity({"title": "My Task"},
    ...                                 key=db.make_key([("Task", None)], allow_incomplete=True)))
    ...     print(txn.inserted_keys)

Invariants:
    - One client holds at most one active transaction
    - Writes inside a transaction are sent only by its commit
    - Deferred reads are retried, never silently dropped

Version: 1.0.0
"""

__version__ = "1.0.0"

from .client import DatastoreClient
from .config import DatastoreSettings
from .entity import (
    Entity,
    Property,
    Value,
    ValueType,
    build_entity,
    entity_to_dict,
)
from .errors import (
    AlreadyInTransactionError,
    ConfigurationError,
    DatastoreError,
    DeferredReadExhaustedError,
    InvalidPathError,
    MalformedKeyError,
    MutationConsumedError,
    NotInTransactionError,
    QueryError,
    RemoteMutationError,
    RetryLimitExceededError,
    TransactionStateError,
    TransientTransportError,
    TransportError,
    ValidationError,
    WireFormatError,
)
from .keys import (
    Key,
    PathElement,
    build_key,
    decode_key,
    encode_key,
    keys_match,
    path_from_key,
)
from .lookup import LookupRetrier
from .mutation import MutationBuffer, MutationOp, OperationKind
from .query import (
    CompositeFilter,
    CompositeOperator,
    Direction,
    FilterOperator,
    PropertyFilter,
    PropertyOrder,
    QueryDescriptor,
    build_key_query,
    build_query,
)
from .transaction import Transaction, TransactionManager, TransactionState
from .transport import GrpcTransport, HttpTransport, Transport, create_transport

__all__ = [
    # Version
    "__version__",
    # Keys
    "Key",
    "PathElement",
    "build_key",
    "path_from_key",
    "encode_key",
    "decode_key",
    "keys_match",
    # Entities
    "Entity",
    "Property",
    "Value",
    "ValueType",
    "build_entity",
    "entity_to_dict",
    # Mutations and transactions
    "MutationBuffer",
    "MutationOp",
    "OperationKind",
    "Transaction",
    "TransactionManager",
    "TransactionState",
    # Reads and queries
    "LookupRetrier",
    "QueryDescriptor",
    "PropertyFilter",
    "CompositeFilter",
    "PropertyOrder",
    "FilterOperator",
    "CompositeOperator",
    "Direction",
    "build_query",
    "build_key_query",
    # Client
    "DatastoreClient",
    "DatastoreSettings",
    # Transport
    "Transport",
    "HttpTransport",
    "GrpcTransport",
    "create_transport",
    # Errors
    "DatastoreError",
    "ConfigurationError",
    "TransactionStateError",
    "AlreadyInTransactionError",
    "NotInTransactionError",
    "InvalidPathError",
    "MalformedKeyError",
    "ValidationError",
    "MutationConsumedError",
    "TransportError",
    "TransientTransportError",
    "WireFormatError",
    "RetryLimitExceededError",
    "DeferredReadExhaustedError",
    "RemoteMutationError",
    "QueryError",
]
