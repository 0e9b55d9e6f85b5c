"""
RPC transport abstraction for the Datastore SDK.

This package provides a pluggable transport interface supporting:
- HTTP/JSON via httpx (default)
- gRPC with JSON messages

Invariants:
    - Transports own authentication and transient-failure retry
    - The SDK core only ever calls Transport.call(method, request)

How to change safely:
    - New backends must implement the Transport protocol
    - Keep the retry policy in call_with_retry shared by all backends
"""

from .base import (
    DEFAULT_RETRY_COUNT,
    DEFAULT_RETRY_SLEEP_FACTOR,
    Transport,
    call_with_retry,
    create_transport,
)
from .grpc_transport import GrpcTransport
from .http_transport import HttpTransport

__all__ = [
    # Protocol
    "Transport",
    "call_with_retry",
    "DEFAULT_RETRY_COUNT",
    "DEFAULT_RETRY_SLEEP_FACTOR",
    # Factory
    "create_transport",
    # Implementations
    "HttpTransport",
    "GrpcTransport",
]
