"""
Base protocol for the RPC transport.

A transport performs one remote call: it takes a method name and a JSON
request, handles authentication and transient-failure retry, and returns the
JSON response. The SDK core never builds network requests itself.

Invariants:
    - Transient failures (HTTP 503 / gRPC UNAVAILABLE) are retried with
      linear backoff: attempt N waits N * retry_sleep_factor seconds
    - retry_count is the total number of attempts, including the first
    - Any other failure, or a transient failure past the budget, surfaces
      as TransportError

How to change safely:
    - New backends must implement the Transport protocol
    - Keep retries inside the transport; the core retries only deferred reads
"""

from __future__ import annotations

import asyncio
import logging
from abc import abstractmethod
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    Protocol,
    runtime_checkable,
)

from ..errors import ConfigurationError, TransientTransportError, TransportError

if TYPE_CHECKING:
    from ..config import DatastoreSettings

logger = logging.getLogger(__name__)

DEFAULT_RETRY_COUNT = 3
DEFAULT_RETRY_SLEEP_FACTOR = 2.0

SleepFn = Callable[[float], Awaitable[Any]]


@runtime_checkable
class Transport(Protocol):
    """Protocol for RPC transports.

    Example:
        >>> transport = HttpTransport(dataset="my-dataset")
        >>> await transport.connect()
        >>> response = await transport.call("beginTransaction", {})
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open underlying connections. Must be idempotent."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release underlying connections."""
        ...

    @abstractmethod
    async def call(self, method: str, request: Dict[str, Any]) -> Dict[str, Any]:
        """Perform one RPC.

        Args:
            method: RPC method name (e.g. "lookup", "commit")
            request: JSON request payload

        Returns:
            JSON response payload

        Raises:
            TransportError: If the call fails or the retry budget is spent
        """
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether the transport is ready for calls."""
        ...


async def call_with_retry(
    method: str,
    attempt_fn: Callable[[], Awaitable[Dict[str, Any]]],
    *,
    retry_count: int = DEFAULT_RETRY_COUNT,
    retry_sleep_factor: float = DEFAULT_RETRY_SLEEP_FACTOR,
    sleep: SleepFn = asyncio.sleep,
) -> Dict[str, Any]:
    """Run attempt_fn, retrying TransientTransportError with linear backoff.

    Args:
        method: RPC method name, for logging and errors
        attempt_fn: Performs one attempt; raises TransientTransportError when
            the failure may be retried
        retry_count: Total attempts allowed
        retry_sleep_factor: Seconds multiplied by the attempt number
        sleep: Awaitable sleep function

    Raises:
        TransportError: On a non-transient failure or when attempts run out
    """
    attempt = 1
    while True:
        try:
            return await attempt_fn()
        except TransientTransportError as e:
            if attempt >= retry_count:
                raise TransportError(
                    f"{method} failed after {attempt} attempts: {e.message}",
                    method=method,
                    status=e.status,
                    body=e.body,
                ) from e
            delay = attempt * retry_sleep_factor
            logger.warning(
                f"{method} unavailable (status={e.status}), "
                f"retrying in {delay:.1f}s (attempt {attempt}/{retry_count})"
            )
            await sleep(delay)
            attempt += 1


def create_transport(settings: "DatastoreSettings") -> Transport:
    """Factory function to create a transport from settings.

    Args:
        settings: Client settings (dataset must be set)

    Returns:
        Transport implementation selected by settings.transport

    Raises:
        ConfigurationError: If the transport is not supported
    """
    from .grpc_transport import GrpcTransport
    from .http_transport import HttpTransport

    dataset = settings.require_dataset()

    if settings.transport == "http":
        return HttpTransport(
            dataset=dataset,
            host=settings.host,
            access_token=settings.access_token,
            application_name=settings.application_name,
            allow_ipv6=settings.allow_ipv6,
            timeout=settings.timeout,
            retry_count=settings.request_retry_count,
            retry_sleep_factor=settings.request_retry_sleep_factor,
        )
    elif settings.transport == "grpc":
        return GrpcTransport(
            dataset=dataset,
            target=settings.host,
            secure=settings.grpc_secure,
            access_token=settings.access_token,
            timeout=settings.timeout,
            retry_count=settings.request_retry_count,
            retry_sleep_factor=settings.request_retry_sleep_factor,
        )
    else:
        raise ConfigurationError(
            f"Unsupported transport: {settings.transport}", setting="transport"
        )
