"""
gRPC transport for the Datastore SDK.

Calls the store's service through generic unary-unary methods whose
messages are JSON documents, so no generated stubs are required:

    /datastore.v1beta1.DatastoreService/<method>

The dataset and bearer token travel as call metadata. UNAVAILABLE is treated
like HTTP 503 and retried with the same linear backoff.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict

import grpc
from grpc import aio as grpc_aio

from ..errors import TransientTransportError, TransportError, WireFormatError
from .base import (
    DEFAULT_RETRY_COUNT,
    DEFAULT_RETRY_SLEEP_FACTOR,
    SleepFn,
    call_with_retry,
)

logger = logging.getLogger(__name__)

SERVICE_NAME = "datastore.v1beta1.DatastoreService"
DEFAULT_PORT = 443


def _serialize(message: Dict[str, Any]) -> bytes:
    return json.dumps(message, separators=(",", ":")).encode("utf-8")


def _deserialize(data: bytes) -> Dict[str, Any]:
    if not data:
        return {}
    return json.loads(data.decode("utf-8"))


class GrpcTransport:
    """Transport speaking JSON messages over gRPC.

    Attributes:
        dataset: Dataset identifier sent with every call
    """

    def __init__(
        self,
        dataset: str,
        target: str = "localhost",
        *,
        secure: bool = True,
        credentials: grpc.ChannelCredentials | None = None,
        access_token: str | None = None,
        timeout: float = 30.0,
        retry_count: int = DEFAULT_RETRY_COUNT,
        retry_sleep_factor: float = DEFAULT_RETRY_SLEEP_FACTOR,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        """Initialize the gRPC transport.

        Args:
            dataset: Dataset identifier
            target: Server address (host:port, or host for the default port);
                a URL scheme prefix is ignored
            secure: Whether to use TLS
            credentials: Optional TLS credentials
            access_token: Optional OAuth bearer token
            timeout: Per-call deadline in seconds
            retry_count: Total attempts for UNAVAILABLE responses
            retry_sleep_factor: Linear backoff factor in seconds
            sleep: Awaitable sleep function
        """
        self.dataset = dataset
        self._address = parse_target(target)
        self._secure = secure
        self._credentials = credentials
        self._access_token = access_token
        self._timeout = timeout
        self._retry_count = retry_count
        self._retry_sleep_factor = retry_sleep_factor
        self._sleep = sleep
        self._channel: grpc_aio.Channel | None = None

    @property
    def address(self) -> str:
        return self._address

    @property
    def is_connected(self) -> bool:
        return self._channel is not None

    async def connect(self) -> None:
        """Open the channel."""
        if self._channel is not None:
            return

        options = [
            ("grpc.max_send_message_length", 50 * 1024 * 1024),
            ("grpc.max_receive_message_length", 50 * 1024 * 1024),
        ]
        if self._secure:
            credentials = self._credentials or grpc.ssl_channel_credentials()
            self._channel = grpc_aio.secure_channel(self._address, credentials, options=options)
        else:
            self._channel = grpc_aio.insecure_channel(self._address, options=options)

        logger.debug(f"gRPC transport ready for dataset {self.dataset} at {self._address}")

    async def close(self) -> None:
        """Close the channel."""
        if self._channel is not None:
            await self._channel.close()
            self._channel = None
            logger.debug("gRPC transport closed")

    async def __aenter__(self) -> GrpcTransport:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _metadata(self) -> list[tuple[str, str]]:
        metadata = [("x-datastore-dataset", self.dataset)]
        if self._access_token:
            metadata.append(("authorization", f"Bearer {self._access_token}"))
        return metadata

    async def call(self, method: str, request: Dict[str, Any]) -> Dict[str, Any]:
        """Invoke one RPC, retrying UNAVAILABLE."""
        if self._channel is None:
            raise TransportError("Not connected. Call connect() first.", method=method)

        rpc = self._channel.unary_unary(
            f"/{SERVICE_NAME}/{method}",
            request_serializer=_serialize,
            response_deserializer=_deserialize,
        )

        async def attempt() -> Dict[str, Any]:
            try:
                response = await rpc(request, metadata=self._metadata(), timeout=self._timeout)
            except grpc.RpcError as e:
                code = e.code() if hasattr(e, "code") else None
                status = code.name if code is not None else None
                details = e.details() if hasattr(e, "details") else str(e)
                error_cls = (
                    TransientTransportError
                    if code == grpc.StatusCode.UNAVAILABLE
                    else TransportError
                )
                raise error_cls(
                    f"gRPC call returned {status}",
                    method=method,
                    status=status,
                    body=details,
                ) from e
            # grpc.aio yields None when the response deserializer fails
            if response is None:
                raise WireFormatError(f"{method} returned an undecodable message")
            if not isinstance(response, dict):
                raise WireFormatError(
                    f"{method} response must be a JSON object", payload=response
                )
            return response

        return await call_with_retry(
            method,
            attempt,
            retry_count=self._retry_count,
            retry_sleep_factor=self._retry_sleep_factor,
            sleep=self._sleep,
        )


def parse_target(target: str) -> str:
    """Normalize a target to host:port."""
    for scheme in ("https://", "http://", "grpc://", "grpcs://"):
        if target.startswith(scheme):
            target = target[len(scheme):]
            break
    target = target.rstrip("/")
    if ":" in target.rsplit("]", 1)[-1]:
        return target
    return f"{target}:{DEFAULT_PORT}"
