"""
HTTP transport for the Datastore SDK.

POSTs JSON requests to the store's REST endpoint:

    {host}/datastore/v1beta1/datasets/{dataset}/{method}

A pre-obtained OAuth access token is sent as a bearer token; obtaining and
caching tokens is the caller's concern.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict

import httpx

from ..config import DEFAULT_HOST
from ..errors import TransientTransportError, TransportError, WireFormatError
from .base import (
    DEFAULT_RETRY_COUNT,
    DEFAULT_RETRY_SLEEP_FACTOR,
    SleepFn,
    call_with_retry,
)

logger = logging.getLogger(__name__)

BASE_PATH = "/datastore/v1beta1/datasets"
_MAX_ERROR_BODY = 2048


class HttpTransport:
    """Transport speaking JSON over HTTPS via httpx.

    Attributes:
        dataset: Dataset identifier used in request URLs
        host: Base URL of the API host
    """

    def __init__(
        self,
        dataset: str,
        host: str = DEFAULT_HOST,
        *,
        access_token: str | None = None,
        application_name: str = "",
        allow_ipv6: bool = False,
        timeout: float = 30.0,
        retry_count: int = DEFAULT_RETRY_COUNT,
        retry_sleep_factor: float = DEFAULT_RETRY_SLEEP_FACTOR,
        http_transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        """Initialize the HTTP transport.

        Args:
            dataset: Dataset identifier
            host: API host base URL
            access_token: Optional OAuth bearer token
            application_name: Sent as the User-Agent
            allow_ipv6: Allow IPv6; by default connections are forced to IPv4
            timeout: Request timeout in seconds
            retry_count: Total attempts for HTTP 503 responses
            retry_sleep_factor: Linear backoff factor in seconds
            http_transport: Optional httpx transport (for testing)
            sleep: Awaitable sleep function
        """
        self.dataset = dataset
        self.host = host
        self._access_token = access_token
        self._application_name = application_name
        self._allow_ipv6 = allow_ipv6
        self._timeout = timeout
        self._retry_count = retry_count
        self._retry_sleep_factor = retry_sleep_factor
        self._http_transport = http_transport
        self._sleep = sleep
        self._client: httpx.AsyncClient | None = None

    @property
    def base_url(self) -> str:
        return host_join(self.host, BASE_PATH)

    def url_for(self, method: str) -> str:
        return f"{self.base_url}/{self.dataset}/{method}"

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        """Create the HTTP client."""
        if self._client is not None:
            return

        transport = self._http_transport
        if transport is None and not self._allow_ipv6:
            transport = httpx.AsyncHTTPTransport(local_address="0.0.0.0")

        headers = {"Accept-Encoding": "gzip", "Content-Type": "application/json"}
        if self._application_name:
            headers["User-Agent"] = self._application_name
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"

        self._client = httpx.AsyncClient(
            transport=transport,
            headers=headers,
            timeout=self._timeout,
        )
        logger.debug(f"HTTP transport ready for dataset {self.dataset} at {self.base_url}")

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.debug("HTTP transport closed")

    async def __aenter__(self) -> HttpTransport:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def call(self, method: str, request: Dict[str, Any]) -> Dict[str, Any]:
        """POST one RPC, retrying 503 responses."""
        if self._client is None:
            raise TransportError("Not connected. Call connect() first.", method=method)
        client = self._client
        url = self.url_for(method)

        async def attempt() -> Dict[str, Any]:
            try:
                response = await client.post(url, json=request)
            except httpx.HTTPError as e:
                raise TransportError(f"{method} request failed: {e}", method=method) from e

            if response.status_code == 200:
                try:
                    payload = response.json() if response.content else {}
                except ValueError as e:
                    raise TransportError(
                        f"{method} returned an invalid JSON body",
                        method=method,
                        status=200,
                        body=response.text[:_MAX_ERROR_BODY],
                    ) from e
                if not isinstance(payload, dict):
                    raise WireFormatError(
                        f"{method} response must be a JSON object", payload=payload
                    )
                return payload

            error_cls = TransientTransportError if response.status_code == 503 else TransportError
            raise error_cls(
                f"HTTP request returned code {response.status_code}",
                method=method,
                status=response.status_code,
                body=response.text[:_MAX_ERROR_BODY],
            )

        return await call_with_retry(
            method,
            attempt,
            retry_count=self._retry_count,
            retry_sleep_factor=self._retry_sleep_factor,
            sleep=self._sleep,
        )


def host_join(host: str, path: str) -> str:
    return host.rstrip("/") + "/" + path.lstrip("/")
