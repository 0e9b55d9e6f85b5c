"""
Integration tests for GrpcTransport with a mocked channel.

Tests cover:
- Method path, metadata and JSON serializers
- UNAVAILABLE retry with linear backoff
- Non-retryable status codes
- Malformed response messages
- Target parsing
"""

from unittest.mock import AsyncMock, MagicMock, patch

import grpc
import pytest

from datastore_sdk.errors import TransportError, WireFormatError
from datastore_sdk.transport import GrpcTransport
from datastore_sdk.transport.grpc_transport import _deserialize, _serialize, parse_target


def rpc_error(code, details="error"):
    return grpc.aio.AioRpcError(code, grpc.aio.Metadata(), grpc.aio.Metadata(), details)


class TestGrpcTransport:
    """Tests for GrpcTransport."""

    @pytest.fixture
    def rpc(self):
        return AsyncMock(return_value={"transaction": "txn-1"})

    @pytest.fixture
    def channel(self, rpc):
        channel = MagicMock()
        channel.unary_unary.return_value = rpc
        channel.close = AsyncMock()
        return channel

    @pytest.fixture
    def sleep(self):
        return AsyncMock()

    @pytest.fixture
    def transport(self, channel, sleep):
        with patch(
            "datastore_sdk.transport.grpc_transport.grpc_aio.insecure_channel",
            return_value=channel,
        ) as insecure_channel:
            transport = GrpcTransport(
                "my-dataset", "localhost:8081", secure=False, access_token="token-1", sleep=sleep
            )
            transport.insecure_channel = insecure_channel
            yield transport

    @pytest.mark.asyncio
    async def test_call(self, transport, channel, rpc):
        """Calls use the service method path, JSON serializers and metadata."""
        async with transport:
            response = await transport.call("beginTransaction", {})

        assert response == {"transaction": "txn-1"}
        transport.insecure_channel.assert_called_once()
        assert transport.insecure_channel.call_args.args[0] == "localhost:8081"
        channel.unary_unary.assert_called_once_with(
            "/datastore.v1beta1.DatastoreService/beginTransaction",
            request_serializer=_serialize,
            response_deserializer=_deserialize,
        )
        kwargs = rpc.await_args.kwargs
        assert ("x-datastore-dataset", "my-dataset") in kwargs["metadata"]
        assert ("authorization", "Bearer token-1") in kwargs["metadata"]
        channel.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_retry_unavailable(self, transport, rpc, sleep):
        """UNAVAILABLE is retried with linear backoff."""
        rpc.side_effect = [rpc_error(grpc.StatusCode.UNAVAILABLE), {"found": []}]

        async with transport:
            assert await transport.call("lookup", {}) == {"found": []}

        assert rpc.await_count == 2
        assert [c.args[0] for c in sleep.await_args_list] == [2.0]

    @pytest.mark.asyncio
    async def test_unavailable_budget_exhausted(self, transport, rpc, sleep):
        """UNAVAILABLE past the budget surfaces as TransportError."""
        rpc.side_effect = rpc_error(grpc.StatusCode.UNAVAILABLE, "down")

        async with transport:
            with pytest.raises(TransportError) as exc_info:
                await transport.call("lookup", {})

        assert rpc.await_count == 3
        assert exc_info.value.status == "UNAVAILABLE"
        assert [c.args[0] for c in sleep.await_args_list] == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_other_status_not_retried(self, transport, rpc, sleep):
        """Other status codes fail immediately."""
        rpc.side_effect = rpc_error(grpc.StatusCode.ABORTED, "conflict")

        async with transport:
            with pytest.raises(TransportError) as exc_info:
                await transport.call("commit", {})

        assert rpc.await_count == 1
        assert exc_info.value.status == "ABORTED"
        assert exc_info.value.body == "conflict"
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [None, ["not", "an", "object"]])
    async def test_malformed_response(self, transport, rpc, sleep, response):
        """Undecodable or non-object messages are wire format errors."""
        rpc.return_value = response

        async with transport:
            with pytest.raises(WireFormatError):
                await transport.call("commit", {})

        assert rpc.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_call_before_connect(self, transport):
        """Calls require an open channel."""
        with pytest.raises(TransportError):
            await transport.call("lookup", {})


class TestHelpers:
    """Tests for module helpers."""

    @pytest.mark.parametrize(
        "target,expected",
        [
            ("localhost", "localhost:443"),
            ("localhost:8081", "localhost:8081"),
            ("https://datastore.example.com", "datastore.example.com:443"),
            ("grpc://10.0.0.1:9000/", "10.0.0.1:9000"),
        ],
    )
    def test_parse_target(self, target, expected):
        assert parse_target(target) == expected

    def test_serializers(self):
        """Messages are compact JSON."""
        assert _serialize({"a": [1, 2]}) == b'{"a":[1,2]}'
        assert _deserialize(b'{"a":[1,2]}') == {"a": [1, 2]}
        assert _deserialize(b"") == {}
