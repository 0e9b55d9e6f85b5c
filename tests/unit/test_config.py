"""
Unit tests for DatastoreSettings.

Tests cover:
- Defaults
- Environment loading
- Required dataset
- Transport factory selection
"""

import pytest

from datastore_sdk.config import DEFAULT_HOST, DatastoreSettings
from datastore_sdk.errors import ConfigurationError
from datastore_sdk.transport import GrpcTransport, HttpTransport, create_transport


class TestDatastoreSettings:
    """Tests for DatastoreSettings."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        """Isolate tests from DATASTORE_* variables."""
        for name in ("DATASET", "HOST", "NAMESPACE", "TRANSPORT", "ACCESS_TOKEN"):
            monkeypatch.delenv(f"DATASTORE_{name}", raising=False)

    def test_defaults(self):
        """Defaults match the store's documented behaviour."""
        settings = DatastoreSettings()

        assert settings.dataset is None
        assert settings.host == DEFAULT_HOST
        assert settings.transport == "http"
        assert settings.request_retry_count == 3
        assert settings.request_retry_sleep_factor == 2.0
        assert settings.lookup_retry_limit == 5
        assert settings.lookup_retry_delay == 2.0

    def test_from_env(self, monkeypatch):
        """Settings load from DATASTORE_* variables."""
        monkeypatch.setenv("DATASTORE_DATASET", "my-dataset")
        monkeypatch.setenv("DATASTORE_NAMESPACE", "prod")
        monkeypatch.setenv("DATASTORE_LOOKUP_RETRY_LIMIT", "2")

        settings = DatastoreSettings()

        assert settings.dataset == "my-dataset"
        assert settings.namespace == "prod"
        assert settings.lookup_retry_limit == 2

    def test_require_dataset(self):
        """A missing dataset is a configuration error."""
        with pytest.raises(ConfigurationError) as exc_info:
            DatastoreSettings().require_dataset()
        assert exc_info.value.details["setting"] == "dataset"

        assert DatastoreSettings(dataset="d").require_dataset() == "d"

    def test_token_not_in_repr(self):
        """Access tokens are hidden from repr."""
        assert "secret" not in repr(DatastoreSettings(access_token="secret"))

    def test_invalid_transport(self):
        """Only http and grpc transports exist."""
        with pytest.raises(ValueError):
            DatastoreSettings(transport="carrier-pigeon")


class TestCreateTransport:
    """Tests for create_transport."""

    def test_http(self):
        """http selects HttpTransport with the configured retry policy."""
        transport = create_transport(
            DatastoreSettings(dataset="d", request_retry_count=5, access_token="t")
        )
        assert isinstance(transport, HttpTransport)
        assert transport.url_for("lookup").endswith("/datastore/v1beta1/datasets/d/lookup")

    def test_grpc(self):
        """grpc selects GrpcTransport."""
        transport = create_transport(
            DatastoreSettings(dataset="d", transport="grpc", host="localhost:8081")
        )
        assert isinstance(transport, GrpcTransport)

    def test_requires_dataset(self):
        """No transport without a dataset."""
        with pytest.raises(ConfigurationError):
            create_transport(DatastoreSettings())
