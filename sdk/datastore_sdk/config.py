"""
Configuration for the Datastore SDK.

Uses pydantic-settings for environment variable loading (prefix DATASTORE_).
Settings are consumed once, when a client connects.

Invariants:
    - dataset is required before connecting; its absence is fatal
    - Secrets (access_token) are never logged
"""

from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings

from .errors import ConfigurationError

DEFAULT_HOST = "https://www.googleapis.com"


class DatastoreSettings(BaseSettings):
    """Client configuration loaded from environment."""

    # Target
    dataset: Optional[str] = Field(default=None, description="Dataset identifier (required)")
    host: str = Field(default=DEFAULT_HOST, description="API host URL or gRPC host:port")
    namespace: str = Field(default="", description="Partition namespace for keys and queries")
    transport: Literal["http", "grpc"] = Field(default="http", description="RPC transport")
    grpc_secure: bool = Field(default=True, description="Use TLS for the gRPC transport")

    # Credentials
    access_token: Optional[str] = Field(default=None, description="OAuth bearer token", repr=False)
    application_name: str = Field(default="", description="Sent as the HTTP User-Agent")

    # Network
    allow_ipv6: bool = Field(default=False, description="Allow IPv6 connections")
    timeout: float = Field(default=30.0, description="Request timeout seconds")

    # Transport retry of HTTP 503 / gRPC UNAVAILABLE
    request_retry_count: int = Field(default=3, ge=1, description="Total attempts per request")
    request_retry_sleep_factor: float = Field(
        default=2.0, ge=0, description="Linear backoff factor seconds"
    )

    # Lookup retry of deferred keys
    lookup_retry_limit: int = Field(default=5, ge=0, description="Retries for deferred keys")
    lookup_retry_delay: float = Field(
        default=2.0, ge=0, description="Linear backoff base delay seconds"
    )

    model_config = {"env_prefix": "DATASTORE_"}

    def require_dataset(self) -> str:
        """Return the dataset or fail.

        Raises:
            ConfigurationError: If no dataset is configured
        """
        if not self.dataset:
            raise ConfigurationError("Datastore dataset not configured", setting="dataset")
        return self.dataset
