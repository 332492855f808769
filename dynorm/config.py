import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

# Load environment variables from .env file if it exists
load_dotenv()


def _optional_int_env(name: str) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    return int(value)


class BatchRetryPolicy(BaseModel):
    """Retry policy for unprocessed batch items and keys.

    ``max_retries=None`` retries until every item is processed. ``backoff_seconds=0``
    reissues immediately; otherwise attempt ``n`` sleeps ``backoff_seconds * 2 ** n``.
    """

    max_retries: Optional[int] = None
    backoff_seconds: float = 0.0

    model_config = ConfigDict(frozen=True)


class DynormConfig(BaseModel):
    """Configuration for the DynamoDB connection and dynorm operations."""

    aws_access_key_id: Optional[str] = Field(
        default_factory=lambda: os.getenv("AWS_ACCESS_KEY_ID"),
        description="AWS access key ID"
    )

    aws_secret_access_key: Optional[str] = Field(
        default_factory=lambda: os.getenv("AWS_SECRET_ACCESS_KEY"),
        description="AWS secret access key"
    )

    region_name: str = Field(
        default_factory=lambda: os.getenv("AWS_REGION", "us-east-1"),
        description="AWS region name"
    )

    # DynamoDB specific settings
    endpoint_url: Optional[str] = Field(
        default_factory=lambda: os.getenv("DYNAMODB_ENDPOINT_URL"),
        description="DynamoDB endpoint URL (for local development)"
    )

    # Table configuration
    table_prefix: str = Field(
        default_factory=lambda: os.getenv("DYNAMODB_TABLE_PREFIX", ""),
        description="Prefix to add to every schema tableName"
    )

    # Connection settings
    max_pool_connections: int = Field(
        default=50,
        description="Maximum number of connections in the connection pool"
    )

    retries: int = Field(
        default=3,
        description="Number of botocore retry attempts for failed requests"
    )

    timeout_seconds: float = Field(
        default=30.0,
        description="Request timeout in seconds"
    )

    # Batch settings
    batch_max_retries: Optional[int] = Field(
        default_factory=lambda: _optional_int_env("DYNORM_BATCH_MAX_RETRIES"),
        description="Maximum reissues of unprocessed batch items (unset = until processed)"
    )

    batch_backoff_seconds: float = Field(
        default_factory=lambda: float(os.getenv("DYNORM_BATCH_BACKOFF_SECONDS", "0")),
        description="Base delay for exponential backoff between batch retries"
    )

    # Pagination settings
    map_max_workers: Optional[int] = Field(
        default=None,
        description="Thread pool size for per-item map functions in find()"
    )

    # Logging settings
    enable_debug_logging: bool = Field(
        default_factory=lambda: os.getenv("DYNORM_DEBUG_LOGGING", "false").lower() == "true",
        description="Enable debug logging for dynorm operations"
    )

    @field_validator('region_name')
    @classmethod
    def validate_region(cls, v):
        """Validate AWS region name."""
        if not v:
            raise ValueError("AWS region name is required")
        return v

    @field_validator('batch_max_retries')
    @classmethod
    def validate_retries(cls, v):
        """Validate batch retry limit."""
        if v is not None and v < 0:
            raise ValueError("Value must not be negative")
        return v

    @field_validator('map_max_workers')
    @classmethod
    def validate_workers(cls, v):
        """Validate thread pool size."""
        if v is not None and v < 1:
            raise ValueError("At least one worker is required")
        return v

    @field_validator('batch_backoff_seconds')
    @classmethod
    def validate_backoff(cls, v):
        """Validate batch backoff delay."""
        if v < 0:
            raise ValueError("Backoff must not be negative")
        return v

    @property
    def batch_retry_policy(self) -> BatchRetryPolicy:
        """Retry policy used by the bulk engine."""
        return BatchRetryPolicy(
            max_retries=self.batch_max_retries,
            backoff_seconds=self.batch_backoff_seconds
        )

    @classmethod
    def from_env(cls) -> 'DynormConfig':
        """Create configuration from environment variables.

        Returns:
            DynormConfig instance
        """
        return cls()

    @classmethod
    def for_local_development(cls) -> 'DynormConfig':
        """Create configuration for local DynamoDB development.

        Returns:
            DynormConfig instance configured for DynamoDB Local
        """
        return cls(
            aws_access_key_id="local",
            aws_secret_access_key="local",
            region_name="us-east-1",
            endpoint_url="http://localhost:8000",
            enable_debug_logging=True
        )

    model_config = ConfigDict(
        validate_assignment=True
    )
