"""
dynorm

Schema-driven entity mapping for DynamoDB. A shared JSON-Schema style document
describes every entity; the registry compiles each one into an Entity class with
validation, relation resolution, unique indexes, timestamps and optimistic versioning,
on top of boto3 and jsonschema.
"""

from .config import BatchRetryPolicy, DynormConfig
from .exceptions import (
    ConfigurationError,
    ConnectionError,
    ConstraintViolation,
    DynormError,
    MissingIndexValueError,
    RelationNotFoundError,
    RetryableError,
    SchemaDefinitionError,
    SchemaNotFoundError,
    StoreError,
    UniqueConstraintViolation,
    UnsupportedVersionTypeError,
    ValidationError,
)
from .core import (
    FindResult,
    StoreClient,
    batch_get_keys,
    batch_write_deletes,
    batch_write_puts,
    create_store_client,
    find,
)
from .models import (
    Entity,
    Schema,
    UpdateAction,
    UpdateSpec,
    compile_schema,
)
from .registry import Dynorm

__version__ = "1.0.0"
__all__ = [
    # Registry
    "Dynorm",

    # Configuration
    "BatchRetryPolicy",
    "DynormConfig",

    # Exceptions
    "ConfigurationError",
    "ConnectionError",
    "ConstraintViolation",
    "DynormError",
    "MissingIndexValueError",
    "RelationNotFoundError",
    "RetryableError",
    "SchemaDefinitionError",
    "SchemaNotFoundError",
    "StoreError",
    "UniqueConstraintViolation",
    "UnsupportedVersionTypeError",
    "ValidationError",

    # Store, bulk and pagination
    "FindResult",
    "StoreClient",
    "batch_get_keys",
    "batch_write_deletes",
    "batch_write_puts",
    "create_store_client",
    "find",

    # Entities
    "Entity",
    "Schema",
    "UpdateAction",
    "UpdateSpec",
    "compile_schema",
]
