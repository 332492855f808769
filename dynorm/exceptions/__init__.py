# Base exception class
from .base import DynormError

from .domain_exceptions import (
    ConfigurationError,
    ConnectionError,
    ConstraintViolation,
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

__all__ = [
    # Base exception
    "DynormError",

    # Domain exceptions (alphabetically ordered)
    "ConfigurationError",
    "ConnectionError",
    "ConstraintViolation",
    "MissingIndexValueError",
    "RelationNotFoundError",
    "RetryableError",
    "SchemaDefinitionError",
    "SchemaNotFoundError",
    "StoreError",
    "UniqueConstraintViolation",
    "UnsupportedVersionTypeError",
    "ValidationError",
]
