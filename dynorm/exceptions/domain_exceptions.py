"""
Domain-Specific Exceptions for dynorm

Every failure raised by the schema compiler, the entity lifecycle engine and the
store gateway extends DynormError.

Organized by category:
1. Schema Errors
2. Entity Validation Errors
3. Conflict and Conditional Errors
4. Configuration Errors
5. Store Errors
"""

from typing import Any, Dict, List, Optional

from .base import DynormError


# =============================================================================
# Schema Errors
# =============================================================================

class SchemaNotFoundError(DynormError):
    """Raised when no definition in the schema document matches an entity name."""

    def __init__(self, name: str, original_error: Optional[Exception] = None):
        self.name = name
        super().__init__(f"Schema definition '{name}' not found", original_error, {'entity': name})


class SchemaDefinitionError(DynormError):
    """Raised when an entity definition is malformed.

    Used for:
    - Missing hashKey property
    - More than one version or owner property
    - Relation properties without a join mapping
    """

    def __init__(self, message: str, entity: Optional[str] = None, original_error: Optional[Exception] = None):
        self.entity = entity
        context = {'entity': entity} if entity else {}
        super().__init__(message, original_error, context)


# =============================================================================
# Entity Validation Errors
# =============================================================================

class ValidationError(DynormError):
    """Raised when an entity fails validation against its compiled schema.

    The ``errors`` attribute carries the validator's error list, one entry per
    failing keyword, each with ``path``, ``message`` and ``validator`` keys.
    """

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None, original_error: Optional[Exception] = None):
        """Initialize validation error.

        Args:
            message: Human-readable error message
            errors: List of validator errors
            original_error: The original exception that caused this error
        """
        self.errors = errors or []
        context = {
            'validation_errors': self.errors
        }
        super().__init__(message, original_error, context)


class RelationNotFoundError(DynormError):
    """Raised when save() cannot fetch the entity a relation property points at."""

    def __init__(self, entity: str, field: str, key: Any):
        self.entity = entity
        self.field = field
        self.key = key
        super().__init__(
            f"Relation {field} not exist",
            context={'entity': entity, 'field': field, 'key': key}
        )


class MissingIndexValueError(DynormError):
    """Raised when a unique index hash or range value is empty on save()."""

    def __init__(self, index_name: str, attribute: str, key_type: str = 'hashKey'):
        self.index_name = index_name
        self.attribute = attribute
        self.key_type = key_type
        super().__init__(
            f"Unique index constraint {index_name} {key_type} {attribute} is empty",
            context={'index': index_name, 'attribute': attribute}
        )


# =============================================================================
# Conflict and Conditional Errors
# =============================================================================

class UniqueConstraintViolation(DynormError):
    """Raised when another record already holds the values of a unique index."""

    def __init__(self, index_name: str, values: Optional[Dict[str, Any]] = None):
        self.index_name = index_name
        self.values = values or {}
        super().__init__(
            f"Unique index constraint {index_name}",
            context={'index': index_name, 'values': self.values}
        )


class ConstraintViolation(DynormError):
    """Raised when a conditional write fails.

    Used for:
    - ConditionalCheckFailedException from DynamoDB
    - attribute_not_exists guard on create (duplicate primary key)
    - Optimistic locking failures on the version attribute
    """

    def __init__(self, message: str, resource_id: Optional[str] = None, original_error: Optional[Exception] = None):
        """Initialize constraint violation.

        Args:
            message: Human-readable error message
            resource_id: Key of the conflicting record
            original_error: The original exception that caused this error
        """
        self.resource_id = resource_id
        context = {}
        if resource_id:
            context['resource_id'] = resource_id
        super().__init__(message, original_error, context)


class UnsupportedVersionTypeError(DynormError):
    """Raised when the version property is neither an integer nor a date-time string."""

    def __init__(self, attribute: str, type_name: Optional[str]):
        self.attribute = attribute
        self.type_name = type_name
        super().__init__(
            f"Version property type {type_name} not supported",
            context={'attribute': attribute}
        )


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(DynormError):
    """Raised when an operation is called with an invalid combination of options."""


# =============================================================================
# Store Errors
# =============================================================================

class StoreError(DynormError):
    """Raised for failures surfaced by the DynamoDB client.

    Attributes:
        code: DynamoDB error code (e.g. 'ValidationException'), if known
    """

    def __init__(self, message: str, code: Optional[str] = None, original_error: Optional[Exception] = None, context: Optional[Dict[str, Any]] = None):
        self.code = code
        context = dict(context or {})
        if code:
            context['code'] = code
        super().__init__(message, original_error, context)


class ConnectionError(StoreError):
    """Raised when connection to DynamoDB fails.

    Used for:
    - Network connectivity issues
    - Authentication/authorization failures
    - Invalid endpoint configurations
    - Unknown store error codes
    """


class RetryableError(StoreError):
    """Raised when an operation fails due to temporary issues that can be retried.

    Used for:
    - ProvisionedThroughputExceededException
    - Temporary service unavailability
    - Batch requests still unprocessed after the configured retry limit
    """

    def __init__(self, message: str, code: Optional[str] = None, retry_after_seconds: Optional[float] = None, original_error: Optional[Exception] = None):
        self.retry_after_seconds = retry_after_seconds
        context = {}
        if retry_after_seconds:
            context['retry_after_seconds'] = retry_after_seconds
        super().__init__(message, code, original_error, context)
