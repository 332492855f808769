"""
Core infrastructure components for DynamoDB operations.

This module contains the store-facing building blocks used by the entity classes:
- StoreClient: Thin document-client wrapper over boto3 DynamoDB operations
- Bulk engine: chunked batch writes/gets with unprocessed-item retry
- Pagination engine: query/scan driver with filter/map/reduce accumulation
"""

from .bulk import (
    batch_get,
    batch_get_keys,
    batch_write,
    batch_write_deletes,
    batch_write_puts,
)
from .pagination import FindResult, find
from .store_client import StoreClient, create_store_client, map_store_error

__all__ = [
    "StoreClient",
    "create_store_client",
    "map_store_error",
    "batch_get",
    "batch_get_keys",
    "batch_write",
    "batch_write_deletes",
    "batch_write_puts",
    "FindResult",
    "find",
]
