"""
DynamoDB Store Client

Thin wrapper around a boto3 DynamoDB resource exposing the document-client style
operations the entity, bulk and pagination engines are written against:

    get, put, delete, update, query, scan, batch_write, batch_get

Every method takes the native DynamoDB keyword arguments (TableName, Key, Item,
ConditionExpression, KeyConditionExpression, RequestItems, ...) and returns the raw
boto3 response. Because the resource layer is used, attribute values are plain Python
types (numbers come back as Decimal) and condition arguments may be boto3
``Key``/``Attr`` condition objects.

botocore ``ClientError`` is mapped to the dynorm error taxonomy by map_store_error().
"""

import logging
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from ..config import DynormConfig
from ..exceptions import (
    ConnectionError,
    ConstraintViolation,
    RetryableError,
    StoreError,
)

logger = logging.getLogger(__name__)

RETRYABLE_CODES = {
    'ProvisionedThroughputExceededException', 'RequestLimitExceeded',
    'ThrottlingException', 'InternalServerError', 'ServiceUnavailable',
    'TransactionInProgressException', 'RequestTimeoutException',
}

CONNECTION_CODES = {
    'UnrecognizedClientException', 'AccessDeniedException',
    'InvalidEndpointException', 'IncompleteSignatureException',
    'InvalidSignatureException', 'ExpiredTokenException',
}

PASSTHROUGH_CODES = {
    'ValidationException', 'ResourceNotFoundException',
    'ItemCollectionSizeLimitExceededException', 'LimitExceededException',
    'TransactionCanceledException',
}


def map_store_error(
    error: ClientError,
    operation: str,
    table_name: Optional[str] = None,
    resource_id: Optional[str] = None
) -> Exception:
    """Map a DynamoDB ClientError to a dynorm exception.

    Args:
        error: The boto3 ClientError
        operation: The operation that failed (e.g., "GetItem", "PutItem")
        table_name: The DynamoDB table name, if the operation targets one table
        resource_id: Optional record identifier for context

    Returns:
        ConstraintViolation for conditional check failures, RetryableError for
        throttling/service issues, ConnectionError for auth/endpoint issues and
        unknown codes, StoreError for everything else.
    """
    error_code = error.response.get('Error', {}).get('Code', 'Unknown')
    error_message = error.response.get('Error', {}).get('Message', str(error))

    context = operation
    if table_name:
        context += f" on {table_name}"
    if resource_id:
        context += f" (resource: {resource_id})"

    full_message = f"{context}: {error_message}"

    if error_code in ('ConditionalCheckFailedException', 'TransactionConflictException'):
        return ConstraintViolation(f"Conditional check failed - {full_message}", resource_id, original_error=error)

    elif error_code in RETRYABLE_CODES:
        return RetryableError(f"Throttling/service unavailable - {full_message}", error_code, original_error=error)

    elif error_code in CONNECTION_CODES:
        return ConnectionError(f"Authentication/endpoint failure - {full_message}", error_code, original_error=error)

    elif error_code in PASSTHROUGH_CODES:
        return StoreError(f"{error_code} - {full_message}", error_code, original_error=error)

    logger.warning(f"Unknown DynamoDB error code '{error_code}' mapped to ConnectionError")
    return ConnectionError(f"DynamoDB operation failed - {full_message}", error_code, original_error=error)


def _resource_id(key: Optional[Dict[str, Any]]) -> Optional[str]:
    if not key:
        return None
    return ",".join(f"{k}={v}" for k, v in key.items())


class StoreClient:
    """
    Document-client style gateway over a boto3 DynamoDB resource.

    Table handles are created on demand and cached per table name.
    """

    def __init__(self, config: Optional[DynormConfig] = None, dynamodb=None):
        """Initialize store client.

        Args:
            config: DynamoDB configuration (defaults to DynormConfig.from_env())
            dynamodb: Optional pre-built boto3 DynamoDB resource
        """
        self.config = config or DynormConfig.from_env()
        self._dynamodb = dynamodb
        self._tables: Dict[str, Any] = {}

    @property
    def dynamodb(self):
        """Lazy initialization of DynamoDB resource."""
        if self._dynamodb is None:
            try:
                session = boto3.Session(
                    aws_access_key_id=self.config.aws_access_key_id,
                    aws_secret_access_key=self.config.aws_secret_access_key,
                    region_name=self.config.region_name
                )

                dynamodb_config = {
                    'region_name': self.config.region_name
                }

                if self.config.endpoint_url:
                    dynamodb_config['endpoint_url'] = self.config.endpoint_url

                boto_config = Config(
                    retries={'max_attempts': self.config.retries},
                    max_pool_connections=self.config.max_pool_connections,
                    read_timeout=self.config.timeout_seconds,
                    connect_timeout=self.config.timeout_seconds
                )
                dynamodb_config['config'] = boto_config

                self._dynamodb = session.resource('dynamodb', **dynamodb_config)
            except Exception as e:
                logger.error(f"Failed to create DynamoDB resource: {e}")
                raise ConnectionError(f"Failed to connect to DynamoDB: {e}", original_error=e) from e
        return self._dynamodb

    def table(self, table_name: str):
        """Get (and cache) the boto3 Table resource for a table name."""
        if table_name not in self._tables:
            try:
                self._tables[table_name] = self.dynamodb.Table(table_name)
            except Exception as e:
                logger.error(f"Failed to access table '{table_name}': {e}")
                raise ConnectionError(f"Failed to access table '{table_name}': {e}", original_error=e) from e
        return self._tables[table_name]

    def get(self, TableName: str, **kwargs) -> Dict[str, Any]:
        """GetItem. Returns ``{'Item': ...}`` or ``{}`` when absent."""
        logger.debug(f"GetItem {TableName}: {kwargs}")
        try:
            return self.table(TableName).get_item(**kwargs)
        except ClientError as e:
            raise map_store_error(e, "GetItem", TableName, _resource_id(kwargs.get('Key'))) from e

    def put(self, TableName: str, **kwargs) -> Dict[str, Any]:
        """PutItem, optionally conditional.

        Raises:
            ConstraintViolation: When ConditionExpression evaluates to false
        """
        logger.debug(f"PutItem {TableName}: {kwargs}")
        try:
            response = self.table(TableName).put_item(**kwargs)
            logger.info(f"Put item in {TableName}")
            return response
        except ClientError as e:
            raise map_store_error(e, "PutItem", TableName) from e

    def delete(self, TableName: str, **kwargs) -> Dict[str, Any]:
        """DeleteItem."""
        logger.debug(f"DeleteItem {TableName}: {kwargs}")
        try:
            response = self.table(TableName).delete_item(**kwargs)
            logger.info(f"Deleted item from {TableName}: {kwargs.get('Key')}")
            return response
        except ClientError as e:
            raise map_store_error(e, "DeleteItem", TableName, _resource_id(kwargs.get('Key'))) from e

    def update(self, TableName: str, **kwargs) -> Dict[str, Any]:
        """UpdateItem. Returns the raw response (``Attributes`` per ReturnValues)."""
        logger.debug(f"UpdateItem {TableName}: {kwargs}")
        try:
            response = self.table(TableName).update_item(**kwargs)
            logger.info(f"Updated item in {TableName}: {kwargs.get('Key')}")
            return response
        except ClientError as e:
            raise map_store_error(e, "UpdateItem", TableName, _resource_id(kwargs.get('Key'))) from e

    def query(self, TableName: str, **kwargs) -> Dict[str, Any]:
        """Query a table or index (KeyConditionExpression required)."""
        logger.debug(f"Query {TableName}: {kwargs}")
        try:
            return self.table(TableName).query(**kwargs)
        except ClientError as e:
            raise map_store_error(e, "Query", TableName) from e

    def scan(self, TableName: str, **kwargs) -> Dict[str, Any]:
        """Scan a table or index."""
        logger.debug(f"Scan {TableName}: {kwargs}")
        try:
            return self.table(TableName).scan(**kwargs)
        except ClientError as e:
            raise map_store_error(e, "Scan", TableName) from e

    def batch_write(self, RequestItems: Dict[str, Any], **kwargs) -> Dict[str, Any]:
        """BatchWriteItem across one or more tables."""
        try:
            return self.dynamodb.batch_write_item(RequestItems=RequestItems, **kwargs)
        except ClientError as e:
            raise map_store_error(e, "BatchWriteItem", ",".join(RequestItems)) from e

    def batch_get(self, RequestItems: Dict[str, Any], **kwargs) -> Dict[str, Any]:
        """BatchGetItem across one or more tables."""
        try:
            return self.dynamodb.batch_get_item(RequestItems=RequestItems, **kwargs)
        except ClientError as e:
            raise map_store_error(e, "BatchGetItem", ",".join(RequestItems)) from e


def create_store_client(config: Optional[DynormConfig] = None) -> StoreClient:
    """
    Factory function to create a StoreClient instance.

    Args:
        config: DynamoDB configuration (environment defaults when omitted)

    Returns:
        Configured StoreClient instance
    """
    return StoreClient(config or DynormConfig.from_env())
