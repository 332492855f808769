"""
Test configuration and fixtures for dynorm.

Provides an in-memory DynamoDB (moto), the tables backing the test schema document,
a StoreClient bound to it and a Dynorm registry over the shared document.
"""

import copy

import boto3
import pytest
from moto import mock_aws

from dynorm import Dynorm, DynormConfig, StoreClient


SCHEMA_DOCUMENT = {
    "definitions": {
        "User": {
            "$id": "User",
            "tableName": "users",
            "timestamps": True,
            "type": "object",
            "indexes": {
                "email-index": {"hashKey": "email", "unique": True},
            },
            "properties": {
                "id": {"type": "string", "hashKey": True},
                "email": {"type": "string", "format": "email"},
                "name": {"type": "string"},
                "role": {"type": "string", "default": "member"},
                "loginCount": {"type": "integer"},
                "version": {"type": "integer", "version": True},
                "createdAt": {"type": "string", "format": "date-time"},
                "updatedAt": {"type": "string", "format": "date-time"},
                "favoritePost": {"$ref": "Post", "join": {"favoritePostId": "id"}},
            },
            "required": ["id"],
        },
        "Post": {
            "$id": "Post",
            "tableName": "posts",
            "type": "object",
            "properties": {
                "id": {"type": "string", "hashKey": True},
                "title": {"type": "string"},
                "author": {"$ref": "User", "join": {"authorId": "id"}, "required": ["id"]},
                "publishedAt": {"type": "string", "format": "date-time", "default": "now"},
            },
            "required": ["id", "title"],
        },
        "Note": {
            "$id": "Note",
            "tableName": "notes",
            "type": "object",
            "properties": {
                "id": {"type": "string", "hashKey": True},
                "body": {"type": "string"},
                "revisedAt": {"type": "string", "format": "date-time", "version": True},
            },
        },
        "Profile": {
            "$id": "Profile",
            "tableName": "profiles",
            "type": "object",
            "indexes": {
                "user-index": {"hashKey": "user", "unique": True},
            },
            "properties": {
                "id": {"type": "string", "hashKey": True},
                "user": {"$ref": "User", "join": {"userId": "id"}},
                "bio": {"type": "string"},
            },
        },
        "Membership": {
            "$id": "Membership",
            "tableName": "memberships",
            "type": "object",
            "indexes": {
                "badge-index": {"hashKey": "badge", "rangeKey": "season", "unique": True},
            },
            "properties": {
                "teamId": {"type": "string", "hashKey": True},
                "userId": {"type": "string", "rangeKey": True},
                "badge": {"type": "string"},
                "season": {"type": "string"},
            },
        },
    }
}


@pytest.fixture
def schema_document():
    """Fresh copy of the shared schema document."""
    return copy.deepcopy(SCHEMA_DOCUMENT)


@pytest.fixture
def mock_config():
    """dynorm configuration for mocked testing."""
    return DynormConfig(
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
        region_name="us-east-1",
        endpoint_url=None,  # Use default AWS endpoint for moto
        table_prefix="test_",
        batch_max_retries=None,
        batch_backoff_seconds=0.0,
    )


@pytest.fixture
def mock_dynamodb_resource(monkeypatch):
    """Mock DynamoDB resource."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    with mock_aws():
        yield boto3.resource('dynamodb', region_name='us-east-1')


def _key_schema(hash_key, range_key=None):
    schema = [{'AttributeName': hash_key, 'KeyType': 'HASH'}]
    if range_key:
        schema.append({'AttributeName': range_key, 'KeyType': 'RANGE'})
    return schema


def _create_table(resource, table_name, hash_key, indexes=(), range_key=None):
    """Create a table; indexes are (name, hashKey[, rangeKey]) tuples."""
    attributes = {hash_key, range_key} - {None}
    gsis = []
    for index_name, *index_keys in indexes:
        attributes.update(index_keys)
        gsis.append({
            'IndexName': index_name,
            'KeySchema': _key_schema(*index_keys),
            'Projection': {'ProjectionType': 'ALL'},
        })

    params = {
        'TableName': table_name,
        'KeySchema': _key_schema(hash_key, range_key),
        'AttributeDefinitions': [
            {'AttributeName': name, 'AttributeType': 'S'} for name in sorted(attributes)
        ],
        'BillingMode': 'PAY_PER_REQUEST',
    }
    if gsis:
        params['GlobalSecondaryIndexes'] = gsis
    return resource.create_table(**params)


@pytest.fixture
def dynamodb_tables(mock_dynamodb_resource):
    """Create the tables backing the test schema document."""
    return {
        'users': _create_table(mock_dynamodb_resource, 'test_users', 'id', [('email-index', 'email')]),
        'posts': _create_table(mock_dynamodb_resource, 'test_posts', 'id', [('author-index', 'authorId')]),
        'notes': _create_table(mock_dynamodb_resource, 'test_notes', 'id'),
        'profiles': _create_table(mock_dynamodb_resource, 'test_profiles', 'id', [('user-index', 'userId')]),
        'memberships': _create_table(
            mock_dynamodb_resource, 'test_memberships', 'teamId',
            [('badge-index', 'badge', 'season')], range_key='userId'
        ),
    }


@pytest.fixture
def store_client(mock_config, mock_dynamodb_resource, dynamodb_tables):
    """StoreClient bound to the mocked DynamoDB resource."""
    return StoreClient(mock_config, dynamodb=mock_dynamodb_resource)


@pytest.fixture
def orm(store_client, schema_document, mock_config):
    """Dynorm registry over the test schema document."""
    return Dynorm(client=store_client, schema=schema_document, config=mock_config)
