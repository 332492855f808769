"""
Bulk Engine

Chunked BatchWriteItem / BatchGetItem helpers, independent of entity semantics.

- Writes are flattened across tables in input order and sent 25 requests at a time.
- Gets are flattened the same way and sent 100 keys at a time.
- UnprocessedItems / UnprocessedKeys are reissued until the store reports none left.

The default BatchRetryPolicy reissues without delay and without a cap: a request only
returns once every item is processed or the store raises. Configure
``max_retries``/``backoff_seconds`` to bound it; exhausting the limit raises
RetryableError.
"""

import logging
import time
from typing import Any, Dict, List, Optional, Tuple

from ..config import BatchRetryPolicy
from ..exceptions import RetryableError

logger = logging.getLogger(__name__)

WRITE_CHUNK_SIZE = 25
GET_CHUNK_SIZE = 100


def _flatten(table_entries: Dict[str, List[Any]]) -> List[Tuple[str, Any]]:
    return [
        (table_name, entry)
        for table_name, entries in table_entries.items()
        for entry in entries
    ]


def _count_requests(request_items: Dict[str, Any]) -> int:
    count = 0
    for requests in request_items.values():
        if isinstance(requests, dict):
            count += len(requests.get('Keys', []))
        else:
            count += len(requests)
    return count


def _wait_before_retry(policy: BatchRetryPolicy, attempt: int, pending: int, operation: str) -> None:
    """Apply the retry limit and backoff before reissuing unprocessed requests."""
    if policy.max_retries is not None and attempt >= policy.max_retries:
        logger.error(f"Failed to process {pending} {operation} requests after {attempt} retries")
        raise RetryableError(
            f"{operation} failed for {pending} requests after {attempt} retries",
            retry_after_seconds=policy.backoff_seconds or None
        )

    delay = policy.backoff_seconds * (2 ** attempt) if policy.backoff_seconds else 0
    logger.warning(
        f"Retrying {pending} unprocessed {operation} requests"
        + (f" after {delay:.2f}s" if delay else "")
        + f" (attempt {attempt + 1})"
    )
    if delay:
        time.sleep(delay)


def batch_write(client, request_items: Dict[str, List[Dict[str, Any]]], policy: Optional[BatchRetryPolicy] = None) -> None:
    """
    Issue one BatchWriteItem request and reissue its UnprocessedItems until done.

    Args:
        client: Store client exposing batch_write(RequestItems=...)
        request_items: table name -> list of PutRequest/DeleteRequest dicts
        policy: Retry policy for unprocessed items
    """
    policy = policy or BatchRetryPolicy()
    attempt = 0
    while request_items:
        response = client.batch_write(RequestItems=request_items)
        unprocessed = response.get('UnprocessedItems') or {}
        if not unprocessed:
            return
        _wait_before_retry(policy, attempt, _count_requests(unprocessed), "BatchWriteItem")
        request_items = unprocessed
        attempt += 1


def _batch_write_requests(client, entries: List[Tuple[str, Dict[str, Any]]], policy: Optional[BatchRetryPolicy]) -> None:
    for i in range(0, len(entries), WRITE_CHUNK_SIZE):
        request_items: Dict[str, List[Dict[str, Any]]] = {}
        for table_name, request in entries[i:i + WRITE_CHUNK_SIZE]:
            request_items.setdefault(table_name, []).append(request)
        batch_write(client, request_items, policy)


def batch_write_puts(client, table_items: Dict[str, List[Dict[str, Any]]], policy: Optional[BatchRetryPolicy] = None) -> None:
    """
    Put records into one or more tables using chunked BatchWriteItem calls.

    Args:
        client: Store client
        table_items: table name -> list of records

    Example:
        batch_write_puts(client, {'users': [{'id': 'u1'}, {'id': 'u2'}]})
    """
    if not table_items:
        return
    entries = [
        (table_name, {'PutRequest': {'Item': item}})
        for table_name, item in _flatten(table_items)
    ]
    _batch_write_requests(client, entries, policy)
    logger.info(f"Batch put {len(entries)} items into {list(table_items)}")


def batch_write_deletes(client, table_keys: Dict[str, List[Dict[str, Any]]], policy: Optional[BatchRetryPolicy] = None) -> None:
    """
    Delete records from one or more tables using chunked BatchWriteItem calls.

    Args:
        client: Store client
        table_keys: table name -> list of primary keys
    """
    if not table_keys:
        return
    entries = [
        (table_name, {'DeleteRequest': {'Key': key}})
        for table_name, key in _flatten(table_keys)
    ]
    _batch_write_requests(client, entries, policy)
    logger.info(f"Batch deleted {len(entries)} items from {list(table_keys)}")


def _merge_responses(acc: Dict[str, List[Dict[str, Any]]], responses: Dict[str, List[Dict[str, Any]]]) -> Dict[str, List[Dict[str, Any]]]:
    for table_name, items in responses.items():
        acc.setdefault(table_name, []).extend(items)
    return acc


def batch_get(client, request_items: Dict[str, Dict[str, Any]], policy: Optional[BatchRetryPolicy] = None) -> Dict[str, List[Dict[str, Any]]]:
    """
    Issue one BatchGetItem request, reissuing UnprocessedKeys until done.

    Args:
        client: Store client exposing batch_get(RequestItems=...)
        request_items: table name -> {'Keys': [...], ...}

    Returns:
        table name -> list of records, merged across retries
    """
    policy = policy or BatchRetryPolicy()
    result: Dict[str, List[Dict[str, Any]]] = {}
    attempt = 0
    while request_items:
        response = client.batch_get(RequestItems=request_items)
        _merge_responses(result, response.get('Responses') or {})
        unprocessed = response.get('UnprocessedKeys') or {}
        if not unprocessed:
            break
        _wait_before_retry(policy, attempt, _count_requests(unprocessed), "BatchGetItem")
        request_items = unprocessed
        attempt += 1
    return result


def batch_get_keys(client, table_keys: Dict[str, List[Dict[str, Any]]], policy: Optional[BatchRetryPolicy] = None) -> Dict[str, List[Dict[str, Any]]]:
    """
    Fetch records by key from one or more tables using chunked BatchGetItem calls.

    Args:
        client: Store client
        table_keys: table name -> list of primary keys

    Returns:
        table name -> list of records found (every requested table is present)

    Example:
        records = batch_get_keys(client, {'users': [{'id': 'u1'}, {'id': 'u2'}]})
    """
    if not table_keys:
        return {}
    result: Dict[str, List[Dict[str, Any]]] = {table_name: [] for table_name in table_keys}
    keys = _flatten(table_keys)
    for i in range(0, len(keys), GET_CHUNK_SIZE):
        request_items: Dict[str, Dict[str, Any]] = {}
        for table_name, key in keys[i:i + GET_CHUNK_SIZE]:
            request_items.setdefault(table_name, {'Keys': []})['Keys'].append(key)
        _merge_responses(result, batch_get(client, request_items, policy))
    logger.debug(f"Batch get {len(keys)} keys from {list(table_keys)}")
    return result
