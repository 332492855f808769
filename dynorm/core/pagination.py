"""
Pagination Engine

Drives repeated Query (when the params carry a KeyConditionExpression) or Scan calls
until the store stops returning LastEvaluatedKey or the caller's Limit is used up,
accumulating results into a FindResult.

Per page:
- ScannedCount is always added to the running total.
- ``filter_fn`` drops items after they were read (it does not reduce read cost).
- ``map_fn`` transforms items concurrently on a thread pool; order is preserved.
- ``reduce_fn`` folds items into ``accumulator`` instead of collecting them.

When Limit runs out while the store still has data, the final LastEvaluatedKey is kept
on the result so the caller can resume with ExclusiveStartKey.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

MISSING = object()


class FindResult(BaseModel):
    """Accumulated outcome of a paginated query or scan."""

    items: List[Any] = Field(default_factory=list)
    count: int = 0
    scanned_count: int = 0
    accumulator: Any = None
    last_evaluated_key: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)


def _apply_map(map_fn: Callable[[Any], Any], items: List[Any], max_workers: Optional[int]) -> List[Any]:
    if not items:
        return items
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        return list(executor.map(map_fn, items))


def find(
    client,
    params: Dict[str, Any],
    filter_fn: Optional[Callable[[Any], bool]] = None,
    map_fn: Optional[Callable[[Any], Any]] = None,
    reduce_fn: Optional[Callable[[Any, Any], Any]] = None,
    initial_value: Any = MISSING,
    acc: Optional[FindResult] = None,
    max_workers: Optional[int] = None,
) -> FindResult:
    """
    Run a query or scan to completion (or until Limit) and accumulate the results.

    Args:
        client: Store client exposing query(**params) and scan(**params)
        params: DynamoDB Query/Scan parameters including TableName; not mutated
        filter_fn: Predicate applied to each fetched item
        map_fn: Per-item transform, run concurrently within a page
        reduce_fn: ``fn(accumulator, item) -> accumulator``; excludes map_fn
        initial_value: Seed for reduce_fn (required with reduce_fn)
        acc: Existing result to keep accumulating into
        max_workers: Thread pool size for map_fn

    Returns:
        FindResult with items (or accumulator), counts and the continuation token

    Raises:
        ConfigurationError: map_fn and reduce_fn both given, or reduce_fn without initial_value

    Example:
        result = find(client, {
            'TableName': 'users',
            'IndexName': 'email-index',
            'KeyConditionExpression': Key('email').eq('a@x.com'),
            'Limit': 50,
        })
    """
    if map_fn is not None and reduce_fn is not None:
        raise ConfigurationError("Only map or reduce is required")
    if reduce_fn is not None and initial_value is MISSING:
        raise ConfigurationError("Reduce initialValue is required")

    acc = acc or FindResult()
    if reduce_fn is not None and acc.accumulator is None:
        acc.accumulator = initial_value

    params = dict(params)
    use_query = 'KeyConditionExpression' in params

    while True:
        data = client.query(**params) if use_query else client.scan(**params)

        items = list(data.get('Items', []))
        acc.scanned_count += int(data.get('ScannedCount', len(items)))
        if filter_fn is not None:
            items = [item for item in items if filter_fn(item)]
        if map_fn is not None:
            items = _apply_map(map_fn, items, max_workers)
        if reduce_fn is not None:
            for item in items:
                acc.accumulator = reduce_fn(acc.accumulator, item)
        else:
            acc.items.extend(items)
            acc.count = len(acc.items)

        if params.get('Limit'):
            params['Limit'] -= len(items)

        last_key = data.get('LastEvaluatedKey')
        if not last_key:
            acc.last_evaluated_key = None
            break
        if 'Limit' not in params or params['Limit'] > 0:
            params['ExclusiveStartKey'] = last_key
            continue
        acc.last_evaluated_key = last_key
        break

    logger.debug(
        f"{'Query' if use_query else 'Scan'} on {params.get('TableName')} returned "
        f"{acc.count} items ({acc.scanned_count} scanned)"
    )
    return acc
