"""
Cursor Query Engine

Drives one engine cursor over a translated query and turns it into a finite
list of records:

1. Without a predicate, a pending skip is consumed in one cursor jump.
2. With a predicate, only accepted records consume skip and limit.
3. After skip, accepted records are transformed and collected; limit counts
   collected records.
4. Iteration stops when limit reaches 0 or the cursor runs out.

Every call opens a fresh cursor; nothing is resumable across calls.
"""

from typing import Any, Callable, List, Optional, Union

from shelfdb.logging_config import logger
from shelfdb.exceptions import ValidationError
from shelfdb.engine.cursor import Cursor, make_direction
from shelfdb.engine.object_store import Index, ObjectStore
from shelfdb.query.config import DEFAULT_DIRECTION, DEFAULT_LIMIT, DEFAULT_SKIP, DIRECTIONS
from shelfdb.query.translator import TranslatedQuery

Predicate = Callable[[Any], bool]
Transform = Callable[[Any], Any]


def _source(store: ObjectStore, query: TranslatedQuery) -> Union[ObjectStore, Index]:
    if query.uses_primary_key:
        return store
    return store.index(query.index_name)


def _check_counts(skip: int, limit: Optional[int]) -> None:
    if skip is None or skip < 0:
        raise ValidationError(f"skip must be >= 0, got {skip}")
    if limit is not None and limit < 0:
        raise ValidationError(f"limit must be >= 0, got {limit}")


def open_query_cursor(store: ObjectStore, query: TranslatedQuery,
                      direction: str = DEFAULT_DIRECTION, unique: bool = False) -> Cursor:
    """Open a cursor over the index or primary key space `query` resolved to."""
    if direction not in DIRECTIONS:
        raise ValidationError(f"Unknown direction '{direction}'. Expected one of {DIRECTIONS}")
    return _source(store, query).open_cursor(
        query.key_range, make_direction(desc=direction == "desc", unique=unique)
    )


def find(
    store: ObjectStore,
    query: TranslatedQuery,
    direction: str = DEFAULT_DIRECTION,
    unique: bool = False,
    skip: int = DEFAULT_SKIP,
    limit: Optional[int] = DEFAULT_LIMIT,
    predicate: Optional[Predicate] = None,
    transform: Optional[Transform] = None,
) -> List[Any]:
    """
    Run a paginated, filtered, mapped scan.

    Args:
        store: Collection handle inside an active transaction
        query: Output of the translator
        direction: "asc" or "desc"
        unique: Collapse duplicate index keys
        skip: Accepted records to pass over first
        limit: Maximum number of records returned (None means unbounded)
        predicate: Accept/reject callable
        transform: Mapping applied to each returned record

    Returns:
        List of (transformed) records in cursor order
    """
    _check_counts(skip, limit)
    if limit is None:
        limit = DEFAULT_LIMIT

    results: List[Any] = []
    cursor = open_query_cursor(store, query, direction, unique)
    try:
        if predicate is None and skip > 0 and not cursor.done:
            cursor.advance(skip)
            skip = 0

        while not cursor.done and limit > 0:
            record = cursor.value
            if predicate is not None and not predicate(record):
                cursor.continue_()
                continue
            if skip > 0:
                skip -= 1
            else:
                results.append(transform(record) if transform else record)
                limit -= 1
            cursor.continue_()
    finally:
        cursor.close()

    logger.debug(
        f"find on {store.name}"
        f"{'.' + query.index_name if query.index_name else ''} returned {len(results)} records"
    )
    return results


def get(store: ObjectStore, query: TranslatedQuery) -> Optional[Any]:
    """First record in the query range, or None."""
    return _source(store, query).get(query.key_range)


def get_all(store: ObjectStore, query: TranslatedQuery, count: Optional[int] = None) -> List[Any]:
    """All records in the query range in ascending key order, at most `count`."""
    if count is not None and count < 0:
        raise ValidationError(f"limit must be >= 0, got {count}")
    if count == 0:
        return []
    return _source(store, query).get_all(query.key_range, count)


def count(store: ObjectStore, query: TranslatedQuery) -> int:
    """Number of entries in the query range."""
    return _source(store, query).count(query.key_range)


def primary_keys(store: ObjectStore, query: TranslatedQuery) -> List[Any]:
    """Primary keys of every record in the query range, ascending."""
    if query.uses_primary_key:
        return store.get_all_keys(query.key_range)
    return store.index(query.index_name).get_all_keys(query.key_range)
