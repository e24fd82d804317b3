"""
Transactional Batch Executor

Multi-document writes on one collection. Every call runs in exactly one
readwrite transaction: either all of its writes are committed or none are.
"""

from typing import Any, Callable, Iterable, List, Optional, TypeVar

from shelfdb.logging_config import logger
from shelfdb.exceptions import DataError, ValidationError
from shelfdb.engine.connection import EngineDatabase
from shelfdb.engine.keys import encode_key, extract_key, validate_key
from shelfdb.engine.object_store import ObjectStore
from shelfdb.engine.transaction import wrap_abort
from shelfdb.query.cursor_engine import primary_keys
from shelfdb.query.translator import ConstraintInput, translate
from shelfdb.schemas import key_path_name

T = TypeVar("T")


class BatchExecutor:
    """
    All-or-nothing insert, update, upsert and remove for one collection.

    Args:
        database: Open engine handle
        collection: Collection name
    """

    def __init__(self, database: EngineDatabase, collection: str):
        self.database = database
        self.collection = collection

    def _run(self, operation: str, work: Callable[[ObjectStore], T]) -> T:
        """Run `work` in one readwrite transaction; abort and re-raise on failure."""
        tx = self.database.transaction(self.collection, "readwrite")
        try:
            result = work(tx.object_store(self.collection))
        except BaseException as e:
            tx.abort(e)
            logger.debug(f"{operation} on '{self.collection}' rolled back")
            if isinstance(e, Exception):
                raise wrap_abort(e) from e
            raise
        tx.commit()
        return result

    def _check_records(self, store: ObjectStore, docs: List[Any], require_key: bool) -> None:
        """Validate every record before the first write is attempted."""
        for position, doc in enumerate(docs):
            if not isinstance(doc, dict):
                raise ValidationError(
                    f"Record #{position} for '{self.collection}' must be an object, got {type(doc).__name__}"
                )
            try:
                key = extract_key(doc, store.key_path)
            except DataError as e:
                raise DataError(f"Record #{position} for '{self.collection}': {e}")
            if key is None and (require_key or not store.auto_increment):
                raise ValidationError(
                    f"Record #{position} for '{self.collection}' is missing primary key "
                    f"'{key_path_name(store.key_path)}'"
                )

    # ========== INSERT ==========

    def insert_many(self, docs: Iterable[dict]) -> List[dict]:
        """
        Add records; the first duplicate primary or unique key aborts the call.

        Returns:
            The stored records, including generated keys
        """
        docs = list(docs)

        def work(store: ObjectStore) -> List[dict]:
            self._check_records(store, docs, require_key=False)
            return [store.get(store.add(doc)) for doc in docs]

        results = self._run("insert", work)
        logger.debug(f"Inserted {len(results)} records into '{self.collection}'")
        return results

    # ========== UPDATE ==========

    def update_many(self, docs: Iterable[dict], merge: bool = False) -> List[dict]:
        """
        Put records unconditionally (missing records are created).

        Args:
            docs: Records carrying their primary keys
            merge: Shallow-merge each record over the stored one before the put
        """
        docs = list(docs)

        def work(store: ObjectStore) -> List[dict]:
            self._check_records(store, docs, require_key=True)
            results = []
            for doc in docs:
                if merge:
                    existing = store.get(extract_key(doc, store.key_path))
                    if existing is not None:
                        doc = {**existing, **doc}
                results.append(store.get(store.put(doc)))
            return results

        results = self._run("update", work)
        logger.debug(f"Updated {len(results)} records in '{self.collection}'")
        return results

    # ========== UPSERT ==========

    def upsert_many(self, docs: Iterable[dict]) -> List[dict]:
        """
        Overwrite records that exist, add the rest.

        Records without a key are added when the collection generates keys.
        """
        docs = list(docs)

        def work(store: ObjectStore) -> List[dict]:
            self._check_records(store, docs, require_key=False)
            results = []
            for doc in docs:
                key = extract_key(doc, store.key_path)
                if key is not None and store.get(key) is not None:
                    key = store.put(doc)
                else:
                    key = store.add(doc)
                results.append(store.get(key))
            return results

        results = self._run("upsert", work)
        logger.debug(f"Upserted {len(results)} records in '{self.collection}'")
        return results

    # ========== REMOVE ==========

    def remove_many(self, keys: Optional[Iterable[Any]] = None,
                    constraints: ConstraintInput = None) -> List[dict]:
        """
        Remove records by primary key and/or constraints.

        Each existing record is read, returned and deleted. Keys that do not
        exist contribute nothing.

        Raises:
            ValidationError: If neither keys nor constraints are given, or a key is invalid
        """
        if keys is None and constraints is None:
            raise ValidationError("remove requires primary keys or constraints")
        keys = list(keys) if keys is not None else []
        for key in keys:
            validate_key(key)

        def work(store: ObjectStore) -> List[dict]:
            targets = list(keys)
            if constraints is not None:
                query = translate(constraints, key_path_name(store.key_path), store.index_names)
                targets.extend(primary_keys(store, query))

            removed = []
            seen = set()
            for key in targets:
                encoded = encode_key(key)
                if encoded in seen:
                    continue
                seen.add(encoded)
                record = store.get(key)
                if record is None:
                    continue
                store.delete(key)
                removed.append(record)
            return removed

        results = self._run("remove", work)
        logger.debug(f"Removed {len(results)} records from '{self.collection}'")
        return results

    def remove_all(self) -> int:
        """Remove every record. Returns the number removed."""
        removed = self._run("clear", lambda store: store.clear())
        logger.debug(f"Cleared {removed} records from '{self.collection}'")
        return removed
