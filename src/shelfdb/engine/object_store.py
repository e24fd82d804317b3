"""
Object Stores and Indexes

Request-level operations on one collection inside a transaction. Each write
request runs under its own SAVEPOINT, so a failing request leaves no partial
index entries behind; whether the surrounding transaction is aborted is up
to the caller.
"""

import json
import sqlite3
from typing import Any, List, Optional, Union

from shelfdb.logging_config import logger
from shelfdb.exceptions import (
    ConstraintError,
    DataError,
    NotFoundError,
    ValidationError,
)
from shelfdb.engine import catalog
from shelfdb.engine.catalog import CollectionMeta, IndexMeta
from shelfdb.engine.config import MAX_COUNT
from shelfdb.engine.cursor import (
    Cursor,
    index_cursor_sql,
    store_cursor_sql,
    validate_direction,
)
from shelfdb.engine.key_range import KeyRange, as_key_range
from shelfdb.engine.keys import (
    decode_key,
    encode_key,
    extract_key,
    index_keys,
    inject_key,
)


def _serialize(value: Any) -> str:
    try:
        return json.dumps(value, sort_keys=True)
    except (TypeError, ValueError) as e:
        raise DataError(f"Record is not JSON serializable: {e}")


def _limit(count: Optional[int]) -> int:
    if count is None:
        return MAX_COUNT
    if count < 0:
        raise ValidationError(f"count must be >= 0, got {count}")
    return count or MAX_COUNT


class Index:
    """Read access to one secondary index of a collection."""

    def __init__(self, store: "ObjectStore", meta: IndexMeta):
        self.object_store = store
        self._meta = meta

    @property
    def name(self) -> str:
        return self._meta.name

    @property
    def key_path(self):
        return self._meta.key_path

    @property
    def unique(self) -> bool:
        return self._meta.unique

    @property
    def multi_entry(self) -> bool:
        return self._meta.multi_entry

    def open_cursor(self, query: Any = None, direction: str = "next") -> Cursor:
        self.object_store.transaction._require_active()
        validate_direction(direction)
        sql, params = index_cursor_sql(
            self._meta.table, self.object_store._meta.table, as_key_range(query), direction
        )
        return Cursor(self.object_store.transaction._conn, sql, params, direction, self.name)

    def get(self, query: Any) -> Optional[Any]:
        """First record (in index order) whose index key is in `query`."""
        cursor = self.open_cursor(query)
        value = cursor.value
        cursor.close()
        return value

    def get_key(self, query: Any) -> Optional[Any]:
        cursor = self.open_cursor(query)
        key = cursor.primary_key
        cursor.close()
        return key

    def get_all(self, query: Any = None, count: Optional[int] = None) -> List[Any]:
        cursor = self.open_cursor(query)
        results = []
        limit = _limit(count)
        while not cursor.done and len(results) < limit:
            results.append(cursor.value)
            cursor.continue_()
        cursor.close()
        return results

    def get_all_keys(self, query: Any = None, count: Optional[int] = None) -> List[Any]:
        cursor = self.open_cursor(query)
        keys = []
        limit = _limit(count)
        while not cursor.done and len(keys) < limit:
            keys.append(cursor.primary_key)
            cursor.continue_()
        cursor.close()
        return keys

    def count(self, query: Any = None) -> int:
        self.object_store.transaction._require_active()
        where, params = (as_key_range(query) or KeyRange()).to_sql("key")
        row = self.object_store.transaction._conn.execute(
            f"SELECT COUNT(*) FROM {self._meta.table} WHERE {where}", params
        ).fetchone()
        return row[0]


class ObjectStore:
    """
    One collection as seen from inside a transaction.

    Records are JSON documents with in-line keys at `key_path`.
    """

    def __init__(self, transaction, meta: CollectionMeta):
        self.transaction = transaction
        self._meta = meta
        self._index_cache: Optional[List[IndexMeta]] = None

    @property
    def name(self) -> str:
        return self._meta.name

    @property
    def key_path(self):
        return self._meta.key_path

    @property
    def auto_increment(self) -> bool:
        return self._meta.auto_increment

    @property
    def _conn(self) -> sqlite3.Connection:
        return self.transaction._conn

    def _indexes(self) -> List[IndexMeta]:
        if self._index_cache is None:
            self._index_cache = catalog.list_indexes(self._conn, self._meta.id)
        return self._index_cache

    @property
    def index_names(self) -> List[str]:
        return [index.name for index in self._indexes()]

    def index(self, name: str) -> Index:
        self.transaction._require_active()
        for meta in self._indexes():
            if meta.name == name:
                return Index(self, meta)
        raise NotFoundError(f"Index '{name}' does not exist in collection '{self.name}'")

    # ========== WRITES ==========

    def add(self, value: dict) -> Any:
        """Add a record; fails with ConstraintError if the key exists."""
        return self._store(value, overwrite=False)

    def put(self, value: dict) -> Any:
        """Add or replace a record."""
        return self._store(value, overwrite=True)

    def _store(self, value: dict, overwrite: bool) -> Any:
        self.transaction._require_write()
        if not isinstance(value, dict):
            raise DataError(f"Records must be objects, got {type(value).__name__}")
        record = json.loads(_serialize(value))

        key = extract_key(record, self.key_path)
        with self.transaction._savepoint():
            if key is None:
                if not self.auto_increment:
                    raise ValidationError(
                        f"Record has no primary key '{self.key_path}' and collection '{self.name}' "
                        f"does not generate keys"
                    )
                key = catalog.next_generated_key(self._conn, self._meta)
                inject_key(record, self.key_path, key)
            elif self.auto_increment and isinstance(key, (int, float)):
                catalog.bump_generated_key(self._conn, self._meta, key)

            encoded = encode_key(key)
            exists = self._conn.execute(
                f"SELECT 1 FROM {self._meta.table} WHERE key = ?", (encoded,)
            ).fetchone()
            if exists and not overwrite:
                raise ConstraintError(self.name, key)
            if exists:
                self._delete_index_entries(encoded)

            self._conn.execute(
                f"INSERT OR REPLACE INTO {self._meta.table} (key, value) VALUES (?, ?)",
                (encoded, _serialize(record)),
            )
            for index in self._indexes():
                self._write_index_entries(index, record, encoded)
        logger.debug(f"{'put' if overwrite else 'add'} {self.name}[{key!r}]")
        return key

    def _write_index_entries(self, index: IndexMeta, record: dict, encoded_pk: bytes) -> None:
        for index_key in index_keys(record, index.key_path, index.multi_entry):
            try:
                self._conn.execute(
                    f"INSERT INTO {index.table} (key, pk) VALUES (?, ?)", (index_key, encoded_pk)
                )
            except sqlite3.IntegrityError:
                raise ConstraintError(self.name, decode_key(index_key), index=index.name)

    def _delete_index_entries(self, encoded_pk: bytes) -> None:
        for index in self._indexes():
            self._conn.execute(f"DELETE FROM {index.table} WHERE pk = ?", (encoded_pk,))

    def delete(self, query: Any) -> int:
        """Delete every record whose primary key is in `query`. Returns the count."""
        self.transaction._require_write()
        if query is None:
            raise ValidationError("delete() requires a key or key range; use clear() to empty a collection")
        where, params = as_key_range(query).to_sql("key")
        keys = [row[0] for row in self._conn.execute(
            f"SELECT key FROM {self._meta.table} WHERE {where}", params
        ).fetchall()]
        with self.transaction._savepoint():
            for encoded in keys:
                self._delete_index_entries(encoded)
                self._conn.execute(f"DELETE FROM {self._meta.table} WHERE key = ?", (encoded,))
        return len(keys)

    def clear(self) -> int:
        self.transaction._require_write()
        with self.transaction._savepoint():
            removed = self._conn.execute(f"DELETE FROM {self._meta.table}").rowcount
            for index in self._indexes():
                self._conn.execute(f"DELETE FROM {index.table}")
        return removed

    # ========== READS ==========

    def open_cursor(self, query: Any = None, direction: str = "next") -> Cursor:
        self.transaction._require_active()
        validate_direction(direction)
        sql, params = store_cursor_sql(self._meta.table, as_key_range(query), direction)
        return Cursor(self._conn, sql, params, direction, self.name)

    def get(self, query: Any) -> Optional[Any]:
        cursor = self.open_cursor(query)
        value = cursor.value
        cursor.close()
        return value

    def get_key(self, query: Any) -> Optional[Any]:
        cursor = self.open_cursor(query)
        key = cursor.key
        cursor.close()
        return key

    def get_all(self, query: Any = None, count: Optional[int] = None) -> List[Any]:
        self.transaction._require_active()
        where, params = (as_key_range(query) or KeyRange()).to_sql("key")
        rows = self._conn.execute(
            f"SELECT value FROM {self._meta.table} WHERE {where} ORDER BY key LIMIT ?",
            (*params, _limit(count)),
        ).fetchall()
        return [json.loads(row[0]) for row in rows]

    def get_all_keys(self, query: Any = None, count: Optional[int] = None) -> List[Any]:
        self.transaction._require_active()
        where, params = (as_key_range(query) or KeyRange()).to_sql("key")
        rows = self._conn.execute(
            f"SELECT key FROM {self._meta.table} WHERE {where} ORDER BY key LIMIT ?",
            (*params, _limit(count)),
        ).fetchall()
        return [decode_key(row[0]) for row in rows]

    def count(self, query: Any = None) -> int:
        self.transaction._require_active()
        where, params = (as_key_range(query) or KeyRange()).to_sql("key")
        row = self._conn.execute(
            f"SELECT COUNT(*) FROM {self._meta.table} WHERE {where}", params
        ).fetchone()
        return row[0]

    # ========== SCHEMA (versionchange only) ==========

    def create_index(self, name: str, key_path: Union[str, List[str]],
                     unique: bool = False, multi_entry: bool = False) -> Index:
        """
        Create an index and populate it from the existing records.

        Raises:
            ValidationError: If the name is taken or multi_entry is combined with a composite key path
            ConstraintError: If existing records violate a unique index
        """
        self.transaction._require_versionchange()
        if name in self.index_names:
            raise ValidationError(f"Index '{name}' already exists in collection '{self.name}'")
        if multi_entry and not isinstance(key_path, str):
            raise ValidationError(f"Index '{name}': multi_entry requires a single key path")

        meta = catalog.create_index_tables(self._conn, self._meta, name, key_path, unique, multi_entry)
        rows = self._conn.execute(f"SELECT key, value FROM {self._meta.table}").fetchall()
        for encoded_pk, raw in rows:
            self._write_index_entries(meta, json.loads(raw), encoded_pk)
        self._index_cache = None
        logger.debug(f"Index '{name}' on '{self.name}' populated from {len(rows)} records")
        return Index(self, meta)

    def delete_index(self, name: str) -> None:
        self.transaction._require_versionchange()
        for meta in self._indexes():
            if meta.name == name:
                catalog.drop_index_tables(self._conn, meta)
                self._index_cache = None
                logger.debug(f"Deleted index '{name}' from '{self.name}'")
                return
        raise NotFoundError(f"Index '{name}' does not exist in collection '{self.name}'")
