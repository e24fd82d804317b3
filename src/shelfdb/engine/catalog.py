"""
Engine Catalog

Table definitions for the catalog (version, collections, indexes) and the
per-collection data tables, plus the helpers that read and write them.

Every collection is backed by one `records_<id>` table keyed by the encoded
primary key; every index by one `index_<id>` table of (index key, primary key)
pairs.
"""

import json
import sqlite3
from dataclasses import dataclass
from typing import List, Optional, Union

from shelfdb.logging_config import logger
from shelfdb.exceptions import DataError
from shelfdb.engine.config import (
    COLLECTIONS_TABLE,
    FORMAT_VERSION,
    INDEXES_TABLE,
    META_TABLE,
)
from shelfdb.engine.keys import MAX_SAFE_INTEGER


CATALOG_SQL = f"""
CREATE TABLE IF NOT EXISTS {META_TABLE} (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS {COLLECTIONS_TABLE} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    key_path TEXT NOT NULL,  -- JSON string or array
    auto_increment INTEGER NOT NULL DEFAULT 0,
    current_key INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS {INDEXES_TABLE} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    collection_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    key_path TEXT NOT NULL,  -- JSON string or array
    is_unique INTEGER NOT NULL DEFAULT 0,
    multi_entry INTEGER NOT NULL DEFAULT 0,

    UNIQUE (collection_id, name),
    FOREIGN KEY (collection_id) REFERENCES {COLLECTIONS_TABLE}(id) ON DELETE CASCADE
);

INSERT OR IGNORE INTO {META_TABLE} (key, value) VALUES ('format_version', '{FORMAT_VERSION}');
INSERT OR IGNORE INTO {META_TABLE} (key, value) VALUES ('version', '0');
"""


@dataclass(frozen=True)
class CollectionMeta:
    id: int
    name: str
    key_path: Union[str, List[str]]
    auto_increment: bool

    @property
    def table(self) -> str:
        return f"records_{self.id}"


@dataclass(frozen=True)
class IndexMeta:
    id: int
    collection_id: int
    name: str
    key_path: Union[str, List[str]]
    unique: bool
    multi_entry: bool

    @property
    def table(self) -> str:
        return f"index_{self.id}"


def init_catalog(conn: sqlite3.Connection) -> None:
    """Create catalog tables inside the caller's transaction."""
    for statement in CATALOG_SQL.split(";"):
        if statement.strip():
            conn.execute(statement)


def catalog_exists(conn: sqlite3.Connection) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (META_TABLE,)
    ).fetchone()
    return row is not None


def read_version(conn: sqlite3.Connection) -> int:
    """Stored database version, 0 for a database that was never opened."""
    if not catalog_exists(conn):
        return 0
    row = conn.execute(f"SELECT value FROM {META_TABLE} WHERE key = 'version'").fetchone()
    return int(row[0]) if row else 0


def write_version(conn: sqlite3.Connection, version: int) -> None:
    conn.execute(
        f"INSERT OR REPLACE INTO {META_TABLE} (key, value) VALUES ('version', ?)",
        (str(version),),
    )


def _row_to_collection(row) -> CollectionMeta:
    return CollectionMeta(
        id=row[0], name=row[1], key_path=json.loads(row[2]), auto_increment=bool(row[3])
    )


def _row_to_index(row) -> IndexMeta:
    return IndexMeta(
        id=row[0],
        collection_id=row[1],
        name=row[2],
        key_path=json.loads(row[3]),
        unique=bool(row[4]),
        multi_entry=bool(row[5]),
    )


def list_collections(conn: sqlite3.Connection) -> List[CollectionMeta]:
    if not catalog_exists(conn):
        return []
    rows = conn.execute(
        f"SELECT id, name, key_path, auto_increment FROM {COLLECTIONS_TABLE} ORDER BY name"
    ).fetchall()
    return [_row_to_collection(row) for row in rows]


def find_collection(conn: sqlite3.Connection, name: str) -> Optional[CollectionMeta]:
    row = conn.execute(
        f"SELECT id, name, key_path, auto_increment FROM {COLLECTIONS_TABLE} WHERE name = ?",
        (name,),
    ).fetchone()
    return _row_to_collection(row) if row else None


def list_indexes(conn: sqlite3.Connection, collection_id: int) -> List[IndexMeta]:
    rows = conn.execute(
        f"""SELECT id, collection_id, name, key_path, is_unique, multi_entry
            FROM {INDEXES_TABLE} WHERE collection_id = ? ORDER BY name""",
        (collection_id,),
    ).fetchall()
    return [_row_to_index(row) for row in rows]


def create_collection_tables(conn: sqlite3.Connection, name: str, key_path, auto_increment: bool) -> CollectionMeta:
    cursor = conn.execute(
        f"INSERT INTO {COLLECTIONS_TABLE} (name, key_path, auto_increment) VALUES (?, ?, ?)",
        (name, json.dumps(key_path), int(auto_increment)),
    )
    meta = CollectionMeta(id=cursor.lastrowid, name=name, key_path=key_path, auto_increment=auto_increment)
    conn.execute(
        f"CREATE TABLE {meta.table} (key BLOB PRIMARY KEY, value TEXT NOT NULL) WITHOUT ROWID"
    )
    logger.debug(f"Created collection '{name}' as {meta.table}")
    return meta


def drop_collection_tables(conn: sqlite3.Connection, meta: CollectionMeta) -> None:
    for index in list_indexes(conn, meta.id):
        drop_index_tables(conn, index)
    conn.execute(f"DROP TABLE IF EXISTS {meta.table}")
    conn.execute(f"DELETE FROM {COLLECTIONS_TABLE} WHERE id = ?", (meta.id,))
    logger.debug(f"Dropped collection '{meta.name}'")


def create_index_tables(conn: sqlite3.Connection, collection: CollectionMeta, name: str,
                        key_path, unique: bool, multi_entry: bool) -> IndexMeta:
    cursor = conn.execute(
        f"""INSERT INTO {INDEXES_TABLE} (collection_id, name, key_path, is_unique, multi_entry)
            VALUES (?, ?, ?, ?, ?)""",
        (collection.id, name, json.dumps(key_path), int(unique), int(multi_entry)),
    )
    meta = IndexMeta(
        id=cursor.lastrowid,
        collection_id=collection.id,
        name=name,
        key_path=key_path,
        unique=unique,
        multi_entry=multi_entry,
    )
    conn.execute(
        f"""CREATE TABLE {meta.table} (
                key BLOB NOT NULL,
                pk BLOB NOT NULL,
                PRIMARY KEY (key, pk)
            ) WITHOUT ROWID"""
    )
    conn.execute(f"CREATE INDEX {meta.table}_pk ON {meta.table}(pk)")
    if unique:
        conn.execute(f"CREATE UNIQUE INDEX {meta.table}_unique ON {meta.table}(key)")
    logger.debug(f"Created index '{name}' on '{collection.name}' as {meta.table}")
    return meta


def drop_index_tables(conn: sqlite3.Connection, meta: IndexMeta) -> None:
    conn.execute(f"DROP TABLE IF EXISTS {meta.table}")
    conn.execute(f"DELETE FROM {INDEXES_TABLE} WHERE id = ?", (meta.id,))


def next_generated_key(conn: sqlite3.Connection, collection: CollectionMeta) -> int:
    row = conn.execute(
        f"SELECT current_key FROM {COLLECTIONS_TABLE} WHERE id = ?", (collection.id,)
    ).fetchone()
    key = int(row[0]) + 1
    if key > MAX_SAFE_INTEGER:
        raise DataError(f"Key generator for collection '{collection.name}' is exhausted")
    conn.execute(
        f"UPDATE {COLLECTIONS_TABLE} SET current_key = ? WHERE id = ?", (key, collection.id)
    )
    return key


def bump_generated_key(conn: sqlite3.Connection, collection: CollectionMeta, key: float) -> None:
    """Move the key generator past an explicitly supplied numeric key."""
    key = int(min(max(key, 0), MAX_SAFE_INTEGER))
    conn.execute(
        f"UPDATE {COLLECTIONS_TABLE} SET current_key = ? WHERE id = ? AND current_key < ?",
        (key, collection.id, key),
    )
