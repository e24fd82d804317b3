"""
Engine Connections

Opening, upgrading, closing and deleting database files.

open_database() reports (old_version, new_version) to the upgrade hook once,
inside a single versionchange transaction. Stepping through intermediate
versions is the caller's job.
"""

import sqlite3
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set, Union

from shelfdb.logging_config import logger
from shelfdb.exceptions import (
    DatabaseConnectionError,
    NotFoundError,
    ReadOnlyError,
    ShelfError,
    ValidationError,
    VersionError,
)
from shelfdb.engine import catalog
from shelfdb.engine.config import DEFAULT_TIMEOUT, ENABLE_WAL_MODE
from shelfdb.engine.transaction import Transaction
from shelfdb.engine.object_store import ObjectStore

UpgradeHook = Callable[["EngineDatabase", Transaction, int, int], None]

# Live handles per database file, used to detect blocked upgrades and deletes
_open_handles: Dict[str, Set["EngineDatabase"]] = {}
_registry_lock = threading.Lock()


def _registry_key(path: Path) -> str:
    return str(Path(path).resolve())


def _register(handle: "EngineDatabase") -> None:
    with _registry_lock:
        _open_handles.setdefault(_registry_key(handle.path), set()).add(handle)


def _unregister(handle: "EngineDatabase") -> None:
    with _registry_lock:
        handles = _open_handles.get(_registry_key(handle.path))
        if handles is not None:
            handles.discard(handle)
            if not handles:
                del _open_handles[_registry_key(handle.path)]


def open_handle_count(path: Union[str, Path]) -> int:
    with _registry_lock:
        return len(_open_handles.get(_registry_key(Path(path)), ()))


def _connect(path: Path, timeout: float) -> sqlite3.Connection:
    """
    Get database connection with the engine's settings.

    Autocommit mode: transactions are started explicitly by Transaction.
    """
    conn = sqlite3.connect(
        str(path), timeout=timeout, isolation_level=None, check_same_thread=False
    )
    conn.execute("PRAGMA foreign_keys = ON")
    if ENABLE_WAL_MODE:
        conn.execute("PRAGMA journal_mode = WAL")
    conn.execute(f"PRAGMA busy_timeout = {int(timeout * 1000)}")
    return conn


class EngineDatabase:
    """
    One open handle on a database file.

    Attributes:
        name: Database name
        path: Backing SQLite file
        version: Version the handle was opened at
    """

    def __init__(self, name: str, path: Path, conn: sqlite3.Connection, version: int):
        self.name = name
        self.path = Path(path)
        self.version = version
        self._conn = conn
        self._closed = False
        self._current: Optional[Transaction] = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def collection_names(self) -> List[str]:
        self._require_open()
        return [meta.name for meta in catalog.list_collections(self._conn)]

    def _require_open(self) -> None:
        if self._closed:
            raise DatabaseConnectionError(self.name, "connection is closed")

    def transaction(self, names: Union[str, List[str]], mode: str = "readonly") -> Transaction:
        """
        Start a transaction over the named collections.

        Only one transaction is active per handle at a time.

        Raises:
            NotFoundError: If a named collection does not exist
        """
        self._require_open()
        if self._current is not None and self._current.active:
            raise ShelfError(f"Database '{self.name}' already has an active transaction")
        if mode == "versionchange":
            raise ValidationError("versionchange transactions are only started by open_database()")
        existing = set(self.collection_names)
        for name in [names] if isinstance(names, str) else names:
            if name not in existing:
                raise NotFoundError(f"Collection '{name}' does not exist in database '{self.name}'")
        self._current = Transaction(self, names, mode)
        return self._current

    # ========== SCHEMA (versionchange only) ==========

    def create_collection(self, name: str, key_path, auto_increment: bool = False) -> ObjectStore:
        """Create a collection inside the running upgrade transaction."""
        tx = self._upgrade_transaction()
        if not name:
            raise ValidationError("Collection name must not be empty")
        if catalog.find_collection(self._conn, name) is not None:
            raise ValidationError(f"Collection '{name}' already exists in database '{self.name}'")
        if auto_increment and not isinstance(key_path, str):
            raise ValidationError(f"Collection '{name}': auto_increment requires a single key path")
        catalog.create_collection_tables(self._conn, name, key_path, auto_increment)
        return tx.object_store(name)

    def delete_collection(self, name: str) -> None:
        """Drop a collection and its indexes inside the running upgrade transaction."""
        tx = self._upgrade_transaction()
        meta = catalog.find_collection(self._conn, name)
        if meta is None:
            raise NotFoundError(f"Collection '{name}' does not exist in database '{self.name}'")
        catalog.drop_collection_tables(self._conn, meta)
        tx._forget_store(name)

    def _upgrade_transaction(self) -> Transaction:
        self._require_open()
        tx = self._current
        if tx is None or not tx.active or tx.mode != "versionchange":
            raise ReadOnlyError("Schema changes are only allowed during an upgrade")
        return tx

    def close(self) -> None:
        """Close the handle; an unfinished transaction is rolled back."""
        if self._closed:
            return
        if self._current is not None and self._current.active:
            self._current.abort()
        self._conn.close()
        self._closed = True
        _unregister(self)
        logger.debug(f"Closed database '{self.name}'")


def open_database(
    path: Union[str, Path],
    version: Optional[int] = None,
    on_upgrade: Optional[UpgradeHook] = None,
    name: Optional[str] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> EngineDatabase:
    """
    Open (creating if needed) the database stored at `path`.

    When `version` exceeds the stored version, `on_upgrade(db, tx, old, new)`
    runs once inside an exclusive versionchange transaction; if it raises,
    the upgrade is rolled back and the stored version is unchanged.

    Args:
        path: SQLite file backing the database
        version: Requested version (defaults to the stored version, or 1)
        on_upgrade: Hook receiving the schema-changing transaction
        name: Display name (defaults to the file stem)
        timeout: Seconds to wait for SQLite locks

    Raises:
        VersionError: If version is lower than the stored version
        DatabaseConnectionError: If the file cannot be opened or the upgrade is blocked
    """
    path = Path(path)
    name = name or path.stem
    if version is not None and (isinstance(version, bool) or not isinstance(version, int) or version < 1):
        raise ValidationError(f"Database version must be a positive integer, got {version!r}")

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = _connect(path, timeout)
        stored = catalog.read_version(conn)
    except (sqlite3.Error, OSError) as e:
        raise DatabaseConnectionError(name, f"unable to open {path}: {e}")

    requested = version if version is not None else max(stored, 1)
    if requested < stored:
        conn.close()
        raise VersionError(name, requested, stored)

    db = EngineDatabase(name, path, conn, stored)

    if requested > stored:
        others = open_handle_count(path)
        if others:
            conn.close()
            raise DatabaseConnectionError(
                name,
                f"upgrade to version {requested} blocked by {others} open connection(s); close them first",
            )
        try:
            tx = Transaction(db, [], "versionchange")
        except ShelfError as e:
            conn.close()
            raise DatabaseConnectionError(name, f"upgrade to version {requested} blocked: {e}")
        db._current = tx
        try:
            # Another connection may have upgraded while we waited for the lock.
            try:
                stored = catalog.read_version(conn)
            except sqlite3.Error as e:
                raise DatabaseConnectionError(name, f"unable to read version of {path}: {e}")
            if requested < stored:
                raise VersionError(name, requested, stored)
            others = open_handle_count(path)
            if requested > stored and others:
                raise DatabaseConnectionError(
                    name,
                    f"upgrade to version {requested} blocked by {others} open connection(s); close them first",
                )
        except BaseException as e:
            tx.abort(e)
            conn.close()
            raise
        if requested == stored:
            tx.abort()
            db._current = None
            logger.debug(f"Database '{name}' already upgraded to version {stored} by another connection")
        else:
            logger.info(f"Upgrading database '{name}' from version {stored} to {requested}")
            try:
                catalog.init_catalog(conn)
                if on_upgrade is not None:
                    on_upgrade(db, tx, stored, requested)
                catalog.write_version(conn, requested)
                tx.commit()
            except BaseException as e:
                if tx.active:
                    tx.abort(e)
                conn.close()
                raise
        db.version = requested

    _register(db)
    logger.debug(f"Opened database '{name}' at version {db.version}")
    return db


def delete_database(path: Union[str, Path], name: Optional[str] = None) -> bool:
    """
    Delete the database file and its SQLite side files.

    Returns:
        True if a database existed

    Raises:
        DatabaseConnectionError: If handles on it are still open
    """
    path = Path(path)
    name = name or path.stem
    others = open_handle_count(path)
    if others:
        raise DatabaseConnectionError(name, f"delete blocked by {others} open connection(s)")
    existed = path.exists()
    try:
        for candidate in (path, Path(f"{path}-wal"), Path(f"{path}-shm"), Path(f"{path}-journal")):
            if candidate.exists():
                candidate.unlink()
    except OSError as e:
        raise DatabaseConnectionError(name, f"unable to delete {path}: {e}")
    logger.info(f"Deleted database '{name}'" if existed else f"Database '{name}' did not exist")
    return existed
