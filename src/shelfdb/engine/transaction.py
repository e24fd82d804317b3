"""
Engine Transactions

A Transaction is an explicit handle owning the connection for its lifetime.
It ends with exactly one commit() or abort(); used as a context manager it
commits on success and aborts when the block raises.

Modes map onto SQLite locking:
- readonly: BEGIN (deferred)
- readwrite: BEGIN IMMEDIATE
- versionchange: BEGIN EXCLUSIVE, the only mode allowed to change the schema
"""

import itertools
import sqlite3
from contextlib import contextmanager
from typing import Dict, Iterable, List, Union

from shelfdb.logging_config import logger
from shelfdb.exceptions import (
    NotFoundError,
    ReadOnlyError,
    ShelfError,
    TransactionAbortError,
    TransactionInactiveError,
    ValidationError,
)
from shelfdb.engine import catalog
from shelfdb.engine.object_store import ObjectStore

MODES = ("readonly", "readwrite", "versionchange")

_BEGIN = {
    "readonly": "BEGIN",
    "readwrite": "BEGIN IMMEDIATE",
    "versionchange": "BEGIN EXCLUSIVE",
}

_savepoint_ids = itertools.count(1)


class Transaction:
    """
    Transaction scope over one or more collections.

    Attributes:
        mode: readonly, readwrite or versionchange
        collection_names: Collections in scope (all collections for versionchange)
        state: active, committed or aborted
    """

    def __init__(self, database, names: Union[str, Iterable[str]], mode: str = "readonly"):
        if mode not in MODES:
            raise ValidationError(f"Unknown transaction mode '{mode}'. Expected one of {MODES}")
        if isinstance(names, str):
            names = [names]
        self.database = database
        self.mode = mode
        self.collection_names: List[str] = list(names)
        self.state = "active"
        self.error = None
        self._stores: Dict[str, ObjectStore] = {}
        self._conn: sqlite3.Connection = database._conn

        try:
            self._conn.execute(_BEGIN[mode])
        except sqlite3.OperationalError as e:
            self.state = "aborted"
            raise TransactionAbortError(f"Could not start {mode} transaction on '{database.name}': {e}")
        logger.debug(f"Began {mode} transaction on {self.collection_names or 'all collections'}")

    @property
    def active(self) -> bool:
        return self.state == "active"

    def _require_active(self) -> None:
        if not self.active:
            raise TransactionInactiveError(f"Transaction is {self.state}")

    def _require_write(self) -> None:
        self._require_active()
        if self.mode == "readonly":
            raise ReadOnlyError("Cannot write in a readonly transaction")

    def _require_versionchange(self) -> None:
        self._require_active()
        if self.mode != "versionchange":
            raise ReadOnlyError("Schema changes are only allowed during an upgrade")

    @contextmanager
    def _savepoint(self):
        """Make one request atomic without ending the transaction."""
        name = f"req_{next(_savepoint_ids)}"
        self._conn.execute(f"SAVEPOINT {name}")
        try:
            yield
        except BaseException:
            self._conn.execute(f"ROLLBACK TO {name}")
            self._conn.execute(f"RELEASE {name}")
            raise
        self._conn.execute(f"RELEASE {name}")

    def object_store(self, name: str) -> ObjectStore:
        """
        Get a collection handle bound to this transaction.

        Raises:
            NotFoundError: If the collection is out of scope or does not exist
        """
        self._require_active()
        if name in self._stores:
            return self._stores[name]
        if self.mode != "versionchange" and name not in self.collection_names:
            raise NotFoundError(f"Collection '{name}' is not in the scope of this transaction")
        meta = catalog.find_collection(self._conn, name)
        if meta is None:
            raise NotFoundError(f"Collection '{name}' does not exist")
        store = ObjectStore(self, meta)
        self._stores[name] = store
        return store

    def _forget_store(self, name: str) -> None:
        self._stores.pop(name, None)

    def commit(self) -> None:
        self._require_active()
        try:
            self._conn.execute("COMMIT")
        except sqlite3.Error as e:
            self._rollback_quietly()
            self.state = "aborted"
            raise TransactionAbortError(f"Commit failed: {e}")
        self.state = "committed"
        logger.debug(f"Committed {self.mode} transaction")

    def abort(self, error: BaseException = None) -> None:
        self._require_active()
        self.error = error
        self._rollback_quietly()
        self.state = "aborted"
        if error is not None:
            logger.error(f"Transaction rolled back due to error: {error}")
        else:
            logger.debug(f"Aborted {self.mode} transaction")

    def _rollback_quietly(self) -> None:
        if self._conn.in_transaction:
            self._conn.execute("ROLLBACK")

    def __enter__(self) -> "Transaction":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if not self.active:
            return False
        if exc_type is not None:
            self.abort(exc_val)
            return False
        self.commit()
        return False


def wrap_abort(error: BaseException) -> ShelfError:
    """Shelf errors pass through; anything else becomes a TransactionAbortError."""
    if isinstance(error, ShelfError):
        return error
    return TransactionAbortError(f"Transaction aborted: {error}")
