"""
Database Facade

Async connection lifecycle, readiness, backup and restore.

Each Database owns one engine handle and one single-worker thread pool; all
engine work is submitted to that worker, so requests against one database
never run concurrently. open() must be called once per Database instance.
"""

import asyncio
import functools
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, List, Optional

from shelfdb.logging_config import logger
from shelfdb.exceptions import DatabaseConnectionError, NotFoundError, ShelfError
from shelfdb.batch.executor import BatchExecutor
from shelfdb.collection import Collection
from shelfdb.engine.config import DEFAULT_TIMEOUT
from shelfdb.engine.connection import EngineDatabase, delete_database
from shelfdb.migration.migrator import MigrationCallback, MigratorState, SchemaMigrator, UpgradeContext
from shelfdb.paths import get_paths
from shelfdb.schemas import (
    CollectionDefinition,
    IndexDefinition,
    Snapshot,
    SnapshotCollection,
    load_definitions,
    load_snapshot,
)


def _consume_exception(future: asyncio.Future) -> None:
    # A rejected readiness signal nobody awaited is not an unhandled error
    if not future.cancelled():
        future.exception()


class Database:
    """
    A named, versioned database with declared collections.

    Args:
        name: Database name (file name under the home directory)
        version: Schema version to open at (>= 1); None opens at the stored version
        collections: Collection declarations (dicts or CollectionDefinition);
            None adopts whatever schema the stored database has
        home: Home directory override (defaults to $SHELFDB_HOME or ~/.shelfdb)
        timeout: Seconds to wait on SQLite locks

    Example:
        db = Database("app", 1, [{"name": "users", "primary_key": "id", "indexes": ["email"]}])
        collections = await db.open()
        await collections["users"].insert({"id": 1, "email": "a@x.com"})
    """

    def __init__(
        self,
        name: str,
        version: Optional[int] = None,
        collections: Optional[List[Any]] = None,
        home: Optional[Path] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.paths = get_paths(home)
        self.path = self.paths.database_file(name)
        self.name = name
        self.version = version
        self.timeout = timeout
        self.definitions = load_definitions(collections)
        self._adopt_schema = collections is None

        self._engine: Optional[EngineDatabase] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._migrator: Optional[SchemaMigrator] = None
        self._collections: Dict[str, Collection] = {}
        self._ready: Optional[asyncio.Future] = None

    def __repr__(self) -> str:
        return f"Database(name={self.name!r}, version={self.version}, state={self.state.value!r})"

    # ========== STATE ==========

    @property
    def state(self) -> MigratorState:
        if self._migrator is None:
            return MigratorState.CLOSED
        return self._migrator.state

    @property
    def is_open(self) -> bool:
        return self._engine is not None and not self._engine.closed

    @property
    def ready(self) -> asyncio.Future:
        """
        Readiness signal, resolved once by the next (or current) open().

        Resolves to this Database, or fails with the open error.
        """
        if self._ready is None:
            self._ready = asyncio.get_running_loop().create_future()
            self._ready.add_done_callback(_consume_exception)
        return self._ready

    def _require_engine(self) -> EngineDatabase:
        if not self.is_open:
            raise DatabaseConnectionError(self.name, "database is not open; call open() first")
        return self._engine

    async def _call(self, fn, *args, **kwargs):
        """Run engine work on this database's worker thread."""
        if self._executor is None:
            raise DatabaseConnectionError(self.name, "database is not open; call open() first")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(fn, *args, **kwargs))

    # ========== LIFECYCLE ==========

    async def open(self, on_upgrade: Optional[MigrationCallback] = None) -> Dict[str, Collection]:
        """
        Open the database, running version steps and schema reconciliation.

        Args:
            on_upgrade: Called once per version step with an UpgradeContext

        Returns:
            Map of collection name to Collection

        Raises:
            DatabaseConnectionError: If already opened, blocked, or the engine fails
            MigrationError: If an upgrade step fails or the schema is incomplete
        """
        if self.state in (MigratorState.OPENING, MigratorState.UPGRADING, MigratorState.OPEN):
            raise DatabaseConnectionError(self.name, "open() was already called on this instance")

        ready = self.ready
        if ready.done():
            self._ready = None
            ready = self.ready

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"shelfdb-{self.name}")
        self._migrator = SchemaMigrator(self.name, self.definitions)
        try:
            self._engine = await self._call(
                self._migrator.open, self.path, self.version, on_upgrade, self.timeout
            )
        except ShelfError as e:
            self._shutdown_executor()
            ready.set_exception(e)
            raise

        self.version = self._engine.version
        if self._adopt_schema:
            self.definitions = await self._call(self._describe, self._engine)
        self._collections = {
            definition.name: Collection(self, definition) for definition in self.definitions
        }
        ready.set_result(self)
        return dict(self._collections)

    @staticmethod
    def _describe(engine: EngineDatabase) -> List[CollectionDefinition]:
        """Declarations equivalent to the live schema."""
        names = engine.collection_names
        if not names:
            return []
        definitions = []
        with engine.transaction(names, "readonly") as tx:
            for name in names:
                store = tx.object_store(name)
                indexes = []
                for index_name in store.index_names:
                    index = store.index(index_name)
                    indexes.append(IndexDefinition(
                        name=index.name,
                        key_path=index.key_path,
                        unique=index.unique,
                        multi_entry=index.multi_entry,
                    ))
                definitions.append(CollectionDefinition(
                    name=name,
                    primary_key=store.key_path,
                    auto_increment=store.auto_increment,
                    indexes=indexes,
                ))
        return definitions

    def _shutdown_executor(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    async def close(self) -> None:
        """Close the engine handle. Collections become unusable until reopened."""
        if self._engine is not None:
            engine = self._engine
            await self._call(engine.close)
            self._engine = None
        self._shutdown_executor()
        self._collections = {}
        self._migrator = None
        self._ready = None
        logger.info(f"Closed database '{self.name}'")

    async def delete(self) -> bool:
        """
        Close this instance (if open) and delete the database file.

        Raises:
            DatabaseConnectionError: If another open handle blocks the delete
        """
        await self.close()
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, delete_database, self.path, self.name)

    async def delete_database(self) -> bool:
        return await self.delete()

    def get_collection(self, name: str) -> Optional[Collection]:
        return self._collections.get(name)

    @property
    def collections(self) -> Dict[str, Collection]:
        return dict(self._collections)

    async def remove_collection(self, name: str) -> None:
        """
        Drop a collection and its declaration.

        Schema changes need an upgrade, so this reopens the database one
        version higher with an upgrade step that deletes the collection.

        Raises:
            NotFoundError: If the collection does not exist
        """
        engine = self._require_engine()
        if name not in await self._call(lambda: engine.collection_names):
            raise NotFoundError(f"Collection '{name}' does not exist in database '{self.name}'")

        remaining = [d for d in self.definitions if d.name != name]
        new_version = engine.version + 1

        def drop(context: UpgradeContext) -> None:
            context.database.delete_collection(name)

        await self._call(engine.close)
        self._engine = None
        self._migrator = SchemaMigrator(self.name, remaining)
        try:
            self._engine = await self._call(
                self._migrator.open, self.path, new_version, drop, self.timeout
            )
        except ShelfError:
            self._shutdown_executor()
            self._collections = {}
            raise

        self.version = new_version
        self.definitions = remaining
        self._collections.pop(name, None)
        logger.info(f"Removed collection '{name}' from '{self.name}' (now version {new_version})")

    # ========== BACKUP / RESTORE ==========

    async def backup(self) -> Snapshot:
        """Dump every declared collection inside one readonly transaction."""
        engine = self._require_engine()
        names = list(self._collections)

        def job() -> Snapshot:
            collections = []
            if names:
                with engine.transaction(names, "readonly") as tx:
                    for name in names:
                        docs = tx.object_store(name).get_all()
                        collections.append(SnapshotCollection(name=name, docs=docs))
            return Snapshot(name=self.name, version=engine.version, collections=collections)

        snapshot = await self._call(job)
        logger.info(
            f"Backed up '{self.name}': "
            + ", ".join(f"{c.name}={len(c.docs)}" for c in snapshot.collections)
        )
        return snapshot

    async def restore(self, snapshot: Any, overwrite: bool = False) -> Dict[str, int]:
        """
        Re-insert the documents of a snapshot, one transaction per collection.

        The snapshot's schema is not compared with the live schema. A failure
        leaves the collections restored before it in place.

        Args:
            snapshot: Snapshot model or dict with name, version, date, collections
            overwrite: Upsert instead of insert, replacing records with the same key

        Returns:
            Number of documents restored per collection

        Raises:
            ValidationError: If name, version or collections are missing
            NotFoundError: If the snapshot names a collection that does not exist
        """
        engine = self._require_engine()
        data = load_snapshot(snapshot)
        live = await self._call(lambda: engine.collection_names)
        unknown = [c.name for c in data.collections if c.name not in live]
        if unknown:
            raise NotFoundError(f"Snapshot collections not found in '{self.name}': {', '.join(unknown)}")

        restored = {}
        for collection in data.collections:
            executor = BatchExecutor(engine, collection.name)
            write = executor.upsert_many if overwrite else executor.insert_many
            docs = await self._call(write, collection.docs)
            restored[collection.name] = len(docs)
        logger.info(f"Restored '{data.name}' v{data.version} ({data.date}) into '{self.name}': {restored}")
        return restored
