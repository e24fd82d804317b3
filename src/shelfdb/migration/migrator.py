"""
Schema Migrator

Reconciles the declared collections and indexes with the live schema while a
database is opened.

State machine:
    CLOSED -> OPENING -> (UPGRADING)* -> OPEN
                 \\____________\\_______-> FAILED

The engine reports one (old_version, new_version) pair per open. The migrator
turns it into unit steps (v, v+1) and calls the migration callback once per
step, all within the same upgrade transaction. Declared-schema reconciliation
runs once, before the first step.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from shelfdb.logging_config import logger
from shelfdb.exceptions import DatabaseConnectionError, MigrationError, ShelfError
from shelfdb.engine.config import DEFAULT_TIMEOUT
from shelfdb.engine.connection import EngineDatabase, open_database
from shelfdb.engine.object_store import ObjectStore
from shelfdb.engine.transaction import Transaction
from shelfdb.schemas import CollectionDefinition, IndexDefinition


class MigratorState(str, Enum):
    CLOSED = "closed"
    OPENING = "opening"
    UPGRADING = "upgrading"
    OPEN = "open"
    FAILED = "failed"


_TRANSITIONS = {
    MigratorState.CLOSED: {MigratorState.OPENING},
    MigratorState.OPENING: {MigratorState.UPGRADING, MigratorState.OPEN, MigratorState.FAILED},
    MigratorState.UPGRADING: {MigratorState.UPGRADING, MigratorState.OPEN, MigratorState.FAILED},
    MigratorState.OPEN: set(),
    MigratorState.FAILED: set(),
}


@dataclass
class UpgradeContext:
    """
    What a migration callback receives for one version step.

    All steps of one open share the same database handle and transaction.
    """
    database: EngineDatabase
    transaction: Transaction
    old_version: int
    new_version: int

    def collection(self, name: str) -> ObjectStore:
        return self.transaction.object_store(name)


MigrationCallback = Callable[[UpgradeContext], None]


@dataclass
class ReconcileReport:
    created_collections: List[str] = field(default_factory=list)
    removed_indexes: List[Tuple[str, str]] = field(default_factory=list)
    created_indexes: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.created_collections or self.removed_indexes or self.created_indexes)


class SchemaMigrator:
    """
    Drives one open of a database against its declared schema.

    Args:
        name: Database name (for messages)
        definitions: Normalized collection declarations
    """

    def __init__(self, name: str, definitions: List[CollectionDefinition]):
        self.name = name
        self.definitions = definitions
        self.state = MigratorState.CLOSED
        self.steps: List[Tuple[int, int]] = []
        self.report = ReconcileReport()
        self.error: Optional[BaseException] = None

    def _transition(self, state: MigratorState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise ShelfError(f"Invalid migrator transition {self.state.value} -> {state.value}")
        logger.debug(f"Migrator '{self.name}': {self.state.value} -> {state.value}")
        self.state = state

    # ========== OPEN ==========

    def open(
        self,
        path: Path,
        version: int,
        callback: Optional[MigrationCallback] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> EngineDatabase:
        """
        Open the database, upgrading and verifying the schema.

        Raises:
            DatabaseConnectionError: If the engine cannot open or is blocked
            MigrationError: If an upgrade step fails or the schema is incomplete
        """
        self._transition(MigratorState.OPENING)
        db = None
        try:
            db = open_database(
                path,
                version,
                on_upgrade=lambda d, tx, old, new: self.upgrade(d, tx, old, new, callback),
                name=self.name,
                timeout=timeout,
            )
            self.verify(db)
        except BaseException as e:
            if db is not None:
                db.close()
            self.fail(e)
            if isinstance(e, (DatabaseConnectionError, MigrationError)):
                raise
            if isinstance(e, Exception):
                raise MigrationError(f"Opening database '{self.name}' failed: {e}") from e
            raise
        self._transition(MigratorState.OPEN)
        logger.info(f"Database '{self.name}' is open at version {db.version}")
        return db

    def fail(self, error: BaseException) -> None:
        self.error = error
        if self.state not in (MigratorState.OPEN, MigratorState.FAILED):
            self._transition(MigratorState.FAILED)
        logger.error(f"Opening database '{self.name}' failed: {error}")

    # ========== UPGRADE ==========

    def upgrade(
        self,
        db: EngineDatabase,
        tx: Transaction,
        old_version: int,
        new_version: int,
        callback: Optional[MigrationCallback] = None,
    ) -> None:
        """
        Engine upgrade hook: reconcile, then run one callback per version step.
        """
        self._transition(MigratorState.UPGRADING)
        self.report = self.reconcile(db, tx)

        for version in range(old_version, new_version):
            step = (version, version + 1)
            logger.info(f"Database '{self.name}': migration step {step[0]} -> {step[1]}")
            if callback is not None:
                try:
                    callback(UpgradeContext(db, tx, step[0], step[1]))
                except ShelfError as e:
                    raise MigrationError(
                        f"Migration step {step[0]} -> {step[1]} of '{self.name}' failed: {e}"
                    ) from e
            self.steps.append(step)
            self._transition(MigratorState.UPGRADING)

    def reconcile(self, db: EngineDatabase, tx: Transaction) -> ReconcileReport:
        """
        Make the live collections and indexes match the declarations.

        Undeclared indexes are removed before missing ones are created, so a
        name freed by a rename can be reused with different properties.
        """
        report = ReconcileReport()
        live = set(db.collection_names)
        for definition in self.definitions:
            if definition.name not in live:
                store = db.create_collection(
                    definition.name, definition.primary_key, definition.auto_increment
                )
                report.created_collections.append(definition.name)
            else:
                store = tx.object_store(definition.name)
                self._warn_on_primary_key_drift(store, definition)

            declared = set(definition.index_names)
            live_indexes = set(store.index_names) - {definition.primary_key_name}
            for index_name in sorted(live_indexes - declared):
                store.delete_index(index_name)
                report.removed_indexes.append((definition.name, index_name))

            current = set(store.index_names)
            for index in definition.indexes:
                if index.name in current:
                    self._warn_on_index_drift(store, index, definition.name)
                    continue
                store.create_index(index.name, index.key_path, index.unique, index.multi_entry)
                report.created_indexes.append((definition.name, index.name))

        if report.changed:
            logger.info(
                f"Database '{self.name}': created collections {report.created_collections}, "
                f"removed indexes {report.removed_indexes}, created indexes {report.created_indexes}"
            )
        return report

    def _warn_on_primary_key_drift(self, store: ObjectStore, definition: CollectionDefinition) -> None:
        if store.key_path != definition.primary_key or store.auto_increment != definition.auto_increment:
            logger.warning(
                f"Collection '{definition.name}' is stored with key path {store.key_path!r} "
                f"(auto_increment={store.auto_increment}) but declared with {definition.primary_key!r} "
                f"(auto_increment={definition.auto_increment}); keeping the stored settings"
            )

    def _warn_on_index_drift(self, store: ObjectStore, index: IndexDefinition, collection: str) -> None:
        live = store.index(index.name)
        if (live.key_path, live.unique, live.multi_entry) != (index.key_path, index.unique, index.multi_entry):
            logger.warning(
                f"Index '{collection}.{index.name}' differs from its declaration; "
                f"rename the index to rebuild it"
            )

    # ========== POST-CONDITION ==========

    def missing(self, db: EngineDatabase) -> List[str]:
        """Declared collections and indexes absent from the live schema."""
        live = set(db.collection_names)
        missing = [d.name for d in self.definitions if d.name not in live]
        present = [d for d in self.definitions if d.name in live]
        if not present:
            return missing
        tx = db.transaction([d.name for d in present], "readonly")
        try:
            for definition in present:
                live_indexes = set(tx.object_store(definition.name).index_names)
                for index_name in definition.index_names:
                    if index_name not in live_indexes:
                        missing.append(f"{definition.name}.{index_name}")
        finally:
            tx.abort()
        return missing

    def verify(self, db: EngineDatabase) -> None:
        """
        Raises:
            MigrationError: If anything declared is missing after the upgrade
        """
        missing = self.missing(db)
        if missing:
            raise MigrationError(
                f"Database '{self.name}' at version {db.version} is missing {', '.join(missing)}. "
                f"Verify the declarations or upgrade the database version.",
                missing=missing,
            )
