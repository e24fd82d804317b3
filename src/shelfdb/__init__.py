"""
shelfdb - Declarative document collections on an embedded SQLite engine

Declare collections and indexes once, open the database at a version, and
query with simple constraints.
"""

__version__ = "1.0.0"

# Core exports
from shelfdb.database import Database
from shelfdb.collection import Collection
from shelfdb.query.translator import where
from shelfdb.migration.migrator import MigratorState, UpgradeContext
from shelfdb.schemas import CollectionDefinition, Constraint, IndexDefinition, Snapshot
from shelfdb.exceptions import (
    ConstraintError,
    DatabaseConnectionError,
    DataError,
    MigrationError,
    NotFoundError,
    ReadOnlyError,
    ShelfError,
    TransactionAbortError,
    TransactionInactiveError,
    ValidationError,
    VersionError,
)

__all__ = [
    "__version__",
    "Database",
    "Collection",
    "where",
    "MigratorState",
    "UpgradeContext",
    "CollectionDefinition",
    "IndexDefinition",
    "Constraint",
    "Snapshot",
    "ShelfError",
    "DatabaseConnectionError",
    "VersionError",
    "MigrationError",
    "TransactionAbortError",
    "ConstraintError",
    "ValidationError",
    "NotFoundError",
    "DataError",
    "TransactionInactiveError",
    "ReadOnlyError",
]
