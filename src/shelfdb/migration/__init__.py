"""
Migration Package

Public API:
- SchemaMigrator: Opens a database, steps through versions, reconciles and verifies the schema
- UpgradeContext: Argument of migration callbacks, one per version step
- MigratorState: Lifecycle states
"""

from shelfdb.migration.migrator import (
    MigrationCallback,
    MigratorState,
    ReconcileReport,
    SchemaMigrator,
    UpgradeContext,
)

__all__ = [
    "SchemaMigrator",
    "UpgradeContext",
    "MigratorState",
    "MigrationCallback",
    "ReconcileReport",
]
