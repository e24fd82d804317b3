"""
Embedded Storage Engine

A versioned, transactional object store on top of SQLite. It only offers
low-level primitives: single-record requests, key ranges and cursors.

Public API:
- open_database / delete_database: Connection lifecycle and version upgrades
- EngineDatabase: An open handle; starts transactions
- Transaction: Explicit transaction handle (commit / abort)
- ObjectStore / Index: Per-collection requests
- Cursor: Ordered iteration
- KeyRange: Key intervals

Internal Modules:
- keys: Order-preserving key encoding and key path evaluation
- catalog: Catalog and data table definitions
- config: Configuration constants
"""

from shelfdb.engine.connection import EngineDatabase, delete_database, open_database
from shelfdb.engine.cursor import Cursor, make_direction
from shelfdb.engine.key_range import KeyRange
from shelfdb.engine.object_store import Index, ObjectStore
from shelfdb.engine.transaction import Transaction

__all__ = [
    "EngineDatabase",
    "open_database",
    "delete_database",
    "Transaction",
    "ObjectStore",
    "Index",
    "Cursor",
    "make_direction",
    "KeyRange",
]
