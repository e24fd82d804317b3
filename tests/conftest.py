"""
Pytest configuration for the shelfdb test suite.

This conftest.py provides:
- Machine-mode logging (suppresses console output)
- A temporary home directory per test
- Opened engine handles and databases for the common "users" schema
"""

import os

import pytest
import pytest_asyncio

from shelfdb.logging_config import setup_logging
from shelfdb.database import Database
from shelfdb.engine.connection import open_database
from shelfdb.paths import reset_paths


# ============================================================================
# GLOBAL CONFIGURATION
# ============================================================================

def pytest_configure(config):
    """Configure pytest for quiet operation."""
    os.environ.setdefault("SHELFDB_MACHINE_MODE", "1")


# ============================================================================
# LOGGING FIXTURES
# ============================================================================

@pytest.fixture(autouse=True)
def setup_test_logging():
    """
    Machine mode by default - suppress console logs for clean test output.
    """
    setup_logging(level="DEBUG", suppress_console=True, force=True)


# ============================================================================
# HOME DIRECTORY FIXTURES
# ============================================================================

@pytest.fixture
def shelf_home(tmp_path, monkeypatch):
    """Point SHELFDB_HOME at a fresh temporary directory."""
    home = tmp_path / "shelf"
    monkeypatch.setenv("SHELFDB_HOME", str(home))
    reset_paths()
    yield home
    reset_paths()


# ============================================================================
# ENGINE FIXTURES
# ============================================================================

def create_users(db, tx, old_version, new_version):
    """Upgrade hook creating a users collection with email and tags indexes."""
    store = db.create_collection("users", "id")
    store.create_index("email", "email", unique=True)
    store.create_index("age", "age")
    store.create_index("tags", "tags", multi_entry=True)


@pytest.fixture
def engine_db(tmp_path):
    """
    An engine handle with a populated users collection.

    Returns:
        Open EngineDatabase; closed after the test.
    """
    db = open_database(tmp_path / "engine.sqlite3", 1, on_upgrade=create_users)
    with db.transaction("users", "readwrite") as tx:
        store = tx.object_store("users")
        store.add({"id": 1, "email": "ada@x.com", "age": 36, "tags": ["math", "eng"]})
        store.add({"id": 2, "email": "bob@x.com", "age": 25, "tags": ["ops"]})
        store.add({"id": 3, "email": "cy@x.com", "age": 25, "tags": ["eng"]})
        store.add({"id": 4, "email": "di@x.com", "age": 52})
    yield db
    db.close()


# ============================================================================
# DATABASE FIXTURES
# ============================================================================

USERS_SCHEMA = [
    {
        "name": "users",
        "primary_key": "id",
        "indexes": [{"name": "email", "key_path": "email", "unique": True}, "age"],
    },
]


@pytest_asyncio.fixture
async def users_db(shelf_home):
    """
    An open Database named "app" with one users collection.

    Returns:
        Tuple of (database, users collection)
    """
    db = Database("app", 1, USERS_SCHEMA)
    collections = await db.open()
    yield db, collections["users"]
    await db.close()
