"""
Tests for the embedded engine: connections, transactions, object stores,
indexes and cursors.
"""

import math
import threading
import time

import pytest

from shelfdb.exceptions import (
    ConstraintError,
    DataError,
    DatabaseConnectionError,
    NotFoundError,
    ReadOnlyError,
    TransactionInactiveError,
    ValidationError,
    VersionError,
)
from shelfdb.engine.connection import delete_database, open_database, open_handle_count
from shelfdb.engine.key_range import KeyRange


def ids(records):
    return [record["id"] for record in records]


class TestConnections:
    """Opening, upgrading and deleting database files."""

    def test_fresh_database_runs_upgrade(self, tmp_path):
        calls = []
        db = open_database(tmp_path / "a.sqlite3", 1, on_upgrade=lambda d, tx, old, new: calls.append((old, new)))
        assert calls == [(0, 1)]
        assert db.version == 1
        db.close()

    def test_same_version_skips_upgrade(self, tmp_path):
        path = tmp_path / "a.sqlite3"
        open_database(path, 1).close()
        calls = []
        db = open_database(path, 1, on_upgrade=lambda *args: calls.append(args))
        assert calls == []
        db.close()

    def test_default_version_is_stored_version(self, tmp_path):
        path = tmp_path / "a.sqlite3"
        open_database(path, 3).close()
        db = open_database(path)
        assert db.version == 3
        db.close()

    def test_lower_version_rejected(self, tmp_path):
        path = tmp_path / "a.sqlite3"
        open_database(path, 2).close()
        with pytest.raises(VersionError) as exc_info:
            open_database(path, 1)
        assert exc_info.value.stored == 2
        assert isinstance(exc_info.value, DatabaseConnectionError)

    def test_invalid_version(self, tmp_path):
        with pytest.raises(ValidationError):
            open_database(tmp_path / "a.sqlite3", 0)

    def test_upgrade_blocked_by_open_handle(self, tmp_path):
        path = tmp_path / "a.sqlite3"
        first = open_database(path, 1)
        try:
            with pytest.raises(DatabaseConnectionError, match="blocked"):
                open_database(path, 2)
            second = open_database(path, 1)
            assert open_handle_count(path) == 2
            second.close()
        finally:
            first.close()
        assert open_handle_count(path) == 0

    def test_failed_upgrade_rolls_back(self, tmp_path):
        path = tmp_path / "a.sqlite3"
        open_database(path, 1).close()

        def broken(db, tx, old, new):
            db.create_collection("posts", "id")
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            open_database(path, 2, on_upgrade=broken)

        db = open_database(path)
        assert db.version == 1
        assert db.collection_names == []
        db.close()

    def test_concurrent_opens_upgrade_once(self, tmp_path):
        path = tmp_path / "a.sqlite3"
        calls = []
        upgrading = threading.Event()
        handles = {}
        errors = []

        def hook(label):
            def upgrade(db, tx, old, new):
                calls.append((label, old, new))
                upgrading.set()
                time.sleep(0.5)
            return upgrade

        def open_as(label):
            try:
                handles[label] = open_database(path, 1, on_upgrade=hook(label))
            except Exception as e:
                errors.append(e)

        first = threading.Thread(target=open_as, args=("A",))
        first.start()
        assert upgrading.wait(5)
        second = threading.Thread(target=open_as, args=("B",))
        second.start()
        first.join()
        second.join()

        assert errors == []
        assert calls == [("A", 0, 1)]
        assert handles["B"].version == 1
        for handle in handles.values():
            handle.close()

    def test_delete_database(self, tmp_path):
        path = tmp_path / "a.sqlite3"
        db = open_database(path, 1)
        with pytest.raises(DatabaseConnectionError):
            delete_database(path)
        db.close()
        assert delete_database(path) is True
        assert not path.exists()
        assert delete_database(path) is False


class TestTransactions:

    def test_readonly_rejects_writes(self, engine_db):
        with engine_db.transaction("users", "readonly") as tx:
            with pytest.raises(ReadOnlyError):
                tx.object_store("users").add({"id": 9})

    def test_finished_transaction_is_inactive(self, engine_db):
        tx = engine_db.transaction("users", "readonly")
        tx.commit()
        with pytest.raises(TransactionInactiveError):
            tx.object_store("users")

    def test_abort_discards_writes(self, engine_db):
        tx = engine_db.transaction("users", "readwrite")
        tx.object_store("users").add({"id": 5, "email": "eve@x.com"})
        tx.abort()
        with engine_db.transaction("users") as tx:
            assert tx.object_store("users").count() == 4

    def test_exception_in_block_aborts(self, engine_db):
        with pytest.raises(KeyError):
            with engine_db.transaction("users", "readwrite") as tx:
                tx.object_store("users").add({"id": 5, "email": "eve@x.com"})
                raise KeyError("stop")
        with engine_db.transaction("users") as tx:
            assert tx.object_store("users").get(5) is None

    def test_unknown_collection(self, engine_db):
        with pytest.raises(NotFoundError):
            engine_db.transaction("posts")

    def test_out_of_scope_collection(self, engine_db):
        with engine_db.transaction([], "readonly") as tx:
            with pytest.raises(NotFoundError):
                tx.object_store("users")

    def test_schema_change_outside_upgrade(self, engine_db):
        with pytest.raises(ReadOnlyError):
            engine_db.create_collection("posts", "id")
        with engine_db.transaction("users", "readwrite") as tx:
            with pytest.raises(ReadOnlyError):
                tx.object_store("users").create_index("name", "name")


class TestObjectStore:
    """Record-level requests."""

    def test_get_by_key_and_range(self, engine_db):
        with engine_db.transaction("users") as tx:
            store = tx.object_store("users")
            assert store.get(1)["email"] == "ada@x.com"
            assert store.get(99) is None
            assert ids(store.get_all(KeyRange.bound(2, 3))) == [2, 3]
            assert store.get_all_keys(KeyRange.lower_bound(3)) == [3, 4]
            assert store.count() == 4

    def test_duplicate_primary_key(self, engine_db):
        with engine_db.transaction("users", "readwrite") as tx:
            store = tx.object_store("users")
            with pytest.raises(ConstraintError) as exc_info:
                store.add({"id": 1, "email": "new@x.com"})
            assert exc_info.value.index == ""
            assert store.count() == 4

    def test_unique_index_violation_leaves_no_partial_write(self, engine_db):
        with engine_db.transaction("users", "readwrite") as tx:
            store = tx.object_store("users")
            with pytest.raises(ConstraintError) as exc_info:
                store.add({"id": 5, "email": "ada@x.com"})
            assert exc_info.value.index == "email"
            assert store.get(5) is None
            assert store.index("age").count() == 4

    def test_put_replaces_index_entries(self, engine_db):
        with engine_db.transaction("users", "readwrite") as tx:
            store = tx.object_store("users")
            store.put({"id": 2, "email": "bobby@x.com", "age": 25})
            assert store.index("email").get("bob@x.com") is None
            assert store.index("email").get("bobby@x.com")["id"] == 2
            assert store.index("tags").get_all_keys("ops") == []

    def test_missing_key_without_generator(self, engine_db):
        with engine_db.transaction("users", "readwrite") as tx:
            with pytest.raises(ValidationError):
                tx.object_store("users").add({"email": "nokey@x.com"})

    def test_delete_and_clear(self, engine_db):
        with engine_db.transaction("users", "readwrite") as tx:
            store = tx.object_store("users")
            assert store.delete(KeyRange.bound(1, 2)) == 2
            assert store.index("email").get("ada@x.com") is None
            assert store.delete(99) == 0
            assert store.clear() == 2
            assert store.index("age").count() == 0

    def test_delete_requires_query(self, engine_db):
        with engine_db.transaction("users", "readwrite") as tx:
            with pytest.raises(ValidationError):
                tx.object_store("users").delete(None)

    def test_auto_increment(self, tmp_path):
        def upgrade(db, tx, old, new):
            db.create_collection("notes", "meta.id", auto_increment=True)

        db = open_database(tmp_path / "notes.sqlite3", 1, on_upgrade=upgrade)
        with db.transaction("notes", "readwrite") as tx:
            store = tx.object_store("notes")
            assert store.add({"text": "a"}) == 1
            assert store.add({"text": "b", "meta": {"id": 10}}) == 10
            assert store.add({"text": "c"}) == 11
            assert store.get(11) == {"text": "c", "meta": {"id": 11}}
        db.close()

    def test_key_generator_exhausted(self, tmp_path):
        def upgrade(db, tx, old, new):
            db.create_collection("notes", "id", auto_increment=True)

        db = open_database(tmp_path / "notes.sqlite3", 1, on_upgrade=upgrade)
        with db.transaction("notes", "readwrite") as tx:
            store = tx.object_store("notes")
            store.add({"id": -5})
            store.add({"id": math.inf})
            with pytest.raises(DataError):
                store.add({"text": "overflow"})
            assert store.count() == 2
        db.close()


class TestIndexes:

    def test_index_lookup(self, engine_db):
        with engine_db.transaction("users") as tx:
            index = tx.object_store("users").index("email")
            assert index.unique
            assert index.get("bob@x.com")["id"] == 2
            assert index.get_key("cy@x.com") == 3

    def test_non_unique_index(self, engine_db):
        with engine_db.transaction("users") as tx:
            age = tx.object_store("users").index("age")
            assert age.count(25) == 2
            assert ids(age.get_all(25)) == [2, 3]
            assert ids(age.get_all(KeyRange.lower_bound(30))) == [1, 4]

    def test_multi_entry_index(self, engine_db):
        with engine_db.transaction("users") as tx:
            tags = tx.object_store("users").index("tags")
            assert tags.multi_entry
            assert tags.get_all_keys("eng") == [1, 3]
            assert tags.count() == 4

    def test_unknown_index(self, engine_db):
        with engine_db.transaction("users") as tx:
            with pytest.raises(NotFoundError):
                tx.object_store("users").index("nickname")

    def test_create_index_populates_existing_records(self, engine_db, tmp_path):
        engine_db.close()

        def upgrade(db, tx, old, new):
            tx.object_store("users").create_index("by_email_age", ["age", "email"])

        db = open_database(tmp_path / "engine.sqlite3", 2, on_upgrade=upgrade)
        with db.transaction("users") as tx:
            index = tx.object_store("users").index("by_email_age")
            assert index.get_all_keys() == [2, 3, 1, 4]
            assert index.get([25, "cy@x.com"])["id"] == 3
        db.close()

    def test_unique_index_over_duplicates_fails(self, engine_db, tmp_path):
        engine_db.close()

        def upgrade(db, tx, old, new):
            tx.object_store("users").create_index("age_unique", "age", unique=True)

        with pytest.raises(ConstraintError):
            open_database(tmp_path / "engine.sqlite3", 2, on_upgrade=upgrade)
        db = open_database(tmp_path / "engine.sqlite3")
        assert db.version == 1
        db.close()


class TestCursors:

    def test_directions(self, engine_db):
        with engine_db.transaction("users") as tx:
            store = tx.object_store("users")
            assert ids(store.open_cursor(None, "prev")) == [4, 3, 2, 1]
            age = store.index("age")
            assert ids(age.open_cursor(None, "next")) == [2, 3, 1, 4]
            assert ids(age.open_cursor(None, "nextunique")) == [2, 1, 4]
            assert ids(age.open_cursor(None, "prevunique")) == [4, 1, 2]

    def test_cursor_positions(self, engine_db):
        with engine_db.transaction("users") as tx:
            cursor = tx.object_store("users").index("age").open_cursor(25)
            assert cursor.key == 25
            assert cursor.primary_key == 2
            assert cursor.continue_()
            assert cursor.primary_key == 3
            assert not cursor.continue_()
            assert cursor.done
            assert cursor.value is None

    def test_advance(self, engine_db):
        with engine_db.transaction("users") as tx:
            cursor = tx.object_store("users").open_cursor()
            assert cursor.advance(2)
            assert cursor.key == 3
            assert not cursor.advance(5)
            with pytest.raises(ValidationError):
                cursor.advance(0)

    def test_unknown_direction(self, engine_db):
        with engine_db.transaction("users") as tx:
            with pytest.raises(ValidationError):
                tx.object_store("users").open_cursor(None, "sideways")
