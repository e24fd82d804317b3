"""
Tests for all-or-nothing batch writes.
"""

import pytest

from shelfdb.batch.executor import BatchExecutor
from shelfdb.exceptions import (
    ConstraintError,
    DataError,
    TransactionAbortError,
    ValidationError,
)
from shelfdb.query.translator import where


@pytest.fixture
def batch(engine_db):
    return BatchExecutor(engine_db, "users")


def snapshot(db):
    with db.transaction("users") as tx:
        return tx.object_store("users").get_all()


class TestInsert:

    def test_insert_many(self, batch, engine_db):
        stored = batch.insert_many([{"id": 5, "email": "eve@x.com"}, {"id": 6, "email": "fay@x.com"}])
        assert stored == [{"id": 5, "email": "eve@x.com"}, {"id": 6, "email": "fay@x.com"}]
        assert len(snapshot(engine_db)) == 6

    def test_duplicate_in_batch_persists_nothing(self, batch, engine_db):
        before = snapshot(engine_db)
        with pytest.raises(ConstraintError) as exc_info:
            batch.insert_many([{"id": 5, "email": "eve@x.com"}, {"id": 1, "email": "x@x.com"}])
        assert isinstance(exc_info.value, TransactionAbortError)
        assert snapshot(engine_db) == before

    def test_unique_index_violation_persists_nothing(self, batch, engine_db):
        before = snapshot(engine_db)
        with pytest.raises(ConstraintError):
            batch.insert_many([{"id": 5, "email": "eve@x.com"}, {"id": 6, "email": "eve@x.com"}])
        assert snapshot(engine_db) == before

    def test_missing_primary_key(self, batch, engine_db):
        with pytest.raises(ValidationError, match="#1"):
            batch.insert_many([{"id": 5}, {"email": "nokey@x.com"}])
        assert len(snapshot(engine_db)) == 4

    def test_records_must_be_objects(self, batch):
        with pytest.raises(ValidationError):
            batch.insert_many([["id", 5]])

    def test_invalid_key(self, batch):
        with pytest.raises(DataError):
            batch.insert_many([{"id": 5}, {"id": {"nested": 1}}])

    def test_not_serializable(self, batch, engine_db):
        with pytest.raises(DataError):
            batch.insert_many([{"id": 5}, {"id": 6, "when": object()}])
        assert len(snapshot(engine_db)) == 4

    def test_empty_batch(self, batch):
        assert batch.insert_many([]) == []


class TestUpdate:

    def test_update_replaces(self, batch, engine_db):
        (stored,) = batch.update_many([{"id": 1, "age": 37}])
        assert stored == {"id": 1, "age": 37}
        with engine_db.transaction("users") as tx:
            assert tx.object_store("users").index("email").get("ada@x.com") is None

    def test_update_merge(self, batch):
        (stored,) = batch.update_many([{"id": 1, "age": 37}], merge=True)
        assert stored["email"] == "ada@x.com"
        assert stored["age"] == 37

    def test_update_creates_missing_records(self, batch, engine_db):
        batch.update_many([{"id": 7, "email": "gus@x.com"}])
        assert len(snapshot(engine_db)) == 5

    def test_update_requires_key(self, batch):
        with pytest.raises(ValidationError):
            batch.update_many([{"email": "x@x.com"}])

    def test_failed_update_rolls_back(self, batch, engine_db):
        before = snapshot(engine_db)
        with pytest.raises(ConstraintError):
            batch.update_many([{"id": 1, "email": "new@x.com"}, {"id": 2, "email": "cy@x.com"}])
        assert snapshot(engine_db) == before


class TestUpsert:

    def test_upsert_mixes_put_and_add(self, batch, engine_db):
        stored = batch.upsert_many([{"id": 2, "email": "bobby@x.com"}, {"id": 9, "email": "ivy@x.com"}])
        assert [record["id"] for record in stored] == [2, 9]
        records = {record["id"]: record for record in snapshot(engine_db)}
        assert records[2] == {"id": 2, "email": "bobby@x.com"}
        assert 9 in records

    def test_failed_upsert_rolls_back(self, batch, engine_db):
        before = snapshot(engine_db)
        with pytest.raises(ConstraintError):
            batch.upsert_many([
                {"id": 2, "email": "bobby@x.com"},
                {"id": 9, "email": "ivy@x.com"},
                {"id": 10, "email": "ada@x.com"},
            ])
        assert snapshot(engine_db) == before
        with engine_db.transaction("users") as tx:
            store = tx.object_store("users")
            assert store.get(2)["email"] == "bob@x.com"
            assert store.get(9) is None


class TestRemove:

    def test_remove_by_keys(self, batch, engine_db):
        removed = batch.remove_many([1, 99, 1])
        assert [record["id"] for record in removed] == [1]
        assert len(snapshot(engine_db)) == 3

    def test_remove_by_constraints(self, batch, engine_db):
        removed = batch.remove_many(constraints=where("age", "==", 25))
        assert sorted(record["id"] for record in removed) == [2, 3]
        assert [record["id"] for record in snapshot(engine_db)] == [1, 4]

    def test_remove_keys_and_constraints(self, batch):
        removed = batch.remove_many([4], constraints=[where("id", "<=", 1)])
        assert sorted(record["id"] for record in removed) == [1, 4]

    def test_remove_nothing(self, batch):
        assert batch.remove_many([]) == []
        assert batch.remove_many([42]) == []

    def test_remove_requires_target(self, batch):
        with pytest.raises(ValidationError):
            batch.remove_many()

    def test_remove_invalid_key(self, batch):
        with pytest.raises(DataError):
            batch.remove_many([None])

    def test_remove_all(self, batch, engine_db):
        assert batch.remove_all() == 4
        assert snapshot(engine_db) == []


class TestAbort:

    def test_foreign_errors_are_wrapped(self, batch, engine_db):
        def explode(store):
            store.add({"id": 5, "email": "eve@x.com"})
            raise RuntimeError("disk on fire")

        with pytest.raises(TransactionAbortError, match="disk on fire"):
            batch._run("explode", explode)
        assert len(snapshot(engine_db)) == 4

    def test_next_transaction_after_failure(self, batch):
        with pytest.raises(ConstraintError):
            batch.insert_many([{"id": 1}])
        assert batch.insert_many([{"id": 5}]) == [{"id": 5}]
