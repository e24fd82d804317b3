"""
Collection Facade

Async per-collection API. Reads run in one readonly transaction per call;
writes are delegated to the BatchExecutor. Every call is executed on the
owning Database's worker thread.
"""

from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from shelfdb.batch.executor import BatchExecutor
from shelfdb.engine.object_store import ObjectStore
from shelfdb.query import cursor_engine
from shelfdb.query.config import DEFAULT_DIRECTION, DEFAULT_SKIP
from shelfdb.query.translator import ConstraintInput, TranslatedQuery, translate
from shelfdb.schemas import CollectionDefinition, IndexDefinition

if TYPE_CHECKING:
    from shelfdb.database import Database


class Collection:
    """
    Typed access to one collection of an open Database.

    Obtained from Database.open() or Database.get_collection().
    """

    def __init__(self, database: "Database", definition: CollectionDefinition):
        self._database = database
        self._definition = definition

    def __repr__(self) -> str:
        return f"Collection(name={self.name!r}, primary_key={self.primary_key!r})"

    @property
    def name(self) -> str:
        return self._definition.name

    @property
    def primary_key(self):
        return self._definition.primary_key

    @property
    def auto_increment(self) -> bool:
        return self._definition.auto_increment

    @property
    def indexes(self) -> List[IndexDefinition]:
        return list(self._definition.indexes)

    # ========== PLUMBING ==========

    def _query(self, store: ObjectStore, constraints: ConstraintInput) -> TranslatedQuery:
        return translate(constraints, self._definition.primary_key_name, store.index_names)

    async def _read(self, work: Callable[[ObjectStore], Any]) -> Any:
        def job():
            tx = self._database._require_engine().transaction(self.name, "readonly")
            with tx:
                return work(tx.object_store(self.name))

        return await self._database._call(job)

    async def _write(self, work: Callable[[BatchExecutor], Any]) -> Any:
        def job():
            return work(BatchExecutor(self._database._require_engine(), self.name))

        return await self._database._call(job)

    # ========== READS ==========

    async def get(self, constraints: ConstraintInput = None) -> Optional[Dict[str, Any]]:
        """First record matching the constraints, or None."""
        return await self._read(
            lambda store: cursor_engine.get(store, self._query(store, constraints))
        )

    async def get_all(self, constraints: ConstraintInput = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """All records matching the constraints, ascending, at most `limit`."""
        return await self._read(
            lambda store: cursor_engine.get_all(store, self._query(store, constraints), limit)
        )

    async def count(self, constraints: ConstraintInput = None) -> int:
        return await self._read(
            lambda store: cursor_engine.count(store, self._query(store, constraints))
        )

    async def find(
        self,
        skip: int = DEFAULT_SKIP,
        limit: Optional[int] = None,
        direction: str = DEFAULT_DIRECTION,
        unique: bool = False,
        constraints: ConstraintInput = None,
        predicate: Optional[Callable[[Any], bool]] = None,
        transform: Optional[Callable[[Any], Any]] = None,
    ) -> List[Any]:
        """
        Paginated, filtered and mapped scan.

        Args:
            skip: Matching records to pass over
            limit: Maximum records returned
            direction: "asc" or "desc"
            unique: Collapse duplicate keys of a non-unique index
            constraints: Constraints on one field (primary key or index)
            predicate: Record filter; only accepted records count toward skip/limit
            transform: Mapping applied to returned records
        """
        return await self._read(
            lambda store: cursor_engine.find(
                store,
                self._query(store, constraints),
                direction=direction,
                unique=unique,
                skip=skip,
                limit=limit,
                predicate=predicate,
                transform=transform,
            )
        )

    # ========== WRITES ==========

    async def insert(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        return (await self.insert_many([doc]))[0]

    async def insert_many(self, docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return await self._write(lambda batch: batch.insert_many(docs))

    async def update(self, doc: Dict[str, Any], merge: bool = False) -> Dict[str, Any]:
        return (await self.update_many([doc], merge=merge))[0]

    async def update_many(self, docs: List[Dict[str, Any]], merge: bool = False) -> List[Dict[str, Any]]:
        return await self._write(lambda batch: batch.update_many(docs, merge=merge))

    async def upsert(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        return (await self.upsert_many([doc]))[0]

    async def upsert_many(self, docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return await self._write(lambda batch: batch.upsert_many(docs))

    async def remove(self, key: Any) -> Optional[Dict[str, Any]]:
        """Remove one record by primary key; None if it did not exist."""
        removed = await self.remove_many(keys=[key])
        return removed[0] if removed else None

    async def remove_many(self, keys: Optional[List[Any]] = None,
                          constraints: ConstraintInput = None) -> List[Dict[str, Any]]:
        return await self._write(lambda batch: batch.remove_many(keys, constraints))

    async def remove_all(self) -> int:
        return await self._write(lambda batch: batch.remove_all())
