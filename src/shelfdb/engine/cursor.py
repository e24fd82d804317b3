"""
Engine Cursors

A cursor walks the rows of a collection or index in key order. It is opened
positioned on the first row of its range and moved with continue_() or
advance(n). Values are decoded from JSON only when read.
"""

import json
import sqlite3
from typing import Any, Iterator, Optional

from shelfdb.exceptions import ValidationError
from shelfdb.engine.config import CURSOR_FETCH_SIZE
from shelfdb.engine.key_range import KeyRange
from shelfdb.engine.keys import decode_key

DIRECTIONS = ("next", "nextunique", "prev", "prevunique")


def make_direction(desc: bool = False, unique: bool = False) -> str:
    """Map (descending, unique) flags to a cursor direction."""
    if desc:
        return "prevunique" if unique else "prev"
    return "nextunique" if unique else "next"


def validate_direction(direction: str) -> str:
    if direction not in DIRECTIONS:
        raise ValidationError(f"Unknown cursor direction '{direction}'. Expected one of {DIRECTIONS}")
    return direction


def store_cursor_sql(table: str, key_range: Optional[KeyRange], direction: str):
    order = "DESC" if direction.startswith("prev") else "ASC"
    where, params = (key_range or KeyRange()).to_sql("key")
    sql = f"SELECT key, key, value FROM {table} WHERE {where} ORDER BY key {order}"
    return sql, params


def index_cursor_sql(index_table: str, records_table: str, key_range: Optional[KeyRange], direction: str):
    order = "DESC" if direction.startswith("prev") else "ASC"
    where, params = (key_range or KeyRange()).to_sql("i.key")
    if direction.endswith("unique"):
        # One row per index key, always the lowest primary key
        sql = f"""
            SELECT g.key, g.pk, r.value FROM (
                SELECT i.key AS key, MIN(i.pk) AS pk FROM {index_table} i
                WHERE {where} GROUP BY i.key
            ) g JOIN {records_table} r ON r.key = g.pk
            ORDER BY g.key {order}
        """
    else:
        sql = f"""
            SELECT i.key, i.pk, r.value FROM {index_table} i
            JOIN {records_table} r ON r.key = i.pk
            WHERE {where}
            ORDER BY i.key {order}, i.pk {order}
        """
    return sql, params


class Cursor:
    """
    Ordered iteration handle over one collection or index.

    Attributes:
        direction: One of next, nextunique, prev, prevunique
        source: Name of the collection or index being walked
    """

    def __init__(self, conn: sqlite3.Connection, sql: str, params, direction: str, source: str):
        self.direction = direction
        self.source = source
        self._rows = conn.execute(sql, params)
        self._buffer = []
        self._row = None
        self._value = None
        self._value_loaded = False
        self._exhausted = False
        self._step()

    def _fetch(self):
        if not self._buffer and not self._exhausted:
            self._buffer = list(reversed(self._rows.fetchmany(CURSOR_FETCH_SIZE)))
            if not self._buffer:
                self._exhausted = True
                self._rows.close()
        return self._buffer.pop() if self._buffer else None

    def _step(self) -> bool:
        self._row = self._fetch()
        self._value = None
        self._value_loaded = False
        return self._row is not None

    @property
    def done(self) -> bool:
        """True once the cursor has moved past its last row."""
        return self._row is None

    @property
    def key(self) -> Any:
        return decode_key(self._row[0]) if self._row else None

    @property
    def primary_key(self) -> Any:
        return decode_key(self._row[1]) if self._row else None

    @property
    def value(self) -> Any:
        if self._row is None:
            return None
        if not self._value_loaded:
            self._value = json.loads(self._row[2])
            self._value_loaded = True
        return self._value

    def continue_(self) -> bool:
        """Move to the next row. Returns False when the cursor is exhausted."""
        if self._row is None:
            return False
        return self._step()

    def advance(self, count: int) -> bool:
        """Move forward `count` rows without decoding the rows jumped over."""
        if count <= 0:
            raise ValidationError("advance() count must be greater than zero")
        for _ in range(count):
            if not self.continue_():
                return False
        return True

    def close(self) -> None:
        self._buffer = []
        self._row = None
        if not self._exhausted:
            self._exhausted = True
            self._rows.close()

    def __iter__(self) -> Iterator[Any]:
        while not self.done:
            yield self.value
            self.continue_()
