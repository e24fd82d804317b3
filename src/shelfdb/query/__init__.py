"""
Query Package

Public API:
- where: Constraint builder
- translate: Constraints -> (index name, key range)
- find / get / get_all / count: Cursor query engine

Internal Modules:
- translator: Key range translation and index resolution
- cursor_engine: Paginated, filtered, mapped cursor scans
- config: Configuration constants
"""

from shelfdb.query.translator import PRIMARY_KEY, TranslatedQuery, translate, where
from shelfdb.query.cursor_engine import count, find, get, get_all

__all__ = [
    "PRIMARY_KEY",
    "TranslatedQuery",
    "translate",
    "where",
    "find",
    "get",
    "get_all",
    "count",
]
