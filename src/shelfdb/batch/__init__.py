"""
Batch Package

Public API:
- BatchExecutor: All-or-nothing insert/update/upsert/remove on one collection
"""

from shelfdb.batch.executor import BatchExecutor

__all__ = ["BatchExecutor"]
