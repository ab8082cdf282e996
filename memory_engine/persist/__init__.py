"""
Persistence layer for feedback bookkeeping.

Provides:
- SQLite-backed relational store for effectiveness and usage feedback
"""

from .sqlite_store import SQLiteStore

__all__ = ["SQLiteStore"]
