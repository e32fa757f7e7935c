"""
Persistence Layer

Components:
- TransactionStore: abstract store contract
- SQLiteTransactionStore: sqlite3 implementation
"""

from .base import TransactionStore
from .sqlite_store import SQLiteTransactionStore

__all__ = [
    "TransactionStore",
    "SQLiteTransactionStore",
]
