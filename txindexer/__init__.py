"""
Cosmos Transaction Indexer

Incrementally discovers ledger transactions relevant to tracked accounts,
normalizes their messages into canonical records and persists them
idempotently.

Packages:
- txindexer.indexer: Query client, message interpreter, crawler, reaper, coordinator
- txindexer.store: Abstract store contract and SQLite implementation
"""

__version__ = "0.1.0"
