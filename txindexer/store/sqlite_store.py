"""
SQLite Transaction Store

sqlite3-backed persistence for chains, tracked accounts and canonical
transaction records.

Schema:
    chains (id, name, rest_url, denom, decimals, price_usd)
    accounts (id, label, chain_id, address, validator_address,
              payout_address, is_syncing, last_heartbeat,
              notify_wallet_tx, notify_validator_tx, created_at)
    wallet_transactions (..., sender, recipient, direction,
                         UNIQUE(hash, account_id))
    validator_transactions (..., delegator, validator, dst_validator,
                            direction, role, UNIQUE(hash, account_id))

Every call opens its own connection; the WAL journal lets the periodic
sync and on-demand operations share the file.
"""

import logging
import sqlite3
import time
from typing import Dict, List, Optional

from ..types import (
    CanonicalTransactionRecord,
    Chain,
    Direction,
    RecordCategory,
    TrackedAccount,
    ValidatorRole,
)
from .base import TransactionStore

RECORD_TABLES = {
    RecordCategory.WALLET: "wallet_transactions",
    RecordCategory.VALIDATOR: "validator_transactions",
}

# Columns rewritten by reparse, per category
NORMALIZED_COLUMNS = {
    RecordCategory.WALLET: ("type", "amount", "sender", "recipient"),
    RecordCategory.VALIDATOR: ("type", "amount", "delegator", "validator", "dst_validator"),
}

ACCOUNT_COLUMNS = (
    "id, label, chain_id, address, validator_address, payout_address, "
    "is_syncing, last_heartbeat, notify_wallet_tx, notify_validator_tx"
)

RECORD_COLUMNS = (
    "id, hash, height, account_id, type, timestamp, amount, sender, recipient, "
    "delegator, validator, dst_validator, direction, role, raw_tx, price_at_tx"
)


class SQLiteTransactionStore(TransactionStore):
    """
    SQLite implementation of TransactionStore.

    Usage:
        store = SQLiteTransactionStore("txindexer.db")
        chain_id = store.add_chain("cosmoshub", "rest.cosmos.directory/cosmoshub", "uatom")
        account_id = store.add_account("main", chain_id, "cosmos1...")
    """

    def __init__(self, db_path: str = "txindexer.db"):
        self.db_path = db_path
        self._logger = logging.getLogger("SQLiteTransactionStore")
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30.0)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self):
        """Initialize database schema."""
        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA journal_mode=WAL")

        conn.execute("""
            CREATE TABLE IF NOT EXISTS chains (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE,
                rest_url TEXT NOT NULL,
                denom TEXT NOT NULL,
                decimals INTEGER DEFAULT 6,
                price_usd REAL DEFAULT 0
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS accounts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                label TEXT NOT NULL,
                chain_id INTEGER NOT NULL REFERENCES chains(id),
                address TEXT NOT NULL,
                validator_address TEXT,
                payout_address TEXT,
                is_syncing INTEGER DEFAULT 0,
                last_heartbeat REAL,
                notify_wallet_tx INTEGER DEFAULT 0,
                notify_validator_tx INTEGER DEFAULT 0,
                created_at REAL
            )
        """)

        for table in RECORD_TABLES.values():
            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    hash TEXT NOT NULL,
                    height INTEGER NOT NULL,
                    account_id INTEGER NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
                    type TEXT NOT NULL,
                    timestamp TEXT,
                    amount TEXT,
                    sender TEXT,
                    recipient TEXT,
                    delegator TEXT,
                    validator TEXT,
                    dst_validator TEXT,
                    direction TEXT,
                    role TEXT,
                    raw_tx TEXT,
                    price_at_tx REAL DEFAULT 0,
                    created_at REAL,
                    UNIQUE(hash, account_id)
                )
            """)
            conn.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{table}_height
                ON {table}(account_id, height DESC)
            """)

        conn.commit()
        conn.close()
        self._logger.info(f"Initialized transaction store: {self.db_path}")

    # =========================================================================
    # Chains
    # =========================================================================

    def add_chain(
        self,
        name: str,
        rest_url: str,
        denom: str,
        decimals: int = 6,
        price_usd: float = 0.0
    ) -> int:
        """Register a chain. Returns its id."""
        conn = self._connect()
        cursor = conn.execute("""
            INSERT INTO chains (name, rest_url, denom, decimals, price_usd)
            VALUES (?, ?, ?, ?, ?)
        """, (name, rest_url, denom, decimals, price_usd))
        chain_id = cursor.lastrowid
        conn.commit()
        conn.close()
        return chain_id

    def get_chain(self, chain_id: int) -> Optional[Chain]:
        conn = self._connect()
        row = conn.execute(
            "SELECT id, name, rest_url, denom, decimals, price_usd FROM chains WHERE id = ?",
            (chain_id,)
        ).fetchone()
        conn.close()

        if row is None:
            return None
        return Chain(
            id=row["id"],
            name=row["name"],
            rest_url=row["rest_url"],
            denom=row["denom"],
            decimals=row["decimals"],
            price_usd=row["price_usd"] or 0.0,
        )

    # =========================================================================
    # Accounts
    # =========================================================================

    def add_account(
        self,
        label: str,
        chain_id: int,
        address: str,
        validator_address: Optional[str] = None,
        payout_address: Optional[str] = None,
        notify_wallet_tx: bool = False,
        notify_validator_tx: bool = False
    ) -> int:
        """Register a tracked account. Returns its id."""
        conn = self._connect()
        cursor = conn.execute("""
            INSERT INTO accounts
            (label, chain_id, address, validator_address, payout_address,
             notify_wallet_tx, notify_validator_tx, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (label, chain_id, address, validator_address, payout_address,
              int(notify_wallet_tx), int(notify_validator_tx), time.time()))
        account_id = cursor.lastrowid
        conn.commit()
        conn.close()
        return account_id

    def delete_account(self, account_id: int):
        """Remove an account and its records."""
        conn = self._connect()
        for table in RECORD_TABLES.values():
            conn.execute(f"DELETE FROM {table} WHERE account_id = ?", (account_id,))
        conn.execute("DELETE FROM accounts WHERE id = ?", (account_id,))
        conn.commit()
        conn.close()

    def get_account(self, account_id: int) -> Optional[TrackedAccount]:
        conn = self._connect()
        row = conn.execute(
            f"SELECT {ACCOUNT_COLUMNS} FROM accounts WHERE id = ?",
            (account_id,)
        ).fetchone()
        conn.close()
        return self._row_to_account(row) if row else None

    def account_exists(self, account_id: int) -> bool:
        conn = self._connect()
        row = conn.execute("SELECT 1 FROM accounts WHERE id = ?", (account_id,)).fetchone()
        conn.close()
        return row is not None

    def list_accounts(self) -> List[TrackedAccount]:
        conn = self._connect()
        rows = conn.execute(f"SELECT {ACCOUNT_COLUMNS} FROM accounts ORDER BY id").fetchall()
        conn.close()
        return [self._row_to_account(row) for row in rows]

    def list_syncing_accounts(self) -> List[TrackedAccount]:
        conn = self._connect()
        rows = conn.execute(
            f"SELECT {ACCOUNT_COLUMNS} FROM accounts WHERE is_syncing = 1 ORDER BY id"
        ).fetchall()
        conn.close()
        return [self._row_to_account(row) for row in rows]

    def _row_to_account(self, row: sqlite3.Row) -> TrackedAccount:
        return TrackedAccount(
            id=row["id"],
            label=row["label"],
            chain_id=row["chain_id"],
            address=row["address"],
            validator_address=row["validator_address"],
            payout_address=row["payout_address"],
            is_syncing=bool(row["is_syncing"]),
            last_heartbeat=row["last_heartbeat"],
            notify_wallet_tx=bool(row["notify_wallet_tx"]),
            notify_validator_tx=bool(row["notify_validator_tx"]),
        )

    # =========================================================================
    # Sync State
    # =========================================================================

    def set_syncing_if_not(self, account_id: int, now: float) -> bool:
        conn = self._connect()
        cursor = conn.execute("""
            UPDATE accounts
            SET is_syncing = 1, last_heartbeat = ?
            WHERE id = ? AND is_syncing = 0
        """, (now, account_id))
        changed = cursor.rowcount
        conn.commit()
        conn.close()
        return changed > 0

    def clear_syncing(self, account_id: int):
        conn = self._connect()
        conn.execute("UPDATE accounts SET is_syncing = 0 WHERE id = ?", (account_id,))
        conn.commit()
        conn.close()

    def update_heartbeat(self, account_id: int, now: float):
        conn = self._connect()
        conn.execute("UPDATE accounts SET last_heartbeat = ? WHERE id = ?", (now, account_id))
        conn.commit()
        conn.close()

    def find_stale_syncing(self, older_than: float) -> List[TrackedAccount]:
        conn = self._connect()
        rows = conn.execute(f"""
            SELECT {ACCOUNT_COLUMNS} FROM accounts
            WHERE is_syncing = 1 AND (last_heartbeat IS NULL OR last_heartbeat < ?)
            ORDER BY id
        """, (older_than,)).fetchall()
        conn.close()
        return [self._row_to_account(row) for row in rows]

    # =========================================================================
    # Records
    # =========================================================================

    def find_latest_height(self, category: RecordCategory, account_id: int) -> int:
        table = RECORD_TABLES[category]
        conn = self._connect()
        row = conn.execute(
            f"SELECT MAX(height) FROM {table} WHERE account_id = ?",
            (account_id,)
        ).fetchone()
        conn.close()
        return row[0] or 0

    def exists_by_hash(self, category: RecordCategory, tx_hash: str, account_id: int) -> bool:
        table = RECORD_TABLES[category]
        conn = self._connect()
        row = conn.execute(
            f"SELECT 1 FROM {table} WHERE hash = ? AND account_id = ?",
            (tx_hash, account_id)
        ).fetchone()
        conn.close()
        return row is not None

    def insert(self, category: RecordCategory, record: CanonicalTransactionRecord) -> bool:
        table = RECORD_TABLES[category]
        conn = self._connect()
        cursor = conn.execute(f"""
            INSERT OR IGNORE INTO {table}
            (hash, height, account_id, type, timestamp, amount, sender, recipient,
             delegator, validator, dst_validator, direction, role, raw_tx,
             price_at_tx, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            record.hash, record.height, record.account_id, record.message_type,
            record.timestamp, record.amount, record.sender, record.recipient,
            record.delegator, record.validator, record.dst_validator,
            record.direction.value if record.direction else None,
            record.role.value if record.role else None,
            record.raw_envelope, record.price_at_tx, time.time()
        ))
        inserted = cursor.rowcount > 0
        conn.commit()
        conn.close()
        return inserted

    def list_records(
        self,
        category: RecordCategory,
        account_id: int,
        limit: int = 100
    ) -> List[CanonicalTransactionRecord]:
        """Newest records first."""
        table = RECORD_TABLES[category]
        conn = self._connect()
        rows = conn.execute(f"""
            SELECT {RECORD_COLUMNS} FROM {table}
            WHERE account_id = ?
            ORDER BY height DESC
            LIMIT ?
        """, (account_id, limit)).fetchall()
        conn.close()
        return [self._row_to_record(category, row) for row in rows]

    def list_records_with_raw(
        self,
        category: RecordCategory,
        account_id: int,
        limit: int = 1000
    ) -> List[CanonicalTransactionRecord]:
        table = RECORD_TABLES[category]
        conn = self._connect()
        rows = conn.execute(f"""
            SELECT {RECORD_COLUMNS} FROM {table}
            WHERE account_id = ? AND raw_tx IS NOT NULL
            ORDER BY height DESC
            LIMIT ?
        """, (account_id, limit)).fetchall()
        conn.close()
        return [self._row_to_record(category, row) for row in rows]

    def update_normalized_fields(self, category: RecordCategory, record_id: int, fields: Dict):
        """Rewrite normalized columns; keys outside the category's set are ignored."""
        allowed = NORMALIZED_COLUMNS[category]
        updates = {k: v for k, v in fields.items() if k in allowed}
        if not updates:
            return

        table = RECORD_TABLES[category]
        assignments = ", ".join(f"{column} = ?" for column in updates)
        conn = self._connect()
        conn.execute(
            f"UPDATE {table} SET {assignments} WHERE id = ?",
            (*updates.values(), record_id)
        )
        conn.commit()
        conn.close()

    def delete_records(self, category: RecordCategory, account_id: int) -> int:
        table = RECORD_TABLES[category]
        conn = self._connect()
        cursor = conn.execute(f"DELETE FROM {table} WHERE account_id = ?", (account_id,))
        deleted = cursor.rowcount
        conn.commit()
        conn.close()
        return deleted

    def _row_to_record(self, category: RecordCategory, row: sqlite3.Row) -> CanonicalTransactionRecord:
        return CanonicalTransactionRecord(
            id=row["id"],
            hash=row["hash"],
            height=row["height"],
            account_id=row["account_id"],
            category=category,
            message_type=row["type"],
            timestamp=row["timestamp"],
            amount=row["amount"],
            sender=row["sender"],
            recipient=row["recipient"],
            delegator=row["delegator"],
            validator=row["validator"],
            dst_validator=row["dst_validator"],
            direction=Direction(row["direction"]) if row["direction"] else None,
            role=ValidatorRole(row["role"]) if row["role"] else None,
            raw_envelope=row["raw_tx"],
            price_at_tx=row["price_at_tx"] or 0.0,
        )

    # =========================================================================
    # Stats
    # =========================================================================

    def get_stats(self) -> Dict:
        """Get store statistics."""
        conn = self._connect()
        stats = {
            "chains": conn.execute("SELECT COUNT(*) FROM chains").fetchone()[0],
            "accounts": conn.execute("SELECT COUNT(*) FROM accounts").fetchone()[0],
            "syncing_accounts": conn.execute(
                "SELECT COUNT(*) FROM accounts WHERE is_syncing = 1"
            ).fetchone()[0],
        }
        for category, table in RECORD_TABLES.items():
            stats[f"{category.value}_records"] = conn.execute(
                f"SELECT COUNT(*) FROM {table}"
            ).fetchone()[0]
        conn.close()
        return stats
