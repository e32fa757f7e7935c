"""
Reparser

Recomputes the normalized fields of stored records from their retained raw
envelope, after interpretation rules change. Never touches the network.
"""

import json
import logging
from typing import Dict, Optional

from ..locks import LockService, lock_service
from ..store.base import TransactionStore
from ..types import CanonicalTransactionRecord, RecordCategory, TrackedAccount
from .aggregation import build_records
from .message_interpreter import MessageInterpreter

REPARSE_ALL_KEY = "global:reparse-all"
REPARSE_ALL_TTL = 3600.0
REPARSE_BATCH_LIMIT = 1000


def reparse_lock_key(account_id: int) -> str:
    return f"reparse:account:{account_id}"


class Reparser:
    """
    Usage:
        reparser = Reparser(store)
        updated = await reparser.reparse_account(account_id)
    """

    def __init__(
        self,
        store: TransactionStore,
        locks: Optional[LockService] = None,
        interpreter: Optional[MessageInterpreter] = None
    ):
        self._store = store
        self._locks = locks or lock_service
        self._interpreter = interpreter or MessageInterpreter()
        self._logger = logging.getLogger("Reparser")
        self._updated = 0
        self._failed = 0

    def reparse_record(
        self,
        category: RecordCategory,
        record: CanonicalTransactionRecord,
        account: Optional[TrackedAccount] = None
    ) -> Optional[Dict]:
        """
        Normalized columns recomputed from the record's raw envelope.

        With an account, the same per-account aggregation as the crawl is
        applied; without one (or when no message qualifies any more) the
        transaction-level interpretation is used. None if the raw envelope
        is missing or not valid JSON.
        """
        if not record.raw_envelope:
            return None
        try:
            envelope = json.loads(record.raw_envelope)
        except ValueError:
            return None

        interpreted = self._interpreter.interpret(envelope)
        source = interpreted
        if account is not None:
            for built_category, built in build_records(account, envelope, interpreted, record.price_at_tx):
                if built_category == category:
                    source = built
                    break

        if category == RecordCategory.WALLET:
            return {
                "type": source.message_type,
                "amount": source.amount,
                "sender": source.sender,
                "recipient": source.recipient,
            }
        return {
            "type": source.message_type,
            "amount": source.amount,
            "delegator": source.delegator,
            "validator": source.validator,
            "dst_validator": source.dst_validator,
        }

    async def reparse_account(self, account_id: int) -> int:
        """Reparse up to 1000 records per category. Returns the number updated."""
        key = reparse_lock_key(account_id)
        if not self._locks.acquire(key, label="reparse_account"):
            self._logger.warning(f"Reparse already in progress for account {account_id}")
            return 0

        updated = 0
        try:
            account = self._store.get_account(account_id)
            if account is None:
                self._logger.warning(f"Account {account_id} not found, reparse aborted")
                return 0

            for category in (RecordCategory.WALLET, RecordCategory.VALIDATOR):
                records = self._store.list_records_with_raw(category, account_id, REPARSE_BATCH_LIMIT)
                for record in records:
                    if not self._store.account_exists(account_id):
                        self._logger.warning(f"Account {account_id} deleted, aborting reparse")
                        return updated

                    fields = self.reparse_record(category, record, account)
                    if fields is None:
                        self._failed += 1
                        continue
                    self._store.update_normalized_fields(category, record.id, fields)
                    updated += 1

            self._logger.info(f"Reparse complete for {account.label}: {updated} records")
        except Exception as e:
            self._logger.error(f"Reparse failed for account {account_id}: {e}")
        finally:
            self._updated += updated
            self._locks.release(key)

        return updated

    async def reparse_all(self) -> int:
        """Reparse every account under a global lock. Returns -1 if already running."""
        if not self._locks.acquire(REPARSE_ALL_KEY, REPARSE_ALL_TTL, "reparse_all"):
            self._logger.warning("Bulk reparse already in progress")
            return -1

        total = 0
        try:
            accounts = self._store.list_accounts()
            self._logger.info(f"Bulk reparse started for {len(accounts)} accounts")
            for account in accounts:
                total += await self.reparse_account(account.id)
            self._logger.info(f"Bulk reparse complete: {total} records")
        finally:
            self._locks.release(REPARSE_ALL_KEY)

        return total

    def get_stats(self) -> Dict:
        return {"updated": self._updated, "failed": self._failed}
