"""
Transaction Store Interface

Abstract persistence contract used by the crawler, reaper, coordinator and
reparser. The UNIQUE (hash, account_id) constraint of each record category
is the source of truth for idempotence; exists_by_hash() is only an
optimization in front of it.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from ..types import CanonicalTransactionRecord, Chain, RecordCategory, TrackedAccount


class TransactionStore(ABC):
    """Persistence for tracked accounts and their canonical records."""

    # =========================================================================
    # Accounts
    # =========================================================================

    @abstractmethod
    def get_account(self, account_id: int) -> Optional[TrackedAccount]:
        pass

    @abstractmethod
    def account_exists(self, account_id: int) -> bool:
        pass

    @abstractmethod
    def list_accounts(self) -> List[TrackedAccount]:
        pass

    @abstractmethod
    def list_syncing_accounts(self) -> List[TrackedAccount]:
        pass

    @abstractmethod
    def get_chain(self, chain_id: int) -> Optional[Chain]:
        pass

    # =========================================================================
    # Sync State
    # =========================================================================

    @abstractmethod
    def set_syncing_if_not(self, account_id: int, now: float) -> bool:
        """
        Atomically flip is_syncing False -> True and stamp the heartbeat.

        Returns False when the account was already syncing (or is gone).
        """

    @abstractmethod
    def clear_syncing(self, account_id: int):
        pass

    @abstractmethod
    def update_heartbeat(self, account_id: int, now: float):
        pass

    @abstractmethod
    def find_stale_syncing(self, older_than: float) -> List[TrackedAccount]:
        """Syncing accounts whose heartbeat is missing or older than older_than."""

    # =========================================================================
    # Records
    # =========================================================================

    @abstractmethod
    def find_latest_height(self, category: RecordCategory, account_id: int) -> int:
        """Highest indexed height for the account, 0 when none."""

    @abstractmethod
    def exists_by_hash(self, category: RecordCategory, tx_hash: str, account_id: int) -> bool:
        pass

    @abstractmethod
    def insert(self, category: RecordCategory, record: CanonicalTransactionRecord) -> bool:
        """Insert unless (hash, account_id) exists. Returns True if a row was written."""

    @abstractmethod
    def list_records_with_raw(
        self,
        category: RecordCategory,
        account_id: int,
        limit: int = 1000
    ) -> List[CanonicalTransactionRecord]:
        pass

    @abstractmethod
    def update_normalized_fields(self, category: RecordCategory, record_id: int, fields: Dict):
        pass

    @abstractmethod
    def delete_records(self, category: RecordCategory, account_id: int) -> int:
        pass
