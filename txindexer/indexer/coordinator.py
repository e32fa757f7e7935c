"""
Global Sync Coordinator

Fleet-wide sync of every tracked account:
- Global lock: one sync pass at a time
- Stuck-sync reaper before each pass
- Balance refresh (injected, retried with backoff), then crawl, per account
- Periodic loop with an initial delay
- Resync: wipe an account's records and crawl it from scratch
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Optional

from ..config import CoordinatorConfig
from ..locks import LockService, account_lock_key, lock_service
from ..store.base import TransactionStore
from ..types import RecordCategory, TrackedAccount
from ..utils import retry_with_backoff
from .crawler import CrawlOrchestrator
from .reaper import StuckSyncReaper

GLOBAL_SYNC_KEY = "global:sync"

BalanceRefresher = Callable[[TrackedAccount], Awaitable[None]]


def resync_lock_key(account_id: int) -> str:
    return f"resync:account:{account_id}"


class GlobalSyncCoordinator:
    """
    Orchestrates periodic crawling of all accounts.

    Usage:
        coordinator = GlobalSyncCoordinator(store, crawler, reaper)
        await coordinator.start()
        # ... runs until ...
        await coordinator.stop()
    """

    def __init__(
        self,
        store: TransactionStore,
        crawler: CrawlOrchestrator,
        reaper: StuckSyncReaper,
        config: Optional[CoordinatorConfig] = None,
        locks: Optional[LockService] = None,
        balance_refresher: Optional[BalanceRefresher] = None
    ):
        self.config = config or CoordinatorConfig()
        self._store = store
        self._crawler = crawler
        self._reaper = reaper
        self._locks = locks or lock_service
        self._balance_refresher = balance_refresher
        self._logger = logging.getLogger("GlobalSyncCoordinator")

        # State
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._stats = {
            "passes_completed": 0,
            "passes_skipped": 0,
            "accounts_crawled": 0,
            "account_failures": 0,
            "balance_failures": 0,
            "resyncs": 0,
            "last_pass_at": 0.0,
        }

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self):
        """Start the periodic sync loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._sync_loop())
        self._logger.info(
            f"Periodic sync started (every {self.config.sync_interval:.0f}s, "
            f"first pass in {self.config.initial_delay:.0f}s)"
        )

    async def stop(self):
        """Stop the loop and wait for the current pass to unwind."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._logger.info("Periodic sync stopped")

    async def _sync_loop(self):
        await asyncio.sleep(self.config.initial_delay)

        while self._running:
            try:
                await self.sync_all()
            except Exception as e:
                self._logger.error(f"Sync pass error: {e}")
            await asyncio.sleep(self.config.sync_interval)

    # =========================================================================
    # Sync Pass
    # =========================================================================

    async def sync_all(self) -> bool:
        """
        One pass over every account.

        Returns False if another pass held the global lock.
        """
        if not self._locks.acquire(GLOBAL_SYNC_KEY, self.config.global_lock_ttl, "sync_all"):
            self._logger.info("Global sync already running, skipping")
            self._stats["passes_skipped"] += 1
            return False

        try:
            await self._reaper.reap()

            accounts = self._store.list_accounts()
            self._logger.info(f"Starting sync pass for {len(accounts)} accounts")

            for account in accounts:
                if account.is_syncing:
                    self._logger.info(f"Skipping {account.label}, sync in progress")
                    continue

                try:
                    await self._refresh_balance(account)
                    await self._crawler.crawl_account(account.id)
                    self._stats["accounts_crawled"] += 1
                except Exception as e:
                    self._stats["account_failures"] += 1
                    self._logger.error(f"Sync failed for {account.label}: {e}")

            self._stats["passes_completed"] += 1
            self._stats["last_pass_at"] = time.time()
            return True
        finally:
            self._locks.release(GLOBAL_SYNC_KEY)

    async def _refresh_balance(self, account: TrackedAccount):
        if self._balance_refresher is None:
            return
        try:
            await retry_with_backoff(
                lambda: self._balance_refresher(account),
                max_retries=self.config.balance_retries,
                base_delay=self.config.balance_retry_delay
            )
        except Exception as e:
            # Stale balance never blocks the crawl
            self._stats["balance_failures"] += 1
            self._logger.warning(f"Balance refresh failed for {account.label}: {e}")

    # =========================================================================
    # Resync
    # =========================================================================

    async def resync_account(self, account_id: int) -> bool:
        """
        Delete an account's records and crawl it again from height 0.

        Returns False if another resync is running, the account is gone,
        or a running crawl did not finish within resync_wait.
        """
        key = resync_lock_key(account_id)
        if not self._locks.acquire(key, label="resync_account"):
            self._logger.warning(f"Resync already running for account {account_id}")
            return False

        try:
            account = self._store.get_account(account_id)
            if account is None:
                self._logger.warning(f"Account {account_id} not found, resync aborted")
                return False

            if account.is_syncing:
                self._logger.info(f"{account.label} is syncing, waiting for it to finish")
                released = await self._locks.wait_for_release(
                    account_lock_key(account_id), self.config.resync_wait
                )
                if not released:
                    self._logger.warning(f"{account.label} still syncing, resync aborted")
                    return False

            wallet_deleted = self._store.delete_records(RecordCategory.WALLET, account_id)
            validator_deleted = self._store.delete_records(RecordCategory.VALIDATOR, account_id)
            self._store.clear_syncing(account_id)
            self._logger.info(
                f"Cleared {wallet_deleted} wallet and {validator_deleted} validator "
                f"records for {account.label}"
            )
        finally:
            self._locks.release(key)

        self._stats["resyncs"] += 1
        await self._crawler.crawl_account(account_id)
        return True

    def get_stats(self) -> Dict:
        """Get coordinator statistics."""
        return {
            "running": self._running,
            "global_sync_active": self._locks.is_locked(GLOBAL_SYNC_KEY),
            **self._stats,
            "crawler": self._crawler.get_stats(),
            "reaper": self._reaper.get_stats(),
        }
