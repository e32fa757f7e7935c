"""
Stuck Sync Reaper

Recovers accounts whose crawl died without cleanup (process crash, killed
task). A syncing account whose heartbeat is older than the threshold gets
its flag cleared and its per-account lock force-released.
"""

import logging
import time
from typing import Callable, List, Optional

from ..config import ReaperConfig
from ..locks import LockService, account_lock_key, lock_service
from ..store.base import TransactionStore


class StuckSyncReaper:
    """
    Usage:
        reaper = StuckSyncReaper(store)
        reset_ids = await reaper.reap()
    """

    def __init__(
        self,
        store: TransactionStore,
        config: Optional[ReaperConfig] = None,
        locks: Optional[LockService] = None,
        clock: Callable[[], float] = time.time
    ):
        self.config = config or ReaperConfig()
        self._store = store
        self._locks = locks or lock_service
        self._clock = clock
        self._logger = logging.getLogger("StuckSyncReaper")
        self._total_reset = 0

    async def reap(self) -> List[int]:
        """Reset every stuck account. Returns the ids that were reset."""
        now = self._clock()
        reset = []

        for account in self._store.find_stale_syncing(now - self.config.stuck_threshold):
            if account.last_heartbeat is None:
                age = float("inf")
            else:
                age = now - account.last_heartbeat

            self._logger.warning(
                f"Resetting stuck sync for {account.label} "
                f"(no heartbeat for {age / 60:.1f} min)"
            )
            self._store.clear_syncing(account.id)
            self._locks.release(account_lock_key(account.id))
            reset.append(account.id)

        for account in self._store.list_syncing_accounts():
            if account.id not in reset and account.last_heartbeat is not None:
                self._logger.debug(
                    f"{account.label} is actively syncing "
                    f"(heartbeat {now - account.last_heartbeat:.0f}s ago)"
                )

        self._total_reset += len(reset)
        return reset

    def get_stats(self):
        return {"total_reset": self._total_reset}
