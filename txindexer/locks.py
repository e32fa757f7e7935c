"""
Resource Lock Service

Named, TTL-bounded, in-process mutual exclusion for asyncio tasks.

Every entry owns a scheduled auto-release handle, so a forgotten release
never blocks a key forever. Lock operations never raise: False (or a
timeout) is the only failure signal and callers treat it as "skipped".

Usage:
    locks = LockService()
    if await locks.acquire_with_retry("sync:account:1", "crawl_account"):
        try:
            ...
        finally:
            locks.release("sync:account:1")
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional

from .config import LockConfig


@dataclass
class LockEntry:
    """A live lock held on one key."""
    key: str
    acquired_at: float
    owner_label: str
    ttl: float
    handle: Optional[asyncio.TimerHandle] = None

    @property
    def held_for(self) -> float:
        return time.time() - self.acquired_at


class LockService:
    """
    Lock table keyed by resource name.

    All mutations happen on the event loop thread, so plain dict operations
    are atomic with respect to other tasks.
    """

    def __init__(self, config: Optional[LockConfig] = None):
        self.config = config or LockConfig()
        self._logger = logging.getLogger("LockService")
        self._locks: Dict[str, LockEntry] = {}

    def acquire(
        self,
        key: str,
        ttl: Optional[float] = None,
        label: str = "unknown"
    ) -> bool:
        """
        Try to take key without blocking.

        Must be called from a running event loop; the TTL release is
        scheduled on it.
        """
        existing = self._locks.get(key)
        if existing is not None:
            self._logger.warning(
                f"{key} is busy ({label}). Held by: {existing.owner_label} "
                f"for {existing.held_for:.0f}s"
            )
            return False

        ttl = self.config.default_ttl if ttl is None else ttl
        entry = LockEntry(key=key, acquired_at=time.time(), owner_label=label, ttl=ttl)
        loop = asyncio.get_running_loop()
        entry.handle = loop.call_later(ttl, self._expire, key, entry)
        self._locks[key] = entry

        self._logger.debug(f"Acquired: {key} ({label})")
        return True

    def _expire(self, key: str, entry: LockEntry):
        """TTL callback: force-release if the same entry is still held."""
        if self._locks.get(key) is entry:
            self._logger.error(
                f"Force-releasing {key} after {entry.ttl:.0f}s timeout. "
                f"Operation: {entry.owner_label}"
            )
            self.release(key)

    def release(self, key: str):
        """Release key and cancel its auto-release. No-op if not held."""
        entry = self._locks.pop(key, None)
        if entry is None:
            return
        if entry.handle is not None:
            entry.handle.cancel()
        self._logger.debug(f"Released: {key}")

    def is_locked(self, key: str) -> bool:
        return key in self._locks

    def get_lock_info(self, key: str) -> Optional[LockEntry]:
        """Lock entry for debugging, or None."""
        return self._locks.get(key)

    def held_keys(self):
        return list(self._locks.keys())

    async def wait_for_release(self, key: str, max_wait: float = 30.0) -> bool:
        """
        Suspend until key is free.

        Returns False if still held after max_wait seconds.
        """
        start = time.monotonic()

        while self.is_locked(key):
            if time.monotonic() - start > max_wait:
                self._logger.warning(f"Timeout waiting for {key} release")
                return False
            await asyncio.sleep(self.config.poll_interval)

        return True

    async def acquire_with_retry(
        self,
        key: str,
        label: str,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        ttl: Optional[float] = None
    ) -> bool:
        """acquire() with a fixed number of delayed retries."""
        for attempt in range(max_retries):
            if self.acquire(key, ttl, label):
                return True

            if attempt < max_retries - 1:
                self._logger.info(f"Retry {attempt + 1}/{max_retries} for {key}")
                await asyncio.sleep(retry_delay)

        return False


def account_lock_key(account_id: int) -> str:
    """Lock key guarding one account's crawl."""
    return f"sync:account:{account_id}"


# Process-wide lock table
lock_service = LockService()
