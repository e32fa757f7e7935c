"""
Notification Dispatch

Fire-and-forget hand-off of freshly indexed records to an outbound sink.
Delivery itself lives behind the sink callable; the crawl never waits on it
and never sees its errors.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Set

from .types import CanonicalTransactionRecord, TrackedAccount

WALLET_KIND = "wallet"
VALIDATOR_INCOMING_KIND = "validator-incoming"

NotificationSink = Callable[[TrackedAccount, CanonicalTransactionRecord, str], Awaitable[None]]


async def log_sink(account: TrackedAccount, record: CanonicalTransactionRecord, kind: str):
    """Default sink: write the notification to the log."""
    logging.getLogger("NotificationSink").info(
        f"[{kind}] {account.label}: {record.message_type} {record.amount} ({record.hash})"
    )


class NotificationDispatcher:
    """
    Schedules sink calls as background tasks.

    Usage:
        dispatcher = NotificationDispatcher(sink)
        dispatcher.dispatch(account, record, WALLET_KIND)
        ...
        await dispatcher.drain()
    """

    def __init__(self, sink: Optional[NotificationSink] = None):
        self._sink = sink or log_sink
        self._logger = logging.getLogger("NotificationDispatcher")
        self._tasks: Set[asyncio.Task] = set()

        # Stats
        self._dispatched = 0
        self._failed = 0

    def dispatch(self, account: TrackedAccount, record: CanonicalTransactionRecord, kind: str):
        """Schedule delivery without waiting for it. Needs a running event loop."""
        task = asyncio.get_running_loop().create_task(self._deliver(account, record, kind))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self._dispatched += 1

    async def _deliver(self, account: TrackedAccount, record: CanonicalTransactionRecord, kind: str):
        try:
            await self._sink(account, record, kind)
        except Exception as e:
            self._failed += 1
            self._logger.error(f"Notification failed for {record.hash} ({kind}): {e}")

    async def drain(self):
        """Wait for every pending delivery."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks))

    def get_stats(self) -> Dict:
        return {
            "dispatched": self._dispatched,
            "failed": self._failed,
            "pending": len(self._tasks),
        }
