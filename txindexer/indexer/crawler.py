"""
Crawl Orchestrator

Incremental, resumable crawl of one tracked account.

Flow:
1. Per-account lock (3 attempts, 2s apart)
2. Re-load account, atomically flip its syncing flag
3. Resume from the highest indexed height across both record categories
4. For each query filter: page through results, interpret each envelope,
   aggregate into wallet/validator records, insert idempotently
5. Heartbeat after each filter
6. Always clear the syncing flag and release the lock

Error budget per filter:
- 502/503/504: wait 10s, give up after 3 consecutive
- 429: wait 5s, never counted
- 400/500/501: give up immediately (the client already tried both dialects)
- anything else: wait 2s, give up after 5 consecutive
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional

import aiohttp

from ..config import CrawlConfig
from ..locks import LockService, account_lock_key, lock_service
from ..notifications import VALIDATOR_INCOMING_KIND, WALLET_KIND, NotificationDispatcher
from ..store.base import TransactionStore
from ..types import CanonicalTransactionRecord, CrawlResult, RecordCategory, TrackedAccount, ValidatorRole
from .aggregation import build_records
from .coins import parse_coins
from .message_interpreter import MessageInterpreter
from .query_client import IndexerQueryClient


def build_filters(account: TrackedAccount) -> List[str]:
    """Event filters covering every way a transaction can concern the account."""
    filters = [
        f"message.sender='{account.address}'",
        f"transfer.recipient='{account.address}'",
    ]

    if account.distinct_payout_address:
        filters.append(f"transfer.recipient='{account.distinct_payout_address}'")

    if account.validator_address:
        validator = account.validator_address
        filters.extend([
            f"delegate.validator='{validator}'",
            f"redelegate.destination_validator='{validator}'",
            f"unbond.validator='{validator}'",
            f"redelegate.source_validator='{validator}'",
        ])

    return filters


def should_notify_wallet(account: TrackedAccount, record: CanonicalTransactionRecord) -> bool:
    """Opted in, and the record moved coins or is a send/withdraw."""
    if not account.notify_wallet_tx:
        return False
    moved_coins = any(quantity > 0 for quantity, _ in parse_coins(record.amount))
    return moved_coins or "Send" in record.message_type or "Withdraw" in record.message_type


def should_notify_validator(account: TrackedAccount, record: CanonicalTransactionRecord) -> bool:
    """Opted in, and the validator activity came from someone else."""
    return account.notify_validator_tx and record.role == ValidatorRole.INCOMING


class CrawlOrchestrator:
    """
    Crawls one account at a time per key; different accounts may run
    concurrently.

    Usage:
        crawler = CrawlOrchestrator(store, client)
        result = await crawler.crawl_account(account_id)
    """

    def __init__(
        self,
        store: TransactionStore,
        client: IndexerQueryClient,
        config: Optional[CrawlConfig] = None,
        locks: Optional[LockService] = None,
        interpreter: Optional[MessageInterpreter] = None,
        dispatcher: Optional[NotificationDispatcher] = None
    ):
        self.config = config or CrawlConfig()
        self._store = store
        self._client = client
        self._locks = locks or lock_service
        self._interpreter = interpreter or MessageInterpreter()
        self._dispatcher = dispatcher or NotificationDispatcher()
        self._logger = logging.getLogger("CrawlOrchestrator")

        # Stats
        self._stats = {
            "crawls_started": 0,
            "crawls_skipped": 0,
            "records_created": 0,
            "pages_fetched": 0,
            "filters_aborted": 0,
        }

    async def crawl_account(self, account_id: int) -> CrawlResult:
        """Run one crawl. Never raises; the outcome is in the returned CrawlResult."""
        result = CrawlResult(account_id=account_id)
        lock_key = account_lock_key(account_id)

        acquired = await self._locks.acquire_with_retry(
            lock_key,
            "crawl_account",
            max_retries=self.config.lock_retries,
            retry_delay=self.config.lock_retry_delay,
            ttl=self.config.lock_ttl
        )
        if not acquired:
            self._logger.warning(f"Could not acquire lock for account {account_id}")
            return self._skip(result, "locked")

        try:
            account = self._store.get_account(account_id)
            if account is None:
                self._logger.warning(f"Account {account_id} not found, aborting crawl")
                return self._skip(result, "not_found")

            if not self._store.set_syncing_if_not(account_id, time.time()):
                self._logger.info(f"Account {account.label} already syncing")
                return self._skip(result, "already_syncing")

            result.started = True
            self._stats["crawls_started"] += 1
            await self._crawl(account, result)

        except Exception as e:
            self._logger.error(f"Crawl failed for account {account_id}: {e}", exc_info=True)
        finally:
            # Holding the account lock means no other crawl owns the flag
            try:
                self._store.clear_syncing(account_id)
            except Exception as e:
                self._logger.error(f"Failed to reset syncing flag for account {account_id}: {e}")
            self._locks.release(lock_key)
            self._logger.info(
                f"Crawl finished for account {account_id}: {result.records_created} new records"
            )

        return result

    def _skip(self, result: CrawlResult, reason: str) -> CrawlResult:
        result.skipped_reason = reason
        self._stats["crawls_skipped"] += 1
        return result

    # =========================================================================
    # Filter Loop
    # =========================================================================

    async def _crawl(self, account: TrackedAccount, result: CrawlResult):
        start_height = max(
            self._store.find_latest_height(RecordCategory.WALLET, account.id),
            self._store.find_latest_height(RecordCategory.VALIDATOR, account.id),
        )
        chain = self._store.get_chain(account.chain_id)
        if chain is None:
            self._logger.error(f"Chain {account.chain_id} of account {account.label} not found")
            return

        self._logger.info(f"Starting crawl for {account.label} from height {start_height}")

        for filter_expression in build_filters(account):
            if not self._store.account_exists(account.id):
                self._logger.warning(f"Account {account.id} deleted during crawl, aborting")
                return

            self._logger.info(f"Query: {filter_expression}")
            completed = await self._crawl_filter(
                account, chain.rest_url, chain.price_usd, filter_expression, start_height, result
            )
            if completed:
                result.filters_completed.append(filter_expression)
            else:
                result.filters_aborted.append(filter_expression)
                self._stats["filters_aborted"] += 1

            try:
                self._store.update_heartbeat(account.id, time.time())
            except Exception as e:
                self._logger.warning(f"Heartbeat update failed for account {account.id}: {e}")

    async def _crawl_filter(
        self,
        account: TrackedAccount,
        rest_url: str,
        price_usd: float,
        filter_expression: str,
        start_height: int,
        result: CrawlResult
    ) -> bool:
        """Page through one filter. Returns False if the filter was abandoned."""
        cursor = start_height
        page = 1
        unavailable_errors = 0
        generic_errors = 0

        while True:
            try:
                envelopes, _ = await self._client.fetch_page(rest_url, filter_expression, cursor, page)
            except aiohttp.ClientResponseError as e:
                if e.status in self.config.unavailable_statuses:
                    unavailable_errors += 1
                    self._logger.warning(
                        f"Node unavailable ({e.status}), error #{unavailable_errors}, "
                        f"waiting {self.config.unavailable_delay:.0f}s"
                    )
                    await asyncio.sleep(self.config.unavailable_delay)
                    if unavailable_errors >= self.config.max_unavailable_errors:
                        self._logger.error(f"Node unreachable, skipping query: {filter_expression}")
                        return False
                    continue

                if e.status == self.config.rate_limit_status:
                    self._logger.warning(f"Rate limited, waiting {self.config.rate_limit_delay:.0f}s")
                    await asyncio.sleep(self.config.rate_limit_delay)
                    continue

                if e.status in self.config.incompatible_statuses:
                    self._logger.error(f"Query failed with {e.status}, skipping: {filter_expression}")
                    return False

                generic_errors += 1
                if not await self._generic_error(e, generic_errors, filter_expression):
                    return False
                continue
            except Exception as e:
                generic_errors += 1
                if not await self._generic_error(e, generic_errors, filter_expression):
                    return False
                continue

            unavailable_errors = 0
            result.pages_fetched += 1
            self._stats["pages_fetched"] += 1

            if not envelopes:
                return True

            # Store failures retry the same page; inserts already made are skipped by hash
            try:
                created = self._process_page(account, envelopes, price_usd, result)
            except Exception as e:
                generic_errors += 1
                if not await self._generic_error(e, generic_errors, filter_expression):
                    return False
                continue

            generic_errors = 0

            last_height = _height_of(envelopes[-1], cursor)
            self._logger.info(
                f"Block {last_height} | Page {page} | Found {len(envelopes)} txs, Saved {created} new"
            )

            if last_height > cursor:
                cursor = last_height
                page = 1
            else:
                page += 1
                self._logger.debug(f"Stuck at block {last_height}, next page")

            if len(envelopes) < self.config.page_size:
                return True

            await asyncio.sleep(self.config.page_delay)

    async def _generic_error(self, error: Exception, count: int, filter_expression: str) -> bool:
        """Log and back off. Returns False once the budget is spent."""
        self._logger.error(f"Query error #{count} for {filter_expression}: {error}")
        if count >= self.config.max_generic_errors:
            self._logger.error(f"Too many consecutive errors ({count}), aborting query")
            return False
        await asyncio.sleep(self.config.generic_error_delay)
        return True

    # =========================================================================
    # Record Creation
    # =========================================================================

    def _process_page(
        self,
        account: TrackedAccount,
        envelopes: List[Dict],
        price_usd: float,
        result: CrawlResult
    ) -> int:
        """Insert the page's new records. result is credited per insert, so a partial page still counts."""
        created = 0
        for envelope in envelopes:
            if not envelope.get("txhash") or not envelope.get("height"):
                continue

            interpreted = self._interpreter.interpret(envelope)
            for category, record in build_records(account, envelope, interpreted, price_usd):
                if self._store.exists_by_hash(category, record.hash, account.id):
                    continue
                if not self._store.insert(category, record):
                    continue
                created += 1
                result.records_created += 1
                self._stats["records_created"] += 1
                self._notify(account, category, record)
        return created

    def _notify(self, account: TrackedAccount, category: RecordCategory, record: CanonicalTransactionRecord):
        if category == RecordCategory.WALLET and should_notify_wallet(account, record):
            self._dispatcher.dispatch(account, record, WALLET_KIND)
        elif category == RecordCategory.VALIDATOR and should_notify_validator(account, record):
            self._dispatcher.dispatch(account, record, VALIDATOR_INCOMING_KIND)

    def get_stats(self) -> Dict:
        return dict(self._stats)


def _height_of(envelope: Dict, default: int) -> int:
    try:
        return int(envelope.get("height"))
    except (TypeError, ValueError):
        return default
