"""
Integration tests for the indexing pipeline.

Tests end-to-end flow from a scripted ledger through the coordinator,
crawler, interpreter and aggregation into the SQLite store, then reparse
and resync over the stored raw envelopes.
"""

import os
import tempfile
import time

import pytest

from txindexer.config import CoordinatorConfig, CrawlConfig
from txindexer.indexer import CrawlOrchestrator, GlobalSyncCoordinator, Reparser, StuckSyncReaper
from txindexer.locks import LockService
from txindexer.mock_data import (
    FEE_COLLECTOR,
    MockIndexerClient,
    event,
    fee_event,
    make_envelope,
    message_event,
    msg_delegate,
    msg_exec,
    msg_recv_packet,
    msg_send,
    msg_update_client,
    msg_vote,
    msg_withdraw_commission,
    msg_withdraw_reward,
    transfer_event,
    withdraw_commission_event,
    withdraw_rewards_event,
)
from txindexer.store import SQLiteTransactionStore
from txindexer.types import Direction, RecordCategory, ValidatorRole

ALICE = "cosmos1alice"
BOB = "cosmos1bob"
VAL = "cosmosvaloper1alice"
DISTRIBUTION = "cosmos1jv65s3grqf6v6jl3dp4t6c9t9rk99cd88lyufl"
CRAWL_CONFIG = CrawlConfig(
    lock_retries=1, lock_retry_delay=0.0, page_delay=0.0,
    unavailable_delay=0.0, rate_limit_delay=0.0, generic_error_delay=0.0,
)


def scripted_ledger():
    """A validator operator's history across the interesting transaction shapes."""
    client = MockIndexerClient()
    client.add(
        make_envelope("SEND", 100, [msg_send(ALICE, BOB, 1_000)], [
            fee_event(ALICE),
            message_event(ALICE),
            transfer_event(ALICE, BOB, "1000uatom"),
        ]),
        make_envelope("INCOMING", 101, [msg_delegate(BOB, VAL, 5_000)], [
            fee_event(BOB),
            message_event(BOB),
            event("delegate", validator=VAL, amount="5000uatom"),
        ]),
        make_envelope("CLAIM", 102, [msg_withdraw_reward(ALICE, VAL), msg_withdraw_commission(VAL)], [
            fee_event(ALICE),
            message_event(ALICE),
            withdraw_rewards_event("100uatom", VAL, ALICE),
            withdraw_commission_event("50uatom"),
            transfer_event(DISTRIBUTION, ALICE, "150uatom"),
        ], legacy_logs=True),
        make_envelope("VOTE", 103, [msg_vote(ALICE, "42", 1)], [message_event(ALICE)]),
        make_envelope("IBC", 104, [
            msg_update_client("cosmos1relayer"),
            msg_recv_packet("cosmos1relayer", "osmo1sender", ALICE, 2_500, "uosmo"),
        ], [
            message_event("cosmos1relayer"),
            transfer_event("cosmos1escrow", ALICE, "2500ibc/OSMO"),
        ]),
        make_envelope("RESTAKE", 105, [
            msg_exec("cosmos1restake", [msg_delegate(ALICE, VAL, 10), msg_delegate(ALICE, VAL, 20)])
        ], [
            message_event("cosmos1restake"),
            event("delegate", validator=VAL, amount="10uatom"),
        ]),
    )
    return client


class TestCrawlPipeline:
    """Test end-to-end indexing flow."""

    @pytest.fixture
    def store(self):
        fd, path = tempfile.mkstemp(suffix='.db')
        os.close(fd)
        store = SQLiteTransactionStore(path)
        yield store
        for suffix in ("", "-wal", "-shm"):
            if os.path.exists(path + suffix):
                os.unlink(path + suffix)

    @pytest.fixture
    def account_id(self, store):
        chain_id = store.add_chain("cosmoshub", "http://node.local", "uatom", price_usd=8.0)
        return store.add_account("operator", chain_id, ALICE, validator_address=VAL)

    def build(self, store, client):
        locks = LockService()
        crawler = CrawlOrchestrator(store, client, CRAWL_CONFIG, locks)
        reaper = StuckSyncReaper(store, locks=locks)
        coordinator = GlobalSyncCoordinator(store, crawler, reaper, CoordinatorConfig(), locks)
        return coordinator, locks

    def records_by_hash(self, store, category, account_id):
        return {r.hash: r for r in store.list_records(category, account_id)}

    @pytest.mark.asyncio
    async def test_full_sync_pass(self, store, account_id):
        client = scripted_ledger()
        coordinator, locks = self.build(store, client)

        assert await coordinator.sync_all()

        wallet = self.records_by_hash(store, RecordCategory.WALLET, account_id)
        assert set(wallet) == {"SEND", "CLAIM", "VOTE", "IBC", "RESTAKE"}

        assert wallet["SEND"].direction == Direction.OUT
        assert wallet["SEND"].amount == "1000uatom"
        assert wallet["SEND"].price_at_tx == 8.0

        assert wallet["CLAIM"].message_type == "BatchWithdraw(Reward+Commission)"
        assert wallet["CLAIM"].amount == "150uatom (R:100+C:50)"
        assert wallet["CLAIM"].recipient == ALICE

        assert wallet["VOTE"].amount == "Prop #42: YES"

        assert wallet["IBC"].message_type == "IBC Receive"
        assert wallet["IBC"].amount == "2500uosmo"
        assert wallet["IBC"].direction == Direction.IN

        assert wallet["RESTAKE"].message_type == "Exec/Delegate(batch:2)"
        assert wallet["RESTAKE"].amount == "30uatom"

        validator = self.records_by_hash(store, RecordCategory.VALIDATOR, account_id)
        assert set(validator) == {"INCOMING", "CLAIM", "RESTAKE"}
        assert validator["INCOMING"].role == ValidatorRole.INCOMING
        assert validator["INCOMING"].direction == Direction.IN
        assert validator["CLAIM"].role == ValidatorRole.OWN
        assert validator["RESTAKE"].role == ValidatorRole.OWN

        assert not store.get_account(account_id).is_syncing
        assert locks.held_keys() == []

    @pytest.mark.asyncio
    async def test_fee_collector_never_recorded_as_recipient(self, store, account_id):
        client = scripted_ledger()
        coordinator, _ = self.build(store, client)

        await coordinator.sync_all()

        for category in RecordCategory:
            for record in store.list_records(category, account_id):
                assert record.recipient != FEE_COLLECTOR

    @pytest.mark.asyncio
    async def test_second_pass_adds_nothing(self, store, account_id):
        client = scripted_ledger()
        coordinator, _ = self.build(store, client)

        await coordinator.sync_all()
        before = store.get_stats()
        await coordinator.sync_all()

        assert store.get_stats() == before

    @pytest.mark.asyncio
    async def test_new_transactions_picked_up(self, store, account_id):
        client = scripted_ledger()
        coordinator, _ = self.build(store, client)
        await coordinator.sync_all()

        client.add(make_envelope("LATER", 110, [msg_send(BOB, ALICE, 9)], [
            message_event(BOB),
            transfer_event(BOB, ALICE, "9uatom"),
        ]))
        await coordinator.sync_all()

        later = self.records_by_hash(store, RecordCategory.WALLET, account_id)["LATER"]
        assert later.direction == Direction.IN
        assert later.amount == "9uatom"

    @pytest.mark.asyncio
    async def test_stuck_account_recovered_on_next_pass(self, store, account_id):
        store.set_syncing_if_not(account_id, time.time() - 11 * 60)
        client = scripted_ledger()
        coordinator, _ = self.build(store, client)

        await coordinator.sync_all()

        assert store.get_stats()["wallet_records"] == 5
        assert not store.get_account(account_id).is_syncing

    @pytest.mark.asyncio
    async def test_reparse_restores_wiped_fields(self, store, account_id):
        client = scripted_ledger()
        coordinator, locks = self.build(store, client)
        await coordinator.sync_all()

        claim = self.records_by_hash(store, RecordCategory.WALLET, account_id)["CLAIM"]
        store.update_normalized_fields(RecordCategory.WALLET, claim.id, {"type": "Unknown", "amount": None})

        updated = await Reparser(store, locks).reparse_account(account_id)

        assert updated == store.get_stats()["wallet_records"] + store.get_stats()["validator_records"]
        claim = self.records_by_hash(store, RecordCategory.WALLET, account_id)["CLAIM"]
        assert claim.message_type == "BatchWithdraw(Reward+Commission)"
        assert claim.amount == "150uatom (R:100+C:50)"

    @pytest.mark.asyncio
    async def test_resync_rebuilds_from_scratch(self, store, account_id):
        client = scripted_ledger()
        coordinator, _ = self.build(store, client)
        await coordinator.sync_all()
        before = store.get_stats()

        client.calls.clear()
        assert await coordinator.resync_account(account_id)

        assert store.get_stats() == before
        assert {min_height for _, _, min_height, _ in client.calls} == {0}
