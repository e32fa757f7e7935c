"""
Unit tests for per-account record aggregation.

Tests wallet direction, batch type naming, amount summing, validator role
and the redelegation direction heuristic.
"""

import json

import pytest

from txindexer.indexer.aggregation import build_records
from txindexer.indexer.message_interpreter import MessageInterpreter
from txindexer.mock_data import (
    make_envelope,
    msg_delegate,
    msg_exec,
    msg_recv_packet,
    msg_redelegate,
    msg_send,
    msg_undelegate,
    msg_update_client,
    msg_vote,
    msg_withdraw_commission,
    msg_withdraw_reward,
    transfer_event,
    withdraw_commission_event,
    withdraw_rewards_event,
)
from txindexer.types import Direction, RecordCategory, TrackedAccount, ValidatorRole

ALICE = "cosmos1alice"
BOB = "cosmos1bob"
PAYOUT = "cosmos1payout"
VAL = "cosmosvaloper1val"
OTHER_VAL = "cosmosvaloper1other"
DISTRIBUTION = "cosmos1jv65s3grqf6v6jl3dp4t6c9t9rk99cd88lyufl"


@pytest.fixture
def account():
    return TrackedAccount(id=1, label="alice", chain_id=1, address=ALICE, validator_address=VAL)


def records_for(account, envelope, price=0.0):
    interpreted = MessageInterpreter().interpret(envelope)
    return dict(build_records(account, envelope, interpreted, price))


class TestWalletRecords:
    """Tests for wallet-context records."""

    def test_outgoing_send(self, account):
        records = records_for(account, make_envelope("A1", 10, [msg_send(ALICE, BOB, 100)]), price=9.5)

        assert list(records) == [RecordCategory.WALLET]
        record = records[RecordCategory.WALLET]
        assert record.message_type == "MsgSend"
        assert record.amount == "100uatom"
        assert record.sender == ALICE
        assert record.recipient == BOB
        assert record.direction == Direction.OUT
        assert record.price_at_tx == 9.5
        assert json.loads(record.raw_envelope)["txhash"] == "A1"

    def test_incoming_send(self, account):
        record = records_for(account, make_envelope("A2", 10, [msg_send(BOB, ALICE, 7)]))[RecordCategory.WALLET]
        assert record.direction == Direction.IN
        assert record.recipient == ALICE

    def test_self_send(self, account):
        record = records_for(account, make_envelope("A3", 10, [msg_send(ALICE, ALICE, 7)]))[RecordCategory.WALLET]
        assert record.direction == Direction.SELF

    def test_payout_address_counts_as_received(self):
        account = TrackedAccount(id=1, label="a", chain_id=1, address=ALICE, payout_address=PAYOUT)
        record = records_for(account, make_envelope("A4", 10, [msg_send(BOB, PAYOUT, 7)]))[RecordCategory.WALLET]
        assert record.direction == Direction.IN
        assert record.recipient == PAYOUT

    def test_unrelated_transaction(self, account):
        assert records_for(account, make_envelope("A5", 10, [msg_send(BOB, "cosmos1carol", 1)])) == {}

    def test_same_type_batch(self, account):
        """Three delegations in one transaction become one summed record."""
        envelope = make_envelope("B1", 10, [
            msg_delegate(ALICE, OTHER_VAL, 100),
            msg_delegate(ALICE, OTHER_VAL, 200),
            msg_delegate(ALICE, OTHER_VAL, 300),
        ])
        record = records_for(account, envelope)[RecordCategory.WALLET]
        assert record.message_type == "MsgDelegate(batch:3)"
        assert record.amount == "600uatom"

    def test_mixed_type_batch(self, account):
        envelope = make_envelope("B2", 10, [
            msg_send(ALICE, BOB, 1),
            msg_delegate(ALICE, OTHER_VAL, 2),
            msg_undelegate(ALICE, OTHER_VAL, 3),
        ])
        record = records_for(account, envelope)[RecordCategory.WALLET]
        assert record.message_type == "MsgSend+MsgDelegate(batch:3)"
        assert record.amount == "6uatom"

    def test_exec_batch(self, account):
        """Inner messages of an authorized execution are aggregated, the wrapper is not."""
        envelope = make_envelope("B3", 10, [
            msg_exec(BOB, [msg_delegate(ALICE, OTHER_VAL, 10), msg_delegate(ALICE, OTHER_VAL, 20)])
        ])
        record = records_for(account, envelope)[RecordCategory.WALLET]
        assert record.message_type == "Exec/Delegate(batch:2)"
        assert record.amount == "30uatom"

    def test_exec_single_inner(self, account):
        envelope = make_envelope("B4", 10, [msg_exec(BOB, [msg_delegate(ALICE, OTHER_VAL, 10)])])
        record = records_for(account, envelope)[RecordCategory.WALLET]
        assert record.message_type == "Exec/Delegate"

    def test_multi_denom_amount(self, account):
        envelope = make_envelope("B5", 10, [msg_send(ALICE, BOB, 5, "uatom"), msg_send(ALICE, BOB, 6, "uosmo")])
        record = records_for(account, envelope)[RecordCategory.WALLET]
        assert record.amount == "5uatom, 6uosmo"

    def test_vote_keeps_summary(self, account):
        record = records_for(account, make_envelope("B6", 10, [msg_vote(ALICE, "42", 1)]))[RecordCategory.WALLET]
        assert record.amount == "Prop #42: YES"
        assert record.direction == Direction.OUT

    def test_withdraw_uses_interpreter_amount_and_recipient(self):
        account = TrackedAccount(id=1, label="a", chain_id=1, address=ALICE, payout_address=PAYOUT)
        envelope = make_envelope("C1", 10, [msg_withdraw_reward(ALICE, OTHER_VAL)], [
            withdraw_rewards_event("321uatom", OTHER_VAL, ALICE),
            transfer_event(DISTRIBUTION, PAYOUT, "321uatom"),
        ])
        record = records_for(account, envelope)[RecordCategory.WALLET]
        assert record.amount == "321uatom"
        assert record.recipient == PAYOUT

    def test_cross_chain_receive(self, account):
        envelope = make_envelope("C2", 10, [
            msg_update_client("relayer"),
            msg_recv_packet("relayer", "osmo1x", ALICE, 9, "uosmo"),
        ])
        record = records_for(account, envelope)[RecordCategory.WALLET]
        assert record.message_type == "IBC Receive"
        assert record.amount == "9uosmo"
        assert record.direction == Direction.IN

    def test_wallet_amount_defaults_to_zero(self, account):
        msg = {"@type": "/cosmos.authz.v1beta1.MsgRevoke", "granter": ALICE, "grantee": BOB}
        record = records_for(account, make_envelope("C3", 10, [msg]))[RecordCategory.WALLET]
        assert record.amount == "0"


class TestValidatorRecords:
    """Tests for validator-context records."""

    def test_incoming_delegation(self, account):
        records = records_for(account, make_envelope("D1", 10, [msg_delegate(BOB, VAL, 50)]))
        assert list(records) == [RecordCategory.VALIDATOR]
        record = records[RecordCategory.VALIDATOR]
        assert record.role == ValidatorRole.INCOMING
        assert record.direction == Direction.IN
        assert record.delegator == BOB
        assert record.validator == VAL
        assert record.amount == "50uatom"

    def test_own_delegation_creates_both_records(self, account):
        records = records_for(account, make_envelope("D2", 10, [msg_delegate(ALICE, VAL, 50)]))
        assert set(records) == {RecordCategory.WALLET, RecordCategory.VALIDATOR}
        assert records[RecordCategory.VALIDATOR].role == ValidatorRole.OWN

    def test_undelegation_is_out(self, account):
        record = records_for(account, make_envelope("D3", 10, [msg_undelegate(BOB, VAL, 5)]))[RecordCategory.VALIDATOR]
        assert record.direction == Direction.OUT

    def test_redelegation_into_tracked_validator(self, account):
        envelope = make_envelope("D4", 10, [msg_redelegate(BOB, OTHER_VAL, VAL, 5)])
        record = records_for(account, envelope)[RecordCategory.VALIDATOR]
        assert record.direction == Direction.IN
        assert record.dst_validator == VAL

    def test_redelegation_away_from_tracked_validator(self, account):
        envelope = make_envelope("D5", 10, [msg_redelegate(BOB, VAL, OTHER_VAL, 5)])
        record = records_for(account, envelope)[RecordCategory.VALIDATOR]
        assert record.direction == Direction.OUT

    def test_batch_withdraw_keeps_interpreter_type(self, account):
        """A reward+commission pair is named by the interpreter, not '(batch:N)'."""
        envelope = make_envelope("E1", 10, [msg_withdraw_reward(ALICE, VAL), msg_withdraw_commission(VAL)], [
            withdraw_rewards_event("100uatom", VAL, ALICE),
            withdraw_commission_event("50uatom"),
            transfer_event(DISTRIBUTION, ALICE, "150uatom"),
        ])
        records = records_for(account, envelope)

        validator_record = records[RecordCategory.VALIDATOR]
        assert validator_record.message_type == "BatchWithdraw(Reward+Commission)"
        assert validator_record.amount == "150uatom (R:100+C:50)"
        assert validator_record.role == ValidatorRole.OWN

        wallet_record = records[RecordCategory.WALLET]
        assert wallet_record.message_type == "BatchWithdraw(Reward+Commission)"
        assert wallet_record.amount == "150uatom (R:100+C:50)"
        assert wallet_record.recipient == ALICE
