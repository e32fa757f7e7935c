"""
Unit tests for message field resolution.

Tests priority tables, votes, multi-send, cross-chain packets and
authorized-execution flattening.
"""

import base64

from txindexer.indexer.field_rules import (
    CROSS_CHAIN_RECEIVE_TYPE,
    MessageFamily,
    classify,
    decode_packet,
    flatten_messages,
    parse_vote_option,
    pick_meaningful,
    resolve_message,
    safe_resolve,
    type_tag,
)
from txindexer.mock_data import (
    msg_delegate,
    msg_exec,
    msg_recv_packet,
    msg_redelegate,
    msg_send,
    msg_vote,
    msg_withdraw_reward,
)

ALICE = "cosmos1alice"
BOB = "cosmos1bob"
VAL = "cosmosvaloper1val"
VAL2 = "cosmosvaloper1other"


class TestTypeTag:

    def test_trailing_segment(self):
        assert type_tag({"@type": "/cosmos.bank.v1beta1.MsgSend"}) == "MsgSend"

    def test_missing_type(self):
        assert type_tag({}) == "Tx"
        assert type_tag(None) == "Tx"

    def test_classify_families(self):
        assert classify(msg_send(ALICE, BOB, 1)) == MessageFamily.GENERIC
        assert classify(msg_withdraw_reward(ALICE, VAL)) == MessageFamily.WITHDRAW_REWARD
        assert classify(msg_exec(BOB, [])) == MessageFamily.AUTHZ_EXEC
        assert classify(msg_vote(ALICE, "1", 1)) == MessageFamily.VOTE


class TestPriorityTables:

    def test_send(self):
        fields = resolve_message(msg_send(ALICE, BOB, 100))
        assert fields.message_type == "MsgSend"
        assert fields.sender == ALICE
        assert fields.recipient == BOB
        assert fields.amount == "100uatom"

    def test_delegate_single_coin_amount(self):
        fields = resolve_message(msg_delegate(ALICE, VAL, 250))
        assert fields.delegator == ALICE
        assert fields.sender == ALICE
        assert fields.validator == VAL
        assert fields.amount == "250uatom"

    def test_redelegate(self):
        fields = resolve_message(msg_redelegate(ALICE, VAL2, VAL, 5))
        assert fields.validator == VAL2
        assert fields.dst_validator == VAL

    def test_first_present_key_wins(self):
        msg = {"@type": "/x.MsgFoo", "sender": "s1", "signer": "s2", "token": {"amount": "3", "denom": "ux"}}
        fields = resolve_message(msg)
        assert fields.sender == "s1"
        assert fields.amount == "3ux"

    def test_multi_send_first_input_output(self):
        msg = {
            "@type": "/cosmos.bank.v1beta1.MsgMultiSend",
            "inputs": [{"address": ALICE, "coins": [{"amount": "9", "denom": "uatom"}]}],
            "outputs": [{"address": BOB, "coins": [{"amount": "9", "denom": "uatom"}]}],
        }
        fields = resolve_message(msg)
        assert fields.sender == ALICE
        assert fields.recipient == BOB
        assert fields.amount == "9uatom"

    def test_unjail(self):
        fields = resolve_message({"@type": "/cosmos.slashing.v1beta1.MsgUnjail", "validator_addr": VAL})
        assert fields.amount == "Unjail"
        assert fields.validator == VAL


class TestVotes:

    def test_vote_decoding(self):
        fields = resolve_message(msg_vote(ALICE, "42", 1))
        assert fields.amount == "Prop #42: YES"
        assert fields.sender == ALICE

    def test_vote_option_string(self):
        assert parse_vote_option("VOTE_OPTION_NO_WITH_VETO") == "NO_WITH_VETO"
        assert parse_vote_option("3") == "NO"

    def test_unknown_option_index(self):
        assert parse_vote_option(9) == "UNKNOWN"
        assert resolve_message(msg_vote(ALICE, "7", 9)).amount == "Prop #7: UNKNOWN"

    def test_weighted_vote(self):
        msg = {
            "@type": "/cosmos.gov.v1.MsgVoteWeighted",
            "proposal_id": "5",
            "voter": ALICE,
            "options": [{"option": "VOTE_OPTION_ABSTAIN", "weight": "1.0"}],
        }
        assert resolve_message(msg).amount == "Prop #5: ABSTAIN"


class TestCrossChain:

    def test_packet_decode(self):
        msg = msg_recv_packet("relayer", "osmo1sender", BOB, 77, "uosmo")
        fields = resolve_message(msg)
        assert fields.message_type == CROSS_CHAIN_RECEIVE_TYPE
        assert fields.sender == "osmo1sender"
        assert fields.recipient == BOB
        assert fields.amount == "77uosmo"

    def test_bad_base64_falls_through(self):
        msg = {"@type": "/ibc.core.channel.v1.MsgRecvPacket", "packet": {"data": "!!!not-base64"}, "signer": "relayer"}
        assert decode_packet(msg) is None
        fields = resolve_message(msg)
        assert fields.message_type == "MsgRecvPacket"
        assert fields.sender == "relayer"

    def test_non_object_json_is_ignored(self):
        msg = {"packet": {"data": base64.b64encode(b"[1, 2]").decode()}}
        assert decode_packet(msg) is None


class TestAuthorizedExecution:

    def test_flatten_keeps_wrapper_then_inner(self):
        inner_send = msg_send(ALICE, BOB, 1)
        nested = msg_exec("g2", [inner_send])
        outer = msg_exec("g1", [nested, msg_delegate(ALICE, VAL, 2)])

        flat = flatten_messages([outer])

        assert [type_tag(m) for m in flat] == ["MsgExec", "MsgExec", "MsgSend", "MsgDelegate"]
        assert len(outer["msgs"]) == 2

    def test_pick_meaningful_prefers_value_moving(self):
        vote = msg_vote(ALICE, "1", 1)
        delegate = msg_delegate(ALICE, VAL, 5)
        assert pick_meaningful([vote, delegate]) is delegate
        assert pick_meaningful([vote]) is vote
        assert pick_meaningful([]) is None

    def test_exec_resolves_inner(self):
        fields = resolve_message(msg_exec(BOB, [msg_delegate(ALICE, VAL, 10)]))
        assert fields.message_type == "Exec/Delegate"
        assert fields.delegator == ALICE
        assert fields.validator == VAL
        assert fields.amount == "10uatom"

    def test_malformed_message_degrades(self):
        msg = {"@type": "/cosmos.bank.v1beta1.MsgMultiSend", "inputs": [None], "outputs": [None]}
        fields = safe_resolve(msg)
        assert fields.message_type == "MsgMultiSend"
