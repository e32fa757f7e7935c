"""
Mock Data for the Transaction Indexer

Builders for tx_response envelopes in the exact shape the Cosmos REST API
returns, plus an in-memory stand-in for IndexerQueryClient.

Use cases:
- Unit testing without a node
- Development against a scripted ledger (errors, rate limits, pagination)
"""

import base64
import json
import re
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from .indexer.events import attribute, event_sources

BANK = "/cosmos.bank.v1beta1"
STAKING = "/cosmos.staking.v1beta1"
DISTRIBUTION = "/cosmos.distribution.v1beta1"
GOV = "/cosmos.gov.v1beta1"
AUTHZ = "/cosmos.authz.v1beta1"
IBC_CORE = "/ibc.core"

FEE_COLLECTOR = "cosmos17xpfvakm2amg962yls6f84z3kell8c5lserqta"

FILTER_PATTERN = re.compile(r"^([\w.]+)\.(\w+)='([^']*)'$")


# =============================================================================
# Message Builders
# =============================================================================

def coin(amount: int, denom: str = "uatom") -> Dict[str, str]:
    return {"amount": str(amount), "denom": denom}


def msg_send(sender: str, recipient: str, amount: int, denom: str = "uatom") -> Dict[str, Any]:
    return {
        "@type": f"{BANK}.MsgSend",
        "from_address": sender,
        "to_address": recipient,
        "amount": [coin(amount, denom)],
    }


def msg_delegate(delegator: str, validator: str, amount: int, denom: str = "uatom") -> Dict[str, Any]:
    return {
        "@type": f"{STAKING}.MsgDelegate",
        "delegator_address": delegator,
        "validator_address": validator,
        "amount": coin(amount, denom),
    }


def msg_undelegate(delegator: str, validator: str, amount: int, denom: str = "uatom") -> Dict[str, Any]:
    return {
        "@type": f"{STAKING}.MsgUndelegate",
        "delegator_address": delegator,
        "validator_address": validator,
        "amount": coin(amount, denom),
    }


def msg_redelegate(
    delegator: str,
    src_validator: str,
    dst_validator: str,
    amount: int,
    denom: str = "uatom"
) -> Dict[str, Any]:
    return {
        "@type": f"{STAKING}.MsgBeginRedelegate",
        "delegator_address": delegator,
        "validator_src_address": src_validator,
        "validator_dst_address": dst_validator,
        "amount": coin(amount, denom),
    }


def msg_withdraw_reward(delegator: str, validator: str) -> Dict[str, Any]:
    return {
        "@type": f"{DISTRIBUTION}.MsgWithdrawDelegatorReward",
        "delegator_address": delegator,
        "validator_address": validator,
    }


def msg_withdraw_commission(validator: str) -> Dict[str, Any]:
    return {
        "@type": f"{DISTRIBUTION}.MsgWithdrawValidatorCommission",
        "validator_address": validator,
    }


def msg_vote(voter: str, proposal_id: str, option: Any) -> Dict[str, Any]:
    return {
        "@type": f"{GOV}.MsgVote",
        "proposal_id": proposal_id,
        "voter": voter,
        "option": option,
    }


def msg_exec(grantee: str, inner: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "@type": f"{AUTHZ}.MsgExec",
        "grantee": grantee,
        "msgs": inner,
    }


def msg_update_client(signer: str, client_id: str = "07-tendermint-0") -> Dict[str, Any]:
    return {
        "@type": f"{IBC_CORE}.client.v1.MsgUpdateClient",
        "client_id": client_id,
        "signer": signer,
    }


def msg_recv_packet(signer: str, sender: str, receiver: str, amount: int, denom: str) -> Dict[str, Any]:
    data = {"amount": str(amount), "denom": denom, "receiver": receiver, "sender": sender}
    return {
        "@type": f"{IBC_CORE}.channel.v1.MsgRecvPacket",
        "packet": {
            "sequence": "1",
            "source_port": "transfer",
            "source_channel": "channel-0",
            "data": base64.b64encode(json.dumps(data).encode("utf-8")).decode("ascii"),
        },
        "signer": signer,
    }


# =============================================================================
# Event Builders
# =============================================================================

def event(kind: str, **attributes: str) -> Dict[str, Any]:
    return {
        "type": kind,
        "attributes": [{"key": k, "value": v} for k, v in attributes.items()],
    }


def message_event(sender: str) -> Dict[str, Any]:
    return event("message", sender=sender)


def transfer_event(sender: str, recipient: str, amount: str) -> Dict[str, Any]:
    return event("transfer", recipient=recipient, sender=sender, amount=amount)


def fee_event(payer: str, amount: str = "5000uatom") -> Dict[str, Any]:
    return transfer_event(payer, FEE_COLLECTOR, amount)


def withdraw_rewards_event(amount: str, validator: str, delegator: str) -> Dict[str, Any]:
    return event("withdraw_rewards", amount=amount, validator=validator, delegator=delegator)


def withdraw_commission_event(amount: str) -> Dict[str, Any]:
    return event("withdraw_commission", amount=amount)


def encode_event(source: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of an event with every attribute key and value base64-encoded."""
    def b64(text: str) -> str:
        return base64.b64encode(text.encode("utf-8")).decode("ascii")

    return {
        "type": source["type"],
        "attributes": [
            {"key": b64(a["key"]), "value": b64(a["value"]), "index": True}
            for a in source.get("attributes") or []
        ],
    }


def make_envelope(
    txhash: str,
    height: int,
    messages: List[Dict[str, Any]],
    events: Optional[List[Dict[str, Any]]] = None,
    timestamp: str = "2024-01-01T00:00:00Z",
    legacy_logs: bool = False,
    encoded_copy: bool = False
) -> Dict[str, Any]:
    """
    A tx_response envelope.

    legacy_logs puts the events under logs[0].events and leaves the
    top-level list empty, like pre-0.45 nodes. encoded_copy additionally
    fills the top-level list with a base64-encoded copy, the way 0.45/0.46
    nodes report both.
    """
    events = events or []
    envelope = {
        "txhash": txhash,
        "height": str(height),
        "timestamp": timestamp,
        "code": 0,
        "tx": {
            "@type": "/cosmos.tx.v1beta1.Tx",
            "body": {"messages": messages, "memo": ""},
        },
        "events": [],
        "logs": [],
    }
    if legacy_logs:
        envelope["logs"] = [{"msg_index": 0, "events": events}]
        if encoded_copy:
            envelope["events"] = [encode_event(e) for e in events]
    else:
        envelope["events"] = events
    return envelope


# =============================================================================
# Mock Query Client
# =============================================================================

def matches_filter(envelope: Dict[str, Any], filter_expression: str) -> bool:
    """True if the envelope emitted an event satisfying `type.key='value'`."""
    match = FILTER_PATTERN.match(filter_expression)
    if not match:
        return False
    kind, key, value = match.groups()
    return any(
        e.get("type") == kind and attribute(e, key) == value
        for events in event_sources(envelope)
        for e in events
    )


def make_response_error(status: int, url: str = "http://mock.local") -> aiohttp.ClientResponseError:
    request_info = aiohttp.RequestInfo(url=url, method="GET", headers={})
    return aiohttp.ClientResponseError(request_info, (), status=status, message=f"HTTP {status}")


class MockIndexerClient:
    """
    In-memory IndexerQueryClient.

    Envelopes are served in ascending height order, filtered by the same
    event predicates a node applies.

    Usage:
        client = MockIndexerClient()
        client.add(make_envelope("AA", 10, [msg_send(a, b, 5)], [message_event(a)]))
        client.fail_with(503, 503)  # next two calls raise
    """

    def __init__(self, page_limit: int = 100):
        self.page_limit = page_limit
        self._envelopes: List[Dict[str, Any]] = []
        self._failures: List[Any] = []
        self.calls: List[Tuple[str, str, int, int]] = []

    def add(self, *envelopes: Dict[str, Any]):
        self._envelopes.extend(envelopes)
        self._envelopes.sort(key=lambda e: int(e["height"]))

    def fail_with(self, *failures: Any):
        """Queue HTTP statuses (ints) or exceptions for the next calls."""
        self._failures.extend(failures)

    async def fetch_page(
        self,
        base_url: str,
        filter_expression: str,
        min_height: int,
        page: int = 1
    ) -> Tuple[List[Dict[str, Any]], int]:
        self.calls.append((base_url, filter_expression, min_height, page))

        if self._failures:
            failure = self._failures.pop(0)
            if isinstance(failure, int):
                raise make_response_error(failure, base_url)
            raise failure

        matching = [
            e for e in self._envelopes
            if int(e["height"]) >= min_height and matches_filter(e, filter_expression)
        ]
        start = (page - 1) * self.page_limit
        return matching[start:start + self.page_limit], len(matching)

    async def start(self):
        pass

    async def stop(self):
        pass

    def get_stats(self) -> Dict:
        return {"requests": len(self.calls)}
