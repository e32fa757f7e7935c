"""
Event-Log Extractors

Fallback sources for amount and recipient when a message body does not
carry them. Withdrawal messages never include the settled amount, so
their value is re-derived from the withdraw_rewards / withdraw_commission
events the transaction emitted.

Each extractor is a plain function (events -> Optional[str]); the chains
below are tried in order until one yields a value.
"""

import base64
import binascii
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .coins import format_totals, parse_coins, sum_by_denom

# bech32 data part of the fee_collector module account (same on every prefix)
FEE_COLLECTOR_MARKER = "17xpfvakm2amg962yls6f84z3kell8c5l"

WITHDRAW_REWARDS_EVENT = "withdraw_rewards"
WITHDRAW_COMMISSION_EVENT = "withdraw_commission"
TRANSFER_EVENT = "transfer"
COIN_RECEIVED_EVENT = "coin_received"

Event = Dict[str, Any]
Extractor = Callable[[List[Event]], Optional[str]]

_logger = logging.getLogger("EventExtractors")


def event_sources(envelope: Dict[str, Any]) -> List[List[Event]]:
    """
    Event lists of a tx_response, in lookup order.

    The top-level `events` list comes first, then the concatenated
    logs[].events. SDK 0.50+ nodes only fill the former, pre-0.45 nodes
    only the latter, and 0.45-0.47 nodes fill both (the top-level copy
    possibly base64-encoded). Empty sources are dropped. The two are never
    merged, since the same event would be counted twice.
    """
    sources: List[List[Event]] = []

    events = envelope.get("events")
    if isinstance(events, list):
        top_level = [e for e in events if isinstance(e, dict)]
        if top_level:
            sources.append(top_level)

    collected: List[Event] = []
    for log in envelope.get("logs") or []:
        if isinstance(log, dict):
            collected.extend(e for e in log.get("events") or [] if isinstance(e, dict))
    if collected:
        sources.append(collected)

    return sources


def _b64decode(value: str) -> Optional[str]:
    try:
        return base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, ValueError, UnicodeDecodeError):
        return None


def _b64encode(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def attribute(event: Event, key: str) -> Optional[str]:
    """
    Value of the first attribute named key.

    Attributes whose key is base64-encoded have their value decoded too.
    """
    encoded_key = _b64encode(key)
    for attr in event.get("attributes") or []:
        if not isinstance(attr, dict) or not attr.get("value"):
            continue
        if attr.get("key") == key:
            return attr["value"]
        if attr.get("key") == encoded_key:
            decoded = _b64decode(attr["value"])
            if decoded:
                return decoded
    return None


def is_fee_collector(address: Optional[str]) -> bool:
    return bool(address) and FEE_COLLECTOR_MARKER in address


@dataclass
class WithdrawTotals:
    """Per-denom reward and commission sums of one transaction."""
    reward: "OrderedDict[str, int]" = field(default_factory=OrderedDict)
    commission: "OrderedDict[str, int]" = field(default_factory=OrderedDict)
    validator: Optional[str] = None
    delegator: Optional[str] = None

    @property
    def combined(self) -> "OrderedDict[str, int]":
        totals = OrderedDict(self.reward)
        for denom, quantity in self.commission.items():
            totals[denom] = totals.get(denom, 0) + quantity
        return totals

    def format(self) -> Optional[str]:
        """
        '<total><denom>', plus '(R:x+C:y)' when both kinds contributed.

        The split omits the denom when only one denom is involved.
        """
        combined = self.combined
        if sum(combined.values()) <= 0:
            return None

        multi_denom = len(combined) > 1
        amount = format_totals(combined)
        if sum(self.reward.values()) > 0 and sum(self.commission.values()) > 0:
            reward = format_totals(self.reward, with_denom=multi_denom)
            commission = format_totals(self.commission, with_denom=multi_denom)
            amount = f"{amount} (R:{reward}+C:{commission})"
        return amount


def extract_withdraw_totals(events: List[Event]) -> WithdrawTotals:
    """Sum every withdraw_rewards / withdraw_commission amount attribute."""
    reward_coins = []
    commission_coins = []
    totals = WithdrawTotals()

    for event in events:
        kind = event.get("type")
        if kind == WITHDRAW_REWARDS_EVENT:
            reward_coins.extend(parse_coins(attribute(event, "amount")))
            totals.validator = totals.validator or attribute(event, "validator")
            totals.delegator = totals.delegator or attribute(event, "delegator")
        elif kind == WITHDRAW_COMMISSION_EVENT:
            commission_coins.extend(parse_coins(attribute(event, "amount")))

    totals.reward = sum_by_denom(reward_coins)
    totals.commission = sum_by_denom(commission_coins)
    return totals


def extract_withdraw_amount(events: List[Event]) -> Optional[str]:
    return extract_withdraw_totals(events).format()


def _transfer_events(events: List[Event]):
    """(event, recipient) pairs for value-receiving events, fee collector excluded."""
    for event in events:
        kind = event.get("type")
        if kind == TRANSFER_EVENT:
            recipient = attribute(event, "recipient")
        elif kind == COIN_RECEIVED_EVENT:
            recipient = attribute(event, "receiver")
        else:
            continue
        if recipient and is_fee_collector(recipient):
            continue
        yield event, recipient


def extract_recipient(events: List[Event]) -> Optional[str]:
    """First transfer recipient / coin_received receiver that is not the fee collector."""
    for _, recipient in _transfer_events(events):
        if recipient:
            return recipient
    return None


def extract_transfer_amount(events: List[Event]) -> Optional[str]:
    """Amount attribute of the first non-fee transfer / coin_received event."""
    for event, _ in _transfer_events(events):
        amount = attribute(event, "amount")
        if amount:
            return amount
    return None


AMOUNT_EXTRACTORS: List[Extractor] = [extract_withdraw_amount, extract_transfer_amount]
RECIPIENT_EXTRACTORS: List[Extractor] = [extract_recipient]


def first_resolved(extractors: List[Extractor], events: List[Event]) -> Optional[str]:
    """Apply extractors in order; the first non-empty value wins."""
    for extractor in extractors:
        try:
            value = extractor(events)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            _logger.debug(f"{extractor.__name__} failed: {e}")
            continue
        if value:
            return value
    return None
