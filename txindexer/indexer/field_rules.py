"""
Message Field Resolution Rules

Declarative priority lists mapping each logical field to the raw message
keys it may live under. Message families across SDK modules and versions
name the same role differently (from_address / sender / signer / voter ...);
the first present key wins.

Everything here is pure: message dict in, strings out.
"""

import base64
import json
from enum import Enum
from typing import Any, Dict, List, Optional

from ..types import MessageFields
from .coins import coin_from_dict, format_coin

TYPE_KEY = "@type"

SENDER_KEYS = [
    "from_address", "sender", "signer", "voter", "granter",
    "depositor", "proposer", "delegator_address", "executor",
]
RECIPIENT_KEYS = ["to_address", "receiver", "recipient", "grantee"]
DELEGATOR_KEYS = ["delegator_address", "delegator", "voter", "grantee", "depositor", "sender"]
VALIDATOR_KEYS = ["validator_address", "validator_src_address", "validator_addr", "source_validator"]
DST_VALIDATOR_KEYS = ["validator_dst_address", "destination_validator"]
AMOUNT_KEYS = ["amount", "token", "value"]

VOTE_OPTIONS = ["EMPTY", "YES", "ABSTAIN", "NO", "NO_WITH_VETO"]

CROSS_CHAIN_RECEIVE_TYPE = "IBC Receive"
EXEC_TYPE_PREFIX = "Exec/"

# Inner-message keywords that make an authorized execution worth reporting
MEANINGFUL_KEYWORDS = ("delegate", "send", "transfer")


class MessageFamily(Enum):
    """Message families that get special-cased resolution."""
    GENERIC = "generic"
    MULTI_SEND = "multi_send"
    VOTE = "vote"
    UNJAIL = "unjail"
    CROSS_CHAIN_RECEIVE = "cross_chain_receive"
    AUTHZ_EXEC = "authz_exec"
    WITHDRAW_REWARD = "withdraw_reward"
    WITHDRAW_COMMISSION = "withdraw_commission"
    UPDATE_CLIENT = "update_client"


def type_tag(msg: Dict[str, Any]) -> str:
    """Trailing segment of the fully-qualified type url, e.g. 'MsgSend'."""
    raw = (msg.get(TYPE_KEY) or "") if isinstance(msg, dict) else ""
    return raw.split(".")[-1] or "Tx"


def classify(msg: Dict[str, Any]) -> MessageFamily:
    """Map a raw message to its resolution family."""
    tag = type_tag(msg)

    if "RecvPacket" in tag:
        return MessageFamily.CROSS_CHAIN_RECEIVE
    if "Exec" in tag and isinstance(msg.get("msgs"), list):
        return MessageFamily.AUTHZ_EXEC
    if "WithdrawDelegatorReward" in tag:
        return MessageFamily.WITHDRAW_REWARD
    if "WithdrawValidatorCommission" in tag:
        return MessageFamily.WITHDRAW_COMMISSION
    if "UpdateClient" in tag:
        return MessageFamily.UPDATE_CLIENT
    if "Unjail" in tag:
        return MessageFamily.UNJAIL
    if msg.get("inputs") and msg.get("outputs"):
        return MessageFamily.MULTI_SEND
    if msg.get("proposal_id") is not None and (msg.get("option") is not None or msg.get("options")):
        return MessageFamily.VOTE
    return MessageFamily.GENERIC


def is_withdraw_family(msg: Dict[str, Any]) -> bool:
    return classify(msg) in (MessageFamily.WITHDRAW_REWARD, MessageFamily.WITHDRAW_COMMISSION)


def first_present(msg: Dict[str, Any], keys: List[str]) -> Optional[str]:
    """Value of the first key holding a non-empty value."""
    for key in keys:
        value = msg.get(key)
        if value:
            return value
    return None


def resolve_amount(msg: Dict[str, Any]) -> Optional[str]:
    """
    First resolvable amount among amount/token/value.

    'amount' may be a list of coins (first coin wins) or a single coin.
    """
    for key in AMOUNT_KEYS:
        value = msg.get(key)
        if isinstance(value, list):
            amount = coin_from_dict(value[0]) if value else None
        else:
            amount = coin_from_dict(value)
        if amount:
            return amount
    return None


def parse_vote_option(option: Any) -> str:
    """Normalize a vote option index or VOTE_OPTION_* string."""
    if isinstance(option, str) and not option.isdigit():
        cleaned = option.replace("VOTE_OPTION_", "")
        return cleaned if cleaned in VOTE_OPTIONS else option
    try:
        index = int(option)
    except (TypeError, ValueError):
        return "UNKNOWN"
    if 0 <= index < len(VOTE_OPTIONS):
        return VOTE_OPTIONS[index]
    return "UNKNOWN"


def vote_summary(msg: Dict[str, Any]) -> Optional[str]:
    """'Prop #<id>: <OPTION>' for plain and weighted votes."""
    proposal_id = msg.get("proposal_id")
    if proposal_id is None:
        return None
    option = msg.get("option")
    if option is None:
        options = msg.get("options") or []
        if options and isinstance(options[0], dict):
            option = options[0].get("option")
    if option is None:
        return None
    return f"Prop #{proposal_id}: {parse_vote_option(option)}"


def decode_packet(msg: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Decode a base64 JSON transfer packet carried by a receive message.

    Returns None for anything that does not decode to a JSON object.
    """
    packet = msg.get("packet")
    if not isinstance(packet, dict) or not packet.get("data"):
        return None
    try:
        decoded = json.loads(base64.b64decode(packet["data"]).decode("utf-8"))
    except (ValueError, TypeError, UnicodeDecodeError):
        return None
    return decoded if isinstance(decoded, dict) else None


def flatten_messages(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Flatten authorized-execution trees into an ordered list.

    Each wrapper is kept, followed by its inner messages (recursively).
    The input is not modified.
    """
    flat: List[Dict[str, Any]] = []
    for msg in messages or []:
        if not isinstance(msg, dict):
            continue
        flat.append(msg)
        inner = msg.get("msgs")
        if classify(msg) == MessageFamily.AUTHZ_EXEC:
            flat.extend(flatten_messages(inner))
    return flat


def pick_meaningful(messages: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """First message whose type mentions a value-moving keyword, else the first."""
    for msg in messages:
        lowered = (msg.get(TYPE_KEY) or "").lower()
        if any(keyword in lowered for keyword in MEANINGFUL_KEYWORDS):
            return msg
    return messages[0] if messages else None


def resolve_message(msg: Dict[str, Any]) -> MessageFields:
    """
    Resolve canonical fields from one message body.

    Does not look into event logs; unresolvable fields stay None.
    """
    family = classify(msg)
    tag = type_tag(msg)

    if family == MessageFamily.CROSS_CHAIN_RECEIVE:
        packet = decode_packet(msg)
        if packet is not None:
            return MessageFields(
                message_type=CROSS_CHAIN_RECEIVE_TYPE,
                amount=format_coin(packet.get("amount"), packet.get("denom")),
                sender=packet.get("sender") or None,
                recipient=packet.get("receiver") or None,
            )

    amount = resolve_amount(msg)
    sender = first_present(msg, SENDER_KEYS)
    recipient = first_present(msg, RECIPIENT_KEYS)

    if family == MessageFamily.MULTI_SEND:
        first_input = msg["inputs"][0] if isinstance(msg["inputs"][0], dict) else {}
        first_output = msg["outputs"][0] if isinstance(msg["outputs"][0], dict) else {}
        sender = first_input.get("address")
        recipient = first_output.get("address")
        coins = first_input.get("coins") or []
        amount = coin_from_dict(coins[0]) if coins else amount
    elif family == MessageFamily.VOTE:
        amount = vote_summary(msg) or amount
    elif family == MessageFamily.UNJAIL:
        amount = "Unjail"

    fields = MessageFields(
        message_type=tag,
        amount=amount,
        sender=sender,
        recipient=recipient,
        delegator=first_present(msg, DELEGATOR_KEYS),
        validator=first_present(msg, VALIDATOR_KEYS),
        dst_validator=first_present(msg, DST_VALIDATOR_KEYS),
    )

    if family == MessageFamily.AUTHZ_EXEC:
        fields = _resolve_exec(fields, msg)

    return fields


def safe_resolve(msg: Dict[str, Any]) -> MessageFields:
    """resolve_message() that degrades to a bare type tag on malformed bodies."""
    try:
        return resolve_message(msg)
    except (KeyError, IndexError, TypeError, AttributeError, ValueError):
        return MessageFields(message_type=type_tag(msg))


def _resolve_exec(outer: MessageFields, msg: Dict[str, Any]) -> MessageFields:
    """Re-resolve an authorized execution from its meaningful inner message."""
    inner_messages = flatten_messages(msg.get("msgs"))
    inner = pick_meaningful(
        [m for m in inner_messages if classify(m) != MessageFamily.AUTHZ_EXEC]
    ) or pick_meaningful(inner_messages)
    if inner is None:
        return outer

    inner_fields = resolve_message(inner)
    inner_tag = type_tag(inner)
    if inner_tag.startswith("Msg"):
        inner_tag = inner_tag[3:]

    return MessageFields(
        message_type=f"{EXEC_TYPE_PREFIX}{inner_tag or 'InnerTx'}",
        amount=inner_fields.amount or outer.amount,
        sender=inner_fields.sender or outer.sender,
        recipient=inner_fields.recipient or outer.recipient,
        delegator=inner_fields.delegator or outer.delegator,
        validator=inner_fields.validator or outer.validator,
        dst_validator=inner_fields.dst_validator or outer.dst_validator,
    )
