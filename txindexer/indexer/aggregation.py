"""
Record Aggregation

Collapses every message of one transaction that concerns a tracked account
into a single CanonicalTransactionRecord per context:
- Wallet context: the account acted (sender/delegator) or received
  (recipient, including the payout address)
- Validator context: the account's validator address is the validator or
  the redelegation destination

Amounts are summed per denom with Python int. Withdraw and cross-chain
types take the interpreter's log-derived amount instead, since the message
bodies do not carry the settled value.
"""

import json
from typing import Any, Dict, List, Optional, Tuple

from ..types import (
    CanonicalFields,
    CanonicalTransactionRecord,
    Direction,
    MessageFields,
    RecordCategory,
    TrackedAccount,
    ValidatorRole,
)
from .coins import aggregate_amounts
from .field_rules import EXEC_TYPE_PREFIX, MessageFamily, classify, flatten_messages, safe_resolve
from .message_interpreter import envelope_messages, is_batch_family

# Record types whose amount comes from the interpreter, not the message sum
INTERPRETER_AMOUNT_MARKERS = ("Withdraw", "IBC", "RecvPacket")

MAX_JOINED_TYPES = 2


def resolve_envelope_messages(envelope: Dict[str, Any]) -> List[MessageFields]:
    """
    Resolve every leaf message of an envelope.

    Authorized-execution wrappers are flattened; the wrapper itself is
    dropped because its fields are those of its own inner message.
    """
    flat = flatten_messages(envelope_messages(envelope))
    return [safe_resolve(m) for m in flat if classify(m) != MessageFamily.AUTHZ_EXEC]


def acted(account: TrackedAccount, fields: MessageFields) -> bool:
    return account.address in (fields.sender, fields.delegator)


def received(account: TrackedAccount, fields: MessageFields) -> bool:
    return account.owns_address(fields.recipient)


def wallet_messages(account: TrackedAccount, messages: List[MessageFields]) -> List[MessageFields]:
    return [m for m in messages if acted(account, m) or received(account, m)]


def validator_messages(account: TrackedAccount, messages: List[MessageFields]) -> List[MessageFields]:
    validator = account.validator_address
    if not validator:
        return []
    return [m for m in messages if validator in (m.validator, m.dst_validator)]


def aggregate_type(interpreted: CanonicalFields, qualifying: List[MessageFields]) -> str:
    """
    Record type for a set of qualifying messages.

    One message (or a transaction the interpreter already summarized as a
    batch) keeps the interpreter type. Otherwise a '(batch:N)' suffix is
    added to the Exec type, the shared type, or the first two distinct types.
    """
    count = len(qualifying)
    if count <= 1 or is_batch_family(interpreted.message_type):
        return interpreted.message_type

    if interpreted.message_type.startswith(EXEC_TYPE_PREFIX):
        return f"{interpreted.message_type}(batch:{count})"

    unique_types: List[str] = []
    for message in qualifying:
        if message.message_type not in unique_types:
            unique_types.append(message.message_type)

    return f"{'+'.join(unique_types[:MAX_JOINED_TYPES])}(batch:{count})"


def aggregate_amount(
    interpreted: CanonicalFields,
    qualifying: List[MessageFields],
    message_type: str
) -> Optional[str]:
    amount = aggregate_amounts(m.amount for m in qualifying)
    if amount is None:
        # Descriptive amounts (vote summary, Unjail) when no coin moved
        amount = next((m.amount for m in qualifying if m.amount), None)
    if interpreted.amount and any(marker in message_type for marker in INTERPRETER_AMOUNT_MARKERS):
        amount = interpreted.amount
    return amount


def wallet_direction(account: TrackedAccount, qualifying: List[MessageFields]) -> Direction:
    """OUT if the account only acted, IN if it only received, SELF if both."""
    did_act = any(acted(account, m) for m in qualifying)
    did_receive = any(received(account, m) for m in qualifying)
    if did_act and not did_receive:
        return Direction.OUT
    if did_receive and not did_act:
        return Direction.IN
    return Direction.SELF


def validator_direction(account: TrackedAccount, message_type: str, first: MessageFields) -> Optional[Direction]:
    """
    Stake flow relative to the tracked validator.

    Redelegations count as OUT unless the destination is the tracked
    validator. A redelegation between two other validators that merely
    matched a filter is also reported as OUT; this is a known approximation.
    """
    if "Redelegate" in message_type:
        if first.dst_validator and first.dst_validator == account.validator_address:
            return Direction.IN
        return Direction.OUT
    if "Undelegate" in message_type:
        return Direction.OUT
    if "Delegate" in message_type:
        return Direction.IN
    return None


def validator_role(account: TrackedAccount, first: MessageFields) -> ValidatorRole:
    if first.delegator and first.delegator == account.address:
        return ValidatorRole.OWN
    return ValidatorRole.INCOMING


def serialize_envelope(envelope: Dict[str, Any]) -> str:
    return json.dumps(envelope, separators=(",", ":"))


def build_wallet_record(
    account: TrackedAccount,
    envelope: Dict[str, Any],
    interpreted: CanonicalFields,
    qualifying: List[MessageFields],
    price_at_tx: float = 0.0
) -> CanonicalTransactionRecord:
    """Aggregate the wallet-context messages of one transaction."""
    first = qualifying[0]
    message_type = aggregate_type(interpreted, qualifying)
    amount = aggregate_amount(interpreted, qualifying, message_type) or "0"

    recipient = first.recipient or (account.address if received(account, first) else None)
    if "Withdraw" in message_type and interpreted.recipient:
        recipient = interpreted.recipient
    sender = first.sender or (account.address if acted(account, first) else None)

    return CanonicalTransactionRecord(
        hash=interpreted.hash,
        height=interpreted.height,
        account_id=account.id,
        category=RecordCategory.WALLET,
        message_type=message_type,
        timestamp=interpreted.timestamp,
        amount=amount,
        sender=sender,
        recipient=recipient,
        direction=wallet_direction(account, qualifying),
        raw_envelope=serialize_envelope(envelope),
        price_at_tx=price_at_tx,
    )


def build_validator_record(
    account: TrackedAccount,
    envelope: Dict[str, Any],
    interpreted: CanonicalFields,
    qualifying: List[MessageFields],
    price_at_tx: float = 0.0
) -> CanonicalTransactionRecord:
    """Aggregate the validator-context messages of one transaction."""
    first = qualifying[0]
    message_type = aggregate_type(interpreted, qualifying)

    return CanonicalTransactionRecord(
        hash=interpreted.hash,
        height=interpreted.height,
        account_id=account.id,
        category=RecordCategory.VALIDATOR,
        message_type=message_type,
        timestamp=interpreted.timestamp,
        amount=aggregate_amount(interpreted, qualifying, message_type),
        delegator=first.delegator,
        validator=first.validator or account.validator_address,
        dst_validator=first.dst_validator,
        direction=validator_direction(account, message_type, first),
        role=validator_role(account, first),
        raw_envelope=serialize_envelope(envelope),
        price_at_tx=price_at_tx,
    )


def build_records(
    account: TrackedAccount,
    envelope: Dict[str, Any],
    interpreted: CanonicalFields,
    price_at_tx: float = 0.0
) -> List[Tuple[RecordCategory, CanonicalTransactionRecord]]:
    """Zero, one or two records (wallet and/or validator) for an envelope."""
    messages = resolve_envelope_messages(envelope)
    records = []

    qualifying = wallet_messages(account, messages)
    if qualifying:
        records.append((
            RecordCategory.WALLET,
            build_wallet_record(account, envelope, interpreted, qualifying, price_at_tx),
        ))

    qualifying = validator_messages(account, messages)
    if qualifying:
        records.append((
            RecordCategory.VALIDATOR,
            build_validator_record(account, envelope, interpreted, qualifying, price_at_tx),
        ))

    return records
