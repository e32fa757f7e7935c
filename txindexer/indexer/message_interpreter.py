"""
Message Interpreter

Turns one raw tx_response envelope into canonical transaction fields.

Dispatch by message count:
- Single message: field tables, then event-log fallback
- Several messages: cross-chain receive focus, batch withdraw,
  batch client update, or first-message default
- Authorized execution: resolved from the meaningful inner message

Every step is best-effort. Malformed bodies, bad base64 or missing keys
leave fields as None; nothing here raises for data reasons.
"""

import logging
from typing import Any, Dict, List

from ..types import CanonicalFields, MessageFields
from .events import (
    AMOUNT_EXTRACTORS,
    RECIPIENT_EXTRACTORS,
    event_sources,
    extract_withdraw_totals,
    first_resolved,
)
from .field_rules import (
    CROSS_CHAIN_RECEIVE_TYPE,
    MessageFamily,
    classify,
    first_present,
    is_withdraw_family,
    safe_resolve,
    type_tag,
)

BATCH_WITHDRAW_PAIR_TYPE = "BatchWithdraw(Reward+Commission)"
BATCH_UPDATE_CLIENT_AMOUNT = "IBC Update"


def envelope_messages(envelope: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Top-level message bodies of an envelope."""
    tx = envelope.get("tx") if isinstance(envelope, dict) else None
    if not isinstance(tx, dict):
        return []
    body = tx.get("body") or {}
    messages = body.get("messages") if isinstance(body, dict) else None
    return [m for m in messages or [] if isinstance(m, dict)]


def is_batch_family(message_type: str) -> bool:
    """Types the interpreter synthesizes for whole multi-message transactions."""
    return message_type.startswith("BatchWithdraw") or message_type.startswith("BatchUpdateClient")


class MessageInterpreter:
    """
    Envelope -> CanonicalFields.

    Usage:
        interpreter = MessageInterpreter()
        fields = interpreter.interpret(tx_response)
    """

    def __init__(self):
        self._logger = logging.getLogger("MessageInterpreter")
        self._interpreted = 0
        self._unresolved_amounts = 0

    def interpret(self, envelope: Dict[str, Any]) -> CanonicalFields:
        result = CanonicalFields()
        if not isinstance(envelope, dict):
            return result

        result.hash = envelope.get("txhash") or ""
        result.height = _to_int(envelope.get("height"))
        result.timestamp = envelope.get("timestamp")

        if not isinstance(envelope.get("tx"), dict):
            return result

        messages = envelope_messages(envelope)
        sources = event_sources(envelope)

        if len(messages) > 1:
            self._interpret_batch(messages, sources, result)
        elif messages:
            self._interpret_single(messages[0], sources, result)

        self._interpreted += 1
        if result.amount is None:
            self._unresolved_amounts += 1
        return result

    # =========================================================================
    # Single Message
    # =========================================================================

    def _interpret_single(self, msg: Dict[str, Any], sources: List[List[Dict]], result: CanonicalFields):
        result.merge_message(safe_resolve(msg))

        if "Withdraw" in result.message_type:
            self._apply_withdraw_events(sources, result)

        self._apply_log_fallback(sources, result)

    # =========================================================================
    # Multiple Messages
    # =========================================================================

    def _interpret_batch(self, messages: List[Dict[str, Any]], sources: List[List[Dict]], result: CanonicalFields):
        families = [classify(m) for m in messages]

        # Relayer txs bundle UpdateClient with the packet; the packet is what matters
        if MessageFamily.CROSS_CHAIN_RECEIVE in families:
            recv = messages[families.index(MessageFamily.CROSS_CHAIN_RECEIVE)]
            fields = safe_resolve(recv)
            result.merge_message(fields)
            result.message_type = CROSS_CHAIN_RECEIVE_TYPE
            if result.amount and result.recipient:
                return

        if all(is_withdraw_family(m) for m in messages):
            self._interpret_batch_withdraw(messages, families, sources, result)
            return

        if all(f == MessageFamily.UPDATE_CLIENT for f in families):
            result.message_type = f"BatchUpdateClient({len(messages)})"
            result.sender = messages[0].get("signer")
            result.amount = BATCH_UPDATE_CLIENT_AMOUNT
            return

        result.merge_message(safe_resolve(messages[0]))
        result.message_type = type_tag(messages[0])
        self._apply_log_fallback(sources, result)

    def _interpret_batch_withdraw(
        self,
        messages: List[Dict[str, Any]],
        families: List[MessageFamily],
        sources: List[List[Dict]],
        result: CanonicalFields
    ):
        if MessageFamily.WITHDRAW_REWARD in families and MessageFamily.WITHDRAW_COMMISSION in families:
            result.message_type = BATCH_WITHDRAW_PAIR_TYPE
        else:
            result.message_type = f"BatchWithdraw({len(messages)})"

        first = messages[0]
        result.delegator = first_present(first, ["delegator_address", "delegator"])
        result.validator = first.get("validator_address") or next(
            (m["validator_address"] for m in messages if m.get("validator_address")), None
        )
        result.sender = result.delegator
        result.amount = None
        result.recipient = None

        self._apply_withdraw_events(sources, result)
        self._apply_log_fallback(sources, result)

    # =========================================================================
    # Event-Log Fallbacks
    # =========================================================================

    def _apply_withdraw_events(self, sources: List[List[Dict]], result: CanonicalFields):
        """Settled withdrawal amount always comes from the event log (first source that has it)."""
        for events in sources:
            totals = extract_withdraw_totals(events)
            amount = totals.format()
            if not amount:
                continue
            result.amount = amount
            result.validator = result.validator or totals.validator
            result.delegator = result.delegator or totals.delegator
            return

    def _apply_log_fallback(self, sources: List[List[Dict]], result: CanonicalFields):
        for events in sources:
            if not result.amount:
                result.amount = first_resolved(AMOUNT_EXTRACTORS, events)
            if not result.recipient:
                result.recipient = first_resolved(RECIPIENT_EXTRACTORS, events)

    # =========================================================================
    # Stats
    # =========================================================================

    def get_stats(self) -> Dict:
        return {
            "interpreted": self._interpreted,
            "unresolved_amounts": self._unresolved_amounts,
        }


def resolve_all(messages: List[Dict[str, Any]]) -> List[MessageFields]:
    """Resolve each message body independently."""
    return [safe_resolve(m) for m in messages]


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0
