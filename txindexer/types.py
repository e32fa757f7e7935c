"""
Indexer Data Types

Pure data structures shared by the interpreter, crawler and store.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional


class RecordCategory(Enum):
    """Record namespace. One transaction may be relevant in both."""
    WALLET = "wallet"
    VALIDATOR = "validator"


class Direction(Enum):
    """Flow of value relative to the tracked account."""
    IN = "IN"
    OUT = "OUT"
    SELF = "SELF"


class ValidatorRole(Enum):
    """Whether a validator-context record was initiated by the account itself."""
    OWN = "own"
    INCOMING = "incoming"


@dataclass
class Chain:
    """A ledger network and its REST endpoint."""
    id: int
    name: str
    rest_url: str
    denom: str
    decimals: int = 6
    price_usd: float = 0.0


@dataclass
class TrackedAccount:
    """
    Ledger account under indexing plus its durable crawl state.

    The resume cursor is not stored here; it is derived from the highest
    indexed height in the store.
    """
    id: int
    label: str
    chain_id: int
    address: str
    validator_address: Optional[str] = None
    payout_address: Optional[str] = None
    is_syncing: bool = False
    last_heartbeat: Optional[float] = None
    notify_wallet_tx: bool = False
    notify_validator_tx: bool = False

    @property
    def distinct_payout_address(self) -> Optional[str]:
        """Payout address only when it differs from the primary address."""
        if self.payout_address and self.payout_address != self.address:
            return self.payout_address
        return None

    def owns_address(self, address: Optional[str]) -> bool:
        """True if address is the primary or payout address."""
        if not address:
            return False
        return address == self.address or address == self.distinct_payout_address


@dataclass(frozen=True)
class MessageFields:
    """Canonical fields resolved from a single message body."""
    message_type: str
    amount: Optional[str] = None
    sender: Optional[str] = None
    recipient: Optional[str] = None
    delegator: Optional[str] = None
    validator: Optional[str] = None
    dst_validator: Optional[str] = None


@dataclass
class CanonicalFields:
    """Transaction-level interpretation of one envelope."""
    message_type: str = "Unknown"
    amount: Optional[str] = None
    sender: Optional[str] = None
    recipient: Optional[str] = None
    delegator: Optional[str] = None
    validator: Optional[str] = None
    dst_validator: Optional[str] = None
    hash: str = ""
    height: int = 0
    timestamp: Optional[str] = None

    def merge_message(self, fields: MessageFields):
        """Copy every field resolved on a message."""
        self.message_type = fields.message_type
        self.amount = fields.amount
        self.sender = fields.sender
        self.recipient = fields.recipient
        self.delegator = fields.delegator
        self.validator = fields.validator
        self.dst_validator = fields.dst_validator


@dataclass
class CanonicalTransactionRecord:
    """
    Normalized, persisted relevance of one transaction to one account.

    Wallet records carry sender/recipient/direction, validator records carry
    delegator/validator/dst_validator/role.
    """
    hash: str
    height: int
    account_id: int
    category: RecordCategory
    message_type: str
    timestamp: Optional[str] = None
    amount: Optional[str] = None
    sender: Optional[str] = None
    recipient: Optional[str] = None
    delegator: Optional[str] = None
    validator: Optional[str] = None
    dst_validator: Optional[str] = None
    direction: Optional[Direction] = None
    role: Optional[ValidatorRole] = None
    raw_envelope: Optional[str] = None
    price_at_tx: float = 0.0
    id: Optional[int] = None

    def with_fields(self, **changes) -> "CanonicalTransactionRecord":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "hash": self.hash,
            "height": self.height,
            "account_id": self.account_id,
            "category": self.category.value,
            "type": self.message_type,
            "timestamp": self.timestamp,
            "amount": self.amount,
            "sender": self.sender,
            "recipient": self.recipient,
            "delegator": self.delegator,
            "validator": self.validator,
            "dst_validator": self.dst_validator,
            "direction": self.direction.value if self.direction else None,
            "role": self.role.value if self.role else None,
            "price_at_tx": self.price_at_tx,
        }


@dataclass
class CrawlResult:
    """Outcome of one account crawl."""
    account_id: int
    started: bool = False
    skipped_reason: Optional[str] = None
    records_created: int = 0
    filters_completed: List[str] = field(default_factory=list)
    filters_aborted: List[str] = field(default_factory=list)
    pages_fetched: int = 0
