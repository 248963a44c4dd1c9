"""Escrow deal models mirroring the on-ledger escrow contract."""

from enum import Enum
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field

from src.models.common import WalletAddress, TxHash, Wei


class EscrowStatus(str, Enum):
    """Escrow deal status; ordinal order matches the contract enum."""
    PENDING = "PENDING"
    FUNDED = "FUNDED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"

    @classmethod
    def from_ordinal(cls, value: int) -> "EscrowStatus":
        return list(cls)[value]

    @property
    def ordinal(self) -> int:
        return list(EscrowStatus).index(self)

    @property
    def is_active(self) -> bool:
        return self in (EscrowStatus.PENDING, EscrowStatus.FUNDED)

    @property
    def is_terminal(self) -> bool:
        return not self.is_active


class EscrowEventType(str, Enum):
    """Confirmed ledger events, as reported by clients and the event listener."""
    CREATED = "created"
    FUNDED = "funded"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    @property
    def target_status(self) -> EscrowStatus:
        return _EVENT_STATUS[self]

    @property
    def hash_key(self) -> str:
        """Key in EscrowHistoryEntry.transaction_hashes for this event."""
        return _EVENT_HASH_KEY[self]

    @classmethod
    def from_contract_event(cls, name: str) -> "EscrowEventType":
        return _CONTRACT_EVENTS[name]


_EVENT_STATUS = {
    EscrowEventType.CREATED: EscrowStatus.PENDING,
    EscrowEventType.FUNDED: EscrowStatus.FUNDED,
    EscrowEventType.COMPLETED: EscrowStatus.COMPLETED,
    EscrowEventType.CANCELLED: EscrowStatus.CANCELLED,
    EscrowEventType.REFUNDED: EscrowStatus.REFUNDED,
}

_EVENT_HASH_KEY = {
    EscrowEventType.CREATED: "creation",
    EscrowEventType.FUNDED: "funding",
    EscrowEventType.COMPLETED: "completion",
    EscrowEventType.CANCELLED: "cancellation",
    EscrowEventType.REFUNDED: "refund",
}

_CONTRACT_EVENTS = {
    "EscrowCreated": EscrowEventType.CREATED,
    "FundsDeposited": EscrowEventType.FUNDED,
    "EscrowCompleted": EscrowEventType.COMPLETED,
    "EscrowCancelled": EscrowEventType.CANCELLED,
    "FundsRefunded": EscrowEventType.REFUNDED,
}

STATUS_HASH_KEY = {event.target_status: event.hash_key for event in EscrowEventType}


class EscrowDeal(BaseModel):
    """Authoritative deal state as read from the ledger."""
    token_id: int = Field(..., ge=0, description="Token under sale")
    seller: WalletAddress
    buyer: WalletAddress
    price: Wei
    fee: Wei = Field(..., description="Frozen at creation from the contract fee rate")
    status: EscrowStatus
    funds_deposited: bool = False
    created_at: datetime

    @property
    def total(self) -> int:
        return self.price + self.fee

    def involves(self, address: str) -> bool:
        address = address.lower()
        return address in (self.seller, self.buyer)


class CostBreakdown(BaseModel):
    """Price, fee and total for a prospective deal."""
    price: Wei
    fee: Wei
    total: Wei
    price_eth: str
    fee_eth: str
    total_eth: str
    fee_basis_points: int


class EscrowStats(BaseModel):
    """Fee configuration exposed by the escrow contract."""
    fee_basis_points: int
    fee_percentage_formatted: str
    fee_recipient: WalletAddress
    contract_address: str


class PendingTransaction(BaseModel):
    """Handle for a submitted, not yet confirmed, ledger transaction."""
    transaction_hash: TxHash
    operation: str
    token_id: int
    submitted_at: datetime


class TransactionReceipt(BaseModel):
    """Outcome of a ledger transaction once mined."""
    transaction_hash: TxHash
    succeeded: bool
    block_number: Optional[int] = None
    revert_reason: Optional[str] = None


class LedgerEvent(BaseModel):
    """Decoded escrow contract event."""
    name: str = Field(..., description="EscrowCreated, FundsDeposited, ...")
    token_id: int
    transaction_hash: TxHash
    block_number: int
    log_index: int = 0
    seller: Optional[WalletAddress] = None
    buyer: Optional[WalletAddress] = None
    price: Optional[Wei] = None
    amount: Optional[Wei] = None

    @property
    def event_type(self) -> EscrowEventType:
        return EscrowEventType.from_contract_event(self.name)


class EscrowActionResult(BaseModel):
    """Result of an engine operation."""
    operation: str
    token_id: int
    state: str = Field(..., description="confirmed or pending")
    transaction_hash: TxHash
    block_number: Optional[int] = None
    deal: Optional[EscrowDeal] = None
    mirror_synced: bool = False
