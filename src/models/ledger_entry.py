"""Transaction ledger entry - append-only audit record keyed by transaction hash."""

from enum import Enum
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field

from src.models.common import WalletAddress, TxHash, Wei
from src.models.escrow import EscrowEventType


class LedgerEntryType(str, Enum):
    MINT = "mint"
    TRANSFER = "transfer"
    SALE = "sale"
    ESCROW_CREATED = "escrow_created"
    ESCROW_FUNDED = "escrow_funded"
    ESCROW_COMPLETED = "escrow_completed"
    ESCROW_CANCELLED = "escrow_cancelled"
    ESCROW_REFUNDED = "escrow_refunded"

    @classmethod
    def for_escrow_event(cls, event: EscrowEventType) -> "LedgerEntryType":
        return cls(f"escrow_{event.value}")


class LedgerEntryStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class LedgerEntry(BaseModel):
    """Immutable once stored; a repeated transaction_hash returns the stored entry."""
    id: str = Field(..., description="Entry ID (ULID)")
    type: LedgerEntryType
    from_address: Optional[WalletAddress] = None
    to_address: Optional[WalletAddress] = None
    property_id: Optional[str] = None
    token_id: Optional[int] = Field(None, ge=0)
    value: Wei = 0
    status: LedgerEntryStatus = LedgerEntryStatus.CONFIRMED
    transaction_hash: TxHash
    block_number: Optional[int] = None
    recorded_by: Optional[str] = None
    timestamp: datetime
