"""Property record with its escrow mirror."""

from enum import Enum
from typing import Any, Literal, Optional
from datetime import datetime
from pydantic import BaseModel, Field, field_validator

from src.models.common import WalletAddress, TxHash, Wei
from src.models.escrow import EscrowStatus
from src.models.identity import OwnerIdentity, resolve_owner, owner_address


class PropertyStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    MINTED = "minted"


class EscrowTransactionHashes(BaseModel):
    creation: Optional[TxHash] = None
    funding: Optional[TxHash] = None
    completion: Optional[TxHash] = None
    cancellation: Optional[TxHash] = None
    refund: Optional[TxHash] = None


class EscrowHistoryEntry(BaseModel):
    """One deal in the property's escrow history."""
    buyer: WalletAddress
    seller: WalletAddress
    price: Wei
    fee: Wei
    status: EscrowStatus
    funds_deposited: bool = False
    created_at: datetime
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    transaction_hashes: EscrowTransactionHashes = Field(default_factory=EscrowTransactionHashes)
    notes: Optional[str] = None


class EscrowInfo(BaseModel):
    """Summary of the current escrow, if any."""
    has_active_escrow: bool = False
    current_escrow_buyer: Optional[WalletAddress] = None
    current_escrow_seller: Optional[WalletAddress] = None
    current_escrow_price: Optional[Wei] = None
    current_escrow_fee: Optional[Wei] = None
    current_escrow_status: Optional[EscrowStatus] = None
    escrow_created_at: Optional[datetime] = None
    escrow_funds_deposited: bool = False
    escrow_contract_address: Optional[str] = None


class TransactionMetrics(BaseModel):
    total_sales: int = Field(default=0, ge=0)
    total_volume: Wei = 0
    average_sale_price: Wei = 0
    escrow_usage_count: int = Field(default=0, ge=0)
    cancelled_escrows_count: int = Field(default=0, ge=0)
    refunded_escrows_count: int = Field(default=0, ge=0)
    last_market_activity: Optional[datetime] = None


class PreviousOwner(BaseModel):
    address: Optional[str] = None
    transfer_date: datetime
    transaction_hash: Optional[TxHash] = None
    price: Optional[Wei] = None
    transfer_method: Literal["direct", "escrow", "mint", "admin"] = "direct"


class PropertyDocument(BaseModel):
    """Reference to an uploaded document; storage lives elsewhere."""
    type: str
    filename: str
    path: str
    uploaded_at: Optional[datetime] = None


class PropertyRecord(BaseModel):
    """Off-chain property record, keyed by property_id and (once minted) token_id."""
    property_id: str = Field(..., description="Property ID (ULID)")
    token_id: Optional[int] = Field(None, ge=0, description="Ledger token ID once minted")
    owner: OwnerIdentity
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    physical_address: str = Field(..., min_length=1)
    area_sq_ft: Optional[float] = Field(None, gt=0)
    property_type: Optional[str] = None
    images: list[str] = Field(default_factory=list)
    documents: list[PropertyDocument] = Field(default_factory=list)
    status: PropertyStatus = PropertyStatus.PENDING
    rejection_reason: Optional[str] = None
    approval_notes: Optional[str] = None
    status_updated_at: Optional[datetime] = None
    mint_transaction_hash: Optional[TxHash] = None
    escrow_info: EscrowInfo = Field(default_factory=EscrowInfo)
    escrow_history: list[EscrowHistoryEntry] = Field(default_factory=list)
    previous_owners: list[PreviousOwner] = Field(default_factory=list)
    transaction_metrics: TransactionMetrics = Field(default_factory=TransactionMetrics)
    last_sale_price: Optional[Wei] = None
    last_sale_date: Optional[datetime] = None
    is_listed: bool = False
    listing_price: Optional[Wei] = None
    listing_date: Optional[datetime] = None
    marketplace_transaction_hash: Optional[TxHash] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("owner", mode="before")
    @classmethod
    def _resolve_owner(cls, value: Any) -> Any:
        return resolve_owner(value).model_dump()

    @property
    def owner_wallet(self) -> Optional[str]:
        return owner_address(self.owner)

    @property
    def latest_escrow(self) -> Optional[EscrowHistoryEntry]:
        return self.escrow_history[-1] if self.escrow_history else None

    @classmethod
    def from_legacy(cls, data: dict[str, Any]) -> "PropertyRecord":
        """Build a record from a payload that may use legacy field names.

        ``location``/``physicalAddress`` map to physical_address and
        ``area``/``areaInSqFt`` map to area_sq_ft. Canonical names win when
        both are present.
        """
        payload = dict(data)
        legacy_pairs = {
            "physical_address": ("physicalAddress", "location"),
            "area_sq_ft": ("areaInSqFt", "area"),
            "property_id": ("propertyId",),
            "token_id": ("tokenId",),
            "property_type": ("propertyType",),
            "is_listed": ("isListed",),
            "listing_price": ("listingPrice",),
        }
        for canonical, aliases in legacy_pairs.items():
            for alias in aliases:
                value = payload.pop(alias, None)
                if payload.get(canonical) is None and value not in (None, ""):
                    payload[canonical] = value
        if "owner" not in payload:
            for alias in ("ownerAddress", "currentOwner"):
                if payload.get(alias):
                    payload["owner"] = payload[alias]
                    break
        payload.pop("ownerAddress", None)
        payload.pop("currentOwner", None)
        return cls.model_validate(payload)
