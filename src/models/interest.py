"""Buyer interest in a minted property."""

from enum import Enum
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field

from src.models.common import WalletAddress, Wei


class InterestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"


class PropertyInterest(BaseModel):
    """One per (token, buyer). At most one interest per token is approved."""
    id: str = Field(..., description="Interest ID (ULID)")
    token_id: int = Field(..., ge=0)
    property_id: Optional[str] = None
    buyer_address: WalletAddress
    owner_address: WalletAddress
    status: InterestStatus = InterestStatus.PENDING
    message: Optional[str] = None
    offered_price: Optional[Wei] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None


class InterestStats(BaseModel):
    total_interests: int = 0
    pending_interests: int = 0
    approved_interests: int = 0
    properties_with_interest: int = 0
    unique_interested_buyers: int = 0
