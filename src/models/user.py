"""User / KYC record."""

from enum import Enum
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field

from src.models.common import WalletAddress, TxHash

REQUIRED_KYC_DOCUMENTS = ("government_id", "proof_of_address", "selfie_with_id")


class KYCStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class KYCDocument(BaseModel):
    type: str = Field(..., description="government_id, proof_of_address, selfie_with_id")
    filename: str
    path: str
    uploaded_at: Optional[datetime] = None
    verified: bool = False


class VerificationDetails(BaseModel):
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    rejected_at: Optional[datetime] = None


class UserRecord(BaseModel):
    """KYC applicant keyed by wallet address."""
    wallet_address: WalletAddress
    full_name: str = Field(..., min_length=1)
    email: EmailStr
    status: KYCStatus = KYCStatus.PENDING
    documents: list[KYCDocument] = Field(default_factory=list)
    verification: VerificationDetails = Field(default_factory=VerificationDetails)
    blockchain_verified: bool = Field(default=False, description="Cached flag; the ledger remains authoritative")
    blockchain_transaction_hash: Optional[TxHash] = None
    registered_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
