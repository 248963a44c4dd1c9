"""Canonical request bodies for the HTTP endpoints.

Clients historically sent the same value under several names (``txHash`` and
``transactionHash``, ``buyerAddress`` and ``buyer``...). Those aliases are
folded into the canonical camelCase names once, by ``normalize_aliases``,
before validation; nothing past this module sees an alias.
"""

from typing import Any, Literal, Optional, Type, TypeVar
from pydantic import BaseModel, ConfigDict, EmailStr, Field, ValidationError as PydanticValidationError, model_validator
from pydantic.alias_generators import to_camel

from src.models.common import WalletAddress, TxHash, Wei
from src.models.escrow import EscrowEventType
from src.models.ledger_entry import LedgerEntryType, LedgerEntryStatus
from src.models.user import KYCDocument
from src.models.property import PropertyDocument
from src.utils.errors import ValidationError

LEGACY_ALIASES: dict[str, tuple[str, ...]] = {
    "transactionHash": ("txHash", "transaction_hash", "hash"),
    "tokenId": ("tokenID", "token_id"),
    "buyer": ("buyerAddress", "buyer_address"),
    "seller": ("sellerAddress", "seller_address"),
    "walletAddress": ("wallet_address", "address"),
    "propertyId": ("property_id",),
    "eventType": ("event_type",),
    "blockNumber": ("block_number",),
    "physicalAddress": ("location", "physical_address"),
    "areaSqFt": ("areaInSqFt", "area"),
    "fullName": ("full_name", "name"),
    "type": ("transactionType",),
    "from": ("sellerAddress", "seller"),
    "to": ("buyerAddress", "buyer"),
    "value": ("amount", "price"),
}

T = TypeVar("T", bound=BaseModel)


def normalize_aliases(body: dict[str, Any], model: Type[BaseModel]) -> dict[str, Any]:
    """Fold legacy alias keys into canonical keys the model declares."""
    accepted = {field.alias or name for name, field in model.model_fields.items()}
    normalized = dict(body)
    for canonical, aliases in LEGACY_ALIASES.items():
        if canonical not in accepted:
            continue
        for alias in aliases:
            if alias in normalized and alias not in accepted:
                value = normalized.pop(alias)
                if normalized.get(canonical) in (None, ""):
                    normalized[canonical] = value
    return normalized


def parse_request(model: Type[T], body: Any) -> T:
    """Normalize and validate a JSON body, raising ValidationError on failure."""
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    try:
        return model.model_validate(normalize_aliases(body, model))
    except PydanticValidationError as e:
        errors = []
        for error in e.errors():
            location = ".".join(str(part) for part in error.get("loc", ()))
            message = error.get("msg", "invalid value")
            errors.append(f"{location}: {message}" if location else message)
        raise ValidationError("Validation errors", errors=errors) from e


class RequestModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class EscrowValidateRequest(RequestModel):
    token_id: int = Field(..., ge=0)
    buyer: WalletAddress
    seller: WalletAddress
    price: Wei


class EscrowTransactionRequest(RequestModel):
    token_id: int = Field(..., ge=0)
    transaction_hash: TxHash
    event_type: EscrowEventType
    buyer: Optional[WalletAddress] = None
    seller: Optional[WalletAddress] = None
    price: Optional[Wei] = None
    block_number: Optional[int] = Field(None, ge=0)


class CalculateCostRequest(RequestModel):
    price: Wei


class EscrowActionRequest(RequestModel):
    token_id: int = Field(..., ge=0)
    buyer: Optional[WalletAddress] = None
    price: Optional[Wei] = None
    amount: Optional[Wei] = None


class AdminLoginRequest(RequestModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class WalletLoginRequest(RequestModel):
    address: WalletAddress
    message: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)


class UserRegistrationRequest(RequestModel):
    wallet_address: WalletAddress
    full_name: str = Field(..., min_length=1)
    email: EmailStr
    documents: list[KYCDocument] = Field(default_factory=list)


class UserReviewRequest(RequestModel):
    wallet_address: WalletAddress
    action: Literal["verify", "reject"]
    notes: Optional[str] = None
    reason: Optional[str] = None
    blockchain_transaction_hash: Optional[TxHash] = None


class PropertySubmitRequest(RequestModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    physical_address: str = Field(..., min_length=1)
    area_sq_ft: Optional[float] = Field(None, gt=0)
    property_type: Optional[str] = None
    images: list[str] = Field(default_factory=list)
    documents: list[PropertyDocument] = Field(default_factory=list)


class PropertyReviewRequest(RequestModel):
    property_id: str = Field(..., min_length=1)
    action: Literal["approve", "reject"]
    notes: Optional[str] = None
    reason: Optional[str] = None


class PropertyMintRequest(RequestModel):
    property_id: str = Field(..., min_length=1)
    token_id: int = Field(..., ge=0)
    transaction_hash: TxHash


class PropertyListingRequest(RequestModel):
    property_id: str = Field(..., min_length=1)
    is_listed: bool
    listing_price: Optional[Wei] = None
    marketplace_transaction_hash: Optional[TxHash] = None

    @model_validator(mode="after")
    def _price_when_listed(self) -> "PropertyListingRequest":
        if self.is_listed and not self.listing_price:
            raise ValueError("listingPrice is required when listing a property")
        return self


class TransactionRecordRequest(RequestModel):
    type: LedgerEntryType
    transaction_hash: TxHash
    from_address: Optional[WalletAddress] = Field(None, alias="from")
    to_address: Optional[WalletAddress] = Field(None, alias="to")
    property_id: Optional[str] = None
    token_id: Optional[int] = Field(None, ge=0)
    value: Wei = 0
    status: LedgerEntryStatus = LedgerEntryStatus.CONFIRMED
    block_number: Optional[int] = Field(None, ge=0)


class PropertyInterestRequest(RequestModel):
    token_id: int = Field(..., ge=0)
    message: Optional[str] = Field(None, max_length=1000)
    offered_price: Optional[Wei] = None
