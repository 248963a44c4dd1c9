"""Property registry: submission, admin review, mint recording and market listings."""

from datetime import datetime, timezone
from typing import Optional

from src.models.common import new_id, normalize_address
from src.models.ledger_entry import LedgerEntryType
from src.models.property import PreviousOwner, PropertyRecord, PropertyStatus
from src.models.requests import (
    PropertyListingRequest,
    PropertyMintRequest,
    PropertyReviewRequest,
    PropertySubmitRequest,
)
from src.services.mirror_store import MirrorStore
from src.services.transaction_ledger import MAX_PAGE_SIZE, TransactionLedger
from src.utils.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from src.utils.logging import get_structured_logger, mask_address

logger = get_structured_logger(__name__)

# Statuses in which the property exists as a ledger token
MINTED_STATUSES = (PropertyStatus.MINTED,)


class PropertyRegistry:
    """Lifecycle: pending -> approved | rejected; approved -> minted (one-way)."""

    def __init__(self, store: MirrorStore, transactions: Optional[TransactionLedger] = None):
        self.store = store
        self.transactions = transactions or TransactionLedger(store)

    async def get(self, property_id: str) -> PropertyRecord:
        record = await self.store.get_property(property_id)
        if record is None:
            raise NotFoundError(f"Property not found: {property_id}")
        return record

    async def submit(self, request: PropertySubmitRequest, owner: str) -> PropertyRecord:
        now = datetime.now(timezone.utc)
        record = PropertyRecord(
            property_id=new_id(),
            owner=owner,
            name=request.name,
            description=request.description,
            physical_address=request.physical_address,
            area_sq_ft=request.area_sq_ft,
            property_type=request.property_type,
            images=request.images,
            documents=request.documents,
            status=PropertyStatus.PENDING,
            status_updated_at=now,
            created_at=now,
            updated_at=now,
        )
        created = await self.store.create_property(record)
        logger.info(
            "Property submitted",
            property_id=created.property_id,
            owner=mask_address(created.owner_wallet),
        )
        return created

    async def review(self, request: PropertyReviewRequest, reviewed_by: str) -> PropertyRecord:
        record = await self.get(request.property_id)
        if record.status != PropertyStatus.PENDING:
            raise ConflictError(f"Property already {record.status.value}")

        now = datetime.now(timezone.utc)
        updated = record.model_copy(deep=True)
        if request.action == "approve":
            updated.status = PropertyStatus.APPROVED
            updated.approval_notes = request.notes
        else:
            if not request.reason:
                raise ValidationError(errors=["reason: Rejection reason is required"])
            updated.status = PropertyStatus.REJECTED
            updated.rejection_reason = request.reason
        updated.status_updated_at = now
        updated.updated_at = now

        saved = await self.store.save_property(updated)
        logger.info(
            "Property reviewed",
            property_id=saved.property_id,
            status=saved.status.value,
            reviewed_by=reviewed_by,
        )
        return saved

    async def record_mint(
        self,
        request: PropertyMintRequest,
        caller: Optional[str] = None,
        is_admin: bool = False,
    ) -> PropertyRecord:
        """Mark an approved property as minted with its ledger token ID.

        Repeating the same mint (same token and hash) returns the record.
        """
        record = await self.get(request.property_id)
        if not is_admin and (caller is None or record.owner_wallet != caller.lower()):
            raise AuthorizationError("Only the property owner can record its mint")

        if record.status == PropertyStatus.MINTED:
            if record.token_id == request.token_id and record.mint_transaction_hash == request.transaction_hash:
                return record
            raise ConflictError("Property already minted")
        if record.status != PropertyStatus.APPROVED:
            raise ConflictError(f"Property must be approved before minting (status: {record.status.value})")

        existing = await self.store.get_property_by_token(request.token_id)
        if existing is not None and existing.property_id != record.property_id:
            raise ConflictError(f"Token {request.token_id} already assigned to another property")

        now = datetime.now(timezone.utc)
        updated = record.model_copy(deep=True)
        updated.status = PropertyStatus.MINTED
        updated.token_id = request.token_id
        updated.mint_transaction_hash = request.transaction_hash
        updated.status_updated_at = now
        updated.updated_at = now
        updated.previous_owners.append(PreviousOwner(
            address=None,
            transfer_date=now,
            transaction_hash=request.transaction_hash,
            transfer_method="mint",
        ))
        saved = await self.store.save_property(updated)
        logger.info(
            "Property minted",
            property_id=saved.property_id,
            token_id=saved.token_id,
            transaction_hash=request.transaction_hash,
        )

        try:
            await self.transactions.record(
                LedgerEntryType.MINT,
                request.transaction_hash,
                to_address=saved.owner_wallet,
                property_id=saved.property_id,
                token_id=saved.token_id,
                recorded_by=caller,
            )
        except Exception as e:
            logger.error(
                "Ledger entry append failed after mint",
                exc_info=True,
                property_id=saved.property_id,
                error=str(e),
            )
        return saved

    # Listings

    async def list_properties(
        self,
        *,
        status: Optional[str] = None,
        owner: Optional[str] = None,
        property_type: Optional[str] = None,
        is_listed: Optional[bool] = None,
        page: int = 1,
        limit: int = 20,
    ) -> dict:
        """Filtered, paginated property listing (newest first). ``status="all"`` means no filter."""
        if status == "all":
            status = None
        if status is not None and status not in {s.value for s in PropertyStatus}:
            raise ValidationError(errors=[f"status: must be one of {', '.join(s.value for s in PropertyStatus)}"])
        if owner is not None:
            owner = self._owner_address(owner)
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        records, total = await self.store.list_properties(
            status=status,
            owner=owner,
            property_type=property_type,
            is_listed=is_listed,
            limit=limit,
            offset=(page - 1) * limit,
        )
        return {
            "properties": records,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        }

    async def properties_by_owner(self, owner: str) -> list[PropertyRecord]:
        records, _ = await self.store.list_properties(owner=self._owner_address(owner), limit=MAX_PAGE_SIZE)
        return records

    async def pending_properties(self) -> list[PropertyRecord]:
        """Submissions awaiting admin review, oldest first."""
        records, _ = await self.store.list_properties(status=PropertyStatus.PENDING.value, limit=MAX_PAGE_SIZE)
        return list(reversed(records))

    async def update_listing(
        self,
        request: PropertyListingRequest,
        caller: Optional[str] = None,
        is_admin: bool = False,
    ) -> PropertyRecord:
        """List a minted property for sale at a price, or take it off the market."""
        record = await self.get(request.property_id)
        if not is_admin and (caller is None or record.owner_wallet != caller.lower()):
            raise AuthorizationError("Only the property owner can change its listing")
        if request.is_listed and record.status not in MINTED_STATUSES:
            raise ConflictError(f"Only minted properties can be listed (status: {record.status.value})")

        now = datetime.now(timezone.utc)
        updated = record.model_copy(deep=True)
        updated.is_listed = request.is_listed
        if request.is_listed:
            updated.listing_price = request.listing_price
            updated.listing_date = now
            if request.marketplace_transaction_hash:
                updated.marketplace_transaction_hash = request.marketplace_transaction_hash
        else:
            updated.listing_price = None
            updated.listing_date = None
        updated.updated_at = now

        saved = await self.store.save_property(updated)
        logger.info(
            "Property listing updated",
            property_id=saved.property_id,
            is_listed=saved.is_listed,
            listing_price=str(saved.listing_price) if saved.listing_price is not None else None,
        )
        return saved

    @staticmethod
    def _owner_address(owner: str) -> str:
        try:
            return normalize_address(owner)
        except ValueError:
            raise ValidationError(errors=["owner: Valid wallet address is required"])
