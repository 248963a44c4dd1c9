"""Buyer interest in minted properties and owner approval of one buyer per token."""

from datetime import datetime, timezone
from typing import Optional

from src.models.common import new_id, normalize_address
from src.models.interest import InterestStats, InterestStatus, PropertyInterest
from src.models.requests import PropertyInterestRequest
from src.services.mirror_store import MirrorStore
from src.services.property_registry import MINTED_STATUSES
from src.utils.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from src.utils.logging import get_structured_logger, mask_address

logger = get_structured_logger(__name__)


def _address(value: str, field: str) -> str:
    try:
        return normalize_address(value)
    except ValueError:
        raise ValidationError(errors=[f"{field}: Valid wallet address is required"])


class InterestRegistry:
    """pending -> approved; approving one buyer returns the token's other interests to pending."""

    def __init__(self, store: MirrorStore):
        self.store = store

    async def get(self, interest_id: str) -> PropertyInterest:
        interest = await self.store.get_interest(interest_id)
        if interest is None:
            raise NotFoundError("Interest not found")
        return interest

    async def express(self, request: PropertyInterestRequest, buyer: str) -> PropertyInterest:
        record = await self.store.get_property_by_token(request.token_id)
        if record is None or record.status not in MINTED_STATUSES or record.owner_wallet is None:
            raise NotFoundError("Property not found or not minted")

        buyer = buyer.lower()
        if buyer == record.owner_wallet:
            raise ValidationError("Cannot express interest in your own property")

        now = datetime.now(timezone.utc)
        interest = await self.store.insert_interest(PropertyInterest(
            id=new_id(),
            token_id=request.token_id,
            property_id=record.property_id,
            buyer_address=buyer,
            owner_address=record.owner_wallet,
            message=request.message,
            offered_price=request.offered_price,
            created_at=now,
            updated_at=now,
        ))
        logger.info(
            "Interest expressed",
            interest_id=interest.id,
            token_id=interest.token_id,
            buyer=mask_address(buyer),
        )
        return interest

    async def approve(self, interest_id: str, caller: Optional[str]) -> PropertyInterest:
        interest = await self.get(interest_id)
        if caller is None or caller.lower() != interest.owner_address:
            raise AuthorizationError("Only the property owner can approve buyers")

        now = datetime.now(timezone.utc)
        for other in await self.store.list_interests(token_id=interest.token_id):
            if other.id != interest.id and other.status == InterestStatus.APPROVED:
                other.status = InterestStatus.PENDING
                other.approved_at = None
                other.updated_at = now
                await self.store.save_interest(other)

        interest.status = InterestStatus.APPROVED
        interest.approved_at = now
        interest.updated_at = now
        saved = await self.store.save_interest(interest)
        logger.info(
            "Buyer approved",
            interest_id=saved.id,
            token_id=saved.token_id,
            buyer=mask_address(saved.buyer_address),
        )
        return saved

    async def withdraw(self, interest_id: str, caller: Optional[str]) -> PropertyInterest:
        interest = await self.get(interest_id)
        if caller is None or caller.lower() != interest.buyer_address:
            raise AuthorizationError("Only the buyer can remove their interest")
        if interest.status == InterestStatus.APPROVED:
            raise ConflictError("Cannot remove approved interest. Contact the property owner.")
        await self.store.delete_interest(interest.id)
        logger.info("Interest removed", interest_id=interest.id, token_id=interest.token_id)
        return interest

    async def for_property(self, token_id: int) -> list[PropertyInterest]:
        """Oldest first."""
        return list(reversed(await self.store.list_interests(token_id=token_id)))

    async def by_buyer(self, buyer: str) -> list[PropertyInterest]:
        return await self.store.list_interests(buyer=_address(buyer, "buyerAddress"))

    async def by_owner(self, owner: str) -> list[PropertyInterest]:
        return await self.store.list_interests(owner=_address(owner, "ownerAddress"))

    async def stats(self) -> InterestStats:
        interests = await self.store.list_interests()
        return InterestStats(
            total_interests=len(interests),
            pending_interests=sum(1 for i in interests if i.status == InterestStatus.PENDING),
            approved_interests=sum(1 for i in interests if i.status == InterestStatus.APPROVED),
            properties_with_interest=len({i.token_id for i in interests}),
            unique_interested_buyers=len({i.buyer_address for i in interests}),
        )
