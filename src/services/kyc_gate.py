"""KYC gate: the ledger's KYC registry decides who may move funds."""

from src.services.escrow_ledger import EscrowLedger
from src.services.escrow_state_machine import GuardReason
from src.utils.errors import GuardViolation, LedgerUnavailable
from src.utils.logging import get_structured_logger, mask_address

logger = get_structured_logger(__name__)

_ROLE_REASONS = {
    "buyer": GuardReason.BUYER_NOT_VERIFIED,
    "seller": GuardReason.SELLER_NOT_VERIFIED,
}


class KYCGate:
    """Fail-closed wrapper around the KYC registry.

    The users table keeps a cached ``blockchain_verified`` flag for display;
    it is never consulted here.
    """

    def __init__(self, ledger: EscrowLedger):
        self.ledger = ledger

    async def is_verified(self, address: str) -> bool:
        try:
            return await self.ledger.is_kyc_verified(address)
        except LedgerUnavailable as e:
            logger.warning(
                "KYC registry unreachable, treating address as unverified",
                address=mask_address(address),
                error=e.message,
            )
            return False

    async def require_verified(self, address: str, role: str) -> None:
        if role not in _ROLE_REASONS:
            raise ValueError(f"Unknown KYC role: {role}")
        if not await self.is_verified(address):
            raise GuardViolation(_ROLE_REASONS[role])
