"""Escrow state machine: allowed transitions, fee rule and per-operation guards.

The functions here are pure. The ledger enforces the same rules at commit
time; the engine runs them before submitting so callers get a specific
reason instead of a reverted transaction.
"""

from typing import Optional

from src.models.escrow import EscrowDeal, EscrowStatus
from src.utils.errors import GuardViolation

BASIS_POINTS_DENOMINATOR = 10_000

ALLOWED_TRANSITIONS: dict[Optional[EscrowStatus], frozenset[EscrowStatus]] = {
    None: frozenset({EscrowStatus.PENDING}),
    EscrowStatus.PENDING: frozenset({EscrowStatus.FUNDED, EscrowStatus.CANCELLED}),
    EscrowStatus.FUNDED: frozenset({EscrowStatus.COMPLETED, EscrowStatus.REFUNDED}),
    EscrowStatus.COMPLETED: frozenset(),
    EscrowStatus.CANCELLED: frozenset(),
    EscrowStatus.REFUNDED: frozenset(),
}


class GuardReason:
    INVALID_PRICE = "Invalid price"
    SAME_PARTY = "Buyer cannot be seller"
    NOT_OWNER = "Not token owner"
    ESCROW_EXISTS = "Escrow exists"
    BUYER_NOT_VERIFIED = "Buyer not verified"
    SELLER_NOT_VERIFIED = "Seller not verified"
    NOT_BUYER = "Not buyer"
    NOT_SELLER = "Not seller"
    NOT_PARTY = "Not authorized"
    INCORRECT_AMOUNT = "Incorrect amount"
    INVALID_STATUS = "Invalid status"
    ALREADY_FUNDED = "Funds already deposited"
    NOT_FOUND = "Escrow not found"


def can_transition(current: Optional[EscrowStatus], target: EscrowStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def assert_transition(current: Optional[EscrowStatus], target: EscrowStatus) -> None:
    if not can_transition(current, target):
        raise GuardViolation(GuardReason.INVALID_STATUS)


def compute_fee(price: int, fee_basis_points: int) -> int:
    """Fee in minor units, truncated toward zero."""
    if price < 0 or not 0 <= fee_basis_points <= BASIS_POINTS_DENOMINATOR:
        raise ValueError("price must be >= 0 and fee_basis_points within 0..10000")
    return price * fee_basis_points // BASIS_POINTS_DENOMINATOR


def format_basis_points(fee_basis_points: int) -> str:
    whole, rest = divmod(fee_basis_points, 100)
    return f"{whole}.{rest:02d}%"


def _same(a: Optional[str], b: Optional[str]) -> bool:
    return bool(a) and bool(b) and a.lower() == b.lower()


def create_guard(
    caller: str,
    token_owner: Optional[str],
    existing: Optional[EscrowDeal],
    buyer: str,
    price: int,
    buyer_verified: bool,
    seller_verified: bool,
) -> Optional[str]:
    """Return the first failing reason for createEscrow, or None."""
    if price <= 0:
        return GuardReason.INVALID_PRICE
    if not _same(caller, token_owner):
        return GuardReason.NOT_OWNER
    if existing is not None and existing.status.is_active:
        return GuardReason.ESCROW_EXISTS
    if _same(buyer, caller):
        return GuardReason.SAME_PARTY
    if not buyer_verified:
        return GuardReason.BUYER_NOT_VERIFIED
    if not seller_verified:
        return GuardReason.SELLER_NOT_VERIFIED
    return None


def deposit_guard(caller: str, deal: Optional[EscrowDeal], amount: int) -> Optional[str]:
    if deal is None:
        return GuardReason.NOT_FOUND
    if not can_transition(deal.status, EscrowStatus.FUNDED):
        return GuardReason.INVALID_STATUS
    if not _same(caller, deal.buyer):
        return GuardReason.NOT_BUYER
    if amount != deal.total:
        return GuardReason.INCORRECT_AMOUNT
    return None


def cancel_guard(caller: str, deal: Optional[EscrowDeal]) -> Optional[str]:
    if deal is None:
        return GuardReason.NOT_FOUND
    if deal.status == EscrowStatus.FUNDED:
        return GuardReason.ALREADY_FUNDED
    if not can_transition(deal.status, EscrowStatus.CANCELLED):
        return GuardReason.INVALID_STATUS
    if not deal.involves(caller):
        return GuardReason.NOT_PARTY
    return None


def complete_guard(
    caller: str,
    deal: Optional[EscrowDeal],
    buyer_verified: bool,
    seller_verified: bool,
) -> Optional[str]:
    if deal is None:
        return GuardReason.NOT_FOUND
    if not can_transition(deal.status, EscrowStatus.COMPLETED):
        return GuardReason.INVALID_STATUS
    if not deal.involves(caller):
        return GuardReason.NOT_PARTY
    if not buyer_verified:
        return GuardReason.BUYER_NOT_VERIFIED
    if not seller_verified:
        return GuardReason.SELLER_NOT_VERIFIED
    return None


def refund_guard(caller: str, deal: Optional[EscrowDeal]) -> Optional[str]:
    if deal is None:
        return GuardReason.NOT_FOUND
    if not can_transition(deal.status, EscrowStatus.REFUNDED):
        return GuardReason.INVALID_STATUS
    if not _same(caller, deal.seller):
        return GuardReason.NOT_SELLER
    return None


def raise_if(reason: Optional[str]) -> None:
    if reason is not None:
        raise GuardViolation(reason)
