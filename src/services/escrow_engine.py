"""Escrow engine: guarded ledger transitions plus mirror and ledger-entry follow-up.

Every mutating operation reads the ledger deal, runs the pre-flight guards
(KYC included), submits the transaction, then awaits confirmation for at most
``confirmation_timeout`` seconds. A confirmed transition updates the property
mirror and appends a transaction ledger entry; both are best-effort and never
undo the ledger change. An unconfirmed submission comes back as a ``pending``
result carrying its transaction hash.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from web3 import Web3

from src.models.common import normalize_address
from src.models.escrow import (
    CostBreakdown,
    EscrowActionResult,
    EscrowDeal,
    EscrowEventType,
    EscrowStats,
    EscrowStatus,
    LedgerEvent,
    PendingTransaction,
)
from src.models.ledger_entry import LedgerEntry, LedgerEntryType
from src.models.requests import EscrowTransactionRequest, EscrowValidateRequest
from src.services import escrow_mirror
from src.services import escrow_state_machine as sm
from src.services.escrow_ledger import EscrowLedger, LocalEscrowLedger
from src.services.interest_registry import InterestRegistry
from src.services.kyc_gate import KYCGate
from src.services.mirror_store import MirrorStore, SupabaseMirrorStore
from src.services.property_registry import MINTED_STATUSES, PropertyRegistry
from src.services.transaction_ledger import TransactionLedger
from src.services.user_registry import UserRegistry
from src.utils.config import Settings, get_settings
from src.utils.errors import (
    ConflictError,
    EscrowBackendError,
    GuardViolation,
    LedgerUnavailable,
    NotFoundError,
    ValidationError,
)
from src.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _address(value: Any, field: str) -> str:
    try:
        return normalize_address(value)
    except ValueError:
        raise ValidationError(errors=[f"{field}: Invalid address"])


def to_eth(amount: int) -> str:
    """Human-readable ether amount; display only."""
    return str(Web3.from_wei(amount, "ether"))


class EscrowEngine:
    """Coordinates the escrow contract, the KYC gate and the off-chain mirror."""

    def __init__(
        self,
        ledger: EscrowLedger,
        store: MirrorStore,
        confirmation_timeout: float = 120.0,
    ):
        self.ledger = ledger
        self.store = store
        self.kyc = KYCGate(ledger)
        self.transactions = TransactionLedger(store)
        self.confirmation_timeout = confirmation_timeout

    # Reads

    async def get_deal(self, token_id: int) -> Optional[EscrowDeal]:
        return await self.ledger.get_deal(token_id)

    async def escrow_exists(self, token_id: int) -> bool:
        """True while the token has a PENDING or FUNDED deal."""
        deal = await self.ledger.get_deal(token_id)
        return deal is not None and deal.status.is_active

    async def get_stats(self) -> EscrowStats:
        fee_bps = await self.ledger.fee_basis_points()
        return EscrowStats(
            fee_basis_points=fee_bps,
            fee_percentage_formatted=sm.format_basis_points(fee_bps),
            fee_recipient=await self.ledger.fee_recipient(),
            contract_address=self.ledger.contract_address,
        )

    async def calculate_cost(self, price: int) -> CostBreakdown:
        fee_bps = await self.ledger.fee_basis_points()
        fee = sm.compute_fee(price, fee_bps)
        total = price + fee
        return CostBreakdown(
            price=price,
            fee=fee,
            total=total,
            price_eth=to_eth(price),
            fee_eth=to_eth(fee),
            total_eth=to_eth(total),
            fee_basis_points=fee_bps,
        )

    async def validate_escrow(self, request: EscrowValidateRequest) -> dict:
        """Pre-flight check for a prospective deal; collects every problem found."""
        errors: list[str] = []
        if request.price <= 0:
            errors.append("Valid price is required")
        if request.buyer == request.seller:
            errors.append("Buyer and seller cannot be the same")

        record = await self.store.get_property_by_token(request.token_id)
        if record is None:
            errors.append("Property not found")
        elif record.status not in MINTED_STATUSES:
            errors.append("Property is not available for sale")

        if await self.escrow_exists(request.token_id):
            errors.append("Escrow already exists for this property")

        owner = await self.ledger.owner_of(request.token_id)
        if owner != request.seller:
            errors.append("Seller does not own this token")
        if not await self.kyc.is_verified(request.buyer):
            errors.append(sm.GuardReason.BUYER_NOT_VERIFIED)
        if not await self.kyc.is_verified(request.seller):
            errors.append(sm.GuardReason.SELLER_NOT_VERIFIED)

        return {"is_valid": not errors, "errors": errors}

    async def get_deal_view(self, token_id: int) -> dict:
        """Ledger deal plus the property mirror, corrected from the ledger."""
        deal = await self.ledger.get_deal(token_id)
        record = await self.store.get_property_by_token(token_id)
        if deal is None and record is None:
            raise NotFoundError("Escrow not found")

        reconciled = False
        if record is not None:
            updated, changed = escrow_mirror.reconcile(record, deal, _utcnow(), self.ledger.contract_address)
            if changed:
                try:
                    record = await self.store.save_property(updated)
                    reconciled = True
                except EscrowBackendError as e:
                    logger.error("Failed to persist reconciled mirror", token_id=token_id, error=e.message)
                    record = updated

        return {
            "deal": deal,
            "total": deal.total if deal else None,
            "property": record,
            "reconciled": reconciled,
        }

    async def get_user_deals(self, address: str) -> list[dict]:
        """Deals on properties the address owns or is party to, read from the ledger."""
        address = _address(address, "address")
        deals = []
        for record in await self.store.find_properties_for_address(address):
            if record.token_id is None:
                continue
            deal = await self.ledger.get_deal(record.token_id)
            if deal is None or not deal.involves(address):
                continue
            deals.append({
                "deal": deal,
                "property": {
                    "property_id": record.property_id,
                    "name": record.name,
                    "description": record.description,
                    "physical_address": record.physical_address,
                    "property_type": record.property_type,
                    "images": record.images,
                },
            })
        return deals

    async def get_token_history(self, token_id: int) -> list[LedgerEntry]:
        return await self.transactions.entries_for_token(token_id)

    async def get_events(self, from_block: int = 0, to_block: Optional[int] = None) -> list[LedgerEvent]:
        return await self.ledger.get_events(from_block, to_block)

    # Transitions

    async def create_escrow(self, caller: str, token_id: int, buyer: str, price: int) -> EscrowActionResult:
        caller = _address(caller, "caller")
        buyer = _address(buyer, "buyer")
        if price <= 0:
            raise GuardViolation(sm.GuardReason.INVALID_PRICE)

        existing = await self.ledger.get_deal(token_id)
        token_owner = await self.ledger.owner_of(token_id)
        sm.raise_if(sm.create_guard(
            caller=caller,
            token_owner=token_owner,
            existing=existing,
            buyer=buyer,
            price=price,
            buyer_verified=await self.kyc.is_verified(buyer),
            seller_verified=await self.kyc.is_verified(caller),
        ))

        pending = await self.ledger.submit_create_escrow(caller, token_id, buyer, price)
        return await self._confirm(pending, EscrowEventType.CREATED, caller)

    async def deposit_funds(self, caller: str, token_id: int, amount: int) -> EscrowActionResult:
        caller = _address(caller, "caller")
        deal = await self.ledger.get_deal(token_id)
        sm.raise_if(sm.deposit_guard(caller, deal, amount))

        pending = await self.ledger.submit_deposit_funds(caller, token_id, amount)
        return await self._confirm(pending, EscrowEventType.FUNDED, caller)

    async def complete_deal(self, caller: str, token_id: int) -> EscrowActionResult:
        caller = _address(caller, "caller")
        deal = await self.ledger.get_deal(token_id)
        buyer_verified = seller_verified = False
        if deal is not None:
            # KYC is re-checked at completion, not carried over from creation
            buyer_verified = await self.kyc.is_verified(deal.buyer)
            seller_verified = await self.kyc.is_verified(deal.seller)
        sm.raise_if(sm.complete_guard(caller, deal, buyer_verified, seller_verified))

        pending = await self.ledger.submit_complete_deal(caller, token_id)
        return await self._confirm(pending, EscrowEventType.COMPLETED, caller)

    async def cancel_escrow(self, caller: str, token_id: int) -> EscrowActionResult:
        caller = _address(caller, "caller")
        deal = await self.ledger.get_deal(token_id)
        sm.raise_if(sm.cancel_guard(caller, deal))

        pending = await self.ledger.submit_cancel_escrow(caller, token_id)
        return await self._confirm(pending, EscrowEventType.CANCELLED, caller)

    async def refund_buyer(self, caller: str, token_id: int) -> EscrowActionResult:
        caller = _address(caller, "caller")
        deal = await self.ledger.get_deal(token_id)
        sm.raise_if(sm.refund_guard(caller, deal))

        pending = await self.ledger.submit_refund_buyer(caller, token_id)
        return await self._confirm(pending, EscrowEventType.REFUNDED, caller)

    async def _confirm(self, pending: PendingTransaction, event_type: EscrowEventType, caller: str) -> EscrowActionResult:
        receipt = await self.ledger.wait_for_receipt(pending, self.confirmation_timeout)
        if receipt is None:
            logger.warning(
                "Ledger transaction not yet confirmed",
                ledger_operation=pending.operation,
                token_id=pending.token_id,
                transaction_hash=pending.transaction_hash,
            )
            return EscrowActionResult(
                operation=pending.operation,
                token_id=pending.token_id,
                state="pending",
                transaction_hash=pending.transaction_hash,
            )
        if not receipt.succeeded:
            logger.warning(
                "Ledger transaction reverted",
                ledger_operation=pending.operation,
                token_id=pending.token_id,
                transaction_hash=pending.transaction_hash,
                reason=receipt.revert_reason,
            )
            raise GuardViolation(receipt.revert_reason or "Transaction reverted")

        deal = await self.ledger.get_deal(pending.token_id)
        logger.info(
            "Ledger transition confirmed",
            ledger_operation=pending.operation,
            token_id=pending.token_id,
            transaction_hash=pending.transaction_hash,
            block_number=receipt.block_number,
            status=deal.status.value if deal else None,
        )

        synced = False
        try:
            synced = await self._update_mirror(pending.token_id, deal, event_type, pending.transaction_hash)
        except Exception as e:
            logger.error(
                "Mirror update failed after ledger confirmation",
                exc_info=True,
                token_id=pending.token_id,
                transaction_hash=pending.transaction_hash,
                error=str(e),
            )

        try:
            await self._append_entry(
                event_type,
                pending.token_id,
                deal,
                pending.transaction_hash,
                block_number=receipt.block_number,
                recorded_by=caller,
            )
        except Exception as e:
            logger.error(
                "Ledger entry append failed after ledger confirmation",
                exc_info=True,
                token_id=pending.token_id,
                transaction_hash=pending.transaction_hash,
                error=str(e),
            )

        return EscrowActionResult(
            operation=pending.operation,
            token_id=pending.token_id,
            state="confirmed",
            transaction_hash=pending.transaction_hash,
            block_number=receipt.block_number,
            deal=deal,
            mirror_synced=synced,
        )

    # Mirror and ledger-entry follow-up

    async def _update_mirror(
        self,
        token_id: int,
        deal: Optional[EscrowDeal],
        event_type: Optional[EscrowEventType],
        tx_hash: Optional[str],
    ) -> bool:
        """Reconcile the property mirror with the ledger and save it. False if no property exists."""
        record = await self.store.get_property_by_token(token_id)
        if record is None:
            logger.warning("No property mirror for token", token_id=token_id)
            return False

        now = _utcnow()
        current = deal is not None and event_type is not None and event_type.target_status == deal.status
        updated, changed = escrow_mirror.reconcile(
            record,
            deal,
            now,
            self.ledger.contract_address,
            tx_hash=tx_hash if current else None,
        )
        if tx_hash and event_type is not None and not current:
            attached = escrow_mirror.attach_transaction_hash(updated, event_type.target_status, tx_hash, now)
            changed = changed or attached is not updated
            updated = attached

        if changed:
            await self.store.save_property(updated)
        return True

    def _entry_parties(
        self,
        event_type: EscrowEventType,
        deal: Optional[EscrowDeal],
        value: Optional[int] = None,
    ) -> tuple[Optional[str], Optional[str], int]:
        """(from, to, value) of a ledger entry. ``value``, when known from the event, wins over the deal."""
        escrow_account = self.ledger.contract_address.lower()
        buyer = deal.buyer if deal else None
        if event_type == EscrowEventType.FUNDED:
            return buyer, escrow_account, value if value is not None else (deal.total if deal else 0)
        if event_type == EscrowEventType.REFUNDED:
            return escrow_account, buyer, value if value is not None else (deal.total if deal else 0)
        if deal is None:
            return None, None, value or 0
        if event_type == EscrowEventType.CANCELLED:
            return deal.seller, deal.buyer, 0
        return deal.seller, deal.buyer, value if value is not None else deal.price

    async def _append_entry(
        self,
        event_type: EscrowEventType,
        token_id: int,
        deal: Optional[EscrowDeal],
        tx_hash: str,
        *,
        block_number: Optional[int] = None,
        recorded_by: Optional[str] = None,
        value: Optional[int] = None,
    ) -> tuple[LedgerEntry, bool]:
        record = await self.store.get_property_by_token(token_id)
        from_address, to_address, value = self._entry_parties(event_type, deal, value)
        return await self.transactions.record(
            LedgerEntryType.for_escrow_event(event_type),
            tx_hash,
            from_address=from_address,
            to_address=to_address,
            property_id=record.property_id if record else None,
            token_id=token_id,
            value=value,
            block_number=block_number,
            recorded_by=recorded_by,
        )

    async def record_escrow_event(self, request: EscrowTransactionRequest, recorded_by: Optional[str] = None) -> dict:
        """Record a client-reported, already confirmed ledger event.

        The report is checked against the ledger before anything is written;
        the mirror is then reconciled and a ledger entry appended (deduplicated
        by transaction hash).
        """
        deal = await self.ledger.get_deal(request.token_id)
        if deal is None:
            raise NotFoundError("Escrow not found on ledger")

        target = request.event_type.target_status
        if escrow_mirror.transition_path(target, deal.status) is None:
            raise ConflictError(
                f"Ledger status {deal.status.value} does not reflect a {request.event_type.value} event"
            )
        for field in ("buyer", "seller"):
            reported = getattr(request, field)
            if reported is not None and reported != getattr(deal, field):
                raise ConflictError(f"Reported {field} does not match the ledger deal")
        if request.price is not None and request.price != deal.price:
            raise ConflictError("Reported price does not match the ledger deal")

        synced = await self._update_mirror(request.token_id, deal, request.event_type, request.transaction_hash)

        entry, created = None, False
        try:
            entry, created = await self._append_entry(
                request.event_type,
                request.token_id,
                deal,
                request.transaction_hash,
                block_number=request.block_number,
                recorded_by=recorded_by,
            )
        except Exception as e:
            logger.error(
                "Ledger entry append failed after mirror update",
                exc_info=True,
                token_id=request.token_id,
                transaction_hash=request.transaction_hash,
                error=str(e),
            )

        return {
            "entry": entry,
            "duplicate": entry is not None and not created,
            "deal": deal,
            "mirror_synced": synced,
        }

    async def _newer_creations(self, event: LedgerEvent) -> list[str]:
        """Hashes of EscrowCreated events for the same token that follow ``event``."""
        position = (event.block_number, event.log_index)
        return [
            later.transaction_hash
            for later in await self.ledger.get_events(event.block_number)
            if later.token_id == event.token_id
            and later.name == "EscrowCreated"
            and (later.block_number, later.log_index) > position
        ]

    async def _past_deal(self, event: LedgerEvent) -> Optional[EscrowDeal]:
        """Rebuild the replaced deal ``event`` belongs to from its EscrowCreated event.

        The fee is derived from the current fee rate, the way the contract
        derived it at creation.
        """
        position = (event.block_number, event.log_index)
        created = None
        for earlier in await self.ledger.get_events(0, event.block_number):
            if (
                earlier.token_id == event.token_id
                and earlier.name == "EscrowCreated"
                and (earlier.block_number, earlier.log_index) <= position
            ):
                created = earlier
        if created is None or None in (created.seller, created.buyer, created.price):
            return None

        status = event.event_type.target_status
        return EscrowDeal(
            token_id=event.token_id,
            seller=created.seller,
            buyer=created.buyer,
            price=created.price,
            fee=sm.compute_fee(created.price, await self.ledger.fee_basis_points()),
            status=status,
            funds_deposited=status == EscrowStatus.FUNDED,
            created_at=_utcnow(),
        )

    async def _apply_past_event(self, event: LedgerEvent, deal: Optional[EscrowDeal], newer_creations: list[str]) -> bool:
        record = await self.store.get_property_by_token(event.token_id)
        if record is None:
            logger.warning("No property mirror for token", token_id=event.token_id)
            return False
        if deal is None:
            logger.warning(
                "Creation event for replaced deal not found",
                token_id=event.token_id,
                transaction_hash=event.transaction_hash,
            )
            return False
        updated, changed = escrow_mirror.apply_past_event(
            record,
            deal,
            event.event_type,
            event.transaction_hash,
            _utcnow(),
            self.ledger.contract_address,
            newer_creations=newer_creations,
        )
        if changed:
            await self.store.save_property(updated)
        return True

    async def apply_ledger_event(self, event: LedgerEvent) -> bool:
        """Apply one ledger-emitted event. Safe to repeat for the same event.

        Events of a deal the ledger has since replaced are applied from their
        own payloads rather than from the current deal. Failures propagate so
        the caller can retry the event later.
        """
        newer_creations = await self._newer_creations(event)
        if newer_creations:
            deal = await self._past_deal(event)
            synced = await self._apply_past_event(event, deal, newer_creations)
        else:
            deal = await self.ledger.get_deal(event.token_id)
            synced = await self._update_mirror(event.token_id, deal, event.event_type, event.transaction_hash)
        await self._append_entry(
            event.event_type,
            event.token_id,
            deal,
            event.transaction_hash,
            block_number=event.block_number,
            recorded_by="event-listener",
            value=event.price if event.event_type == EscrowEventType.CREATED else event.amount,
        )
        logger.debug(
            "Ledger event applied",
            event_name=event.name,
            token_id=event.token_id,
            transaction_hash=event.transaction_hash,
            replaced_deal=bool(newer_creations),
            mirror_synced=synced,
        )
        return synced


def create_ledger(settings: Settings) -> EscrowLedger:
    """Build the configured ledger backend."""
    if settings.ledger_backend == "local":
        logger.warning("Using in-process local ledger; state is not durable")
        return LocalEscrowLedger(
            fee_basis_points=settings.local_fee_basis_points,
            fee_recipient=settings.local_fee_recipient,
            contract_address=settings.escrow_contract_address,
        )

    if not settings.ethereum_rpc_url:
        raise LedgerUnavailable("ETHEREUM_RPC_URL is not configured")

    from src.services.web3_ledger import Web3EscrowLedger

    return Web3EscrowLedger(
        rpc_url=settings.ethereum_rpc_url,
        escrow_address=settings.escrow_contract_address,
        kyc_address=settings.kyc_contract_address,
        nft_address=settings.property_nft_contract_address,
        signer_keys=settings.ledger_signer_keys,
    )


# Global engine instance (singleton pattern)
_engine: Optional[EscrowEngine] = None


def get_escrow_engine() -> EscrowEngine:
    """Get or create the escrow engine singleton."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = EscrowEngine(
            ledger=create_ledger(settings),
            store=SupabaseMirrorStore(),
            confirmation_timeout=settings.ledger_confirmation_timeout_seconds,
        )
        logger.info(
            "Escrow engine initialized",
            ledger_backend=settings.ledger_backend,
            contract_address=settings.escrow_contract_address,
        )
    return _engine


def set_escrow_engine(engine: Optional[EscrowEngine]) -> None:
    """Replace the engine singleton (None to rebuild from settings on next use)."""
    global _engine
    _engine = engine


def get_user_registry() -> UserRegistry:
    engine = get_escrow_engine()
    return UserRegistry(engine.store, engine.kyc)


def get_property_registry() -> PropertyRegistry:
    engine = get_escrow_engine()
    return PropertyRegistry(engine.store, engine.transactions)


def get_interest_registry() -> InterestRegistry:
    return InterestRegistry(get_escrow_engine().store)
