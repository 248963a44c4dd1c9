"""Off-chain escrow mirror on a PropertyRecord.

Functions here take a record and return an updated copy; persisting it is the
caller's job. The summary (``escrow_info``) and history are always changed
together so one row update keeps them consistent.

Only the latest history entry is ever modified, and only its status,
timestamps, funding flag, transaction hashes and notes. Correcting a mirror
that ran ahead of the ledger also reverts the ownership and metric changes
made by the states it backs out of.
"""

from datetime import datetime
from typing import Collection, Optional

from src.models.escrow import EscrowDeal, EscrowEventType, EscrowStatus, STATUS_HASH_KEY
from src.models.identity import WalletOwner
from src.models.property import (
    EscrowHistoryEntry,
    EscrowInfo,
    EscrowTransactionHashes,
    PreviousOwner,
    PropertyRecord,
)
from src.services.escrow_state_machine import ALLOWED_TRANSITIONS, GuardReason
from src.utils.errors import GuardViolation, NotFoundError
from src.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

SUPERSEDED_NOTE = "Superseded by a newer ledger deal"
MISSING_ON_LEDGER_NOTE = "No matching deal on the ledger"
CORRECTED_NOTE = "Status corrected from ledger"

# Each status is entered from exactly one other status
_PREDECESSOR = {
    following: state
    for state, targets in ALLOWED_TRANSITIONS.items()
    if state is not None
    for following in targets
}


def transition_path(current: EscrowStatus, target: EscrowStatus) -> Optional[list[EscrowStatus]]:
    """States walked from current to target, excluding current. None if unreachable."""
    if current == target:
        return []
    frontier: list[tuple[EscrowStatus, list[EscrowStatus]]] = [(current, [])]
    while frontier:
        state, path = frontier.pop(0)
        for following in ALLOWED_TRANSITIONS[state]:
            step = path + [following]
            if following == target:
                return step
            frontier.append((following, step))
    return None


def summarize(entry: Optional[EscrowHistoryEntry], contract_address: Optional[str] = None) -> EscrowInfo:
    if entry is None:
        return EscrowInfo(escrow_contract_address=contract_address)
    return EscrowInfo(
        has_active_escrow=entry.status.is_active,
        current_escrow_buyer=entry.buyer,
        current_escrow_seller=entry.seller,
        current_escrow_price=entry.price,
        current_escrow_fee=entry.fee,
        current_escrow_status=entry.status,
        escrow_created_at=entry.created_at,
        escrow_funds_deposited=entry.funds_deposited,
        escrow_contract_address=contract_address,
    )


def _contract_address(record: PropertyRecord, contract_address: Optional[str]) -> Optional[str]:
    return contract_address or record.escrow_info.escrow_contract_address


def open_escrow(
    record: PropertyRecord,
    deal: EscrowDeal,
    tx_hash: Optional[str],
    at: datetime,
    contract_address: Optional[str] = None,
) -> PropertyRecord:
    """Append a PENDING history entry for a newly created deal."""
    updated = record.model_copy(deep=True)
    entry = EscrowHistoryEntry(
        buyer=deal.buyer,
        seller=deal.seller,
        price=deal.price,
        fee=deal.fee,
        status=EscrowStatus.PENDING,
        funds_deposited=False,
        created_at=deal.created_at,
        updated_at=at,
        transaction_hashes=EscrowTransactionHashes(creation=tx_hash),
    )
    updated.escrow_history.append(entry)
    updated.transaction_metrics.escrow_usage_count += 1
    updated.transaction_metrics.last_market_activity = at
    updated.escrow_info = summarize(entry, _contract_address(record, contract_address))
    updated.updated_at = at
    return updated


def _enter(record: PropertyRecord, entry: EscrowHistoryEntry, status: EscrowStatus, tx_hash: Optional[str], at: datetime) -> None:
    entry.status = status
    entry.updated_at = at
    metrics = record.transaction_metrics
    metrics.last_market_activity = at

    if status == EscrowStatus.FUNDED:
        entry.funds_deposited = True
    elif status == EscrowStatus.COMPLETED:
        entry.completed_at = at
        record.previous_owners.append(PreviousOwner(
            address=record.owner_wallet or entry.seller,
            transfer_date=at,
            transaction_hash=tx_hash,
            price=entry.price,
            transfer_method="escrow",
        ))
        record.owner = WalletOwner(address=entry.buyer)
        metrics.total_sales += 1
        metrics.total_volume += entry.price
        metrics.average_sale_price = metrics.total_volume // metrics.total_sales
        record.last_sale_price = entry.price
        record.last_sale_date = at
    elif status == EscrowStatus.CANCELLED:
        metrics.cancelled_escrows_count += 1
    elif status == EscrowStatus.REFUNDED:
        metrics.refunded_escrows_count += 1


def _leave(record: PropertyRecord, entry: EscrowHistoryEntry, at: datetime) -> None:
    """Back the entry out of its current status, reverting what ``_enter`` did."""
    status = entry.status
    setattr(entry.transaction_hashes, STATUS_HASH_KEY[status], None)
    metrics = record.transaction_metrics

    if status == EscrowStatus.FUNDED:
        entry.funds_deposited = False
    elif status == EscrowStatus.COMPLETED:
        entry.completed_at = None
        restored = entry.seller
        for index in range(len(record.previous_owners) - 1, -1, -1):
            prior = record.previous_owners[index]
            if prior.transfer_method == "escrow" and prior.price == entry.price:
                restored = prior.address or entry.seller
                del record.previous_owners[index]
                break
        record.owner = WalletOwner(address=restored)
        metrics.total_sales = max(metrics.total_sales - 1, 0)
        metrics.total_volume = max(metrics.total_volume - entry.price, 0)
        metrics.average_sale_price = metrics.total_volume // metrics.total_sales if metrics.total_sales else 0
        sales = [prior for prior in record.previous_owners if prior.transfer_method == "escrow"]
        record.last_sale_price = sales[-1].price if sales else None
        record.last_sale_date = sales[-1].transfer_date if sales else None
    elif status == EscrowStatus.CANCELLED:
        metrics.cancelled_escrows_count = max(metrics.cancelled_escrows_count - 1, 0)
    elif status == EscrowStatus.REFUNDED:
        metrics.refunded_escrows_count = max(metrics.refunded_escrows_count - 1, 0)

    entry.status = _PREDECESSOR[status]
    entry.updated_at = at


def apply_status(
    record: PropertyRecord,
    status: EscrowStatus,
    tx_hash: Optional[str],
    at: datetime,
    contract_address: Optional[str] = None,
) -> PropertyRecord:
    """Move the latest deal forward to ``status``.

    Intermediate states are walked when events were missed, so each state's
    side effects run exactly once. Re-applying the current status only fills a
    missing transaction hash.
    """
    latest = record.latest_escrow
    if latest is None:
        raise NotFoundError("No escrow recorded for this property")

    path = transition_path(latest.status, status)
    if path is None:
        raise GuardViolation(GuardReason.INVALID_STATUS)

    key = STATUS_HASH_KEY[status]
    fill_hash = bool(tx_hash) and getattr(latest.transaction_hashes, key) is None
    if not path and not fill_hash:
        return record

    updated = record.model_copy(deep=True)
    entry = updated.escrow_history[-1]
    for step in path:
        _enter(updated, entry, step, tx_hash, at)
    if fill_hash:
        setattr(entry.transaction_hashes, key, tx_hash)

    entry.updated_at = at
    updated.escrow_info = summarize(entry, _contract_address(record, contract_address))
    updated.updated_at = at
    return updated


def _same_deal(entry: EscrowHistoryEntry, deal: EscrowDeal) -> bool:
    return (
        entry.buyer == deal.buyer
        and entry.seller == deal.seller
        and entry.price == deal.price
        and entry.fee == deal.fee
        and entry.created_at == deal.created_at
    )


def reconcile(
    record: PropertyRecord,
    deal: Optional[EscrowDeal],
    at: datetime,
    contract_address: Optional[str] = None,
    tx_hash: Optional[str] = None,
) -> tuple[PropertyRecord, bool]:
    """Correct the mirror from the ledger deal. Returns (record, changed).

    ``tx_hash``, when given, is the transaction that moved the deal into its
    current ledger status.

    Idempotent: reconciling an already consistent record returns it unchanged.
    """
    address = _contract_address(record, contract_address)
    latest = record.latest_escrow

    if deal is None:
        if latest is None or not record.escrow_info.has_active_escrow:
            return record, False
        updated = record.model_copy(deep=True)
        updated.escrow_history[-1].notes = MISSING_ON_LEDGER_NOTE
        updated.escrow_history[-1].updated_at = at
        updated.escrow_info = EscrowInfo(escrow_contract_address=address)
        updated.updated_at = at
        logger.warning(
            "Mirror showed an active escrow the ledger does not have",
            property_id=record.property_id,
            token_id=record.token_id,
        )
        return updated, True

    updated = record
    if latest is None or not _same_deal(latest, deal):
        if latest is not None and latest.status.is_active:
            updated = record.model_copy(deep=True)
            updated.escrow_history[-1].notes = SUPERSEDED_NOTE
            updated.escrow_history[-1].updated_at = at
            logger.warning(
                "Mirror escrow superseded by ledger deal",
                property_id=record.property_id,
                token_id=record.token_id,
            )
        updated = open_escrow(updated, deal, tx_hash if deal.status == EscrowStatus.PENDING else None, at, address)

    entry = updated.latest_escrow
    if transition_path(entry.status, deal.status) is not None:
        updated = apply_status(updated, deal.status, tx_hash, at, address)
    else:
        # Mirror ran ahead of the ledger: back out to a status the ledger
        # status is reachable from, then walk forward again
        mirror_status = entry.status
        updated = updated.model_copy(deep=True)
        entry = updated.escrow_history[-1]
        while transition_path(entry.status, deal.status) is None:
            _leave(updated, entry, at)
        entry.notes = CORRECTED_NOTE
        updated = apply_status(updated, deal.status, tx_hash, at, address)
        logger.warning(
            "Mirror status ahead of ledger, corrected",
            property_id=record.property_id,
            token_id=record.token_id,
            mirror_status=mirror_status.value,
            ledger_status=deal.status.value,
        )

    if updated.latest_escrow.funds_deposited != deal.funds_deposited:
        updated = updated.model_copy(deep=True)
        updated.escrow_history[-1].funds_deposited = deal.funds_deposited
        updated.escrow_history[-1].updated_at = at

    expected_info = summarize(updated.latest_escrow, address)
    if updated.escrow_info != expected_info:
        if updated is record:
            updated = record.model_copy(deep=True)
        updated.escrow_info = expected_info

    changed = updated is not record
    if changed:
        updated.updated_at = at
    return updated, changed


def attach_transaction_hash(
    record: PropertyRecord,
    status: EscrowStatus,
    tx_hash: str,
    at: datetime,
) -> PropertyRecord:
    """Record the hash of the transaction that moved the latest deal into ``status``.

    Ignored when the latest deal never reached that status or already has a
    hash for it.
    """
    latest = record.latest_escrow
    if latest is None:
        return record
    key = STATUS_HASH_KEY[status]
    reached = latest.status == status or transition_path(status, latest.status) is not None
    if not reached or getattr(latest.transaction_hashes, key) is not None:
        return record
    updated = record.model_copy(deep=True)
    entry = updated.escrow_history[-1]
    setattr(entry.transaction_hashes, key, tx_hash)
    entry.updated_at = at
    updated.updated_at = at
    return updated


def apply_past_event(
    record: PropertyRecord,
    deal: EscrowDeal,
    event_type: EscrowEventType,
    tx_hash: str,
    at: datetime,
    contract_address: Optional[str] = None,
    newer_creations: Collection[str] = (),
) -> tuple[PropertyRecord, bool]:
    """Apply an event of a deal the ledger has since replaced. Returns (record, changed).

    ``deal`` is that earlier deal as of the event, and ``newer_creations`` the
    creation hashes of the deals that followed it. Once the mirror already
    tracks one of those, the event is left out of the history.
    """
    latest = record.latest_escrow
    if latest is not None and latest.transaction_hashes.creation in newer_creations:
        return record, False
    address = _contract_address(record, contract_address)

    if event_type == EscrowEventType.CREATED:
        if latest is not None and latest.transaction_hashes.creation == tx_hash:
            return record, False
        updated = record
        if latest is not None and latest.status.is_active:
            updated = record.model_copy(deep=True)
            updated.escrow_history[-1].notes = SUPERSEDED_NOTE
            updated.escrow_history[-1].updated_at = at
        return open_escrow(updated, deal, tx_hash, at, address), True

    if latest is None or (latest.seller, latest.buyer, latest.price) != (deal.seller, deal.buyer, deal.price):
        logger.warning(
            "Past ledger event does not match the latest mirrored deal",
            property_id=record.property_id,
            token_id=record.token_id,
            event_type=event_type.value,
            transaction_hash=tx_hash,
        )
        return record, False
    if transition_path(latest.status, event_type.target_status) is None:
        return record, False
    updated = apply_status(record, event_type.target_status, tx_hash, at, address)
    return updated, updated is not record
