"""End-to-end escrow flows: registries, engine, local ledger and mirror together."""

import pytest

from src.models.escrow import EscrowEventType, EscrowStatus
from src.models.ledger_entry import LedgerEntryType
from src.models.property import PropertyStatus
from src.models.requests import (
    EscrowTransactionRequest,
    PropertyMintRequest,
    PropertyReviewRequest,
    PropertySubmitRequest,
    UserRegistrationRequest,
    UserReviewRequest,
)
from src.models.user import KYCStatus
from src.services.escrow_listener import poll_escrow_events_once
from src.services.property_registry import PropertyRegistry
from src.services.user_registry import UserRegistry
from src.utils.errors import GuardViolation
from tests.conftest import TOKEN_ID
from tests.utils.assertions import assert_mirror_consistent
from tests.utils.factories import (
    ONE_ETH,
    create_property_submission,
    create_registration_data,
    random_tx_hash,
)

FEE = 25 * 10 ** 15
FEE_RECIPIENT = "0x000000000000000000000000000000000000fee5"


async def onboard(engine, ledger, address):
    """Register and verify a wallet the way an admin would."""
    users = UserRegistry(engine.store, engine.kyc)
    await users.register(UserRegistrationRequest.model_validate(create_registration_data(wallet_address=address)))
    user = await users.review(
        UserReviewRequest(wallet_address=address, action="verify", blockchain_transaction_hash=random_tx_hash()),
        reviewed_by="admin:admin",
    )
    ledger.set_kyc(address)
    return user


async def list_property(engine, ledger, owner, token_id=TOKEN_ID):
    """Submit, approve and mint a property for ``owner``."""
    properties = PropertyRegistry(engine.store, engine.transactions)
    record = await properties.submit(
        PropertySubmitRequest.model_validate(create_property_submission()),
        owner=owner,
    )
    await properties.review(
        PropertyReviewRequest(property_id=record.property_id, action="approve"),
        reviewed_by="admin:admin",
    )
    ledger.mint(token_id, owner)
    return await properties.record_mint(
        PropertyMintRequest(property_id=record.property_id, token_id=token_id, transaction_hash=random_tx_hash()),
        caller=owner,
    )


@pytest.mark.integration
@pytest.mark.asyncio
async def test_full_sale(engine, ledger, store, seller, buyer):
    seller_user = await onboard(engine, ledger, seller)
    await onboard(engine, ledger, buyer)
    assert seller_user.status == KYCStatus.VERIFIED
    record = await list_property(engine, ledger, seller)
    assert record.status == PropertyStatus.MINTED
    ledger.fund(buyer, 2 * ONE_ETH)

    created = await engine.create_escrow(seller, TOKEN_ID, buyer, ONE_ETH)
    assert created.deal.fee == FEE
    assert created.deal.total == ONE_ETH + FEE

    funded = await engine.deposit_funds(buyer, TOKEN_ID, ONE_ETH + FEE)
    assert funded.deal.status == EscrowStatus.FUNDED
    assert ledger.escrow_balance == ONE_ETH + FEE

    completed = await engine.complete_deal(seller, TOKEN_ID)
    assert completed.deal.status == EscrowStatus.COMPLETED

    assert ledger.balances[seller] == ONE_ETH
    assert ledger.balances[FEE_RECIPIENT] == FEE
    assert ledger.balances[buyer] == 2 * ONE_ETH - ONE_ETH - FEE
    assert ledger.escrow_balance == 0
    assert await ledger.owner_of(TOKEN_ID) == buyer

    mirror = store.properties[record.property_id]
    assert mirror.owner_wallet == buyer
    assert mirror.transaction_metrics.total_sales == 1
    assert mirror.transaction_metrics.total_volume == ONE_ETH
    assert mirror.last_sale_price == ONE_ETH
    assert mirror.previous_owners[-1].transfer_method == "escrow"
    assert mirror.latest_escrow.transaction_hashes.completion == completed.transaction_hash
    assert_mirror_consistent(mirror)

    history = await engine.get_token_history(TOKEN_ID)
    assert sorted(entry.type for entry in history) == sorted([
        LedgerEntryType.MINT,
        LedgerEntryType.ESCROW_CREATED,
        LedgerEntryType.ESCROW_FUNDED,
        LedgerEntryType.ESCROW_COMPLETED,
    ])


@pytest.mark.integration
@pytest.mark.asyncio
async def test_refund_returns_total_to_buyer(engine, ledger, store, listed_property, seller, buyer):
    starting_balance = ledger.balances[buyer]
    await engine.create_escrow(seller, TOKEN_ID, buyer, ONE_ETH)
    await engine.deposit_funds(buyer, TOKEN_ID, ONE_ETH + FEE)

    refunded = await engine.refund_buyer(seller, TOKEN_ID)

    assert refunded.deal.status == EscrowStatus.REFUNDED
    assert ledger.balances[buyer] == starting_balance
    assert ledger.escrow_balance == 0
    mirror = store.properties[listed_property.property_id]
    assert mirror.transaction_metrics.refunded_escrows_count == 1
    assert mirror.owner_wallet == seller
    assert_mirror_consistent(mirror)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_duplicate_create_rejected(engine, listed_property, seller, buyer):
    await engine.create_escrow(seller, TOKEN_ID, buyer, ONE_ETH)

    with pytest.raises(GuardViolation) as exc_info:
        await engine.create_escrow(seller, TOKEN_ID, buyer, 2 * ONE_ETH)

    assert exc_info.value.reason == "Escrow exists"
    assert (await engine.get_deal(TOKEN_ID)).price == ONE_ETH


@pytest.mark.integration
@pytest.mark.asyncio
async def test_kyc_revoked_before_completion(engine, ledger, listed_property, seller, buyer):
    await engine.create_escrow(seller, TOKEN_ID, buyer, ONE_ETH)
    await engine.deposit_funds(buyer, TOKEN_ID, ONE_ETH + FEE)
    ledger.set_kyc(buyer, verified=False)

    with pytest.raises(GuardViolation) as exc_info:
        await engine.complete_deal(seller, TOKEN_ID)

    assert exc_info.value.reason == "Buyer not verified"
    assert exc_info.value.status_code == 403
    deal = await engine.get_deal(TOKEN_ID)
    assert deal.status == EscrowStatus.FUNDED
    assert ledger.escrow_balance == ONE_ETH + FEE


@pytest.mark.integration
@pytest.mark.asyncio
async def test_wrong_deposit_amount(engine, ledger, listed_property, seller, buyer):
    starting_balance = ledger.balances[buyer]
    await engine.create_escrow(seller, TOKEN_ID, buyer, ONE_ETH)

    with pytest.raises(GuardViolation) as exc_info:
        await engine.deposit_funds(buyer, TOKEN_ID, ONE_ETH)

    assert exc_info.value.reason == "Incorrect amount"
    assert (await engine.get_deal(TOKEN_ID)).status == EscrowStatus.PENDING
    assert ledger.balances[buyer] == starting_balance


@pytest.mark.integration
@pytest.mark.asyncio
async def test_reported_hash_recorded_once(engine, store, listed_property, seller, buyer):
    created = await engine.create_escrow(seller, TOKEN_ID, buyer, ONE_ETH)
    request = EscrowTransactionRequest(
        token_id=TOKEN_ID,
        transaction_hash=created.transaction_hash,
        event_type=EscrowEventType.CREATED,
        buyer=buyer,
        seller=seller,
        price=ONE_ETH,
    )

    first = await engine.record_escrow_event(request, recorded_by=seller)
    second = await engine.record_escrow_event(request, recorded_by=buyer)

    assert first["duplicate"] is True
    assert second["entry"].id == first["entry"].id
    matching = [e for e in store.entries.values() if e.transaction_hash == created.transaction_hash]
    assert len(matching) == 1
    assert len(store.properties[listed_property.property_id].escrow_history) == 1


@pytest.mark.integration
@pytest.mark.asyncio
async def test_listener_catches_up_on_direct_ledger_calls(engine, ledger, store, listed_property, seller, buyer):
    # Transactions sent straight to the ledger, as a wallet would, bypass the engine
    pending = await ledger.submit_create_escrow(seller, TOKEN_ID, buyer, ONE_ETH)
    await ledger.wait_for_receipt(pending, 1.0)
    pending = await ledger.submit_deposit_funds(buyer, TOKEN_ID, ONE_ETH + FEE)
    await ledger.wait_for_receipt(pending, 1.0)
    assert store.properties[listed_property.property_id].latest_escrow is None

    summary = await poll_escrow_events_once(engine, batch_blocks=100)

    assert summary["events"] == 2
    assert summary["applied"] == 2
    assert summary["checkpoint"] == 2
    mirror = store.properties[listed_property.property_id]
    assert mirror.escrow_info.current_escrow_status == EscrowStatus.FUNDED
    assert mirror.latest_escrow.transaction_hashes.funding == pending.transaction_hash
    assert_mirror_consistent(mirror)
    assert len(await engine.get_token_history(TOKEN_ID)) == 2

    repeat = await poll_escrow_events_once(engine, batch_blocks=100)
    assert repeat["events"] == 0
    assert len(await engine.get_token_history(TOKEN_ID)) == 2


@pytest.mark.integration
@pytest.mark.asyncio
async def test_listener_catches_up_on_cancelled_and_replaced_deal(engine, ledger, store, listed_property, seller, buyer):
    first = await ledger.submit_create_escrow(seller, TOKEN_ID, buyer, ONE_ETH)
    await ledger.wait_for_receipt(first, 1.0)
    cancel = await ledger.submit_cancel_escrow(seller, TOKEN_ID)
    await ledger.wait_for_receipt(cancel, 1.0)
    second = await ledger.submit_create_escrow(seller, TOKEN_ID, buyer, 3 * ONE_ETH)
    await ledger.wait_for_receipt(second, 1.0)

    summary = await poll_escrow_events_once(engine, batch_blocks=100)

    assert summary["applied"] == 3
    mirror = store.properties[listed_property.property_id]
    assert [entry.status for entry in mirror.escrow_history] == [EscrowStatus.CANCELLED, EscrowStatus.PENDING]
    cancelled, current = mirror.escrow_history
    assert cancelled.price == ONE_ETH
    assert cancelled.transaction_hashes.creation == first.transaction_hash
    assert cancelled.transaction_hashes.cancellation == cancel.transaction_hash
    assert current.price == 3 * ONE_ETH
    assert current.transaction_hashes.creation == second.transaction_hash
    assert mirror.transaction_metrics.cancelled_escrows_count == 1
    assert mirror.transaction_metrics.escrow_usage_count == 2
    assert_mirror_consistent(mirror)

    entries = {entry.transaction_hash: entry for entry in await engine.get_token_history(TOKEN_ID)}
    assert entries[first.transaction_hash].type == LedgerEntryType.ESCROW_CREATED
    assert entries[first.transaction_hash].value == ONE_ETH
    assert entries[cancel.transaction_hash].from_address == seller
    assert entries[second.transaction_hash].value == 3 * ONE_ETH

    repeat = await poll_escrow_events_once(engine, batch_blocks=100)
    assert repeat["events"] == 0
    assert len(store.properties[listed_property.property_id].escrow_history) == 2


@pytest.mark.integration
@pytest.mark.asyncio
async def test_relist_after_cancellation(engine, store, listed_property, seller, buyer):
    await engine.create_escrow(seller, TOKEN_ID, buyer, ONE_ETH)
    await engine.cancel_escrow(seller, TOKEN_ID)
    assert not await engine.escrow_exists(TOKEN_ID)

    relisted = await engine.create_escrow(seller, TOKEN_ID, buyer, 2 * ONE_ETH)

    assert relisted.deal.status == EscrowStatus.PENDING
    mirror = store.properties[listed_property.property_id]
    assert [entry.status for entry in mirror.escrow_history] == [EscrowStatus.CANCELLED, EscrowStatus.PENDING]
    assert mirror.transaction_metrics.cancelled_escrows_count == 1
    assert mirror.transaction_metrics.escrow_usage_count == 2
    assert_mirror_consistent(mirror)
