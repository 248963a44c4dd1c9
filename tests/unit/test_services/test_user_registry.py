"""Tests for KYC registration and review."""

import pytest

from src.models.requests import UserRegistrationRequest, UserReviewRequest, parse_request
from src.models.user import KYCStatus
from src.services.kyc_gate import KYCGate
from src.services.user_registry import UserRegistry
from src.utils.errors import ConflictError, NotFoundError, ValidationError
from tests.utils.factories import create_kyc_documents, create_registration_data, random_address, random_tx_hash


@pytest.fixture
def registry(store, ledger):
    return UserRegistry(store, KYCGate(ledger))


def registration(**overrides):
    return parse_request(UserRegistrationRequest, create_registration_data(**overrides))


@pytest.mark.unit
@pytest.mark.asyncio
async def test_register_creates_pending_user(registry):
    user = await registry.register(registration())

    assert user.status == KYCStatus.PENDING
    assert len(user.documents) == 3
    assert all(doc.uploaded_at is not None and not doc.verified for doc in user.documents)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_register_requires_all_documents(registry):
    with pytest.raises(ValidationError) as exc_info:
        await registry.register(registration(documents=create_kyc_documents(["government_id"])))
    assert exc_info.value.errors == [
        "documents: proof_of_address is required",
        "documents: selfie_with_id is required",
    ]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_duplicate_registration_conflicts(registry):
    address = random_address()
    await registry.register(registration(wallet_address=address))
    with pytest.raises(ConflictError):
        await registry.register(registration(wallet_address=address))


@pytest.mark.unit
@pytest.mark.asyncio
async def test_rejected_user_can_register_again(registry):
    address = random_address()
    await registry.register(registration(wallet_address=address))
    await registry.review(
        UserReviewRequest(wallet_address=address, action="reject", reason="Blurry ID"),
        reviewed_by="admin:admin",
    )

    again = await registry.register(registration(wallet_address=address))

    assert again.status == KYCStatus.PENDING
    assert again.verification.rejection_reason is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_verify_marks_documents_and_chain_flag(registry):
    address = random_address()
    await registry.register(registration(wallet_address=address))
    tx_hash = random_tx_hash()

    user = await registry.review(
        UserReviewRequest(wallet_address=address, action="verify", notes="ok", blockchain_transaction_hash=tx_hash),
        reviewed_by="admin:admin",
    )

    assert user.status == KYCStatus.VERIFIED
    assert all(doc.verified for doc in user.documents)
    assert user.verification.verified_by == "admin:admin"
    assert user.blockchain_verified is True
    assert user.blockchain_transaction_hash == tx_hash

    with pytest.raises(ConflictError, match="User already verified"):
        await registry.review(UserReviewRequest(wallet_address=address, action="verify"), reviewed_by="admin:admin")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_reject_requires_reason(registry):
    address = random_address()
    await registry.register(registration(wallet_address=address))
    with pytest.raises(ValidationError):
        await registry.review(UserReviewRequest(wallet_address=address, action="reject"), reviewed_by="admin:admin")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_status_reports_ledger_verification(registry, ledger):
    address = random_address()
    await registry.register(registration(wallet_address=address))
    ledger.set_kyc(address)

    status = await registry.get_status(address)

    assert status["status"] == KYCStatus.PENDING
    assert status["blockchain_verified"] is False
    assert status["ledger_verified"] is True

    with pytest.raises(NotFoundError):
        await registry.get_status(random_address())


@pytest.mark.unit
@pytest.mark.asyncio
async def test_list_users_with_counts(registry):
    first, second = random_address(), random_address()
    await registry.register(registration(wallet_address=first))
    await registry.register(registration(wallet_address=second))
    await registry.review(UserReviewRequest(wallet_address=first, action="verify"), reviewed_by="admin:admin")

    listing = await registry.list_users(KYCStatus.VERIFIED)

    assert [user.wallet_address for user in listing["users"]] == [first]
    assert listing["counts"] == {"pending": 1, "verified": 1, "rejected": 0, "total": 2}
