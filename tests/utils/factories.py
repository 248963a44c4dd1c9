"""Test data factories using Faker."""

from datetime import datetime, timezone
from typing import Optional

from faker import Faker

from src.models.common import new_id
from src.models.property import PropertyRecord, PropertyStatus
from src.models.user import REQUIRED_KYC_DOCUMENTS, KYCStatus, UserRecord

fake = Faker()

ONE_ETH = 10 ** 18


def random_address() -> str:
    return "0x" + fake.hexify(text="^" * 40)


def random_tx_hash() -> str:
    return "0x" + fake.hexify(text="^" * 64)


def create_kyc_documents(types=REQUIRED_KYC_DOCUMENTS) -> list[dict]:
    return [
        {"type": doc_type, "filename": f"{doc_type}.pdf", "path": f"kyc/{fake.uuid4()}/{doc_type}.pdf"}
        for doc_type in types
    ]


def create_registration_data(wallet_address: Optional[str] = None, **overrides) -> dict:
    """Registration body as a client sends it (camelCase)."""
    data = {
        "walletAddress": wallet_address or random_address(),
        "fullName": fake.name(),
        "email": fake.email(),
        "documents": create_kyc_documents(),
    }
    data.update(overrides)
    return data


def create_user_record(wallet_address: Optional[str] = None, status: KYCStatus = KYCStatus.PENDING) -> UserRecord:
    return UserRecord(
        wallet_address=wallet_address or random_address(),
        full_name=fake.name(),
        email=fake.email(),
        status=status,
        documents=create_kyc_documents(),
        registered_at=datetime.now(timezone.utc),
    )


def create_property_submission(**overrides) -> dict:
    data = {
        "name": f"{fake.last_name()} House",
        "description": fake.sentence(nb_words=8),
        "physicalAddress": fake.address().replace("\n", ", "),
        "areaSqFt": fake.random_int(min=500, max=5000),
        "propertyType": "residential",
        "images": [fake.image_url()],
    }
    data.update(overrides)
    return data


def create_property_record(
    owner: Optional[str] = None,
    token_id: Optional[int] = None,
    status: PropertyStatus = PropertyStatus.MINTED,
    **overrides,
) -> PropertyRecord:
    now = datetime.now(timezone.utc)
    data = {
        "property_id": new_id(),
        "token_id": token_id,
        "owner": owner or random_address(),
        "name": f"{fake.last_name()} House",
        "physical_address": fake.address().replace("\n", ", "),
        "area_sq_ft": float(fake.random_int(min=500, max=5000)),
        "status": status,
        "created_at": now,
        "updated_at": now,
    }
    data.update(overrides)
    return PropertyRecord(**data)
