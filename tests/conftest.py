"""Shared pytest fixtures and configuration."""

import os
import pytest
from freezegun import freeze_time

# Set test environment variables
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-key")
os.environ.setdefault("LEDGER_BACKEND", "local")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("ADMIN_USERNAME", "admin")
os.environ.setdefault("ADMIN_PASSWORD", "test-admin-password")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")

from src.services.escrow_engine import EscrowEngine, set_escrow_engine
from src.services.escrow_ledger import LocalEscrowLedger
from src.utils.config import reset_settings
from tests.utils.factories import ONE_ETH, create_property_record, random_address
from tests.utils.fakes import InMemoryMirrorStore

TOKEN_ID = 7


@pytest.fixture(autouse=True)
def reset_singletons():
    """Fresh settings and engine for every test."""
    reset_settings()
    set_escrow_engine(None)
    yield
    set_escrow_engine(None)
    reset_settings()


@pytest.fixture
def ledger():
    return LocalEscrowLedger(fee_basis_points=250)


@pytest.fixture
def store():
    return InMemoryMirrorStore()


@pytest.fixture
def engine(ledger, store):
    return EscrowEngine(ledger=ledger, store=store, confirmation_timeout=1.0)


@pytest.fixture
def installed_engine(engine):
    """Engine installed as the singleton the API handlers use."""
    set_escrow_engine(engine)
    return engine


@pytest.fixture
def seller():
    return random_address()


@pytest.fixture
def buyer():
    return random_address()


@pytest.fixture
def listed_property(ledger, store, seller, buyer):
    """Token 7 minted to the seller, both parties KYC-verified and the buyer funded."""
    ledger.mint(TOKEN_ID, seller)
    ledger.set_kyc(seller)
    ledger.set_kyc(buyer)
    ledger.fund(buyer, 10 * ONE_ETH)
    return store.seed_property(create_property_record(owner=seller, token_id=TOKEN_ID))


@pytest.fixture
def freeze_time_fixture():
    """Fixture for freezing time in tests."""
    with freeze_time("2026-03-02 12:00:00") as frozen_time:
        yield frozen_time
