"""Tests for the admin and wallet login endpoints."""

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from api.auth.login import handler as login_handler
from api.auth.wallet import handler as wallet_handler
from src.services.auth import authenticate
from tests.utils.assertions import assert_error, assert_success
from tests.utils.helpers import call_handler


@pytest.mark.unit
def test_admin_login_issues_admin_token(installed_engine):
    data = assert_success(call_handler(
        login_handler, "POST", "/api/auth/login", {"username": "admin", "password": "test-admin-password"},
    ))

    assert data["tokenType"] == "Bearer"
    assert data["role"] == "admin"
    principal = authenticate({"Authorization": f"Bearer {data['token']}"})
    assert principal.is_admin


@pytest.mark.unit
def test_admin_login_wrong_password(installed_engine):
    assert_error(
        call_handler(login_handler, "POST", "/api/auth/login", {"username": "admin", "password": "nope"}),
        401,
        "Invalid credentials",
    )


@pytest.mark.unit
def test_admin_login_missing_fields(installed_engine):
    assert_error(call_handler(login_handler, "POST", "/api/auth/login", {"username": "admin"}), 400)


@pytest.mark.unit
def test_wallet_login_round_trip(installed_engine):
    account = Account.create()
    address = account.address.lower()

    challenge = assert_success(call_handler(wallet_handler, "GET", f"/api/auth/wallet?address={account.address}"))
    assert challenge["address"] == address

    signature = Web3.to_hex(account.sign_message(encode_defunct(text=challenge["message"])).signature)
    data = assert_success(call_handler(wallet_handler, "POST", "/api/auth/wallet", {
        "address": account.address,
        "message": challenge["message"],
        "signature": signature,
    }))

    assert data["role"] == "user"
    assert data["walletAddress"] == address


@pytest.mark.unit
def test_wallet_login_rejects_other_signer(installed_engine):
    account, impostor = Account.create(), Account.create()
    challenge = assert_success(call_handler(wallet_handler, "GET", f"/api/auth/wallet?address={account.address}"))
    signature = Web3.to_hex(impostor.sign_message(encode_defunct(text=challenge["message"])).signature)

    assert_error(call_handler(wallet_handler, "POST", "/api/auth/wallet", {
        "address": account.address,
        "message": challenge["message"],
        "signature": signature,
    }), 401, "Signature does not match address")


@pytest.mark.unit
def test_wallet_challenge_requires_address(installed_engine):
    assert_error(call_handler(wallet_handler, "GET", "/api/auth/wallet"), 400)
