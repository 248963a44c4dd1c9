"""Tests for the read-side escrow endpoints and the shared JSON handler."""

from unittest.mock import patch

import pytest

from api.escrow.calculate_cost import handler as calculate_cost_handler
from api.escrow.deal import handler as deal_handler
from api.escrow.events import handler as events_handler
from api.escrow.exists import handler as exists_handler
from api.escrow.stats import handler as stats_handler
from api.escrow.sync import handler as sync_handler
from api.escrow.transaction import handler as transaction_handler
from api.escrow.transactions import handler as token_transactions_handler
from api.escrow.user import handler as user_deals_handler
from api.escrow.validate import handler as validate_handler
from tests.conftest import TOKEN_ID
from tests.utils.assertions import assert_error, assert_success
from tests.utils.factories import ONE_ETH, random_address
from tests.utils.helpers import admin_headers, call_handler, wallet_headers

FEE = 25 * 10 ** 15


async def open_escrow(engine, seller, buyer):
    return await engine.create_escrow(seller, TOKEN_ID, buyer, ONE_ETH)


@pytest.fixture
def open_deal(installed_engine, listed_property, seller, buyer):
    from src.utils.http import run_async
    return run_async(open_escrow(installed_engine, seller, buyer))


@pytest.mark.unit
def test_stats(installed_engine):
    data = assert_success(call_handler(stats_handler, "GET", "/api/escrow/stats"))
    assert data["feeBasisPoints"] == 250
    assert data["feePercentageFormatted"] == "2.50%"
    assert data["contractAddress"] == installed_engine.ledger.contract_address


@pytest.mark.unit
def test_calculate_cost_returns_wei_strings(installed_engine):
    data = assert_success(call_handler(
        calculate_cost_handler, "POST", "/api/escrow/calculate-cost", {"price": str(ONE_ETH)},
    ))
    assert data["price"] == str(ONE_ETH)
    assert data["fee"] == str(FEE)
    assert data["total"] == str(ONE_ETH + FEE)
    assert data["totalEth"] == "1.025"


@pytest.mark.unit
def test_calculate_cost_rejects_fractional_price(installed_engine):
    body = assert_error(call_handler(calculate_cost_handler, "POST", "/api/escrow/calculate-cost", {"price": 1.5}), 400)
    assert body["errors"]


@pytest.mark.unit
def test_invalid_json_body(installed_engine):
    assert_error(
        call_handler(calculate_cost_handler, "POST", "/api/escrow/calculate-cost", b"{not json"),
        400,
        "Request body must be valid JSON",
    )


@pytest.mark.unit
def test_validate_reports_problems(installed_engine, listed_property, seller, buyer):
    data = assert_success(call_handler(validate_handler, "POST", "/api/escrow/validate", {
        "tokenId": TOKEN_ID,
        "buyerAddress": seller,
        "sellerAddress": seller,
        "price": str(ONE_ETH),
    }))
    assert data["isValid"] is False
    assert "Buyer and seller cannot be the same" in data["errors"]


@pytest.mark.unit
def test_deal_view(open_deal, listed_property, seller, buyer):
    data = assert_success(call_handler(deal_handler, "GET", f"/api/escrow/deal/{TOKEN_ID}"))

    assert data["deal"]["status"] == "PENDING"
    assert data["deal"]["seller"] == seller
    assert data["deal"]["fee"] == str(FEE)
    assert data["total"] == ONE_ETH + FEE
    assert data["property"]["propertyId"] == listed_property.property_id
    assert data["property"]["escrowInfo"]["hasActiveEscrow"] is True


@pytest.mark.unit
def test_deal_view_from_rewritten_query(open_deal):
    data = assert_success(call_handler(deal_handler, "GET", f"/api/escrow/deal?tokenId={TOKEN_ID}"))
    assert data["deal"]["tokenId"] == TOKEN_ID


@pytest.mark.unit
def test_deal_view_errors(installed_engine):
    assert_error(call_handler(deal_handler, "GET", "/api/escrow/deal/abc"), 400)
    assert_error(call_handler(deal_handler, "GET", "/api/escrow/deal?tokenId=%C2%B2"), 400)
    assert_error(call_handler(deal_handler, "GET", "/api/escrow/deal/99"), 404, "Escrow not found")


@pytest.mark.unit
def test_exists(open_deal):
    data = assert_success(call_handler(exists_handler, "GET", f"/api/escrow/exists/{TOKEN_ID}"))
    assert data == {"tokenId": TOKEN_ID, "exists": True}
    assert assert_success(call_handler(exists_handler, "GET", "/api/escrow/exists/8"))["exists"] is False


@pytest.mark.unit
def test_user_deals(open_deal, buyer):
    data = assert_success(call_handler(user_deals_handler, "GET", f"/api/escrow/user/{buyer}"))
    assert len(data) == 1
    assert data[0]["deal"]["buyer"] == buyer
    assert_error(call_handler(user_deals_handler, "GET", "/api/escrow/user/not-an-address"), 400)


@pytest.mark.unit
def test_token_transactions(open_deal):
    data = assert_success(call_handler(token_transactions_handler, "GET", f"/api/escrow/transactions/{TOKEN_ID}"))
    assert [entry["type"] for entry in data] == ["escrow_created"]
    assert data[0]["transactionHash"] == open_deal.transaction_hash


@pytest.mark.unit
def test_events(open_deal):
    data = assert_success(call_handler(events_handler, "GET", "/api/escrow/events?fromBlock=0&toBlock=latest"))
    assert [event["name"] for event in data] == ["EscrowCreated"]
    assert assert_success(call_handler(events_handler, "GET", "/api/escrow/events?fromBlock=5")) == []


@pytest.mark.unit
def test_record_transaction_requires_login(open_deal):
    body = {"tokenId": TOKEN_ID, "txHash": open_deal.transaction_hash, "eventType": "created"}
    assert_error(call_handler(transaction_handler, "POST", "/api/escrow/transaction", body), 401)


@pytest.mark.unit
def test_record_transaction_is_deduplicated(open_deal, seller):
    body = {"tokenId": TOKEN_ID, "txHash": open_deal.transaction_hash, "eventType": "created"}
    data = assert_success(
        call_handler(transaction_handler, "POST", "/api/escrow/transaction", body, wallet_headers(seller)),
    )
    assert data["duplicate"] is True
    assert data["mirrorSynced"] is True


@pytest.mark.unit
def test_record_transaction_conflicting_report(open_deal, seller):
    body = {"tokenId": TOKEN_ID, "txHash": open_deal.transaction_hash, "eventType": "completed"}
    assert_error(
        call_handler(transaction_handler, "POST", "/api/escrow/transaction", body, wallet_headers(seller)),
        409,
    )


@pytest.mark.unit
def test_sync_requires_admin_or_cron(open_deal, seller):
    assert_error(call_handler(sync_handler, "GET", "/api/escrow/sync"), 401)
    assert_error(call_handler(sync_handler, "GET", "/api/escrow/sync", headers=wallet_headers(seller)), 403)

    data = assert_success(call_handler(
        sync_handler, "GET", "/api/escrow/sync", headers={"Authorization": "Bearer test-cron-secret"},
    ))
    assert data["events"] == 1
    assert data["checkpoint"] == 1

    data = assert_success(call_handler(sync_handler, "POST", "/api/escrow/sync", headers=admin_headers()))
    assert data["events"] == 0


@pytest.mark.unit
def test_ledger_outage_returns_retry_guidance(installed_engine):
    installed_engine.ledger.available = False
    status, headers, body = call_handler(stats_handler, "GET", "/api/escrow/stats")

    assert status == 503
    assert headers["Retry-After"] == "5"
    assert body["retryAfter"] == 5


@pytest.mark.unit
def test_unexpected_error_is_generic(installed_engine):
    with patch("api.escrow.stats.get_escrow_engine", side_effect=RuntimeError("boom")):
        status, _, body = call_handler(stats_handler, "GET", "/api/escrow/stats")

    assert status == 500
    assert body == {"success": False, "message": "internal server error"}


@pytest.mark.unit
def test_correlation_id_echoed(installed_engine):
    _, headers, _ = call_handler(stats_handler, "GET", "/api/escrow/stats", headers={"X-Correlation-ID": "req_test123"})
    assert headers["X-Correlation-ID"] == "req_test123"


@pytest.mark.unit
def test_unsupported_method(installed_engine):
    assert_error(call_handler(stats_handler, "POST", "/api/escrow/stats"), 405)


@pytest.mark.unit
def test_user_deals_for_unknown_address_is_empty(installed_engine):
    assert assert_success(call_handler(user_deals_handler, "GET", f"/api/escrow/user/{random_address()}")) == []
