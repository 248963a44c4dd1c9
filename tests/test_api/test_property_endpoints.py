"""Tests for property submission, review, mint, lookup and listing endpoints."""

import pytest

from api.properties.detail import handler as detail_handler
from api.properties.index import handler as list_handler
from api.properties.listing import handler as listing_handler
from api.properties.mint import handler as mint_handler
from api.properties.owner import handler as owner_handler
from api.properties.pending import handler as pending_handler
from api.properties.review import handler as review_handler
from api.properties.submit import handler as submit_handler
from tests.utils.assertions import assert_error, assert_success
from tests.utils.factories import create_property_submission, random_address, random_tx_hash
from tests.utils.helpers import admin_headers, call_handler, wallet_headers


def submit(owner):
    return assert_success(
        call_handler(submit_handler, "POST", "/api/properties/submit", create_property_submission(), wallet_headers(owner)),
        expected_status=201,
    )


def approve(property_id):
    return assert_success(call_handler(review_handler, "POST", "/api/properties/review", {
        "propertyId": property_id,
        "action": "approve",
    }, admin_headers()))


@pytest.mark.unit
def test_submit_requires_wallet(installed_engine):
    body = create_property_submission()
    assert_error(call_handler(submit_handler, "POST", "/api/properties/submit", body), 401)
    assert_error(call_handler(submit_handler, "POST", "/api/properties/submit", body, admin_headers()), 403)


@pytest.mark.unit
def test_submit_accepts_legacy_location(installed_engine, seller):
    body = create_property_submission()
    body["location"] = body.pop("physicalAddress")
    record = assert_success(
        call_handler(submit_handler, "POST", "/api/properties/submit", body, wallet_headers(seller)),
        expected_status=201,
    )
    assert record["physicalAddress"] == body["location"]
    assert record["status"] == "pending"


@pytest.mark.unit
def test_review_and_detail(installed_engine, seller):
    record = submit(seller)
    approved = approve(record["propertyId"])
    assert approved["status"] == "approved"

    assert_error(call_handler(review_handler, "POST", "/api/properties/review", {
        "propertyId": record["propertyId"],
        "action": "reject",
        "reason": "too late",
    }, admin_headers()), 409)

    detail = assert_success(call_handler(detail_handler, "GET", f"/api/properties/{record['propertyId']}"))
    assert detail["status"] == "approved"
    assert_error(call_handler(detail_handler, "GET", "/api/properties/missing"), 404)


@pytest.mark.unit
def test_review_is_admin_only(installed_engine, seller):
    record = submit(seller)
    assert_error(call_handler(review_handler, "POST", "/api/properties/review", {
        "propertyId": record["propertyId"],
        "action": "approve",
    }, wallet_headers(seller)), 403)


@pytest.mark.unit
def test_mint_records_token_and_ledger_entry(installed_engine, store, seller):
    record = submit(seller)
    approve(record["propertyId"])
    tx_hash = random_tx_hash()
    body = {"propertyId": record["propertyId"], "tokenId": 11, "transactionHash": tx_hash}

    minted = assert_success(call_handler(mint_handler, "POST", "/api/properties/mint", body, wallet_headers(seller)))
    assert minted["status"] == "minted"
    assert minted["tokenId"] == 11
    assert minted["previousOwners"][0]["transferMethod"] == "mint"
    assert store.entries[tx_hash].type.value == "mint"

    again = assert_success(call_handler(mint_handler, "POST", "/api/properties/mint", body, wallet_headers(seller)))
    assert again["tokenId"] == 11


@pytest.mark.unit
def test_mint_by_stranger_is_forbidden(installed_engine, seller):
    record = submit(seller)
    approve(record["propertyId"])
    body = {"propertyId": record["propertyId"], "tokenId": 11, "transactionHash": random_tx_hash()}

    assert_error(
        call_handler(mint_handler, "POST", "/api/properties/mint", body, wallet_headers(random_address())),
        403,
    )


@pytest.mark.unit
def test_mint_before_approval_conflicts(installed_engine, seller):
    record = submit(seller)
    body = {"propertyId": record["propertyId"], "tokenId": 11, "transactionHash": random_tx_hash()}

    assert_error(call_handler(mint_handler, "POST", "/api/properties/mint", body, admin_headers()), 409)


@pytest.mark.unit
def test_list_and_owner_queries(installed_engine, seller, buyer):
    first = submit(seller)
    second = submit(buyer)
    approve(first["propertyId"])

    everything = assert_success(call_handler(list_handler, "GET", "/api/properties"))
    assert everything["pagination"]["total"] == 2

    approved = assert_success(call_handler(list_handler, "GET", f"/api/properties?status=approved&owner={seller}"))
    assert [p["propertyId"] for p in approved["properties"]] == [first["propertyId"]]

    owned = assert_success(call_handler(owner_handler, "GET", f"/api/properties/owner?ownerAddress={buyer}"))
    assert [p["propertyId"] for p in owned] == [second["propertyId"]]

    assert_error(call_handler(list_handler, "GET", "/api/properties?status=sold"), 400)
    assert_error(call_handler(list_handler, "GET", "/api/properties?listed=maybe"), 400)
    assert_error(call_handler(owner_handler, "GET", "/api/properties/owner/0x123"), 400)


@pytest.mark.unit
def test_pending_queue_is_admin_only(installed_engine, seller):
    record = submit(seller)

    assert_error(call_handler(pending_handler, "GET", "/api/properties/pending"), 401)
    assert_error(call_handler(pending_handler, "GET", "/api/properties/pending", headers=wallet_headers(seller)), 403)
    pending = assert_success(call_handler(pending_handler, "GET", "/api/properties/pending", headers=admin_headers()))
    assert [p["propertyId"] for p in pending] == [record["propertyId"]]


@pytest.mark.unit
def test_listing_a_minted_property(installed_engine, listed_property, seller, buyer):
    path = f"/api/properties/listing?propertyId={listed_property.property_id}"
    body = {"isListed": True, "listingPrice": str(3 * 10 ** 18)}

    assert_error(call_handler(listing_handler, "POST", path, body, wallet_headers(buyer)), 403)
    listed = assert_success(call_handler(listing_handler, "POST", path, body, wallet_headers(seller)))
    assert listed["isListed"] is True
    assert listed["listingPrice"] == str(3 * 10 ** 18)

    on_market = assert_success(call_handler(list_handler, "GET", "/api/properties?listed=true"))
    assert [p["propertyId"] for p in on_market["properties"]] == [listed_property.property_id]

    assert_error(call_handler(listing_handler, "POST", path, {"isListed": True}, wallet_headers(seller)), 400)
    unlisted = assert_success(call_handler(listing_handler, "POST", path, {"isListed": False}, wallet_headers(seller)))
    assert unlisted["isListed"] is False
