"""Tests for shared field types."""

import pytest
from pydantic import BaseModel, ValidationError

from src.models.common import TxHash, WalletAddress, Wei, new_id, normalize_address, parse_wei


class Payment(BaseModel):
    payer: WalletAddress
    amount: Wei
    tx: TxHash


@pytest.mark.unit
def test_addresses_are_lower_cased():
    address = "0xABCDEF0123456789abcdef0123456789ABCDEF01"
    assert normalize_address(address) == address.lower()


@pytest.mark.unit
@pytest.mark.parametrize("value", ["0x123", "ABCDEF0123456789abcdef0123456789ABCDEF0101", None, 42])
def test_invalid_addresses_rejected(value):
    with pytest.raises(ValueError):
        normalize_address(value)


@pytest.mark.unit
def test_parse_wei_accepts_ints_and_digit_strings():
    assert parse_wei(10 ** 18) == 10 ** 18
    assert parse_wei("1000000000000000000") == 10 ** 18
    assert parse_wei(" 5 ") == 5


@pytest.mark.unit
@pytest.mark.parametrize("value", [1.5, "1.5", "-1", -1, True, "one", None, "²", "١٢"])
def test_parse_wei_rejects_non_integers(value):
    with pytest.raises(ValueError):
        parse_wei(value)


@pytest.mark.unit
def test_wei_serializes_as_string_in_json_mode():
    payment = Payment(payer="0x" + "a" * 40, amount="25000000000000000", tx="0x" + "B" * 64)

    assert payment.amount == 25 * 10 ** 15
    assert payment.model_dump()["amount"] == 25 * 10 ** 15
    dumped = payment.model_dump(mode="json")
    assert dumped["amount"] == "25000000000000000"
    assert dumped["tx"] == "0x" + "b" * 64


@pytest.mark.unit
def test_model_rejects_float_amount():
    with pytest.raises(ValidationError):
        Payment(payer="0x" + "a" * 40, amount=0.1, tx="0x" + "b" * 64)


@pytest.mark.unit
def test_new_id_is_ulid_text():
    first, second = new_id(), new_id()
    assert len(first) == 26
    assert first != second
