import pytest

from kaapav.utils.phone import is_valid_indian_phone, mask_phone, normalize_phone
from kaapav.utils.text import (
    extract_email,
    extract_order_id,
    extract_phone,
    extract_pincode,
    extract_quantity,
    generate_order_id,
    is_valid_order_id,
    sanitize,
)


@pytest.mark.parametrize(
    "raw",
    ["9876543210", "+91 98765 43210", "919876543210", "09876543210", "+91-98765-43210"],
)
def test_normalize_phone_produces_country_prefixed_digits(raw):
    assert normalize_phone(raw) == "919876543210"


@pytest.mark.parametrize("raw", ["9876543210", "+91 98765 43210", "12345", "", "+1 415 555 0100"])
def test_normalize_phone_is_idempotent(raw):
    once = normalize_phone(raw)

    assert normalize_phone(once) == once


def test_normalize_phone_never_raises_on_odd_input():
    assert normalize_phone(None) == ""
    assert normalize_phone("abc") == ""
    assert normalize_phone(9876543210) == "919876543210"


def test_is_valid_indian_phone():
    assert is_valid_indian_phone("919876543210") is True
    assert is_valid_indian_phone("9876543210") is True
    assert is_valid_indian_phone("5876543210") is False
    assert is_valid_indian_phone("") is False


def test_mask_phone_keeps_last_four_digits():
    assert mask_phone("919876543210") == "91******3210"
    assert mask_phone("12") == "****"


def test_extract_order_id_is_case_insensitive():
    assert extract_order_id("where is kaa-123456 please") == "KAA-123456"
    assert extract_order_id("no order here") is None


def test_extract_pincode_ignores_leading_zero():
    assert extract_pincode("Flat 4, MG Road, Bengaluru 560001") == "560001"
    assert extract_pincode("pin 012345") is None


def test_extract_quantity_defaults_to_one():
    assert extract_quantity("2 pcs of the hoops") == 2
    assert extract_quantity("the hoops") == 1


def test_generated_order_ids_are_valid():
    for _ in range(20):
        assert is_valid_order_id(generate_order_id())


def test_extract_phone_finds_indian_mobiles():
    assert extract_phone("call me on +919876543210 after 6") == "919876543210"
    assert extract_phone("my number is 09876543210") == "919876543210"
    assert extract_phone("landline 0801234567") is None
    assert extract_phone(None) is None


def test_extract_email_is_lowercased():
    assert extract_email("mail Priya.S@Example.com for the invoice") == "priya.s@example.com"
    assert extract_email("no email here") is None


def test_sanitize_trims_and_truncates():
    assert sanitize("  hello  ") == "hello"
    assert sanitize("abcdef", 3) == "abc"
    assert sanitize(None) == ""
    assert sanitize(560001) == "560001"
