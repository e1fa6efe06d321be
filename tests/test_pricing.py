from datetime import date

from kaapav.services.pricing import (
    FREE_SHIPPING_THRESHOLD,
    REMOTE_SHIPPING,
    STANDARD_SHIPPING,
    apply_discount,
    calculate_shipping,
    compute_totals,
    estimate_delivery,
)


def _items(*prices_and_qty):
    return [
        {"product_id": f"P{index}", "name": f"Item {index}", "price": price, "quantity": qty}
        for index, (price, qty) in enumerate(prices_and_qty)
    ]


def test_small_order_pays_standard_shipping():
    totals = compute_totals(_items((300, 1)), pincode="560001")

    assert totals.subtotal == 300
    assert totals.shipping == STANDARD_SHIPPING == 49
    assert totals.total == 349
    assert totals.item_count == 1


def test_shipping_is_free_from_threshold():
    assert calculate_shipping(FREE_SHIPPING_THRESHOLD) == 0
    assert calculate_shipping(FREE_SHIPPING_THRESHOLD - 1) == STANDARD_SHIPPING


def test_remote_pincodes_pay_remote_rate_below_threshold():
    assert calculate_shipping(200, "110001") == REMOTE_SHIPPING
    assert calculate_shipping(600, "110001") == 0


def test_totals_multiply_quantities():
    totals = compute_totals(_items((150, 2), (99, 3)))

    assert totals.subtotal == 597
    assert totals.item_count == 5
    assert totals.shipping == 0


def test_kaapav20_takes_twenty_percent_off_large_orders():
    totals = compute_totals(_items((1000, 1)), pincode="560001", discount_code="kaapav20")

    assert totals.discount == 200
    assert totals.shipping == 0
    assert totals.total == 800


def test_kaapav20_requires_minimum_order():
    result = apply_discount(998, "KAAPAV20")

    assert result.valid is False
    assert "999" in result.error


def test_discount_can_push_order_below_free_shipping():
    totals = compute_totals(_items((520, 1)), discount_code="FLAT50")

    assert totals.discount == 50
    assert totals.shipping == STANDARD_SHIPPING
    assert totals.total == 520 - 50 + STANDARD_SHIPPING


def test_freeship_code_waives_shipping():
    totals = compute_totals(_items((100, 1)), discount_code="FREESHIP")

    assert totals.discount == 0
    assert totals.shipping == 0
    assert totals.total == 100


def test_capped_percent_discount():
    result = apply_discount(5000, "WELCOME10")

    assert result.valid is True
    assert result.discount_amount == 100


def test_unknown_code_is_ignored_in_totals():
    totals = compute_totals(_items((300, 1)), discount_code="BOGUS")

    assert totals.discount == 0
    assert totals.total == 349


def test_estimate_delivery_skips_sundays():
    # Friday + 3 business days lands on Tuesday
    assert estimate_delivery(date(2024, 1, 5), 3) == date(2024, 1, 9)
