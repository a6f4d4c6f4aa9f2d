from decimal import Decimal

import pytest

from app.core.errors import InvalidRace, UnknownRace
from app.services import pricing


@pytest.mark.parametrize("race_key", list(pricing.RACE_CONFIG))
@pytest.mark.parametrize("rate", [0.0236, 0.025, 0.02, 0.0])
def test_charge_is_smallest_amount_that_nets_the_base(race_key, rate):
    b = pricing.breakdown(race_key, fee_rate=rate)
    keep = Decimal(1) - Decimal(str(rate))

    assert b.base_amount == pricing.RACE_CONFIG[race_key].price
    assert b.gateway_fee == b.charged_amount - b.base_amount
    assert b.gateway_fee >= 0
    assert Decimal(b.charged_amount) * keep >= b.base_amount
    assert Decimal(b.charged_amount - 1) * keep < b.base_amount


def test_default_rate_breakdowns():
    assert pricing.breakdown("2KM").charged_amount == 512
    assert pricing.breakdown("5KM").charged_amount == 716
    assert pricing.breakdown("10KM").charged_amount == 1228
    assert pricing.breakdown("5KM").fee_percentage == 2.36


def test_checkout_without_coupon():
    price = pricing.breakdown("5KM", fee_rate=0.025)
    summary = pricing.apply_discount(price)

    assert (price.base_amount, price.gateway_fee, price.charged_amount) == (699, 18, 717)
    assert summary.discount_amount == 0
    assert summary.discounted_base == 699
    assert summary.final_amount == 717


def test_checkout_with_ten_percent_coupon():
    price = pricing.breakdown("5KM", fee_rate=0.025)
    discount = pricing.discount_for(price.base_amount, 10)
    summary = pricing.apply_discount(price, discount, coupon_code="RUN10", discount_percent=10)

    assert discount == 69
    assert summary.discounted_base == 630
    # fee stays on the undiscounted base
    assert summary.gateway_fee == 18
    assert summary.final_amount == 648
    assert summary.coupon_code == "RUN10"


def test_full_discount_leaves_only_the_fee():
    price = pricing.breakdown("10KM")
    summary = pricing.apply_discount(price, pricing.discount_for(price.base_amount, 100))

    assert summary.discounted_base == 0
    assert summary.final_amount == price.gateway_fee


@pytest.mark.parametrize("value, expected", [(0, 0), (5, 34), (10, 69), (15, 104), (100, 699)])
def test_discount_is_floored(value, expected):
    assert pricing.discount_for(699, value) == expected


@pytest.mark.parametrize("race_key", ["3KM", "", None, "5km"])
def test_unknown_race(race_key):
    assert not pricing.is_valid_race(race_key)
    with pytest.raises(UnknownRace):
        pricing.get_price(race_key)


def test_unknown_race_is_invalid_race():
    with pytest.raises(InvalidRace) as exc:
        pricing.breakdown("HALF")
    assert exc.value.status_code == 400
    assert exc.value.race_key == "HALF"


def test_races_listing():
    keys = [r.race_key for r in pricing.list_races()]
    assert keys == ["2KM", "5KM", "10KM"]
    assert all(r.min_age == 9 for r in pricing.list_races())
