from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal
from typing import Optional

from app.core.config import settings
from app.core.errors import UnknownRace


@dataclass(frozen=True)
class RaceConfig:
    race_key: str
    title: str
    distance: str
    price: int  # whole rupees
    min_age: int
    max_age: Optional[int] = None


# Backend source of truth for prices. The client never supplies an amount.
RACE_CONFIG: dict[str, RaceConfig] = {
    "2KM": RaceConfig(race_key="2KM", title="Fun Run", distance="2 KM", price=499, min_age=9),
    "5KM": RaceConfig(race_key="5KM", title="Fitness Run", distance="5 KM", price=699, min_age=9),
    "10KM": RaceConfig(race_key="10KM", title="Endurance Run", distance="10 KM", price=1199, min_age=9),
}


@dataclass(frozen=True)
class PriceBreakdown:
    race_key: str
    base_amount: int
    gateway_fee: int
    charged_amount: int
    fee_percentage: float

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class PaymentSummary:
    base_amount: int
    discount_amount: int
    discounted_base: int
    gateway_fee: int
    final_amount: int
    fee_percentage: float
    coupon_code: Optional[str] = None
    discount_percent: Optional[int] = None

    def as_dict(self) -> dict:
        return asdict(self)


def is_valid_race(race_key: str | None) -> bool:
    return race_key in RACE_CONFIG


def list_races() -> list[RaceConfig]:
    return list(RACE_CONFIG.values())


def get_race(race_key: str | None) -> RaceConfig:
    race = RACE_CONFIG.get(race_key or "")
    if race is None:
        raise UnknownRace(race_key)
    return race


def get_price(race_key: str | None) -> int:
    return get_race(race_key).price


def charged_for_base(base_amount: int, fee_rate: float | None = None) -> int:
    """
    Amount to charge so that, after the gateway keeps `fee_rate` of the charge,
    the merchant nets at least `base_amount`:

        charged = ceil(base / (1 - fee_rate))

    Decimal keeps binary float error from pushing an exact quotient up a rupee.
    """
    rate = Decimal(str(settings.GATEWAY_FEE_RATE if fee_rate is None else fee_rate))
    charged = Decimal(int(base_amount)) / (Decimal(1) - rate)
    return int(charged.to_integral_value(rounding=ROUND_CEILING))


def breakdown(race_key: str | None, fee_rate: float | None = None) -> PriceBreakdown:
    rate = settings.GATEWAY_FEE_RATE if fee_rate is None else fee_rate
    base_amount = get_price(race_key)
    charged_amount = charged_for_base(base_amount, rate)

    return PriceBreakdown(
        race_key=race_key,
        base_amount=base_amount,
        gateway_fee=charged_amount - base_amount,
        charged_amount=charged_amount,
        fee_percentage=round(float(rate) * 100, 4),
    )


def discount_for(base_amount: int, discount_value: int) -> int:
    # floor, in the payer's disfavour by at most one rupee
    return (int(base_amount) * int(discount_value)) // 100


def apply_discount(
    price: PriceBreakdown,
    discount_amount: int = 0,
    *,
    coupon_code: str | None = None,
    discount_percent: int | None = None,
) -> PaymentSummary:
    # the gateway fee is computed on the undiscounted base and never discounted
    discounted_base = max(0, price.base_amount - int(discount_amount))
    final_amount = int(
        Decimal(discounted_base + price.gateway_fee).to_integral_value(rounding=ROUND_HALF_UP)
    )

    return PaymentSummary(
        base_amount=price.base_amount,
        discount_amount=int(discount_amount),
        discounted_base=discounted_base,
        gateway_fee=price.gateway_fee,
        final_amount=final_amount,
        fee_percentage=price.fee_percentage,
        coupon_code=coupon_code,
        discount_percent=discount_percent,
    )
