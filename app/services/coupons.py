# app/services/coupons.py
"""
Coupon ledger.

A coupon's capacity is split in two counters:

  reserved_count  slots held by orders that are created but not settled
  usage_count     slots consumed by settled (paid) registrations

Every mutation is a single conditional UPDATE so that concurrent checkouts
cannot both pass the capacity check. None of these functions commit; the
caller owns the transaction so ledger writes land together with the
registration write that justifies them.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog
from sqlalchemy import case, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import CapacityError, CouponRejected
from app.models.coupon import Coupon
from app.services import pricing

logger = structlog.get_logger().bind(component="coupon_ledger")

CODE_RE = re.compile(r"^[A-Z0-9]{5,12}$")


@dataclass(frozen=True)
class CouponQuote:
    code: str
    discount_value: int
    discount_amount: int
    discounted_base: int


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def normalize_code(code: str | None) -> str:
    clean = (code or "").strip().upper()
    if not CODE_RE.match(clean):
        raise CouponRejected("malformed", clean or None)
    return clean


async def get_coupon(db: AsyncSession, code: str) -> Coupon | None:
    res = await db.execute(
        select(Coupon)
        .where(Coupon.code == code)
        .execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


def _rejection_reason(coupon: Coupon | None, now: datetime, *, count_reserved: bool) -> str | None:
    if coupon is None:
        return "not_found"
    if not coupon.is_active:
        return "inactive"

    expires_at = _as_utc(coupon.expires_at)
    if expires_at is not None and expires_at < now:
        return "expired"

    if coupon.max_usage is not None:
        taken = coupon.usage_count + (coupon.reserved_count if count_reserved else 0)
        if taken >= coupon.max_usage:
            return "exhausted"

    return None


def _raise_for(reason: str, code: str) -> None:
    if reason == "exhausted":
        raise CapacityError(code)
    raise CouponRejected(reason, code)


def _quote(coupon: Coupon, base_amount: int) -> CouponQuote:
    discount_amount = pricing.discount_for(base_amount, coupon.discount_value)
    return CouponQuote(
        code=coupon.code,
        discount_value=int(coupon.discount_value),
        discount_amount=discount_amount,
        discounted_base=max(0, int(base_amount) - discount_amount),
    )


async def quote(
    db: AsyncSession,
    code: str | None,
    base_amount: int,
    *,
    count_reserved: bool = False,
) -> CouponQuote:
    """Validate a coupon and compute its discount without taking a slot."""
    clean = normalize_code(code)
    coupon = await get_coupon(db, clean)

    reason = _rejection_reason(coupon, _now_utc(), count_reserved=count_reserved)
    if reason:
        _raise_for(reason, clean)

    return _quote(coupon, base_amount)


async def validate_and_reserve(db: AsyncSession, code: str | None, base_amount: int) -> CouponQuote:
    clean = normalize_code(code)
    now = _now_utc()

    # capacity check and increment in one statement
    res = await db.execute(
        update(Coupon)
        .where(
            Coupon.code == clean,
            Coupon.is_active.is_(True),
            or_(Coupon.expires_at.is_(None), Coupon.expires_at >= now),
            or_(
                Coupon.max_usage.is_(None),
                Coupon.usage_count + Coupon.reserved_count < Coupon.max_usage,
            ),
        )
        .values(reserved_count=Coupon.reserved_count + 1)
        .execution_options(synchronize_session=False)
    )

    if res.rowcount != 1:
        coupon = await get_coupon(db, clean)
        # a slot may have been freed after our update missed; still report it as full
        reason = _rejection_reason(coupon, now, count_reserved=True) or "exhausted"
        logger.info("coupon_rejected", code=clean, reason=reason)
        _raise_for(reason, clean)

    coupon = await get_coupon(db, clean)
    logger.info(
        "coupon_reserved",
        code=clean,
        reserved_count=coupon.reserved_count,
        usage_count=coupon.usage_count,
        max_usage=coupon.max_usage,
    )
    return _quote(coupon, base_amount)


def _decrement_reserved():
    return case((Coupon.reserved_count > 0, Coupon.reserved_count - 1), else_=0)


async def commit(db: AsyncSession, code: str, *, held: bool = True) -> None:
    """Consume a slot on settlement. `held` means a reservation is converted."""
    values = {"usage_count": Coupon.usage_count + 1}
    if held:
        values["reserved_count"] = _decrement_reserved()

    await db.execute(
        update(Coupon)
        .where(Coupon.code == code)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    logger.info("coupon_committed", code=code, held=held)


async def release(db: AsyncSession, code: str | None) -> bool:
    if not code:
        return False

    res = await db.execute(
        update(Coupon)
        .where(Coupon.code == code.strip().upper(), Coupon.reserved_count > 0)
        .values(reserved_count=Coupon.reserved_count - 1)
        .execution_options(synchronize_session=False)
    )
    released = res.rowcount == 1
    logger.info("coupon_released", code=code, released=released)
    return released


async def preview(db: AsyncSession, code: str | None, race_category: str) -> pricing.PaymentSummary:
    """Checkout preview: what the payer would be charged with this coupon."""
    price = pricing.breakdown(race_category)
    q = await quote(db, code, price.base_amount)
    return pricing.apply_discount(
        price,
        q.discount_amount,
        coupon_code=q.code,
        discount_percent=q.discount_value,
    )
