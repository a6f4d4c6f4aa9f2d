from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFoundError, ValidationError
from app.models.registration import Registration
from app.services import pricing

logger = structlog.get_logger().bind(component="registrations")

# statuses whose record is reused when the same email submits the form again
DRAFT_STATUSES = ("pending", "abandoned", "failed")


@dataclass(frozen=True)
class SettlementAmounts:
    base_amount: Optional[int] = None
    discount_amount: Optional[int] = None
    gateway_fee: Optional[int] = None
    charged_amount: Optional[int] = None

    def values(self) -> dict:
        out = {
            "base_amount": self.base_amount,
            "discount_amount": self.discount_amount,
            "gateway_fee": self.gateway_fee,
            "charged_amount": self.charged_amount,
        }
        # unknown amounts keep whatever order creation stored
        return {k: v for k, v in out.items() if v is not None}


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


async def get_registration(db: AsyncSession, registration_id: str) -> Registration:
    res = await db.execute(
        select(Registration)
        .where(Registration.id == registration_id)
        .execution_options(populate_existing=True)
    )
    reg = res.scalar_one_or_none()
    if reg is None:
        raise NotFoundError("Registration not found")
    return reg


async def find_by_order_id(db: AsyncSession, order_id: str) -> Registration | None:
    res = await db.execute(
        select(Registration)
        .where(Registration.razorpay_order_id == order_id)
        .order_by(Registration.created_at.desc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


async def create_or_reuse(
    db: AsyncSession,
    *,
    name: str,
    email: str,
    phone: str,
    race: str,
    tshirt_size: str,
    gender: str | None = None,
    dob: date | None = None,
    emergency_name: str | None = None,
    emergency_phone: str | None = None,
) -> tuple[Registration, bool]:
    """
    Returns (registration, created). An unfinished draft with the same email is
    reused so an abandoned checkout does not leave duplicates behind.
    """
    if not pricing.is_valid_race(race):
        raise ValidationError(f"Race must be one of: {', '.join(pricing.RACE_CONFIG)}")

    clean_email = email.strip().lower()

    res = await db.execute(
        select(Registration)
        .where(Registration.email == clean_email)
        .order_by(Registration.created_at.desc())
        .execution_options(populate_existing=True)
    )
    existing = res.scalars().all()

    if any(r.payment_status == "paid" for r in existing):
        raise ValidationError("This email is already registered")

    profile = {
        "name": name.strip(),
        "email": clean_email,
        "phone": phone.strip(),
        "race": race,
        "tshirt_size": tshirt_size,
        "gender": gender,
        "dob": dob,
        "emergency_name": emergency_name,
        "emergency_phone": emergency_phone,
    }

    draft = next((r for r in existing if r.payment_status in DRAFT_STATUSES), None)

    try:
        if draft is not None:
            for k, v in profile.items():
                setattr(draft, k, v)
            reg, created = draft, False
        else:
            reg = Registration(payment_status="pending", **profile)
            db.add(reg)
            created = True

        await db.commit()
        await db.refresh(reg)

    except Exception:
        await db.rollback()
        raise

    logger.info("registration_saved", registration_id=reg.id, created=created)
    return reg, created


# -------------------------
# Conditional transitions. Each is one UPDATE; rowcount says who won.
# -------------------------

async def _cas(db: AsyncSession, registration_id: str, conditions: list, values: dict) -> bool:
    res = await db.execute(
        update(Registration)
        .where(Registration.id == registration_id, *conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


async def mark_paid(
    db: AsyncSession,
    registration_id: str,
    *,
    order_id: str,
    payment_id: str,
    amounts: SettlementAmounts,
) -> bool:
    """Settle. True only for the one caller that moved the record to paid."""
    return await _cas(
        db,
        registration_id,
        [Registration.payment_status != "paid"],
        {
            "payment_status": "paid",
            "razorpay_order_id": order_id,
            "razorpay_payment_id": payment_id,
            "payment_date": _now_utc(),
            "failure_code": None,
            "failure_reason": None,
            **amounts.values(),
        },
    )


async def refresh_paid(
    db: AsyncSession,
    registration_id: str,
    *,
    order_id: str,
    payment_id: str,
    amounts: SettlementAmounts,
) -> bool:
    # both confirmation paths read the same order notes, so the values converge
    return await _cas(
        db,
        registration_id,
        [Registration.payment_status == "paid"],
        {
            "razorpay_order_id": order_id,
            "razorpay_payment_id": payment_id,
            **amounts.values(),
        },
    )


async def mark_failed(
    db: AsyncSession,
    registration_id: str,
    *,
    failure_code: str | None,
    failure_reason: str | None,
    payment_id: str | None = None,
) -> bool:
    values = {
        "payment_status": "failed",
        "failure_code": failure_code,
        "failure_reason": failure_reason,
    }
    if payment_id:
        values["razorpay_payment_id"] = payment_id

    return await _cas(db, registration_id, [Registration.payment_status == "pending"], values)


async def mark_abandoned(db: AsyncSession, registration_id: str) -> bool:
    return await _cas(
        db,
        registration_id,
        [Registration.payment_status == "pending"],
        {"payment_status": "abandoned"},
    )


async def open_checkout(
    db: AsyncSession,
    registration_id: str,
    *,
    race: str,
    order_id: str,
    summary: pricing.PaymentSummary,
) -> bool:
    """Record a new gateway order; failed/abandoned drafts go back to pending."""
    return await _cas(
        db,
        registration_id,
        [Registration.payment_status != "paid"],
        {
            "payment_status": "pending",
            "race": race,
            "razorpay_order_id": order_id,
            "razorpay_payment_id": None,
            "base_amount": summary.base_amount,
            "discount_amount": summary.discount_amount,
            "gateway_fee": summary.gateway_fee,
            "charged_amount": summary.final_amount,
        },
    )


async def take_coupon_reservation(db: AsyncSession, registration_id: str, code: str) -> bool:
    return await _cas(
        db,
        registration_id,
        [Registration.coupon_reserved.is_(False)],
        {"coupon_code": code, "coupon_reserved": True},
    )


async def drop_coupon_reservation(db: AsyncSession, registration_id: str) -> bool:
    return await _cas(
        db,
        registration_id,
        [Registration.coupon_reserved.is_(True)],
        {"coupon_reserved": False},
    )


async def claim_confirmation(db: AsyncSession, registration_id: str) -> bool:
    return await _cas(
        db,
        registration_id,
        [
            Registration.payment_status == "paid",
            Registration.confirmation_email_sent.is_(False),
        ],
        {"confirmation_email_sent": True},
    )


async def unclaim_confirmation(db: AsyncSession, registration_id: str) -> bool:
    return await _cas(
        db,
        registration_id,
        [Registration.confirmation_email_sent.is_(True)],
        {"confirmation_email_sent": False},
    )
