from __future__ import annotations

from datetime import date, datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import Boolean, CheckConstraint, Date, DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db import Base

PAYMENT_STATUSES = ("pending", "paid", "failed", "abandoned")


def _new_id() -> str:
    return uuid4().hex


class Registration(Base):
    __tablename__ = "registrations"
    __table_args__ = (
        CheckConstraint(
            "payment_status IN ('pending','paid','failed','abandoned')",
            name="registrations_payment_status_chk",
        ),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)

    # Participant profile (carried through, never interpreted by payments)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    phone: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    race: Mapped[str] = mapped_column(String(8), nullable=False)
    tshirt_size: Mapped[str] = mapped_column(String(4), nullable=False)
    gender: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    dob: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    emergency_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    emergency_phone: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)

    payment_status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")

    # Whole rupees. Captured at order creation, confirmed at settlement.
    base_amount: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    discount_amount: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    gateway_fee: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    charged_amount: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    coupon_code: Mapped[Optional[str]] = mapped_column(String(12), nullable=True)
    # True while this registration holds a reservation slot on coupon_code
    coupon_reserved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    razorpay_order_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    razorpay_payment_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    payment_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    failure_code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    confirmation_email_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
