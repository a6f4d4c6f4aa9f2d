# app/models/coupon.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db import Base


class Coupon(Base):
    __tablename__ = "coupons"
    __table_args__ = (
        CheckConstraint("length(code) BETWEEN 5 AND 12", name="coupons_code_length_chk"),
        CheckConstraint(
            "discount_value >= 0 AND discount_value <= 100",
            name="coupons_discount_value_chk",
        ),
        CheckConstraint("usage_count >= 0", name="coupons_usage_count_chk"),
    )

    # uppercase alphanumeric, normalized by the ledger before any lookup
    code: Mapped[str] = mapped_column(String(12), primary_key=True)

    discount_type: Mapped[str] = mapped_column(String(16), nullable=False, default="PERCENT")
    discount_value: Mapped[int] = mapped_column(Integer, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # NULL = unlimited
    max_usage: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # settled (paid) redemptions
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # order created, payment not settled yet
    reserved_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

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
