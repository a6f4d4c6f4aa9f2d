# app/schemas/coupons.py
from __future__ import annotations

from pydantic import BaseModel

from app.schemas.payments import PaymentSummaryOut


class CouponValidateIn(BaseModel):
    code: str
    race_category: str


class CouponValidateOut(BaseModel):
    valid: bool = True
    code: str
    discount_percent: int
    payment_summary: PaymentSummaryOut
