# app/schemas/payments.py
from __future__ import annotations

from datetime import datetime
from typing import List

from pydantic import BaseModel, Field


class PaymentSummaryOut(BaseModel):
    base_amount: int
    discount_amount: int
    discounted_base: int
    gateway_fee: int
    final_amount: int
    fee_percentage: float
    coupon_code: str | None = None
    discount_percent: int | None = None


class PriceBreakdownOut(BaseModel):
    race_key: str
    base_amount: int
    gateway_fee: int
    charged_amount: int
    fee_percentage: float


class RaceOut(BaseModel):
    race_key: str
    title: str
    distance: str
    price: int
    min_age: int
    max_age: int | None = None


class CreateOrderIn(BaseModel):
    registration_id: str
    race_category: str
    coupon_code: str | None = None


class CreateOrderOut(BaseModel):
    order_id: str
    amount: int  # paise
    currency: str
    receipt: str
    key_id: str
    race_category: str
    registration_id: str
    payment_summary: PaymentSummaryOut


class CancelOrderIn(BaseModel):
    registration_id: str | None = None
    coupon_code: str | None = None


class CancelOrderOut(BaseModel):
    released: bool
    abandoned: bool = False


class VerifyPaymentIn(BaseModel):
    razorpay_order_id: str = Field(..., min_length=1)
    razorpay_payment_id: str = Field(..., min_length=1)
    razorpay_signature: str = Field(..., min_length=1)
    registration_id: str | None = None


class VerifyPaymentOut(BaseModel):
    verified: bool
    registration_id: str | None = None
    payment_status: str | None = None
    settled: bool = False


class WebhookAck(BaseModel):
    acknowledged: bool = True
    outcome: str
    registration_id: str | None = None


class PaymentStatusOut(BaseModel):
    registration_id: str
    payment_status: str
    razorpay_order_id: str | None = None
    razorpay_payment_id: str | None = None
    payment_date: datetime | None = None
    base_amount: int | None = None
    discount_amount: int | None = None
    gateway_fee: int | None = None
    charged_amount: int | None = None
    coupon_code: str | None = None


class RacesOut(BaseModel):
    races: List[RaceOut] = Field(default_factory=list)


class ResendConfirmationOut(BaseModel):
    message_id: str
    to: str
