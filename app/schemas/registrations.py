# app/schemas/registrations.py
from __future__ import annotations

import re
from datetime import date, datetime

from pydantic import BaseModel, Field, field_validator

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_RE = re.compile(r"^\d{10}$")

TSHIRT_SIZES = ("XS", "S", "M", "L", "XL", "XXL")


class RegistrationIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    email: str = Field(..., max_length=254)
    phone: str
    race: str
    tshirt_size: str
    gender: str | None = None
    dob: date | None = None
    emergency_name: str | None = Field(default=None, max_length=120)
    emergency_phone: str | None = None

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        v = v.strip().lower()
        if not EMAIL_RE.match(v):
            raise ValueError("Invalid email address")
        return v

    @field_validator("phone")
    @classmethod
    def _phone(cls, v: str) -> str:
        v = v.strip()
        if not PHONE_RE.match(v):
            raise ValueError("Phone must be 10 digits")
        return v

    @field_validator("emergency_phone")
    @classmethod
    def _emergency_phone(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        v = v.strip()
        if not PHONE_RE.match(v):
            raise ValueError("Emergency phone must be 10 digits")
        return v

    @field_validator("tshirt_size")
    @classmethod
    def _tshirt(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in TSHIRT_SIZES:
            raise ValueError(f"T-shirt size must be one of: {', '.join(TSHIRT_SIZES)}")
        return v

    @field_validator("race")
    @classmethod
    def _race(cls, v: str) -> str:
        return v.strip().upper()


class RegistrationOut(BaseModel):
    id: str
    name: str
    email: str
    phone: str
    race: str
    tshirt_size: str
    gender: str | None
    dob: date | None

    payment_status: str
    base_amount: int | None
    discount_amount: int | None
    gateway_fee: int | None
    charged_amount: int | None
    coupon_code: str | None

    razorpay_order_id: str | None
    razorpay_payment_id: str | None
    payment_date: datetime | None

    created_at: datetime

    class Config:
        from_attributes = True


class RegistrationSaved(BaseModel):
    registration: RegistrationOut
    created: bool
