# app/routers/coupons.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.errors import PaymentsError
from app.schemas.coupons import CouponValidateIn, CouponValidateOut
from app.schemas.payments import PaymentSummaryOut
from app.services import coupons

router = APIRouter(prefix="/api/coupons", tags=["Coupons"])


@router.post("/validate", response_model=CouponValidateOut)
async def validate_coupon(
    payload: CouponValidateIn,
    db: AsyncSession = Depends(get_db),
) -> CouponValidateOut:
    # preview only: no slot is reserved until create-order
    try:
        summary = await coupons.preview(db, payload.code, payload.race_category.strip().upper())
    except PaymentsError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    return CouponValidateOut(
        code=summary.coupon_code,
        discount_percent=summary.discount_percent,
        payment_summary=PaymentSummaryOut(**summary.as_dict()),
    )
