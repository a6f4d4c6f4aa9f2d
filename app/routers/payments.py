# app/routers/payments.py
from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.responses import Response

from app.core.db import get_db
from app.core.deps import get_dispatcher, get_gateway
from app.core.errors import PaymentsError
from app.integrations.razorpay_client import RazorpayClient
from app.schemas.payments import (
    CancelOrderIn,
    CancelOrderOut,
    CreateOrderIn,
    CreateOrderOut,
    PaymentStatusOut,
    PriceBreakdownOut,
    RaceOut,
    RacesOut,
    VerifyPaymentIn,
    VerifyPaymentOut,
    WebhookAck,
)
from app.services import payments, pricing
from app.services.notifications import BackgroundNotifier, NotificationDispatcher

router = APIRouter(prefix="/api/payments", tags=["Payments"])


@router.get("/races", response_model=RacesOut)
async def list_races() -> RacesOut:
    return RacesOut(races=[RaceOut(**vars(r)) for r in pricing.list_races()])


@router.get("/price-breakdown/{race_category}", response_model=PriceBreakdownOut)
async def price_breakdown(race_category: str) -> PriceBreakdownOut:
    try:
        return PriceBreakdownOut(**payments.get_price_breakdown(race_category.upper()).as_dict())
    except PaymentsError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/create-order", response_model=CreateOrderOut)
async def create_order(
    payload: CreateOrderIn,
    db: AsyncSession = Depends(get_db),
    gateway: RazorpayClient = Depends(get_gateway),
) -> CreateOrderOut:
    try:
        result = await payments.create_order(
            db,
            gateway,
            registration_id=payload.registration_id,
            race_category=payload.race_category.strip().upper(),
            coupon_code=payload.coupon_code,
        )
        return CreateOrderOut(**result)
    except PaymentsError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/cancel-order", response_model=CancelOrderOut)
async def cancel_order(
    payload: CancelOrderIn,
    db: AsyncSession = Depends(get_db),
) -> CancelOrderOut:
    result = await payments.cancel_order(
        db,
        coupon_code=payload.coupon_code,
        registration_id=payload.registration_id,
    )
    return CancelOrderOut(**result)


@router.post("/verify-payment", response_model=VerifyPaymentOut)
async def verify_payment(
    payload: VerifyPaymentIn,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    gateway: RazorpayClient = Depends(get_gateway),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> VerifyPaymentOut:
    try:
        result = await payments.verify_payment(
            db,
            gateway,
            order_id=payload.razorpay_order_id,
            payment_id=payload.razorpay_payment_id,
            signature=payload.razorpay_signature,
            registration_id=payload.registration_id,
            notifier=BackgroundNotifier(background_tasks, dispatcher),
        )
        return VerifyPaymentOut(**result)
    except PaymentsError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/webhook", response_model=WebhookAck)
async def webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_razorpay_signature: str | None = Header(default=None),
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> WebhookAck:
    # the signature covers the exact bytes received, so never re-serialize
    raw_body = await request.body()
    try:
        result = await payments.handle_webhook(
            db,
            raw_body=raw_body,
            signature=x_razorpay_signature,
            notifier=BackgroundNotifier(background_tasks, dispatcher),
        )
        return WebhookAck(**result)
    except PaymentsError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.get("/status/{registration_id}", response_model=PaymentStatusOut)
async def payment_status(
    registration_id: str,
    db: AsyncSession = Depends(get_db),
) -> PaymentStatusOut:
    try:
        return PaymentStatusOut(**await payments.check_status(db, registration_id))
    except PaymentsError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.get("/invoice/{registration_id}")
async def download_invoice(
    registration_id: str,
    db: AsyncSession = Depends(get_db),
):
    try:
        pdf_bytes = await payments.invoice_for(db, registration_id)
    except PaymentsError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    filename = f"invoice_{registration_id}.pdf"
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
