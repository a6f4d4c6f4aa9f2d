"""
Order reconciliation.

A registration is settled by whichever of two channels lands first:

  verify_payment  the browser posts the checkout signature (fast, optimistic)
  handle_webhook  Razorpay pushes payment.captured / order.paid (authoritative)

Both go through the same conditional status update, so exactly one of them
performs the settlement (and the coupon commit that belongs to it), whatever
the order of arrival and however often the webhook is redelivered.
"""
from __future__ import annotations

import json
import time
from typing import Any, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import GatewayError, InvalidRace, InvalidSignature, NotFoundError, ValidationError
from app.core.security import payment_signature, signatures_match, webhook_signature
from app.integrations.razorpay_client import RazorpayClient
from app.models.registration import Registration
from app.services import coupons, pricing, registrations
from app.services.invoice_pdf import render_invoice
from app.services.notifications import Notifier
from app.services.registrations import SettlementAmounts

logger = structlog.get_logger().bind(component="payments")

CAPTURE_EVENTS = ("payment.captured", "order.paid")
FAILURE_EVENTS = ("payment.failed",)


# -------------------------
# Helpers
# -------------------------

def _int_or_none(v: Any) -> Optional[int]:
    if v is None or v == "":
        return None
    try:
        return int(float(v))
    except (TypeError, ValueError):
        return None


def _notes_of(entity: dict | None) -> dict:
    # Razorpay sends an empty list, not an object, when there are no notes
    notes = (entity or {}).get("notes")
    return notes if isinstance(notes, dict) else {}


def _amounts_from_notes(notes: dict | None) -> Optional[SettlementAmounts]:
    if not notes:
        return None
    final_amount = _int_or_none(notes.get("finalAmount"))
    if final_amount is None:
        return None
    return SettlementAmounts(
        base_amount=_int_or_none(notes.get("baseAmount")),
        discount_amount=_int_or_none(notes.get("discountAmount")),
        gateway_fee=_int_or_none(notes.get("gatewayFee")),
        charged_amount=final_amount,
    )


def _paise_to_rupees(amount: Any) -> Optional[int]:
    paise = _int_or_none(amount)
    if paise is None:
        return None
    return paise // 100


def _order_notes(summary: pricing.PaymentSummary, registration_id: str, race_category: str) -> dict:
    return {
        "registrationId": registration_id,
        "raceCategory": race_category,
        "baseAmount": summary.base_amount,
        "discountAmount": summary.discount_amount,
        "discountedBase": summary.discounted_base,
        "gatewayFee": summary.gateway_fee,
        "finalAmount": summary.final_amount,
        "couponCode": summary.coupon_code or "",
    }


async def _release_registration_coupon(db: AsyncSession, reg: Registration) -> bool:
    held = await registrations.drop_coupon_reservation(db, reg.id)
    if held and reg.coupon_code:
        await coupons.release(db, reg.coupon_code)
    return held


async def _consume_coupon(db: AsyncSession, reg: Registration, notes: dict | None) -> None:
    """Called only by the caller that won the settlement."""
    held = await registrations.drop_coupon_reservation(db, reg.id)

    # only the order's own notes carry the amounts; payment notes may hold just the id
    if notes and "finalAmount" in notes:
        code = (notes.get("couponCode") or "").strip().upper() or None
    elif reg.coupon_code and (held or (reg.discount_amount or 0) > 0):
        code = reg.coupon_code
    else:
        code = None

    if code:
        # not held: the reservation was released by an earlier failed attempt
        await coupons.commit(db, code, held=held)
    elif held and reg.coupon_code:
        await coupons.release(db, reg.coupon_code)


def _stored_amounts(reg: Registration) -> SettlementAmounts:
    return SettlementAmounts(
        base_amount=reg.base_amount,
        discount_amount=reg.discount_amount,
        gateway_fee=reg.gateway_fee,
        charged_amount=reg.charged_amount,
    )


# -------------------------
# Price breakdown / status
# -------------------------

def get_price_breakdown(race_key: str | None) -> pricing.PriceBreakdown:
    return pricing.breakdown(race_key)


async def check_status(db: AsyncSession, registration_id: str) -> dict:
    reg = await registrations.get_registration(db, registration_id)
    return {
        "registration_id": reg.id,
        "payment_status": reg.payment_status,
        "razorpay_order_id": reg.razorpay_order_id,
        "razorpay_payment_id": reg.razorpay_payment_id,
        "payment_date": reg.payment_date,
        "base_amount": reg.base_amount,
        "discount_amount": reg.discount_amount,
        "gateway_fee": reg.gateway_fee,
        "charged_amount": reg.charged_amount,
        "coupon_code": reg.coupon_code,
    }


async def invoice_for(db: AsyncSession, registration_id: str) -> bytes:
    reg = await registrations.get_registration(db, registration_id)
    if reg.payment_status != "paid":
        raise NotFoundError("Invoice not available")
    return render_invoice(reg)


# -------------------------
# Create / cancel
# -------------------------

async def create_order(
    db: AsyncSession,
    gateway: RazorpayClient,
    *,
    registration_id: str,
    race_category: str,
    coupon_code: str | None = None,
) -> dict:
    if not pricing.is_valid_race(race_category):
        raise InvalidRace(race_category)

    log = logger.bind(registration_id=registration_id, race=race_category)

    reg = await registrations.get_registration(db, registration_id)
    if reg.payment_status == "paid":
        raise ValidationError("Registration is already paid")

    code = coupons.normalize_code(coupon_code) if (coupon_code or "").strip() else None
    if code and reg.coupon_code and reg.coupon_code != code:
        raise ValidationError("A different coupon is already applied to this registration")

    price = pricing.breakdown(race_category)

    quote: coupons.CouponQuote | None = None
    reserved_now = False

    try:
        if code and reg.coupon_reserved:
            # retry of an earlier checkout: the slot is already ours
            quote = await coupons.quote(db, code, price.base_amount)
        elif code:
            quote = await coupons.validate_and_reserve(db, code, price.base_amount)
            if not await registrations.take_coupon_reservation(db, registration_id, code):
                # a concurrent checkout for this registration took it first
                await coupons.release(db, code)
            else:
                reserved_now = True
            await db.commit()
        elif reg.coupon_reserved:
            # coupon removed from the checkout
            await _release_registration_coupon(db, reg)
            await db.commit()
    except Exception:
        await db.rollback()
        raise

    summary = pricing.apply_discount(
        price,
        quote.discount_amount if quote else 0,
        coupon_code=quote.code if quote else None,
        discount_percent=quote.discount_value if quote else None,
    )

    receipt = f"receipt_{race_category}_{int(time.time() * 1000)}"

    try:
        order = await gateway.create_order(
            amount=summary.final_amount * 100,  # paise
            currency=settings.CURRENCY,
            receipt=receipt,
            notes=_order_notes(summary, registration_id, race_category),
        )
    except GatewayError:
        if reserved_now:
            await _release_taken_coupon(db, registration_id, log)
        raise

    try:
        opened = await registrations.open_checkout(
            db,
            registration_id,
            race=race_category,
            order_id=order["id"],
            summary=summary,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        if reserved_now:
            await _release_taken_coupon(db, registration_id, log)
        raise

    if not opened:
        # settled by another request while the order was being created
        log.warning("order_superseded_by_settlement", order_id=order["id"])
        if reserved_now:
            await _release_taken_coupon(db, registration_id, log)
        raise ValidationError("Registration is already paid")

    log.info(
        "order_created",
        order_id=order["id"],
        final_amount=summary.final_amount,
        coupon_code=summary.coupon_code,
    )

    return {
        "order_id": order["id"],
        "amount": int(order.get("amount", summary.final_amount * 100)),
        "currency": order.get("currency", settings.CURRENCY),
        "receipt": order.get("receipt", receipt),
        "key_id": gateway.key_id,
        "race_category": race_category,
        "registration_id": registration_id,
        "payment_summary": summary.as_dict(),
    }


async def _release_taken_coupon(db: AsyncSession, registration_id: str, log) -> None:
    try:
        reg = await registrations.get_registration(db, registration_id)
        await _release_registration_coupon(db, reg)
        await db.commit()
        log.info("coupon_released_after_failed_checkout", coupon_code=reg.coupon_code)
    except Exception as e:
        await db.rollback()
        log.error("coupon_release_failed", error=str(e), exc_info=True)


async def cancel_order(
    db: AsyncSession,
    *,
    coupon_code: str | None = None,
    registration_id: str | None = None,
) -> dict:
    """Checkout dismissed. Best effort; never fails the caller."""
    log = logger.bind(registration_id=registration_id, coupon_code=coupon_code)
    released = False
    abandoned = False

    try:
        if registration_id:
            reg = await registrations.get_registration(db, registration_id)
            released = await _release_registration_coupon(db, reg)
            abandoned = await registrations.mark_abandoned(db, registration_id)
        elif coupon_code:
            released = await coupons.release(db, coupon_code)
        await db.commit()
    except Exception as e:
        await db.rollback()
        log.warning("cancel_order_failed", error=str(e))
        return {"released": False, "abandoned": False}

    log.info("order_cancelled", released=released, abandoned=abandoned)
    return {"released": released, "abandoned": abandoned}


# -------------------------
# Settlement
# -------------------------

async def _fetch_notes(gateway: RazorpayClient, order_id: str, log) -> Optional[dict]:
    try:
        order = await gateway.fetch_order(order_id)
    except GatewayError as e:
        log.warning("order_notes_unavailable", order_id=order_id, error=str(e))
        return None
    return _notes_of(order) or None


async def verify_payment(
    db: AsyncSession,
    gateway: RazorpayClient,
    *,
    order_id: str,
    payment_id: str,
    signature: str,
    registration_id: str | None = None,
    notifier: Notifier | None = None,
) -> dict:
    log = logger.bind(registration_id=registration_id, order_id=order_id)

    expected = payment_signature(order_id, payment_id, settings.RAZORPAY_KEY_SECRET)
    if not signatures_match(expected, signature):
        log.warning("payment_signature_invalid")
        raise InvalidSignature("Payment verification failed. Invalid signature.")

    if not registration_id:
        return {"verified": True, "registration_id": None, "payment_status": None, "settled": False}

    reg = await registrations.get_registration(db, registration_id)

    notes = await _fetch_notes(gateway, order_id, log)
    if notes and notes.get("registrationId") and notes["registrationId"] != registration_id:
        log.warning("order_registration_mismatch", notes_registration_id=notes["registrationId"])
        raise ValidationError("Order does not belong to this registration")

    amounts = _amounts_from_notes(notes) or _stored_amounts(reg)

    try:
        settled = await registrations.mark_paid(
            db, registration_id, order_id=order_id, payment_id=payment_id, amounts=amounts
        )
        if settled:
            await _consume_coupon(db, reg, notes)
        else:
            await registrations.refresh_paid(
                db, registration_id, order_id=order_id, payment_id=payment_id, amounts=amounts
            )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    log.info("payment_verified", settled=settled, charged_amount=amounts.charged_amount)

    if notifier is not None:
        notifier.schedule(registration_id, "VERIFY_PAYMENT")

    return {
        "verified": True,
        "registration_id": registration_id,
        "payment_status": "paid",
        "settled": settled,
    }


async def handle_webhook(
    db: AsyncSession,
    *,
    raw_body: bytes,
    signature: str | None,
    notifier: Notifier | None = None,
) -> dict:
    expected = webhook_signature(raw_body, settings.RAZORPAY_WEBHOOK_SECRET)
    if not signatures_match(expected, signature):
        logger.warning("webhook_signature_invalid", has_signature=bool(signature))
        raise InvalidSignature("Invalid webhook signature")

    # Past this point the delivery is genuine: always acknowledge, so a bug here
    # does not turn into an endless redelivery loop.
    try:
        event = json.loads(raw_body)
        return await _dispatch_event(db, event, notifier)
    except Exception as e:
        await db.rollback()
        logger.error("webhook_processing_failed", error=str(e), exc_info=True)
        return {"acknowledged": True, "outcome": "error"}


async def _dispatch_event(db: AsyncSession, event: dict, notifier: Notifier | None) -> dict:
    name = event.get("event")
    payload = event.get("payload") or {}
    payment = (payload.get("payment") or {}).get("entity") or {}
    order = (payload.get("order") or {}).get("entity") or {}

    if name in CAPTURE_EVENTS:
        return await _on_captured(db, payment, order, notifier)
    if name in FAILURE_EVENTS:
        return await _on_failed(db, payment)

    logger.info("webhook_ignored", webhook_event=name)
    return {"acknowledged": True, "outcome": "ignored"}


async def _resolve_registration(
    db: AsyncSession, payment: dict, order: dict
) -> tuple[Optional[Registration], dict, Optional[str]]:
    notes = _notes_of(payment) or _notes_of(order)
    order_id = payment.get("order_id") or order.get("id")

    reg = None
    registration_id = notes.get("registrationId")
    if registration_id:
        try:
            reg = await registrations.get_registration(db, registration_id)
        except NotFoundError:
            reg = None

    if reg is None and order_id:
        reg = await registrations.find_by_order_id(db, order_id)

    return reg, notes, order_id


async def _on_captured(db: AsyncSession, payment: dict, order: dict, notifier: Notifier | None) -> dict:
    reg, notes, order_id = await _resolve_registration(db, payment, order)
    payment_id = payment.get("id")
    log = logger.bind(order_id=order_id, payment_id=payment_id)

    if reg is None or not order_id or not payment_id:
        log.warning("webhook_capture_unmatched", registration_found=reg is not None)
        return {"acknowledged": True, "outcome": "unmatched"}

    # rollback expires loaded instances; keep plain values
    registration_id = reg.id
    log = log.bind(registration_id=registration_id)

    amounts = _amounts_from_notes(notes)
    if amounts is None and reg.charged_amount is not None:
        amounts = _stored_amounts(reg)
    if amounts is None:
        amounts = SettlementAmounts(
            charged_amount=_paise_to_rupees(payment.get("amount") or order.get("amount_paid"))
        )

    settled = await registrations.mark_paid(
        db, registration_id, order_id=order_id, payment_id=payment_id, amounts=amounts
    )
    if not settled:
        await db.rollback()
        log.info("webhook_capture_duplicate")
        return {"acknowledged": True, "outcome": "duplicate", "registration_id": registration_id}

    await _consume_coupon(db, reg, notes)
    await db.commit()

    log.info("webhook_capture_settled", charged_amount=amounts.charged_amount)

    if notifier is not None:
        notifier.schedule(registration_id, "WEBHOOK")

    return {"acknowledged": True, "outcome": "settled", "registration_id": registration_id}


async def _on_failed(db: AsyncSession, payment: dict) -> dict:
    reg, _, order_id = await _resolve_registration(db, payment, {})
    log = logger.bind(order_id=order_id, payment_id=payment.get("id"))

    if reg is None:
        log.warning("webhook_failure_unmatched")
        return {"acknowledged": True, "outcome": "unmatched"}

    registration_id, status = reg.id, reg.payment_status

    if order_id and reg.razorpay_order_id and order_id != reg.razorpay_order_id:
        # a newer checkout replaced this order
        log.info("webhook_failure_stale", current_order_id=reg.razorpay_order_id)
        return {"acknowledged": True, "outcome": "stale", "registration_id": registration_id}

    failed = await registrations.mark_failed(
        db,
        registration_id,
        failure_code=payment.get("error_code"),
        failure_reason=payment.get("error_description") or payment.get("error_reason"),
        payment_id=payment.get("id"),
    )
    if not failed:
        # paid (or already failed/abandoned) records are never downgraded
        await db.rollback()
        log.info("webhook_failure_ignored", payment_status=status)
        return {"acknowledged": True, "outcome": "ignored", "registration_id": registration_id}

    released = await _release_registration_coupon(db, reg)
    await db.commit()

    log.info("webhook_failure_recorded", coupon_released=released)
    return {"acknowledged": True, "outcome": "failed", "registration_id": registration_id}
