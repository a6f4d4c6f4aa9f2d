from __future__ import annotations

from html import escape
from typing import Callable, Protocol

import structlog
from fastapi import BackgroundTasks
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.core.db import SessionLocal
from app.core.errors import ValidationError
from app.integrations.mailer import Attachment, Mailer, SmtpMailer
from app.models.registration import Registration
from app.services import pricing, registrations
from app.services.invoice_pdf import render_invoice

logger = structlog.get_logger().bind(component="notifications")


class Notifier(Protocol):
    def schedule(self, registration_id: str, source: str) -> None: ...


def confirmation_email(reg: Registration) -> tuple[str, str]:
    race = pricing.RACE_CONFIG.get(reg.race)
    race_txt = f"{race.distance} {race.title}" if race else reg.race
    amount = f"Rs. {int(reg.charged_amount):,}" if reg.charged_amount is not None else "N/A"

    subject = f"{settings.EVENT_NAME} – Registration Confirmed"
    html = f"""\
<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; color: #333; max-width: 600px; margin: 0 auto;">
  <h1 style="color: #1e3a8a;">{escape(settings.EVENT_NAME)}</h1>
  <p>Hi {escape(reg.name)},</p>
  <p>Your registration is confirmed. Your invoice is attached to this email.</p>
  <table cellpadding="6" style="border-collapse: collapse;">
    <tr><td>Registration ID</td><td><b>{escape(reg.id)}</b></td></tr>
    <tr><td>Race</td><td><b>{escape(race_txt)}</b></td></tr>
    <tr><td>T-Shirt Size</td><td><b>{escape(reg.tshirt_size)}</b></td></tr>
    <tr><td>Amount Paid</td><td><b>{escape(amount)}</b></td></tr>
    <tr><td>Payment ID</td><td><b>{escape(reg.razorpay_payment_id or "")}</b></td></tr>
  </table>
  <p>For queries, contact <a href="mailto:{escape(settings.SUPPORT_EMAIL)}">{escape(settings.SUPPORT_EMAIL)}</a>.</p>
</body>
</html>
"""
    return subject, html


async def _send(mailer: Mailer, reg: Registration, renderer: Callable[[Registration], bytes]) -> str:
    pdf_bytes = renderer(reg)
    subject, html = confirmation_email(reg)
    return await mailer.send(
        to=reg.email,
        subject=subject,
        html=html,
        attachments=[Attachment(filename=f"invoice_{reg.id}.pdf", content=pdf_bytes)],
    )


class NotificationDispatcher:
    """
    Sends the confirmation email with the invoice at most once per registration.

    Both confirmation paths (client verify, gateway webhook) call this; the
    `confirmation_email_sent` latch is claimed with a conditional update before
    anything is rendered, so only one of them gets to send.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = SessionLocal,
        mailer: Mailer | None = None,
        renderer: Callable[[Registration], bytes] = render_invoice,
    ):
        self.session_factory = session_factory
        self.mailer = mailer or SmtpMailer()
        self.renderer = renderer

    async def send_confirmation(self, registration_id: str, source: str) -> bool:
        log = logger.bind(registration_id=registration_id, source=source)

        # own session: the request that scheduled us has already finished
        async with self.session_factory() as db:
            try:
                claimed = await registrations.claim_confirmation(db, registration_id)
                await db.commit()
            except Exception as e:
                await db.rollback()
                log.error("confirmation_claim_failed", error=str(e), exc_info=True)
                return False

            if not claimed:
                log.info("confirmation_skipped", reason="already_sent_or_not_paid")
                return False

            try:
                reg = await registrations.get_registration(db, registration_id)
                log.info("confirmation_sending", to=reg.email)
                message_id = await _send(self.mailer, reg, self.renderer)
            except Exception as e:
                log.error("confirmation_failed", error=str(e), exc_info=True)
                await self._give_back(db, registration_id, log)
                return False

            log.info("confirmation_sent", message_id=message_id)
            return True

    async def _give_back(self, db: AsyncSession, registration_id: str, log) -> None:
        # payment state is untouched; a later trigger or an admin resend can retry
        try:
            await db.rollback()
            await registrations.unclaim_confirmation(db, registration_id)
            await db.commit()
        except Exception as e:
            await db.rollback()
            log.error("confirmation_unclaim_failed", error=str(e), exc_info=True)


class BackgroundNotifier:
    """Runs dispatch after the HTTP response has been sent."""

    def __init__(self, background_tasks: BackgroundTasks, dispatcher: NotificationDispatcher):
        self.background_tasks = background_tasks
        self.dispatcher = dispatcher

    def schedule(self, registration_id: str, source: str) -> None:
        self.background_tasks.add_task(self.dispatcher.send_confirmation, registration_id, source)


async def resend_confirmation(
    db: AsyncSession,
    *,
    registration_id: str,
    mailer: Mailer,
    renderer: Callable[[Registration], bytes] = render_invoice,
) -> dict:
    """Admin resend: ignores the latch, errors surface to the caller."""
    reg = await registrations.get_registration(db, registration_id)
    if reg.payment_status != "paid":
        raise ValidationError("Registration is not paid")

    message_id = await _send(mailer, reg, renderer)

    await db.execute(
        update(Registration)
        .where(Registration.id == registration_id)
        .values(confirmation_email_sent=True)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    logger.info("confirmation_resent", registration_id=registration_id, message_id=message_id)
    return {"message_id": message_id, "to": reg.email}
