import asyncio

import pytest
from fastapi import BackgroundTasks

from app.core.errors import ValidationError
from app.services import registrations
from app.services.notifications import (
    BackgroundNotifier,
    NotificationDispatcher,
    confirmation_email,
    resend_confirmation,
)
from app.services.registrations import SettlementAmounts


@pytest.fixture
def paid_registration(db, make_registration):
    async def _paid(**kw):
        reg = await make_registration(**kw)
        await registrations.mark_paid(
            db,
            reg.id,
            order_id="order_001",
            payment_id="pay_001",
            amounts=SettlementAmounts(base_amount=699, discount_amount=0, gateway_fee=17, charged_amount=716),
        )
        await db.commit()
        return await registrations.get_registration(db, reg.id)

    return _paid


async def _latch(db, registration_id):
    return (await registrations.get_registration(db, registration_id)).confirmation_email_sent


async def test_sends_invoice_once(db, mailer, paid_registration):
    reg = await paid_registration()
    dispatcher = NotificationDispatcher(mailer=mailer)

    assert await dispatcher.send_confirmation(reg.id, "VERIFY_PAYMENT") is True
    assert await dispatcher.send_confirmation(reg.id, "WEBHOOK") is False

    assert len(mailer.sent) == 1
    mail = mailer.sent[0]
    assert mail["to"] == reg.email
    assert "Registration Confirmed" in mail["subject"]
    [attachment] = mail["attachments"]
    assert attachment.filename == f"invoice_{reg.id}.pdf"
    assert attachment.content.startswith(b"%PDF")
    assert await _latch(db, reg.id) is True


async def test_concurrent_triggers_send_one_email(db, mailer, paid_registration):
    reg = await paid_registration()
    dispatcher = NotificationDispatcher(mailer=mailer)

    results = await asyncio.gather(
        dispatcher.send_confirmation(reg.id, "VERIFY_PAYMENT"),
        dispatcher.send_confirmation(reg.id, "WEBHOOK"),
    )

    assert sorted(results) == [False, True]
    assert len(mailer.sent) == 1


async def test_unpaid_registration_gets_nothing(db, mailer, make_registration):
    reg = await make_registration()
    dispatcher = NotificationDispatcher(mailer=mailer)

    assert await dispatcher.send_confirmation(reg.id, "WEBHOOK") is False
    assert mailer.sent == []
    assert await _latch(db, reg.id) is False


async def test_send_failure_gives_latch_back(db, mailer, paid_registration):
    reg = await paid_registration()
    dispatcher = NotificationDispatcher(mailer=mailer)

    mailer.fail = True
    assert await dispatcher.send_confirmation(reg.id, "VERIFY_PAYMENT") is False
    assert await _latch(db, reg.id) is False

    # payment state untouched
    assert (await registrations.get_registration(db, reg.id)).payment_status == "paid"

    mailer.fail = False
    assert await dispatcher.send_confirmation(reg.id, "WEBHOOK") is True
    assert len(mailer.sent) == 1


async def test_render_failure_gives_latch_back(db, mailer, paid_registration):
    reg = await paid_registration()

    def broken_renderer(_):
        raise RuntimeError("font missing")

    dispatcher = NotificationDispatcher(mailer=mailer, renderer=broken_renderer)

    assert await dispatcher.send_confirmation(reg.id, "WEBHOOK") is False
    assert mailer.sent == []
    assert await _latch(db, reg.id) is False


async def test_admin_resend_ignores_latch(db, mailer, paid_registration):
    reg = await paid_registration()
    await NotificationDispatcher(mailer=mailer).send_confirmation(reg.id, "WEBHOOK")

    out = await resend_confirmation(db, registration_id=reg.id, mailer=mailer)

    assert out == {"message_id": "<msg-2@test>", "to": reg.email}
    assert len(mailer.sent) == 2
    assert await _latch(db, reg.id) is True


async def test_admin_resend_requires_paid(db, mailer, make_registration):
    reg = await make_registration()
    with pytest.raises(ValidationError):
        await resend_confirmation(db, registration_id=reg.id, mailer=mailer)


async def test_admin_resend_surfaces_mail_errors(db, mailer, paid_registration):
    reg = await paid_registration()
    mailer.fail = True

    with pytest.raises(ConnectionError):
        await resend_confirmation(db, registration_id=reg.id, mailer=mailer)
    assert await _latch(db, reg.id) is False


async def test_email_body_escapes_profile(db, paid_registration):
    reg = await paid_registration(name="<script>Asha</script>")
    subject, html = confirmation_email(reg)

    assert "<script>" not in html
    assert "&lt;script&gt;Asha" in html
    assert "Rs. 716" in html
    assert "5 KM Fitness Run" in html


def test_background_notifier_defers_dispatch(mailer):
    tasks = BackgroundTasks()
    dispatcher = NotificationDispatcher(mailer=mailer)

    BackgroundNotifier(tasks, dispatcher).schedule("abc", "WEBHOOK")

    assert len(tasks.tasks) == 1
    assert tasks.tasks[0].args == ("abc", "WEBHOOK")
