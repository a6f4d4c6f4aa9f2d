from __future__ import annotations

from datetime import date, datetime
from io import BytesIO
from typing import Optional

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from app.core.config import settings
from app.models.registration import Registration
from app.services import pricing


def _fmt_date(d: Optional[date | datetime], with_time: bool = False) -> str:
    if not d:
        return "N/A"
    if with_time and isinstance(d, datetime):
        return d.strftime("%d %B %Y, %I:%M %p")
    return d.strftime("%d %B %Y")


def _money(rupees: Optional[int]) -> str:
    if rupees is None:
        return "N/A"
    # "Rs." instead of the rupee sign: the base fonts have no glyph for it
    return f"Rs. {int(rupees):,}"


def _race_label(race_key: str) -> str:
    race = pricing.RACE_CONFIG.get(race_key)
    if race is None:
        return race_key
    return f"{race.race_key} – {race.title}"


def _detail_table(rows: list[list[str]]) -> Table:
    tbl = Table(rows, colWidths=[60 * mm, 110 * mm])
    tbl.setStyle(
        TableStyle(
            [
                ("FONTNAME", (0, 0), (0, -1), "Helvetica"),
                ("FONTNAME", (1, 0), (1, -1), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, -1), 9),
                ("TEXTCOLOR", (0, 0), (0, -1), colors.HexColor("#6b7280")),
                ("TEXTCOLOR", (1, 0), (1, -1), colors.HexColor("#111827")),
                ("ALIGN", (1, 0), (1, -1), "RIGHT"),
                ("LINEBELOW", (0, 0), (-1, -1), 0.5, colors.HexColor("#e5e7eb")),
                ("TOPPADDING", (0, 0), (-1, -1), 4),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
            ]
        )
    )
    return tbl


def _total_table(reg: Registration) -> Table:
    rows = [["Registration fee", _money(reg.base_amount)]]
    if reg.discount_amount:
        coupon = f" ({reg.coupon_code})" if reg.coupon_code else ""
        rows.append([f"Coupon discount{coupon}", f"- {_money(reg.discount_amount)}"])
    if reg.gateway_fee is not None:
        rows.append(["Payment gateway charges", _money(reg.gateway_fee)])
    rows.append(["TOTAL AMOUNT PAID", _money(reg.charged_amount)])

    tbl = Table(rows, colWidths=[110 * mm, 60 * mm])
    tbl.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, -1), colors.HexColor("#f0f9ff")),
                ("BOX", (0, 0), (-1, -1), 0.75, colors.HexColor("#3b82f6")),
                ("FONTSIZE", (0, 0), (-1, -2), 9),
                ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
                ("FONTSIZE", (0, -1), (-1, -1), 12),
                ("TEXTCOLOR", (0, -1), (-1, -1), colors.HexColor("#1e3a8a")),
                ("LINEABOVE", (0, -1), (-1, -1), 0.75, colors.HexColor("#3b82f6")),
                ("ALIGN", (1, 0), (1, -1), "RIGHT"),
                ("LEFTPADDING", (0, 0), (-1, -1), 6),
                ("RIGHTPADDING", (0, 0), (-1, -1), 6),
                ("TOPPADDING", (0, 0), (-1, -1), 5),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 5),
            ]
        )
    )
    return tbl


def render_invoice(reg: Registration, *, issued_at: Optional[datetime] = None) -> bytes:
    buf = BytesIO()
    doc = SimpleDocTemplate(
        buf,
        pagesize=A4,
        leftMargin=18 * mm,
        rightMargin=18 * mm,
        topMargin=15 * mm,
        bottomMargin=15 * mm,
        title=f"{settings.EVENT_NAME} — Registration Invoice",
    )

    styles = getSampleStyleSheet()
    story = []

    story.append(Paragraph(f"<b>{settings.EVENT_NAME}</b>", styles["Title"]))
    story.append(Paragraph("Registration Invoice", styles["Heading3"]))
    story.append(Paragraph(f"Invoice Date: {_fmt_date(issued_at or datetime.now())}", styles["Normal"]))
    story.append(Paragraph(f"Registration ID: <b>{reg.id}</b>", styles["Normal"]))
    story.append(Spacer(1, 10))

    story.append(Paragraph("<b>Participant Details</b>", styles["Heading4"]))
    story.append(
        _detail_table(
            [
                ["Name", reg.name],
                ["Email", reg.email],
                ["Phone", reg.phone],
                ["Gender", reg.gender or "N/A"],
                ["Date of Birth", _fmt_date(reg.dob)],
                ["Race Category", _race_label(reg.race)],
                ["T-Shirt Size", reg.tshirt_size],
                ["Emergency Contact", reg.emergency_name or "N/A"],
                ["Emergency Phone", reg.emergency_phone or "N/A"],
                ["Registration Date", _fmt_date(reg.created_at)],
            ]
        )
    )
    story.append(Spacer(1, 10))

    story.append(Paragraph("<b>Payment Details</b>", styles["Heading4"]))
    story.append(
        _detail_table(
            [
                ["Razorpay Order ID", reg.razorpay_order_id or "N/A"],
                ["Razorpay Payment ID", reg.razorpay_payment_id or "N/A"],
                ["Payment Status", "PAID" if reg.payment_status == "paid" else reg.payment_status.upper()],
                ["Payment Date", _fmt_date(reg.payment_date, with_time=True)],
            ]
        )
    )
    story.append(Spacer(1, 12))
    story.append(_total_table(reg))
    story.append(Spacer(1, 20))

    story.append(
        Paragraph(
            "This is a system-generated invoice and does not require a signature.",
            styles["Italic"],
        )
    )
    story.append(Paragraph(f"For queries, contact: {settings.SUPPORT_EMAIL}", styles["Normal"]))

    doc.build(story)
    return buf.getvalue()
