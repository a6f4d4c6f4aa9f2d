from __future__ import annotations

from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Protocol

import aiosmtplib

from app.core.config import settings


@dataclass
class Attachment:
    filename: str
    content: bytes
    mime_type: str = "application/pdf"


class Mailer(Protocol):
    async def send(
        self,
        *,
        to: str,
        subject: str,
        html: str,
        attachments: list[Attachment] | None = None,
    ) -> str: ...


class SmtpMailer:
    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        username: str | None = None,
        password: str | None = None,
        start_tls: bool | None = None,
    ):
        self.host = host or settings.SMTP_HOST
        self.port = port or settings.SMTP_PORT
        self.username = username if username is not None else settings.SMTP_USER
        self.password = password if password is not None else settings.SMTP_PASSWORD
        self.start_tls = settings.SMTP_STARTTLS if start_tls is None else start_tls

    def build_message(
        self,
        *,
        to: str,
        subject: str,
        html: str,
        attachments: list[Attachment] | None = None,
    ) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = formataddr((settings.MAIL_FROM_NAME, self.username))
        msg["To"] = to
        msg["Subject"] = subject
        msg["Message-ID"] = make_msgid()
        msg.set_content("This message requires an HTML capable mail client.")
        msg.add_alternative(html, subtype="html")

        for a in attachments or []:
            maintype, _, subtype = a.mime_type.partition("/")
            msg.add_attachment(a.content, maintype=maintype, subtype=subtype, filename=a.filename)

        return msg

    async def send(
        self,
        *,
        to: str,
        subject: str,
        html: str,
        attachments: list[Attachment] | None = None,
    ) -> str:
        msg = self.build_message(to=to, subject=subject, html=html, attachments=attachments)
        await aiosmtplib.send(
            msg,
            hostname=self.host,
            port=self.port,
            username=self.username or None,
            password=self.password or None,
            start_tls=self.start_tls,
        )
        return msg["Message-ID"]
