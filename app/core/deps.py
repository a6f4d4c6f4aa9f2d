from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from app.core.security import TokenError, decode_token
from app.integrations.mailer import Mailer, SmtpMailer
from app.integrations.razorpay_client import RazorpayClient
from app.services.notifications import NotificationDispatcher

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/admin/login", auto_error=False)


@dataclass
class AdminPrincipal:
    subject: str
    role: str


def get_current_admin(token: str | None = Depends(oauth2_scheme)) -> AdminPrincipal:
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")

    try:
        payload = decode_token(token)
    except TokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    subject = payload.get("sub") or payload.get("id") or payload.get("email")
    if not subject:
        raise HTTPException(status_code=401, detail="Token missing subject")

    return AdminPrincipal(subject=str(subject), role=str(payload.get("role") or ""))


def require_admin(principal: AdminPrincipal = Depends(get_current_admin)) -> AdminPrincipal:
    if principal.role != "admin":
        raise HTTPException(status_code=403, detail="Admin only")
    return principal


def get_gateway() -> RazorpayClient:
    return RazorpayClient()


def get_mailer() -> Mailer:
    return SmtpMailer()


def get_dispatcher(mailer: Mailer = Depends(get_mailer)) -> NotificationDispatcher:
    return NotificationDispatcher(mailer=mailer)
