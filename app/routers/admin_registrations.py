# app/routers/admin_registrations.py
from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.deps import AdminPrincipal, get_mailer, require_admin
from app.core.errors import PaymentsError
from app.integrations.mailer import Mailer
from app.schemas.payments import ResendConfirmationOut
from app.services.notifications import resend_confirmation

logger = structlog.get_logger().bind(component="admin")

router = APIRouter(prefix="/api/admin/registrations", tags=["Admin - Registrations"])


@router.post("/{registration_id}/resend-confirmation", response_model=ResendConfirmationOut)
async def resend_confirmation_email(
    registration_id: str,
    db: AsyncSession = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
    admin: AdminPrincipal = Depends(require_admin),
) -> ResendConfirmationOut:
    try:
        result = await resend_confirmation(db, registration_id=registration_id, mailer=mailer)
    except PaymentsError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception as e:
        logger.error("resend_failed", registration_id=registration_id, admin=admin.subject, error=str(e))
        raise HTTPException(status_code=502, detail="Failed to send confirmation email")

    return ResendConfirmationOut(**result)
