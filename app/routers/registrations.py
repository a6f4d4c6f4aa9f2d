# app/routers/registrations.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.errors import PaymentsError
from app.schemas.registrations import RegistrationIn, RegistrationOut, RegistrationSaved
from app.services import registrations

router = APIRouter(prefix="/api/register", tags=["Registrations"])


@router.post("", response_model=RegistrationSaved)
async def register(
    payload: RegistrationIn,
    db: AsyncSession = Depends(get_db),
) -> RegistrationSaved:
    try:
        reg, created = await registrations.create_or_reuse(db, **payload.model_dump())
    except PaymentsError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    return RegistrationSaved(registration=RegistrationOut.model_validate(reg), created=created)


@router.get("/{registration_id}", response_model=RegistrationOut)
async def get_registration(
    registration_id: str,
    db: AsyncSession = Depends(get_db),
):
    try:
        return await registrations.get_registration(db, registration_id)
    except PaymentsError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
