"""Org router — HR management of acting appointments."""


import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from leave_portal.auth.dependencies import require_role
from leave_portal.auth.schemas import Principal
from leave_portal.common.constants import LEDGER_ADMIN_ROLES, OrgRole
from leave_portal.database import get_db
from leave_portal.org.schemas import ActingAppointmentCreate, ActingAppointmentOut
from leave_portal.org.service import OrgService

acting_router = APIRouter(prefix="", tags=["org"])


# ── GET /acting-appointments ────────────────────────────────────────

@acting_router.get("/acting-appointments", response_model=list[ActingAppointmentOut])
async def list_acting_appointments(
    staff_id: Optional[uuid.UUID] = Query(None),
    role: Optional[OrgRole] = Query(None),
    as_of: Optional[date] = Query(None),
    principal: Principal = Depends(require_role(*LEDGER_ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    return await OrgService.acting_appointments(
        db, staff_id=staff_id, role=role, as_of=as_of,
    )


# ── POST /acting-appointments ───────────────────────────────────────

@acting_router.post(
    "/acting-appointments", response_model=ActingAppointmentOut, status_code=201,
)
async def create_acting_appointment(
    body: ActingAppointmentCreate,
    principal: Principal = Depends(require_role(*LEDGER_ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Let a staff member hold *role* between two dates while its holder is away."""
    return await OrgService.appoint_acting(db, body, actor_id=principal.staff_id)


# ── DELETE /acting-appointments/{appointment_id} ────────────────────

@acting_router.delete(
    "/acting-appointments/{appointment_id}", response_model=ActingAppointmentOut,
)
async def revoke_acting_appointment(
    appointment_id: uuid.UUID,
    principal: Principal = Depends(require_role(*LEDGER_ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    return await OrgService.revoke_acting(db, appointment_id, actor_id=principal.staff_id)
